import re
import logging
from typing import Optional

from .errors import ConfigurationError, ScopeViolationError
from .forensics import AuditLog

logger = logging.getLogger("uasf.scope")


class ScopeGuard:
    """
    Last line of defense against out-of-scope traffic.
    Every outbound URL is matched against the operator's pattern from the
    start of the string, immediately before it is sent. Results are never cached.
    """

    def __init__(self, pattern: str, audit: Optional[AuditLog] = None):
        try:
            self._regex = re.compile(pattern)
        except re.error as e:
            raise ConfigurationError(f"Invalid scope regex {pattern!r}: {e}") from e
        self.pattern = pattern
        self.audit = audit

    def check(self, url: str) -> bool:
        if self._regex.match(url):
            return True

        logger.error(f"Scope validation FAILED: {url} does not match regex: {self.pattern}")
        if self.audit:
            self.audit.log_event("SCOPE_VIOLATION", {"url": url, "scope_regex": self.pattern})
        return False

    def require(self, url: str):
        """Raises ScopeViolationError instead of returning False."""
        if not self.check(url):
            raise ScopeViolationError(url, self.pattern)


def scope_regex_for(target_url: str) -> str:
    """
    Derives an anchored scope pattern covering scheme, host and port of a target,
    e.g. https://api.example.com/v1 -> ^https://api\\.example\\.com(?=[/?#]|$)

    The trailing lookahead stops a look-alike host such as
    https://api.example.com.attacker.net from matching.
    """
    return "^" + re.escape(origin_of(target_url)) + "(?=[/?#]|$)"


def origin_of(url: str) -> str:
    """scheme://host[:port] of an http(s) URL."""
    match = re.match(r"^(https?://[^/?#]+)", url or "")
    if not match:
        raise ConfigurationError(f"Invalid target URL: {url}")
    return match.group(1)
