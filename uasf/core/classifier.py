"""
Result Classification
Maps one observed response to BLOCKED / ALLOWED / CHALLENGED / INCONCLUSIVE.
"""
import re
from typing import Iterable, Optional, Sequence

from ..models import Outcome

SENTINEL_STATUS = 0

DENIAL_CODES = frozenset({403, 406, 418})
CHALLENGE_CODES = frozenset({429, 503})
SUCCESS_CODES = frozenset({200, 201, 202, 204})

# Block pages and interstitials that still come back with a 2xx.
# "access.denied" keeps the single-character wildcard of the original pattern.
WAF_SIGNATURES = ("access.denied", "blocked", "firewall", "security", "waf", "captcha")


def build_signature_pattern(extra: Optional[Iterable[str]] = None) -> "re.Pattern":
    """Compiles the fixed signature list plus any operator-supplied literal strings."""
    parts = list(WAF_SIGNATURES)
    parts.extend(re.escape(s) for s in (extra or ()) if s)
    return re.compile("(" + "|".join(parts) + ")", re.IGNORECASE)


DEFAULT_SIGNATURE_PATTERN = build_signature_pattern()


class ResultClassifier:
    """
    Stateless classifier. The precedence below is evaluated top to bottom and the
    first matching rule wins:

    1. 403, 406, 418            -> BLOCKED
    2. 429, 503                 -> CHALLENGED
    3. 200, 201, 202, 204       -> CHALLENGED if the body carries a WAF signature, else ALLOWED
    4. no response (sentinel 0) -> INCONCLUSIVE
    5. anything else            -> BLOCKED if the step expected that code, else INCONCLUSIVE
    """

    def __init__(self, extra_signatures: Optional[Iterable[str]] = None):
        extra = tuple(extra_signatures or ())
        self.signatures = WAF_SIGNATURES + extra
        self._pattern = build_signature_pattern(extra) if extra else DEFAULT_SIGNATURE_PATTERN

    def classify(self, status_code: int, response_body: Optional[str], expected_codes: Sequence[int] = ()) -> Outcome:
        if status_code in DENIAL_CODES:
            return Outcome.BLOCKED

        if status_code in CHALLENGE_CODES:
            return Outcome.CHALLENGED

        if status_code in SUCCESS_CODES:
            if response_body and self._pattern.search(response_body):
                return Outcome.CHALLENGED
            return Outcome.ALLOWED

        if status_code == SENTINEL_STATUS:
            return Outcome.INCONCLUSIVE

        # Unmodeled codes the scenario anticipated count as a defensive response
        if status_code in set(expected_codes or ()):
            return Outcome.BLOCKED
        return Outcome.INCONCLUSIVE

    __call__ = classify


_DEFAULT = ResultClassifier()


def classify(status_code: int, response_body: Optional[str], expected_codes: Sequence[int] = ()) -> Outcome:
    """Module-level shortcut using the default signature list."""
    return _DEFAULT.classify(status_code, response_body, expected_codes)
