import os
import re
import shutil
import logging
from dataclasses import dataclass, field
from typing import Tuple

from .errors import ConfigurationError

logger = logging.getLogger("uasf.config")

DEFAULT_RPS = 5
DEFAULT_CONCURRENCY = 1
DEFAULT_TIMEOUT = 30

# Evidence capture can be large; warn below this much free space.
MIN_FREE_DISK_KB = 102400


@dataclass(frozen=True)
class RunConfig:
    """
    Immutable settings for one run.
    Built once by the CLI and handed to every component that needs it.
    """
    target_url: str
    scenario_dir: str
    output_dir: str
    evidence_dir: str
    json_output: str
    scope_regex: str
    rps: int = DEFAULT_RPS
    concurrency: int = DEFAULT_CONCURRENCY
    timeout: int = DEFAULT_TIMEOUT
    extra_signatures: Tuple[str, ...] = field(default_factory=tuple)
    verbose: bool = False

    @property
    def summary_path(self) -> str:
        return os.path.join(self.output_dir, "summary.md")

    @property
    def audit_path(self) -> str:
        return os.path.join(self.output_dir, "audit.log")

    def validate(self) -> "RunConfig":
        """Raises ConfigurationError on the first invalid setting."""
        required = {
            "--target": self.target_url,
            "--scenarios": self.scenario_dir,
            "--out": self.output_dir,
            "--evidence": self.evidence_dir,
            "--json": self.json_output,
            "--scope-regex": self.scope_regex,
        }
        for flag, value in required.items():
            if not value:
                raise ConfigurationError(f"Missing required argument: {flag}")

        if not is_valid_url(self.target_url):
            raise ConfigurationError(f"Invalid target URL: {self.target_url}")

        if not os.path.isdir(self.scenario_dir):
            raise ConfigurationError(f"Scenario directory not found: {self.scenario_dir}")

        for name, value, minimum in (("RPS", self.rps, 0),
                                     ("concurrency", self.concurrency, 0),
                                     ("timeout", self.timeout, 1)):
            if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
                raise ConfigurationError(f"Invalid {name} value: {value}")

        try:
            re.compile(self.scope_regex)
        except re.error as e:
            raise ConfigurationError(f"Invalid scope regex {self.scope_regex!r}: {e}") from e

        return self


def is_valid_url(url: str) -> bool:
    return bool(re.match(r"^https?://", url or ""))


def prepare_directories(config: RunConfig):
    """Creates the output and evidence directories the run writes into."""
    json_dir = os.path.dirname(os.path.abspath(config.json_output))
    for path in (config.output_dir, config.evidence_dir, json_dir):
        try:
            os.makedirs(path, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(f"Failed to create directory {path}: {e}") from e

    if not check_disk_space(config.evidence_dir, MIN_FREE_DISK_KB):
        logger.warning("Continuing despite low disk space")


def check_disk_space(directory: str, required_kb: int) -> bool:
    try:
        available_kb = shutil.disk_usage(directory).free // 1024
    except OSError:
        logger.warning(f"Unable to check disk space for: {directory}")
        return True

    if available_kb < required_kb:
        logger.warning(f"Low disk space: {available_kb}KB available, {required_kb}KB recommended")
        return False
    return True
