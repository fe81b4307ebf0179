import signal


class UASFError(Exception):
    """Base class for every error the engine raises on purpose."""


class ConfigurationError(UASFError):
    """Missing or invalid run settings. Raised before any request is sent."""


class ScenarioValidationError(UASFError):
    """A scenario file is malformed or has nothing to run. Scoped to that scenario."""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"{source}: {reason}")


class ScopeViolationError(UASFError):
    """A request would leave the authorized boundary. Fatal to the whole run."""

    def __init__(self, url: str, pattern: str):
        self.url = url
        self.pattern = pattern
        super().__init__(f"Request blocked: {url} does not match scope regex {pattern}")


class RunInterrupted(UASFError):
    """The operator sent a termination signal while the run was in flight."""

    def __init__(self, signum: int = signal.SIGINT):
        self.signum = int(signum)
        super().__init__(f"Execution interrupted by signal {self.signum}")

    @property
    def exit_code(self) -> int:
        return 128 + self.signum
