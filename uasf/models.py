from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Any, List, Mapping, Optional, Tuple
from enum import Enum


class Outcome(str, Enum):
    BLOCKED = "BLOCKED"
    ALLOWED = "ALLOWED"
    CHALLENGED = "CHALLENGED"
    INCONCLUSIVE = "INCONCLUSIVE"


@dataclass(frozen=True)
class Step:
    method: str = "GET"
    path: str = "/"
    headers: Mapping[str, str] = field(default_factory=dict, hash=False)
    body: str = ""
    repeat: int = 1
    sleep_ms: int = 0
    expect_http_codes: Tuple[int, ...] = ()

    def __post_init__(self):
        # Read-only view over a private copy
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    @property
    def is_runnable(self) -> bool:
        return bool(self.method) and bool(self.path)


@dataclass(frozen=True)
class Scenario:
    name: str
    description: str
    steps: Tuple[Step, ...]
    source: str = ""


@dataclass
class OutcomeCounts:
    allowed: int = 0
    blocked: int = 0
    challenged: int = 0
    inconclusive: int = 0

    def add(self, outcome: Outcome):
        attr = outcome.value.lower()
        setattr(self, attr, getattr(self, attr) + 1)

    @property
    def total(self) -> int:
        return self.allowed + self.blocked + self.challenged + self.inconclusive

    def to_dict(self) -> Dict[str, int]:
        return {
            "allowed": self.allowed,
            "blocked": self.blocked,
            "challenged": self.challenged,
            "inconclusive": self.inconclusive,
        }


@dataclass
class ScenarioResult:
    scenario: str
    description: str
    status: Outcome
    steps_executed: int
    results: OutcomeCounts = field(default_factory=OutcomeCounts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scenario": self.scenario,
            "description": self.description,
            "status": self.status.value,
            "steps_executed": self.steps_executed,
            "results": self.results.to_dict(),
        }


@dataclass(frozen=True)
class EvidenceRecord:
    """One request attempt as it was written to the evidence directory."""
    record_id: str
    request: Dict[str, Any]
    response: Optional[Dict[str, Any]] = None

    @property
    def context(self) -> Dict[str, Any]:
        return self.request.get("context") or {}

    @property
    def status_code(self) -> Optional[int]:
        if self.response is None:
            return None
        return self.response.get("status_code")


@dataclass
class RunReport:
    framework: str
    version: str
    target: str
    timestamp: str
    total_scenarios: int
    total_requests: int
    results: List[ScenarioResult] = field(default_factory=list)

    # Narrative-only metadata, not part of the structured report
    scope_regex: str = ""
    rps: int = 0
    evidence_dir: str = ""
    evidence_files: int = 0
    skipped_scenarios: int = 0
    audit_hash: Optional[str] = None

    def count(self, outcome: Outcome) -> int:
        return sum(1 for r in self.results if r.status == outcome)

    @property
    def effectiveness(self) -> Optional[float]:
        """Share of scenarios the protection layer stopped, or None for an empty run."""
        if self.total_scenarios == 0:
            return None
        stopped = self.count(Outcome.BLOCKED) + self.count(Outcome.CHALLENGED)
        return round(stopped * 100.0 / self.total_scenarios, 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "framework": self.framework,
            "version": self.version,
            "target": self.target,
            "timestamp": self.timestamp,
            "total_scenarios": self.total_scenarios,
            "total_requests": self.total_requests,
            "results": [r.to_dict() for r in self.results],
        }
