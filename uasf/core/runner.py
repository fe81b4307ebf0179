"""
Scenario Execution
Drives one scenario's steps and repeats and reduces them to a single verdict.
"""
import time
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional

from ..config import RunConfig
from ..errors import ScenarioValidationError, ScopeViolationError
from ..forensics import AuditLog
from ..http_client import RequestExecutor
from ..logging_utils import log_success
from ..models import Outcome, OutcomeCounts, Scenario, ScenarioResult, Step
from ..safety_lock import ScopeGuard
from .classifier import ResultClassifier
from .throttler import RateLimiter

logger = logging.getLogger("uasf.runner")


class ScenarioState(str, Enum):
    LOADED = "LOADED"
    VALIDATING = "VALIDATING"
    EXECUTING = "EXECUTING"
    AGGREGATING = "AGGREGATING"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass(frozen=True)
class Attempt:
    step_index: int
    repeat: int
    status_code: int
    outcome: Outcome
    record_id: str


def reduce_outcomes(outcomes: Iterable[Outcome]) -> Outcome:
    """
    Risk-weighted reduction, first matching rule wins:
    any ALLOWED -> ALLOWED; all BLOCKED -> BLOCKED; any CHALLENGED -> CHALLENGED;
    otherwise INCONCLUSIVE. One leak is never outvoted by many blocks.
    """
    outcomes = list(outcomes)
    if not outcomes:
        return Outcome.INCONCLUSIVE
    if Outcome.ALLOWED in outcomes:
        return Outcome.ALLOWED
    if all(o == Outcome.BLOCKED for o in outcomes):
        return Outcome.BLOCKED
    if Outcome.CHALLENGED in outcomes:
        return Outcome.CHALLENGED
    return Outcome.INCONCLUSIVE


def build_url(target_url: str, path: str) -> str:
    base = target_url.rstrip("/")
    if path.startswith(("/", "?", "#")):
        return base + path
    return f"{base}/{path}"


class ScenarioRunner:
    """
    Runs scenarios strictly one request at a time:
    throttle -> scope check -> execute -> classify -> step delay, for every repeat of every step.

    State per scenario: LOADED -> VALIDATING -> EXECUTING -> AGGREGATING -> DONE.
    FAILED is reached from VALIDATING (nothing runnable) and EXECUTING (scope violation).
    """

    def __init__(self, config: RunConfig, scope_guard: ScopeGuard, rate_limiter: RateLimiter,
                 executor: RequestExecutor, classifier: Optional[ResultClassifier] = None,
                 audit: Optional[AuditLog] = None, sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.scope_guard = scope_guard
        self.rate_limiter = rate_limiter
        self.executor = executor
        self.classifier = classifier or ResultClassifier(config.extra_signatures)
        self.audit = audit
        self._sleep = sleep

        self.state = ScenarioState.LOADED
        self.attempts: List[Attempt] = []

    def run(self, scenario: Scenario) -> ScenarioResult:
        self.state = ScenarioState.LOADED
        self.attempts = []

        # 1. Validate
        self.state = ScenarioState.VALIDATING
        runnable = self._runnable_steps(scenario)
        if not runnable:
            self.state = ScenarioState.FAILED
            raise ScenarioValidationError(scenario.source or scenario.name, "scenario has no runnable steps")

        logger.info(f"Executing scenario: {scenario.name} ({len(scenario.steps)} steps)")

        # 2. Execute
        self.state = ScenarioState.EXECUTING
        steps_executed = 0
        try:
            for index, step in runnable:
                self._run_step(scenario, index, step)
                steps_executed += 1
        except ScopeViolationError:
            self.state = ScenarioState.FAILED
            raise

        # 3. Aggregate
        self.state = ScenarioState.AGGREGATING
        counts = OutcomeCounts()
        for attempt in self.attempts:
            counts.add(attempt.outcome)
        verdict = reduce_outcomes(a.outcome for a in self.attempts)

        result = ScenarioResult(
            scenario=scenario.name,
            description=scenario.description,
            status=verdict,
            steps_executed=steps_executed,
            results=counts,
        )

        self.state = ScenarioState.DONE
        log_success(logger, f"Scenario completed: {scenario.name} -> {verdict.value}")
        if self.audit:
            self.audit.log_event("SCENARIO_COMPLETE", {
                "scenario": scenario.name,
                "source": scenario.source,
                "status": verdict.value,
                "steps_executed": steps_executed,
                "results": counts.to_dict(),
            })
        return result

    def _runnable_steps(self, scenario: Scenario):
        runnable = []
        total = len(scenario.steps)
        for index, step in enumerate(scenario.steps, start=1):
            if not step.is_runnable:
                logger.warning(f"Step {index}/{total} has invalid method or path, skipping")
                continue
            if step.repeat == 0:
                logger.warning(f"Step {index}/{total} has repeat=0, skipping")
                continue
            runnable.append((index, step))
        return runnable

    def _run_step(self, scenario: Scenario, index: int, step: Step):
        url = build_url(self.config.target_url, step.path)
        logger.info(f"Step {index}/{len(scenario.steps)}: {step.method} {step.path} (repeat: {step.repeat})")

        for r in range(step.repeat):
            self.rate_limiter.throttle()

            # Re-checked per attempt, never cached
            if not self.scope_guard.check(url):
                raise ScopeViolationError(url, self.scope_guard.pattern)

            status_code, body, record_id = self.executor.execute(
                step.method, url, step.headers, step.body,
                timeout=self.config.timeout,
                context={
                    "scenario": scenario.name,
                    "description": scenario.description,
                    "source": scenario.source,
                    "step": index,
                    "repeat": r,
                    "expect_http_codes": list(step.expect_http_codes),
                },
            )

            outcome = self.classifier.classify(status_code, body, step.expect_http_codes)
            self.attempts.append(Attempt(index, r, status_code, outcome, record_id))
            logger.info(f"Result: {status_code:03d} -> {outcome.value}")

            if step.sleep_ms > 0:
                self._sleep(step.sleep_ms / 1000.0)
