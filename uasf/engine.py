import logging
from typing import List, Optional

from .config import RunConfig
from .core.classifier import ResultClassifier
from .core.runner import ScenarioRunner
from .core.throttler import RateLimiter
from .errors import ConfigurationError, RunInterrupted, ScenarioValidationError, ScopeViolationError
from .forensics import AuditLog, EvidenceStore, iso_timestamp
from .http_client import RequestExecutor
from .logging_utils import log_success
from .models import RunReport, ScenarioResult
from .reporting import ReportAggregator, write_json, write_markdown
from .safety_lock import ScopeGuard
from .scenarios import discover_scenarios, load_scenario

logger = logging.getLogger("uasf.engine")


class Engine:
    """
    Runs every discovered scenario in lexical order, one at a time.

    Scenario validation errors are isolated: the scenario is skipped and the run
    continues. A scope violation aborts the run with no reports. An interruption
    writes best-effort partial reports before it propagates.
    """

    def __init__(self, config: RunConfig, audit: Optional[AuditLog] = None,
                 executor: Optional[RequestExecutor] = None,
                 rate_limiter: Optional[RateLimiter] = None):
        self.config = config
        self.audit = audit or AuditLog(config.audit_path)
        self.evidence = executor.evidence if executor else EvidenceStore(config.evidence_dir)
        self.executor = executor or RequestExecutor(self.evidence, timeout=config.timeout)
        self.scope_guard = ScopeGuard(config.scope_regex, audit=self.audit)
        self.rate_limiter = rate_limiter or RateLimiter(config.rps)
        self.classifier = ResultClassifier(config.extra_signatures)
        self.runner = ScenarioRunner(
            config, self.scope_guard, self.rate_limiter, self.executor,
            classifier=self.classifier, audit=self.audit,
        )
        self.aggregator = ReportAggregator(self.evidence)

        self.results: List[ScenarioResult] = []
        self.skipped: List[str] = []

    def run(self) -> RunReport:
        cfg = self.config
        self.audit.log_event("RUN_START", {
            "target": cfg.target_url,
            "scenarios": cfg.scenario_dir,
            "output": cfg.output_dir,
            "evidence": cfg.evidence_dir,
            "scope_regex": cfg.scope_regex,
            "rps": cfg.rps,
            "concurrency": cfg.concurrency,
            "timeout": cfg.timeout,
        })

        if cfg.concurrency > 1:
            logger.warning(f"Concurrency {cfg.concurrency} requested; requests always run sequentially")

        files = discover_scenarios(cfg.scenario_dir)
        if not files:
            raise ConfigurationError(f"No scenario files found in: {cfg.scenario_dir}")

        logger.info(f"Found {len(files)} scenario(s)")
        self.audit.log_event("SCENARIOS_FOUND", {"count": len(files)})

        try:
            for path in files:
                self._run_file(path)
        except ScopeViolationError as e:
            self.audit.log_event("RUN_ABORTED", {"reason": str(e)})
            raise
        except (KeyboardInterrupt, RunInterrupted) as e:
            interrupted = e if isinstance(e, RunInterrupted) else RunInterrupted()
            self.finalize_partial(interrupted)
            raise interrupted from None

        logger.info("Generating reports...")
        self.audit.log_event("GENERATING_REPORTS")
        report = self.write_reports()

        self.audit.log_event("RUN_COMPLETE", {"scenarios": report.total_scenarios, "requests": report.total_requests})
        log_success(logger, "Execution complete!")
        logger.info(f"Total scenarios: {report.total_scenarios}")
        logger.info(f"Total requests: {report.total_requests}")
        logger.info(f"Results: {cfg.json_output}")
        logger.info(f"Summary: {cfg.summary_path}")
        logger.info(f"Evidence: {cfg.evidence_dir}")
        return report

    def _run_file(self, path: str):
        logger.info(f"Loading scenario: {path}")
        try:
            scenario = load_scenario(path)
            result = self.runner.run(scenario)
        except ScenarioValidationError as e:
            logger.error(f"Skipping invalid scenario: {e}")
            self.audit.log_event("SCENARIO_FAILED_VALIDATION", {"file": path, "reason": e.reason})
            self.skipped.append(path)
            return
        self.results.append(result)

    def write_reports(self, partial: bool = False) -> RunReport:
        seal = self.audit.seal({
            "partial": partial,
            "scenarios": len(self.results),
            "requests": self.evidence.count_responses(),
        })
        report = self.aggregator.build(self.results, {
            "target": self.config.target_url,
            "timestamp": iso_timestamp(),
            "scope_regex": self.config.scope_regex,
            "rps": self.config.rps,
            "skipped_scenarios": len(self.skipped),
            "audit_hash": seal["final_hash"],
        })
        write_json(report, self.config.json_output)
        self.audit.log_event("REPORT_GENERATED", {"format": "json", "path": self.config.json_output,
                                                  "requests": report.total_requests})
        write_markdown(report, self.config.summary_path)
        self.audit.log_event("REPORT_GENERATED", {"format": "markdown", "path": self.config.summary_path})
        return report

    def finalize_partial(self, interrupted: RunInterrupted) -> Optional[RunReport]:
        """
        Best effort: recount requests from disk and write both reports from whatever
        results exist. Never raises, so the original interruption stays visible.
        """
        logger.warning(f"Execution interrupted (signal {interrupted.signum})")
        self.audit.log_event("INTERRUPTED", {"signal": interrupted.signum, "exit_code": interrupted.exit_code})

        if not self.results:
            logger.info("No completed scenarios, skipping partial reports")
            return None

        logger.info("Attempting to save partial results...")
        try:
            return self.write_reports(partial=True)
        except Exception as e:
            logger.error(f"Partial report generation failed: {e}")
            return None

    def close(self):
        self.executor.close()
