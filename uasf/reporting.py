import json
import logging
from collections import OrderedDict
from typing import List, Dict, Any, Optional, Sequence
from colorama import Fore, Style

from . import FRAMEWORK_NAME, __version__
from .core.classifier import ResultClassifier
from .core.runner import reduce_outcomes
from .forensics import EvidenceStore, iso_timestamp
from .logging_utils import log_success
from .models import Outcome, OutcomeCounts, RunReport, ScenarioResult

logger = logging.getLogger("uasf.reporting")

CLASSIFICATION_LEGEND = (
    (Outcome.BLOCKED, "Attack detected and prevented by WAF/WAAP"),
    (Outcome.ALLOWED, "Attack reached application without intervention"),
    (Outcome.CHALLENGED, "Rate limiting or CAPTCHA presented"),
    (Outcome.INCONCLUSIVE, "Unexpected response or timeout"),
)


class ReportAggregator:
    """
    Reduces scenario verdicts into a RunReport and serializes it twice:
    a structured JSON report and a narrative Markdown summary.

    The request total is always a fresh count of response records in the
    evidence directory, never an in-memory counter, so a report written after
    an interrupted run reflects exactly what was sent.
    """

    def __init__(self, evidence: EvidenceStore):
        self.evidence = evidence

    def build(self, scenario_results: Sequence[ScenarioResult], metadata: Dict[str, Any]) -> RunReport:
        results = list(scenario_results)
        return RunReport(
            framework=FRAMEWORK_NAME,
            version=__version__,
            target=metadata.get("target", ""),
            timestamp=metadata.get("timestamp") or iso_timestamp(),
            total_scenarios=len(results),
            total_requests=self.evidence.count_responses(),
            results=results,
            scope_regex=metadata.get("scope_regex", ""),
            rps=metadata.get("rps", 0),
            evidence_dir=self.evidence.directory,
            evidence_files=self.evidence.count_files(),
            skipped_scenarios=metadata.get("skipped_scenarios", 0),
            audit_hash=metadata.get("audit_hash"),
        )

    def recover(self, classifier: Optional[ResultClassifier] = None) -> List[ScenarioResult]:
        """
        Rebuilds scenario results from evidence records alone.

        Attempts are grouped by the scenario context stored with each request and
        re-classified from the stored response. A request without a response record
        (the process died mid-flight) counts as INCONCLUSIVE. Scenario order follows
        the first request each scenario issued.
        """
        classifier = classifier or ResultClassifier()
        groups: "OrderedDict[tuple, Dict[str, Any]]" = OrderedDict()

        for record in self.evidence.iter_records():
            ctx = record.context
            if not ctx.get("scenario"):
                logger.debug(f"Evidence record {record.record_id} has no scenario context, ignored")
                continue

            key = (ctx.get("source", ""), ctx["scenario"])
            group = groups.setdefault(key, {
                "description": ctx.get("description", ""),
                "steps": set(),
                "outcomes": [],
            })
            group["steps"].add(ctx.get("step"))

            if record.response is None:
                outcome = Outcome.INCONCLUSIVE
            else:
                outcome = classifier.classify(
                    record.response.get("status_code", 0),
                    record.response.get("body", ""),
                    ctx.get("expect_http_codes") or (),
                )
            group["outcomes"].append(outcome)

        recovered = []
        for (_, name), group in groups.items():
            counts = OutcomeCounts()
            for outcome in group["outcomes"]:
                counts.add(outcome)
            recovered.append(ScenarioResult(
                scenario=name,
                description=group["description"],
                status=reduce_outcomes(group["outcomes"]),
                steps_executed=len(group["steps"]),
                results=counts,
            ))
        return recovered


def render_json(report: RunReport) -> str:
    return json.dumps(report.to_dict(), indent=2)


def write_json(report: RunReport, path: str) -> str:
    with open(path, "w", encoding="utf-8") as f:
        f.write(render_json(report) + "\n")
    log_success(logger, f"JSON report saved: {path}")
    return path


def render_markdown(report: RunReport) -> str:
    lines: List[str] = [
        f"# {report.framework} Attack Simulation Summary",
        "",
        f"**Framework**: {report.framework} v{report.version}",
        f"**Target**: {report.target}",
        f"**Timestamp**: {report.timestamp}",
        f"**Total Scenarios**: {report.total_scenarios}",
        f"**Total Requests**: {report.total_requests}",
    ]
    if report.skipped_scenarios:
        lines.append(f"**Skipped Scenarios**: {report.skipped_scenarios}")
    lines += ["", "---", "", "## Executive Summary", ""]

    for outcome in (Outcome.ALLOWED, Outcome.BLOCKED, Outcome.CHALLENGED, Outcome.INCONCLUSIVE):
        lines.append(f"- **{outcome.value}**: {report.count(outcome)} scenarios")
    lines.append("")

    if report.effectiveness is not None:
        lines += [f"**Security Control Effectiveness**: {report.effectiveness:.1f}%", ""]

    lines += ["---", "", "## Scenario Results", ""]

    for r in report.results:
        c = r.results
        lines += [
            f"### {r.scenario}",
            "",
            f"**Description**: {r.description}",
            "",
            f"**Final Status**: `{r.status.value}`",
            "",
            f"**Steps Executed**: {r.steps_executed}",
            "",
            "**Breakdown**:",
            f"- Allowed: {c.allowed}",
            f"- Blocked: {c.blocked}",
            f"- Challenged: {c.challenged}",
            f"- Inconclusive: {c.inconclusive}",
            "",
            "---",
            "",
        ]

    lines += [
        "## Evidence Files",
        "",
        f"All request/response evidence stored in: `{report.evidence_dir}`",
        "",
        f"Total evidence files: {report.evidence_files}",
        "",
    ]
    if report.audit_hash:
        lines += [f"Audit log chain hash: `{report.audit_hash}`", ""]

    lines += [
        "---",
        "",
        "## Methodology",
        "",
        f"This assessment used the {report.framework} (Universal Attack Simulation Framework) to execute",
        "controlled, safe attack scenarios against the target application. Each scenario",
        "simulates a realistic Red Team attack chain to validate security controls.",
        "",
        "**Classification**:",
    ]
    lines += [f"- **{outcome.value}**: {text}" for outcome, text in CLASSIFICATION_LEGEND]
    lines += [
        "",
        f"**Scope**: All requests enforced within regex: `{report.scope_regex}`",
        "",
        f"**Rate Limit**: {report.rps} requests/second" if report.rps else "**Rate Limit**: unlimited",
        "",
        "---",
        "",
        f"*Generated by {report.framework} v{report.version}*",
    ]
    return "\n".join(lines) + "\n"


def write_markdown(report: RunReport, path: str) -> str:
    with open(path, "w", encoding="utf-8") as f:
        f.write(render_markdown(report))
    log_success(logger, f"Markdown summary saved: {path}")
    return path


STATUS_COLORS = {
    Outcome.BLOCKED: Fore.GREEN,
    Outcome.CHALLENGED: Fore.YELLOW,
    Outcome.ALLOWED: Fore.RED,
    Outcome.INCONCLUSIVE: Style.DIM,
}


class ConsoleReporter:
    def print_summary(self, report: RunReport, stream=None):
        def out(text=""):
            print(text, file=stream)

        out("\n" + "=" * 60)
        out(f"{report.framework} ATTACK SIMULATION SUMMARY")
        out("=" * 60)
        out(f"Target:          {report.target}")
        out(f"Total scenarios: {report.total_scenarios}")
        out(f"Total requests:  {report.total_requests}")
        for outcome in (Outcome.BLOCKED, Outcome.CHALLENGED, Outcome.ALLOWED, Outcome.INCONCLUSIVE):
            out(f"{outcome.value + ':':<16} {STATUS_COLORS[outcome]}{report.count(outcome)}{Style.RESET_ALL}")
        if report.effectiveness is not None:
            out(f"Effectiveness:   {report.effectiveness:.1f}%")

        if report.results:
            out("\nScenario Results:")
            for r in report.results:
                out(f"  {STATUS_COLORS[r.status]}[{r.status.value}]{Style.RESET_ALL} {r.scenario}")

        allowed = [r for r in report.results if r.status == Outcome.ALLOWED]
        if allowed:
            out(f"\n{Fore.RED}[!] {len(allowed)} scenario(s) reached the application without intervention.{Style.RESET_ALL}")
        out("=" * 60 + "\n")
