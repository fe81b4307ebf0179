import argparse
import datetime
import logging
import os
import signal
import sys
from typing import List, Optional

from . import FRAMEWORK_NAME, __version__
from .config import RunConfig, DEFAULT_RPS, DEFAULT_CONCURRENCY, DEFAULT_TIMEOUT, is_valid_url, prepare_directories
from .core.classifier import ResultClassifier
from .engine import Engine
from .errors import ConfigurationError, RunInterrupted, ScopeViolationError, UASFError
from .forensics import AuditLog, EvidenceStore, iso_timestamp, verify_audit_log
from .logging_utils import configure_logging, log_success
from .reporting import ConsoleReporter, ReportAggregator, write_json, write_markdown
from .safety_lock import origin_of, scope_regex_for

logger = logging.getLogger("uasf.cli")

QUICK_DEFAULT_RPS = 2

EPILOG = """
SCENARIO FORMAT:
    {
        "name": "Scenario Name",
        "description": "Detailed description",
        "steps": [
            {"method": "GET", "path": "/api/endpoint", "headers": {"X-Custom": "value"},
             "body": "", "repeat": 1, "sleep_ms": 0, "expect_http_codes": [200, 403]}
        ]
    }

LEGAL WARNING:
    This tool is designed for AUTHORIZED security testing only.
    Always obtain explicit written permission before testing.
"""


def signal_handler(signum, frame):
    raise RunInterrupted(signum)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="uasf",
        description=f"{FRAMEWORK_NAME} v{__version__} - Universal Attack Simulation Framework",
        epilog=EPILOG,
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("-V", "--version", action="version", version=f"{FRAMEWORK_NAME} v{__version__}")
    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Execute scenarios against an authorized target",
                         epilog=EPILOG, formatter_class=argparse.RawTextHelpFormatter)
    run.add_argument("--target", required=True, help="Target base URL")
    run.add_argument("--scenarios", required=True, help="Directory containing scenario files")
    run.add_argument("--out", required=True, help="Output directory for reports")
    run.add_argument("--evidence", required=True, help="Directory for evidence files")
    run.add_argument("--json", required=True, help="JSON results output file")
    run.add_argument("--scope-regex", required=True, help="Regex every request URL must match")
    _add_tuning_args(run, DEFAULT_RPS)

    quick = sub.add_parser("quick", help="Run with derived scope and timestamped output directories")
    quick.add_argument("target", help="Target base URL")
    quick.add_argument("--scenarios", default="./scenarios", help="Scenario directory (default: ./scenarios)")
    quick.add_argument("--runs-dir", default="./runs", help="Parent directory for run output (default: ./runs)")
    _add_tuning_args(quick, QUICK_DEFAULT_RPS)

    report = sub.add_parser("report", help="Rebuild both reports from an evidence directory")
    report.add_argument("--evidence", required=True, help="Evidence directory of a previous run")
    report.add_argument("--json", required=True, help="JSON results output file")
    report.add_argument("--out", required=True, help="Output directory for summary.md")
    report.add_argument("--target", help="Target base URL (default: derived from the evidence)")
    report.add_argument("--scope-regex", default="", help="Scope regex to cite in the summary")
    report.add_argument("--rps", type=int, default=0, help="Rate limit to cite in the summary")
    report.add_argument("--waf-signature", action="append", default=[], help="Extra WAF body signature")
    report.add_argument("--verbose", action="store_true")

    verify = sub.add_parser("verify-audit", help="Check the hash chain of an audit log")
    verify.add_argument("audit_log", help="Path to audit.log")
    verify.add_argument("--verbose", action="store_true")
    return parser


def _add_tuning_args(p: argparse.ArgumentParser, default_rps: int):
    p.add_argument("--rps", type=int, default=default_rps,
                   help=f"Requests per second limit, 0 = unlimited (default: {default_rps})")
    p.add_argument("--concurrency", type=int, default=DEFAULT_CONCURRENCY,
                   help="Accepted for compatibility; requests always run sequentially")
    p.add_argument("--timeout", type=int, default=DEFAULT_TIMEOUT,
                   help=f"HTTP timeout in seconds (default: {DEFAULT_TIMEOUT})")
    p.add_argument("--waf-signature", action="append", default=[],
                   help="Extra case-insensitive body signature marking a 2xx as CHALLENGED")
    p.add_argument("--verbose", action="store_true", help="Debug logging")


def config_from_args(args) -> RunConfig:
    return RunConfig(
        target_url=args.target,
        scenario_dir=args.scenarios,
        output_dir=args.out,
        evidence_dir=args.evidence,
        json_output=args.json,
        scope_regex=args.scope_regex,
        rps=args.rps,
        concurrency=args.concurrency,
        timeout=args.timeout,
        extra_signatures=tuple(args.waf_signature),
        verbose=args.verbose,
    )


def quick_config(args, now: Optional[datetime.datetime] = None) -> RunConfig:
    """Derives scope and a runs/<timestamp>/ layout from nothing but a target URL."""
    if not is_valid_url(args.target):
        raise ConfigurationError(f"Invalid URL. Must start with http:// or https://: {args.target}")
    stamp = (now or datetime.datetime.now()).strftime("%Y%m%d_%H%M%S")
    run_dir = os.path.join(args.runs_dir, stamp)
    return RunConfig(
        target_url=args.target,
        scenario_dir=args.scenarios,
        output_dir=os.path.join(run_dir, "output"),
        evidence_dir=os.path.join(run_dir, "evidence"),
        json_output=os.path.join(run_dir, "results.json"),
        scope_regex=scope_regex_for(args.target),
        rps=args.rps,
        concurrency=args.concurrency,
        timeout=args.timeout,
        extra_signatures=tuple(args.waf_signature),
        verbose=args.verbose,
    )


def execute(config: RunConfig) -> int:
    config.validate()
    prepare_directories(config)

    logger.info(f"Target: {config.target_url}")
    logger.info(f"Scenarios: {config.scenario_dir}")
    logger.info(f"Output: {config.output_dir}")
    logger.info(f"Evidence: {config.evidence_dir}")
    logger.info(f"Scope Regex: {config.scope_regex}")
    logger.info(f"RPS Limit: {config.rps}")
    logger.info(f"Timeout: {config.timeout}s")

    audit = AuditLog(config.audit_path)
    logger.info(f"Audit log initialized: {audit.log_file}")

    engine = Engine(config, audit=audit)
    try:
        report = engine.run()
    finally:
        engine.close()

    ConsoleReporter().print_summary(report)
    return 0


def cmd_quick(args) -> int:
    config = quick_config(args)
    code = execute(config)
    if code == 0:
        log_success(logger, "Scan completed successfully!")
        logger.info(f"Summary:  {config.summary_path}")
        logger.info(f"JSON:     {config.json_output}")
        logger.info(f"Evidence: {config.evidence_dir}")
        logger.info(f"Audit:    {config.audit_path}")
    return code


def cmd_report(args) -> int:
    if not os.path.isdir(args.evidence):
        raise ConfigurationError(f"Evidence directory not found: {args.evidence}")
    os.makedirs(args.out, exist_ok=True)

    evidence = EvidenceStore(args.evidence)
    aggregator = ReportAggregator(evidence)

    results = aggregator.recover(ResultClassifier(args.waf_signature))

    target = args.target or _target_from_evidence(evidence)
    report = aggregator.build(results, {
        "target": target,
        "timestamp": iso_timestamp(),
        "scope_regex": args.scope_regex,
        "rps": args.rps,
    })
    write_json(report, args.json)
    write_markdown(report, os.path.join(args.out, "summary.md"))
    ConsoleReporter().print_summary(report)
    return 0


def _target_from_evidence(evidence: EvidenceStore) -> str:
    for record in evidence.iter_records():
        url = record.request.get("url", "")
        try:
            return origin_of(url)
        except ConfigurationError:
            continue
    return ""


def cmd_verify_audit(args) -> int:
    if not os.path.isfile(args.audit_log):
        raise ConfigurationError(f"Audit log not found: {args.audit_log}")
    bad_line = verify_audit_log(args.audit_log)
    if bad_line is None:
        log_success(logger, f"Audit chain intact: {args.audit_log}")
        return 0
    logger.error(f"Audit chain broken at line {bad_line}: {args.audit_log}")
    return 1


COMMANDS = {
    "run": lambda args: execute(config_from_args(args)),
    "quick": cmd_quick,
    "report": cmd_report,
    "verify-audit": cmd_verify_audit,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    configure_logging(verbose=getattr(args, "verbose", False))
    logger.info(f"Starting {FRAMEWORK_NAME} v{__version__}")

    signal.signal(signal.SIGTERM, signal_handler)

    try:
        return COMMANDS[args.command](args)
    except RunInterrupted as e:
        logger.warning(f"Execution interrupted (exit code: {e.exit_code})")
        return e.exit_code
    except KeyboardInterrupt:
        logger.warning("Execution interrupted (exit code: 130)")
        return RunInterrupted(signal.SIGINT).exit_code
    except ScopeViolationError as e:
        logger.critical(f"{e}. Run aborted, no reports written.")
        return 1
    except UASFError as e:
        logger.critical(str(e))
        return 1


def entrypoint():
    sys.exit(main())


if __name__ == "__main__":
    entrypoint()
