import unittest
from unittest.mock import MagicMock

from uasf.config import RunConfig
from uasf.core.runner import ScenarioRunner, ScenarioState, build_url, reduce_outcomes
from uasf.core.throttler import RateLimiter
from uasf.errors import ScenarioValidationError, ScopeViolationError
from uasf.models import Outcome, Scenario, Step
from uasf.safety_lock import ScopeGuard

B, A, C, I = Outcome.BLOCKED, Outcome.ALLOWED, Outcome.CHALLENGED, Outcome.INCONCLUSIVE


def make_config(**overrides) -> RunConfig:
    values = dict(
        target_url="https://target.test",
        scenario_dir="scenarios",
        output_dir="out",
        evidence_dir="evidence",
        json_output="results.json",
        scope_regex=r"^https://target\.test",
        rps=0,
        timeout=7,
    )
    values.update(overrides)
    return RunConfig(**values)


class TestReduceOutcomes(unittest.TestCase):
    def test_single_leak_dominates(self):
        self.assertEqual(reduce_outcomes([B, A, B]), A)
        self.assertEqual(reduce_outcomes([B] * 50 + [A]), A)

    def test_all_blocked(self):
        self.assertEqual(reduce_outcomes([B, B]), B)

    def test_blocked_with_challenge(self):
        self.assertEqual(reduce_outcomes([B, C]), C)
        self.assertEqual(reduce_outcomes([I, C, B]), C)

    def test_inconclusive(self):
        self.assertEqual(reduce_outcomes([I, I]), I)
        self.assertEqual(reduce_outcomes([B, I]), I)

    def test_empty_is_inconclusive(self):
        self.assertEqual(reduce_outcomes([]), I)


class TestBuildUrl(unittest.TestCase):
    def test_joins_without_double_slash(self):
        self.assertEqual(build_url("https://t.test/", "/a"), "https://t.test/a")
        self.assertEqual(build_url("https://t.test", "/a?x=1"), "https://t.test/a?x=1")
        self.assertEqual(build_url("https://t.test/api", "v1"), "https://t.test/api/v1")
        self.assertEqual(build_url("https://t.test", "?q=1"), "https://t.test?q=1")


class TestScenarioRunner(unittest.TestCase):
    def setUp(self):
        self.config = make_config()
        self.executor = MagicMock()
        self.responses = []
        self.executor.execute.side_effect = self._respond
        self.sleeps = []
        self.limiter = RateLimiter(0)
        self.audit = MagicMock()
        self.runner = ScenarioRunner(
            self.config, ScopeGuard(self.config.scope_regex), self.limiter, self.executor,
            audit=self.audit, sleep=self.sleeps.append,
        )

    def _respond(self, method, url, headers, body, timeout=None, context=None):
        status, text = self.responses.pop(0)
        return status, text, f"rec-{len(self.responses)}"

    def test_end_to_end_blocked(self):
        """GET / expecting [200, 403], repeat 2, target answers 403 twice."""
        self.responses = [(403, "Forbidden"), (403, "Forbidden")]
        scenario = Scenario("Probe", "desc", (Step("GET", "/", expect_http_codes=(200, 403), repeat=2),))

        result = self.runner.run(scenario)

        self.assertEqual(result.status, Outcome.BLOCKED)
        self.assertEqual(result.steps_executed, 1)
        self.assertEqual(result.results.blocked, 2)
        self.assertEqual(result.results.total, 2)
        self.assertEqual(self.runner.state, ScenarioState.DONE)
        self.assertEqual(self.limiter.calls, 2)
        self.assertEqual(result.to_dict()["status"], "BLOCKED")

    def test_execute_arguments_and_context(self):
        self.responses = [(200, "ok")]
        step = Step("POST", "/login", headers={"X-Test": "1"}, body="a=b", expect_http_codes=(401,))
        self.runner.run(Scenario("Login", "d", (step,), source="s/login.json"))

        args, kwargs = self.executor.execute.call_args
        self.assertEqual(args, ("POST", "https://target.test/login", {"X-Test": "1"}, "a=b"))
        self.assertEqual(kwargs["timeout"], 7)
        self.assertEqual(kwargs["context"]["scenario"], "Login")
        self.assertEqual(kwargs["context"]["step"], 1)
        self.assertEqual(kwargs["context"]["repeat"], 0)
        self.assertEqual(kwargs["context"]["expect_http_codes"], [401])

    def test_mixed_steps_leak_wins(self):
        self.responses = [(403, ""), (200, "welcome"), (429, "")]
        scenario = Scenario("Mixed", "d", (
            Step("GET", "/a"),
            Step("GET", "/b", repeat=2),
        ))
        result = self.runner.run(scenario)
        self.assertEqual(result.status, Outcome.ALLOWED)
        self.assertEqual(result.steps_executed, 2)
        self.assertEqual(result.results.to_dict(), {"allowed": 1, "blocked": 1, "challenged": 1, "inconclusive": 0})

    def test_step_delay_after_each_repeat(self):
        self.responses = [(403, "")] * 3
        self.runner.run(Scenario("S", "d", (Step("GET", "/", repeat=3, sleep_ms=250),)))
        self.assertEqual(self.sleeps, [0.25, 0.25, 0.25])

    def test_invalid_steps_skipped_with_warning(self):
        self.responses = [(403, "")]
        scenario = Scenario("S", "d", (
            Step("", "/nope"),
            Step("GET", ""),
            Step("GET", "/ok"),
        ))
        with self.assertLogs("uasf.runner", level="WARNING") as logs:
            result = self.runner.run(scenario)
        self.assertEqual(result.steps_executed, 1)
        self.assertEqual(self.executor.execute.call_count, 1)
        self.assertEqual(len([l for l in logs.output if "invalid method or path" in l]), 2)

    def test_no_runnable_steps_fails_validation(self):
        scenario = Scenario("Empty", "d", (Step("", ""), Step("GET", "/", repeat=0)))
        with self.assertRaises(ScenarioValidationError):
            self.runner.run(scenario)
        self.assertEqual(self.runner.state, ScenarioState.FAILED)
        self.executor.execute.assert_not_called()

    def test_scope_violation_aborts_before_sending(self):
        config = make_config(scope_regex=r"^https://other\.test")
        runner = ScenarioRunner(config, ScopeGuard(config.scope_regex), RateLimiter(0), self.executor,
                                sleep=self.sleeps.append)
        with self.assertLogs("uasf.scope", level="ERROR"):
            with self.assertRaises(ScopeViolationError) as ctx:
                runner.run(Scenario("S", "d", (Step("GET", "/"),)))
        self.assertEqual(ctx.exception.url, "https://target.test/")
        self.assertEqual(runner.state, ScenarioState.FAILED)
        self.executor.execute.assert_not_called()

    def test_scope_checked_before_every_attempt(self):
        guard = MagicMock()
        guard.check.return_value = True
        runner = ScenarioRunner(self.config, guard, RateLimiter(0), self.executor, sleep=self.sleeps.append)
        self.responses = [(403, "")] * 3
        runner.run(Scenario("S", "d", (Step("GET", "/x", repeat=2), Step("GET", "/y"))))
        self.assertEqual([c.args[0] for c in guard.check.call_args_list],
                         ["https://target.test/x", "https://target.test/x", "https://target.test/y"])

    def test_completion_is_audited(self):
        self.responses = [(403, "")]
        self.runner.run(Scenario("S", "d", (Step("GET", "/"),)))
        event, data = self.audit.log_event.call_args.args
        self.assertEqual(event, "SCENARIO_COMPLETE")
        self.assertEqual(data["status"], "BLOCKED")


if __name__ == '__main__':
    unittest.main()
