import argparse
import datetime
import io
import json
import os
import shutil
import tempfile
import unittest
from contextlib import redirect_stdout
from unittest.mock import patch

from stub_target import StubTarget
from uasf.cli import build_parser, main, quick_config
from uasf.errors import ConfigurationError

LOOPBACK = {"NO_PROXY": "127.0.0.1,localhost", "no_proxy": "127.0.0.1,localhost"}


class TestQuickConfig(unittest.TestCase):
    def args(self, target):
        return argparse.Namespace(target=target, scenarios="./scenarios", runs_dir="runs", rps=2,
                                  concurrency=1, timeout=30, waf_signature=["cf-ray"], verbose=False)

    def test_derives_scope_and_layout(self):
        config = quick_config(self.args("https://app.example.com/shop"),
                              now=datetime.datetime(2026, 3, 1, 9, 30, 0))
        run_dir = os.path.join("runs", "20260301_093000")
        self.assertEqual(config.output_dir, os.path.join(run_dir, "output"))
        self.assertEqual(config.evidence_dir, os.path.join(run_dir, "evidence"))
        self.assertEqual(config.json_output, os.path.join(run_dir, "results.json"))
        self.assertEqual(config.scope_regex, r"^https://app\.example\.com(?=[/?#]|$)")
        self.assertEqual(config.rps, 2)
        self.assertEqual(config.extra_signatures, ("cf-ray",))

    def test_rejects_non_http_target(self):
        with self.assertRaises(ConfigurationError):
            quick_config(self.args("app.example.com"))

    def test_parser_defaults(self):
        args = build_parser().parse_args(["quick", "https://app.example.com"])
        self.assertEqual((args.scenarios, args.runs_dir, args.rps), ("./scenarios", "./runs", 2))
        args = build_parser().parse_args(["run", "--target", "t", "--scenarios", "s", "--out", "o",
                                          "--evidence", "e", "--json", "j", "--scope-regex", "r"])
        self.assertEqual((args.rps, args.concurrency, args.timeout), (5, 1, 30))


class TestMain(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.scenarios = os.path.join(self.tmp, "scenarios")
        os.makedirs(self.scenarios)
        with open(os.path.join(self.scenarios, "01_probe.json"), "w") as f:
            json.dump({"name": "Probe", "description": "d",
                       "steps": [{"path": "/admin", "repeat": 2, "expect_http_codes": [403]}]}, f)

    def tearDown(self):
        shutil.rmtree(self.tmp)

    def path(self, *parts):
        return os.path.join(self.tmp, *parts)

    def run_main(self, argv):
        with redirect_stdout(io.StringIO()):
            return main(argv)

    def run_args(self, target):
        return ["run", "--target", target, "--scenarios", self.scenarios, "--out", self.path("out"),
                "--evidence", self.path("evidence"), "--json", self.path("results.json"),
                "--scope-regex", "^" + target.replace(".", r"\."), "--rps", "0"]

    @patch.dict(os.environ, LOOPBACK)
    def test_run_then_rebuild_and_verify(self):
        with StubTarget({"/admin": (403, "Forbidden")}) as target:
            self.assertEqual(self.run_main(self.run_args(target.base_url)), 0)

        with open(self.path("results.json")) as f:
            original = json.load(f)
        self.assertEqual(original["total_requests"], 2)
        self.assertEqual(original["results"][0]["status"], "BLOCKED")

        code = self.run_main(["report", "--evidence", self.path("evidence"),
                              "--json", self.path("rebuilt.json"), "--out", self.path("rebuilt")])
        self.assertEqual(code, 0)
        with open(self.path("rebuilt.json")) as f:
            rebuilt = json.load(f)
        self.assertEqual(rebuilt["target"], target.base_url)
        self.assertEqual(rebuilt["results"], original["results"])
        self.assertTrue(os.path.exists(self.path("rebuilt", "summary.md")))

        self.assertEqual(self.run_main(["verify-audit", self.path("out", "audit.log")]), 0)
        with open(self.path("out", "audit.log"), "a") as f:
            f.write('{"type": "FORGED"}\n')
        self.assertEqual(self.run_main(["verify-audit", self.path("out", "audit.log")]), 1)

    def test_configuration_errors_exit_1(self):
        argv = self.run_args("ftp://example.com")
        self.assertEqual(self.run_main(argv), 1)
        self.assertEqual(self.run_main(["verify-audit", self.path("missing.log")]), 1)

    def test_scope_violation_exits_1_without_reports(self):
        argv = self.run_args("http://127.0.0.1:9")
        argv[argv.index("--scope-regex") + 1] = r"^https://authorized\.test"
        self.assertEqual(self.run_main(argv), 1)
        self.assertFalse(os.path.exists(self.path("results.json")))

    def test_missing_required_flag_is_usage_error(self):
        with patch("sys.stderr", new=io.StringIO()):
            with self.assertRaises(SystemExit) as ctx:
                main(["run", "--target", "https://t.test"])
        self.assertEqual(ctx.exception.code, 2)

    def test_no_command_prints_help(self):
        out = io.StringIO()
        with redirect_stdout(out):
            self.assertEqual(main([]), 0)
        self.assertIn("usage:", out.getvalue())


if __name__ == '__main__':
    unittest.main()
