import os
import json
import logging
import yaml
from typing import Dict, Any, List

from .models import Scenario, Step
from .errors import ScenarioValidationError

logger = logging.getLogger("uasf.scenarios")

SCENARIO_EXTENSIONS = (".json", ".yaml", ".yml")

STEP_DEFAULTS: Dict[str, Any] = {
    "method": "GET",
    "path": "/",
    "headers": {},
    "body": "",
    "repeat": 1,
    "sleep_ms": 0,
    "expect_http_codes": [],
}


def discover_scenarios(directory: str) -> List[str]:
    """Returns every scenario file below directory, sorted lexically by path."""
    found = []
    for root, _, files in os.walk(directory):
        for name in files:
            if name.lower().endswith(SCENARIO_EXTENSIONS):
                found.append(os.path.join(root, name))
    return sorted(found)


def load_scenario(path: str) -> Scenario:
    """
    Parses and validates one scenario file.
    JSON is the documented format; .yaml and .yml files go through PyYAML.
    Raises ScenarioValidationError for anything that cannot run.
    """
    if not os.path.isfile(path) or not os.access(path, os.R_OK):
        raise ScenarioValidationError(path, "scenario file not readable")

    try:
        with open(path, "r", encoding="utf-8") as f:
            if path.lower().endswith(".json"):
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (ValueError, yaml.YAMLError) as e:
        raise ScenarioValidationError(path, f"malformed scenario file: {e}") from e

    if not isinstance(data, dict):
        raise ScenarioValidationError(path, "invalid scenario schema (expected an object)")

    for key in ("name", "description", "steps"):
        if data.get(key) is None:
            raise ScenarioValidationError(path, "invalid scenario schema (missing name/description/steps)")

    name, description, raw_steps = data["name"], data["description"], data["steps"]
    if not isinstance(name, str) or not isinstance(description, str):
        raise ScenarioValidationError(path, "name and description must be strings")
    if not isinstance(raw_steps, list):
        raise ScenarioValidationError(path, "steps must be a list")
    if not raw_steps:
        raise ScenarioValidationError(path, "scenario has no steps")

    steps = tuple(parse_step(path, idx, raw) for idx, raw in enumerate(raw_steps, start=1))
    logger.debug(f"Loaded scenario {name!r} ({len(steps)} steps) from {path}")
    return Scenario(name=name, description=description, steps=steps, source=path)


def parse_step(path: str, index: int, raw: Any) -> Step:
    if not isinstance(raw, dict):
        raise ScenarioValidationError(path, f"step {index} must be an object")

    # A null field falls back to its default, like a missing one
    values = {key: (raw.get(key) if raw.get(key) is not None else default)
              for key, default in STEP_DEFAULTS.items()}

    def fail(msg: str):
        raise ScenarioValidationError(path, f"step {index}: {msg}")

    if not isinstance(values["method"], str):
        fail("method must be a string")
    if not isinstance(values["path"], str):
        fail("path must be a string")

    headers = values["headers"]
    if not isinstance(headers, dict):
        fail("headers must be an object")
    headers = {str(k): str(v) for k, v in headers.items()}

    body = values["body"]
    if not isinstance(body, str):
        fail("body must be a string")

    for key in ("repeat", "sleep_ms"):
        if isinstance(values[key], bool) or not isinstance(values[key], int) or values[key] < 0:
            fail(f"{key} must be a non-negative integer")

    codes = values["expect_http_codes"]
    if not isinstance(codes, list) or any(isinstance(c, bool) or not isinstance(c, int) for c in codes):
        fail("expect_http_codes must be a list of integers")

    return Step(
        method=values["method"].strip().upper(),
        path=values["path"].strip(),
        headers=headers,
        body=body,
        repeat=values["repeat"],
        sleep_ms=values["sleep_ms"],
        expect_http_codes=tuple(codes),
    )
