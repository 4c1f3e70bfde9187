# Copyright (c) Syntropy Systems
"""Configuration management for reprise."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, cast

import yaml
from dotenv import load_dotenv

from reprise.errors import OrchestrationError
from reprise.executor import DEFAULT_TEST_COMMAND
from reprise.models.stats import (
    DEFAULT_CONCURRENCY,
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_SCENARIO_TIMEOUT_MS,
    RunConfiguration,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

VALID_ENVIRONMENTS = ("qa", "uat", "prod")
DEFAULT_ENVIRONMENT = "qa"

# Looked up as <NAME>_<ENV>, e.g. BASE_URL_QA
PER_ENVIRONMENT_KEYS = ("BASE_URL", "USERNAME", "PASSWORD")
SENSITIVE_MARKERS = ("PASSWORD", "API_KEY", "TOKEN", "SECRET")


@dataclass
class RepriseConfig:
    """Configuration for reprise."""

    # Scenarios run at the same time
    concurrency: int = DEFAULT_CONCURRENCY

    # Per-scenario budget, including all retry attempts (milliseconds)
    scenario_timeout_ms: int = DEFAULT_SCENARIO_TIMEOUT_MS

    # Generate-and-execute attempts per scenario
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS

    # Keep going after a scenario fails
    continue_on_failure: bool = True

    # Scenario catalog (JSON or YAML), relative to the project root
    catalog: str = "scenarios.yaml"

    # Where generated tests are written
    output_dir: str = "tests/generated"

    # Where per-scenario test output is saved
    log_dir: str = ".reprise/logs"

    # Test command; {path} is replaced with the generated file
    test_command: list[str] = field(default_factory=lambda: list(DEFAULT_TEST_COMMAND))

    # Generation service endpoint
    generator_url: str = "http://localhost:8000/generate"

    # Kill a single test execution after this many seconds
    execution_timeout: int = 300

    # Grace period before SIGKILL after SIGTERM (seconds)
    kill_grace_period: int = 10

    # Extra ${CONFIG.KEY} values
    placeholders: dict[str, str] = field(default_factory=dict)


def find_reprise_dir(start_path: Path | None = None) -> Path | None:
    """Return the nearest .reprise directory at or above start_path, or None."""
    start = (start_path or Path.cwd()).resolve()
    for directory in (start, *start.parents):
        candidate = directory / ".reprise"
        if candidate.is_dir():
            return candidate
    return None


def get_global_config_dir() -> Path:
    """Per-user fallback for config.yaml."""
    return Path.home() / ".reprise"


def load_config(reprise_dir: Path | None = None) -> RepriseConfig:
    """Load configuration from .reprise/config.yaml or defaults.

    Without reprise_dir, the nearest project .reprise is used, then
    ~/.reprise. Values of the wrong type are ignored, as is a file whose
    top level is not a mapping.
    """
    config = RepriseConfig()

    if reprise_dir is None:
        reprise_dir = find_reprise_dir() or get_global_config_dir()
    config_path = reprise_dir / "config.yaml"
    if not config_path.is_file():
        return config

    with config_path.open() as f:
        raw = cast("object", yaml.safe_load(f))

    if raw is None:
        return config
    if not isinstance(raw, dict):
        logger.warning(
            "Ignoring %s: expected a mapping, got %s", config_path, type(raw).__name__
        )
        return config
    data = cast("dict[str, object]", raw)

    for name in (
        "concurrency",
        "scenario_timeout_ms",
        "retry_attempts",
        "execution_timeout",
        "kill_grace_period",
    ):
        value = data.get(name)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            setattr(config, name, int(value))

    continue_on_failure = data.get("continue_on_failure")
    if isinstance(continue_on_failure, bool):
        config.continue_on_failure = continue_on_failure

    for name in ("catalog", "output_dir", "log_dir", "generator_url"):
        value = data.get(name)
        if isinstance(value, str) and value:
            setattr(config, name, value)

    test_command = data.get("test_command")
    if isinstance(test_command, list) and test_command:
        config.test_command = [str(token) for token in cast("list[object]", test_command)]

    placeholders = data.get("placeholders")
    if isinstance(placeholders, dict):
        config.placeholders = {
            str(key): "" if value is None else str(value)
            for key, value in cast("dict[object, object]", placeholders).items()
        }

    return config


def _positive_int(raw: str | None, default: int) -> int:
    """Parse a positive integer, falling back to default."""
    if raw is None:
        return default
    try:
        value = int(float(raw.strip()))
    except (ValueError, OverflowError):
        return default
    return value if value > 0 else default


def run_configuration(
    config: RepriseConfig | None = None,
    environ: Mapping[str, str] | None = None,
) -> RunConfiguration:
    """Build a RunConfiguration from config defaults and environment overrides.

    Reads CONCURRENCY, SCENARIO_TIMEOUT (ms), RETRY_ATTEMPTS,
    CONTINUE_ON_FAILURE and VERBOSE. Missing, non-numeric or non-positive
    numbers keep the configured value. CONTINUE_ON_FAILURE is false only
    for the literal string "false".
    """
    base = config or RepriseConfig()
    env = os.environ if environ is None else environ

    continue_on_failure = base.continue_on_failure
    if "CONTINUE_ON_FAILURE" in env:
        continue_on_failure = env["CONTINUE_ON_FAILURE"] != "false"

    concurrency = base.concurrency if base.concurrency > 0 else DEFAULT_CONCURRENCY
    timeout_ms = (
        base.scenario_timeout_ms
        if base.scenario_timeout_ms > 0
        else DEFAULT_SCENARIO_TIMEOUT_MS
    )
    attempts = base.retry_attempts if base.retry_attempts > 0 else DEFAULT_RETRY_ATTEMPTS

    return RunConfiguration(
        concurrency=_positive_int(env.get("CONCURRENCY"), concurrency),
        scenario_timeout_ms=_positive_int(env.get("SCENARIO_TIMEOUT"), timeout_ms),
        retry_attempts=_positive_int(env.get("RETRY_ATTEMPTS"), attempts),
        continue_on_failure=continue_on_failure,
        verbose=env.get("VERBOSE") == "true",
    )


def validate_environment(name: str | None) -> str:
    """Return the lower-cased environment name or raise OrchestrationError."""
    if name is None or name == "":
        return DEFAULT_ENVIRONMENT
    env = name.lower()
    if env not in VALID_ENVIRONMENTS:
        msg = f"Invalid environment: {name}"
        raise OrchestrationError(msg, f"Must be one of: {', '.join(VALID_ENVIRONMENTS)}")
    return env


def build_config_map(
    environment: str,
    environ: Mapping[str, str] | None = None,
    extra: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Build the flat map consulted by ${CONFIG.KEY} placeholders.

    Contains ENV, the per-environment keys read from <NAME>_<ENV>,
    OPENAI_API_KEY, and any extra values (which win on conflict). Unset
    variables map to an empty string.
    """
    env = os.environ if environ is None else environ
    suffix = environment.upper()

    values: dict[str, str] = {"ENV": environment}
    for key in PER_ENVIRONMENT_KEYS:
        variable = f"{key}_{suffix}"
        value = env.get(variable)
        if value is None:
            logger.warning("Environment variable %s is not set", variable)
        values[key] = value or ""
    values["OPENAI_API_KEY"] = env.get("OPENAI_API_KEY", "")

    if extra:
        values.update(extra)
    return values


def mask_config_map(values: Mapping[str, str]) -> dict[str, str]:
    """Return a copy safe to log, with secret-looking values replaced."""
    return {
        key: "***" if value and any(marker in key for marker in SENSITIVE_MARKERS) else value
        for key, value in values.items()
    }


def load_env_file(root: Path) -> bool:
    """Load ``<root>/.env`` into the process environment.

    Variables already set in the environment are kept. Returns True if the
    file existed.
    """
    env_path = root / ".env"
    if not env_path.is_file():
        return False
    _ = load_dotenv(env_path, override=False)
    logger.debug("Loaded environment from %s", env_path)
    return True
