"""Supervisor configuration loaded from YAML."""

import logging
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from workflow_supervision.analysis.models import AnalysisThresholds
from workflow_supervision.exceptions import ConfigError

logger = logging.getLogger(__name__)


class MonitorMode(Enum):
    """When the rule compliance checker runs."""

    ALWAYS = "always"  # continuously, on a timer
    WORKFLOW_ONLY = "workflow-only"  # only on demand


@dataclass
class SupervisorConfig:
    """Configuration for supervisor behavior."""

    mode: MonitorMode = MonitorMode.ALWAYS

    # Timers
    rule_check_interval_seconds: float = 5.0
    reanalyze_interval_seconds: float = 30.0  # 0 disables idle re-analysis
    tail_poll_interval_seconds: float = 0.5

    # Upper bound on any single checker or task queue call
    collaborator_timeout_seconds: float = 10.0

    # Raise on unmapped issue types instead of falling back
    strict_interventions: bool = False

    log_path: Path = Path(".workflow/workflow.jsonl")
    state_path: Path = Path(".workflow/workflow-state.json")

    thresholds: AnalysisThresholds = field(default_factory=AnalysisThresholds)

    @property
    def continuous_monitoring(self) -> bool:
        return self.mode is MonitorMode.ALWAYS


def _positive_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool) and value > 0


def _non_negative_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool) and value >= 0


def _positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


# key -> (validator, converter)
_SUPERVISOR_KEYS = {
    "mode": (lambda v: v in {m.value for m in MonitorMode}, MonitorMode),
    "rule_check_interval_seconds": (_positive_number, float),
    "reanalyze_interval_seconds": (_non_negative_number, float),
    "tail_poll_interval_seconds": (_positive_number, float),
    "collaborator_timeout_seconds": (_positive_number, float),
    "strict_interventions": (lambda v: isinstance(v, bool), bool),
    "log_path": (lambda v: isinstance(v, str) and bool(v), Path),
    "state_path": (lambda v: isinstance(v, str) and bool(v), Path),
}

_INT_THRESHOLDS = {"loop_window", "loop_repeat_bound", "velocity_min_milestones"}


def _validated(section: dict, validators: dict, section_name: str) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for key, raw in section.items():
        if key not in validators:
            logger.warning(
                "Ignoring unknown configuration key", extra={"section": section_name, "key": key}
            )
            continue

        is_valid, convert = validators[key]
        if not is_valid(raw):
            logger.warning(
                "Ignoring invalid configuration value",
                extra={"section": section_name, "key": key, "value": repr(raw)},
            )
            continue

        values[key] = convert(raw)
    return values


def _threshold_validators() -> dict:
    validators = {}
    for f in fields(AnalysisThresholds):
        if f.name in _INT_THRESHOLDS:
            validators[f.name] = (_positive_int, int)
        else:
            validators[f.name] = (_positive_number, float)
    return validators


def parse_config(data: Any) -> SupervisorConfig:
    """Build a configuration from parsed YAML, ignoring invalid values.

    Raises:
        ConfigError: If the document is not a mapping
    """
    if data is None:
        return SupervisorConfig()
    if not isinstance(data, dict):
        raise ConfigError("Configuration root must be a mapping")

    config = SupervisorConfig()

    supervisor = data.get("supervisor") or {}
    if isinstance(supervisor, dict):
        config = replace(config, **_validated(supervisor, _SUPERVISOR_KEYS, "supervisor"))
    else:
        logger.warning("Ignoring non-mapping 'supervisor' section")

    thresholds = data.get("thresholds") or {}
    if isinstance(thresholds, dict):
        overrides = _validated(thresholds, _threshold_validators(), "thresholds")
        config.thresholds = replace(config.thresholds, **overrides)
    else:
        logger.warning("Ignoring non-mapping 'thresholds' section")

    return config


def load_config(path: str | Path | None) -> SupervisorConfig:
    """Load supervisor configuration from a YAML file.

    Args:
        path: Configuration file; None or a missing file yields defaults

    Returns:
        Supervisor configuration

    Raises:
        ConfigError: If the file cannot be parsed
    """
    if path is None:
        return SupervisorConfig()

    config_path = Path(path)
    if not config_path.exists():
        logger.info("Configuration file not found, using defaults", extra={"path": str(config_path)})
        return SupervisorConfig()

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse configuration YAML: {e}") from e

    logger.debug(f"Loaded configuration from {config_path}")
    return parse_config(data)
