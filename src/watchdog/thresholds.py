"""Threshold registry and resolver.

Configs are loaded from an optional YAML file (a list of mappings, or a mapping
with a ``configs`` list) and validated as WatchdogThresholdConfig models.
Resolution order for a unit: task_type match > priority match > first global
config > built-in DEFAULT_THRESHOLDS. The resolver never raises for a missing
match, so the engine always has a policy to apply.
"""

import logging
from pathlib import Path
from typing import Any

import yaml

from src.watchdog.errors import InvalidThresholdsError
from src.watchdog.models import MonitoredUnit, WatchdogThresholdConfig

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLDS = WatchdogThresholdConfig(name="builtin-default")


def load_threshold_configs(path: str | Path) -> list[WatchdogThresholdConfig]:
    """Load and validate threshold configs from a YAML file.

    Args:
        path: YAML file path.

    Returns:
        Configs in file order (order matters for tie-breaking).

    Raises:
        FileNotFoundError: If the file doesn't exist.
        InvalidThresholdsError: If the YAML is malformed or a config fails validation.
    """
    file_path = Path(path)
    if not file_path.is_file():
        msg = f"Threshold config file not found: {file_path}"
        raise FileNotFoundError(msg)

    try:
        raw: Any = yaml.safe_load(file_path.read_text())
    except yaml.YAMLError as exc:
        msg = f"Failed to parse {file_path.name}: {exc}"
        raise InvalidThresholdsError(msg) from exc

    if raw is None:
        return []
    if isinstance(raw, dict):
        raw = raw.get("configs", [])
    if not isinstance(raw, list):
        msg = f"{file_path.name} must contain a list of threshold configs"
        raise InvalidThresholdsError(msg)

    configs: list[WatchdogThresholdConfig] = []
    for index, entry in enumerate(raw):
        try:
            configs.append(WatchdogThresholdConfig.model_validate(entry))
        except Exception as exc:
            msg = f"Invalid threshold config #{index} in {file_path.name}: {exc}"
            raise InvalidThresholdsError(msg) from exc
    return configs


class ThresholdResolver:
    """Resolve the applicable WatchdogThresholdConfig for a unit.

    The active config set is an immutable tuple replaced wholesale by
    ``replace``; a scan that already started keeps the tuple it read.
    """

    def __init__(self, configs: list[WatchdogThresholdConfig] | None = None) -> None:
        self._configs: tuple[WatchdogThresholdConfig, ...] = tuple(configs or ())

    @property
    def configs(self) -> tuple[WatchdogThresholdConfig, ...]:
        return self._configs

    def replace(self, configs: list[WatchdogThresholdConfig]) -> None:
        self._configs = tuple(configs)
        logger.info("Threshold registry updated: %d configs", len(self._configs))

    def reload(self, path: str | Path) -> int:
        """Re-read configs from ``path``; the previous set stays active on failure."""
        configs = load_threshold_configs(path)
        self.replace(configs)
        return len(configs)

    def resolve(self, unit: MonitoredUnit) -> WatchdogThresholdConfig:
        configs = self._configs
        if unit.unit_type:
            for config in configs:
                if config.scope == "task_type" and config.match == unit.unit_type:
                    return config
        if unit.priority:
            for config in configs:
                if config.scope == "priority" and config.match == unit.priority:
                    return config
        for config in configs:
            if config.scope == "global":
                return config
        return DEFAULT_THRESHOLDS
