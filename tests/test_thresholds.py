"""Unit tests for threshold config validation, loading, and resolution."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from src.watchdog.errors import InvalidThresholdsError
from src.watchdog.models import MonitoredUnit, WatchdogThresholdConfig
from src.watchdog.thresholds import DEFAULT_THRESHOLDS, ThresholdResolver, load_threshold_configs

# ---------------------------------------------------------------------------
# Config validation
# ---------------------------------------------------------------------------


class TestThresholdConfigValidation:
    def test_defaults(self) -> None:
        config = WatchdogThresholdConfig()
        assert config.warning_threshold_ms == 300_000
        assert config.stale_threshold_ms == 900_000
        assert config.failure_threshold_ms == 1_800_000
        assert config.heartbeat_interval_ms == 60_000
        assert config.missed_heartbeat_limit == 3
        assert config.max_retries == 3

    def test_thresholds_must_increase(self) -> None:
        with pytest.raises(ValidationError, match="strictly increasing"):
            WatchdogThresholdConfig(warning_threshold_ms=1000, stale_threshold_ms=1000, failure_threshold_ms=5000)

    def test_scoped_config_needs_match(self) -> None:
        with pytest.raises(ValidationError, match="needs a 'match'"):
            WatchdogThresholdConfig(name="p", scope="priority")

    def test_frozen(self) -> None:
        config = WatchdogThresholdConfig()
        with pytest.raises(ValidationError):
            config.max_retries = 9  # type: ignore[misc]

    def test_alerts_for_respects_flags(self) -> None:
        config = WatchdogThresholdConfig(alert_on_warning=False, alert_on_failure=False)
        assert config.alerts_for("warning") is False
        assert config.alerts_for("stale") is True
        assert config.alerts_for("failed") is False

    def test_retry_exhausted_always_alerts(self) -> None:
        config = WatchdogThresholdConfig(alert_on_failure=False)
        assert config.alerts_for("retry_exhausted") is True


# ---------------------------------------------------------------------------
# YAML loading
# ---------------------------------------------------------------------------


class TestLoadThresholdConfigs:
    def test_loads_list(self, tmp_path: Path) -> None:
        path = tmp_path / "thresholds.yaml"
        path.write_text(
            "- name: fast\n"
            "  scope: priority\n"
            "  match: critical\n"
            "  warning_threshold_ms: 1000\n"
            "  stale_threshold_ms: 2000\n"
            "  failure_threshold_ms: 3000\n"
        )

        configs = load_threshold_configs(path)

        assert len(configs) == 1
        assert configs[0].name == "fast"
        assert configs[0].failure_threshold_ms == 3000

    def test_loads_configs_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "thresholds.yaml"
        path.write_text("configs:\n  - name: global\n  - name: builds\n    scope: task_type\n    match: build\n")

        configs = load_threshold_configs(path)

        assert [c.name for c in configs] == ["global", "builds"]

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "thresholds.yaml"
        path.write_text("")
        assert load_threshold_configs(path) == []

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_threshold_configs(tmp_path / "nope.yaml")

    def test_malformed_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "thresholds.yaml"
        path.write_text("- name: [unclosed\n")
        with pytest.raises(InvalidThresholdsError, match="Failed to parse"):
            load_threshold_configs(path)

    def test_invalid_entry_names_index(self, tmp_path: Path) -> None:
        path = tmp_path / "thresholds.yaml"
        path.write_text("- name: ok\n- name: bad\n  warning_threshold_ms: 999999999\n")
        with pytest.raises(InvalidThresholdsError, match="#1"):
            load_threshold_configs(path)

    def test_scalar_top_level_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "thresholds.yaml"
        path.write_text("just a string\n")
        with pytest.raises(InvalidThresholdsError, match="must contain a list"):
            load_threshold_configs(path)


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def _cfg(name: str, scope: str = "global", match: str | None = None) -> WatchdogThresholdConfig:
    return WatchdogThresholdConfig(name=name, scope=scope, match=match)  # type: ignore[arg-type]


class TestThresholdResolver:
    def test_no_configs_uses_builtin_default(self) -> None:
        resolver = ThresholdResolver()
        assert resolver.resolve(MonitoredUnit(unit_id="u1")) is DEFAULT_THRESHOLDS

    def test_task_type_beats_priority(self) -> None:
        resolver = ThresholdResolver(
            [_cfg("global"), _cfg("high", "priority", "high"), _cfg("deploy", "task_type", "deploy")]
        )
        unit = MonitoredUnit(unit_id="u1", priority="high", unit_type="deploy")
        assert resolver.resolve(unit).name == "deploy"

    def test_priority_beats_global(self) -> None:
        resolver = ThresholdResolver([_cfg("global"), _cfg("high", "priority", "high")])
        unit = MonitoredUnit(unit_id="u1", priority="high", unit_type="other")
        assert resolver.resolve(unit).name == "high"

    def test_first_global_wins(self) -> None:
        resolver = ThresholdResolver([_cfg("first"), _cfg("second")])
        assert resolver.resolve(MonitoredUnit(unit_id="u1")).name == "first"

    def test_unmatched_scoped_configs_fall_back_to_default(self) -> None:
        resolver = ThresholdResolver([_cfg("high", "priority", "high")])
        unit = MonitoredUnit(unit_id="u1", priority="low")
        assert resolver.resolve(unit) is DEFAULT_THRESHOLDS

    def test_reload_replaces_configs(self, tmp_path: Path) -> None:
        path = tmp_path / "thresholds.yaml"
        path.write_text("- name: a\n- name: b\n")
        resolver = ThresholdResolver([_cfg("old")])

        assert resolver.reload(path) == 2
        assert [c.name for c in resolver.configs] == ["a", "b"]

    def test_failed_reload_keeps_previous_configs(self, tmp_path: Path) -> None:
        path = tmp_path / "thresholds.yaml"
        path.write_text("- scope: priority\n")
        resolver = ThresholdResolver([_cfg("old")])

        with pytest.raises(InvalidThresholdsError):
            resolver.reload(path)

        assert [c.name for c in resolver.configs] == ["old"]
