from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

import yaml

from .caching import DEFAULT_POSITION_CACHE_SIZE
from .grouping import DEFAULT_RULES, GroupingStrategy, GroupRule, NamePatternGrouping
from .parse_tasks import _Path
from .task_models import PHASES, RepairMode, ZoomLevel


class ConfigError(Exception):
    """Raised when an engine configuration file is invalid."""


@dataclass(frozen=True)
class EngineConfig:
    """Runtime knobs for the layout engine; defaults need no file."""

    repair_mode: RepairMode = RepairMode.STRICT
    default_zoom: ZoomLevel = ZoomLevel.WEEK
    position_cache_size: int = DEFAULT_POSITION_CACHE_SIZE
    row_height: float = 36.0
    grouping_enabled: bool = True
    grouping_rules: tuple[GroupRule, ...] = field(default=DEFAULT_RULES)

    def grouping_strategy(self) -> GroupingStrategy | None:
        if not self.grouping_enabled:
            return None
        return NamePatternGrouping(self.grouping_rules)


def load_config(path: str) -> EngineConfig:
    """Load an EngineConfig from a YAML file at the given path."""

    with open(path, "r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)

    if raw is None:
        return EngineConfig()
    return parse_config(raw)


def parse_config(data: Any) -> EngineConfig:
    path = _Path()
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected mapping at top level")
    _assert_allowed_keys(
        data,
        {"repair_mode", "default_zoom", "position_cache_size", "row_height", "grouping"},
        path,
    )

    defaults = EngineConfig()
    repair_mode = defaults.repair_mode
    if "repair_mode" in data:
        repair_mode = _parse_enum(RepairMode, data["repair_mode"], path.child("repair_mode"))

    default_zoom = defaults.default_zoom
    if "default_zoom" in data:
        default_zoom = _parse_enum(ZoomLevel, data["default_zoom"], path.child("default_zoom"))

    cache_size = defaults.position_cache_size
    if "position_cache_size" in data:
        cache_size = data["position_cache_size"]
        if not isinstance(cache_size, int) or isinstance(cache_size, bool) or cache_size < 1:
            raise ConfigError(f"{path.child('position_cache_size')}: expected positive integer")

    row_height = defaults.row_height
    if "row_height" in data:
        row_height = data["row_height"]
        if not isinstance(row_height, (int, float)) or isinstance(row_height, bool) or row_height <= 0:
            raise ConfigError(f"{path.child('row_height')}: expected positive number")

    grouping_enabled, rules = _parse_grouping(data.get("grouping"), path.child("grouping"))

    return EngineConfig(
        repair_mode=repair_mode,
        default_zoom=default_zoom,
        position_cache_size=cache_size,
        row_height=float(row_height),
        grouping_enabled=grouping_enabled,
        grouping_rules=rules,
    )


def _parse_grouping(data: Any, path: _Path) -> tuple[bool, tuple[GroupRule, ...]]:
    if data is None:
        return True, DEFAULT_RULES
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected mapping for grouping")
    _assert_allowed_keys(data, {"enabled", "rules"}, path)

    enabled = data.get("enabled", True)
    if not isinstance(enabled, bool):
        raise ConfigError(f"{path.child('enabled')}: expected boolean")

    rules_raw = data.get("rules")
    if rules_raw is None:
        return enabled, DEFAULT_RULES
    if not isinstance(rules_raw, list):
        raise ConfigError(f"{path.child('rules')}: expected list")

    rules: list[GroupRule] = []
    for idx, rule_raw in enumerate(rules_raw):
        rules.append(_parse_rule(rule_raw, path.child(f"rules[{idx}]")))
    return enabled, tuple(rules)


def _parse_rule(data: Any, path: _Path) -> GroupRule:
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected mapping for grouping rule")
    _assert_allowed_keys(data, {"pattern", "label", "phase"}, path)
    pattern = _require_str(data, "pattern", path)
    try:
        re.compile(pattern)
    except re.error as exc:
        raise ConfigError(f"{path.child('pattern')}: invalid regular expression ({exc})") from exc
    label = _require_str(data, "label", path)
    phase = data.get("phase", "Planning")
    if phase not in PHASES:
        raise ConfigError(f"{path.child('phase')}: expected one of {list(PHASES)}")
    return GroupRule(pattern=pattern, label=label, phase=phase)


def _parse_enum(enum_type: Any, value: Any, path: _Path) -> Any:
    if isinstance(value, str):
        for member in enum_type:
            if value.lower() == member.value.lower():
                return member
    allowed = [member.value for member in enum_type]
    raise ConfigError(f"{path}: expected one of {allowed}")


def _assert_allowed_keys(data: dict[str, Any], allowed: set[str], path: _Path) -> None:
    extras = sorted(set(data.keys()) - allowed)
    if extras:
        raise ConfigError(f"{path}: unexpected fields {extras}")


def _require_str(data: dict[str, Any], key: str, path: _Path) -> str:
    if key not in data:
        raise ConfigError(f"{path}: missing required field '{key}'")
    value = data[key]
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{path.child(key)}: expected non-empty string")
    return value
