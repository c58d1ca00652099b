"""Configuration defaults and override merging for the roster tools.

Every CLI accepts ``--config path.json``; the JSON is deep-merged on top of
``DEFAULT_CONFIG`` so a file only needs to name the keys it changes.
"""

from __future__ import annotations
import copy, json
from pathlib import Path

# =============== CONFIG ==============================================
DEFAULT_CONFIG = {
    # Session setup (clamped into LIMITS when a session is created)
    "DEFAULT_GROUP_COUNT": 2,
    "DEFAULT_MAX_PER_GROUP": 8,
    "LIMITS": {"MIN": 2, "MAX": 20},
    "GROUP_NAME": "Team {n}",

    # Participant attributes
    "SKILL": {"MIN": 1, "MAX": 5, "DEFAULT": 3},
    "UNKNOWN_CATEGORY": "Unknown",

    # Averages closer than this are treated as equal when picking a group
    "SKILL_TIE_THRESHOLD": 0.1,

    # Sheet header detection (lower-case substrings)
    "HEADER_HINTS": {
        "NAME": ["name"],
        "NAME_EXCLUDE": ["team"],
        "CATEGORY": ["gender", "category"],
        "GROUPING": ["team", "unique", "group"],
    },

    # External source
    "SOURCE": {
        "GID": "0",
        "USER_AGENT": "Mozilla/5.0 (RosterSync/1.0)",
        "CACHE_DIR": "sheet_cache",
    },

    # Per-session serialization
    "LOCK_TIMEOUT_SECONDS": 30.0,
    "LOCK_POLL_SECONDS": 0.05,

    # Auto-sync polling
    "AUTO_SYNC_INTERVAL_SECONDS": 30,
}


def deep_update(dst: dict, src: dict) -> dict:
    """Recursively merge ``src`` into ``dst`` (in-place)."""

    for key, value in (src or {}).items():
        if isinstance(value, dict) and isinstance(dst.get(key), dict):
            deep_update(dst[key], value)
        else:
            dst[key] = copy.deepcopy(value)
    return dst


def _validate(cfg: dict) -> None:
    limits = cfg.get("LIMITS") or {}
    if int(limits.get("MIN", 0)) < 1 or int(limits.get("MIN", 0)) > int(limits.get("MAX", 0)):
        raise ValueError("LIMITS must satisfy 1 <= MIN <= MAX")
    skill = cfg.get("SKILL") or {}
    lo, hi, default = int(skill.get("MIN", 0)), int(skill.get("MAX", 0)), int(skill.get("DEFAULT", 0))
    if not (lo <= default <= hi):
        raise ValueError("SKILL must satisfy MIN <= DEFAULT <= MAX")
    if float(cfg.get("SKILL_TIE_THRESHOLD", 0)) < 0:
        raise ValueError("SKILL_TIE_THRESHOLD must be >= 0")


def build_config(overrides: dict | None = None) -> dict:
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    if overrides:
        deep_update(cfg, overrides)
    _validate(cfg)
    return cfg


def load_config(path: Path | None) -> dict:
    """Build a config from an optional JSON overrides file."""
    if path is None:
        return build_config()
    overrides = json.loads(Path(path).read_text(encoding="utf-8"))
    return build_config(overrides)


def clamp(value: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, value))


def clamp_group_setting(value, default: int, cfg: dict | None = None) -> int:
    """Clamp a group count / per-group maximum into the configured LIMITS."""
    cfg = cfg or DEFAULT_CONFIG
    limits = cfg["LIMITS"]
    try:
        v = int(value) if value not in (None, "") else default
    except (TypeError, ValueError):
        v = default
    if v <= 0:
        v = default
    return clamp(v, int(limits["MIN"]), int(limits["MAX"]))
