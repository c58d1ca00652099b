"""Data model shared by the assignment, sync and lifecycle tools."""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

from roster_config import DEFAULT_CONFIG, clamp


class Status(str, Enum):
    ACTIVE = "ACTIVE"
    OVERFLOW = "OVERFLOW"
    EXCLUDED = "EXCLUDED"


# ------------------------ Errors --------------------------------------

class RosterError(Exception):
    """Base class for failures surfaced to the caller."""


class RosterSourceError(RosterError):
    """The external sheet could not be fetched or has no usable name column."""


class CapacityConflictError(RosterError):
    """A manual move targets a group that is already full."""


class NotFoundError(RosterError):
    """Unknown participant, group or session."""


class InvalidTransitionError(RosterError):
    """A status change outside the lifecycle state machine, or a write that breaks an invariant."""


class SessionBusyError(RosterError):
    """Another pass holds the session lock."""


# ------------------------ Model types --------------------------------

@dataclass
class Participant:
    id: str
    name: str
    position: int
    category: str = DEFAULT_CONFIG["UNKNOWN_CATEGORY"]
    skill: int = DEFAULT_CONFIG["SKILL"]["DEFAULT"]
    grouping_key: Optional[str] = None
    status: Status = Status.ACTIVE
    group_id: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == Status.ACTIVE


@dataclass
class Group:
    id: str
    name: str
    order: int


@dataclass
class Session:
    id: str
    name: str
    group_count: int
    max_per_group: int
    source: str = ""
    auto_sync: bool = False
    groups: List[Group] = field(default_factory=list)

    @property
    def session_cap(self) -> int:
        return self.group_count * self.max_per_group

    def ordered_groups(self) -> List[Group]:
        return sorted(self.groups, key=lambda g: g.order)

    def group(self, group_id: str) -> Group:
        for g in self.groups:
            if g.id == group_id:
                return g
        raise NotFoundError(f"Group '{group_id}' not found in session '{self.id}'")


# ------------------------ Helpers -------------------------------------

def trim(s: Optional[str]) -> str:
    return (s or "").strip()


def normalize_skill(value, cfg: dict | None = None) -> int:
    """Clamp a skill score into the configured range; blanks become the default."""
    skill_cfg = (cfg or DEFAULT_CONFIG)["SKILL"]
    try:
        v = int(str(value).strip()) if trim(str(value)) not in ("", "None") else 0
    except (TypeError, ValueError):
        v = 0
    if v == 0:
        v = int(skill_cfg["DEFAULT"])
    return clamp(v, int(skill_cfg["MIN"]), int(skill_cfg["MAX"]))


def normalize_grouping_key(value: Optional[str]) -> Optional[str]:
    key = trim(value)
    return key or None


def by_position(participants: Iterable[Participant]) -> List[Participant]:
    return sorted(participants, key=lambda p: (p.position, p.id))


def index_by_id(participants: Iterable[Participant]) -> Dict[str, Participant]:
    return {p.id: p for p in participants}


def find_participant(participants: Iterable[Participant], participant_id: str) -> Participant:
    for p in participants:
        if p.id == participant_id:
            return p
    raise NotFoundError(f"Participant '{participant_id}' not found")


def count_status(participants: Iterable[Participant], status: Status) -> int:
    return sum(1 for p in participants if p.status == status)


def next_participant_id(existing_ids: Iterable[str]) -> str:
    ids = set(existing_ids)
    max_n = 0
    for pid in ids:
        if isinstance(pid, str) and pid.startswith("P"):
            num = pid[1:]
            if num.isdigit(): max_n = max(max_n, int(num))
    n = max_n + 1
    while f"P{n}" in ids: n += 1
    return f"P{n}"
