"""Fixtures and helpers for roster tests."""
from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from roster_models import Group, Participant, Session, Status
from roster_store import RosterStore
from sheet_source import SheetRow

SHEET_HEADER: Sequence[str] = ("Timestamp", "Full Name", "Gender", "Unique Team ID")


def person(
    pid: str,
    *,
    position: int,
    name: Optional[str] = None,
    category: str = "Unknown",
    skill: int = 3,
    key: Optional[str] = None,
    status: Status = Status.ACTIVE,
    group: Optional[str] = None,
) -> Participant:
    """Build a Participant with sensible defaults."""
    return Participant(
        id=pid,
        name=name or f"Person {pid}",
        position=position,
        category=category,
        skill=skill,
        grouping_key=key,
        status=status,
        group_id=group,
    )


def make_session(group_count: int = 2, max_per_group: int = 2, sid: str = "s1") -> Session:
    groups = [Group(id=f"G{i + 1}", name=f"Team {i + 1}", order=i) for i in range(group_count)]
    return Session(id=sid, name="Test", group_count=group_count, max_per_group=max_per_group, groups=groups)


def sheet_rows(names: Iterable[str], *, first_position: int = 2) -> List[SheetRow]:
    return [
        SheetRow(name=n, category="Unknown", grouping_key=None, position=first_position + i)
        for i, n in enumerate(names)
    ]


def write_sheet(path: Path, rows: Iterable[Sequence[str]], header: Sequence[str] = SHEET_HEADER) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.writer(handle)
        writer.writerow(list(header))
        for row in rows:
            writer.writerow(list(row))
    return path


def make_store(tmp_path: Path, *, group_count: int = 2, max_per_group: int = 2, source: str = "") -> RosterStore:
    store = RosterStore(tmp_path / "sessions")
    store.create_session("Test", session_id="s1", source=source,
                         group_count=group_count, max_per_group=max_per_group)
    return store


def statuses(roster: Iterable[Participant]) -> dict:
    return {p.id: p.status for p in roster}
