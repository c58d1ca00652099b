#!/usr/bin/env python3
"""
Manual roster operations: exclude / restore, seat moves and swaps, skill edits.

Status transitions allowed here:
  ACTIVE | OVERFLOW  -> EXCLUDED           exclude
  EXCLUDED           -> ACTIVE | OVERFLOW  restore (ACTIVE only while under the cap)
Excluding an ACTIVE participant promotes the longest-waiting OVERFLOW
participant (lowest sheet position). Promotion and restore never seat anyone.

Every operation is a pure function of a roster snapshot returning the changed
participant copies; the ``*_participant`` wrappers run it under the session
lock and write the result in one go.
"""

from __future__ import annotations
import argparse, sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional, Sequence

from roster_config import load_config
from roster_models import (
    CapacityConflictError, Group, InvalidTransitionError, NotFoundError, Participant,
    RosterError, Status, by_position, count_status, find_participant, normalize_skill,
)
from roster_store import RosterStore


def exclude(roster: Sequence[Participant], participant_id: str) -> List[Participant]:
    p = find_participant(roster, participant_id)
    if p.status == Status.EXCLUDED:
        raise InvalidTransitionError(f"{p.name} is already excluded")
    changes = [replace(p, status=Status.EXCLUDED, group_id=None)]
    if p.status == Status.ACTIVE:
        waiting = [x for x in by_position(roster) if x.status == Status.OVERFLOW]
        if waiting:
            changes.append(replace(waiting[0], status=Status.ACTIVE, group_id=None))
    return changes


def restore(roster: Sequence[Participant], participant_id: str, session_cap: int) -> List[Participant]:
    p = find_participant(roster, participant_id)
    if p.status != Status.EXCLUDED:
        raise InvalidTransitionError(f"{p.name} is {p.status.value}, only excluded participants can be restored")
    active = count_status(roster, Status.ACTIVE)
    status = Status.ACTIVE if active < session_cap else Status.OVERFLOW
    return [replace(p, status=status, group_id=None)]


def move(
    roster: Sequence[Participant],
    participant_id: str,
    group_id: Optional[str],
    groups: Sequence[Group],
    max_per_group: int,
) -> List[Participant]:
    """Seat an ACTIVE participant in ``group_id`` (``None`` unseats)."""
    p = find_participant(roster, participant_id)
    if p.status != Status.ACTIVE:
        raise InvalidTransitionError(f"{p.name} is {p.status.value}; only ACTIVE participants can be seated")
    if group_id is None:
        return [] if p.group_id is None else [replace(p, group_id=None)]
    if group_id not in {g.id for g in groups}:
        raise NotFoundError(f"Group '{group_id}' not found")
    if p.group_id == group_id:
        return []
    seated = sum(1 for x in roster if x.status == Status.ACTIVE and x.group_id == group_id)
    if seated >= max_per_group:
        raise CapacityConflictError(f"Group '{group_id}' is full ({seated}/{max_per_group})")
    return [replace(p, group_id=group_id)]


def swap(roster: Sequence[Participant], participant_id: str, other_id: str) -> List[Participant]:
    a = find_participant(roster, participant_id)
    b = find_participant(roster, other_id)
    for p in (a, b):
        if p.status != Status.ACTIVE:
            raise InvalidTransitionError(f"{p.name} is {p.status.value}; only ACTIVE participants can be swapped")
    if a.id == b.id or a.group_id == b.group_id:
        return []
    return [replace(a, group_id=b.group_id), replace(b, group_id=a.group_id)]


def set_skill(roster: Sequence[Participant], participant_id: str, skill, cfg: dict | None = None) -> List[Participant]:
    p = find_participant(roster, participant_id)
    level = normalize_skill(skill, cfg)
    return [] if level == p.skill else [replace(p, skill=level)]

# ------------------------ Store wrappers ------------------------------

def _run(store: RosterStore, session_id: str, op) -> List[Participant]:
    with store.locked(session_id) as session:
        roster = store.load_participants(session_id)
        changes = op(session, roster)
        if changes:
            store.apply(session_id, updated=changes)
    return changes


def exclude_participant(store: RosterStore, session_id: str, participant_id: str) -> List[Participant]:
    return _run(store, session_id, lambda s, r: exclude(r, participant_id))


def restore_participant(store: RosterStore, session_id: str, participant_id: str) -> List[Participant]:
    return _run(store, session_id, lambda s, r: restore(r, participant_id, s.session_cap))


def move_participant(store: RosterStore, session_id: str, participant_id: str, group_id: Optional[str]) -> List[Participant]:
    return _run(store, session_id, lambda s, r: move(r, participant_id, group_id, s.groups, s.max_per_group))


def swap_participants(store: RosterStore, session_id: str, participant_id: str, other_id: str) -> List[Participant]:
    return _run(store, session_id, lambda s, r: swap(r, participant_id, other_id))


def set_participant_skill(store: RosterStore, session_id: str, participant_id: str, skill) -> List[Participant]:
    return _run(store, session_id, lambda s, r: set_skill(r, participant_id, skill, store.cfg))

# -------------------- CLI --------------------

def parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Manual roster operations")
    ap.add_argument("--store", default="sessions", type=Path, help="Roster store root directory")
    ap.add_argument("--session", required=True, help="Session id")
    ap.add_argument("--config", type=Path, help="Optional JSON file with CONFIG overrides")
    sub = ap.add_subparsers(dest="action", required=True)

    p = sub.add_parser("exclude", help="Pull a participant out (promotes the first overflow participant)")
    p.add_argument("participant")
    p = sub.add_parser("restore", help="Bring an excluded participant back")
    p.add_argument("participant")
    p = sub.add_parser("move", help="Seat a participant in a group ('unassigned' unseats)")
    p.add_argument("participant")
    p.add_argument("group")
    p = sub.add_parser("swap", help="Exchange the seats of two participants")
    p.add_argument("participant")
    p.add_argument("other")
    p = sub.add_parser("skill", help="Set a participant's skill score (1-5)")
    p.add_argument("participant")
    p.add_argument("level")
    return ap.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    cfg = load_config(args.config)
    store = RosterStore(args.store, cfg)
    try:
        if args.action == "exclude":
            changes = exclude_participant(store, args.session, args.participant)
        elif args.action == "restore":
            changes = restore_participant(store, args.session, args.participant)
        elif args.action == "move":
            target = None if args.group.lower() == "unassigned" else args.group
            changes = move_participant(store, args.session, args.participant, target)
        elif args.action == "swap":
            changes = swap_participants(store, args.session, args.participant, args.other)
        else:
            changes = set_participant_skill(store, args.session, args.participant, args.level)
    except RosterError as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return 1
    if not changes:
        print("No change.")
    for p in changes:
        print(f"{p.id} {p.name}: {p.status.value} group={p.group_id or '-'} skill={p.skill}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
