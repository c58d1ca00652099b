from __future__ import annotations

import subprocess
import sys
from pathlib import Path

import pytest

from lifecycle import (
    exclude, exclude_participant, move, move_participant, restore, restore_participant,
    set_participant_skill, set_skill, swap, swap_participants,
)
from roster_models import CapacityConflictError, InvalidTransitionError, NotFoundError, Status
from tests.utils import make_session, make_store, person, statuses

ROOT = Path(__file__).resolve().parents[1]


def _full_roster():
    """Cap 4: P1-P4 ACTIVE (P1, P2 seated in G1), P5 and P6 waiting."""
    return [
        person("P1", position=2, group="G1"),
        person("P2", position=3, group="G1"),
        person("P3", position=4, group="G2"),
        person("P4", position=5),
        person("P5", position=7, status=Status.OVERFLOW),
        person("P6", position=6, status=Status.OVERFLOW),
    ]


def test_excluding_active_promotes_longest_waiting() -> None:
    changes = exclude(_full_roster(), "P1")
    assert statuses(changes) == {"P1": Status.EXCLUDED, "P6": Status.ACTIVE}
    assert all(p.group_id is None for p in changes)


def test_excluding_overflow_promotes_nobody() -> None:
    changes = exclude(_full_roster(), "P5")
    assert statuses(changes) == {"P5": Status.EXCLUDED}


def test_exclude_twice_is_rejected() -> None:
    roster = [person("P1", position=2, status=Status.EXCLUDED)]
    with pytest.raises(InvalidTransitionError):
        exclude(roster, "P1")


def test_restore_respects_cap() -> None:
    roster = _full_roster() + [person("P7", position=8, status=Status.EXCLUDED)]
    assert statuses(restore(roster, "P7", session_cap=4)) == {"P7": Status.OVERFLOW}
    assert statuses(restore(roster, "P7", session_cap=6)) == {"P7": Status.ACTIVE}


def test_restore_only_from_excluded() -> None:
    with pytest.raises(InvalidTransitionError):
        restore(_full_roster(), "P5", session_cap=4)


def test_move_into_full_group_conflicts() -> None:
    session = make_session(group_count=2, max_per_group=2)
    with pytest.raises(CapacityConflictError):
        move(_full_roster(), "P4", "G1", session.groups, session.max_per_group)


def test_move_seats_unseats_and_ignores_no_ops() -> None:
    session = make_session(group_count=2, max_per_group=2)
    roster = _full_roster()
    [seated] = move(roster, "P4", "G2", session.groups, session.max_per_group)
    assert seated.group_id == "G2"
    [unseated] = move(roster, "P1", None, session.groups, session.max_per_group)
    assert unseated.group_id is None
    assert move(roster, "P3", "G2", session.groups, session.max_per_group) == []
    assert move(roster, "P4", None, session.groups, session.max_per_group) == []


def test_move_rejects_unknown_ids_and_inactive_participants() -> None:
    session = make_session(group_count=2, max_per_group=2)
    roster = _full_roster()
    with pytest.raises(NotFoundError):
        move(roster, "P4", "G9", session.groups, session.max_per_group)
    with pytest.raises(NotFoundError):
        move(roster, "P99", "G1", session.groups, session.max_per_group)
    with pytest.raises(InvalidTransitionError):
        move(roster, "P5", "G2", session.groups, session.max_per_group)


def test_swap_exchanges_seats() -> None:
    roster = _full_roster()
    assert {p.id: p.group_id for p in swap(roster, "P1", "P3")} == {"P1": "G2", "P3": "G1"}
    assert {p.id: p.group_id for p in swap(roster, "P1", "P4")} == {"P1": None, "P4": "G1"}
    assert swap(roster, "P1", "P2") == []
    with pytest.raises(InvalidTransitionError):
        swap(roster, "P1", "P5")


@pytest.mark.parametrize("value, expected", [("7", 5), (0, 3), ("", 3), (-2, 1), ("4", 4)])
def test_skill_is_clamped(value, expected) -> None:
    roster = [person("P1", position=2, skill=2)]
    [changed] = set_skill(roster, "P1", value)
    assert changed.skill == expected


def test_unchanged_skill_is_a_no_op() -> None:
    assert set_skill([person("P1", position=2, skill=3)], "P1", "garbage") == []


def test_store_wrappers_persist(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    store.apply("s1", created=_full_roster())

    exclude_participant(store, "s1", "P1")
    move_participant(store, "s1", "P6", "G1")
    swap_participants(store, "s1", "P3", "P6")
    set_participant_skill(store, "s1", "P3", 5)
    restore_participant(store, "s1", "P1")

    roster = {p.id: p for p in store.load_participants("s1")}
    assert roster["P1"].status == Status.OVERFLOW and roster["P1"].group_id is None
    assert roster["P6"].status == Status.ACTIVE and roster["P6"].group_id == "G2"
    assert roster["P3"].group_id == "G1" and roster["P3"].skill == 5


def test_failed_move_leaves_roster_untouched(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    store.apply("s1", created=_full_roster())
    before = (store.session_dir("s1") / "roster.csv").read_bytes()

    with pytest.raises(CapacityConflictError):
        move_participant(store, "s1", "P4", "G1")

    assert (store.session_dir("s1") / "roster.csv").read_bytes() == before


def test_lifecycle_cli(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    store.apply("s1", created=_full_roster())
    base = [sys.executable, str(ROOT / "lifecycle.py"), "--store", str(store.root), "--session", "s1"]

    ok = subprocess.run(base + ["move", "P1", "unassigned"], cwd=tmp_path, capture_output=True, text=True, check=True)
    assert "P1" in ok.stdout and "group=-" in ok.stdout

    seated = subprocess.run(base + ["move", "P4", "G1"], cwd=tmp_path, capture_output=True, text=True)
    assert seated.returncode == 0
    assert "group=G1" in seated.stdout

    again = subprocess.run(base + ["move", "P3", "G1"], cwd=tmp_path, capture_output=True, text=True)
    assert again.returncode == 1
    assert "[error]" in again.stderr
