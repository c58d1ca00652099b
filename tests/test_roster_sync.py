from __future__ import annotations

import subprocess
import sys
from pathlib import Path

from lifecycle import exclude_participant, restore_participant
from roster_models import Status
from roster_store import check_invariants
from roster_sync import SyncSummary, reconcile, set_auto_sync, sync_session, watch_session
from team_assigner import DecisionLogger
from tests.utils import make_session, make_store, person, sheet_rows, statuses, write_sheet

ROOT = Path(__file__).resolve().parents[1]
NAMES = ["Ada", "Bo", "Cy", "Di", "Ed", "Flo"]


def test_first_come_first_served_up_to_cap() -> None:
    session = make_session(group_count=2, max_per_group=2)
    plan = reconcile([], sheet_rows(NAMES), session)

    by_name = {p.name: p for p in plan.created}
    assert [by_name[n].status for n in NAMES] == [Status.ACTIVE] * 4 + [Status.OVERFLOW] * 2
    assert [by_name[n].position for n in NAMES] == [2, 3, 4, 5, 6, 7]
    assert [p.id for p in plan.created] == ["P1", "P2", "P3", "P4", "P5", "P6"]
    assert all(p.group_id is None for p in plan.created)
    assert plan.summary.now_active == 4 and plan.summary.now_overflow == 2


def test_resync_with_same_rows_is_a_no_op(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    rows = sheet_rows(NAMES[:3])
    first = sync_session(store, "s1", rows=rows)
    before = (store.session_dir("s1") / "roster.csv").read_bytes()

    second = sync_session(store, "s1", rows=rows)

    assert first.created == 3
    assert second.created == 0
    assert second.duplicates == 3
    assert second.message() == "No new participants found."
    assert (store.session_dir("s1") / "roster.csv").read_bytes() == before


def test_rows_matching_by_name_or_position_are_skipped() -> None:
    session = make_session(group_count=2, max_per_group=2)
    existing = [person("P1", position=2, name="Ada"), person("P2", position=3, name="Bo")]
    rows = sheet_rows(["ADA "], first_position=9) + sheet_rows(["Renamed"], first_position=3) \
        + sheet_rows(["New"], first_position=10)

    plan = reconcile(existing, rows, session)

    assert [p.name for p in plan.created] == ["New"]
    assert plan.summary.duplicates == 2
    assert plan.created[0].id == "P3"


def test_excluded_participants_do_not_hold_seats() -> None:
    session = make_session(group_count=2, max_per_group=2)
    existing = [person("P1", position=2, name="Ada", status=Status.EXCLUDED)]

    plan = reconcile(existing, sheet_rows(NAMES), session)

    assert [p.status for p in plan.created] == [Status.ACTIVE] * 4 + [Status.OVERFLOW]
    assert plan.updated == []
    assert plan.summary.now_active == 4


def test_recompute_promotes_waiting_participant_when_room_opens() -> None:
    session = make_session(group_count=2, max_per_group=2)
    existing = [person(f"P{i}", position=i + 1) for i in range(1, 4)]
    existing.append(person("P4", position=5, status=Status.OVERFLOW))

    plan = reconcile(existing, [], session)

    assert statuses(plan.updated) == {"P4": Status.ACTIVE}
    assert plan.summary.promoted == 1
    assert plan.summary.created == 0


def test_earlier_row_demotes_latest_active_and_clears_seat() -> None:
    session = make_session(group_count=2, max_per_group=2)
    existing = [person(f"P{i}", position=i + 2) for i in range(1, 4)]
    existing.append(person("P4", position=6, group="G1"))

    plan = reconcile(existing, sheet_rows(["Early"]), session)

    assert len(plan.created) == 1 and plan.created[0].status == Status.ACTIVE
    [demoted] = plan.updated
    assert demoted.id == "P4"
    assert demoted.status == Status.OVERFLOW and demoted.group_id is None
    assert plan.summary.demoted == 1


def test_auto_assign_suppressed_while_anyone_overflows() -> None:
    session = make_session(group_count=2, max_per_group=2)
    log = DecisionLogger()
    plan = reconcile([], sheet_rows(NAMES), session, auto_assign=True, logger=log)

    assert plan.assignments == {}
    assert all(p.group_id is None for p in plan.created)
    assert plan.summary.message() == "6 new participant(s) added. 2 on overflow list."
    assert any(r["Phase"] == "auto-assign" and r["Status"] == "Skipped" for r in log.rows)


def test_auto_assign_fills_fewest_first_without_moving_seats() -> None:
    session = make_session(group_count=2, max_per_group=2)
    existing = [person("P1", position=2, name="Ada", group="G1")]

    plan = reconcile(existing, sheet_rows(["Bo", "Cy"], first_position=3), session, auto_assign=True)

    assert plan.assignments == {"P2": "G2", "P3": "G1"}
    assert {p.name: p.group_id for p in plan.created} == {"Bo": "G2", "Cy": "G1"}
    assert plan.updated == []
    assert plan.summary.message() == "2 new participant(s) added. 2 auto-assigned to groups. 0 on overflow list."


def test_auto_assign_needs_new_arrivals() -> None:
    session = make_session(group_count=2, max_per_group=2)
    existing = [person("P1", position=2)]
    plan = reconcile(existing, sheet_rows(["P1 again"], first_position=2), session, auto_assign=True)
    assert plan.assignments == {}
    assert plan.summary.auto_assigned == 0


def test_auto_assign_also_seats_waiting_unseated_members() -> None:
    session = make_session(group_count=2, max_per_group=2)
    existing = [person("P1", position=2, name="Ada")]

    plan = reconcile(existing, sheet_rows(["Bo"], first_position=3), session, auto_assign=True)

    assert plan.assignments == {"P1": "G1", "P2": "G2"}
    assert [(p.id, p.group_id) for p in plan.updated] == [("P1", "G1")]


def test_sync_reads_local_sheet_and_persists(tmp_path: Path) -> None:
    sheet = write_sheet(tmp_path / "sheet.csv", [
        ("t", "Ada", "F", ""),
        ("t", "", "M", ""),
        ("t", "Bo", "M", "K1"),
    ])
    store = make_store(tmp_path, source=str(sheet))

    summary = sync_session(store, "s1", auto_assign=True)

    roster = store.load_participants("s1")
    assert summary.created == 2
    assert [(p.name, p.position, p.category, p.grouping_key) for p in roster] == [
        ("Ada", 2, "F", None),
        ("Bo", 4, "M", "K1"),
    ]
    assert all(p.group_id for p in roster)


def test_summary_dict_carries_counts() -> None:
    summary = SyncSummary(created=1, now_active=1, session_cap=4)
    assert summary.as_dict()["session_cap"] == 4
    assert summary.message() == "1 new participant(s) added. 0 on overflow list."


def test_watch_stops_when_auto_sync_is_off(tmp_path: Path) -> None:
    store = make_store(tmp_path, source=str(write_sheet(tmp_path / "sheet.csv", [("t", "Ada", "", "")])))
    sleeps = []
    assert watch_session(store, "s1", interval=5, max_runs=3, sleep=sleeps.append) == []
    assert sleeps == []


def test_watch_resyncs_until_max_runs(tmp_path: Path) -> None:
    store = make_store(tmp_path, source=str(write_sheet(tmp_path / "sheet.csv", [("t", "Ada", "", "")])))
    set_auto_sync(store, "s1", True)
    sleeps = []

    results = watch_session(store, "s1", interval=5, max_runs=2, sleep=sleeps.append)

    assert [r.created for r in results] == [1, 0]
    assert sleeps == [5]
    assert store.load_participants("s1")[0].group_id == "G1"


def test_watch_keeps_going_after_a_failed_fetch(tmp_path: Path) -> None:
    store = make_store(tmp_path, source=str(tmp_path / "missing.csv"))
    set_auto_sync(store, "s1", True)
    sleeps = []

    results = watch_session(store, "s1", interval=1, max_runs=3, sleep=sleeps.append)

    assert results == []
    assert sleeps == [1, 1]


def test_cap_holds_across_sync_exclude_restore(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    session = store.load_session("s1")

    def check():
        roster = store.load_participants("s1")
        check_invariants(session, roster)
        return {p.position: p.status for p in roster}

    sync_session(store, "s1", rows=sheet_rows(NAMES[:5]), auto_assign=True)
    assert check() == {2: Status.ACTIVE, 3: Status.ACTIVE, 4: Status.ACTIVE, 5: Status.ACTIVE, 6: Status.OVERFLOW}

    exclude_participant(store, "s1", "P1")
    assert check()[6] == Status.ACTIVE
    assert sum(1 for s in check().values() if s == Status.ACTIVE) == 4

    restore_participant(store, "s1", "P1")
    assert check()[2] == Status.OVERFLOW

    summary = sync_session(store, "s1", rows=sheet_rows(NAMES), auto_assign=True)
    # the resync walks the roster by position, so the restored row 2 wins its seat back
    assert summary.created == 1 and summary.now_active == 4
    assert (summary.promoted, summary.demoted) == (1, 1)
    after = check()
    assert after[2] == Status.ACTIVE
    assert after[6] == Status.OVERFLOW and after[7] == Status.OVERFLOW


def test_sync_cli(tmp_path: Path) -> None:
    sheet = write_sheet(tmp_path / "sheet.csv", [("t", n, "", "") for n in NAMES])
    store = make_store(tmp_path, source=str(sheet))

    result = subprocess.run(
        [sys.executable, str(ROOT / "roster_sync.py"), "--store", str(store.root), "--session", "s1",
         "--auto-assign"],
        cwd=tmp_path, capture_output=True, text=True, check=True,
    )

    assert "6 new participant(s) added. 2 on overflow list." in result.stdout
    assert sum(1 for p in store.load_participants("s1") if p.status == Status.OVERFLOW) == 2


def test_sync_cli_reports_missing_name_column(tmp_path: Path) -> None:
    sheet = write_sheet(tmp_path / "sheet.csv", [("a@b.c", "F")], header=("Email", "Gender"))
    store = make_store(tmp_path, source=str(sheet))

    result = subprocess.run(
        [sys.executable, str(ROOT / "roster_sync.py"), "--store", str(store.root), "--session", "s1"],
        cwd=tmp_path, capture_output=True, text=True,
    )

    assert result.returncode == 1
    assert 'Could not find a "Name" column' in result.stderr
