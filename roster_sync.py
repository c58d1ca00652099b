#!/usr/bin/env python3
"""
Reconcile a session roster against a fresh snapshot of its sheet.

PASS:
1. Skip rows already known, matched either by sheet position or by
   case-insensitive name (two different people sharing a name collapse into
   one; accepted trade-off so re-sorted or re-fetched sheets never duplicate).
2. Remaining rows are taken in sheet order. The first (cap - active) become
   ACTIVE, the rest OVERFLOW. This is provisional; step 3 decides.
3. Walk the whole roster by position, skipping EXCLUDED. The first `cap` are
   ACTIVE, everyone after is OVERFLOW. Only real changes are written; anyone
   pushed to OVERFLOW loses their seat.
4. Optional incremental fill (auto-assign): only when something new arrived
   and nobody is on the overflow list, each unseated ACTIVE participant in
   arrival order goes to the group with the fewest occupants that has room.

Existing seats are never moved by a sync.
"""

from __future__ import annotations
import argparse, sys, time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from roster_config import DEFAULT_CONFIG, load_config
from roster_models import (
    Participant, RosterError, Session, Status, by_position, count_status,
    next_participant_id, normalize_grouping_key, trim,
)
from roster_store import RosterStore
from sheet_source import SheetRow, fetch_rows
from team_assigner import DecisionLogger, log_decision


@dataclass
class SyncSummary:
    created: int = 0
    total_rows: int = 0
    duplicates: int = 0
    now_active: int = 0
    now_overflow: int = 0
    promoted: int = 0
    demoted: int = 0
    auto_assigned: int = 0
    session_cap: int = 0

    def message(self) -> str:
        if not self.created:
            return "No new participants found."
        msg = f"{self.created} new participant(s) added."
        if self.auto_assigned:
            msg += f" {self.auto_assigned} auto-assigned to groups."
        return msg + f" {self.now_overflow} on overflow list."

    def as_dict(self) -> Dict[str, int]:
        return {
            "created": self.created, "total_rows": self.total_rows, "duplicates": self.duplicates,
            "now_active": self.now_active, "now_overflow": self.now_overflow,
            "promoted": self.promoted, "demoted": self.demoted,
            "auto_assigned": self.auto_assigned, "session_cap": self.session_cap,
        }


@dataclass
class SyncPlan:
    created: List[Participant] = field(default_factory=list)
    updated: List[Participant] = field(default_factory=list)
    assignments: Dict[str, str] = field(default_factory=dict)
    summary: SyncSummary = field(default_factory=SyncSummary)

# ------------------------ Steps ---------------------------------------

def new_rows(existing: Iterable[Participant], rows: Iterable[SheetRow]):
    """Rows matching no existing participant by position or by name, in sheet order."""
    existing = list(existing)
    known_positions = {p.position for p in existing}
    known_names = {trim(p.name).lower() for p in existing}
    fresh: List[SheetRow] = []
    duplicates = 0
    for r in rows:
        if r.position in known_positions or trim(r.name).lower() in known_names:
            duplicates += 1
            continue
        fresh.append(r)
    fresh.sort(key=lambda r: r.position)
    return fresh, duplicates


def ingest(
    existing: Sequence[Participant],
    fresh: Sequence[SheetRow],
    session_cap: int,
    cfg: dict | None = None,
) -> List[Participant]:
    """Create participants for new rows with a provisional status."""
    cfg = cfg or DEFAULT_CONFIG
    active_slots = max(0, session_cap - count_status(existing, Status.ACTIVE))
    ids = [p.id for p in existing]
    created: List[Participant] = []
    for r in fresh:
        pid = next_participant_id(ids)
        ids.append(pid)
        status = Status.ACTIVE if active_slots > 0 else Status.OVERFLOW
        if active_slots > 0: active_slots -= 1
        created.append(Participant(
            id=pid,
            name=r.name,
            position=r.position,
            category=trim(r.category) or cfg["UNKNOWN_CATEGORY"],
            skill=int(cfg["SKILL"]["DEFAULT"]),
            grouping_key=normalize_grouping_key(r.grouping_key),
            status=status,
        ))
    return created


def recompute_statuses(roster: Iterable[Participant], session_cap: int) -> Dict[str, Participant]:
    """FIFO walk by position: first `session_cap` non-excluded are ACTIVE, the rest OVERFLOW.

    Returns only participants whose status actually changes, keyed by id.
    """
    changed: Dict[str, Participant] = {}
    active = 0
    for p in by_position(roster):
        if p.status == Status.EXCLUDED:
            continue
        should_be = Status.ACTIVE if active < session_cap else Status.OVERFLOW
        if should_be == Status.ACTIVE:
            active += 1
        if p.status != should_be:
            group_id = p.group_id if should_be == Status.ACTIVE else None
            changed[p.id] = replace(p, status=should_be, group_id=group_id)
    return changed


def fill_fewest_first(session: Session, roster: Iterable[Participant]) -> Dict[str, str]:
    """Seat every unseated ACTIVE participant (arrival order) in the emptiest group with room."""
    roster = list(roster)
    counts = {g.id: 0 for g in session.ordered_groups()}
    for p in roster:
        if p.status == Status.ACTIVE and p.group_id in counts:
            counts[p.group_id] += 1
    order = [g.id for g in session.ordered_groups()]
    mapping: Dict[str, str] = {}
    for p in by_position(roster):
        if p.status != Status.ACTIVE or p.group_id is not None:
            continue
        open_groups = [gid for gid in order if counts[gid] < session.max_per_group]
        if not open_groups:
            break
        best = min(open_groups, key=lambda gid: counts[gid])
        counts[best] += 1
        mapping[p.id] = best
    return mapping

# ------------------------ Reconcile -----------------------------------

def reconcile(
    participants: Sequence[Participant],
    rows: Sequence[SheetRow],
    session: Session,
    *,
    auto_assign: bool = False,
    cfg: dict | None = None,
    logger: Optional[DecisionLogger] = None,
) -> SyncPlan:
    """Diff ``rows`` against ``participants`` without touching either."""
    cap = session.session_cap
    fresh, duplicates = new_rows(participants, rows)
    created = ingest(participants, fresh, cap, cfg)
    for p in created:
        log_decision(logger, "ingest", p.name, "", f"Created ({p.status.value})", f"row={p.position}")

    changed = recompute_statuses([*participants, *created], cap)
    created = [changed.pop(p.id, p) for p in created]
    updated = list(changed.values())
    before = {p.id: p.status for p in participants}
    promoted = sum(1 for p in updated if before[p.id] == Status.OVERFLOW and p.status == Status.ACTIVE)
    demoted = sum(1 for p in updated if before[p.id] == Status.ACTIVE and p.status == Status.OVERFLOW)
    for p in updated:
        log_decision(logger, "status", p.name, "", f"{before[p.id].value} -> {p.status.value}", f"row={p.position}")

    current = {p.id: p for p in participants}
    current.update({p.id: p for p in updated})
    roster = [*current.values(), *created]

    assignments: Dict[str, str] = {}
    overflowing = count_status(roster, Status.OVERFLOW)
    if auto_assign and created and overflowing == 0:
        assignments = fill_fewest_first(session, roster)
        for p in roster:
            if p.id in assignments:
                log_decision(logger, "auto-assign", p.name, assignments[p.id], "Assigned", f"row={p.position}")
    elif auto_assign and created:
        log_decision(logger, "auto-assign", "", "", "Skipped", f"{overflowing} participant(s) on overflow list")

    if assignments:
        created = [replace(p, group_id=assignments[p.id]) if p.id in assignments else p for p in created]
        seated_existing = {pid for pid in assignments if pid in current}
        touched = {p.id for p in updated}
        updated = [replace(p, group_id=assignments[p.id]) if p.id in assignments else p for p in updated]
        updated += [replace(current[pid], group_id=assignments[pid]) for pid in sorted(seated_existing - touched)]

    summary = SyncSummary(
        created=len(created),
        total_rows=len(rows),
        duplicates=duplicates,
        now_active=count_status(roster, Status.ACTIVE),
        now_overflow=overflowing,
        promoted=promoted,
        demoted=demoted,
        auto_assigned=len(assignments),
        session_cap=cap,
    )
    return SyncPlan(created=created, updated=updated, assignments=assignments, summary=summary)


def sync_session(
    store: RosterStore,
    session_id: str,
    *,
    rows: Optional[Sequence[SheetRow]] = None,
    auto_assign: bool = False,
    cfg: dict | None = None,
    logger: Optional[DecisionLogger] = None,
) -> SyncSummary:
    """Fetch the sheet (unless ``rows`` is given), reconcile and persist in one locked pass."""
    cfg = cfg or store.cfg
    if rows is None:
        rows = fetch_rows(store.load_session(session_id).source, cfg)
    with store.locked(session_id) as session:
        participants = store.load_participants(session_id)
        plan = reconcile(participants, rows, session, auto_assign=auto_assign, cfg=cfg, logger=logger)
        if plan.created or plan.updated:
            store.apply(session_id, created=plan.created, updated=plan.updated)
    return plan.summary


def set_auto_sync(store: RosterStore, session_id: str, enabled: bool) -> Session:
    with store.locked(session_id) as session:
        session.auto_sync = bool(enabled)
        store.save_session(session)
    return session


def watch_session(
    store: RosterStore,
    session_id: str,
    *,
    interval: float,
    max_runs: Optional[int] = None,
    cfg: dict | None = None,
    sleep=time.sleep,
) -> List[SyncSummary]:
    """Resync with auto-assign every ``interval`` seconds while the session's auto-sync flag is on."""
    results: List[SyncSummary] = []
    runs = 0
    while max_runs is None or runs < max_runs:
        if not store.load_session(session_id).auto_sync:
            print(f"[info] auto-sync is off for '{session_id}'; stopping", file=sys.stderr)
            break
        runs += 1
        try:
            summary = sync_session(store, session_id, auto_assign=True, cfg=cfg)
        except RosterError as exc:
            # the next tick retries; backoff beyond that belongs to the caller
            print(f"[warn] sync failed: {exc}", file=sys.stderr)
        else:
            results.append(summary)
            print(f"[info] {summary.message()}")
        if max_runs is not None and runs >= max_runs:
            break
        sleep(interval)
    return results

# -------------------- CLI --------------------

def parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Sync a session roster from its sheet",
                                 formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    ap.add_argument("--store", default="sessions", type=Path, help="Roster store root directory")
    ap.add_argument("--session", required=True, help="Session id")
    ap.add_argument("--config", type=Path, help="Optional JSON file with CONFIG overrides")
    ap.add_argument("--auto-assign", action="store_true", help="Seat new ACTIVE participants when nobody overflows")
    ap.add_argument("--auto-sync", choices=("on", "off"), help="Toggle the session's auto-sync flag and exit")
    ap.add_argument("--watch", action="store_true", help="Keep resyncing while auto-sync is on")
    ap.add_argument("--interval", type=float, help="Seconds between resyncs in --watch mode")
    ap.add_argument("--max-runs", type=int, help="Stop --watch after this many passes")
    ap.add_argument("--decision-log", type=Path, help="Write a per-decision CSV here")
    return ap.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    cfg = load_config(args.config)
    store = RosterStore(args.store, cfg)
    try:
        if args.auto_sync:
            session = set_auto_sync(store, args.session, args.auto_sync == "on")
            print(f"Auto-sync {'enabled' if session.auto_sync else 'disabled'}.")
            return 0
        if args.watch:
            interval = args.interval if args.interval is not None else cfg["AUTO_SYNC_INTERVAL_SECONDS"]
            watch_session(store, args.session, interval=interval, max_runs=args.max_runs, cfg=cfg)
            return 0
        logger = DecisionLogger()
        summary = sync_session(store, args.session, auto_assign=args.auto_assign, cfg=cfg, logger=logger)
    except RosterError as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return 1
    print(summary.message())
    print(f"[info] rows={summary.total_rows} duplicates={summary.duplicates} active={summary.now_active} "
          f"overflow={summary.now_overflow} cap={summary.session_cap}", file=sys.stderr)
    if args.decision_log:
        logger.write_csv(args.decision_log)
        print(f"Wrote: {args.decision_log.resolve()}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
