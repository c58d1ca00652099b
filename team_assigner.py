#!/usr/bin/env python3
"""
Greedy group assignment for ACTIVE participants without a seat.

ORDER OF WORK:
- Grouping-key clusters first, largest first. A cluster goes whole into the
  group with the lowest average skill that can take all of it; when no group
  can, the cluster stays unseated (it is never split).
- Then everyone else, highest skill first, one at a time. The destination is
  picked by an ordered comparator chain:
    1. fewest occupants
    2. lower average skill, only when the averages differ by more than
       SKILL_TIE_THRESHOLD
    3. fewest participants of the same category
  Anything still tied goes to the earlier group in display order.

The engine never mutates its inputs and never raises on a short fit: whoever
cannot be seated is simply missing from the returned mapping.
"""

from __future__ import annotations
import argparse, csv, sys
from dataclasses import replace
from functools import cmp_to_key
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from group_capacity import GroupLoad, build_loads
from roster_config import DEFAULT_CONFIG, load_config
from roster_models import Group, Participant, RosterError, Session, Status
from roster_store import RosterStore

# ------------------------ Decision log --------------------------------

DECISION_FIELDS = ["Step", "Phase", "Participant", "Group", "Status", "Note"]


class DecisionLogger:
    def __init__(self):
        self.rows: List[Dict[str, object]] = []
        self.step = 0

    def log(self, phase: str, participant: str, group: str, status: str, note: str = ""):
        self.step += 1
        self.rows.append({
            "Step": self.step, "Phase": phase, "Participant": participant,
            "Group": group, "Status": status, "Note": note,
        })

    def write_csv(self, out: Path):
        out.parent.mkdir(parents=True, exist_ok=True)
        with out.open("w", newline="", encoding="utf-8") as f:
            w = csv.DictWriter(f, fieldnames=DECISION_FIELDS)
            w.writeheader()
            for r in self.rows: w.writerow({k: r.get(k, "") for k in DECISION_FIELDS})


def log_decision(logger: Optional[DecisionLogger], *args, **kwargs) -> None:
    if logger is not None:
        logger.log(*args, **kwargs)

# ------------------------ Comparator chain ----------------------------

Comparator = Callable[[GroupLoad, GroupLoad, Participant], float]


def by_occupancy(a: GroupLoad, b: GroupLoad, p: Participant) -> float:
    return a.occupancy - b.occupancy


def by_average_skill(threshold: float) -> Comparator:
    def compare(a: GroupLoad, b: GroupLoad, p: Participant) -> float:
        diff = a.average_skill() - b.average_skill()
        return diff if abs(diff) > threshold else 0
    return compare


def by_category_need(a: GroupLoad, b: GroupLoad, p: Participant) -> float:
    return a.category_count(p.category) - b.category_count(p.category)


def single_placement_chain(threshold: float = DEFAULT_CONFIG["SKILL_TIE_THRESHOLD"]) -> List[Comparator]:
    return [by_occupancy, by_average_skill(threshold), by_category_need]


def rank_loads(loads: Sequence[GroupLoad], participant: Participant, chain: Sequence[Comparator]) -> List[GroupLoad]:
    """Sort ``loads`` best-first; the first non-zero comparator decides, ties keep input order."""
    def compare(a: GroupLoad, b: GroupLoad) -> int:
        for cmp in chain:
            d = cmp(a, b, participant)
            if d:
                return -1 if d < 0 else 1
        return 0
    return sorted(loads, key=cmp_to_key(compare))

# ------------------------ Selection -----------------------------------

def pick_group_for_cluster(loads: Sequence[GroupLoad], size: int) -> Optional[GroupLoad]:
    eligible = [l for l in loads if l.can_accept(size)]
    if not eligible:
        return None
    # min() keeps the first of equal averages
    return min(eligible, key=lambda l: l.average_skill())


def pick_group_for_participant(
    loads: Sequence[GroupLoad],
    participant: Participant,
    chain: Sequence[Comparator],
) -> Optional[GroupLoad]:
    eligible = [l for l in loads if l.has_room()]
    if not eligible:
        return None
    return rank_loads(eligible, participant, chain)[0]


def split_by_grouping_key(participants: Iterable[Participant]):
    clusters: Dict[str, List[Participant]] = {}
    singles: List[Participant] = []
    for p in participants:
        key = (p.grouping_key or "").strip()
        if key:
            clusters.setdefault(key, []).append(p)
        else:
            singles.append(p)
    return clusters, singles

# ------------------------ Engine --------------------------------------

def assign_participants(
    participants: Iterable[Participant],
    groups: Sequence[Group],
    roster: Iterable[Participant],
    max_per_group: int,
    *,
    skill_threshold: float = DEFAULT_CONFIG["SKILL_TIE_THRESHOLD"],
    logger: Optional[DecisionLogger] = None,
) -> Dict[str, str]:
    """Return ``{participant_id: group_id}`` for everyone who could be seated.

    ``participants`` are the candidates (only ACTIVE ones without a group are
    considered); ``roster`` supplies the current occupants of ``groups``.
    """
    loads = build_loads(groups, roster, max_per_group)
    candidates = [p for p in participants if p.status == Status.ACTIVE and p.group_id is None]
    clusters, singles = split_by_grouping_key(candidates)
    assignments: Dict[str, str] = {}

    # STEP 1: clusters, larger first (stable on first appearance)
    for key, members in sorted(clusters.items(), key=lambda kv: -len(kv[1])):
        load = pick_group_for_cluster(loads, len(members))
        if load is None:
            for p in members:
                log_decision(logger, "cluster", p.name, "", "Unplaced (cluster does not fit)",
                     f"key={key} size={len(members)}")
            continue
        load.add(members)
        for p in members:
            assignments[p.id] = load.group_id
            log_decision(logger, "cluster", p.name, load.group_id, "Assigned", f"key={key} size={len(members)}")

    # STEP 2: singles, highest skill first (stable on input order)
    chain = single_placement_chain(skill_threshold)
    for p in sorted(singles, key=lambda x: -x.skill):
        load = pick_group_for_participant(loads, p, chain)
        if load is None:
            log_decision(logger, "single", p.name, "", "Unplaced (no room)", f"skill={p.skill}")
            continue
        load.add([p])
        assignments[p.id] = load.group_id
        log_decision(logger, "single", p.name, load.group_id, "Assigned",
             f"skill={p.skill} avg={load.average_skill():.2f} n={load.occupancy}")

    return assignments


def plan_session_assignment(
    session: Session,
    roster: Sequence[Participant],
    cfg: dict | None = None,
    logger: Optional[DecisionLogger] = None,
) -> Dict[str, str]:
    cfg = cfg or DEFAULT_CONFIG
    return assign_participants(
        roster, session.groups, roster, session.max_per_group,
        skill_threshold=float(cfg["SKILL_TIE_THRESHOLD"]), logger=logger,
    )


def apply_mapping(roster: Iterable[Participant], mapping: Dict[str, str]) -> List[Participant]:
    """Copies of the mapped participants with their new group set."""
    return [replace(p, group_id=mapping[p.id]) for p in roster if p.id in mapping]


def assign_session(
    store: RosterStore,
    session_id: str,
    cfg: dict | None = None,
    logger: Optional[DecisionLogger] = None,
) -> Dict[str, int]:
    """Run the engine on a session snapshot and persist the placements."""
    with store.locked(session_id) as session:
        roster = store.load_participants(session_id)
        mapping = plan_session_assignment(session, roster, cfg, logger)
        store.apply(session_id, updated=apply_mapping(roster, mapping))
    waiting = sum(1 for p in roster if p.status == Status.ACTIVE and p.group_id is None)
    return {"assigned": len(mapping), "unplaced": waiting - len(mapping)}

# -------------------- CLI --------------------

def parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Seat unassigned ACTIVE participants into groups",
                                 formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    ap.add_argument("--store", default="sessions", type=Path, help="Roster store root directory")
    ap.add_argument("--session", required=True, help="Session id")
    ap.add_argument("--config", type=Path, help="Optional JSON file with CONFIG overrides")
    ap.add_argument("--decision-log", type=Path, help="Write a per-decision CSV here")
    return ap.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    cfg = load_config(args.config)
    store = RosterStore(args.store, cfg)
    logger = DecisionLogger()
    try:
        result = assign_session(store, args.session, cfg, logger)
    except RosterError as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return 1
    print(f"{result['assigned']} participant(s) assigned to groups.")
    if result["unplaced"]:
        print(f"[warn] {result['unplaced']} active participant(s) could not be seated.", file=sys.stderr)
    if args.decision_log:
        logger.write_csv(args.decision_log)
        print(f"Wrote: {args.decision_log.resolve()}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
