#!/usr/bin/env python3
"""Summarize a session's seating.

Emits a per-group CSV (occupancy, free seats, average skill, one column per
category) plus a plaintext overview listing who is seated where, who is still
unseated, who is waiting on the overflow list and who was excluded.
"""

from __future__ import annotations

import argparse
import csv
import sys
from collections import defaultdict
from pathlib import Path
from typing import Dict, Iterable, List

from roster_config import load_config
from roster_models import Participant, RosterError, Session, Status, by_position
from roster_store import RosterStore


def session_overview(session: Session, roster: Iterable[Participant]) -> Dict[str, object]:
    roster = list(roster)
    active = [p for p in roster if p.status == Status.ACTIVE]
    groups = []
    for g in session.ordered_groups():
        members = sorted((p for p in active if p.group_id == g.id), key=lambda p: p.name.lower())
        groups.append({"group": g, "members": members})
    return {
        "groups": groups,
        "unseated": by_position(p for p in active if p.group_id is None),
        "overflow": by_position(p for p in roster if p.status == Status.OVERFLOW),
        "excluded": sorted((p for p in roster if p.status == Status.EXCLUDED), key=lambda p: p.name.lower()),
    }


def categories_in(roster: Iterable[Participant]) -> List[str]:
    return sorted({p.category for p in roster if p.status == Status.ACTIVE})


def build_group_report(session: Session, roster: Iterable[Participant]) -> List[Dict[str, str]]:
    roster = list(roster)
    cats = categories_in(roster)
    overview = session_overview(session, roster)
    report: List[Dict[str, str]] = []
    for entry in overview["groups"]:
        g, members = entry["group"], entry["members"]
        skill_total = sum(p.skill for p in members)
        cat_counts: Dict[str, int] = defaultdict(int)
        for p in members:
            cat_counts[p.category] += 1
        row = {
            "Group": g.name,
            "Members": str(len(members)),
            "Capacity": str(session.max_per_group),
            "FreeSlots": str(max(0, session.max_per_group - len(members))),
            "AverageSkill": f"{(skill_total / len(members)) if members else 0.0:.2f}",
        }
        for c in cats:
            row[c] = str(cat_counts.get(c, 0))
        report.append(row)
    return report


def write_report(rows: List[Dict[str, str]], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if not rows:
        path.write_text("Group,Members,Capacity,FreeSlots,AverageSkill\n", encoding="utf-8")
        return
    fieldnames = list(rows[0].keys())
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=fieldnames)
        writer.writeheader()
        for row in rows:
            writer.writerow(row)


def _names(people: Iterable[Participant]) -> str:
    return ", ".join(p.name for p in people)


def write_summary(session: Session, roster: Iterable[Participant], path: Path) -> None:
    if str(path) == "-":
        return
    roster = list(roster)
    overview = session_overview(session, roster)
    active = sum(1 for p in roster if p.status == Status.ACTIVE)
    lines = [f"Session {session.name} ({session.id})"]
    lines.append(
        f"Groups: {session.group_count} x {session.max_per_group} (cap={session.session_cap}), "
        f"active={active}, overflow={len(overview['overflow'])}, excluded={len(overview['excluded'])}"
    )
    for entry in overview["groups"]:
        g, members = entry["group"], entry["members"]
        lines.append(f"{g.name} [{len(members)}/{session.max_per_group}]: {_names(members) or '(empty)'}")
    if overview["unseated"]:
        lines.append("Unseated: " + _names(overview["unseated"]))
    if overview["overflow"]:
        lines.append("Overflow (in order): " + ", ".join(f"{p.name} (row {p.position})" for p in overview["overflow"]))
    if overview["excluded"]:
        lines.append("Excluded: " + _names(overview["excluded"]))
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def plot_groups(rows: List[Dict[str, str]], out_path: Path, *, dpi: int = 150) -> None:
    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    if not rows:
        return
    names = [r["Group"] for r in rows]
    members = [int(r["Members"]) for r in rows]
    skills = [float(r["AverageSkill"]) for r in rows]
    fig, (ax_n, ax_s) = plt.subplots(1, 2, figsize=(max(8, len(rows) * 1.2), 4))
    ax_n.bar(names, members, color="#6baed6", edgecolor="#1f1f1f")
    ax_n.axhline(int(rows[0]["Capacity"]), color="#d62728", linestyle="--", linewidth=1, label="capacity")
    ax_n.set_ylabel("Members")
    ax_n.set_title("Occupancy per group")
    ax_n.legend(loc="upper right", fontsize=8)
    ax_s.bar(names, skills, color="#74c476", edgecolor="#1f1f1f")
    ax_s.set_ylabel("Average skill")
    ax_s.set_ylim(0, 5)
    ax_s.set_title("Average skill per group")
    for ax in (ax_n, ax_s):
        ax.tick_params(axis="x", rotation=45)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    fig.tight_layout()
    fig.savefig(out_path, dpi=dpi)
    plt.close(fig)


def parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Generate a per-group seating report", formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    ap.add_argument("--store", default="sessions", type=Path, help="Roster store root directory")
    ap.add_argument("--session", required=True, help="Session id")
    ap.add_argument("--config", type=Path, help="Optional JSON file with CONFIG overrides")
    ap.add_argument("--out", default=Path("reports") / "group_report.csv", type=Path, help="Where to write the per-group CSV report")
    ap.add_argument("--summary", default=Path("reports") / "group_report.txt", type=Path, help="Plaintext overview (set to '-' to skip)")
    ap.add_argument("--plot", type=Path, help="Optional PNG bar chart of occupancy and average skill")
    return ap.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    store = RosterStore(args.store, load_config(args.config))
    try:
        session = store.load_session(args.session)
        roster = store.load_participants(args.session)
    except RosterError as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return 1
    rows = build_group_report(session, roster)
    write_report(rows, args.out)
    write_summary(session, roster, args.summary)
    print(f"Wrote report to {args.out}")
    if str(args.summary) != "-":
        print(f"Summary saved to {args.summary}")
    if args.plot:
        try:
            plot_groups(rows, args.plot)
            print(f"Wrote plot to {args.plot}")
        except Exception as e:  # pragma: no cover - plotting is best-effort
            print(f"[warn] Could not produce plot: {e}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
