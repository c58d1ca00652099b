#!/usr/bin/env python3
"""Draw a session's seating as a graph: group hubs, participants around them."""
from __future__ import annotations

import argparse
import math
import sys
from collections import defaultdict
from pathlib import Path
from typing import Dict, Iterable, List, Tuple

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
from matplotlib import colors as mpl_colors
from matplotlib.lines import Line2D
import networkx as nx

from roster_config import load_config
from roster_models import Participant, RosterError, Session, Status
from roster_store import RosterStore

LAYOUT_CHOICES = ("hub", "spring")
UNSEATED = "__unseated__"


def parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Visualize group seating")
    ap.add_argument("--store", default="sessions", type=Path, help="Roster store root directory")
    ap.add_argument("--session", required=True, help="Session id")
    ap.add_argument("--config", type=Path, help="Optional JSON file with CONFIG overrides")
    ap.add_argument("--out-dir", default=Path("roster_graphs"), type=Path, help="Directory for generated graph files")
    ap.add_argument("--out-prefix", default="seating", help="Base filename (layout name is appended)")
    ap.add_argument("--layouts", nargs="+", default=list(LAYOUT_CHOICES), choices=LAYOUT_CHOICES)
    ap.add_argument("--dpi", type=int, default=200, help="Output DPI")
    return ap.parse_args(argv)


def build_graph(session: Session, roster: Iterable[Participant]) -> nx.Graph:
    """Group hubs joined to their seated ACTIVE members; members sharing a grouping key are linked."""
    graph = nx.Graph()
    for g in session.ordered_groups():
        graph.add_node(g.id, kind="group", label=g.name, order=g.order)
    active = [p for p in roster if p.status == Status.ACTIVE]
    if any(p.group_id is None for p in active):
        graph.add_node(UNSEATED, kind="group", label="Unseated", order=len(session.groups))
    by_key: Dict[str, List[str]] = defaultdict(list)
    for p in active:
        graph.add_node(p.id, kind="participant", label=p.name, category=p.category, skill=p.skill)
        graph.add_edge(p.id, p.group_id or UNSEATED, kind="seat")
        if p.grouping_key:
            by_key[p.grouping_key].append(p.id)
    for members in by_key.values():
        for i in range(len(members)):
            for j in range(i + 1, len(members)):
                graph.add_edge(members[i], members[j], kind="key")
    return graph


def _category_palette(graph: nx.Graph) -> Dict[str, str]:
    cats = sorted({d["category"] for _, d in graph.nodes(data=True) if d.get("kind") == "participant"})
    cmap = plt.get_cmap("tab10", max(3, len(cats)))
    return {c: mpl_colors.to_hex(cmap(i)) for i, c in enumerate(cats)}


def _layout_hub(graph: nx.Graph) -> Dict[str, Tuple[float, float]]:
    hubs = sorted((n for n, d in graph.nodes(data=True) if d.get("kind") == "group"),
                  key=lambda n: graph.nodes[n].get("order", 0))
    positions: Dict[str, Tuple[float, float]] = {}
    cols = max(1, math.ceil(math.sqrt(len(hubs))))
    for i, hub in enumerate(hubs):
        cx, cy = (i % cols) * 4.0, -(i // cols) * 4.0
        positions[hub] = (cx, cy)
        members = sorted(n for n in graph.neighbors(hub) if graph.nodes[n].get("kind") == "participant")
        for k, m in enumerate(members):
            angle = 2 * math.pi * k / max(1, len(members))
            positions[m] = (cx + 1.4 * math.cos(angle), cy + 1.4 * math.sin(angle))
    return positions


def _layout_spring(graph: nx.Graph) -> Dict[str, Tuple[float, float]]:
    return nx.spring_layout(graph, seed=42)


def render(graph: nx.Graph, layout: str, out_path: Path, *, title: str, dpi: int) -> Path:
    positions = _layout_hub(graph) if layout == "hub" else _layout_spring(graph)
    palette = _category_palette(graph)
    hubs = [n for n, d in graph.nodes(data=True) if d.get("kind") == "group"]
    people = [n for n, d in graph.nodes(data=True) if d.get("kind") == "participant"]
    seat_edges = [(u, v) for u, v, d in graph.edges(data=True) if d.get("kind") == "seat"]
    key_edges = [(u, v) for u, v, d in graph.edges(data=True) if d.get("kind") == "key"]

    fig, ax = plt.subplots(figsize=(13, 9))
    nx.draw_networkx_edges(graph, positions, edgelist=seat_edges, ax=ax, edge_color="#bbbbbb", width=1.0)
    nx.draw_networkx_edges(graph, positions, edgelist=key_edges, ax=ax, edge_color="#555555",
                           style="dashed", width=1.2)
    nx.draw_networkx_nodes(graph, positions, nodelist=hubs, ax=ax, node_color="#f0f0f0",
                           edgecolors="#1f1f1f", node_shape="s", node_size=1400)
    nx.draw_networkx_nodes(
        graph, positions, nodelist=people, ax=ax,
        node_color=[palette[graph.nodes[n]["category"]] for n in people],
        node_size=[120 + 60 * int(graph.nodes[n].get("skill", 3)) for n in people],
        edgecolors="#2f2f2f",
    )
    nx.draw_networkx_labels(graph, positions, labels={n: graph.nodes[n]["label"] for n in graph.nodes},
                            ax=ax, font_size=7)
    handles = [Line2D([0], [0], marker="o", color="w", markerfacecolor=c, markeredgecolor="#2f2f2f",
                      markersize=8, label=cat) for cat, c in palette.items()]
    if handles:
        ax.legend(handles=handles, loc="upper right", fontsize=8, title="Category")
    ax.set_title(f"{title} ({layout} layout)")
    ax.set_axis_off()
    out_path.parent.mkdir(parents=True, exist_ok=True)
    fig.tight_layout()
    fig.savefig(out_path, dpi=dpi)
    plt.close(fig)
    return out_path


def main(argv=None) -> int:
    args = parse_args(argv)
    store = RosterStore(args.store, load_config(args.config))
    try:
        session = store.load_session(args.session)
        roster = store.load_participants(args.session)
    except RosterError as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return 1
    graph = build_graph(session, roster)
    for layout in args.layouts:
        path = render(graph, layout, args.out_dir / f"{args.out_prefix}_{layout}.png",
                      title=f"Seating for {session.name}", dpi=args.dpi)
        print(f"Wrote graph to {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
