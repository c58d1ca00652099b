"""Running occupancy/skill/category tallies for one group during a placement pass."""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence

from roster_models import Group, Participant, Status


@dataclass
class GroupLoad:
    group_id: str
    capacity: int
    occupancy: int = 0
    skill_total: int = 0
    category_counts: Dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def can_accept(self, n: int) -> bool:
        return self.occupancy + n <= self.capacity

    def has_room(self) -> bool:
        return self.occupancy < self.capacity

    def average_skill(self) -> float:
        if self.occupancy == 0:
            return 0.0
        return self.skill_total / self.occupancy

    def category_count(self, category: str) -> int:
        return self.category_counts.get(category, 0)

    def add(self, participants: Iterable[Participant]) -> None:
        # append-only; a pass never takes anyone back out
        for p in participants:
            self.occupancy += 1
            self.skill_total += p.skill
            self.category_counts[p.category] += 1


def build_loads(groups: Sequence[Group], roster: Iterable[Participant], capacity: int) -> List[GroupLoad]:
    """One load per group (display order), seeded with the ACTIVE participants already seated there."""
    ordered = sorted(groups, key=lambda g: g.order)
    loads = {g.id: GroupLoad(g.id, capacity) for g in ordered}
    for p in roster:
        if p.status != Status.ACTIVE or p.group_id is None:
            continue
        load = loads.get(p.group_id)
        if load is not None:
            load.add([p])
    return [loads[g.id] for g in ordered]
