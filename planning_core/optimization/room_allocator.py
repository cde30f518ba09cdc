# =============================================================================
# planning_core/optimization/room_allocator.py
# Greedy Operating-Room Allocation
# Runs before staff assignment; one room per procedure per half-day
# =============================================================================

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from itertools import groupby
from typing import Dict, List, Optional, Sequence, Set, Tuple

import pandas as pd

from planning_core.logging import get_logger
from .types import (
    InterventionType,
    MultiFlowConfig,
    Period,
    Procedure,
    RoomAssignment,
)

logger = get_logger(__name__)


@dataclass
class RoomAllocation:
    """Result of a room allocation pass."""

    assignments: List[RoomAssignment] = field(default_factory=list)
    unassigned: List[Procedure] = field(default_factory=list)

    def room_for(self, procedure_id: str) -> Optional[str]:
        for ra in self.assignments:
            if ra.procedure_id == procedure_id:
                return ra.room
        return None

    @property
    def placed_ids(self) -> Set[str]:
        return {ra.procedure_id for ra in self.assignments}

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {
                    "procedure_id": ra.procedure_id,
                    "date": ra.date,
                    "period": ra.period.value,
                    "room": ra.room,
                }
                for ra in self.assignments
            ],
            columns=["procedure_id", "date", "period", "room"],
        )


class RoomAllocator:
    """
    Assign a physical room to each procedure, one half-day at a time.

    Order of attempts inside a half-day:
        1. Multi-flow groups: 2 or 3 procedures of one intervention type
           placed together in the rooms of a matching double/triple-flow
           configuration, when all of those rooms are free.
        2. Per procedure, by id: preferred room of the intervention type,
           then any room of a multi-flow configuration listing the type,
           then the first free room of the fixed room set.

    Procedures that find no free room are reported as unassigned. Rooms are
    free again at the next half-day; there is no backtracking.
    """

    def __init__(
        self,
        rooms: Sequence[str],
        intervention_types: Dict[str, InterventionType],
        multi_flow_configs: Sequence[MultiFlowConfig] = (),
    ):
        self.rooms = list(rooms)
        self.intervention_types = intervention_types
        self.multi_flow_configs = sorted(multi_flow_configs, key=lambda c: c.id)

    def allocate(self, procedures: Sequence[Procedure]) -> RoomAllocation:
        """
        Allocate rooms for all procedures.

        Args:
            procedures: Scheduled procedures (any order)

        Returns:
            RoomAllocation with placed and unassigned procedures
        """
        result = RoomAllocation()
        ordered = sorted(procedures, key=lambda p: (p.date, p.period.order, p.id))

        for (day, period), group in groupby(ordered, key=lambda p: (p.date, p.period)):
            self._allocate_half_day(day, period, list(group), result)

        logger.info(
            f"Rooms allocated: {len(result.assignments)} placed, "
            f"{len(result.unassigned)} without room"
        )
        return result

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _allocate_half_day(
        self,
        day: date,
        period: Period,
        procedures: List[Procedure],
        result: RoomAllocation,
    ) -> None:
        used: Set[str] = set()
        placed: Dict[str, str] = {}

        for procedure_ids, rooms in self._multi_flow_groups(procedures):
            if used.isdisjoint(rooms):
                for procedure_id, room in zip(procedure_ids, rooms):
                    placed[procedure_id] = room
                    used.add(room)
                logger.debug(f"Multi-flow group {procedure_ids} on {day} {period.value} -> {rooms}")

        for procedure in procedures:
            if procedure.id in placed:
                continue
            room = self._pick_room(procedure, used)
            if room is None:
                logger.warning(
                    f"No free room for procedure {procedure.id} on {day} {period.value}; skipped"
                )
                result.unassigned.append(procedure)
                continue
            placed[procedure.id] = room
            used.add(room)

        for procedure in procedures:
            if procedure.id in placed:
                result.assignments.append(
                    RoomAssignment(procedure.id, day, period, placed[procedure.id])
                )

    def _multi_flow_groups(
        self,
        procedures: List[Procedure],
    ) -> List[Tuple[List[str], List[str]]]:
        """(procedure ids, rooms) for every group matching a configuration."""
        by_type: Dict[str, List[str]] = defaultdict(list)
        for procedure in procedures:
            by_type[procedure.intervention_type_id].append(procedure.id)

        groups = []
        for type_id in sorted(by_type):
            procedure_ids = by_type[type_id]
            size = len(procedure_ids)
            if size not in (2, 3):
                continue
            for config in self.multi_flow_configs:
                rooms = config.rooms_for(type_id)
                if config.size == size and len(rooms) == size:
                    groups.append((procedure_ids, rooms))
                    break
        return groups

    def _pick_room(self, procedure: Procedure, used: Set[str]) -> Optional[str]:
        itype = self.intervention_types.get(procedure.intervention_type_id)
        if itype and itype.preferred_room and itype.preferred_room not in used:
            return itype.preferred_room

        for config in self.multi_flow_configs:
            for room in config.rooms_for(procedure.intervention_type_id):
                if room not in used:
                    return room

        for room in self.rooms:
            if room not in used:
                return room
        return None
