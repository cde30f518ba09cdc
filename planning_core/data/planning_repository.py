# =============================================================================
# planning_core/data/planning_repository.py
# Planning Repository
# Persists planning periods, room assignments and staff assignments
# =============================================================================

from __future__ import annotations
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd
from supabase import Client

from planning_core.errors import DataValidationError
from planning_core.logging import get_logger
from planning_core.optimization.constraint_config import OptimizerConfig
from planning_core.optimization.types import (
    AdminDemand,
    Assignment,
    AssignmentKind,
    Period,
    ReferenceData,
    RoomAssignment,
    SiteDemand,
    TheaterDemand,
    WeekKey,
    iso_week,
)
from .supabase_client import SupabaseService

logger = get_logger(__name__)


PLANNING_TABLE = "planning"
ROOM_ASSIGNMENTS_TABLE = "planning_genere_bloc_operatoire"
STAFF_ASSIGNMENTS_TABLE = "planning_genere_personnel"


def iso_week_bounds(day: date) -> Tuple[date, date]:
    """Monday and Sunday of the ISO week containing day."""
    monday = day - timedelta(days=day.weekday())
    return monday, monday + timedelta(days=6)


class PlanningRepository:
    """
    Read and write generated planning rows.

    Room rows are written before staff rows; a failure between the two
    leaves rooms without staff, which a re-run for the same dates replaces.
    """

    def __init__(self, client: Client, config: Optional[OptimizerConfig] = None):
        self.client = client
        self.config = config or OptimizerConfig()
        self.plannings = SupabaseService(PLANNING_TABLE, client)
        self.rooms = SupabaseService(ROOM_ASSIGNMENTS_TABLE, client)
        self.staff_rows = SupabaseService(STAFF_ASSIGNMENTS_TABLE, client)

    # -------------------------------------------------------------------------
    # Planning period
    # -------------------------------------------------------------------------

    def resolve_planning_id(self, dates: Sequence[date], planning_id: Optional[str] = None) -> str:
        """
        Reuse the caller's planning id, or find/create the ISO-week planning.

        Args:
            dates: Target dates (the first date picks the week)
            planning_id: Optional caller-supplied id

        Returns:
            Planning id
        """
        if planning_id:
            return planning_id
        if not dates:
            raise DataValidationError("At least one target date is required", table=PLANNING_TABLE)

        start, end = iso_week_bounds(min(dates))
        existing = self.plannings.fetch_all(filters={"date_debut": start.isoformat()})
        if not existing.empty:
            planning_id = str(existing.iloc[0]["id"])
            logger.info(f"Reusing planning {planning_id} for week {start}")
            return planning_id

        row = self.plannings.insert({
            "date_debut": start.isoformat(),
            "date_fin": end.isoformat(),
            "statut": "en_cours",
        })
        planning_id = str(row["id"])
        logger.info(f"Created planning {planning_id} for week {start}")
        return planning_id

    def clear_assignments(self, planning_id: str, dates: Sequence[date]) -> None:
        """Delete staff and room rows of a planning for the given dates only."""
        iso_dates = [d.isoformat() for d in dates]
        self.staff_rows.delete_in("date", iso_dates, filters={"planning_id": planning_id})
        self.rooms.delete_in("date", iso_dates, filters={"planning_id": planning_id})
        logger.info(f"Cleared planning {planning_id} rows for {len(iso_dates)} dates")

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def save_room_assignments(
        self,
        planning_id: str,
        rooms: Sequence[RoomAssignment],
        reference: ReferenceData,
    ) -> Dict[str, str]:
        """
        Insert room rows.

        Returns:
            procedure id -> stored room row id
        """
        records, procedure_ids = [], []
        for ra in rooms:
            procedure = reference.procedure(ra.procedure_id)
            records.append({
                "planning_id": planning_id,
                "date": ra.date.isoformat(),
                "periode": ra.period.value,
                "besoin_effectif_id": procedure.record_id if procedure else ra.procedure_id,
                "type_intervention_id": procedure.intervention_type_id if procedure else None,
                "medecin_id": procedure.doctor_id if procedure else None,
                "salle_assignee": ra.room,
                "statut": "planifie",
            })
            procedure_ids.append(ra.procedure_id)

        inserted = self.rooms.insert_many(records)
        logger.info(f"Saved {len(inserted)} room assignments")
        return {pid: str(row["id"]) for pid, row in zip(procedure_ids, inserted)}

    def save_staff_assignments(
        self,
        planning_id: str,
        assignments: Sequence[Assignment],
        room_rows: Dict[str, str],
    ) -> List[Assignment]:
        """Insert staff rows and record their generated ids on the assignments."""
        records = [self._to_record(planning_id, a, room_rows) for a in assignments]
        inserted = self.staff_rows.insert_many(records)
        for assignment, row in zip(assignments, inserted):
            assignment.id = str(row["id"])
        logger.info(f"Saved {len(inserted)} staff assignments")
        return list(assignments)

    def update_staff_ids(self, assignments: Iterable[Assignment]) -> int:
        """Write back staff ids changed by swap refinement."""
        count = 0
        for a in assignments:
            if a.id is None:
                raise DataValidationError(
                    "Cannot update an assignment that was never stored",
                    table=STAFF_ASSIGNMENTS_TABLE,
                )
            self.staff_rows.update({"id": a.id}, {"secretaire_id": a.staff_id})
            count += 1
        logger.info(f"Updated {count} staff assignments")
        return count

    def _to_record(self, planning_id: str, a: Assignment, room_rows: Dict[str, str]) -> Dict[str, Any]:
        record = {
            "planning_id": planning_id,
            "date": a.date.isoformat(),
            "periode": a.period.value,
            "secretaire_id": a.staff_id,
            "type_assignation": a.kind.value,
            "site_id": None,
            "planning_genere_bloc_operatoire_id": None,
            "besoin_operation_id": None,
            "ordre": a.ordinal,
        }
        demand = a.demand
        if isinstance(demand, TheaterDemand):
            record["planning_genere_bloc_operatoire_id"] = room_rows.get(demand.procedure_id)
            record["besoin_operation_id"] = demand.role_id
        elif isinstance(demand, SiteDemand):
            record["site_id"] = demand.site_id
        elif isinstance(demand, AdminDemand):
            record["site_id"] = self.config.admin_site_id
        else:
            raise DataValidationError(
                f"Unknown demand kind: {type(demand).__name__}", table=STAFF_ASSIGNMENTS_TABLE
            )
        return record

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def load_staff_assignments(
        self,
        planning_id: str,
        dates: Sequence[date],
        reference: ReferenceData,
    ) -> List[Assignment]:
        """
        Load stored staff rows of a planning for the given dates.

        Theater rows are linked back to their procedure through the room row.
        """
        iso_dates = [d.isoformat() for d in dates]
        rows = self.staff_rows.fetch_in("date", iso_dates, filters={"planning_id": planning_id})
        if rows.empty:
            return []
        room_rows = self.rooms.fetch_in("date", iso_dates, filters={"planning_id": planning_id})
        room_to_procedure = self._room_row_procedures(room_rows, reference)

        assignments = []
        for row in rows.to_dict("records"):
            if pd.isna(row.get("secretaire_id")):
                continue
            day = pd.Timestamp(row["date"]).date()
            period = Period(row["periode"])
            kind = AssignmentKind(row["type_assignation"])
            if kind is AssignmentKind.THEATER:
                procedure_id = room_to_procedure.get(str(row.get("planning_genere_bloc_operatoire_id")))
                if procedure_id is None:
                    logger.warning(f"Theater row {row.get('id')} has no matching room row; skipped")
                    continue
                ordinal = row.get("ordre")
                demand = TheaterDemand(
                    procedure_id,
                    str(row["besoin_operation_id"]),
                    int(ordinal) if not pd.isna(ordinal) else 1,
                )
            elif kind is AssignmentKind.SITE:
                demand = SiteDemand(str(row["site_id"]))
            else:
                demand = AdminDemand()
            assignments.append(
                Assignment(str(row["secretaire_id"]), demand, day, period, id=str(row["id"]))
            )
        logger.info(f"Loaded {len(assignments)} stored staff assignments")
        return assignments

    @staticmethod
    def _room_row_procedures(room_rows: pd.DataFrame, reference: ReferenceData) -> Dict[str, str]:
        """room row id -> procedure id (half-day procedure ids included)."""
        by_record: Dict[Tuple[str, date, str], str] = {
            (p.record_id, p.date, p.period.value): p.id for p in reference.procedures
        }
        mapping = {}
        for row in room_rows.to_dict("records") if not room_rows.empty else []:
            key = (str(row["besoin_effectif_id"]), pd.Timestamp(row["date"]).date(), row["periode"])
            mapping[str(row["id"])] = by_record.get(key, str(row["besoin_effectif_id"]))
        return mapping

    def load_room_assignments(
        self,
        planning_id: str,
        dates: Sequence[date],
        reference: ReferenceData,
    ) -> List[RoomAssignment]:
        """Load stored room rows as RoomAssignment records."""
        iso_dates = [d.isoformat() for d in dates]
        rows = self.rooms.fetch_in("date", iso_dates, filters={"planning_id": planning_id})
        if rows.empty:
            return []
        procedures = self._room_row_procedures(rows, reference)
        return [
            RoomAssignment(
                procedures[str(r["id"])],
                pd.Timestamp(r["date"]).date(),
                Period(r["periode"]),
                str(r["salle_assignee"]),
            )
            for r in rows.to_dict("records")
        ]

    def load_prior_worked_days(
        self, staff_ids: Iterable[str], dates: Sequence[date]
    ) -> Dict[Tuple[str, WeekKey], int]:
        """
        Weekdays each staff member already works in every ISO week the target
        dates touch, outside the target dates.

        Returns:
            (staff id, ISO week) -> distinct weekdays worked
        """
        if not dates:
            return {}
        start, _ = iso_week_bounds(min(dates))
        _, end = iso_week_bounds(max(dates))
        targets = set(dates)
        df = self.staff_rows.fetch_by_date_range("date", start.isoformat(), end.isoformat())
        if df.empty:
            return {}

        wanted = set(staff_ids)
        worked: Dict[Tuple[str, WeekKey], set] = {}
        for row in df.to_dict("records"):
            staff_id = row.get("secretaire_id")
            if staff_id is None or pd.isna(staff_id) or str(staff_id) not in wanted:
                continue
            day = pd.Timestamp(row["date"]).date()
            if day in targets or day.weekday() >= 5:
                continue
            worked.setdefault((str(staff_id), iso_week(day)), set()).add(day)
        return {key: len(days) for key, days in worked.items()}
