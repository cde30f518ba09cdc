# =============================================================================
# planning_core/data/reference_loader.py
# Reference Data Loader
# Reads staff, sites, demand and availability records for the target dates
# and maps the stored schema onto domain records
# =============================================================================

from __future__ import annotations
from collections import defaultdict
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd
from supabase import Client

from planning_core.logging import get_logger, LogContext
from planning_core.optimization.constraint_config import OptimizerConfig
from planning_core.optimization.types import (
    FULL_DAY,
    Absence,
    Availability,
    DoctorNeed,
    InterventionType,
    MultiFlowConfig,
    MultiFlowEntry,
    Procedure,
    ReferenceData,
    RoleRequirement,
    Site,
    Staff,
    expand_periods,
)
from .supabase_client import SupabaseService

logger = get_logger(__name__)


# =============================================================================
# TABLES AND COLUMN MAPPINGS (stored column -> domain field)
# =============================================================================

STAFF_TABLE = "secretaires"
SITES_TABLE = "sites"
DOCTORS_TABLE = "medecins"
INTERVENTION_TYPES_TABLE = "types_intervention"
ROLE_REQUIREMENTS_TABLE = "types_intervention_besoins_personnel"
MULTI_FLOW_TABLE = "configurations_multi_flux"
MULTI_FLOW_ENTRIES_TABLE = "configurations_multi_flux_interventions"
STAFF_ROLES_TABLE = "secretaires_besoins_operations"
STAFF_DOCTORS_TABLE = "secretaires_medecins"
STAFF_SITES_TABLE = "secretaires_sites"
NEEDS_TABLE = "besoin_effectif"
AVAILABILITY_TABLE = "capacite_effective"
ABSENCES_TABLE = "absences"

STAFF_COLUMNS = {
    "id": "id",
    "first_name": "first_name",
    "name": "last_name",
    "prefered_admin": "prefers_admin",
    "horaire_flexible": "flexible_hours",
    "pourcentage_temps": "time_percentage",
}
STAFF_ROLE_COLUMNS = {"secretaire_id": "staff_id", "besoin_operation_id": "role_id", "preference": "rank"}
STAFF_DOCTOR_COLUMNS = {"secretaire_id": "staff_id", "medecin_id": "doctor_id", "priorite": "rank"}
STAFF_SITE_COLUMNS = {"secretaire_id": "staff_id", "site_id": "site_id", "priorite": "rank"}
SITE_COLUMNS = {"id": "id", "nom": "name"}
DOCTOR_COLUMNS = {"id": "id", "besoin_secretaires": "weight"}
INTERVENTION_TYPE_COLUMNS = {"id": "id", "nom": "name", "salle_preferentielle": "preferred_room"}
ROLE_REQUIREMENT_COLUMNS = {
    "type_intervention_id": "intervention_type_id",
    "besoin_operation_id": "role_id",
    "nombre_requis": "count",
}
MULTI_FLOW_COLUMNS = {"id": "id", "type_flux": "flow_type"}
MULTI_FLOW_ENTRY_COLUMNS = {
    "configuration_id": "config_id",
    "type_intervention_id": "intervention_type_id",
    "salle": "room",
    "ordre": "order",
}
NEED_COLUMNS = {
    "id": "id",
    "date": "date",
    "demi_journee": "half_day",
    "type": "need_type",
    "medecin_id": "doctor_id",
    "site_id": "site_id",
    "type_intervention_id": "intervention_type_id",
}
AVAILABILITY_COLUMNS = {"secretaire_id": "staff_id", "date": "date", "demi_journee": "half_day"}
ABSENCE_COLUMNS = {
    "secretaire_id": "staff_id",
    "date_debut": "start_date",
    "date_fin": "end_date",
    "demi_journee": "half_day",
    "statut": "status",
}

# Absences still blocking a day
ACTIVE_ABSENCE_STATUSES = ["approuve", "en_attente"]


def _value(row: Dict[str, Any], key: str, default: Any = None) -> Any:
    """Row value with NaN/None mapped to a default."""
    value = row.get(key, default)
    if value is None:
        return default
    try:
        if pd.isna(value):
            return default
    except (TypeError, ValueError):
        pass
    return value


def _rank(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _records(df: pd.DataFrame, mapping: Dict[str, str]) -> List[Dict[str, Any]]:
    """Rename stored columns to domain names and return row dicts."""
    if df.empty:
        return []
    df = df.rename(columns=mapping)
    for column in mapping.values():
        if column not in df.columns:
            df[column] = None
    return df[list(mapping.values())].to_dict("records")


def _as_date(value: Any) -> date:
    return pd.Timestamp(value).date()


class ReferenceDataLoader:
    """
    Load everything a planning run reads from Supabase.

    Usage:
        loader = ReferenceDataLoader(client, config)
        reference = loader.load([date(2024, 3, 11), date(2024, 3, 12)])
    """

    def __init__(self, client: Client, config: Optional[OptimizerConfig] = None):
        self.client = client
        self.config = config or OptimizerConfig()

    def _service(self, table_name: str) -> SupabaseService:
        return SupabaseService(table_name, self.client)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def load(self, dates: Sequence[date]) -> ReferenceData:
        """
        Load reference data for the target dates.

        Args:
            dates: Target dates

        Returns:
            ReferenceData bundle (full-day records expanded to half-days)
        """
        dates = sorted(set(dates))
        with LogContext(logger, f"Loading reference data for {len(dates)} dates"):
            staff = self._load_staff()
            sites = self._load_sites()
            doctor_weights = self._load_doctor_weights()
            intervention_types = self._load_intervention_types()
            requirements = self._load_role_requirements()
            multi_flow = self._load_multi_flow_configs()
            procedures, needs = self._load_needs(dates, doctor_weights)
            availability = self._load_availability(dates, staff)
            absences = self._load_absences(dates, staff)

            reference = ReferenceData(
                dates=dates,
                staff=staff,
                sites=sites,
                intervention_types=intervention_types,
                role_requirements=requirements,
                multi_flow_configs=multi_flow,
                procedures=procedures,
                doctor_needs=needs,
                availability=availability,
                absences=absences,
            )

        logger.info(
            f"Loaded {len(staff)} staff, {len(sites)} sites, {len(procedures)} procedures, "
            f"{len(needs)} doctor needs, {len(availability)} availability slots, "
            f"{len(absences)} absence days"
        )
        return reference

    # -------------------------------------------------------------------------
    # Staff and preferences
    # -------------------------------------------------------------------------

    def _load_staff(self) -> Dict[str, Staff]:
        rows = _records(self._service(STAFF_TABLE).fetch_all(filters={"actif": True}), STAFF_COLUMNS)
        competencies = self._load_links(STAFF_ROLES_TABLE, STAFF_ROLE_COLUMNS, "role_id")
        doctors = self._load_links(STAFF_DOCTORS_TABLE, STAFF_DOCTOR_COLUMNS, "doctor_id")
        sites = self._load_links(STAFF_SITES_TABLE, STAFF_SITE_COLUMNS, "site_id")

        staff: Dict[str, Staff] = {}
        for row in rows:
            staff_id = str(row["id"])
            flexible = bool(_value(row, "flexible_hours", False))
            name = " ".join(
                str(part) for part in (_value(row, "first_name"), _value(row, "last_name")) if part
            )
            staff[staff_id] = Staff(
                id=staff_id,
                name=name,
                competencies=competencies.get(staff_id, {}),
                site_preferences={k: v for k, v in sites.get(staff_id, {}).items() if v is not None},
                doctor_preferences={k: v for k, v in doctors.get(staff_id, {}).items() if v is not None},
                prefers_admin=bool(_value(row, "prefers_admin", False)),
                flexible_hours=flexible,
                required_days=(
                    self.config.required_days(_value(row, "time_percentage")) if flexible else 0
                ),
            )
        return staff

    def _load_links(
        self,
        table: str,
        mapping: Dict[str, str],
        target: str,
    ) -> Dict[str, Dict[str, Optional[int]]]:
        """staff id -> {target id -> rank} for a ranked link table."""
        links: Dict[str, Dict[str, Optional[int]]] = defaultdict(dict)
        for row in _records(self._service(table).fetch_all(), mapping):
            target_id = _value(row, target)
            if target_id is None:
                continue
            links[str(row["staff_id"])][str(target_id)] = _rank(_value(row, "rank"))
        return dict(links)

    # -------------------------------------------------------------------------
    # Sites, doctors, intervention types
    # -------------------------------------------------------------------------

    def _load_sites(self) -> Dict[str, Site]:
        rows = _records(self._service(SITES_TABLE).fetch_all(filters={"actif": True}), SITE_COLUMNS)
        return {str(r["id"]): Site(str(r["id"]), _value(r, "name", "")) for r in rows}

    def _load_doctor_weights(self) -> Dict[str, float]:
        rows = _records(self._service(DOCTORS_TABLE).fetch_all(), DOCTOR_COLUMNS)
        return {
            str(r["id"]): float(_value(r, "weight", self.config.default_doctor_weight))
            for r in rows
        }

    def _load_intervention_types(self) -> Dict[str, InterventionType]:
        rows = _records(
            self._service(INTERVENTION_TYPES_TABLE).fetch_all(filters={"actif": True}),
            INTERVENTION_TYPE_COLUMNS,
        )
        return {
            str(r["id"]): InterventionType(
                id=str(r["id"]),
                name=_value(r, "name", ""),
                preferred_room=_value(r, "preferred_room"),
            )
            for r in rows
        }

    def _load_role_requirements(self) -> List[RoleRequirement]:
        rows = _records(
            self._service(ROLE_REQUIREMENTS_TABLE).fetch_all(filters={"actif": True}),
            ROLE_REQUIREMENT_COLUMNS,
        )
        return [
            RoleRequirement(str(r["intervention_type_id"]), str(r["role_id"]), int(_value(r, "count", 1)))
            for r in rows
            if int(_value(r, "count", 1)) > 0
        ]

    def _load_multi_flow_configs(self) -> List[MultiFlowConfig]:
        configs = _records(
            self._service(MULTI_FLOW_TABLE).fetch_all(filters={"actif": True}),
            MULTI_FLOW_COLUMNS,
        )
        if not configs:
            return []
        entries: Dict[str, List[MultiFlowEntry]] = defaultdict(list)
        entry_rows = _records(
            self._service(MULTI_FLOW_ENTRIES_TABLE).fetch_in(
                "configuration_id", [c["id"] for c in configs]
            ),
            MULTI_FLOW_ENTRY_COLUMNS,
        )
        for r in entry_rows:
            entries[str(r["config_id"])].append(
                MultiFlowEntry(str(r["intervention_type_id"]), str(r["room"]), int(_value(r, "order", 0)))
            )
        return [
            MultiFlowConfig(str(c["id"]), str(c["flow_type"]), tuple(entries.get(str(c["id"]), ())))
            for c in configs
        ]

    # -------------------------------------------------------------------------
    # Dated records
    # -------------------------------------------------------------------------

    def _dated_rows(self, table: str, mapping: Dict[str, str], dates: List[date]) -> List[Dict[str, Any]]:
        if not dates:
            return []
        df = self._service(table).fetch_by_date_range(
            "date", dates[0].isoformat(), dates[-1].isoformat()
        )
        if not df.empty and "actif" in df.columns:
            df = df[df["actif"].fillna(True).astype(bool)]
        rows = _records(df, mapping)
        wanted = set(dates)
        for row in rows:
            row["date"] = _as_date(row["date"])
        return [r for r in rows if r["date"] in wanted]

    def _load_needs(
        self,
        dates: List[date],
        doctor_weights: Dict[str, float],
    ) -> Tuple[List[Procedure], List[DoctorNeed]]:
        procedures: List[Procedure] = []
        needs: List[DoctorNeed] = []

        for row in self._dated_rows(NEEDS_TABLE, NEED_COLUMNS, dates):
            half_day = _value(row, "half_day", FULL_DAY)
            periods = expand_periods(half_day)
            doctor_id = _value(row, "doctor_id")
            doctor_id = str(doctor_id) if doctor_id is not None else None
            type_id = _value(row, "intervention_type_id")

            if type_id is not None:
                for period in periods:
                    record_id = str(row["id"])
                    procedure_id = record_id if len(periods) == 1 else f"{record_id}:{period.value}"
                    procedures.append(
                        Procedure(procedure_id, row["date"], period, str(type_id), doctor_id, record_id)
                    )
            elif _value(row, "need_type") == "medecin" and doctor_id and _value(row, "site_id"):
                weight = doctor_weights.get(doctor_id, self.config.default_doctor_weight)
                for period in periods:
                    needs.append(DoctorNeed(doctor_id, str(row["site_id"]), row["date"], period, weight))

        return procedures, needs

    def _load_availability(self, dates: List[date], staff: Dict[str, Staff]) -> List[Availability]:
        slots = set()
        for row in self._dated_rows(AVAILABILITY_TABLE, AVAILABILITY_COLUMNS, dates):
            staff_id = str(row["staff_id"])
            if staff_id not in staff:
                continue
            for period in expand_periods(_value(row, "half_day", FULL_DAY)):
                slots.add(Availability(staff_id, row["date"], period))
        return sorted(slots, key=lambda a: (a.staff_id, a.date, a.period.order))

    def _load_absences(self, dates: List[date], staff: Dict[str, Staff]) -> List[Absence]:
        if not dates:
            return []
        df = self._service(ABSENCES_TABLE).fetch_in("statut", ACTIVE_ABSENCE_STATUSES)
        absences = set()
        for row in _records(df, ABSENCE_COLUMNS):
            staff_id = str(_value(row, "staff_id", ""))
            if staff_id not in staff:
                continue
            start = _as_date(row["start_date"])
            end = _as_date(_value(row, "end_date", row["start_date"]))
            half_day = _value(row, "half_day", FULL_DAY)
            periods = [None] if half_day == FULL_DAY else expand_periods(half_day)
            for day in dates:
                if start <= day <= end:
                    for period in periods:
                        absences.add(Absence(staff_id, day, period))
        return sorted(absences, key=lambda a: (a.staff_id, a.date, a.period.order if a.period else -1))
