# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import pytest
from datetime import date, timedelta
from types import SimpleNamespace
from typing import Dict, List, Optional, Sequence, Tuple
from unittest.mock import MagicMock

from planning_core.optimization import (
    Availability,
    DoctorNeed,
    InterventionType,
    MultiFlowConfig,
    OptimizerConfig,
    Period,
    Procedure,
    ReferenceData,
    RoleRequirement,
    Staff,
)


MONDAY = date(2024, 3, 11)
WEEK = [MONDAY + timedelta(days=i) for i in range(5)]
BOTH = (Period.MORNING, Period.AFTERNOON)


# =============================================================================
# DOMAIN BUILDERS
# =============================================================================

def make_staff(
    staff_id: str,
    roles: Optional[Dict[str, Optional[int]]] = None,
    sites: Optional[Dict[str, int]] = None,
    doctors: Optional[Dict[str, int]] = None,
    prefers_admin: bool = False,
    flexible: bool = False,
    required_days: int = 0,
) -> Staff:
    return Staff(
        id=staff_id,
        name=staff_id.upper(),
        competencies=dict(roles or {}),
        site_preferences=dict(sites or {}),
        doctor_preferences=dict(doctors or {}),
        prefers_admin=prefers_admin,
        flexible_hours=flexible,
        required_days=required_days,
    )


def full_availability(
    staff_ids: Sequence[str],
    dates: Sequence[date],
    periods: Sequence[Period] = BOTH,
) -> List[Availability]:
    return [Availability(s, d, p) for s in staff_ids for d in dates for p in periods]


def build_reference(
    dates: Sequence[date],
    staff: Sequence[Staff],
    procedures: Sequence[Procedure] = (),
    requirements: Sequence[RoleRequirement] = (),
    doctor_needs: Sequence[DoctorNeed] = (),
    availability: Optional[Sequence[Availability]] = None,
    intervention_types: Optional[Sequence[InterventionType]] = None,
    multi_flow_configs: Sequence[MultiFlowConfig] = (),
    absences=(),
    prior_worked_days: Optional[Dict[Tuple[str, Tuple[int, int]], int]] = None,
) -> ReferenceData:
    if availability is None:
        availability = full_availability([s.id for s in staff], dates)
    if intervention_types is None:
        intervention_types = [InterventionType(t) for t in {p.intervention_type_id for p in procedures}]
    return ReferenceData(
        dates=list(dates),
        staff={s.id: s for s in staff},
        intervention_types={t.id: t for t in intervention_types},
        role_requirements=list(requirements),
        multi_flow_configs=list(multi_flow_configs),
        procedures=list(procedures),
        doctor_needs=list(doctor_needs),
        availability=list(availability),
        absences=list(absences),
        prior_worked_days=dict(prior_worked_days or {}),
    )


@pytest.fixture
def factory():
    """Builders for domain records"""
    return SimpleNamespace(
        staff=make_staff,
        availability=full_availability,
        reference=build_reference,
        monday=MONDAY,
        week=WEEK,
    )


@pytest.fixture
def config():
    """Optimizer configuration with a short solver time limit"""
    return OptimizerConfig(time_limit=30)


# =============================================================================
# SCENARIO FIXTURES
# =============================================================================

@pytest.fixture
def theater_reference():
    """One procedure needing an instrumentiste and an aide de salle"""
    staff = [
        make_staff("s1", roles={"instrumentiste": 1}),
        make_staff("s2", roles={"aide_salle": None}),
    ]
    return build_reference(
        dates=[MONDAY],
        staff=staff,
        procedures=[Procedure("p1", MONDAY, Period.MORNING, "hanche", doctor_id="dr_a")],
        requirements=[
            RoleRequirement("hanche", "instrumentiste", 1),
            RoleRequirement("hanche", "aide_salle", 1),
        ],
        intervention_types=[InterventionType("hanche", "Hanche", preferred_room="verte")],
        availability=full_availability(["s1", "s2"], [MONDAY], [Period.MORNING]),
    )


@pytest.fixture
def site_reference():
    """Site needing 1.4 staff-weight with three eligible staff ranked 1-3"""
    staff = [
        make_staff("s1", sites={"centre": 1}),
        make_staff("s2", sites={"centre": 2}),
        make_staff("s3", sites={"centre": 3}),
    ]
    return build_reference(
        dates=[MONDAY],
        staff=staff,
        doctor_needs=[
            DoctorNeed("dr_a", "centre", MONDAY, Period.MORNING, 0.7),
            DoctorNeed("dr_b", "centre", MONDAY, Period.MORNING, 0.7),
        ],
        availability=full_availability(["s1", "s2", "s3"], [MONDAY], [Period.MORNING]),
    )


# =============================================================================
# SUPABASE FIXTURES
# =============================================================================

class FakeResponse:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    """In-memory stand-in for a postgrest query builder (subset used here)."""

    def __init__(self, client, table: str):
        self.client = client
        self.table = table
        self.op = "select"
        self.payload = None
        self.filters = []
        self.order_by = None
        self.desc = False
        self.bounds = None

    def select(self, columns="*"):
        self.op = "select"
        return self

    def insert(self, records):
        self.op = "insert"
        self.payload = records if isinstance(records, list) else [records]
        return self

    def update(self, data):
        self.op = "update"
        self.payload = data
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, column, value):
        self.filters.append(lambda r: r.get(column) == value)
        return self

    def in_(self, column, values):
        values = set(values)
        self.filters.append(lambda r: r.get(column) in values)
        return self

    def gte(self, column, value):
        self.filters.append(lambda r: r.get(column) is not None and str(r.get(column)) >= value)
        return self

    def lte(self, column, value):
        self.filters.append(lambda r: r.get(column) is not None and str(r.get(column)) <= value)
        return self

    def order(self, column, desc=False):
        self.order_by, self.desc = column, desc
        return self

    def range(self, start, end):
        self.bounds = (start, end)
        return self

    def execute(self):
        self.client.executed.append((self.table, self.op))
        rows = self.client.tables.setdefault(self.table, [])

        if self.op == "insert":
            inserted = []
            for record in self.payload:
                row = dict(record)
                self.client.next_id += 1
                row.setdefault("id", f"{self.table}-{self.client.next_id}")
                rows.append(row)
                inserted.append(dict(row))
            return FakeResponse(inserted)

        matched = [r for r in rows if all(f(r) for f in self.filters)]

        if self.op == "update":
            for r in matched:
                r.update(self.payload)
            return FakeResponse([dict(r) for r in matched])

        if self.op == "delete":
            doomed = {id(r) for r in matched}
            self.client.tables[self.table] = [r for r in rows if id(r) not in doomed]
            return FakeResponse([dict(r) for r in matched])

        if self.order_by:
            matched = sorted(matched, key=lambda r: str(r.get(self.order_by)), reverse=self.desc)
        if self.bounds:
            matched = matched[self.bounds[0]:self.bounds[1] + 1]
        return FakeResponse([dict(r) for r in matched])


class FakeSupabaseClient:
    """Minimal in-memory Supabase client keyed by table name."""

    def __init__(self, tables: Optional[Dict[str, List[dict]]] = None):
        self.tables = {name: [dict(r) for r in rows] for name, rows in (tables or {}).items()}
        self.executed = []
        self.next_id = 0

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)


@pytest.fixture
def fake_supabase():
    """Factory for in-memory Supabase clients"""
    return FakeSupabaseClient


@pytest.fixture
def mock_supabase():
    """Mock Supabase client"""
    mock_client = MagicMock()
    mock_client.table.return_value.select.return_value.execute.return_value.data = []
    mock_client.table.return_value.insert.return_value.execute.return_value = MagicMock()
    return mock_client


@pytest.fixture
def supabase_tables():
    """Stored rows for one Monday: two staff, a site need and a procedure"""
    d = MONDAY.isoformat()
    return {
        "secretaires": [
            {"id": "s1", "first_name": "Anne", "name": "Martin", "actif": True,
             "prefered_admin": False, "horaire_flexible": False, "pourcentage_temps": None},
            {"id": "s2", "first_name": "Luc", "name": "Petit", "actif": True,
             "prefered_admin": True, "horaire_flexible": True, "pourcentage_temps": 80},
            {"id": "s9", "first_name": "Old", "name": "Staff", "actif": False,
             "prefered_admin": False, "horaire_flexible": False, "pourcentage_temps": None},
        ],
        "sites": [{"id": "centre", "nom": "Centre", "actif": True}],
        "medecins": [
            {"id": "dr_a", "besoin_secretaires": 1.4},
            {"id": "dr_b", "besoin_secretaires": None},
        ],
        "types_intervention": [
            {"id": "hanche", "nom": "Hanche", "salle_preferentielle": "verte", "actif": True},
        ],
        "types_intervention_besoins_personnel": [
            {"type_intervention_id": "hanche", "besoin_operation_id": "instrumentiste",
             "nombre_requis": 2, "actif": True},
        ],
        "configurations_multi_flux": [
            {"id": "cfg1", "type_flux": "double_flux", "actif": True},
        ],
        "configurations_multi_flux_interventions": [
            {"configuration_id": "cfg1", "type_intervention_id": "hanche", "salle": "rouge", "ordre": 1},
            {"configuration_id": "cfg1", "type_intervention_id": "hanche", "salle": "jaune", "ordre": 2},
        ],
        "secretaires_besoins_operations": [
            {"secretaire_id": "s1", "besoin_operation_id": "instrumentiste", "preference": 1},
            {"secretaire_id": "s2", "besoin_operation_id": "instrumentiste", "preference": None},
        ],
        "secretaires_medecins": [
            {"secretaire_id": "s1", "medecin_id": "dr_a", "priorite": "1"},
        ],
        "secretaires_sites": [
            {"secretaire_id": "s1", "site_id": "centre", "priorite": "2"},
            {"secretaire_id": "s2", "site_id": "centre", "priorite": 1},
        ],
        "besoin_effectif": [
            {"id": "n1", "date": d, "demi_journee": "toute_journee", "type": "medecin",
             "medecin_id": "dr_a", "site_id": "centre", "type_intervention_id": None, "actif": True},
            {"id": "n2", "date": d, "demi_journee": "matin", "type": "medecin",
             "medecin_id": "dr_b", "site_id": "centre", "type_intervention_id": None, "actif": True},
            {"id": "op1", "date": d, "demi_journee": "matin", "type": "bloc_operatoire",
             "medecin_id": "dr_a", "site_id": None, "type_intervention_id": "hanche", "actif": True},
            {"id": "op2", "date": "2024-03-20", "demi_journee": "matin", "type": "bloc_operatoire",
             "medecin_id": "dr_a", "site_id": None, "type_intervention_id": "hanche", "actif": True},
        ],
        "capacite_effective": [
            {"secretaire_id": "s1", "date": d, "demi_journee": "toute_journee", "actif": True},
            {"secretaire_id": "s2", "date": d, "demi_journee": "matin", "actif": True},
            {"secretaire_id": "s9", "date": d, "demi_journee": "matin", "actif": True},
        ],
        "absences": [
            {"secretaire_id": "s2", "date_debut": "2024-03-10", "date_fin": "2024-03-12",
             "demi_journee": "apres_midi", "statut": "approuve"},
            {"secretaire_id": "s1", "date_debut": d, "date_fin": d,
             "demi_journee": None, "statut": "refuse"},
        ],
    }
