# =============================================================================
# planning_core/optimization/types.py
# Domain Types for Staff Planning Optimization
# Staff, availability, demand units, assignments and the reference data bundle
# =============================================================================

from __future__ import annotations
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import ClassVar, Dict, List, Optional, Set, Tuple, Union

from planning_core.errors import DataValidationError


# =============================================================================
# PERIODS AND KINDS
# =============================================================================

FULL_DAY = "toute_journee"


class Period(str, Enum):
    """Half-day scheduling period."""

    MORNING = "matin"
    AFTERNOON = "apres_midi"

    @property
    def order(self) -> int:
        return 0 if self is Period.MORNING else 1

    @property
    def other(self) -> Period:
        return Period.AFTERNOON if self is Period.MORNING else Period.MORNING


def expand_periods(value: str) -> List[Period]:
    """
    Expand a stored half-day value into half-day periods.

    Args:
        value: "matin", "apres_midi" or "toute_journee"

    Returns:
        One period, or both periods for a full-day value
    """
    if value == FULL_DAY:
        return [Period.MORNING, Period.AFTERNOON]
    try:
        return [Period(value)]
    except ValueError:
        raise DataValidationError(
            f"Unknown half-day value: {value!r}",
            column="demi_journee",
            value=value,
        ) from None


class AssignmentKind(str, Enum):
    """Kind of duty an assignment covers."""

    THEATER = "bloc"
    SITE = "site"
    ADMIN = "administratif"


Slot = Tuple[date, Period]


def slot_key(day: date, period: Period) -> Tuple[date, int]:
    """Sort key for a (date, period) slot."""
    return (day, period.order)


WeekKey = Tuple[int, int]


def iso_week(day: date) -> WeekKey:
    """(ISO year, ISO week number) of a date."""
    year, week, _ = day.isocalendar()
    return (year, week)


# =============================================================================
# REFERENCE RECORDS
# =============================================================================

@dataclass
class Staff:
    """
    A secretary eligible for assignment.

    Attributes:
        competencies: role id -> preference rank (1-3) or None when the
            competency is held without a ranked preference
        site_preferences: site id -> rank (1-3); unranked sites are ineligible
        doctor_preferences: doctor id -> rank (1-3)
        required_days: minimum working days per week for flexible staff
    """

    id: str
    name: str = ""
    competencies: Dict[str, Optional[int]] = field(default_factory=dict)
    site_preferences: Dict[str, int] = field(default_factory=dict)
    doctor_preferences: Dict[str, int] = field(default_factory=dict)
    prefers_admin: bool = False
    flexible_hours: bool = False
    required_days: int = 0

    def has_competency(self, role_id: str) -> bool:
        return role_id in self.competencies

    def competency_rank(self, role_id: str) -> Optional[int]:
        return self.competencies.get(role_id)

    def site_rank(self, site_id: str) -> Optional[int]:
        rank = self.site_preferences.get(site_id)
        if rank is None or not 1 <= rank <= 3:
            return None
        return rank

    def doctor_rank(self, doctor_id: Optional[str]) -> Optional[int]:
        if doctor_id is None:
            return None
        return self.doctor_preferences.get(doctor_id)


@dataclass(frozen=True)
class Site:
    id: str
    name: str = ""


@dataclass(frozen=True)
class Availability:
    """A (staff, date, half-day) slot the staff member can be assigned."""

    staff_id: str
    date: date
    period: Period


@dataclass(frozen=True)
class Absence:
    """Approved or pending absence; period None means the whole day."""

    staff_id: str
    date: date
    period: Optional[Period] = None

    @property
    def is_full_day(self) -> bool:
        return self.period is None


@dataclass(frozen=True)
class InterventionType:
    id: str
    name: str = ""
    preferred_room: Optional[str] = None


@dataclass(frozen=True)
class RoleRequirement:
    """Headcount of one theater role required by an intervention type."""

    intervention_type_id: str
    role_id: str
    count: int


@dataclass(frozen=True)
class MultiFlowEntry:
    intervention_type_id: str
    room: str
    order: int


@dataclass(frozen=True)
class MultiFlowConfig:
    """Room layout for running 2 (double) or 3 (triple) procedures in parallel."""

    FLOW_SIZES: ClassVar[Dict[str, int]] = {"double_flux": 2, "triple_flux": 3}

    id: str
    flow_type: str
    entries: Tuple[MultiFlowEntry, ...] = ()

    @property
    def size(self) -> int:
        return self.FLOW_SIZES.get(self.flow_type, len(self.entries))

    def rooms_for(self, intervention_type_id: str) -> List[str]:
        """Rooms configured for a type, in configured order."""
        entries = [e for e in self.entries if e.intervention_type_id == intervention_type_id]
        return [e.room for e in sorted(entries, key=lambda e: e.order)]


@dataclass(frozen=True)
class Procedure:
    """
    A scheduled surgical procedure needing a room and theater staff.

    source_id is the stored need record; it differs from id only when a
    full-day record was split into two half-day procedures.
    """

    id: str
    date: date
    period: Period
    intervention_type_id: str
    doctor_id: Optional[str] = None
    source_id: Optional[str] = None

    @property
    def record_id(self) -> str:
        return self.source_id or self.id


@dataclass(frozen=True)
class DoctorNeed:
    """A doctor's standing need for secretarial staff at a site."""

    doctor_id: str
    site_id: str
    date: date
    period: Period
    weight: float = 1.2


# =============================================================================
# DEMAND UNITS (tagged variant)
# =============================================================================

@dataclass(frozen=True)
class TheaterDemand:
    """One ordinal instance of a role required by a procedure."""

    kind: ClassVar[AssignmentKind] = AssignmentKind.THEATER

    procedure_id: str
    role_id: str
    ordinal: int = 1


@dataclass(frozen=True)
class SiteDemand:
    """Capacity slot at a clinical site; the ceiling lives on the model."""

    kind: ClassVar[AssignmentKind] = AssignmentKind.SITE

    site_id: str


@dataclass(frozen=True)
class AdminDemand:
    """Unlimited administrative fallback."""

    kind: ClassVar[AssignmentKind] = AssignmentKind.ADMIN


Demand = Union[TheaterDemand, SiteDemand, AdminDemand]


# =============================================================================
# OUTPUT RECORDS
# =============================================================================

@dataclass
class Assignment:
    """
    A staff member covering one demand unit in one half-day.

    Only staff_id changes after creation (swap refinement); demand, date and
    period are fixed for the lifetime of the record.
    """

    staff_id: str
    demand: Demand
    date: date
    period: Period
    id: Optional[str] = None

    @property
    def kind(self) -> AssignmentKind:
        return self.demand.kind

    @property
    def ordinal(self) -> Optional[int]:
        if isinstance(self.demand, TheaterDemand):
            return self.demand.ordinal
        return None

    @property
    def slot(self) -> Slot:
        return (self.date, self.period)

    def signature(self) -> Tuple[Demand, date, Period, AssignmentKind]:
        """Everything except the staff identity."""
        return (self.demand, self.date, self.period, self.kind)


@dataclass(frozen=True)
class RoomAssignment:
    procedure_id: str
    date: date
    period: Period
    room: str


# =============================================================================
# REFERENCE DATA BUNDLE
# =============================================================================

@dataclass
class ReferenceData:
    """
    Everything a run reads, already mapped to domain records.

    Lookup indexes are built once in __post_init__; the bundle is treated as
    immutable afterwards.
    """

    dates: List[date]
    staff: Dict[str, Staff] = field(default_factory=dict)
    sites: Dict[str, Site] = field(default_factory=dict)
    intervention_types: Dict[str, InterventionType] = field(default_factory=dict)
    role_requirements: List[RoleRequirement] = field(default_factory=list)
    multi_flow_configs: List[MultiFlowConfig] = field(default_factory=list)
    procedures: List[Procedure] = field(default_factory=list)
    doctor_needs: List[DoctorNeed] = field(default_factory=list)
    availability: List[Availability] = field(default_factory=list)
    absences: List[Absence] = field(default_factory=list)
    # (staff id, ISO week) -> weekdays already worked outside the target dates
    prior_worked_days: Dict[Tuple[str, WeekKey], int] = field(default_factory=dict)

    def __post_init__(self):
        self.dates = sorted(set(self.dates))
        self._available: Set[Tuple[str, date, Period]] = {
            (a.staff_id, a.date, a.period) for a in self.availability
        }
        self._requirements: Dict[str, List[RoleRequirement]] = defaultdict(list)
        for req in self.role_requirements:
            self._requirements[req.intervention_type_id].append(req)
        self._procedures: Dict[str, Procedure] = {p.id: p for p in self.procedures}
        self._needs: Dict[Tuple[str, date, Period], List[DoctorNeed]] = defaultdict(list)
        for need in self.doctor_needs:
            self._needs[(need.site_id, need.date, need.period)].append(need)
        self._full_day_absent: Set[Tuple[str, date]] = {
            (a.staff_id, a.date) for a in self.absences if a.is_full_day
        }

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def is_available(self, staff_id: str, day: date, period: Period) -> bool:
        return (staff_id, day, period) in self._available

    def available_slots(self, staff_id: str) -> List[Slot]:
        slots = [
            (d, p) for d in self.dates for p in Period
            if (staff_id, d, p) in self._available
        ]
        return slots

    def requirements_for(self, intervention_type_id: str) -> List[RoleRequirement]:
        return sorted(self._requirements.get(intervention_type_id, []), key=lambda r: r.role_id)

    def procedure(self, procedure_id: str) -> Optional[Procedure]:
        return self._procedures.get(procedure_id)

    def site_slots(self) -> List[Tuple[str, date, Period]]:
        """(site, date, period) keys with at least one doctor need, sorted."""
        return sorted(self._needs, key=lambda k: (k[0], k[1], k[2].order))

    def doctors_at(self, site_id: str, day: date, period: Period) -> List[str]:
        return sorted({n.doctor_id for n in self._needs.get((site_id, day, period), [])})

    def site_capacity(self, site_id: str, day: date, period: Period) -> int:
        """Ceiling of the summed doctor weights at a site half-day."""
        total = sum(n.weight for n in self._needs.get((site_id, day, period), []))
        return math.ceil(round(total, 6))

    def doctors_for_assignment(self, assignment: Assignment) -> List[str]:
        """Doctors an assignment puts the staff member next to."""
        demand = assignment.demand
        if isinstance(demand, TheaterDemand):
            procedure = self.procedure(demand.procedure_id)
            return [procedure.doctor_id] if procedure and procedure.doctor_id else []
        if isinstance(demand, SiteDemand):
            return self.doctors_at(demand.site_id, assignment.date, assignment.period)
        return []

    def is_full_day_absent(self, staff_id: str, day: date) -> bool:
        return (staff_id, day) in self._full_day_absent

    def eligible_work_days(self, staff_id: str) -> List[date]:
        """Weekdays with any availability and no full-day absence."""
        return [
            d for d in self.dates
            if d.weekday() < 5
            and not self.is_full_day_absent(staff_id, d)
            and any((staff_id, d, p) in self._available for p in Period)
        ]

    def prior_worked(self, staff_id: str, week: WeekKey) -> int:
        return self.prior_worked_days.get((staff_id, week), 0)
