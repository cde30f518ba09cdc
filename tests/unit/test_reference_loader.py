# =============================================================================
# tests/unit/test_reference_loader.py
# Unit Tests for ReferenceDataLoader (in-memory Supabase client)
# =============================================================================

import pytest
from datetime import date

MONDAY = date(2024, 3, 11)


@pytest.fixture
def reference(fake_supabase, supabase_tables):
    from planning_core.data import ReferenceDataLoader

    return ReferenceDataLoader(fake_supabase(supabase_tables)).load([MONDAY])


class TestStaffLoading:
    """Test staff records and preference links"""

    def test_inactive_staff_excluded(self, reference):
        """Only active staff are loaded"""
        assert sorted(reference.staff) == ["s1", "s2"]

    def test_staff_fields(self, reference):
        """Stored columns map onto staff attributes"""
        s1, s2 = reference.staff["s1"], reference.staff["s2"]

        assert s1.name == "Anne Martin"
        assert s1.competencies == {"instrumentiste": 1}
        assert s1.doctor_preferences == {"dr_a": 1}
        assert s1.site_preferences == {"centre": 2}
        assert s2.prefers_admin is True
        assert s2.site_preferences == {"centre": 1}

    def test_unranked_competency_kept(self, reference):
        """A competency without a preference is held with rank None"""
        assert reference.staff["s2"].competencies == {"instrumentiste": None}

    def test_flexible_quota_from_time_percentage(self, reference):
        """80% of a five-day week is four required days"""
        assert reference.staff["s2"].flexible_hours is True
        assert reference.staff["s2"].required_days == 4
        assert reference.staff["s1"].required_days == 0


class TestDemandLoading:
    """Test procedures and doctor needs"""

    def test_procedures_within_target_dates(self, reference):
        """Procedures outside the target dates are not loaded"""
        from planning_core.optimization import Period, Procedure

        assert reference.procedures == [
            Procedure("op1", MONDAY, Period.MORNING, "hanche", "dr_a", "op1")
        ]

    def test_full_day_need_expands_to_both_half_days(self, reference):
        """A full-day doctor need yields one need per half-day"""
        from planning_core.optimization import Period

        dr_a = [n for n in reference.doctor_needs if n.doctor_id == "dr_a"]

        assert sorted(n.period.order for n in dr_a) == [0, 1]
        assert all(n.weight == pytest.approx(1.4) for n in dr_a)

    def test_doctor_weight_default(self, reference):
        """A doctor without a stored weight uses the default"""
        dr_b = [n for n in reference.doctor_needs if n.doctor_id == "dr_b"]

        assert [n.weight for n in dr_b] == [1.2]

    def test_site_capacity(self, reference):
        """Capacity is the ceiling of the summed weights"""
        from planning_core.optimization import Period

        assert reference.site_capacity("centre", MONDAY, Period.MORNING) == 3
        assert reference.site_capacity("centre", MONDAY, Period.AFTERNOON) == 2

    def test_full_day_procedure_split(self, fake_supabase, supabase_tables):
        """Full-day procedures become two half-day procedures sharing a record"""
        from planning_core.data import ReferenceDataLoader

        supabase_tables["besoin_effectif"].append({
            "id": "op3", "date": MONDAY.isoformat(), "demi_journee": "toute_journee",
            "type": "bloc_operatoire", "medecin_id": "dr_b", "site_id": None,
            "type_intervention_id": "hanche", "actif": True,
        })
        reference = ReferenceDataLoader(fake_supabase(supabase_tables)).load([MONDAY])
        split = [p for p in reference.procedures if p.record_id == "op3"]

        assert sorted(p.id for p in split) == ["op3:apres_midi", "op3:matin"]

    def test_unknown_half_day_rejected(self, fake_supabase, supabase_tables):
        """An unknown half-day value is a validation error"""
        from planning_core.data import ReferenceDataLoader
        from planning_core.errors import DataValidationError

        supabase_tables["besoin_effectif"][0]["demi_journee"] = "soir"

        with pytest.raises(DataValidationError):
            ReferenceDataLoader(fake_supabase(supabase_tables)).load([MONDAY])


class TestRoomsAndRoles:
    """Test intervention types, role requirements and multi-flow configs"""

    def test_intervention_type_and_requirements(self, reference):
        """Preferred room and role headcount are loaded"""
        assert reference.intervention_types["hanche"].preferred_room == "verte"
        assert [(r.role_id, r.count) for r in reference.requirements_for("hanche")] == [
            ("instrumentiste", 2)
        ]

    def test_multi_flow_rooms_in_order(self, reference):
        """Configuration rooms keep their stored order"""
        (config,) = reference.multi_flow_configs

        assert config.size == 2
        assert config.rooms_for("hanche") == ["rouge", "jaune"]


class TestAvailability:
    """Test availability and absences"""

    def test_availability_expanded(self, reference):
        """Full-day availability covers both half-days; inactive staff ignored"""
        from planning_core.optimization import Period

        assert reference.available_slots("s1") == [(MONDAY, Period.MORNING), (MONDAY, Period.AFTERNOON)]
        assert reference.available_slots("s2") == [(MONDAY, Period.MORNING)]
        assert reference.available_slots("s9") == []

    def test_only_active_absences(self, reference):
        """Refused absences are ignored; multi-day absences cover target dates"""
        from planning_core.optimization import Absence, Period

        assert reference.absences == [Absence("s2", MONDAY, Period.AFTERNOON)]
        assert not reference.is_full_day_absent("s2", MONDAY)
