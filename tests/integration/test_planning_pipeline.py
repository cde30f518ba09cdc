# =============================================================================
# tests/integration/test_planning_pipeline.py
# Integration Tests for the Full Planning Pipeline
# Tests: load -> rooms -> model -> solve -> materialize -> persist -> swap
# =============================================================================

import pytest
from collections import Counter
from datetime import date
from types import SimpleNamespace

MONDAY = date(2024, 3, 11)


def make_service(reference, config=None, **kwargs):
    from planning_core.optimization import OptimizerConfig
    from planning_core.services import DateRangeGuard, PlanningService

    loader = SimpleNamespace(load=lambda dates: reference)
    return PlanningService(
        loader,
        config=config or OptimizerConfig(time_limit=30),
        guard=kwargs.pop("guard", DateRangeGuard()),
        **kwargs,
    )


def run(reference, config=None, dates=(MONDAY,)):
    result = make_service(reference, config).run_optimization(list(dates))
    assert result.success, result.error
    return result.data


class TestExampleScenarios:
    """End-to-end runs on small hand-checked inputs"""

    def test_two_roles_one_procedure(self, theater_reference):
        """Each role unit gets exactly one competent staff member"""
        summary = run(theater_reference)

        assert summary.feasible
        assert summary.counts == {"bloc": 2}
        assert sorted((a.staff_id, a.demand.role_id) for a in summary.assignments) == [
            ("s1", "instrumentiste"),
            ("s2", "aide_salle"),
        ]
        assert [r.room for r in summary.rooms] == ["verte"]

    def test_site_ceiling_prefers_higher_ranks(self, site_reference):
        """Capacity 2 goes to ranks 1 and 2; the third staff falls back to admin"""
        summary = run(site_reference)
        by_staff = {a.staff_id: a.kind.value for a in summary.assignments}

        assert by_staff == {"s1": "site", "s2": "site", "s3": "administratif"}

    def test_flexible_quota_forces_working_days(self, factory):
        """A flexible staff member with quota 3 works at least 3 days"""
        from planning_core.optimization import OptimizerConfig, ScoreWeights

        # admin worth nothing: only the quota makes the solver assign anything
        config = OptimizerConfig(time_limit=30, weights=ScoreWeights(admin_base=0.0))
        staff = [factory.staff("s1", flexible=True, required_days=3)]
        reference = factory.reference(factory.week, staff)
        summary = run(reference, config, dates=factory.week)

        assert summary.feasible
        assert len({a.date for a in summary.assignments}) >= 3

    def test_quota_holds_in_each_week_of_a_two_week_run(self, factory):
        """Two weeks of weekdays: the weekly quota is met in both weeks"""
        from datetime import timedelta
        from planning_core.optimization import OptimizerConfig, ScoreWeights, iso_week

        config = OptimizerConfig(time_limit=30, weights=ScoreWeights(admin_base=0.0))
        dates = factory.week + [d + timedelta(days=7) for d in factory.week]
        staff = [factory.staff("s1", flexible=True, required_days=3)]
        reference = factory.reference(dates, staff)
        summary = run(reference, config, dates=dates)

        worked = Counter(iso_week(d) for d in {a.date for a in summary.assignments})
        assert summary.feasible
        assert worked[(2024, 11)] >= 3
        assert worked[(2024, 12)] >= 3

    def test_swap_reduces_admin_load(self, factory):
        """A half-day swap moves staff with three admin slots onto a preferred site"""
        from planning_core.optimization import AdminDemand, Assignment, DoctorNeed, Period, SiteDemand

        am = Period.MORNING
        days = factory.week[:3]
        staff = [
            factory.staff("a", sites={"centre": 1}, doctors={"dr_a": 1}),
            factory.staff("b", sites={"centre": 2}),
        ]
        reference = factory.reference(
            days, staff,
            doctor_needs=[DoctorNeed("dr_a", "centre", days[0], am, 1.0)],
        )
        assignments = [Assignment("a", AdminDemand(), d, am) for d in days]
        assignments.append(Assignment("b", SiteDemand("centre"), days[0], am))

        result = make_service(reference).run_swap_refinement(
            days, assignments=assignments, reference=reference
        )

        assert result.success
        assert result.data.swap_count == 1
        admin = Counter(a.staff_id for a in assignments if a.kind.value == "administratif")
        assert admin["a"] == 2
        assert result.data.final_score > result.data.initial_score

    def test_hard_exclusion(self, factory):
        """An excluded staff member is never placed with the doctor"""
        from planning_core.optimization import (
            DoctorNeed, OptimizerConfig, Period, Procedure, RoleRequirement, SolutionAnalyzer,
        )

        d = factory.monday
        staff = [
            factory.staff("s1", roles={"instrumentiste": 1}, sites={"centre": 1}, doctors={"dr_a": 1}),
            factory.staff("s2", roles={"instrumentiste": None}),
        ]
        reference = factory.reference(
            [d], staff,
            procedures=[Procedure("p1", d, Period.MORNING, "hanche", doctor_id="dr_a")],
            requirements=[RoleRequirement("hanche", "instrumentiste", 1)],
            doctor_needs=[DoctorNeed("dr_a", "centre", d, Period.AFTERNOON, 1.0)],
        )
        config = OptimizerConfig(time_limit=30, exclusion_pairs=[("s1", "dr_a")])
        summary = run(reference, config)

        s1 = [a for a in summary.assignments if a.staff_id == "s1"]
        assert all(a.kind.value == "administratif" for a in s1)
        assert SolutionAnalyzer(reference, config).check_invariants(summary.assignments, summary.rooms).ok


class TestDegradedRuns:
    """Runs that complete without a full assignment"""

    def test_infeasible_keeps_rooms(self, factory):
        """An infeasible solve reports no staff but keeps the rooms"""
        from planning_core.optimization import Period, Procedure, RoleRequirement

        d = factory.monday
        reference = factory.reference(
            [d], [factory.staff("s1", roles={"instrumentiste": 1})],
            procedures=[
                Procedure("p1", d, Period.MORNING, "hanche"),
                Procedure("p2", d, Period.MORNING, "genou"),
            ],
            requirements=[
                RoleRequirement("hanche", "instrumentiste", 1),
                RoleRequirement("genou", "instrumentiste", 1),
            ],
        )
        summary = run(reference)

        assert summary.feasible is False
        assert summary.status == "infeasible"
        assert summary.assignments == []
        assert summary.room_count == 2

    def test_unassigned_and_unmet_reported(self, factory):
        """Procedures without a room and roles nobody holds are listed"""
        from planning_core.optimization import Period, Procedure, RoleRequirement

        d = factory.monday
        procedures = [Procedure(f"p{i}", d, Period.MORNING, f"t{i}") for i in range(4)]
        reference = factory.reference(
            [d], [factory.staff("s1")],
            procedures=procedures,
            requirements=[RoleRequirement("t0", "anesthesiste", 1)],
        )
        summary = run(reference)

        assert summary.feasible
        assert summary.unassigned_procedures == ["p3"]
        assert [u["procedure_id"] for u in summary.unmet_units] == ["p0"]

    def test_invalid_date_fails(self, theater_reference):
        """Malformed dates give a failed result, not an exception"""
        result = make_service(theater_reference).run_optimization(["2024-13-45"])

        assert not result.success
        assert result.error_code == "DATA_001"

    def test_overlapping_run_rejected(self, theater_reference):
        """A run on dates another run holds is refused"""
        from planning_core.services import DateRangeGuard

        guard = DateRangeGuard()
        service = make_service(theater_reference, guard=guard)

        with guard.claim([MONDAY]):
            result = service.run_optimization([MONDAY])

        assert not result.success
        assert result.error_code == "OPT_002"
        assert guard.claimed == set()

    def test_progress_reported(self, theater_reference):
        """Progress callbacks run from load to done"""
        service = make_service(theater_reference)
        seen = []
        service.set_progress_callback(lambda pct, msg: seen.append(pct))
        service.run_optimization(["2024-03-11"])

        assert seen[0] < seen[-1] == 100


class TestResultOutcome:
    """Completed, infeasible and failed runs are told apart by result metadata"""

    def test_completed_run(self, theater_reference):
        """A feasible run is completed and carries its status and a clean check"""
        from planning_core.services import ServiceResult

        result = make_service(theater_reference).run_optimization([MONDAY])

        assert result.outcome == ServiceResult.COMPLETED
        assert result.metadata["status"] == "Optimal"
        assert result.metadata["assignments"] == 2
        assert result.metadata["violations"] == {}
        assert result.data.violations == {}

    def test_infeasible_run(self, factory):
        """An infeasible solve succeeds with the infeasible outcome"""
        from planning_core.optimization import Period, Procedure, RoleRequirement
        from planning_core.services import ServiceResult

        d = factory.monday
        reference = factory.reference(
            [d], [factory.staff("s1", roles={"instrumentiste": 1})],
            procedures=[
                Procedure("p1", d, Period.MORNING, "hanche"),
                Procedure("p2", d, Period.MORNING, "genou"),
            ],
            requirements=[
                RoleRequirement("hanche", "instrumentiste", 1),
                RoleRequirement("genou", "instrumentiste", 1),
            ],
        )
        result = make_service(reference).run_optimization([d])

        assert result.success
        assert result.outcome == ServiceResult.INFEASIBLE
        assert result.metadata["rooms"] == 2
        assert result.metadata["assignments"] == 0

    def test_failed_run(self, theater_reference):
        """A data error is a failed outcome with the error details"""
        from planning_core.services import ServiceResult

        result = make_service(theater_reference).run_optimization(["not-a-date"])

        assert result.outcome == ServiceResult.FAILED
        assert result.metadata["details"] == {"column": "date", "value": "not-a-date"}
        assert result.recoverable

    def test_broken_invariant_check_does_not_fail_run(self, theater_reference, monkeypatch):
        """The post-run check is diagnostic only"""
        from planning_core.optimization import SolutionAnalyzer

        def explode(self, *args, **kwargs):
            raise RuntimeError("analyzer bug")

        monkeypatch.setattr(SolutionAnalyzer, "check_invariants", explode)
        result = make_service(theater_reference).run_optimization([MONDAY])

        assert result.success
        assert result.data.counts == {"bloc": 2}
        assert result.data.violations == {}

    def test_swap_outcome(self, site_reference):
        """Swap refinement reports its swap count in metadata"""
        from planning_core.optimization import AdminDemand, Assignment, Period
        from planning_core.services import ServiceResult

        assignments = [Assignment("s1", AdminDemand(), MONDAY, Period.MORNING)]
        result = make_service(site_reference).run_swap_refinement(
            [MONDAY], assignments=assignments, reference=site_reference
        )

        assert result.outcome == ServiceResult.COMPLETED
        assert result.metadata["swap_count"] == result.data.swap_count


class TestPersistedRuns:
    """Runs persisted through the in-memory Supabase client"""

    def test_rerun_is_idempotent(self, fake_supabase, supabase_tables):
        """Re-running the same dates replaces rows and reaches the same score"""
        from planning_core.optimization import OptimizerConfig
        from planning_core.services import DateRangeGuard, build_planning_service

        client = fake_supabase(supabase_tables)
        service = build_planning_service(client, OptimizerConfig(time_limit=30))
        service.guard = DateRangeGuard()

        first = service.run_optimization([MONDAY])
        second = service.run_optimization([MONDAY])

        assert first.success and second.success
        assert first.data.objective == pytest.approx(second.data.objective)
        assert first.data.planning_id == second.data.planning_id
        assert len(client.tables["planning"]) == 1
        assert len(client.tables["planning_genere_bloc_operatoire"]) == 1
        assert len(client.tables["planning_genere_personnel"]) == second.data.total_assignments

    def test_stored_run_contents(self, fake_supabase, supabase_tables):
        """Both instrumentistes cover the procedure in its preferred room"""
        from planning_core.optimization import OptimizerConfig
        from planning_core.services import DateRangeGuard, build_planning_service

        client = fake_supabase(supabase_tables)
        service = build_planning_service(client, OptimizerConfig(time_limit=30))
        service.guard = DateRangeGuard()
        summary = service.run_optimization([MONDAY]).data

        assert summary.counts == {"bloc": 2, "site": 1}
        (room_row,) = client.tables["planning_genere_bloc_operatoire"]
        assert room_row["salle_assignee"] == "verte"
        assert all(a.id for a in summary.assignments)

    def test_swap_on_stored_rows(self, fake_supabase, supabase_tables):
        """Refinement reads stored rows back and keeps their count"""
        from planning_core.optimization import OptimizerConfig
        from planning_core.services import DateRangeGuard, build_planning_service

        client = fake_supabase(supabase_tables)
        service = build_planning_service(client, OptimizerConfig(time_limit=30))
        service.guard = DateRangeGuard()
        service.run_optimization([MONDAY])

        result = service.run_swap_refinement([MONDAY])

        assert result.success, result.error
        assert result.data.final_assignment_count == 3
        assert result.data.final_score >= result.data.initial_score
