# =============================================================================
# tests/unit/test_swap_engine.py
# Unit Tests for SwapRefinementEngine
# =============================================================================

import pytest
from collections import Counter

from planning_core.optimization import (
    AdminDemand,
    Assignment,
    DoctorNeed,
    OptimizerConfig,
    Period,
    Procedure,
    RoleRequirement,
    SiteDemand,
    SwapMove,
    SwapRefinementEngine,
    TheaterDemand,
)

AM, PM = Period.MORNING, Period.AFTERNOON


def centre_reference(factory, a_doctors=None, b_doctors=None, periods=(AM,)):
    """Staff a (admin, ranks centre first) and b (on centre, ranks it second)."""
    d = factory.monday
    staff = [
        factory.staff("a", sites={"centre": 1}, doctors=a_doctors or {"dr_a": 1}),
        factory.staff("b", sites={"centre": 2}, doctors=b_doctors or {}),
    ]
    needs = [DoctorNeed("dr_a", "centre", d, p, 1.0) for p in periods]
    reference = factory.reference([d], staff, doctor_needs=needs)
    assignments = []
    for p in periods:
        assignments.append(Assignment("a", AdminDemand(), d, p))
        assignments.append(Assignment("b", SiteDemand("centre"), d, p))
    return reference, assignments


def signatures(assignments):
    return Counter(a.signature() for a in assignments)


class TestHalfDaySwap:
    """Test half-day exchanges"""

    def test_preferred_staff_moves_to_site(self, factory):
        """Staff with a rank-1 doctor preference takes the site slot"""
        reference, assignments = centre_reference(factory)
        engine = SwapRefinementEngine(reference, OptimizerConfig())
        result = engine.refine(assignments)

        assert result.swap_count == 1
        # a: 100 -> 50000 + 1200 + 1500; b: 51100 -> 100
        assert result.total_gain == pytest.approx(1600)
        holder = {a.kind.value: a.staff_id for a in assignments}
        assert holder == {"site": "a", "administratif": "b"}
        assert len(result.changed) == 2

    def test_swap_is_pure_permutation(self, factory):
        """Only staff ids change; every other field is kept"""
        reference, assignments = centre_reference(factory)
        before = signatures(assignments)
        staff_before = Counter(a.staff_id for a in assignments)
        result = SwapRefinementEngine(reference).refine(assignments)

        assert signatures(assignments) == before
        assert Counter(a.staff_id for a in assignments) == staff_before
        assert result.final_assignment_count == len(assignments)

    def test_score_never_decreases(self, factory):
        """Final score equals initial score plus the accumulated gain"""
        reference, assignments = centre_reference(factory)
        result = SwapRefinementEngine(reference).refine(assignments)

        assert result.final_score >= result.initial_score
        assert result.final_score - result.initial_score == pytest.approx(result.total_gain)

    def test_excluded_doctor_blocks_swap(self, factory):
        """A move placing staff with an excluded doctor is never made"""
        reference, assignments = centre_reference(factory)
        config = OptimizerConfig(exclusion_pairs=[("a", "dr_a")])
        result = SwapRefinementEngine(reference, config).refine(assignments)

        assert result.swap_count == 0
        assert result.changed == []

    def test_anchored_staff_stays(self, factory):
        """Staff next to a rank-2 preferred doctor keep their site slot"""
        reference, assignments = centre_reference(factory, b_doctors={"dr_a": 2})
        result = SwapRefinementEngine(reference).refine(assignments)

        assert result.swap_count == 0

    def test_zero_iterations_changes_nothing(self, factory):
        """An iteration cap of zero leaves the assignments untouched"""
        reference, assignments = centre_reference(factory)
        result = SwapRefinementEngine(reference, OptimizerConfig(max_swap_iterations=0)).refine(assignments)

        assert result.swap_count == 0
        assert result.iterations == 0


class TestFullDaySwap:
    """Test full-day exchanges"""

    def test_problematic_staff_swaps_whole_day(self, factory):
        """Two admin half-days are exchanged in one full-day move"""
        reference, assignments = centre_reference(factory, periods=(AM, PM))
        engine = SwapRefinementEngine(reference)
        metrics = engine.compute_metrics(assignments)

        assert metrics["a"].is_problematic
        assert not metrics["b"].is_problematic

        result = engine.refine(assignments)

        assert result.swap_count == 1
        assert result.swaps[0].full_day is True
        assert result.swaps[0].period is None
        assert {a.staff_id for a in assignments if a.kind.value == "site"} == {"a"}

    def test_full_day_moves_enumerated_first(self, factory):
        """The lazy enumeration yields full-day moves before half-day ones"""
        reference, assignments = centre_reference(factory, periods=(AM, PM))
        engine = SwapRefinementEngine(reference)
        moves = list(engine.candidate_moves(assignments, engine.compute_metrics(assignments)))

        assert moves[0].full_day is True
        assert all(not m.full_day for m in moves[1:])


class TestTieBreak:
    """Test deterministic selection among equal gains"""

    def test_lowest_staff_pair_wins(self, factory):
        """Equal gains are resolved by the sorted staff id pair"""
        d = factory.monday
        staff = [
            factory.staff("s1", sites={"centre": 1}),
            factory.staff("s2", sites={"centre": 1}),
            factory.staff("s3", sites={"centre": 2}),
        ]
        reference = factory.reference(
            [d], staff,
            doctor_needs=[DoctorNeed("dr_a", "centre", d, AM, 1.0)],
            availability=factory.availability(["s1", "s2", "s3"], [d], [AM]),
        )
        assignments = [
            Assignment("s1", AdminDemand(), d, AM),
            Assignment("s2", AdminDemand(), d, AM),
            Assignment("s3", SiteDemand("centre"), d, AM),
        ]
        result = SwapRefinementEngine(reference).refine(assignments)

        assert result.swap_count == 1
        assert (result.swaps[0].staff_a, result.swaps[0].staff_b) == ("s1", "s3")
        assert assignments[2].staff_id == "s1"
        assert assignments[0].staff_id == "s3"


class TestEvaluate:
    """Test move evaluation"""

    def _theater_reference(self, factory):
        d = factory.monday
        staff = [
            factory.staff("a", roles={"instrumentiste": None}, sites={"far": 1}),
            factory.staff("b", roles={"instrumentiste": 1}, sites={"far": 1}),
        ]
        reference = factory.reference(
            [d], staff,
            procedures=[Procedure("p1", d, AM, "hanche")],
            requirements=[RoleRequirement("hanche", "instrumentiste", 1)],
            doctor_needs=[DoctorNeed("dr_a", "far", d, AM, 1.0)],
        )
        assignments = [
            Assignment("a", TheaterDemand("p1", "instrumentiste"), d, AM),
            Assignment("b", SiteDemand("far"), d, AM),
        ]
        return reference, assignments

    def test_gain_is_delta_of_two_staff(self, factory):
        """Only the two staff involved contribute to the gain"""
        reference, assignments = self._theater_reference(factory)
        engine = SwapRefinementEngine(reference)
        gain = engine.evaluate(assignments, SwapMove(pairs=((0, 1),), full_day=False))

        # theater rank bonus moves from 0 to 3000; site scores are equal
        assert gain == pytest.approx(3000)

    def test_restricted_exchange_penalised(self, factory):
        """Exchanging theater with a restricted site costs the fixed penalty"""
        reference, assignments = self._theater_reference(factory)
        config = OptimizerConfig(restricted_site_ids=["far"])
        engine = SwapRefinementEngine(reference, config)
        gain = engine.evaluate(assignments, SwapMove(pairs=((0, 1),), full_day=False))

        assert gain == pytest.approx(3000 - config.weights.restricted_exchange_penalty)


class TestUnknownStaff:
    """Test assignments referencing staff outside the reference data"""

    def test_unknown_staff_untouched(self, factory):
        """Unknown staff are neither scored nor moved"""
        reference, assignments = centre_reference(factory)
        assignments.append(Assignment("ghost", AdminDemand(), factory.monday, AM))
        result = SwapRefinementEngine(reference).refine(assignments)

        assert assignments[-1].staff_id == "ghost"
        assert result.final_assignment_count == 3
