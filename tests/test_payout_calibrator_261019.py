"""PayoutCalibrator Tests — P_max solve, convergence, inversion."""
import pytest

from src.engine.errors import CalibrationStalled, ContractViolation
from src.engine.holes import get_hole_by_id
from src.engine.payout_calibrator import PayoutCalibrator, calibrate, simpsons_rule
from src.engine.shot_distribution import ShotDistribution

D_MAX, K = 47.58, 6.0


@pytest.fixture
def calibrator():
    return PayoutCalibrator()


class TestSimpson:

    def test_exact_for_cubic(self):
        assert simpsons_rule(lambda x: x ** 3, 0.0, 1.0, 2) == pytest.approx(0.25)

    def test_odd_subdivisions_rejected(self):
        with pytest.raises(ContractViolation):
            simpsons_rule(lambda x: x, 0.0, 1.0, 3)

    def test_empty_interval(self):
        assert simpsons_rule(lambda x: x, 1.0, 1.0, 4) == 0.0


class TestSolve:

    def test_regression_value(self, calibrator):
        """Mid-iron geometry, RTP 88%, sigma 40 ft."""
        p_max = calibrator.solve(0.88, D_MAX, K, 40.0)
        assert 37.10 <= p_max <= 37.14

    def test_regression_value_without_mishits(self):
        pure = PayoutCalibrator(distribution=ShotDistribution(fat_tail_probability=0.0))
        assert pure.solve(0.88, D_MAX, K, 40.0) == pytest.approx(36.46, abs=0.03)

    def test_module_calibrate_matches(self, calibrator):
        assert calibrate(0.88, D_MAX, K, 40.0) == calibrator.solve(0.88, D_MAX, K, 40.0)

    def test_idempotent(self, calibrator):
        assert calibrator.solve(0.85, D_MAX, K, 23.7) == calibrator.solve(0.85, D_MAX, K, 23.7)

    def test_monotone_in_sigma(self, calibrator):
        sigmas = [1.0, 2.0, 4.0, 8.0, 16.0, 32.0, 64.0]
        ceilings = [calibrator.solve(0.88, D_MAX, K, s) for s in sigmas]
        assert all(a <= b for a, b in zip(ceilings, ceilings[1:]))
        assert ceilings[-1] > ceilings[0]

    @pytest.mark.parametrize("sigma", [5.0, 10.0, 20.0, 40.0])
    def test_expected_payout_matches_rtp(self, calibrator, sigma):
        p_max = calibrator.solve(0.85, D_MAX, K, sigma)
        ratio = calibrator.expected_payout_ratio(p_max, D_MAX, K, sigma)
        assert ratio == pytest.approx(0.85, rel=0.005)

    def test_ceiling_never_below_one(self, calibrator):
        assert calibrator.solve(0.85, D_MAX, K, 0.01) == 1.0

    def test_tiny_sigma_pays_almost_everything(self, calibrator):
        """sigma -> 0: every shot lands at the pin, I -> 1."""
        assert calibrator.payout_integral(D_MAX, K, 0.01) == pytest.approx(1.0, abs=0.01)

    def test_huge_sigma_is_finite(self, calibrator):
        p_max = calibrator.solve(0.85, D_MAX, K, 1000.0)
        assert 1000.0 < p_max < float("inf")

    def test_solve_for_hole(self, calibrator):
        hole = get_hole_by_id(4)
        assert calibrator.solve_for_hole(hole, 30.0) == calibrator.solve(0.85, D_MAX, K, 30.0)

    @pytest.mark.parametrize("args", [
        (0.0, D_MAX, K, 10.0),
        (1.2, D_MAX, K, 10.0),
        (0.85, 0.0, K, 10.0),
        (0.85, D_MAX, -1.0, 10.0),
        (0.85, D_MAX, K, 0.0),
        (0.85, D_MAX, K, -5.0),
    ])
    def test_contract_violations(self, calibrator, args):
        with pytest.raises(ContractViolation):
            calibrator.solve(*args)


class TestConvergence:

    def test_coarse_start_converges_to_same_value(self, calibrator):
        coarse = PayoutCalibrator(initial_subdivisions=16)
        assert coarse.solve(0.88, D_MAX, K, 40.0) == pytest.approx(
            calibrator.solve(0.88, D_MAX, K, 40.0), rel=2e-3
        )

    def test_no_budget_stalls(self):
        stalled = PayoutCalibrator(max_doublings=0)
        with pytest.raises(CalibrationStalled) as exc_info:
            stalled.solve(0.88, D_MAX, K, 40.0)
        assert exc_info.value.last_value is not None


class TestBreakevenAndInvert:

    def test_breakeven_radius(self, calibrator):
        p_max = calibrator.solve(0.88, D_MAX, K, 40.0)
        r = calibrator.breakeven_radius(p_max, D_MAX, K)
        assert r == pytest.approx(D_MAX * (1 - p_max ** (-1 / K)))
        assert 0 < r < D_MAX

    def test_breakeven_invalid_geometry(self, calibrator):
        with pytest.raises(ContractViolation):
            calibrator.breakeven_radius(10.0, -1.0, K)

    def test_invert_recovers_sigma(self, calibrator):
        target = calibrator.solve(0.85, D_MAX, K, 25.0)
        sigma = calibrator.invert(target, 0.85, D_MAX, K, lo=10.0, hi=60.0)
        assert sigma == pytest.approx(25.0, rel=1e-3)

    def test_invert_clamps_to_bounds(self, calibrator):
        assert calibrator.invert(1e9, 0.85, D_MAX, K, lo=10.0, hi=60.0) == 60.0
        assert calibrator.invert(1.0, 0.85, D_MAX, K, lo=10.0, hi=60.0) == 10.0
