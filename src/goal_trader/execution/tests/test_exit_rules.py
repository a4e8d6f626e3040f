"""
Tests for graduated exits and the stop loss.
"""
import pytest
from decimal import Decimal

from goal_trader.execution.exit_rules import ExitConfig, ExitTarget, evaluate_exit


@pytest.fixture
def config():
    return ExitConfig()


class TestTakeProfit:

    @pytest.mark.parametrize("profit,fraction,markers", [
        ("0.49", None, None),
        ("0.50", "0.25", ("tp_0.50",)),
        ("0.99", "0.25", ("tp_0.50",)),
        ("1.00", "0.5125", ("tp_0.50", "tp_1.00")),
        ("2.50", "0.7075", ("tp_0.50", "tp_1.00", "tp_2.00")),
    ])
    def test_thresholds(self, config, profit, fraction, markers):
        decision = evaluate_exit(Decimal(profit), [], config)

        if fraction is None:
            assert decision is None
        else:
            assert decision.fraction == Decimal(fraction)
            assert decision.markers == markers
            assert not decision.is_stop_loss

    def test_fired_targets_are_skipped(self, config):
        """Only the next unfired target is taken."""
        decision = evaluate_exit(Decimal("1.20"), ["tp_0.50"], config)

        assert decision.fraction == Decimal("0.35")
        assert decision.markers == ("tp_1.00",)

    def test_everything_fired(self, config):
        assert evaluate_exit(Decimal("5"), ["tp_0.50", "tp_1.00", "tp_2.00"], config) is None

    def test_no_price(self, config):
        assert evaluate_exit(None, [], config) is None


class TestStopLoss:

    def test_stop_loss_closes_all(self, config):
        decision = evaluate_exit(Decimal("-0.25"), ["tp_0.50"], config)

        assert decision.is_stop_loss
        assert decision.fraction == Decimal("1")

    def test_boundary(self, config):
        assert evaluate_exit(Decimal("-0.20"), [], config).is_stop_loss
        assert evaluate_exit(Decimal("-0.19"), [], config) is None


class TestConfig:

    def test_custom_targets_sorted(self):
        config = ExitConfig(targets=[
            ExitTarget(Decimal("0.30"), Decimal("0.50")),
            ExitTarget(Decimal("0.10"), Decimal("0.10")),
        ])

        decision = evaluate_exit(Decimal("0.15"), [], config)

        assert decision.markers == ("tp_0.10",)

    @pytest.mark.parametrize("fraction", ["0", "1.5", "-0.1"])
    def test_invalid_fraction(self, fraction):
        with pytest.raises(ValueError):
            ExitTarget(Decimal("0.5"), Decimal(fraction))
