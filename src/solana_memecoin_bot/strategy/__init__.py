"""Strategy package exports."""

from .decision import DecisionEngine
from .exits import ExitSignal, check_exit, mark_take_profit_triggered, update_high_water_mark
from .filters import FILTERS, FilterContext, run_filters
from .risk import RiskCheckResult, RiskGovernor, evaluate_risk_checks

__all__ = [
    "DecisionEngine",
    "ExitSignal",
    "FILTERS",
    "FilterContext",
    "RiskCheckResult",
    "RiskGovernor",
    "check_exit",
    "evaluate_risk_checks",
    "mark_take_profit_triggered",
    "run_filters",
    "update_high_water_mark",
]
