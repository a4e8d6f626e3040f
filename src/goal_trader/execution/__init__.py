"""
Execution Layer - position ledger, exit rules and trade execution.

This module provides:
    - PositionLedger: Owned collection of positions (open, add, partial/full close)
    - Position: Position data class
    - PositionStatus: OPEN / CLOSED
    - ExitEvent: Record of a (partial) sale
    - ExitConfig / ExitTarget: Graduated exits and stop loss
    - PositionAction / ActionType: Unit of work for the coordinator
    - ExecutionCoordinator: Concurrent dispatch, serial application of fills
    - ExecutionConfig: Per-call timeout
    - ActionResult / BatchResult: Per-action outcomes
    - RiskManager / RiskConfig: Limits on opening actions
    - PaperTradeExecutor / ClobTradeExecutor: Exchange boundary

Exit Logic:
    - +50% sell 25%, +100% sell 35%, +200% sell 40% of remaining shares
    - Each threshold once per position, lowest first
    - Stop loss at -20% closes everything

Usage:
    from goal_trader.execution import (
        ExecutionCoordinator, PaperTradeExecutor, PositionLedger,
    )

    ledger = PositionLedger()
    coordinator = ExecutionCoordinator(ledger, PaperTradeExecutor(prices), prices)
    batch = await coordinator.execute(actions)
"""

# Actions
from .actions import ActionType, PositionAction

# Exit rules
from .exit_rules import ExitConfig, ExitDecision, ExitTarget, evaluate_exit

# Ledger
from .position_ledger import ExitEvent, Position, PositionLedger, PositionStatus

# Exchange boundary
from .executors import (
    ClobTradeExecutor,
    PaperTradeExecutor,
    TradeExecutor,
    TradeResult,
    TradeSide,
    create_clob_client,
)

# Coordination
from .coordinator import ActionResult, BatchResult, ExecutionConfig, ExecutionCoordinator

# Risk limits
from .risk import RiskConfig, RiskManager, RiskRejection

__all__ = [
    # Actions
    "ActionType",
    "PositionAction",
    # Exit rules
    "ExitConfig",
    "ExitDecision",
    "ExitTarget",
    "evaluate_exit",
    # Ledger
    "ExitEvent",
    "Position",
    "PositionLedger",
    "PositionStatus",
    # Exchange boundary
    "ClobTradeExecutor",
    "PaperTradeExecutor",
    "TradeExecutor",
    "TradeResult",
    "TradeSide",
    "create_clob_client",
    # Coordination
    "ActionResult",
    "BatchResult",
    "ExecutionConfig",
    "ExecutionCoordinator",
    # Risk limits
    "RiskConfig",
    "RiskManager",
    "RiskRejection",
]
