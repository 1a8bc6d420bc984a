"""Error taxonomy for trade decisions."""

from __future__ import annotations

from enum import Enum


class RejectReason(str, Enum):
    """Non-fatal reasons a trade decision is aborted."""

    INVALID_STOP_DISTANCE = "InvalidStopDistance"
    INSUFFICIENT_MARGIN = "InsufficientMargin"
    LOT_BELOW_MINIMUM = "LotBelowMinimum"
    EXPOSURE_LIMIT_REACHED = "ExposureLimitReached"
    POSITION_COUNT_LIMIT_REACHED = "PositionCountLimitReached"
    DAILY_LOSS_LIMIT_HALTED = "DailyLossLimitHalted"
    DAILY_TRADE_LIMIT_REACHED = "DailyTradeLimitReached"
    SESSION_NOT_ALLOWED = "SessionNotAllowed"
    VALIDATION_FAILED = "ValidationFailed"
    CONFIDENCE_TOO_LOW = "ConfidenceTooLow"
    REWARD_RISK_TOO_LOW = "RewardRiskTooLow"
    CONFLUENCE_REJECTED = "ConfluenceRejected"
    NO_SIGNAL = "NoSignal"
    INVALID_PRICE = "InvalidPrice"
    ORDER_REJECTED = "OrderRejected"
    PENDING_EXPIRED = "PendingExpired"


class DecisionEngineError(Exception):
    """Base decision engine error."""


class InitializationError(DecisionEngineError):
    """Raised when a required collaborator or startup step fails."""
