"""Custom exceptions for DeFi Autopilot.

This module defines the exception hierarchy for the rebalancing engine.
Authorization failures, business-rule rejections and malformed input are kept
in separate branches so callers and the audit trail can tell them apart.
"""


class AutopilotError(Exception):
    """Base exception for all DeFi Autopilot errors.

    All custom exceptions in the application should inherit from this class.
    """

    pass


class ConfigurationError(AutopilotError):
    """Raised when configuration is invalid or missing.

    Examples:
        - Configuration file not found
        - Margin denominator of zero
        - Risk ceiling outside [1, 10]
    """

    pass


class ValidationError(AutopilotError):
    """Raised when an input is malformed.

    Rejected synchronously with no state change.

    Examples:
        - Zero or negative amount
        - Risk score outside [1, 10]
        - APY above the sanity ceiling
    """

    pass


class InsufficientFundsError(ValidationError):
    """Raised when a withdrawal exceeds the portfolio value."""

    pass


class AuthorizationError(AutopilotError):
    """Raised when the caller lacks the required capability.

    Examples:
        - Non-admin trying to register a venue
        - Unknown address pushing yield data
        - Caller without the agent capability requesting a rebalance
    """

    pass


class NotProfitableError(AutopilotError):
    """Raised when a rebalance fails the profitability rule.

    A business-rule rejection, never a system fault.
    """

    pass


class NotFoundError(AutopilotError):
    """Raised when a portfolio, venue or request does not exist."""

    pass


class InvalidStateError(AutopilotError):
    """Raised when an entity is not in a state that allows the operation.

    Examples:
        - Cancelling an already executed request
        - Auto-rebalance disabled for the portfolio
        - Portfolio no longer on the request's source venue
    """

    pass


class CooldownError(InvalidStateError):
    """Raised when a user requests again before the cooldown has elapsed."""

    pass


class ExecutionFailure(AutopilotError):
    """Raised when the ledger mutation step of an execution fails.

    The coordinator recovers from this locally by cancelling the request.
    """

    pass


class PausedError(AutopilotError):
    """Raised by any mutating call while the system-wide pause is active."""

    pass
