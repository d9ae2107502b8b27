"""Typed exception hierarchy for the investing simulation.

Engine operations validate first and raise one of these before touching
state, so callers can tell a rejected action apart from a broken session.
"""


class GameError(Exception):
    """Root exception for all simulation errors."""


class ValidationError(GameError):
    """Operation inputs are malformed (non-positive amount, bad duration, etc.)."""


class BusinessRuleError(GameError):
    """Operation is well-formed but violates a portfolio rule. Recoverable."""


class InsufficientFunds(BusinessRuleError):
    """Pocket cash does not cover the requested amount."""


class InsufficientBalance(BusinessRuleError):
    """Savings balance does not cover the withdrawal."""


class InsufficientHoldings(BusinessRuleError):
    """Sell quantity exceeds the quantity held."""


class AccountInDebt(BusinessRuleError):
    """Pocket cash is negative; deposits and new FDs are blocked."""


class MaxFDReached(BusinessRuleError):
    """The player already holds the maximum number of fixed deposits."""


class NotFound(BusinessRuleError):
    """Referenced fixed deposit (or holding) does not exist."""


class AlreadyMatured(BusinessRuleError):
    """Matured FDs must be collected, not broken."""


class NotYetMatured(BusinessRuleError):
    """FD cannot be collected before its maturity month."""


class GameEnded(GameError):
    """The session is over; state is read-only."""


class ChannelUnavailable(GameError):
    """Broadcast channel or key exchange not ready. Fatal in multiplayer."""


class PriceUnavailable(GameError):
    """No price data for the requested symbol/month."""


class ConfigError(GameError):
    """Configuration file invalid or missing required keys."""


class RoomError(GameError):
    """Room lookup, join or start rejected."""


class PayloadRejected(GameError):
    """Broadcast payload failed authentication or is too old. The message is dropped."""
