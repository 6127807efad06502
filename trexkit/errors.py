"""
trexkit error taxonomy.

Every failure raised by the provisioner derives from TrexError so the CLI can
map it to a non-zero exit code with a single except clause. The classes mirror
the phases of a run:

    InputValidationError   bad operator input, raised before any network call
    PreconditionError      a required signer, key or setting is missing
    LedgerError            a transaction reverted, timed out, or a query failed
    StepFailed             a ledger failure inside a deployment session,
                           annotated with the last step that did confirm
    InvariantViolation     the caller tried to break an ordering or
                           completeness rule of the suite
    EventNotFound /        a receipt did not yield the expected event
    EventDecodeError

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Any, Optional


class TrexError(Exception):
    """Base class for all provisioner errors."""
    pass


# =============================================================================
# INPUT / PRECONDITION ERRORS
# =============================================================================

class InputValidationError(TrexError, ValueError):
    """Operator input failed validation."""

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")


class PreconditionError(TrexError):
    """A required signer, key or setting is not available."""
    pass


class ConfigError(TrexError):
    """Configuration could not be loaded or applied."""
    pass


class ConfigValidationError(ConfigError, InputValidationError):
    """A configuration value failed validation."""

    def __init__(self, field: str, message: str, value: Any = None):
        InputValidationError.__init__(self, field, message, value)


# =============================================================================
# LEDGER ERRORS
# =============================================================================

class LedgerError(TrexError):
    """Base class for failures reported by the ledger."""
    pass


class TransactionReverted(LedgerError):
    """A submitted transaction was mined with a failure status."""

    def __init__(self, description: str, tx_hash: str = "", reason: str = ""):
        self.description = description
        self.tx_hash = tx_hash
        self.reason = reason
        detail = f": {reason}" if reason else ""
        suffix = f" (tx {tx_hash})" if tx_hash else ""
        super().__init__(f"{description} reverted{detail}{suffix}")


class TransactionRejected(LedgerError):
    """The node refused a transaction before it was mined."""

    def __init__(self, description: str, reason: str):
        self.description = description
        self.reason = reason
        super().__init__(f"{description} was rejected by the node: {reason}")


class ConfirmationTimeout(LedgerError):
    """A submitted transaction was not confirmed in time."""

    def __init__(self, description: str, tx_hash: str, timeout: float):
        self.description = description
        self.tx_hash = tx_hash
        self.timeout = timeout
        super().__init__(
            f"{description} was not confirmed within {timeout:g}s (tx {tx_hash})"
        )


class LedgerCallError(LedgerError):
    """A read-only query failed."""
    pass


class StepFailed(LedgerError):
    """A deployment step failed; earlier steps remain on-chain."""

    def __init__(self, step: str, last_completed: Optional[str], cause: Exception):
        self.step = step
        self.last_completed = last_completed
        self.cause = cause
        last = last_completed or "none"
        super().__init__(f"step '{step}' failed ({cause}); last successful step: {last}")


# =============================================================================
# INVARIANT ERRORS
# =============================================================================

class InvariantViolation(TrexError):
    """A suite ordering or completeness invariant would be broken."""
    pass


class AuthorityNotReady(InvariantViolation):
    """An authority has no implementation registered for a component kind."""
    pass


class IncompleteImplementationSet(InvariantViolation):
    """A suite version was about to be activated without all implementations."""
    pass


class OrderingViolation(InvariantViolation):
    """A wiring step was requested before its prerequisites confirmed."""
    pass


# =============================================================================
# EVENT DECODING ERRORS
# =============================================================================

class EventNotFound(TrexError):
    """No log in a receipt matched the expected event."""
    pass


class EventDecodeError(TrexError):
    """A matching event carried a missing or zero field."""
    pass
