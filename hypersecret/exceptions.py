"""
Exceptions for the HyperSecret pipeline.
"""
from typing import Any, Dict, Optional, TYPE_CHECKING

# Avoid circular imports with TYPE_CHECKING
if TYPE_CHECKING:
    from .models import ExecutionFailure

# Bound applied to any error text that leaves the pipeline
MAX_ERROR_LENGTH = 150


def truncate_message(message: Any, limit: int = MAX_ERROR_LENGTH) -> str:
    """
    Bound an error message before it is shown to a user.

    Args:
        message: Exception or text to truncate
        limit: Maximum number of characters to keep

    Returns:
        The message, cut to ``limit`` characters with a trailing ellipsis
    """
    text = str(message) if message is not None else ""
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


class HyperSecretError(Exception):
    """Base exception for all HyperSecret errors"""
    pass


class ValidationError(HyperSecretError):
    """Raised when an intent is malformed, before any chain interaction"""
    pass


class TransactionError(HyperSecretError):
    """Raised when a source-network transaction is rejected or reverts"""

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        self.tx_hash = tx_hash
        super().__init__(message)


class AuthorizationError(TransactionError):
    """Raised when the operator lacks the vault's redistribution role"""
    pass


class InsufficientVaultBalanceError(TransactionError):
    """Raised when the vault cannot cover the requested amount"""
    pass


class TransferError(TransactionError):
    """Raised when a relay-side transfer fails its balance precondition"""
    pass


class BridgeTimeoutError(HyperSecretError):
    """Raised when the destination network never credits the relay account"""

    def __init__(self, message: str, attempts: int = 0):
        self.attempts = attempts
        super().__init__(message)


class DestinationRejectedError(HyperSecretError):
    """Raised when the destination network explicitly rejects a signed action"""

    def __init__(self, message: str, response: Optional[Dict[str, Any]] = None):
        self.response = response
        super().__init__(message)


class DestinationUnavailableError(HyperSecretError):
    """Raised when a signed action could not be delivered to the destination API"""
    pass


class TransientQueryError(HyperSecretError):
    """Raised for poll/query failures that callers are expected to retry"""
    pass


class RelayGenerationError(HyperSecretError):
    """Raised when a relay account cannot be generated"""
    pass


class ExecutionCancelledError(HyperSecretError):
    """Raised when the surrounding job framework cancels an execution"""
    pass


class ExecutionFailedError(HyperSecretError):
    """
    Raised by the orchestrator when an execution ends in the failed state.

    The ``failure`` attribute holds the ExecutionFailure record, and
    ``__cause__`` the underlying fatal error.
    """

    def __init__(self, failure: "ExecutionFailure"):
        self.failure = failure
        super().__init__(
            f"Execution failed at {failure.failed_step.value}: {failure.message}"
        )
