"""
HyperSecret: anonymizing cross-chain transfers through a confidential enclave.
"""
from .version import __version__
from .exceptions import (
    HyperSecretError, ValidationError, TransactionError, AuthorizationError,
    InsufficientVaultBalanceError, TransferError, BridgeTimeoutError,
    DestinationRejectedError, DestinationUnavailableError, TransientQueryError,
    RelayGenerationError, ExecutionCancelledError, ExecutionFailedError
)
from .models import (
    Intent, RelayAccount, ExecutionProof, ExecutionFailure, TrackedStatus,
    TrackedState, PipelineStep, JobState
)
from .codec import build_intent, encode, encode_intent, decode_intent, register_intent
from .config import NetworkConfig, PipelineSettings
from .pipeline import PipelineOrchestrator, ProofBuilder
from .tracker import ExecutionTracker, TrackerTask

__all__ = [
    "__version__",
    "HyperSecretError", "ValidationError", "TransactionError", "AuthorizationError",
    "InsufficientVaultBalanceError", "TransferError", "BridgeTimeoutError",
    "DestinationRejectedError", "DestinationUnavailableError", "TransientQueryError",
    "RelayGenerationError", "ExecutionCancelledError", "ExecutionFailedError",
    "Intent", "RelayAccount", "ExecutionProof", "ExecutionFailure", "TrackedStatus",
    "TrackedState", "PipelineStep", "JobState",
    "build_intent", "encode", "encode_intent", "decode_intent", "register_intent",
    "NetworkConfig", "PipelineSettings",
    "PipelineOrchestrator", "ProofBuilder",
    "ExecutionTracker", "TrackerTask",
]
