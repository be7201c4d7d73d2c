"""
Data models for the HyperSecret pipeline.
"""
import functools
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum, IntEnum
from typing import Dict, Any, Optional, List, Union

from eth_account.signers.local import LocalAccount
from pydantic import BaseModel, ConfigDict, Field, field_validator
from web3 import Web3

from .exceptions import ValidationError

# Source token precision (USDC-style, 6 fractional digits)
TOKEN_DECIMALS = 6

# Protocol minimum, in whole token units
MIN_AMOUNT = Decimal("5")


def parse_amount(value: Union[str, int, float, Decimal]) -> Decimal:
    """
    Parse a user-supplied amount into a Decimal without losing precision.

    Floats are read through their shortest repr, so ``5.1`` becomes
    ``Decimal("5.1")`` rather than its binary expansion.

    Raises:
        ValidationError: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise ValidationError(f"Amount must be a number, got {value!r}")
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Amount must be a number, got {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"Amount must be finite, got {value!r}")
    return amount


def to_raw_units(amount: Decimal, decimals: int = TOKEN_DECIMALS) -> int:
    """
    Convert a token amount to integer base units (amount x 10^decimals).

    Raises:
        ValidationError: If the amount carries more fractional digits than
            the token supports; amounts are never silently truncated
    """
    scaled = amount.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValidationError(
            f"Amount {amount} has more than {decimals} fractional digits"
        )
    return int(scaled)


def from_raw_units(raw: int, decimals: int = TOKEN_DECIMALS) -> Decimal:
    """Convert integer base units back to a token amount"""
    return Decimal(raw).scaleb(-decimals)


def format_amount(amount: Decimal) -> str:
    """Render an amount as a plain decimal string without trailing zeros"""
    return format(amount.normalize(), "f")


def validate_address(value: str, label: str = "address") -> str:
    """
    Validate an EVM account identifier and return its checksummed form.

    Raises:
        ValidationError: If the value is not a syntactically valid address
            (including mixed-case strings with a bad checksum)
    """
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ValidationError(f"Invalid {label}: {value!r}")
    return Web3.to_checksum_address(value)


def short_address(address: Optional[str]) -> str:
    """Truncated address for log lines"""
    return f"{address[:8]}…" if address else "<none>"


def utc_timestamp() -> str:
    """Current UTC time in ISO-8601 form with millisecond precision"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@functools.total_ordering
class PipelineStep(Enum):
    """Ordered pipeline states; an execution only ever moves forward"""
    RELAY_GENERATED = "RelayGenerated"
    REDISTRIBUTED = "Redistributed"
    FUNDED = "Funded"
    BRIDGED = "Bridged"
    CREDITED = "Credited"
    DELIVERED_TO_DESTINATION = "DeliveredToDestination"

    @property
    def ordinal(self) -> int:
        return _STEP_ORDER.index(self)

    def next(self) -> Optional["PipelineStep"]:
        """Return the following step, or None for the final one"""
        index = self.ordinal + 1
        return _STEP_ORDER[index] if index < len(_STEP_ORDER) else None

    @classmethod
    def first(cls) -> "PipelineStep":
        return _STEP_ORDER[0]

    def __lt__(self, other):
        if not isinstance(other, PipelineStep):
            return NotImplemented
        return self.ordinal < other.ordinal


_STEP_ORDER: List[PipelineStep] = list(PipelineStep)


class JobState(IntEnum):
    """Enclave job states as reported by the job framework"""
    UNSET = 0
    ACTIVE = 1
    REVEALING = 2
    COMPLETED = 3
    FAILED = 4

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


class TrackedState(str, Enum):
    """Client-observable execution states"""
    SUBMITTED = "submitted"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TrackedState.COMPLETED, TrackedState.FAILED)


class Intent(BaseModel):
    """
    A validated transfer request.

    Construct through ``codec.build_intent`` or ``codec.decode_intent``;
    loosely typed mappings are never accepted past the codec.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    destination_account: str = Field(..., alias="destination")
    amount: Decimal
    vault_reference: str = Field(..., alias="vaultAddress")

    @field_validator("destination_account")
    @classmethod
    def _check_destination(cls, value: str) -> str:
        return validate_address(value, "destination")

    @field_validator("vault_reference")
    @classmethod
    def _check_vault(cls, value: str) -> str:
        return validate_address(value, "vault reference")

    @field_validator("amount", mode="before")
    @classmethod
    def _check_amount(cls, value: Any) -> Decimal:
        amount = parse_amount(value)
        if amount < MIN_AMOUNT:
            raise ValidationError(f"Amount must be at least {MIN_AMOUNT}, got {amount}")
        to_raw_units(amount)
        return amount

    @property
    def amount_raw(self) -> int:
        """Amount in token base units"""
        return to_raw_units(self.amount)


@dataclass
class RelayAccount:
    """
    A single-use account that carries funds for exactly one execution.
    """
    account: LocalAccount = field(repr=False)

    @property
    def address(self) -> str:
        return self.account.address

    @property
    def private_key(self) -> str:
        return "0x" + bytes(self.account.key).hex()

    def __repr__(self) -> str:
        return f"RelayAccount(address={self.address})"


class ExecutionProof(BaseModel):
    """Tamper-evident record of a completed execution"""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    success: bool
    relay_account: str = Field(..., alias="relayAccount")
    redistribute_tx_ref: str = Field(..., alias="redistributeTxRef")
    funding_tx_ref: str = Field(..., alias="fundingTxRef")
    bridge_tx_ref: str = Field(..., alias="bridgeTxRef")
    destination_transfer_result: Dict[str, Any] = Field(..., alias="destinationTransferResult")
    destination_account: str = Field(..., alias="destinationAccount")
    amount: Decimal
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def to_json(self) -> str:
        """Deterministic JSON serialization (sorted keys)"""
        return json.dumps(self.to_dict(), indent=2, sort_keys=True)

    def excerpt(self) -> Dict[str, Any]:
        """Small subset of the proof suitable for status displays"""
        return {
            "success": self.success,
            "amount": format_amount(self.amount),
            "destinationAccount": self.destination_account,
            "redistributeTxRef": self.redistribute_tx_ref,
            "fundingTxRef": self.funding_tx_ref,
            "bridgeTxRef": self.bridge_tx_ref,
            "destinationStatus": self.destination_transfer_result.get("status"),
        }


class ExecutionFailure(BaseModel):
    """Terminal failure record; names the step that could not be reached"""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    success: bool = False
    failed_step: PipelineStep = Field(..., alias="failedStep")
    error_type: str = Field(..., alias="errorType")
    message: str
    recorded: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=utc_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class TrackedStatus(BaseModel):
    """Derived, client-facing view of an execution"""
    model_config = ConfigDict(frozen=True)

    state: TrackedState
    raw_detail: str
    proof_excerpt: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    failed_step: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal
