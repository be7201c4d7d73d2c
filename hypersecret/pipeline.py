"""
Pipeline orchestrator.

Runs one execution end to end:

    RelayGenerated -> Redistributed -> Funded -> Bridged -> Credited -> DeliveredToDestination

Steps run strictly in order, each one waiting for the previous step's
confirmed effect. Any fatal error stops the execution; nothing is retried or
rolled back, and the failure record names the step that could not be reached.
"""
import logging
import threading
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from . import relay as relay_module
from .bridge import BridgeCreditWaiter
from .chain.destination import DestinationClient
from .chain.source import SourceChainAdapter
from .config import PipelineSettings
from .exceptions import ExecutionCancelledError, ExecutionFailedError, truncate_message
from .models import (
    ExecutionFailure, ExecutionProof, Intent, PipelineStep, RelayAccount,
    format_amount, utc_timestamp
)
from .signer import DestinationTransferSigner

logger = logging.getLogger(__name__)

# Proof field written when each step completes; Credited adds no field
STEP_FIELDS: Dict[PipelineStep, Optional[str]] = {
    PipelineStep.RELAY_GENERATED: "relay_account",
    PipelineStep.REDISTRIBUTED: "redistribute_tx_ref",
    PipelineStep.FUNDED: "funding_tx_ref",
    PipelineStep.BRIDGED: "bridge_tx_ref",
    PipelineStep.CREDITED: None,
    PipelineStep.DELIVERED_TO_DESTINATION: "destination_transfer_result",
}

StepListener = Callable[[PipelineStep], None]


class ProofBuilder:
    """
    Append-only accumulator for an ExecutionProof.

    Each step can be recorded once, only in pipeline order. Sealing produces
    the frozen proof; nothing can be recorded afterwards.
    """

    def __init__(self, intent: Intent):
        self.intent = intent
        self.last_step: Optional[PipelineStep] = None
        self._values: Dict[str, Any] = {}
        self._sealed: Optional[ExecutionProof] = None

    @property
    def next_step(self) -> Optional[PipelineStep]:
        if self.last_step is None:
            return PipelineStep.first()
        return self.last_step.next()

    def record(self, step: PipelineStep, value: Any = None) -> None:
        """
        Record the completion of a step.

        Raises:
            ValueError: If the proof is sealed, the step is out of order, or
                a step that carries a proof field is recorded without a value
        """
        if self._sealed is not None:
            raise ValueError("Proof is sealed")
        expected = self.next_step
        if step != expected:
            expected_name = expected.value if expected else "none"
            raise ValueError(f"Cannot record {step.value}: next step is {expected_name}")

        field_name = STEP_FIELDS[step]
        if field_name is not None:
            if value is None:
                raise ValueError(f"{step.value} requires a value")
            self._values[field_name] = value
        self.last_step = step

    def recorded(self) -> Dict[str, Any]:
        """Fields recorded so far, keyed by their proof aliases"""
        fields = ExecutionProof.model_fields
        return {fields[name].alias or name: value for name, value in self._values.items()}

    def seal(self) -> ExecutionProof:
        """
        Produce the final, immutable proof.

        Raises:
            ValueError: If not every step has been recorded
        """
        if self._sealed is not None:
            return self._sealed
        if self.last_step != PipelineStep.DELIVERED_TO_DESTINATION:
            raise ValueError("Cannot seal proof before delivery to destination")

        self._sealed = ExecutionProof(
            success=True,
            destination_account=self.intent.destination_account,
            amount=self.intent.amount,
            timestamp=utc_timestamp(),
            **self._values
        )
        return self._sealed


class PipelineOrchestrator:
    """
    Sequences the relay generator, source adapter, credit waiter and transfer
    signer for one intent at a time.

    An orchestrator holds no per-execution state, so one instance can run
    many executions concurrently, each with its own relay account.
    """

    def __init__(
        self,
        source: SourceChainAdapter,
        credit_waiter: BridgeCreditWaiter,
        transfer_signer: DestinationTransferSigner,
        relay_generator: Callable[[], RelayAccount] = relay_module.generate,
        gas_stipend: Decimal = Decimal("0.001")
    ):
        self.source = source
        self.credit_waiter = credit_waiter
        self.transfer_signer = transfer_signer
        self.relay_generator = relay_generator
        self.gas_stipend = gas_stipend

    @classmethod
    def from_settings(cls, settings: PipelineSettings) -> "PipelineOrchestrator":
        """Wire the real network adapters from settings"""
        settings.validate()
        # The credit waiter paces its own attempts
        destination = DestinationClient.from_settings(settings, retry_count=0)
        return cls(
            source=SourceChainAdapter.from_settings(settings),
            credit_waiter=BridgeCreditWaiter(
                destination,
                max_attempts=settings.credit_max_attempts,
                interval=settings.credit_interval
            ),
            transfer_signer=DestinationTransferSigner.from_settings(settings, destination),
            gas_stipend=settings.gas_stipend,
        )

    def run(
        self,
        intent: Intent,
        cancel_event: Optional[threading.Event] = None,
        listener: Optional[StepListener] = None
    ) -> ExecutionProof:
        """
        Execute the full pipeline for one intent.

        Args:
            intent: Validated intent
            cancel_event: Set by the job framework to abandon the execution
            listener: Called with each step as it completes

        Returns:
            Sealed ExecutionProof

        Raises:
            ExecutionFailedError: If any step fails; ``failure`` names the step
        """
        cancel_event = cancel_event or threading.Event()
        builder = ProofBuilder(intent)

        def advance(step: PipelineStep, value: Any = None) -> None:
            builder.record(step, value)
            logger.info("[%d/%d] %s", step.ordinal + 1, len(STEP_FIELDS), step.value)
            if listener is not None:
                try:
                    listener(step)
                except Exception:
                    # Listener errors never fail the execution
                    logger.exception("Step listener failed on %s", step.value)

        def check_cancelled() -> None:
            if cancel_event.is_set():
                raise ExecutionCancelledError("Execution cancelled")

        logger.info("Starting execution for %s tokens", format_amount(intent.amount))
        try:
            check_cancelled()
            relay_account = self.relay_generator()
            advance(PipelineStep.RELAY_GENERATED, relay_account.address)

            check_cancelled()
            tx_hash = self.source.redistribute(
                intent.vault_reference, [relay_account.address], [intent.amount_raw]
            )
            advance(PipelineStep.REDISTRIBUTED, tx_hash)

            check_cancelled()
            tx_hash = self.source.fund_gas(relay_account.address, self.gas_stipend)
            advance(PipelineStep.FUNDED, tx_hash)

            check_cancelled()
            tx_hash = self.source.transfer_token(relay_account, intent.amount_raw)
            advance(PipelineStep.BRIDGED, tx_hash)

            self.credit_waiter.wait_for_credit(relay_account.address, intent.amount, cancel_event)
            advance(PipelineStep.CREDITED)

            check_cancelled()
            result = self.transfer_signer.transfer(
                relay_account, intent.destination_account, intent.amount
            )
            advance(PipelineStep.DELIVERED_TO_DESTINATION, result)
        except Exception as e:
            failure = ExecutionFailure(
                failed_step=builder.next_step or builder.last_step,
                error_type=type(e).__name__,
                message=truncate_message(e),
                recorded=builder.recorded(),
            )
            logger.error("Execution failed at %s: %s", failure.failed_step.value, failure.message)
            raise ExecutionFailedError(failure) from e

        proof = builder.seal()
        logger.info("Execution complete")
        return proof
