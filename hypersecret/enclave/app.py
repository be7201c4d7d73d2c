"""
Enclave application.

Reads the intent and operator key from the job framework's secrets, runs the
pipeline once and leaves the result artifacts in the output directory.

Environment:
    IEXEC_REQUESTER_SECRET_1: Encoded intent (canonical JSON, or a sealed box
        when HYPERSECRET_ENCLAVE_KEY is set)
    IEXEC_APP_DEVELOPER_SECRET: Operator key holding the vault's
        redistribution role
    IEXEC_OUT: Output directory (default /tmp/iexec_out)
    HYPERSECRET_ENCLAVE_KEY: Optional base64 key for opening sealed intents
"""
import logging
import os
import signal
import sys
import threading
from typing import Mapping, Optional

from ..artifacts import DEFAULT_OUTPUT_DIR, write_failure, write_result
from ..codec import decode_intent
from ..config import PipelineSettings
from ..exceptions import ExecutionFailedError, ValidationError
from ..models import format_amount, short_address
from ..pipeline import PipelineOrchestrator

logger = logging.getLogger(__name__)

INTENT_SECRET_VAR = "IEXEC_REQUESTER_SECRET_1"
OPERATOR_SECRET_VAR = "IEXEC_APP_DEVELOPER_SECRET"
OUTPUT_DIR_VAR = "IEXEC_OUT"
ENCLAVE_KEY_VAR = "HYPERSECRET_ENCLAVE_KEY"


def run(
    environ: Optional[Mapping[str, str]] = None,
    orchestrator: Optional[PipelineOrchestrator] = None,
    cancel_event: Optional[threading.Event] = None
) -> int:
    """
    Execute one intent inside the enclave.

    Args:
        environ: Environment to read secrets from (defaults to os.environ)
        orchestrator: Pipeline to use; built from the environment if omitted
        cancel_event: Set to abandon the execution

    Returns:
        Process exit code: 0 on success, 1 on failure
    """
    env = os.environ if environ is None else environ
    output_dir = env.get(OUTPUT_DIR_VAR) or DEFAULT_OUTPUT_DIR
    os.makedirs(output_dir, exist_ok=True)

    payload = env.get(INTENT_SECRET_VAR)
    operator_key = env.get(OPERATOR_SECRET_VAR)
    if not payload:
        logger.error("No requester secret (%s)", INTENT_SECRET_VAR)
        return 1
    if not operator_key:
        logger.error("No app developer secret (%s)", OPERATOR_SECRET_VAR)
        return 1

    try:
        intent = decode_intent(payload, env.get(ENCLAVE_KEY_VAR) or None)
    except ValidationError as e:
        logger.error("Rejected intent: %s", e)
        return 1

    logger.info("=== HyperSecret enclave execution ===")
    logger.info("Amount: %s, destination: %s", format_amount(intent.amount),
                short_address(intent.destination_account))

    if orchestrator is None:
        try:
            settings = PipelineSettings.from_env(env)
            settings.operator_key = operator_key
            orchestrator = PipelineOrchestrator.from_settings(settings)
        except ValueError as e:
            logger.error("Invalid enclave configuration: %s", e)
            return 1

    try:
        proof = orchestrator.run(intent, cancel_event)
    except ExecutionFailedError as e:
        write_failure(e.failure, output_dir)
        return 1

    write_result(proof, output_dir)
    logger.info("=== Execution complete ===")
    return 0


def main() -> None:
    """Console entry point; SIGTERM cancels the running execution"""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    cancel_event = threading.Event()
    signal.signal(signal.SIGTERM, lambda signum, frame: cancel_event.set())
    sys.exit(run(cancel_event=cancel_event))


if __name__ == "__main__":
    main()
