#!/usr/bin/env python3
"""
Simple example of running a HyperSecret transfer in-process.
"""
import os
import json
import logging

from hypersecret import PipelineOrchestrator, PipelineSettings, build_intent
from hypersecret.exceptions import ExecutionFailedError

logging.basicConfig(level=logging.INFO)


def main():
    """
    Demonstrate one end-to-end execution.

    This example shows how to:
    1. Build settings from the environment
    2. Validate a transfer request into an Intent
    3. Run the pipeline and inspect the execution proof
    """
    DESTINATION = os.environ.get("DESTINATION")
    AMOUNT = os.environ.get("AMOUNT", "5")

    settings = PipelineSettings.from_env()

    # Verify configuration
    if not settings.operator_key:
        print("ERROR: TEE_PRIVATE_KEY environment variable is required")
        return

    if not settings.vault_address:
        print("ERROR: VAULT_ADDRESS environment variable is required")
        return

    if not DESTINATION:
        print("ERROR: DESTINATION environment variable is required")
        return

    intent = build_intent(DESTINATION, AMOUNT, settings.vault_address)
    orchestrator = PipelineOrchestrator.from_settings(settings)

    try:
        proof = orchestrator.run(intent, listener=lambda step: print(f"  done: {step.value}"))
    except ExecutionFailedError as e:
        print(f"Transfer failed at {e.failure.failed_step.value}: {e.failure.message}")
        print(json.dumps(e.failure.recorded, indent=2))
        return

    print("Transfer delivered!")
    print(f"Relay account: {proof.relay_account}")
    print(f"Bridge transaction: {proof.bridge_tx_ref}")
    print(proof.to_json())


if __name__ == "__main__":
    main()
