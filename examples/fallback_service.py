#!/usr/bin/env python3
"""
Submit a transfer to a running fallback service and follow it.

Start the service first:

    TEE_PRIVATE_KEY=... VAULT_ADDRESS=... hypersecret serve
"""
import os
import logging
from decimal import Decimal

from hypersecret import ExecutionTracker, TrackerTask, ValidationError, encode, register_intent
from hypersecret.jobs import JobProviderError, get_provider

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger("fallback-service-example")

SERVICE_URL = os.environ.get("HYPERSECRET_SERVICE_URL", "http://127.0.0.1:8000")


def main():
    destination = os.environ.get("DESTINATION")
    vault = os.environ.get("VAULT_ADDRESS")
    if not destination or not vault:
        print("ERROR: DESTINATION and VAULT_ADDRESS environment variables are required")
        return

    try:
        payload = encode(destination, Decimal(os.environ.get("AMOUNT", "5")), vault)
    except ValidationError as e:
        print(f"ERROR: {e}")
        return

    with get_provider("http", api_url=SERVICE_URL) as provider:
        register_intent(provider, payload)
        try:
            execution_id = provider.submit()
        except JobProviderError as e:
            logger.error("Service refused the transfer: %s", e)
            return

        print(f"Execution started: {execution_id}")
        tracker = ExecutionTracker(provider, execution_id)
        task = TrackerTask(
            tracker,
            interval=2.0,
            on_update=lambda status: print(f"[{status.state.value}] {status.raw_detail}")
        )
        status = task.start().wait()

        for step, state in tracker.step_statuses().items():
            print(f"  {step.value:<24} {state}")
        if status.proof_excerpt:
            print(f"Bridge transaction: {status.proof_excerpt['bridgeTxRef']}")
        elif status.error:
            print(f"Failed at {status.failed_step}: {status.error}")


if __name__ == "__main__":
    main()
