#!/usr/bin/env python3
"""
Command line interface for HyperSecret.

    hypersecret run <destination> <amount>   Run the pipeline in this process
    hypersecret enclave                      Enclave entry point
    hypersecret serve                        Fallback HTTP service
    hypersecret track <executionId>          Follow an execution
    hypersecret encode <destination> <amount> --vault <address>
    hypersecret keygen                       Enclave keypair for sealed intents
"""
import argparse
import json
import logging
import sys
from typing import List, Optional

from .codec import build_intent, encode, generate_enclave_keypair
from .config import PipelineSettings
from .exceptions import ExecutionFailedError, ValidationError
from .jobs import get_provider
from .models import TrackedState, TrackedStatus
from .pipeline import PipelineOrchestrator
from .tracker import ExecutionTracker, TrackerTask


def _cmd_run(args: argparse.Namespace) -> int:
    try:
        settings = PipelineSettings.from_env()
        vault = args.vault or settings.vault_address
        if not vault:
            print("Error: set VAULT_ADDRESS or pass --vault", file=sys.stderr)
            return 2
        intent = build_intent(args.destination, args.amount, vault)
        orchestrator = PipelineOrchestrator.from_settings(settings)
    except (ValueError, ValidationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    print("\n=== HyperSecret Privacy Bridge ===")
    print(f"  Destination: {intent.destination_account}")
    print(f"  Amount: {args.amount}")
    try:
        proof = orchestrator.run(intent)
    except ExecutionFailedError as e:
        print(f"\nFailed at {e.failure.failed_step.value}: {e.failure.message}", file=sys.stderr)
        return 1

    print("\n=== Transfer complete ===")
    print(proof.to_json())
    return 0


def _cmd_enclave(args: argparse.Namespace) -> int:
    from .enclave.app import run
    return run()


def _cmd_serve(args: argparse.Namespace) -> int:
    from .server import serve
    try:
        serve(PipelineSettings.from_env(), host=args.host, port=args.port, max_workers=args.workers)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    return 0


def _print_status(status: TrackedStatus) -> None:
    line = f"[{status.state.value}] {status.raw_detail}"
    if status.failed_step:
        line += f" (failed at {status.failed_step})"
    if status.error:
        line += f": {status.error}"
    print(line)


def _cmd_track(args: argparse.Namespace) -> int:
    provider = get_provider("http", api_url=args.api_url)
    tracker = ExecutionTracker(provider, args.execution_id)
    task = TrackerTask(tracker, interval=args.interval, on_update=_print_status)
    try:
        task.start()
        while task.is_alive():
            task.join(timeout=0.5)
    except KeyboardInterrupt:
        task.cancel()
        task.join()
        print("\nStopped tracking")
        return 130
    finally:
        provider.close()

    status = tracker.status
    for step, state in tracker.step_statuses().items():
        print(f"  {step.value:<24} {state}")
    if status.proof_excerpt:
        print(json.dumps(status.proof_excerpt, indent=2))
    return 0 if status.state == TrackedState.COMPLETED else 1


def _cmd_encode(args: argparse.Namespace) -> int:
    try:
        print(encode(args.destination, args.amount, args.vault, args.enclave_key))
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    return 0


def _cmd_keygen(args: argparse.Namespace) -> int:
    private_key, public_key = generate_enclave_keypair()
    print(f"HYPERSECRET_ENCLAVE_KEY={private_key}")
    print(f"Public key (for encode --enclave-key): {public_key}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hypersecret",
        description="Anonymizing cross-chain transfers"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run the pipeline in this process")
    run_parser.add_argument("destination", help="Destination account on the destination network")
    run_parser.add_argument("amount", help="Amount in whole token units (minimum 5)")
    run_parser.add_argument("--vault", help="Vault address (default: VAULT_ADDRESS)")
    run_parser.set_defaults(func=_cmd_run)

    enclave_parser = subparsers.add_parser("enclave", help="Run as the enclave application")
    enclave_parser.set_defaults(func=_cmd_enclave)

    serve_parser = subparsers.add_parser("serve", help="Run the fallback HTTP service")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.add_argument("--workers", type=int, default=4, help="Concurrent executions")
    serve_parser.set_defaults(func=_cmd_serve)

    track_parser = subparsers.add_parser("track", help="Follow an execution on a fallback service")
    track_parser.add_argument("execution_id")
    track_parser.add_argument("--api-url", default="http://127.0.0.1:8000",
                              help="Fallback service URL")
    track_parser.add_argument("--interval", type=float, default=5.0, help="Poll interval in seconds")
    track_parser.set_defaults(func=_cmd_track)

    encode_parser = subparsers.add_parser("encode", help="Print the encoded intent payload")
    encode_parser.add_argument("destination")
    encode_parser.add_argument("amount")
    encode_parser.add_argument("--vault", required=True, help="Vault address")
    encode_parser.add_argument("--enclave-key", help="Enclave public key (base64) to seal the payload")
    encode_parser.set_defaults(func=_cmd_encode)

    keygen_parser = subparsers.add_parser("keygen", help="Generate an enclave keypair")
    keygen_parser.set_defaults(func=_cmd_keygen)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
