"""
Tests for the enclave application entry point.
"""
import json
from unittest.mock import MagicMock

import pytest

from hypersecret.codec import encode_intent, generate_enclave_keypair, seal_payload
from hypersecret.enclave import app
from hypersecret.exceptions import ExecutionFailedError
from hypersecret.models import ExecutionFailure, PipelineStep
from hypersecret.pipeline import PipelineOrchestrator
from conftest import TEST_OPERATOR_KEY, make_proof


@pytest.fixture
def orchestrator():
    orchestrator = MagicMock(spec=PipelineOrchestrator)
    orchestrator.run.return_value = make_proof()
    return orchestrator


@pytest.fixture
def environ(intent, tmp_path):
    return {
        app.INTENT_SECRET_VAR: encode_intent(intent),
        app.OPERATOR_SECRET_VAR: TEST_OPERATOR_KEY,
        app.OUTPUT_DIR_VAR: str(tmp_path),
    }


def test_success_writes_proof(environ, orchestrator, intent, tmp_path):
    assert app.run(environ, orchestrator) == 0

    orchestrator.run.assert_called_once_with(intent, None)
    computed = json.loads((tmp_path / "computed.json").read_text())
    assert computed == {"deterministic-output-path": str(tmp_path / "result.json")}
    proof = json.loads((tmp_path / "result.json").read_text())
    assert proof["success"] is True
    assert proof["destinationTransferResult"]["status"] == "ok"


def test_failure_writes_error(environ, orchestrator, tmp_path):
    failure = ExecutionFailure(
        failed_step=PipelineStep.REDISTRIBUTED,
        error_type="InsufficientVaultBalanceError",
        message="Vault cannot cover redistribution",
    )
    orchestrator.run.side_effect = ExecutionFailedError(failure)

    assert app.run(environ, orchestrator) == 1

    error = json.loads((tmp_path / "error.json").read_text())
    assert error["failedStep"] == "Redistributed"
    assert not (tmp_path / "result.json").exists()


@pytest.mark.parametrize("missing", [app.INTENT_SECRET_VAR, app.OPERATOR_SECRET_VAR])
def test_missing_secret(environ, orchestrator, missing):
    del environ[missing]
    assert app.run(environ, orchestrator) == 1
    orchestrator.run.assert_not_called()


def test_invalid_intent(environ, orchestrator):
    environ[app.INTENT_SECRET_VAR] = '{"destination": "0x1", "amount": "5", "vaultAddress": "0x2"}'
    assert app.run(environ, orchestrator) == 1
    orchestrator.run.assert_not_called()


def test_sealed_intent(environ, orchestrator, intent):
    private_key, public_key = generate_enclave_keypair()
    environ[app.INTENT_SECRET_VAR] = seal_payload(encode_intent(intent), public_key)
    environ[app.ENCLAVE_KEY_VAR] = private_key

    assert app.run(environ, orchestrator) == 0
    assert orchestrator.run.call_args[0][0] == intent


def test_invalid_configuration(environ):
    environ["HYPERSECRET_CREDIT_MAX_ATTEMPTS"] = "0"
    assert app.run(environ) == 1


def test_cancel_event_passed_through(environ, orchestrator):
    cancel = MagicMock()
    app.run(environ, orchestrator, cancel_event=cancel)
    assert orchestrator.run.call_args[0][1] is cancel
