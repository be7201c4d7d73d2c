"""
Tests for the HTTP job provider.
"""
import json
from decimal import Decimal

import pytest
import requests

from hypersecret.artifacts import load_proof
from hypersecret.codec import encode, encode_intent, register_intent
from hypersecret.jobs import JobNotFoundError, JobProviderError, get_provider
from hypersecret.jobs.http_provider import HttpJobProvider
from hypersecret.models import JobState, PipelineStep
from conftest import TEST_DESTINATION, TEST_VAULT, make_proof

SERVICE_URL = "https://fallback.example.com"
HANDLE = "3f2b1c9e-0000-4000-8000-000000000001"


@pytest.fixture
def provider():
    provider = HttpJobProvider(SERVICE_URL, retry_count=0)
    yield provider
    provider.close()


def test_get_provider_http():
    provider = get_provider("http", api_url=SERVICE_URL)
    assert isinstance(provider, HttpJobProvider)


def test_insecure_service_url_rejected():
    with pytest.raises(ValueError):
        HttpJobProvider("http://fallback.example.com")


def test_submit_sends_transfer(provider, requests_mock, intent):
    route = requests_mock.post(f"{SERVICE_URL}/process-intent", json={"executionId": HANDLE})
    provider.push_secret("1", encode_intent(intent))

    assert provider.submit("1") == HANDLE
    assert route.last_request.json() == {"destination": TEST_DESTINATION, "amount": "5"}


def test_registered_intent_submitted(provider, requests_mock):
    route = requests_mock.post(f"{SERVICE_URL}/process-intent", json={"executionId": HANDLE})
    payload = encode(TEST_DESTINATION, Decimal("7.5"), TEST_VAULT)

    assert register_intent(provider, payload) is True
    assert register_intent(provider, encode(TEST_DESTINATION, Decimal("9"), TEST_VAULT)) is False

    assert provider.submit() == HANDLE
    # The first registration is the one submitted
    assert route.last_request.json() == {"destination": TEST_DESTINATION, "amount": "7.5"}


def test_submit_rejected(provider, requests_mock):
    requests_mock.post(f"{SERVICE_URL}/process-intent", status_code=400,
                       json={"detail": "Amount must be at least 5"})
    with pytest.raises(JobProviderError, match="at least 5"):
        provider.submit_transfer(TEST_DESTINATION, Decimal("1"))


def test_submit_unreachable(provider, requests_mock):
    requests_mock.post(f"{SERVICE_URL}/process-intent", exc=requests.ConnectionError("refused"))
    with pytest.raises(JobProviderError, match="Failed to reach"):
        provider.submit_transfer(TEST_DESTINATION, Decimal("5"))


def test_submit_without_execution_id(provider, requests_mock):
    requests_mock.post(f"{SERVICE_URL}/process-intent", json={})
    with pytest.raises(JobProviderError, match="no executionId"):
        provider.submit_transfer(TEST_DESTINATION, Decimal("5"))


@pytest.mark.parametrize("body,state", [
    ({"status": "pending"}, JobState.UNSET),
    ({"status": "processing", "step": "Funded"}, JobState.ACTIVE),
    ({"status": "completed", "step": "DeliveredToDestination"}, JobState.COMPLETED),
    ({"status": "failed", "error": "timeout", "failedStep": "Credited"}, JobState.FAILED),
])
def test_status_mapping(provider, requests_mock, body, state):
    requests_mock.get(f"{SERVICE_URL}/status/{HANDLE}", json={"executionId": HANDLE, **body})
    assert provider.status(HANDLE).state == state


def test_status_fields(provider, requests_mock):
    requests_mock.get(f"{SERVICE_URL}/status/{HANDLE}", json={
        "executionId": HANDLE, "status": "failed", "step": "Bridged",
        "error": "Bridge credit timeout", "failedStep": "Credited",
    })
    status = provider.status(HANDLE)
    assert status.current_step == PipelineStep.BRIDGED
    assert status.failed_step == PipelineStep.CREDITED
    assert status.error == "Bridge credit timeout"


def test_unknown_step_ignored(provider, requests_mock):
    requests_mock.get(f"{SERVICE_URL}/status/{HANDLE}", json={"status": "processing", "step": "Teleported"})
    assert provider.status(HANDLE).current_step is None


def test_unknown_status_string(provider, requests_mock):
    requests_mock.get(f"{SERVICE_URL}/status/{HANDLE}", json={"status": "exploded"})
    with pytest.raises(JobProviderError, match="Unknown execution status"):
        provider.status(HANDLE)


def test_status_not_found(provider, requests_mock):
    requests_mock.get(f"{SERVICE_URL}/status/{HANDLE}", status_code=404, json={"detail": "Unknown executionId"})
    with pytest.raises(JobNotFoundError):
        provider.status(HANDLE)


def test_status_invalid_json(provider, requests_mock):
    requests_mock.get(f"{SERVICE_URL}/status/{HANDLE}", text="<html>")
    with pytest.raises(JobProviderError, match="Invalid JSON"):
        provider.status(HANDLE)


def test_fetch_result(provider, requests_mock, sample_proof):
    requests_mock.get(f"{SERVICE_URL}/status/{HANDLE}", json={
        "executionId": HANDLE, "status": "completed", "result": sample_proof.to_dict(),
    })
    assert json.loads(provider.fetch_result(HANDLE)) == sample_proof.to_dict()


def test_fetch_result_not_completed(provider, requests_mock):
    requests_mock.get(f"{SERVICE_URL}/status/{HANDLE}", json={"status": "processing"})
    with pytest.raises(JobProviderError, match="no result"):
        provider.fetch_result(HANDLE)


def test_proof_round_trip_through_service(provider, requests_mock):
    proof = make_proof(amount="12.5")
    requests_mock.get(f"{SERVICE_URL}/status/{HANDLE}", json={"status": "completed", "result": proof.to_dict()})

    assert load_proof(provider.fetch_result(HANDLE)) == proof
