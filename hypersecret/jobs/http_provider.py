"""
HTTP job provider.

Client for the fallback HTTP service (``hypersecret serve``). Lets the
execution tracker follow executions that run on a remote fallback host.
"""
import json
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..codec import decode_intent
from ..config import validate_service_url
from ..models import JobState, PipelineStep, format_amount
from .exceptions import AlreadyRegisteredError, JobNotFoundError, JobProviderError
from .transport import JobProvider, JobStatus

logger = logging.getLogger(__name__)

# Status strings reported by the fallback service
SERVICE_STATES = {
    "pending": JobState.UNSET,
    "processing": JobState.ACTIVE,
    "completed": JobState.COMPLETED,
    "failed": JobState.FAILED,
}


def _parse_step(value: Optional[str]) -> Optional[PipelineStep]:
    if not value:
        return None
    try:
        return PipelineStep(value)
    except ValueError:
        logger.debug("Ignoring unknown pipeline step %r", value)
        return None


class HttpJobProvider(JobProvider):
    """
    Job provider backed by the fallback HTTP service.

    Secrets are kept client-side until ``submit`` sends the decoded transfer
    to the service; the service supplies the vault reference itself.
    """

    def __init__(self, api_url: str, timeout: int = 30, retry_count: int = 3):
        """
        Initialize the provider

        Args:
            api_url: Base URL of the fallback service (https, or a loopback host)
            timeout: Timeout for HTTP requests in seconds
            retry_count: Number of retries for status queries

        Raises:
            ValueError: If the URL is not https and not local
        """
        self.api_url = validate_service_url("api_url", api_url)
        self.timeout = timeout
        self._secrets: Dict[str, str] = {}

        self.session = requests.Session()
        retries = Retry(
            total=retry_count,
            backoff_factor=0.5,
            status_forcelist=[502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False
        )
        self.session.mount("http://", HTTPAdapter(max_retries=retries))
        self.session.mount("https://", HTTPAdapter(max_retries=retries))

    def push_secret(self, slot: str, value: str) -> None:
        if slot in self._secrets:
            raise AlreadyRegisteredError(f"Secret slot {slot} already exists")
        self._secrets[slot] = value

    def submit(self, secret_slot: str = "1") -> str:
        payload = self._secrets.get(secret_slot)
        if payload is None:
            raise JobProviderError(f"No secret in slot {secret_slot}")
        intent = decode_intent(payload)
        return self.submit_transfer(intent.destination_account, intent.amount)

    def submit_transfer(self, destination: str, amount: Decimal) -> str:
        """
        Ask the service to run a transfer.

        Returns:
            The service's execution id

        Raises:
            JobProviderError: If the service rejects or cannot take the request
        """
        body = {"destination": destination, "amount": format_amount(amount)}
        try:
            # POST is outside the retry policy's allowed methods
            response = self.session.post(
                f"{self.api_url}/process-intent", json=body, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise JobProviderError(f"Failed to reach fallback service: {e}")
        data = self._decode(response)
        execution_id = data.get("executionId")
        if not execution_id:
            raise JobProviderError("Fallback service response has no executionId")
        logger.info("Fallback execution %s started", execution_id)
        return execution_id

    def _decode(self, response: requests.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            data = None
        if response.status_code == 404:
            raise JobNotFoundError("Unknown execution handle")
        if not response.ok:
            detail = data.get("detail") if isinstance(data, dict) else response.text
            raise JobProviderError(f"Fallback service returned HTTP {response.status_code}: {detail}")
        if not isinstance(data, dict):
            raise JobProviderError("Invalid JSON response from fallback service")
        return data

    def _get_status(self, handle: str) -> Dict[str, Any]:
        try:
            response = self.session.get(f"{self.api_url}/status/{handle}", timeout=self.timeout)
        except requests.RequestException as e:
            raise JobProviderError(f"Failed to query execution status: {e}")
        return self._decode(response)

    def status(self, handle: str) -> JobStatus:
        data = self._get_status(handle)
        raw_state = data.get("status")
        if raw_state not in SERVICE_STATES:
            raise JobProviderError(f"Unknown execution status: {raw_state!r}")
        return JobStatus(
            handle=handle,
            state=SERVICE_STATES[raw_state],
            detail=data.get("step") or raw_state,
            error=data.get("error"),
            failed_step=_parse_step(data.get("failedStep")),
            current_step=_parse_step(data.get("step")),
        )

    def fetch_result(self, handle: str) -> bytes:
        data = self._get_status(handle)
        result = data.get("result")
        if data.get("status") != "completed" or not isinstance(result, dict):
            raise JobProviderError(f"Execution {handle} has no result")
        return json.dumps(result, sort_keys=True).encode("utf-8")

    def close(self) -> None:
        self.session.close()
