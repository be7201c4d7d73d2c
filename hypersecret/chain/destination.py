"""
Destination network API client.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import PipelineSettings, validate_service_url
from ..exceptions import TransientQueryError, DestinationUnavailableError

logger = logging.getLogger(__name__)

# Query type the destination API uses for an account's balance summary
ACCOUNT_STATE_QUERY = "clearinghouseState"


class DestinationClient:
    """
    HTTP client for the destination network.

    Read queries go through a session that retries server errors up to
    ``retry_count`` times. Signed actions go through one that never retries;
    a signed action is delivered at most once. Callers that poll on their own
    schedule pass ``retry_count=0`` so each poll is a single request.
    """

    def __init__(
        self,
        api_url: str,
        retry_count: int = 3,
        timeout: int = 30
    ):
        """
        Initialize the client

        Args:
            api_url: Base URL of the destination API (https, or a loopback host)
            retry_count: Number of retries for read queries
            timeout: Timeout for HTTP requests in seconds

        Raises:
            ValueError: If the URL is not https and not local
        """
        self.api_url = validate_service_url("api_url", api_url)
        self.timeout = timeout

        self.session = requests.Session()
        retries = Retry(
            total=retry_count,
            backoff_factor=0.5,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["POST"],
            raise_on_status=False
        )
        self.session.mount("http://", HTTPAdapter(max_retries=retries))
        self.session.mount("https://", HTTPAdapter(max_retries=retries))

        self.action_session = requests.Session()

    @classmethod
    def from_settings(cls, settings: PipelineSettings, retry_count: int = 3) -> "DestinationClient":
        return cls(settings.resolved_api_url(), retry_count=retry_count, timeout=settings.http_timeout)

    def account_state(self, address: str) -> Dict[str, Any]:
        """
        Fetch the account-state summary for an address.

        Raises:
            TransientQueryError: On any network, HTTP or decoding failure
        """
        try:
            response = self.session.post(
                f"{self.api_url}/info",
                json={"type": ACCOUNT_STATE_QUERY, "user": address},
                timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise TransientQueryError(f"Account state query failed: {e}")
        except ValueError as e:
            raise TransientQueryError(f"Invalid JSON in account state response: {e}")

        if not isinstance(data, dict):
            # Accounts the API has not indexed yet come back as null
            raise TransientQueryError("Account state not available yet")
        return data

    def account_value(self, address: str) -> Decimal:
        """
        Current account value of an address on the destination network.

        A missing summary is reported as zero, matching how the API describes
        accounts that exist but have never been credited.

        Raises:
            TransientQueryError: If the query fails or the value is malformed
        """
        data = self.account_state(address)
        summary = data.get("marginSummary") or {}
        raw_value = summary.get("accountValue", "0")
        try:
            return Decimal(str(raw_value))
        except InvalidOperation:
            raise TransientQueryError(f"Malformed accountValue: {raw_value!r}")

    def submit_action(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Submit a signed action. Never retried.

        Returns:
            The decoded response body, e.g. {"status": "ok", "response": ...}

        Raises:
            DestinationUnavailableError: If the request fails or the body is not JSON
        """
        try:
            response = self.action_session.post(
                f"{self.api_url}/exchange",
                json=payload,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error("Signed action submission failed: %s", e)
            raise DestinationUnavailableError(f"Signed action submission failed: {e}")

        try:
            result = response.json()
        except ValueError:
            raise DestinationUnavailableError(
                f"Destination returned HTTP {response.status_code} with a non-JSON body"
            )
        if not isinstance(result, dict):
            raise DestinationUnavailableError(f"Unexpected destination response: {result!r}")
        return result

    def close(self) -> None:
        self.session.close()
        self.action_session.close()
