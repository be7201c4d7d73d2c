"""
Destination transfer signer.

Builds the typed, domain-separated balance-transfer action, signs it with
the relay account's key and submits it to the destination network.
"""
import logging
import time
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from eth_account.messages import encode_typed_data
from web3 import Web3

from .chain.destination import DestinationClient
from .config import NetworkConfig, PipelineSettings
from .exceptions import DestinationRejectedError, truncate_message
from .models import RelayAccount, format_amount, short_address

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

DOMAIN_NAME = "HyperliquidSignTransaction"
DOMAIN_VERSION = "1"

USD_SEND_TYPE = "HyperliquidTransaction:UsdSend"
USD_SEND_FIELDS = [
    {"name": "hyperliquidChain", "type": "string"},
    {"name": "destination", "type": "string"},
    {"name": "amount", "type": "string"},
    {"name": "time", "type": "uint64"},
]

EIP712_DOMAIN_FIELDS = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]


def _now_ms() -> int:
    return int(time.time() * 1000)


class DestinationTransferSigner:
    """
    Signs and submits balance transfers on the destination network.

    The nonce is the submission time in milliseconds. Relay accounts are
    single-use and this step is never retried, so no monotonicity is
    enforced across calls.
    """

    def __init__(
        self,
        client: DestinationClient,
        chain_name: str = "Testnet",
        signature_chain_id: int = 421614,
        clock: Optional[Callable[[], int]] = None
    ):
        """
        Initialize the signer

        Args:
            client: Destination API client used for submission
            chain_name: Destination chain label carried inside the action
            signature_chain_id: Chain id placed in the signing domain
            clock: Returns the current time in milliseconds (for tests)
        """
        self.client = client
        self.chain_name = chain_name
        self.signature_chain_id = signature_chain_id
        self.clock = clock or _now_ms

    @classmethod
    def from_settings(cls, settings: PipelineSettings, client: DestinationClient) -> "DestinationTransferSigner":
        network = settings.destination_network
        return cls(
            client,
            chain_name=NetworkConfig.get_chain_name(network),
            signature_chain_id=NetworkConfig.get_signature_chain_id(network),
        )

    def build_typed_data(self, destination: str, amount: Decimal, timestamp_ms: int) -> Dict[str, Any]:
        """Full EIP-712 message for a balance transfer"""
        return {
            "domain": {
                "name": DOMAIN_NAME,
                "version": DOMAIN_VERSION,
                "chainId": self.signature_chain_id,
                "verifyingContract": ZERO_ADDRESS,
            },
            "types": {
                "EIP712Domain": EIP712_DOMAIN_FIELDS,
                USD_SEND_TYPE: USD_SEND_FIELDS,
            },
            "primaryType": USD_SEND_TYPE,
            "message": {
                "hyperliquidChain": self.chain_name,
                "destination": destination,
                "amount": format_amount(amount),
                "time": timestamp_ms,
            },
        }

    @staticmethod
    def sign_typed_data(relay: RelayAccount, typed_data: Dict[str, Any]) -> Dict[str, Any]:
        """Sign a full typed-data message; returns the {r, s, v} triple"""
        signable = encode_typed_data(full_message=typed_data)
        signed = relay.account.sign_message(signable)
        return {"r": Web3.to_hex(signed.r), "s": Web3.to_hex(signed.s), "v": signed.v}

    def build_action(self, relay: RelayAccount, destination: str, amount: Decimal) -> Dict[str, Any]:
        """Build the signed submission payload for a transfer"""
        timestamp_ms = self.clock()
        typed_data = self.build_typed_data(destination, amount, timestamp_ms)
        signature = self.sign_typed_data(relay, typed_data)
        return {
            "action": {
                "type": "usdSend",
                "hyperliquidChain": self.chain_name,
                "signatureChainId": hex(self.signature_chain_id),
                "destination": destination,
                "amount": format_amount(amount),
                "time": timestamp_ms,
            },
            "nonce": timestamp_ms,
            "signature": signature,
        }

    def transfer(self, relay: RelayAccount, destination: str, amount: Decimal) -> Dict[str, Any]:
        """
        Move funds from the relay account to the destination account.

        Returns:
            The destination network's response (status "ok")

        Raises:
            DestinationRejectedError: If the response carries an error status
            DestinationUnavailableError: If the action could not be delivered
        """
        payload = self.build_action(relay, destination, amount)
        logger.info("Submitting balance transfer of %s from relay account %s",
                    format_amount(amount), short_address(relay.address))
        result = self.client.submit_action(payload)

        if result.get("status") != "ok":
            detail = result.get("response") or result
            logger.error("Destination rejected transfer: %s", truncate_message(detail))
            raise DestinationRejectedError(
                f"Balance transfer rejected: {truncate_message(detail)}",
                response=result
            )
        return result
