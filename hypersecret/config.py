"""
Network and pipeline configuration for HyperSecret.
"""
import importlib.resources
import json
import logging
import os
import urllib.parse
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

LOOPBACK_HOSTS = ("localhost", "127.0.0.1", "::1")


def validate_service_url(url_name: str, url: str) -> str:
    """
    Require https:// for service URLs unless they point at a loopback host.

    Args:
        url_name: Name of the setting, used in the error message
        url: URL to check

    Returns:
        The URL without a trailing slash

    Raises:
        ValueError: If the URL is not https and not local
    """
    parsed = urllib.parse.urlparse(url)
    host = parsed.hostname or ""
    if parsed.scheme != "https" and host not in LOOPBACK_HOSTS:
        raise ValueError(f"{url_name} must use https:// for security (got: {parsed.scheme}://)")
    return url.rstrip("/")


def _env_key(network: str, suffix: str) -> str:
    return f"{network.upper().replace('-', '_')}_{suffix}"


class NetworkConfig:
    """
    Static network descriptions loaded from the packaged ``networks.json``.

    Source networks carry the chain id, RPC endpoint, bridged token and the
    destination bridge's ingress address. Destination networks carry the API
    endpoint and the typed-signature domain fields.
    """

    _networks_cache: Optional[Dict[str, Dict[str, Any]]] = None

    @classmethod
    def load_networks(cls) -> Dict[str, Dict[str, Any]]:
        """Load (once) and return every known network"""
        if cls._networks_cache is None:
            resource = importlib.resources.files("hypersecret").joinpath("networks.json")
            with resource.open("r", encoding="utf-8") as f:
                cls._networks_cache = json.load(f)
        return cls._networks_cache

    @classmethod
    def get_network(cls, network: str) -> Dict[str, Any]:
        """
        Get a network description.

        Raises:
            ValueError: If the network is unknown
        """
        networks = cls.load_networks()
        if network not in networks:
            available = ", ".join(sorted(networks))
            raise ValueError(f"Unknown network '{network}'. Available networks: {available}")
        return networks[network]

    @classmethod
    def _get_kind(cls, network: str, kind: str) -> Dict[str, Any]:
        config = cls.get_network(network)
        if config.get("kind") != kind:
            raise ValueError(f"Network '{network}' is not a {kind} network")
        return config

    @classmethod
    def get_rpc_url(cls, network: str, override: Optional[str] = None) -> str:
        """RPC URL: explicit override, then <NETWORK>_RPC_URL, then the file"""
        if override:
            return override
        env_url = os.environ.get(_env_key(network, "RPC_URL"))
        if env_url:
            return env_url
        return cls._get_kind(network, "source")["rpc"]

    @classmethod
    def get_api_url(cls, network: str, override: Optional[str] = None) -> str:
        """API URL: explicit override, then <NETWORK>_API_URL, then the file"""
        if override:
            return override
        env_url = os.environ.get(_env_key(network, "API_URL"))
        if env_url:
            return env_url
        return cls._get_kind(network, "destination")["api"]

    @classmethod
    def get_chain_id(cls, network: str) -> int:
        return int(cls._get_kind(network, "source")["chainId"])

    @classmethod
    def get_token_address(cls, network: str) -> str:
        return cls._get_kind(network, "source")["token"]

    @classmethod
    def get_token_decimals(cls, network: str) -> int:
        return int(cls._get_kind(network, "source").get("tokenDecimals", 6))

    @classmethod
    def get_bridge_address(cls, network: str) -> str:
        return cls._get_kind(network, "source")["bridge"]

    @classmethod
    def get_tx_url(cls, network: str, tx_hash: str) -> Optional[str]:
        """Block explorer link for a transaction, if the network has an explorer"""
        explorer = cls._get_kind(network, "source").get("explorer")
        if not explorer:
            return None
        return f"{explorer.rstrip('/')}/tx/{tx_hash}"

    @classmethod
    def get_chain_name(cls, network: str) -> str:
        return cls._get_kind(network, "destination")["chainName"]

    @classmethod
    def get_signature_chain_id(cls, network: str) -> int:
        return int(cls._get_kind(network, "destination")["signatureChainId"])


@dataclass
class PipelineSettings:
    """
    Runtime settings for one pipeline host (enclave or fallback server).
    """
    operator_key: Optional[str] = None
    vault_address: Optional[str] = None
    source_network: str = "arbitrum-sepolia"
    destination_network: str = "hyperliquid-testnet"
    rpc_url: Optional[str] = None
    api_url: Optional[str] = None
    gas_stipend: Decimal = Decimal("0.001")
    credit_max_attempts: int = 30
    credit_interval: float = 5.0
    receipt_timeout: int = 120
    http_timeout: int = 30

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "PipelineSettings":
        """
        Build settings from environment variables.

        Recognised variables: TEE_PRIVATE_KEY, VAULT_ADDRESS,
        HYPERSECRET_SOURCE_NETWORK, HYPERSECRET_DESTINATION_NETWORK,
        HYPERSECRET_RPC_URL, HYPERSECRET_API_URL, HYPERSECRET_GAS_STIPEND,
        HYPERSECRET_CREDIT_MAX_ATTEMPTS, HYPERSECRET_CREDIT_INTERVAL,
        HYPERSECRET_RECEIPT_TIMEOUT, HYPERSECRET_HTTP_TIMEOUT.
        """
        env = os.environ if environ is None else environ
        defaults = cls()
        try:
            return cls(
                operator_key=env.get("TEE_PRIVATE_KEY") or None,
                vault_address=env.get("VAULT_ADDRESS") or None,
                source_network=env.get("HYPERSECRET_SOURCE_NETWORK", defaults.source_network),
                destination_network=env.get(
                    "HYPERSECRET_DESTINATION_NETWORK", defaults.destination_network
                ),
                rpc_url=env.get("HYPERSECRET_RPC_URL") or None,
                api_url=env.get("HYPERSECRET_API_URL") or None,
                gas_stipend=Decimal(env.get("HYPERSECRET_GAS_STIPEND", str(defaults.gas_stipend))),
                credit_max_attempts=int(
                    env.get("HYPERSECRET_CREDIT_MAX_ATTEMPTS", defaults.credit_max_attempts)
                ),
                credit_interval=float(
                    env.get("HYPERSECRET_CREDIT_INTERVAL", defaults.credit_interval)
                ),
                receipt_timeout=int(env.get("HYPERSECRET_RECEIPT_TIMEOUT", defaults.receipt_timeout)),
                http_timeout=int(env.get("HYPERSECRET_HTTP_TIMEOUT", defaults.http_timeout)),
            )
        except (ArithmeticError, ValueError) as e:
            raise ValueError(f"Invalid pipeline setting: {e}")

    def resolved_rpc_url(self) -> str:
        url = NetworkConfig.get_rpc_url(self.source_network, override=self.rpc_url)
        return validate_service_url("rpc_url", url)

    def resolved_api_url(self) -> str:
        url = NetworkConfig.get_api_url(self.destination_network, override=self.api_url)
        return validate_service_url("api_url", url)

    def validate(self) -> None:
        """
        Check that everything needed to run a pipeline is present.

        Raises:
            ValueError: If a required setting is missing or inconsistent
        """
        if not self.operator_key:
            raise ValueError("operator_key is required (set TEE_PRIVATE_KEY)")
        if self.credit_max_attempts < 1:
            raise ValueError("credit_max_attempts must be at least 1")
        if self.credit_interval < 0:
            raise ValueError("credit_interval must not be negative")
        if self.gas_stipend <= 0:
            raise ValueError("gas_stipend must be positive")
        NetworkConfig._get_kind(self.source_network, "source")
        NetworkConfig._get_kind(self.destination_network, "destination")
