"""
Source network adapter.

Wraps the three state-changing calls the pipeline makes on the source
network: vault redistribution, gas funding of the relay account, and the
token transfer into the destination bridge's ingress address. Every call is
signed locally, submitted, and then waited on until its receipt is available
(one confirmation).
"""
import logging
import threading
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Sequence, Type

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import ContractLogicError, Web3Exception

from ..config import PipelineSettings, NetworkConfig
from ..exceptions import (
    TransactionError, AuthorizationError, InsufficientVaultBalanceError, TransferError
)
from ..models import RelayAccount, short_address

logger = logging.getLogger(__name__)

# Gas used by a plain native-currency transfer
NATIVE_TRANSFER_GAS = 21000

# Used when gas estimation fails for reasons other than a revert
DEFAULT_CONTRACT_GAS = 300000

# Lower-cased revert-reason fragments used to classify redistribution failures
AUTHORIZATION_MARKERS = (
    "not authorized", "unauthorized", "not the redistributor", "only redistributor",
    "only tee", "caller is not", "accesscontrol", "ownable",
)
BALANCE_MARKERS = (
    "insufficient", "exceeds balance", "amount exceeds", "not enough",
)


class SourceChainAdapter:
    """
    Adapter for the source network ledger.

    The operator account holds the vault's redistribution role and the native
    currency used to fund relay accounts; relay accounts sign their own token
    transfer.
    """

    VAULT_ABI = [
        {
            "inputs": [
                {"internalType": "address[]", "name": "recipients", "type": "address[]"},
                {"internalType": "uint256[]", "name": "amounts", "type": "uint256[]"}
            ],
            "name": "redistribute",
            "outputs": [],
            "stateMutability": "nonpayable",
            "type": "function"
        },
        {
            "inputs": [{"internalType": "address", "name": "", "type": "address"}],
            "name": "deposits",
            "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
            "stateMutability": "view",
            "type": "function"
        }
    ]

    ERC20_ABI = [
        {
            "inputs": [
                {"internalType": "address", "name": "to", "type": "address"},
                {"internalType": "uint256", "name": "amount", "type": "uint256"}
            ],
            "name": "transfer",
            "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
            "stateMutability": "nonpayable",
            "type": "function"
        },
        {
            "inputs": [{"internalType": "address", "name": "account", "type": "address"}],
            "name": "balanceOf",
            "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
            "stateMutability": "view",
            "type": "function"
        }
    ]

    def __init__(
        self,
        w3: Web3,
        operator: LocalAccount,
        token_address: str,
        bridge_address: str,
        chain_id: Optional[int] = None,
        receipt_timeout: int = 120,
        poll_latency: float = 1.0
    ):
        """
        Initialize the adapter

        Args:
            w3: Connected Web3 instance for the source network
            operator: Account holding the redistribution role and gas funds
            token_address: Bridged token contract
            bridge_address: Destination bridge's ingress address
            chain_id: Chain id to sign for (queried from the node if omitted)
            receipt_timeout: Seconds to wait for each transaction receipt
            poll_latency: Seconds between receipt polls
        """
        self.w3 = w3
        self.operator = operator
        self.token_address = Web3.to_checksum_address(token_address)
        self.bridge_address = Web3.to_checksum_address(bridge_address)
        self._chain_id = chain_id
        self.receipt_timeout = receipt_timeout
        self.poll_latency = poll_latency
        self.token = self.w3.eth.contract(address=self.token_address, abi=self.ERC20_ABI)
        # Held from nonce assignment through submission; executions share the operator
        self._nonce_lock = threading.Lock()
        self._next_nonce: Dict[str, int] = {}

    @classmethod
    def from_settings(cls, settings: PipelineSettings) -> "SourceChainAdapter":
        """Build an adapter for the configured source network"""
        if not settings.operator_key:
            raise ValueError("operator_key is required (set TEE_PRIVATE_KEY)")
        network = settings.source_network
        w3 = Web3(Web3.HTTPProvider(
            settings.resolved_rpc_url(),
            request_kwargs={"timeout": settings.http_timeout}
        ))
        return cls(
            w3=w3,
            operator=Account.from_key(settings.operator_key),
            token_address=NetworkConfig.get_token_address(network),
            bridge_address=NetworkConfig.get_bridge_address(network),
            chain_id=NetworkConfig.get_chain_id(network),
            receipt_timeout=settings.receipt_timeout,
        )

    @property
    def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = int(self.w3.eth.chain_id)
        return self._chain_id

    def _vault(self, vault_ref: str):
        return self.w3.eth.contract(address=Web3.to_checksum_address(vault_ref), abi=self.VAULT_ABI)

    # ------------------------------------------------------------------ reads

    def token_balance(self, address: str) -> int:
        """Token balance of an address, in base units"""
        return int(self.token.functions.balanceOf(Web3.to_checksum_address(address)).call())

    def deposits(self, vault_ref: str, depositor: str) -> int:
        """Amount a depositor still holds in the vault, in base units"""
        vault = self._vault(vault_ref)
        return int(vault.functions.deposits(Web3.to_checksum_address(depositor)).call())

    # ----------------------------------------------------------------- writes

    def redistribute(self, vault_ref: str, recipients: Sequence[str], amounts_raw: Sequence[int]) -> str:
        """
        Move custodial funds out of the vault to the given recipients.

        Args:
            vault_ref: Vault contract address
            recipients: Recipient addresses
            amounts_raw: Amounts in token base units, one per recipient

        Returns:
            Transaction hash

        Raises:
            AuthorizationError: If the operator lacks the redistribution role
            InsufficientVaultBalanceError: If the vault cannot cover the amounts
            TransactionError: If the transaction is otherwise rejected or reverts
        """
        if len(recipients) != len(amounts_raw) or not recipients:
            raise ValueError("recipients and amounts_raw must be non-empty and of equal length")

        vault_address = Web3.to_checksum_address(vault_ref)
        vault = self._vault(vault_address)
        recipients = [Web3.to_checksum_address(r) for r in recipients]
        amounts = [int(a) for a in amounts_raw]
        total = sum(amounts)

        vault_balance = self.token_balance(vault_address)
        if vault_balance < total:
            raise InsufficientVaultBalanceError(
                f"Vault {short_address(vault_address)} holds {vault_balance} base units, {total} requested"
            )

        fn = vault.functions.redistribute(recipients, amounts)

        # Simulate first so a revert is reported with its reason, before any gas is spent
        try:
            fn.call({"from": self.operator.address})
        except ContractLogicError as e:
            raise self._classify_revert(e)

        tx = self._build_contract_tx(fn, self.operator, self._classify_revert)
        logger.info("Submitting redistribute() from vault %s", short_address(vault_address))
        return self._sign_and_send(self.operator, tx, "redistribute", TransactionError)

    def fund_gas(self, relay_address: str, stipend: Decimal) -> str:
        """
        Send a fixed native-currency stipend from the operator to a relay account.

        Args:
            relay_address: Relay account to fund
            stipend: Amount in whole native units (e.g. Decimal("0.001"))

        Returns:
            Transaction hash

        Raises:
            TransferError: If the operator cannot cover the stipend plus gas
            TransactionError: If the transaction is rejected or reverts
        """
        value = Web3.to_wei(stipend, "ether")
        gas_price = self.w3.eth.gas_price
        operator_balance = self.w3.eth.get_balance(self.operator.address)
        if operator_balance < value + NATIVE_TRANSFER_GAS * gas_price:
            raise TransferError(
                f"Operator balance {operator_balance} wei cannot cover stipend of {value} wei plus gas"
            )

        tx = {
            "to": Web3.to_checksum_address(relay_address),
            "value": value,
            "gas": NATIVE_TRANSFER_GAS,
            "gasPrice": gas_price,
            "chainId": self.chain_id,
        }
        logger.info("Funding relay account %s with %s native units", short_address(relay_address), stipend)
        return self._sign_and_send(self.operator, tx, "fund_gas", TransactionError)

    def transfer_token(self, relay: RelayAccount, amount_raw: int, to_address: Optional[str] = None) -> str:
        """
        Transfer tokens from a relay account, by default into the bridge ingress.

        Args:
            relay: Relay account that holds the tokens and signs the transfer
            amount_raw: Amount in token base units
            to_address: Recipient (defaults to the bridge ingress address)

        Returns:
            Transaction hash

        Raises:
            TransferError: If the relay balance is below amount_raw
            TransactionError: If the transaction is rejected or reverts
        """
        recipient = Web3.to_checksum_address(to_address) if to_address else self.bridge_address
        balance = self.token_balance(relay.address)
        if balance < amount_raw:
            raise TransferError(
                f"Relay account {short_address(relay.address)} holds {balance} base units, {amount_raw} required"
            )

        fn = self.token.functions.transfer(recipient, int(amount_raw))
        tx = self._build_contract_tx(fn, relay.account, lambda e: TransferError(f"Token transfer reverted: {e}"))
        logger.info("Transferring %s base units from relay account %s to %s",
                    amount_raw, short_address(relay.address), short_address(recipient))
        return self._sign_and_send(relay.account, tx, "transfer_token", TransferError)

    # ---------------------------------------------------------------- helpers

    def _classify_revert(self, error: Exception) -> TransactionError:
        """Map a redistribution revert onto the matching precondition error"""
        reason = str(error)
        lowered = reason.lower()
        if any(marker in lowered for marker in AUTHORIZATION_MARKERS):
            return AuthorizationError(f"Operator is not authorized to redistribute: {reason}")
        if any(marker in lowered for marker in BALANCE_MARKERS):
            return InsufficientVaultBalanceError(f"Vault cannot cover redistribution: {reason}")
        return TransactionError(f"redistribute() would revert: {reason}")

    def _build_contract_tx(
        self,
        fn: Any,
        sender: LocalAccount,
        on_revert: Callable[[Exception], TransactionError]
    ) -> Dict[str, Any]:
        """Build a signed-ready transaction dict for a contract call"""
        try:
            gas = int(fn.estimate_gas({"from": sender.address}) * 1.1)
            logger.debug("Estimated gas: %s", gas)
        except ContractLogicError as e:
            raise on_revert(e)
        except (Web3Exception, ValueError) as e:
            gas = DEFAULT_CONTRACT_GAS
            logger.warning("Gas estimation failed, using default: %s. Error: %s", gas, e)

        return fn.build_transaction({
            "from": sender.address,
            "gas": gas,
            "gasPrice": self.w3.eth.gas_price,
            "chainId": self.chain_id,
        })

    def _sign_and_send(
        self,
        account: LocalAccount,
        tx: Dict[str, Any],
        label: str,
        error_cls: Type[TransactionError]
    ) -> str:
        """
        Sign, submit and wait for a transaction.

        A transaction that is mined but reverted is treated exactly like one
        the node refused to accept.

        The nonce is assigned here, under a lock, as the larger of the node's
        pending count and the next nonce this adapter has submitted, so
        concurrent executions never sign the same operator nonce.
        """
        with self._nonce_lock:
            nonce = max(
                self.w3.eth.get_transaction_count(account.address, "pending"),
                self._next_nonce.get(account.address, 0)
            )
            tx = {**tx, "nonce": nonce}
            try:
                signed = account.sign_transaction(tx)
            except (TypeError, ValueError) as e:
                raise TransactionError(f"Failed to sign {label} transaction: {e}")

            try:
                tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
            except (Web3Exception, ValueError) as e:
                logger.error("%s transaction rejected: %s", label, e)
                raise error_cls(f"{label} transaction rejected: {e}")
            self._next_nonce[account.address] = nonce + 1

        tx_hex = Web3.to_hex(tx_hash)
        logger.info("%s transaction sent: %s", label, tx_hex)

        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self.receipt_timeout,
                poll_latency=self.poll_latency
            )
        except Web3Exception as e:
            raise error_cls(f"{label} transaction {tx_hex} was not confirmed: {e}", tx_hash=tx_hex)

        if receipt.get("status") != 1:
            logger.error("%s transaction %s reverted", label, tx_hex)
            raise error_cls(f"{label} transaction {tx_hex} reverted", tx_hash=tx_hex)

        logger.debug("%s transaction %s confirmed in block %s", label, tx_hex, receipt.get("blockNumber"))
        return tx_hex
