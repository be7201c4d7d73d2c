"""
Pytest fixtures for the HyperSecret tests.
"""
import time
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from eth_account import Account
from web3 import Web3
from web3.providers.rpc import HTTPProvider

from hypersecret import _rate_limited_log
from hypersecret.config import NetworkConfig
from hypersecret.models import ExecutionProof, Intent

# Constants for testing
TEST_OPERATOR_KEY = "0x0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"
TEST_DESTINATION = Web3.to_checksum_address("0xabcdef0123456789abcdef0123456789abcd1234")
TEST_VAULT = Web3.to_checksum_address("0x5fbdb2315678afecb367f032d93f642f64180aa3")
TEST_TOKEN = Web3.to_checksum_address("0x1baabb04529d43a73232b713c0fe471f7c7334d5")
TEST_BRIDGE = Web3.to_checksum_address("0x08cfc1b6b2dcf36a1480b99353a354aa8ac56f89")
TEST_API_URL = "https://api.destination.example.com"
TEST_CHAIN_ID = 421614
TEST_GAS_PRICE = 100000000  # 0.1 gwei


# Make time.sleep instantaneous so retries don't slow the suite down
@pytest.fixture(autouse=True)
def _fast_sleep(monkeypatch):
    monkeypatch.setattr(time, "sleep", lambda *_a, **_kw: None)


@pytest.fixture(autouse=True)
def _patch_http_provider(monkeypatch):
    """
    Stub every Web3 HTTP call so no DNS / network traffic is triggered.
    Works for all tests because it is autouse.
    """
    def _dummy(self, method, params=None, _=None):      # signature match
        if method in {"eth_chainId"}:
            return {"jsonrpc": "2.0", "id": 1, "result": hex(TEST_CHAIN_ID)}
        if method in {"eth_gasPrice"}:
            return {"jsonrpc": "2.0", "id": 1, "result": hex(TEST_GAS_PRICE)}
        # everything else – return something harmless
        return {"jsonrpc": "2.0", "id": 1, "result": "0x0"}

    monkeypatch.setattr(HTTPProvider, "make_request", _dummy, raising=True)


@pytest.fixture(autouse=True)
def _reset_caches():
    """Rate-limited log entries and network config must not leak between tests"""
    _rate_limited_log.reset()
    NetworkConfig._networks_cache = None
    yield
    _rate_limited_log.reset()
    NetworkConfig._networks_cache = None


class FakeSourceChain:
    """
    Builds a MagicMock Web3 whose token and vault contracts behave like the
    real ones closely enough for locally signed transactions.
    """

    def __init__(self):
        self.token_balances = {}
        self.default_token_balance = 10 ** 12
        self.native_balance = 10 ** 18
        self.redistribute_call_error = None
        self.estimate_gas_error = None
        self.receipt_status = 1
        self.send_error = None
        self.sent = []
        self.built = []
        self.contract_calls = []
        self.w3 = self._build()

    def _function(self, name, address, args):
        self.contract_calls.append((name, address, args))
        fn = MagicMock()
        fn.args = args
        if name == "balanceOf":
            fn.call.return_value = self.token_balances.get(args[0], self.default_token_balance)
        elif name == "deposits":
            fn.call.return_value = 5000000
        else:
            fn.call.side_effect = self.redistribute_call_error if name == "redistribute" else None
            fn.call.return_value = None
        if self.estimate_gas_error is not None:
            fn.estimate_gas.side_effect = self.estimate_gas_error
        else:
            fn.estimate_gas.return_value = 100000

        def build_transaction(params):
            tx = {**params, "to": address, "value": 0, "data": "0xa9059cbb"}
            self.built.append((name, tx))
            return tx

        fn.build_transaction.side_effect = build_transaction
        return fn

    def _contract(self, address, abi):
        contract = MagicMock()
        contract.address = address
        for name in ("balanceOf", "deposits", "redistribute", "transfer"):
            getattr(contract.functions, name).side_effect = (
                lambda *args, _name=name: self._function(_name, address, args)
            )
        return contract

    def _send(self, raw):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(raw)
        return Web3.keccak(raw)

    def _build(self):
        w3 = MagicMock()
        w3.eth.chain_id = TEST_CHAIN_ID
        w3.eth.gas_price = TEST_GAS_PRICE
        w3.eth.get_balance.side_effect = lambda address: self.native_balance
        w3.eth.get_transaction_count.return_value = 0
        w3.eth.send_raw_transaction.side_effect = self._send
        w3.eth.wait_for_transaction_receipt.side_effect = lambda tx_hash, **kwargs: {
            "transactionHash": tx_hash,
            "blockNumber": 12345,
            "status": self.receipt_status,
        }
        w3.eth.contract.side_effect = lambda address, abi: self._contract(address, abi)
        return w3


@pytest.fixture
def fake_chain():
    return FakeSourceChain()


@pytest.fixture
def operator_account():
    """Deterministic operator account"""
    return Account.from_key(TEST_OPERATOR_KEY)


@pytest.fixture
def intent():
    return Intent(destination=TEST_DESTINATION, amount=Decimal("5"), vaultAddress=TEST_VAULT)


def make_proof(amount="5", destination=TEST_DESTINATION):
    return ExecutionProof(
        success=True,
        relayAccount="0x" + "11" * 20,
        redistributeTxRef="0x" + "aa" * 32,
        fundingTxRef="0x" + "bb" * 32,
        bridgeTxRef="0x" + "cc" * 32,
        destinationTransferResult={"status": "ok", "response": {"type": "default"}},
        destinationAccount=destination,
        amount=Decimal(amount),
        timestamp="2025-01-01T00:00:00.000Z",
    )


@pytest.fixture
def sample_proof():
    return make_proof()
