"""
Tests for the source network adapter.
"""
import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from hypersecret import relay
from hypersecret.chain.source import SourceChainAdapter, DEFAULT_CONTRACT_GAS
from hypersecret.config import PipelineSettings
from hypersecret.exceptions import (
    AuthorizationError, InsufficientVaultBalanceError, TransactionError, TransferError
)
from conftest import TEST_BRIDGE, TEST_CHAIN_ID, TEST_OPERATOR_KEY, TEST_TOKEN, TEST_VAULT


@pytest.fixture
def adapter(fake_chain, operator_account):
    return SourceChainAdapter(
        w3=fake_chain.w3,
        operator=operator_account,
        token_address=TEST_TOKEN,
        bridge_address=TEST_BRIDGE,
        chain_id=TEST_CHAIN_ID,
        receipt_timeout=5,
        poll_latency=0.1,
    )


class TestRedistribute:
    """Vault redistribution"""

    def test_success_returns_tx_hash(self, adapter, fake_chain):
        relay_account = relay.generate()
        tx_hash = adapter.redistribute(TEST_VAULT, [relay_account.address], [5000000])

        assert tx_hash == Web3.to_hex(Web3.keccak(fake_chain.sent[0]))
        assert len(fake_chain.sent) == 1
        calls = [c for c in fake_chain.contract_calls if c[0] == "redistribute"]
        assert calls[0][1] == TEST_VAULT
        assert calls[0][2] == ([relay_account.address], [5000000])
        fake_chain.w3.eth.wait_for_transaction_receipt.assert_called_once()

    def test_signed_by_operator(self, adapter, fake_chain, operator_account):
        adapter.redistribute(TEST_VAULT, [relay.generate().address], [5000000])
        sender = Account.recover_transaction(fake_chain.sent[0])
        assert sender == operator_account.address

    def test_vault_balance_precheck(self, adapter, fake_chain):
        fake_chain.token_balances[TEST_VAULT] = 4999999
        with pytest.raises(InsufficientVaultBalanceError):
            adapter.redistribute(TEST_VAULT, [relay.generate().address], [5000000])
        assert fake_chain.sent == []

    def test_unauthorized_revert(self, adapter, fake_chain):
        fake_chain.redistribute_call_error = ContractLogicError("execution reverted: Not authorized")
        with pytest.raises(AuthorizationError):
            adapter.redistribute(TEST_VAULT, [relay.generate().address], [5000000])
        assert fake_chain.sent == []

    def test_insufficient_balance_revert(self, adapter, fake_chain):
        fake_chain.redistribute_call_error = ContractLogicError("execution reverted: Insufficient balance")
        with pytest.raises(InsufficientVaultBalanceError):
            adapter.redistribute(TEST_VAULT, [relay.generate().address], [5000000])

    def test_other_revert(self, adapter, fake_chain):
        fake_chain.redistribute_call_error = ContractLogicError("execution reverted: paused")
        with pytest.raises(TransactionError, match="would revert"):
            adapter.redistribute(TEST_VAULT, [relay.generate().address], [5000000])

    def test_mined_but_reverted(self, adapter, fake_chain):
        """A reverted receipt is treated exactly like a rejection"""
        fake_chain.receipt_status = 0
        with pytest.raises(TransactionError, match="reverted") as exc_info:
            adapter.redistribute(TEST_VAULT, [relay.generate().address], [5000000])
        assert exc_info.value.tx_hash is not None

    def test_rejected_submission(self, adapter, fake_chain):
        fake_chain.send_error = ValueError("nonce too low")
        with pytest.raises(TransactionError, match="rejected"):
            adapter.redistribute(TEST_VAULT, [relay.generate().address], [5000000])

    def test_receipt_timeout(self, adapter, fake_chain):
        fake_chain.w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("timeout")
        with pytest.raises(TransactionError, match="not confirmed"):
            adapter.redistribute(TEST_VAULT, [relay.generate().address], [5000000])

    def test_mismatched_lengths(self, adapter):
        with pytest.raises(ValueError):
            adapter.redistribute(TEST_VAULT, [relay.generate().address], [1, 2])


class TestFundGas:
    """Native-currency stipend"""

    def test_sends_stipend(self, adapter, fake_chain):
        relay_account = relay.generate()
        adapter.fund_gas(relay_account.address, Decimal("0.001"))

        assert Account.recover_transaction(fake_chain.sent[0]) == adapter.operator.address
        assert len(fake_chain.sent) == 1

    def test_operator_balance_precheck(self, adapter, fake_chain):
        fake_chain.native_balance = Web3.to_wei(Decimal("0.001"), "ether")
        with pytest.raises(TransferError, match="cannot cover"):
            adapter.fund_gas(relay.generate().address, Decimal("0.001"))
        assert fake_chain.sent == []


class TestTransferToken:
    """Relay-signed transfer into the bridge"""

    def test_transfer_to_bridge(self, adapter, fake_chain):
        relay_account = relay.generate()
        adapter.transfer_token(relay_account, 5000000)

        transfer = [c for c in fake_chain.contract_calls if c[0] == "transfer"][0]
        assert transfer[1] == TEST_TOKEN
        assert transfer[2] == (TEST_BRIDGE, 5000000)
        assert Account.recover_transaction(fake_chain.sent[0]) == relay_account.address

    def test_balance_precondition(self, adapter, fake_chain):
        relay_account = relay.generate()
        fake_chain.token_balances[relay_account.address] = 4999999
        with pytest.raises(TransferError, match="4999999"):
            adapter.transfer_token(relay_account, 5000000)
        assert fake_chain.sent == []

    def test_revert_during_estimation(self, adapter, fake_chain):
        fake_chain.estimate_gas_error = ContractLogicError("execution reverted: ERC20: transfer amount exceeds balance")
        with pytest.raises(TransferError, match="reverted"):
            adapter.transfer_token(relay.generate(), 5000000)

    def test_estimation_failure_uses_default_gas(self, adapter, fake_chain):
        fake_chain.estimate_gas_error = ValueError("estimation unavailable")
        adapter.transfer_token(relay.generate(), 5000000)
        name, tx = fake_chain.built[-1]
        assert name == "transfer"
        assert tx["gas"] == DEFAULT_CONTRACT_GAS
        assert len(fake_chain.sent) == 1


@pytest.fixture
def signed_nonces(monkeypatch):
    """Nonces of every transaction signed during the test"""
    nonces = []
    original = LocalAccount.sign_transaction

    def sign_transaction(self, transaction_dict):
        nonces.append(transaction_dict["nonce"])
        return original(self, transaction_dict)

    monkeypatch.setattr(LocalAccount, "sign_transaction", sign_transaction)
    return nonces


class TestOperatorNonce:
    """Operator transactions from concurrent executions"""

    def test_pending_count_requested(self, adapter, fake_chain, operator_account, signed_nonces):
        fake_chain.w3.eth.get_transaction_count.return_value = 7
        adapter.fund_gas(relay.generate().address, Decimal("0.001"))

        fake_chain.w3.eth.get_transaction_count.assert_called_with(operator_account.address, "pending")
        assert signed_nonces == [7]

    def test_sequential_submissions_before_node_catches_up(self, adapter, signed_nonces):
        adapter.redistribute(TEST_VAULT, [relay.generate().address], [5000000])
        adapter.fund_gas(relay.generate().address, Decimal("0.001"))
        assert signed_nonces == [0, 1]

    def test_rejected_submission_does_not_consume_nonce(self, adapter, fake_chain, signed_nonces):
        fake_chain.send_error = ValueError("replacement transaction underpriced")
        with pytest.raises(TransactionError):
            adapter.fund_gas(relay.generate().address, Decimal("0.001"))

        fake_chain.send_error = None
        adapter.fund_gas(relay.generate().address, Decimal("0.001"))
        assert signed_nonces == [0, 0]

    def test_concurrent_executions_get_distinct_nonces(self, adapter, fake_chain, signed_nonces):
        mined = []
        both_sent = threading.Barrier(2, timeout=5)
        fake_chain.w3.eth.get_transaction_count.side_effect = lambda address, block="latest": len(mined)

        def wait_for_transaction_receipt(tx_hash, **kwargs):
            # Neither transaction is mined until both have been submitted
            both_sent.wait()
            mined.append(tx_hash)
            return {"transactionHash": tx_hash, "blockNumber": 12345, "status": 1}

        fake_chain.w3.eth.wait_for_transaction_receipt.side_effect = wait_for_transaction_receipt

        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = [
                pool.submit(adapter.redistribute, TEST_VAULT, [relay.generate().address], [5000000]),
                pool.submit(adapter.fund_gas, relay.generate().address, Decimal("0.001")),
            ]
            tx_hashes = [future.result(timeout=10) for future in futures]

        assert sorted(signed_nonces) == [0, 1]
        assert len(set(tx_hashes)) == 2

def test_reads(adapter):
    assert adapter.token_balance(TEST_VAULT) == 10 ** 12
    assert adapter.deposits(TEST_VAULT, TEST_BRIDGE) == 5000000


def test_chain_id_queried_lazily(fake_chain, operator_account):
    adapter = SourceChainAdapter(fake_chain.w3, operator_account, TEST_TOKEN, TEST_BRIDGE)
    assert adapter.chain_id == TEST_CHAIN_ID


def test_from_settings():
    settings = PipelineSettings(operator_key=TEST_OPERATOR_KEY)
    adapter = SourceChainAdapter.from_settings(settings)
    assert adapter.chain_id == TEST_CHAIN_ID
    assert adapter.bridge_address == TEST_BRIDGE
    assert adapter.token_address == TEST_TOKEN


def test_from_settings_requires_key():
    with pytest.raises(ValueError, match="operator_key"):
        SourceChainAdapter.from_settings(PipelineSettings())
