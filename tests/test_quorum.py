"""
Tests for the Quorum Tracker and the multisig wallet client.

Validates:
- Confirm / revoke / execute rules and idempotent confirmation
- Executed transactions are frozen
- Governance call data
- Wallet flows against a simulated multisig
"""

from __future__ import annotations

import asyncio

import pytest

from multisig_forge.configuration.schema import PendingTransaction, TransactionKind
from multisig_forge.deployment.orchestrator import DeploymentOrchestrator
from multisig_forge.deployment.simulated import InMemoryRecordStore, SimulatedChain
from multisig_forge.errors import QuorumViolation
from multisig_forge.generation.identifiers import WEI_PER_ETH
from multisig_forge.quorum.tracker import QuorumTracker, is_confirmed_by
from multisig_forge.quorum.wallet import (
    MultisigWalletClient,
    decode_call_data,
    encode_governance_call,
)

A = "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"
B = "0xbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbb"
C = "0xcccccccccccccccccccccccccccccccccccccccc"
D = "0xdddddddddddddddddddddddddddddddddddddddd"
OUTSIDER = "0x9999999999999999999999999999999999999999"
RECIPIENT = "0x5555555555555555555555555555555555555555"


class TestQuorumTracker:
    def setup_method(self):
        self.tracker = QuorumTracker(
            [PendingTransaction(id=0, payload={"to": RECIPIENT, "value_wei": 1}, required_confirmations=2)],
            owners=[A, B, C],
        )

    def test_executable_after_quorum(self):
        assert self.tracker.confirm(0, A)
        assert self.tracker.executable() == []
        assert self.tracker.confirm(0, B.upper().replace("0X", "0x"))
        assert [tx.id for tx in self.tracker.executable()] == [0]
        assert self.tracker.summary(self.tracker.get(0))["status"] == "ready"

    def test_duplicate_confirmation_is_noop(self):
        assert self.tracker.confirm(0, A)
        assert not self.tracker.confirm(0, A)
        assert self.tracker.get(0).confirmation_count == 1

    def test_execute_requires_quorum(self):
        self.tracker.confirm(0, A)
        with pytest.raises(QuorumViolation) as exc_info:
            self.tracker.mark_executed(0)
        assert exc_info.value.tx_id == 0
        assert "1 of 2" in exc_info.value.reason
        assert self.tracker.summary(self.tracker.get(0))["status"] == "awaiting 1 more"

    def test_executed_transaction_is_frozen(self):
        self.tracker.confirm(0, A)
        self.tracker.confirm(0, B)
        self.tracker.mark_executed(0)

        with pytest.raises(QuorumViolation):
            self.tracker.confirm(0, C)
        with pytest.raises(QuorumViolation):
            self.tracker.revoke(0, A)
        with pytest.raises(QuorumViolation):
            self.tracker.mark_executed(0)
        tx = self.tracker.get(0)
        assert tx.executed
        assert tx.confirmed_by == {A, B}
        assert self.tracker.pending() == []

    def test_revoke(self):
        self.tracker.confirm(0, A)
        self.tracker.revoke(0, A)
        assert self.tracker.get(0).confirmation_count == 0
        with pytest.raises(QuorumViolation, match="has not confirmed"):
            self.tracker.revoke(0, A)

    def test_padded_address_counts_once(self):
        assert self.tracker.confirm(0, f"  {A.upper().replace('0X', '0x')} ")
        assert not self.tracker.confirm(0, A)
        tx = self.tracker.get(0)
        assert tx.confirmed_by == {A}
        assert tx.confirmation_count == 1
        assert is_confirmed_by(tx, f" {A} ")
        assert self.tracker.executable() == []

    def test_padded_revoke_removes_confirmation(self):
        self.tracker.confirm(0, A)
        self.tracker.revoke(0, f"{A}  ")
        assert self.tracker.get(0).confirmed_by == set()

    def test_non_owner_and_unknown_transaction(self):
        with pytest.raises(QuorumViolation, match="is not an owner"):
            self.tracker.confirm(0, OUTSIDER)
        with pytest.raises(QuorumViolation, match="unknown transaction"):
            self.tracker.confirm(7, A)

    def test_propose(self):
        tx = self.tracker.propose(TransactionKind.ADD_OWNER, {"owner": D}, 2, proposer=A)
        assert tx.id == 1
        assert tx.confirmed_by == {A}
        assert [t.id for t in self.tracker.pending()] == [0, 1]


class TestGovernanceCallData:
    def test_owner_calls(self):
        data = encode_governance_call(TransactionKind.ADD_OWNER, {"owner": D})
        assert data == "0x7065cb48" + "0" * 24 + D[2:]
        assert decode_call_data(data) == (TransactionKind.ADD_OWNER, {"owner": D})

        data = encode_governance_call(TransactionKind.REMOVE_OWNER, {"owner": C})
        assert data.startswith("0x173825d9")

    def test_threshold_call(self):
        data = encode_governance_call(TransactionKind.CHANGE_THRESHOLD, {"threshold": 3})
        assert decode_call_data(data) == (TransactionKind.CHANGE_THRESHOLD, {"threshold": 3})

    def test_plain_data_is_transfer(self):
        assert decode_call_data("0x") == (TransactionKind.TRANSFER, {})
        assert decode_call_data(None) == (TransactionKind.TRANSFER, {})
        with pytest.raises(ValueError):
            encode_governance_call(TransactionKind.TRANSFER, {})


class TestMultisigWalletClient:
    def setup_method(self):
        self.chain = SimulatedChain()
        orchestrator = DeploymentOrchestrator(self.chain, self.chain, InMemoryRecordStore())
        record = asyncio.run(orchestrator.deploy_multisig("wallet", [A, B, C], 2))
        self.wallet = record.multisig_address
        self.chain.fund(self.wallet, 5 * WEI_PER_ETH)

    def _client(self, owner: str) -> MultisigWalletClient:
        return MultisigWalletClient(self.wallet, self.chain, self.chain.account(owner))

    def test_info(self):
        client = self._client(A)
        assert asyncio.run(client.is_multisig_wallet())
        info = asyncio.run(client.get_info())
        assert info.owners == [A, B, C]
        assert info.threshold == 2
        assert info.balance_wei == 5 * WEI_PER_ETH
        assert info.transaction_count == 0

    def test_not_a_wallet(self):
        client = MultisigWalletClient(RECIPIENT, self.chain)
        assert not asyncio.run(client.is_multisig_wallet())

    def test_transfer_flow(self):
        async def flow():
            alice, bob = self._client(A), self._client(B)
            await alice.fetch_transactions()
            await alice.propose_transaction(
                TransactionKind.TRANSFER, {"to": RECIPIENT, "value_wei": WEI_PER_ETH}
            )
            assert await alice.confirm_transaction(0)
            assert not await alice.confirm_transaction(0)
            with pytest.raises(QuorumViolation):
                await alice.execute_transaction(0)

            await bob.fetch_transactions()
            assert await bob.confirm_transaction(0)
            await bob.execute_transaction(0)
            return bob.tracker.get(0)

        tx = asyncio.run(flow())
        assert tx.executed
        assert tx.payload == {"to": RECIPIENT, "value_wei": WEI_PER_ETH, "data": "0x"}
        assert self.chain.balances[RECIPIENT] == WEI_PER_ETH
        assert self.chain.balances[self.wallet] == 4 * WEI_PER_ETH

    def test_outsider_cannot_confirm(self):
        async def flow():
            alice = self._client(A)
            await alice.fetch_transactions()
            await alice.propose_transaction(TransactionKind.TRANSFER, {"to": RECIPIENT, "value_wei": 1})
            outsider = self._client(OUTSIDER)
            await outsider.fetch_transactions()
            await outsider.confirm_transaction(0)

        with pytest.raises(QuorumViolation, match="is not an owner"):
            asyncio.run(flow())
        assert len([s for s in self.chain.submissions if s.intent.method == "confirmTransaction"]) == 0

    def test_add_owner(self):
        async def flow():
            alice, bob = self._client(A), self._client(B)
            await alice.fetch_transactions()
            await alice.propose_transaction(TransactionKind.ADD_OWNER, {"owner": D})
            await alice.confirm_transaction(0)
            await bob.fetch_transactions()
            assert bob.tracker.get(0).kind == TransactionKind.ADD_OWNER
            await bob.confirm_transaction(0)
            await bob.execute_transaction(0)
            return await bob.get_owners()

        assert asyncio.run(flow()) == [A, B, C, D]

    def test_revoke(self):
        async def flow():
            alice = self._client(A)
            await alice.fetch_transactions()
            await alice.propose_transaction(TransactionKind.TRANSFER, {"to": RECIPIENT, "value_wei": 1})
            await alice.confirm_transaction(0)
            await alice.revoke_confirmation(0)
            return alice.tracker.get(0)

        assert asyncio.run(flow()).confirmation_count == 0
