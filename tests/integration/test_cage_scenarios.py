"""
Integration Test: Cage Token and Request Lifecycles

End-to-end flows through the mock ledger: every transaction is signed,
balanced and checked by both validators before it touches the UTxO set.
"""

import hashlib
from dataclasses import replace

import pytest

from cage.errors import AuthorizationError, BindingError, LedgerError, PhaseViolation, ProofUnderflow, RefundError
from cage.forestry import common_prefix_length, leaf_step, singleton_root
from cage.instance import CageInstance
from cage.model import EMPTY_ROOT, Delete, Insert, TxOut, Update

ADA = 1_000_000
KEY = bytes.fromhex("3432")
VALUE = bytes.fromhex("3432")
FEE = 500_000
BOND = 3 * ADA


class TestTokenLifecycle:
    """Mint, End and migration of the state token."""

    def test_mint_then_end(self, driver, ledger, instance, oracle):
        token = driver.mint(oracle)
        state = driver.state(token)
        assert state.root == EMPTY_ROOT
        assert state.owner == oracle.pub_key_hash
        assert ledger.balance(instance.address).quantity_of(instance.policy_id, token.asset_name) == 1

        driver.end(oracle, token)
        assert ledger.utxos_at(instance.address) == []
        assert driver.lovelace(oracle) == 100 * ADA

    def test_two_mints_have_distinct_asset_names(self, driver, oracle):
        first = driver.mint(oracle)
        second = driver.mint(oracle)
        assert first.asset_name != second.asset_name

    def test_only_owner_can_end(self, driver, oracle, requester):
        token = driver.mint(oracle)
        with pytest.raises(AuthorizationError):
            driver.end(requester, token)

    def test_migration_preserves_root_and_owner(self, driver, ledger, instance, oracle, requester):
        token = driver.mint(oracle, max_fee=FEE)
        ref = driver.request(requester, token, KEY, Insert(VALUE))
        token = driver.modify(oracle, token, {ref: []})

        successor = ledger.register(CageInstance(1, instance.process_window, instance.retract_window))
        moved = driver.migrate(oracle, token, successor)

        state = driver.state(moved)
        assert state.root == singleton_root(KEY, VALUE)
        assert state.owner == oracle.pub_key_hash
        assert ledger.utxos_at(instance.address) == []
        assert ledger.balance(successor.address).quantity_of(successor.policy_id, token.asset_name) == 1

    def test_migrated_token_keeps_working(self, driver, ledger, instance, oracle, requester):
        token = driver.mint(oracle)
        successor = ledger.register(CageInstance(1, instance.process_window, instance.retract_window))
        token = driver.migrate(oracle, token, successor)

        ref = driver.request(requester, token, KEY, Insert(VALUE))
        token = driver.modify(oracle, token, {ref: []})
        assert driver.state(token).root == singleton_root(KEY, VALUE)
        driver.end(oracle, token)


class TestModify:
    """The oracle folds requests into the root and keeps the fee."""

    def test_modify_with_fee(self, driver, oracle, requester):
        token = driver.mint(oracle, max_fee=FEE)
        ref = driver.request(requester, token, KEY, Insert(VALUE), bond=BOND)
        assert driver.lovelace(requester) == 100 * ADA - BOND

        token = driver.modify(oracle, token, {ref: []})

        expected = hashlib.blake2b(
            b"\xff" + hashlib.blake2b(KEY, digest_size=32).digest()
            + hashlib.blake2b(VALUE, digest_size=32).digest(),
            digest_size=32,
        ).digest()
        assert driver.state(token).root == expected
        assert driver.lovelace(requester) == 100 * ADA - FEE
        assert driver.lovelace(oracle) == 100 * ADA - 2 * ADA + FEE

    def test_insert_then_delete_returns_empty_root(self, driver, oracle, requester):
        token = driver.mint(oracle)
        ref = driver.request(requester, token, KEY, Insert(VALUE))
        token = driver.modify(oracle, token, {ref: []})
        assert driver.state(token).root != EMPTY_ROOT

        ref = driver.request(requester, token, KEY, Delete(VALUE))
        token = driver.modify(oracle, token, {ref: []})
        assert driver.state(token).root == EMPTY_ROOT

    def test_update(self, driver, oracle, requester):
        token = driver.mint(oracle)
        token = driver.modify(oracle, token, {driver.request(requester, token, KEY, Insert(VALUE)): []})
        token = driver.modify(oracle, token, {driver.request(requester, token, KEY, Update(VALUE, b"new")): []})
        assert driver.state(token).root == singleton_root(KEY, b"new")

    def test_two_requests_in_one_modify(self, driver, ledger, oracle, requester):
        other = driver.wallet("other-requester")
        token = driver.mint(oracle)
        a = driver.request(requester, token, b"alpha", Insert(b"1"))
        b = driver.request(other, token, b"beta", Insert(b"2"))

        first, second = sorted([a, b])
        keys = {a: (b"alpha", b"1"), b: (b"beta", b"2")}
        k1, v1 = keys[first]
        k2, _ = keys[second]
        proofs = {first: [], second: [leaf_step(k1, v1, common_prefix_length(k1, k2))]}

        token = driver.modify(oracle, token, proofs)
        assert not ledger.is_unspent(a) and not ledger.is_unspent(b)
        assert driver.lovelace(other) == 100 * ADA

    def test_request_for_another_token_cannot_contribute(self, driver, oracle, requester):
        token = driver.mint(oracle)
        other_token = driver.mint(oracle)
        ref = driver.request(requester, other_token, KEY, Insert(VALUE))
        with pytest.raises(BindingError):
            driver.reject(oracle, token, [ref])

    def test_modify_after_processing_window(self, driver, ledger, instance, oracle, requester):
        token = driver.mint(oracle)
        ref = driver.request(requester, token, KEY, Insert(VALUE))
        ledger.advance(instance.process_window)
        with pytest.raises(PhaseViolation):
            driver.modify(oracle, token, {ref: []})

    def test_stale_state_reference(self, driver, oracle, requester):
        minted = driver.mint(oracle)
        ref = driver.request(requester, minted, KEY, Insert(VALUE))
        driver.modify(oracle, minted, {ref: []})
        with pytest.raises(LedgerError):
            driver.end(oracle, minted)

    def test_one_refund_cannot_cover_two_tokens(self, driver, ledger, oracle, requester):
        first, second = driver.mint(oracle), driver.mint(oracle)
        a = driver.request(requester, first, KEY, Insert(VALUE))
        b = driver.request(requester, second, KEY, Insert(VALUE))

        tx = driver.modify_together(oracle, [(first, {a: []}), (second, {b: []})])
        assert len(tx.outputs_at(requester.address)) == 2

        kept = replace(tx, outputs=tx.outputs[:-1] + (TxOut(oracle.address, tx.outputs[-1].value),))
        with pytest.raises(RefundError):
            driver.submit(kept, [oracle])
        assert ledger.is_unspent(a) and ledger.is_unspent(b)

        driver.submit(tx, [oracle])
        assert driver.lovelace(requester) == 100 * ADA


class TestReject:
    """Stale requests are discarded once both windows have passed."""

    def test_reject_after_retract_window(self, driver, ledger, instance, oracle, requester):
        token = driver.mint(oracle, max_fee=FEE)
        ref = driver.request(requester, token, KEY, Insert(VALUE), bond=BOND)

        with pytest.raises(PhaseViolation):
            driver.reject(oracle, token, [ref])
        ledger.advance(instance.process_window)
        with pytest.raises(PhaseViolation):
            driver.reject(oracle, token, [ref])

        ledger.advance(instance.retract_window)
        token = driver.reject(oracle, token, [ref])
        assert driver.state(token).root == EMPTY_ROOT
        assert driver.lovelace(requester) == 100 * ADA - FEE

    def test_future_dated_request_rejected_at_once(self, driver, ledger, oracle, requester):
        token = driver.mint(oracle)
        ref = driver.request(requester, token, KEY, Insert(VALUE), submitted_at=ledger.now + 60_000)
        token = driver.reject(oracle, token, [ref])
        assert not ledger.is_unspent(ref)


class TestRetract:
    """Requesters get their full bond back inside the retract window."""

    def test_retract_only_in_phase2(self, driver, ledger, instance, oracle, requester):
        token = driver.mint(oracle, max_fee=FEE)
        ref = driver.request(requester, token, KEY, Insert(VALUE), bond=BOND)

        with pytest.raises(PhaseViolation):
            driver.retract(requester, ref)

        ledger.advance(instance.process_window)
        driver.retract(requester, ref)
        assert driver.lovelace(requester) == 100 * ADA

    def test_retract_after_window(self, driver, ledger, instance, oracle, requester):
        token = driver.mint(oracle)
        ref = driver.request(requester, token, KEY, Insert(VALUE))
        ledger.advance(instance.process_window + instance.retract_window)
        with pytest.raises(PhaseViolation):
            driver.retract(requester, ref)

    def test_only_requester_can_retract(self, driver, ledger, instance, oracle, requester):
        token = driver.mint(oracle)
        ref = driver.request(requester, token, KEY, Insert(VALUE))
        ledger.advance(instance.process_window)
        with pytest.raises(AuthorizationError):
            driver.retract(oracle, ref)


class TestProofs:
    """Modify needs one proof per folded request."""

    def test_missing_proof(self, driver, ledger, oracle, requester):
        token = driver.mint(oracle)
        ref = driver.request(requester, token, KEY, Insert(VALUE))
        state_before = driver.state(token)
        with pytest.raises(ProofUnderflow):
            driver.modify(oracle, token, {}, unproven=[ref])
        assert driver.state(token) == state_before
        assert ledger.is_unspent(ref)
