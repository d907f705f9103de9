"""
Scenario driver for end-to-end Cage flows over the mock ledger.

The driver plays every off-chain role: it builds the transactions an oracle
or requester would build, signs them with the right keys and submits them.
Failures surface as the exception the ledger or a validator raised.
"""

import hashlib
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from cage.fold import fold_requests
from cage.identity import derive_asset_name, single_token_value
from cage.instance import CageInstance
from cage.keys import KeyPair
from cage.ledger import MockLedger
from cage.model import (
    EMPTY_ROOT,
    Address,
    Burning,
    Contribute,
    End,
    Migrating,
    Minting,
    Modify,
    Operation,
    OutputReference,
    Proof,
    Reject,
    Request,
    Retract,
    State,
    TokenId,
    Transaction,
    TxIn,
    TxOut,
    ValidityRange,
    Value,
)

ADA = 1_000_000
WALLET_FUNDS = 100 * ADA
PROCESS_WINDOW = 10_000
RETRACT_WINDOW = 10_000
GENESIS_TIME = 1_700_000_000_000


@dataclass
class Token:
    """A live Cage token: its instance, asset name and current state UTxO."""
    instance: CageInstance
    asset_name: bytes
    ref: OutputReference


class CageDriver:
    """Builds, signs and submits Cage transactions."""

    def __init__(self, ledger: MockLedger, instance: CageInstance):
        self.ledger = ledger
        self.instance = instance
        self._wallets: Dict[str, KeyPair] = {}

    # -------------------------------------------------------------------------
    # Wallets
    # -------------------------------------------------------------------------

    def wallet(self, name: str) -> KeyPair:
        """Deterministic key pair for ``name``, funded on first use."""
        if name not in self._wallets:
            kp = KeyPair.from_seed(hashlib.sha256(name.encode("utf-8")).digest())
            self.ledger.fund(kp.address, WALLET_FUNDS)
            self._wallets[name] = kp
        return self._wallets[name]

    def lovelace(self, who: KeyPair) -> int:
        return self.ledger.balance(who.address).lovelace

    def _coin(self, who: KeyPair) -> TxIn:
        coins = [u for u in self.ledger.utxos_at(who.address) if u.output.value.without_lovelace().is_zero()]
        return max(coins, key=lambda u: u.output.value.lovelace)

    def submit(self, tx: Transaction, signers: Sequence[KeyPair]) -> bytes:
        tx_id = tx.id
        return self.ledger.submit(tx, [kp.witness(tx_id) for kp in signers])

    def _now_range(self) -> ValidityRange:
        return ValidityRange(self.ledger.now, self.ledger.now + 1)

    def state(self, token: Token) -> State:
        return self.ledger.resolve(token.ref).datum

    # -------------------------------------------------------------------------
    # Token lifecycle
    # -------------------------------------------------------------------------

    def mint(self, owner: KeyPair, max_fee: int = 0) -> Token:
        coin = self._coin(owner)
        asset = derive_asset_name(coin.reference)
        policy = self.instance.policy_id
        locked = self.ledger.min_output_lovelace
        tx = Transaction(
            inputs=[coin],
            outputs=[
                TxOut(self.instance.address, single_token_value(policy, asset, locked),
                      State(owner.pub_key_hash, EMPTY_ROOT, max_fee)),
                TxOut(owner.address, Value.from_lovelace(coin.output.value.lovelace - locked)),
            ],
            mint=Value.from_token(policy, asset, 1),
            signatories={owner.pub_key_hash},
            mint_redeemers={policy: Minting(coin.reference)},
        )
        tx_id = self.submit(tx, [owner])
        return Token(self.instance, asset, OutputReference(tx_id, 0))

    def end(self, owner: KeyPair, token: Token) -> None:
        state_in = TxIn(token.ref, self.ledger.resolve(token.ref))
        policy = token.instance.policy_id
        tx = Transaction(
            inputs=[state_in],
            outputs=[TxOut(owner.address, Value.from_lovelace(state_in.output.value.lovelace))],
            mint=Value.from_token(policy, token.asset_name, -1),
            signatories={owner.pub_key_hash},
            spend_redeemers={token.ref: End()},
            mint_redeemers={policy: Burning()},
        )
        self.submit(tx, [owner])

    def migrate(self, owner: KeyPair, token: Token, target: CageInstance, max_fee: Optional[int] = None) -> Token:
        state_in = TxIn(token.ref, self.ledger.resolve(token.ref))
        old: State = state_in.output.datum
        old_policy, new_policy = token.instance.policy_id, target.policy_id
        new_state = State(old.owner, old.root, old.max_fee if max_fee is None else max_fee)
        tx = Transaction(
            inputs=[state_in],
            outputs=[TxOut(target.address,
                           single_token_value(new_policy, token.asset_name, state_in.output.value.lovelace),
                           new_state)],
            mint=Value.from_token(old_policy, token.asset_name, -1) + Value.from_token(new_policy, token.asset_name, 1),
            signatories={owner.pub_key_hash},
            spend_redeemers={token.ref: End()},
            mint_redeemers={
                old_policy: Burning(),
                new_policy: Migrating(old_policy, TokenId(token.asset_name)),
            },
        )
        tx_id = self.submit(tx, [owner])
        return Token(target, token.asset_name, OutputReference(tx_id, 0))

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    def request(
        self,
        requester: KeyPair,
        token: Token,
        key: bytes,
        operation: Operation,
        fee: Optional[int] = None,
        bond: int = 3 * ADA,
        submitted_at: Optional[int] = None,
    ) -> OutputReference:
        coin = self._coin(requester)
        datum = Request(
            TokenId(token.asset_name),
            requester.pub_key_hash,
            key,
            operation,
            self.state(token).max_fee if fee is None else fee,
            self.ledger.now if submitted_at is None else submitted_at,
        )
        tx = Transaction(
            inputs=[coin],
            outputs=[
                TxOut(token.instance.address, Value.from_lovelace(bond), datum),
                TxOut(requester.address, Value.from_lovelace(coin.output.value.lovelace - bond)),
            ],
        )
        return OutputReference(self.submit(tx, [requester]), 0)

    def retract(self, requester: KeyPair, ref: OutputReference) -> None:
        out = self.ledger.resolve(ref)
        tx = Transaction(
            inputs=[TxIn(ref, out)],
            outputs=[TxOut(requester.address, out.value)],
            signatories={requester.pub_key_hash},
            validity_range=self._now_range(),
            spend_redeemers={ref: Retract()},
        )
        self.submit(tx, [requester])

    # -------------------------------------------------------------------------
    # Oracle
    # -------------------------------------------------------------------------

    def modify(
        self,
        owner: KeyPair,
        token: Token,
        proofs: Dict[OutputReference, Proof],
        unproven: Sequence[OutputReference] = (),
    ) -> Token:
        """Fold the requests keyed in ``proofs``; proofs follow input order.

        ``unproven`` requests are spent alongside without a proof.
        """
        tx = self._settlement(owner, [self._folded(token, proofs, unproven)])
        tx_id = self.submit(tx, [owner])
        return Token(token.instance, token.asset_name, OutputReference(tx_id, 0))

    def modify_together(self, owner: KeyPair, batches: Sequence[Tuple[Token, Dict[OutputReference, Proof]]]) -> Transaction:
        """Unsigned transaction folding every ``(token, proofs)`` batch at once.

        State outputs come first, in batch order.
        """
        return self._settlement(owner, [self._folded(token, proofs) for token, proofs in batches])

    def reject(self, owner: KeyPair, token: Token, refs: Sequence[OutputReference]) -> Token:
        tx = self._settlement(owner, [(token, sorted(refs), Reject(), self.state(token))])
        tx_id = self.submit(tx, [owner])
        return Token(token.instance, token.asset_name, OutputReference(tx_id, 0))

    def _folded(self, token: Token, proofs: Dict[OutputReference, Proof], unproven: Sequence[OutputReference] = ()):
        ordered = sorted(proofs)
        requests = [self.ledger.resolve(ref).datum for ref in ordered]
        state = self.state(token)
        new_root = fold_requests(token.instance.trie, state.root, requests, [proofs[r] for r in ordered])
        return (
            token,
            sorted(list(proofs) + list(unproven)),
            Modify(tuple(tuple(proofs[r]) for r in ordered)),
            State(state.owner, new_root, state.max_fee),
        )

    def _settlement(self, owner: KeyPair, settlements) -> Transaction:
        """Spend each ``(token, refs, redeemer, new_state)`` with refunds and fees paid.

        Collected fees are merged into the owner's coin so that no output is
        smaller than the ledger minimum.
        """
        inputs: List[TxIn] = []
        states: List[TxOut] = []
        payouts: List[TxOut] = []
        spend = {}
        collected = 0
        for token, refs, redeemer, new_state in settlements:
            state_in = TxIn(token.ref, self.ledger.resolve(token.ref))
            inputs.append(state_in)
            states.append(TxOut(token.instance.address, state_in.output.value, new_state))
            spend[token.ref] = redeemer
            for ref in refs:
                txin = TxIn(ref, self.ledger.resolve(ref))
                request: Request = txin.output.datum
                bond = txin.output.value.lovelace
                fee = min(max(request.fee, 0), bond)
                inputs.append(txin)
                spend[ref] = Contribute(token.ref)
                collected += fee
                if bond > fee:
                    payouts.append(TxOut(Address.key(request.requester), Value.from_lovelace(bond - fee)))

        if collected:
            coin = self._coin(owner)
            inputs.append(coin)
            payouts.append(TxOut(owner.address, Value.from_lovelace(coin.output.value.lovelace + collected)))

        return Transaction(
            inputs=inputs,
            outputs=states + payouts,
            signatories={owner.pub_key_hash},
            validity_range=self._now_range(),
            spend_redeemers=spend,
        )


@pytest.fixture
def ledger():
    return MockLedger(now=GENESIS_TIME)


@pytest.fixture
def instance(ledger):
    return ledger.register(CageInstance(0, PROCESS_WINDOW, RETRACT_WINDOW))


@pytest.fixture
def driver(ledger, instance):
    return CageDriver(ledger, instance)


@pytest.fixture
def oracle(driver):
    return driver.wallet("oracle")


@pytest.fixture
def requester(driver):
    return driver.wallet("requester")
