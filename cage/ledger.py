"""
Cage Mock Ledger

In-memory UTxO ledger for simulating Cage end to end without a network.

    submit(tx, witnesses)
      │
      ├─ phase-1 checks (LedgerError)
      │    inputs exist, are unspent and match the candidate's copies
      │    validity range contains the ledger clock
      │    witnesses verify over tx.id and cover signatories and key inputs
      │    inputs + mint == outputs, no negative outputs
      │    every output holds at least min_output_lovelace
      │    every minted policy and spent script is a registered instance
      │
      ├─ phase-2 checks (CageError subclasses)
      │    CageInstance.evaluate for every registered instance
      │
      └─ apply: inputs leave the UTxO set, outputs enter as (tx.id, index)

The ledger is the only place where "spent at most once" is enforced. Cage
validators rely on it for the uniqueness of asset names.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
from typing import Dict, Iterable, List, Optional, Sequence, Set

from cage.config import get_config
from cage.errors import LedgerError
from cage.instance import CageInstance
from cage.keys import Witness, verify_witness
from cage.model import Address, OutputReference, Transaction, TxIn, TxOut, Value
from cage.observability import CageLayer, get_logger, timed_operation

logger = get_logger("ledger", CageLayer.LEDGER)


class MockLedger:
    """
    Mock ledger for testing.

    Holds the UTxO set, a settable clock in POSIX milliseconds and the Cage
    instances whose scripts it knows how to run.
    """

    def __init__(self, now: int = 0, min_output_lovelace: Optional[int] = None):
        self._utxos: Dict[OutputReference, TxOut] = {}
        self._instances: Dict[bytes, CageInstance] = {}
        self._now = now
        self._genesis = 0
        self._history: List[bytes] = []
        if min_output_lovelace is None:
            min_output_lovelace = get_config().ledger.min_output_lovelace.get()
        self.min_output_lovelace = min_output_lovelace

    # -------------------------------------------------------------------------
    # Scripts and clock
    # -------------------------------------------------------------------------

    def register(self, instance: CageInstance) -> CageInstance:
        self._instances[instance.policy_id] = instance
        logger.debug("Instance registered", operation="register", policy=instance.policy_id.hex())
        return instance

    def instance(self, policy_id: bytes) -> CageInstance:
        try:
            return self._instances[policy_id]
        except KeyError:
            raise LedgerError("unknown script", policy=policy_id) from None

    @property
    def now(self) -> int:
        return self._now

    def set_time(self, now: int) -> None:
        if now < self._now:
            raise LedgerError("ledger time cannot go backwards", now=self._now, requested=now)
        self._now = now

    def advance(self, ms: int) -> int:
        self.set_time(self._now + ms)
        return self._now

    @property
    def history(self) -> List[bytes]:
        """Ids of the accepted transactions, oldest first."""
        return list(self._history)

    # -------------------------------------------------------------------------
    # UTxO set
    # -------------------------------------------------------------------------

    def fund(self, address: Address, lovelace: int) -> OutputReference:
        """Create a genesis output holding ``lovelace`` at ``address``."""
        if lovelace <= 0:
            raise LedgerError("funding must be positive", lovelace=lovelace)
        self._genesis += 1
        tx_id = hashlib.blake2b(b"genesis" + self._genesis.to_bytes(8, "big"), digest_size=32).digest()
        ref = OutputReference(tx_id, 0)
        self._utxos[ref] = TxOut(address, Value.from_lovelace(lovelace))
        return ref

    def resolve(self, reference: OutputReference) -> TxOut:
        out = self._utxos.get(reference)
        if out is None:
            raise LedgerError("output is spent or never existed", reference=str(reference))
        return out

    def inputs(self, *references: OutputReference) -> List[TxIn]:
        return [TxIn(ref, self.resolve(ref)) for ref in references]

    def utxos_at(self, address: Address) -> List[TxIn]:
        return [TxIn(ref, out) for ref, out in sorted(self._utxos.items()) if out.address == address]

    def balance(self, address: Address) -> Value:
        total = Value()
        for txin in self.utxos_at(address):
            total = total + txin.output.value
        return total

    def is_unspent(self, reference: OutputReference) -> bool:
        return reference in self._utxos

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    @timed_operation(logger, "submit")
    def submit(self, tx: Transaction, witnesses: Sequence[Witness] = ()) -> bytes:
        """Validate ``tx`` and apply it to the UTxO set. Returns the tx id."""
        tx_id = tx.id
        self._check_inputs(tx)
        self._check_validity(tx)
        self._check_witnesses(tx, tx_id, witnesses)
        self._check_balance(tx)
        self._check_scripts(tx)

        for instance in self._instances.values():
            instance.evaluate(tx)

        for txin in tx.inputs:
            del self._utxos[txin.reference]
        for index, out in enumerate(tx.outputs):
            self._utxos[OutputReference(tx_id, index)] = out
        self._history.append(tx_id)

        logger.info(
            "Transaction applied",
            operation="submit",
            tx_id=tx_id.hex(),
            inputs=len(tx.inputs),
            outputs=len(tx.outputs),
        )
        return tx_id

    def _check_inputs(self, tx: Transaction) -> None:
        if not tx.inputs:
            raise LedgerError("transaction must spend at least one input")
        seen: Set[OutputReference] = set()
        for txin in tx.inputs:
            if txin.reference in seen:
                raise LedgerError("input spent twice in one transaction", reference=str(txin.reference))
            seen.add(txin.reference)
            if self.resolve(txin.reference) != txin.output:
                raise LedgerError("input does not match the ledger", reference=str(txin.reference))

    def _check_validity(self, tx: Transaction) -> None:
        if not tx.validity_range.contains(self._now):
            raise LedgerError(
                "transaction is outside its validity range",
                now=self._now, lo=tx.validity_range.lo, hi=tx.validity_range.hi,
            )

    def _check_witnesses(self, tx: Transaction, tx_id: bytes, witnesses: Iterable[Witness]) -> None:
        signers: Set[bytes] = set()
        for witness in witnesses:
            if not verify_witness(witness, tx_id):
                raise LedgerError("invalid witness", vkey=witness.vkey)
            signers.add(witness.signer)

        missing = tx.signatories - signers
        if missing:
            raise LedgerError("required signer has no witness", signers=sorted(m.hex() for m in missing))

        for txin in tx.inputs:
            address = txin.output.address
            if not address.is_script and address.credential not in signers:
                raise LedgerError(
                    "key input has no witness",
                    reference=str(txin.reference), owner=address.credential,
                )

    def _check_balance(self, tx: Transaction) -> None:
        consumed = tx.mint
        for txin in tx.inputs:
            consumed = consumed + txin.output.value
        produced = Value()
        for out in tx.outputs:
            if any(q < 0 for _, _, q in out.value.flatten()):
                raise LedgerError("output carries a negative quantity", address=str(out.address))
            if out.value.lovelace < self.min_output_lovelace:
                raise LedgerError(
                    "output is below the minimum lovelace",
                    address=str(out.address), lovelace=out.value.lovelace, minimum=self.min_output_lovelace,
                )
            produced = produced + out.value
        if consumed != produced:
            raise LedgerError(
                "value is not conserved",
                consumed=repr(consumed), produced=repr(produced),
            )

    def _check_scripts(self, tx: Transaction) -> None:
        for policy in tx.mint.policies():
            self.instance(policy)
        for txin in tx.inputs:
            if txin.output.address.is_script:
                self.instance(txin.output.address.credential)
