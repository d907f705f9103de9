"""
Cage Instance

A deployment of the Cage validators: one minting policy and one spending
validator sharing a script hash, parameterized by

    version           tag distinguishing otherwise identical deployments
    process_window    oracle-exclusive window after a request (ms)
    retract_window    requester-exclusive window after that (ms)

The script hash doubles as the policy id and as the payment credential of
the controller address. Changing any parameter yields a new instance, to
which live tokens are moved with a migration.

``evaluate`` runs every validator of this instance that a transaction
triggers, the way the ledger would: the minting policy if the transaction
mints or burns under the policy, and the spending validator once per
consumed UTxO at the controller address. The first failing clause voids the
transaction.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from cage.config import CageConfig, get_config
from cage.errors import CageError, StructuralError, error_code
from cage.forestry import MerklePatriciaForestry, Trie
from cage.lifecycle import validate_mint
from cage.model import Address, MintRedeemer, OutputReference, SpendRedeemer, Transaction
from cage.observability import (
    CageLayer,
    get_logger,
    set_correlation_id,
    correlation_id_var,
)
from cage.phases import PhaseClock
from cage.transitions import validate_spend

logger = get_logger("instance", CageLayer.INSTANCE)

SCRIPT_TITLE = "cage.mpfCage"


@dataclass(frozen=True)
class CageInstance:
    """One deployment of the Cage validators."""
    version: int
    process_window: int
    retract_window: int
    trie: Trie = field(default_factory=MerklePatriciaForestry, compare=False, repr=False)

    def __post_init__(self):
        if self.version < 0:
            raise ValueError("version must be non-negative")
        # validates the windows
        object.__setattr__(self, "_clock", PhaseClock(self.process_window, self.retract_window))
        object.__setattr__(self, "_policy_id", _script_hash(self.parameters()))

    @classmethod
    def from_config(cls, config: Optional[CageConfig] = None, trie: Optional[Trie] = None) -> "CageInstance":
        cfg = (config or get_config()).deployment
        return cls(
            version=cfg.version.get(),
            process_window=cfg.process_window_ms.get(),
            retract_window=cfg.retract_window_ms.get(),
            trie=trie or MerklePatriciaForestry(),
        )

    def parameters(self) -> Dict[str, Any]:
        return {
            "script": SCRIPT_TITLE,
            "version": self.version,
            "process_window": self.process_window,
            "retract_window": self.retract_window,
        }

    @property
    def policy_id(self) -> bytes:
        return self._policy_id  # type: ignore[attr-defined]

    @property
    def address(self) -> Address:
        return Address.script(self.policy_id)

    @property
    def clock(self) -> PhaseClock:
        return self._clock  # type: ignore[attr-defined]

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------

    def validate_mint(self, tx: Transaction, redeemer: Optional[MintRedeemer] = None) -> None:
        validate_mint(self, tx, redeemer if redeemer is not None else tx.mint_redeemers.get(self.policy_id))

    def validate_spend(
        self,
        tx: Transaction,
        own_ref: OutputReference,
        redeemer: Optional[SpendRedeemer] = None,
    ) -> None:
        validate_spend(self, tx, own_ref, redeemer if redeemer is not None else tx.spend_redeemer(own_ref))

    def evaluate(self, tx: Transaction) -> int:
        """Run every validator of this instance triggered by ``tx``.

        Returns the number of validator runs. Raises the first failure.
        """
        token = None if correlation_id_var.get() else set_correlation_id(f"tx-{tx.id.hex()[:16]}")
        runs = 0
        purpose = ""
        try:
            if self.policy_id in tx.mint.policies():
                purpose = "mint"
                if self.policy_id not in tx.mint_redeemers:
                    raise StructuralError("missing mint redeemer", policy=self.policy_id)
                self.validate_mint(tx)
                runs += 1

            for txin in tx.inputs:
                if txin.output.address != self.address:
                    continue
                purpose = f"spend {txin.reference}"
                if txin.reference not in tx.spend_redeemers:
                    raise StructuralError("missing spend redeemer", reference=str(txin.reference))
                self.validate_spend(tx, txin.reference)
                runs += 1

            if runs:
                logger.info(
                    "Transaction accepted",
                    operation="evaluate",
                    policy=self.policy_id.hex(),
                    tokens=self._touched_tokens(tx),
                    runs=runs,
                )
        except CageError as e:
            logger.warning(
                f"Transaction rejected: {e.message}",
                operation="evaluate",
                error_code=error_code(e),
                purpose=purpose,
                policy=self.policy_id.hex(),
                tokens=self._touched_tokens(tx),
                details=e.to_dict()["context"],
            )
            raise
        finally:
            if token is not None:
                correlation_id_var.reset(token)
        return runs

    def _touched_tokens(self, tx: Transaction) -> List[str]:
        """Hex asset names under this policy that ``tx`` mints, burns or spends."""
        names = set(tx.mint.tokens(self.policy_id))
        for txin in tx.inputs:
            names.update(txin.output.value.tokens(self.policy_id))
        return sorted(n.hex() for n in names)


def _script_hash(parameters: Dict[str, Any]) -> bytes:
    canonical = json.dumps(parameters, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.blake2b(canonical, digest_size=28).digest()
