"""
Cage Token Lifecycle

Minting policy of a Cage instance. It runs for every transaction that mints
or burns under the instance's policy id, and accepts exactly three shapes:

    Minting{reference}            bootstrap a new token with an empty trie
    Migrating{oldPolicy, token}   re-mint a token burned under an older instance
    Burning                       destroy a token whose state is being ended

    MINT ──▶ (Modify / Reject)* ──▶ END + BURN
      │                               │
      └──────────── MIGRATE ◀─────────┘   (END + BURN on the old instance,
                                           MIGRATE on the new one, one tx)

Each predicate either returns or raises; the caller voids the transaction on
any exception.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from cage.errors import (
    AuthorizationError,
    BindingError,
    ConfinementError,
    IntegrityError,
    RefundError,
    StructuralError,
)
from cage.identity import derive_asset_name, extract_single_asset
from cage.model import (
    EMPTY_ROOT,
    Address,
    Burning,
    End,
    Migrating,
    Minting,
    MintRedeemer,
    State,
    TokenId,
    Transaction,
    TxOut,
)

if TYPE_CHECKING:
    from cage.instance import CageInstance


# =============================================================================
# SHARED CLAUSES
# =============================================================================

def require_confined_output(tx: Transaction, policy: bytes, asset_name: bytes, address: Address) -> TxOut:
    """The one output holding the token, which must sit at ``address``.

    The output must hold exactly one unit, no other token, and a State datum.
    """
    holders = [o for o in tx.outputs if o.value.quantity_of(policy, asset_name) != 0]
    if len(holders) != 1:
        raise ConfinementError(
            "token must be carried by exactly one output",
            asset_name=asset_name, outputs=len(holders),
        )
    out = holders[0]
    if out.address != address:
        raise ConfinementError(
            "token left its controller address",
            asset_name=asset_name, address=str(out.address), expected=str(address),
        )
    if extract_single_asset(out.value) != (policy, TokenId(asset_name)) or out.value.quantity_of(policy, asset_name) != 1:
        raise BindingError("state output must hold exactly one unit of one token", asset_name=asset_name)
    if not isinstance(out.datum, State):
        raise StructuralError("state output is missing its State datum", asset_name=asset_name)
    return out


def require_signed(tx: Transaction, pub_key_hash: bytes, role: str) -> None:
    if not tx.is_signed_by(pub_key_hash):
        raise AuthorizationError(f"transaction is not signed by the {role}", signer=pub_key_hash)


def require_fee_bound(state: State) -> None:
    if state.max_fee < 0:
        raise RefundError("max_fee must not be negative", max_fee=state.max_fee)


def minted_exactly(tx: Transaction, policy: bytes, asset_name: bytes, quantity: int) -> bool:
    """Under ``policy`` the transaction mints ``quantity`` of ``asset_name`` and nothing else."""
    return tx.mint.tokens(policy) == {asset_name: quantity}


# =============================================================================
# MINTING POLICY
# =============================================================================

def validate_mint(instance: "CageInstance", tx: Transaction, redeemer: Optional[MintRedeemer]) -> None:
    """Validate the mint/burn side of ``tx`` for ``instance``."""
    if isinstance(redeemer, Minting):
        _validate_minting(instance, tx, redeemer)
    elif isinstance(redeemer, Migrating):
        _validate_migrating(instance, tx, redeemer)
    elif isinstance(redeemer, Burning):
        _validate_burning(instance, tx)
    else:
        raise StructuralError(
            "unsupported mint redeemer",
            redeemer=type(redeemer).__name__, policy=instance.policy_id,
        )


def _validate_minting(instance: "CageInstance", tx: Transaction, redeemer: Minting) -> None:
    if tx.find_input(redeemer.reference) is None:
        raise BindingError("mint reference is not consumed", reference=str(redeemer.reference))

    asset_name = derive_asset_name(redeemer.reference)
    if not minted_exactly(tx, instance.policy_id, asset_name, 1):
        raise BindingError(
            "must mint exactly one unit of the derived asset name",
            asset_name=asset_name, minted=str(tx.mint.tokens(instance.policy_id)),
        )

    out = require_confined_output(tx, instance.policy_id, asset_name, instance.address)
    state: State = out.datum  # type: ignore[assignment]
    if state.root != EMPTY_ROOT:
        raise IntegrityError("new token must start from the empty trie", root=state.root)
    require_fee_bound(state)


def _validate_migrating(instance: "CageInstance", tx: Transaction, redeemer: Migrating) -> None:
    asset_name = redeemer.token_id.asset_name
    if redeemer.old_policy == instance.policy_id:
        raise StructuralError("cannot migrate a token onto its own instance", policy=instance.policy_id)

    if not minted_exactly(tx, redeemer.old_policy, asset_name, -1):
        raise BindingError(
            "old token must be burned in the migration",
            old_policy=redeemer.old_policy, asset_name=asset_name,
        )
    if not minted_exactly(tx, instance.policy_id, asset_name, 1):
        raise BindingError("must mint exactly one unit of the migrated token", asset_name=asset_name)

    old_state = _spent_state(tx, redeemer.old_policy, asset_name)
    out = require_confined_output(tx, instance.policy_id, asset_name, instance.address)
    new_state: State = out.datum  # type: ignore[assignment]

    if new_state.root != old_state.root:
        raise IntegrityError("migration must carry the root over", old=old_state.root, new=new_state.root)
    if new_state.owner != old_state.owner:
        raise IntegrityError("migration must carry the owner over", old=old_state.owner, new=new_state.owner)
    require_fee_bound(new_state)


def _spent_state(tx: Transaction, policy: bytes, asset_name: bytes) -> State:
    """State of the old token, spent from the old instance's controller address."""
    for txin in tx.inputs:
        if txin.output.value.quantity_of(policy, asset_name) == 1:
            if txin.output.address != Address.script(policy):
                raise ConfinementError("old token is not spent from its controller address", policy=policy, asset_name=asset_name)
            if not isinstance(txin.output.datum, State):
                raise StructuralError("old token input carries no State datum", asset_name=asset_name)
            return txin.output.datum
    raise BindingError("old token is not spent by the migration", policy=policy, asset_name=asset_name)


def _validate_burning(instance: "CageInstance", tx: Transaction) -> None:
    burned = tx.mint.tokens(instance.policy_id)
    if len(burned) != 1 or list(burned.values()) != [-1]:
        raise BindingError("burning must destroy exactly one unit of one token", burned=str(burned))
    asset_name = next(iter(burned))

    for txin in tx.inputs:
        if txin.output.address == instance.address and txin.output.value.quantity_of(instance.policy_id, asset_name) == 1:
            if not isinstance(tx.spend_redeemer(txin.reference), End):
                raise StructuralError("burned token's state must be spent with End", asset_name=asset_name)
            return
    raise BindingError("burned token's state is not spent", asset_name=asset_name)
