"""
Cage State Transitions

Spending validator of a Cage instance. It runs once for every UTxO at the
instance's address consumed by a transaction. Only these datum/redeemer
pairs are accepted:

    State   + End          owner destroys the token (paired with Burning)
    State   + Modify       owner folds matured requests into the root
    State   + Reject       owner discards stale or dishonest requests
    Request + Contribute   request joins the Modify / Reject of its token
    Request + Retract      requester withdraws inside the retract window

Phase ownership of a request (see ``cage.phases``):

    phase 1  Modify + Contribute      (oracle)
    phase 2  Retract                  (requester)
    phase 3  Reject + Contribute      (oracle)

Refunds: a request consumed by Modify or Reject returns at least
``bond - fee`` to its requester, where the bond is the lovelace locked with
the request. The fee stays with the oracle.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from cage.errors import BindingError, IntegrityError, RefundError, StructuralError
from cage.fold import fold_requests
from cage.identity import extract_single_asset
from cage.lifecycle import minted_exactly, require_confined_output, require_signed
from cage.model import (
    Address,
    Contribute,
    End,
    Modify,
    OutputReference,
    Reject,
    Request,
    Retract,
    SpendRedeemer,
    State,
    TokenId,
    Transaction,
    TxIn,
)

if TYPE_CHECKING:
    from cage.instance import CageInstance


def validate_spend(
    instance: "CageInstance",
    tx: Transaction,
    own_ref: OutputReference,
    redeemer: Optional[SpendRedeemer],
) -> None:
    """Validate the spending of ``own_ref`` by ``tx``."""
    own = tx.find_input(own_ref)
    if own is None:
        raise StructuralError("spent output is not an input of the transaction", reference=str(own_ref))

    datum = own.output.datum
    if datum is None:
        raise StructuralError("spent output carries no datum", reference=str(own_ref))

    if isinstance(datum, State):
        if isinstance(redeemer, End):
            _end(instance, tx, own, datum)
        elif isinstance(redeemer, Modify):
            _modify(instance, tx, own, datum, redeemer)
        elif isinstance(redeemer, Reject):
            _reject(instance, tx, own, datum)
        else:
            raise StructuralError(
                "redeemer cannot spend a state output",
                redeemer=type(redeemer).__name__, reference=str(own_ref),
            )
    elif isinstance(datum, Request):
        if isinstance(redeemer, Contribute):
            _contribute(instance, tx, datum, redeemer)
        elif isinstance(redeemer, Retract):
            _retract(instance, tx, datum)
        else:
            raise StructuralError(
                "redeemer cannot spend a request output",
                redeemer=type(redeemer).__name__, reference=str(own_ref),
            )
    else:
        raise StructuralError("unknown datum", datum=type(datum).__name__, reference=str(own_ref))


# =============================================================================
# STATE SIDE
# =============================================================================

def _own_token(instance: "CageInstance", own: TxIn) -> TokenId:
    found = extract_single_asset(own.output.value)
    if found is None or found[0] != instance.policy_id:
        raise BindingError("state output does not hold exactly one token of this instance", reference=str(own.reference))
    return found[1]


def matching_requests(instance: "CageInstance", tx: Transaction, token: TokenId) -> List[Tuple[TxIn, Request]]:
    """Request inputs at this instance's address that target ``token``, in input order."""
    return [
        (txin, txin.output.datum)
        for txin in tx.inputs
        if txin.output.address == instance.address
        and isinstance(txin.output.datum, Request)
        and txin.output.datum.target_token == token
    ]


def contributed_requests(instance: "CageInstance", tx: Transaction) -> List[Tuple[TxIn, Request]]:
    """Every request input at this instance's address spent with Contribute, whatever its target."""
    return [
        (txin, txin.output.datum)
        for txin in tx.inputs
        if txin.output.address == instance.address
        and isinstance(txin.output.datum, Request)
        and isinstance(tx.spend_redeemer(txin.reference), Contribute)
    ]


def _end(instance: "CageInstance", tx: Transaction, own: TxIn, state: State) -> None:
    require_signed(tx, state.owner, "owner")
    token = _own_token(instance, own)
    if not minted_exactly(tx, instance.policy_id, token.asset_name, -1):
        raise StructuralError("ending a token requires burning it in the same transaction", asset_name=token.asset_name)


def _modify(instance: "CageInstance", tx: Transaction, own: TxIn, state: State, redeemer: Modify) -> None:
    require_signed(tx, state.owner, "owner")
    token = _own_token(instance, own)
    requests = matching_requests(instance, tx, token)

    for _, request in requests:
        instance.clock.require_phase1(tx.validity_range, request.submitted_at)
        if request.fee != state.max_fee:
            raise RefundError("request fee differs from the state's max_fee", fee=request.fee, max_fee=state.max_fee)

    new_root = fold_requests(instance.trie, state.root, [r for _, r in requests], redeemer.proofs)

    out = require_confined_output(tx, instance.policy_id, token.asset_name, own.output.address)
    if out.datum.root != new_root:  # type: ignore[union-attr]
        raise IntegrityError("output root does not match the folded root", expected=new_root, actual=out.datum.root)  # type: ignore[union-attr]

    require_refunds(tx, contributed_requests(instance, tx))


def _reject(instance: "CageInstance", tx: Transaction, own: TxIn, state: State) -> None:
    require_signed(tx, state.owner, "owner")
    token = _own_token(instance, own)
    requests = matching_requests(instance, tx, token)

    for _, request in requests:
        instance.clock.require_rejectable(tx.validity_range, request.submitted_at)

    out = require_confined_output(tx, instance.policy_id, token.asset_name, own.output.address)
    if out.datum.root != state.root:  # type: ignore[union-attr]
        raise IntegrityError("reject must not change the root", expected=state.root, actual=out.datum.root)  # type: ignore[union-attr]

    require_refunds(tx, contributed_requests(instance, tx))


def require_refunds(tx: Transaction, requests: List[Tuple[TxIn, Request]]) -> None:
    """Every requester is paid at least ``bond - fee`` per consumed request.

    ``requests`` must hold every request the transaction consumes, across all
    the states it spends, so that one output never refunds two bonds. Refund
    outputs are matched one-to-one with requests: for each requester, the
    largest dues are paired with the largest outputs to their key. A negative
    fee counts as zero, so no refund exceeds its bond.
    """
    dues: Dict[bytes, List[int]] = defaultdict(list)
    for txin, request in requests:
        due = txin.output.value.lovelace - max(request.fee, 0)
        if due > 0:
            dues[request.requester].append(due)

    for requester, owed in dues.items():
        paid = sorted(
            (o.value.lovelace for o in tx.outputs_at(Address.key(requester))),
            reverse=True,
        )
        owed.sort(reverse=True)
        if len(paid) < len(owed):
            raise RefundError("missing refund output", requester=requester, owed=len(owed), outputs=len(paid))
        for amount, due in zip(paid, owed):
            if amount < due:
                raise RefundError("refund is below bond minus fee", requester=requester, paid=amount, due=due)


# =============================================================================
# REQUEST SIDE
# =============================================================================

def _contribute(instance: "CageInstance", tx: Transaction, request: Request, redeemer: Contribute) -> None:
    state_in = tx.find_input(redeemer.state_ref)
    if state_in is None:
        raise BindingError("contributed state is not spent by the transaction", state_ref=str(redeemer.state_ref))
    if state_in.output.address != instance.address or not isinstance(state_in.output.datum, State):
        raise BindingError("contribute reference does not point to a state of this instance", state_ref=str(redeemer.state_ref))
    if extract_single_asset(state_in.output.value) != (instance.policy_id, request.target_token):
        raise BindingError(
            "request targets a different token",
            target=request.target_token.asset_name, state_ref=str(redeemer.state_ref),
        )

    state_redeemer = tx.spend_redeemer(redeemer.state_ref)
    if isinstance(state_redeemer, Modify):
        instance.clock.require_phase1(tx.validity_range, request.submitted_at)
    elif isinstance(state_redeemer, Reject):
        instance.clock.require_rejectable(tx.validity_range, request.submitted_at)
    else:
        raise StructuralError(
            "requests can only contribute to Modify or Reject",
            redeemer=type(state_redeemer).__name__,
        )


def _retract(instance: "CageInstance", tx: Transaction, request: Request) -> None:
    require_signed(tx, request.requester, "requester")
    instance.clock.require_phase2(tx.validity_range, request.submitted_at)
