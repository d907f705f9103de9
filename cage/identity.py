"""Token identity for Cage.

A Cage token's asset name is derived from the output reference consumed by
the minting transaction:

    asset_name = SHA-256(tx_id || big_endian_u16(output_index))

The ledger lets an output be spent only once, so no two tokens minted under a
policy can share an asset name. Uniqueness reduces to SHA-256 collision
resistance and is relied upon, not re-checked.

``extract_single_token`` is the gate used wherever a Cage UTxO's token must
be identified: any ambiguity fails closed.
"""

from __future__ import annotations

import hashlib
from typing import Optional, Tuple

from cage.model import OutputReference, TokenId, Value


def hash256(data: bytes) -> bytes:
    """The protocol's Hash256 primitive (SHA-256)."""
    return hashlib.sha256(data).digest()


def derive_asset_name(reference: OutputReference) -> bytes:
    """Asset name minted when ``reference`` is consumed."""
    return hash256(reference.serialize())


def derive_token_id(reference: OutputReference) -> TokenId:
    return TokenId(derive_asset_name(reference))


def extract_single_asset(value: Value) -> Optional[Tuple[bytes, TokenId]]:
    """Return ``(policy, token)`` iff ``value`` carries exactly one non-reserved asset.

    Zero policies, several policies, or several asset names under the one
    policy all yield ``None``.
    """
    tokens = value.without_lovelace()
    policies = tokens.policies()
    if len(policies) != 1:
        return None
    names = list(tokens.tokens(policies[0]))
    if len(names) != 1:
        return None
    return policies[0], TokenId(names[0])


def extract_single_token(value: Value) -> Optional[TokenId]:
    """The token of a value bundle, or ``None`` when absent or ambiguous."""
    found = extract_single_asset(value)
    return found[1] if found else None


def single_token_value(policy: bytes, asset_name: bytes, lovelace: int = 0) -> Value:
    """Bundle holding one unit of ``policy.asset_name`` plus optional lovelace."""
    return Value.from_token(policy, asset_name) + Value.from_lovelace(lovelace)
