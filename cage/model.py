"""
Cage Data Model

Plain, immutable records for everything a validator inspects:

    Ledger vocabulary       OutputReference, Address, Value, ValidityRange,
                            TxOut, TxIn, Transaction
    Datums                  State (token UTxO), Request (pending change)
    Operations              Insert | Delete | Update
    Mint redeemers          Minting | Migrating | Burning
    Spend redeemers         End | Contribute | Modify | Retract | Reject
    Proof steps             Branch | Fork | Leaf

Every sum type is closed: validators match on the concrete classes listed in
the corresponding ``Union`` alias and reject anything else.

Amounts are integers of the reserved currency (lovelace). Times are POSIX
milliseconds.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any, Dict, FrozenSet, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

# Policy id of the reserved currency (ada); its only asset name is empty.
RESERVED_POLICY = b""
LOVELACE = b""

EMPTY_ROOT = bytes(32)

PUB_KEY_HASH_SIZE = 28
HASH_SIZE = 32


# =============================================================================
# LEDGER VOCABULARY
# =============================================================================

@dataclass(frozen=True, order=True)
class OutputReference:
    """Pointer to a transaction output: the one-time-consumable resource."""
    tx_id: bytes
    index: int

    def __post_init__(self):
        if len(self.tx_id) != HASH_SIZE:
            raise ValueError(f"tx_id must be {HASH_SIZE} bytes, got {len(self.tx_id)}")
        if not 0 <= self.index <= 0xFFFF:
            raise ValueError(f"output index out of range: {self.index}")

    def serialize(self) -> bytes:
        return self.tx_id + self.index.to_bytes(2, "big")

    def __str__(self) -> str:
        return f"{self.tx_id.hex()}#{self.index}"


@dataclass(frozen=True)
class Address:
    """Payment credential of an output: a key hash or a script hash."""
    credential: bytes
    is_script: bool = False

    @classmethod
    def script(cls, script_hash: bytes) -> "Address":
        return cls(script_hash, True)

    @classmethod
    def key(cls, pub_key_hash: bytes) -> "Address":
        return cls(pub_key_hash, False)

    def __str__(self) -> str:
        return ("script:" if self.is_script else "key:") + self.credential.hex()


class Value:
    """
    Multi-asset bundle: policy id -> asset name -> quantity.

    Zero quantities are dropped so that equality is structural.
    """

    __slots__ = ("_assets",)

    def __init__(self, assets: Optional[Mapping[bytes, Mapping[bytes, int]]] = None):
        normalized: Dict[bytes, Dict[bytes, int]] = {}
        for policy, names in (assets or {}).items():
            kept = {bytes(n): int(q) for n, q in names.items() if q != 0}
            if kept:
                normalized[bytes(policy)] = kept
        self._assets = normalized

    @classmethod
    def from_lovelace(cls, amount: int) -> "Value":
        return cls({RESERVED_POLICY: {LOVELACE: amount}})

    @classmethod
    def from_token(cls, policy: bytes, asset_name: bytes, quantity: int = 1) -> "Value":
        return cls({policy: {asset_name: quantity}})

    @property
    def lovelace(self) -> int:
        return self.quantity_of(RESERVED_POLICY, LOVELACE)

    def quantity_of(self, policy: bytes, asset_name: bytes) -> int:
        return self._assets.get(policy, {}).get(asset_name, 0)

    def tokens(self, policy: bytes) -> Dict[bytes, int]:
        return dict(self._assets.get(policy, {}))

    def policies(self) -> List[bytes]:
        return sorted(self._assets)

    def without_lovelace(self) -> "Value":
        return Value({p: n for p, n in self._assets.items() if p != RESERVED_POLICY})

    def flatten(self) -> Iterator[Tuple[bytes, bytes, int]]:
        for policy in sorted(self._assets):
            for name in sorted(self._assets[policy]):
                yield policy, name, self._assets[policy][name]

    def is_zero(self) -> bool:
        return not self._assets

    def __add__(self, other: "Value") -> "Value":
        merged: Dict[bytes, Dict[bytes, int]] = {p: dict(n) for p, n in self._assets.items()}
        for policy, name, qty in other.flatten():
            bucket = merged.setdefault(policy, {})
            bucket[name] = bucket.get(name, 0) + qty
        return Value(merged)

    def __neg__(self) -> "Value":
        return Value({p: {n: -q for n, q in names.items()} for p, names in self._assets.items()})

    def __sub__(self, other: "Value") -> "Value":
        return self + (-other)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Value) and self._assets == other._assets

    def __hash__(self) -> int:
        return hash(tuple(self.flatten()))

    def __repr__(self) -> str:
        parts = [f"{p.hex() or 'lovelace'}.{n.hex()}={q}" for p, n, q in self.flatten()]
        return f"Value({', '.join(parts)})"

    def to_dict(self) -> Dict[str, Dict[str, int]]:
        return {p.hex(): {n.hex(): q for n, q in sorted(names.items())} for p, names in sorted(self._assets.items())}


@dataclass(frozen=True)
class ValidityRange:
    """
    Transaction validity interval in POSIX milliseconds.

    ``None`` marks an unbounded side. Phase predicates need both bounds and
    ``lo < hi``; see ``cage.phases.bounds``.
    """
    lo: Optional[int] = None
    hi: Optional[int] = None

    @property
    def is_bounded(self) -> bool:
        return self.lo is not None and self.hi is not None

    @property
    def is_well_formed(self) -> bool:
        return self.is_bounded and self.lo < self.hi  # type: ignore[operator]

    def contains(self, t: int) -> bool:
        return (self.lo is None or self.lo <= t) and (self.hi is None or t < self.hi)


# =============================================================================
# DATUMS
# =============================================================================

@dataclass(frozen=True)
class TokenId:
    """Asset name of a Cage token; the policy is fixed per deployment."""
    asset_name: bytes


@dataclass(frozen=True)
class State:
    """Commitment held alongside the token: current root and its owner."""
    owner: bytes
    root: bytes
    max_fee: int


@dataclass(frozen=True)
class Insert:
    value: bytes


@dataclass(frozen=True)
class Delete:
    value: bytes


@dataclass(frozen=True)
class Update:
    old_value: bytes
    new_value: bytes


Operation = Union[Insert, Delete, Update]


@dataclass(frozen=True)
class Request:
    """A proposed trie mutation, locked with a bond at the controller address."""
    target_token: TokenId
    requester: bytes
    key: bytes
    operation: Operation
    fee: int
    submitted_at: int


Datum = Union[Request, State]


# =============================================================================
# PROOF STEPS
# =============================================================================

@dataclass(frozen=True)
class Neighbor:
    """The single other child of a fork node."""
    nibble: int
    prefix: bytes
    root: bytes


@dataclass(frozen=True)
class Branch:
    """Branch node with more than two children; ``neighbors`` is 4 x 32 bytes."""
    skip: int
    neighbors: bytes


@dataclass(frozen=True)
class Fork:
    """Branch node with exactly one other non-leaf child."""
    skip: int
    neighbor: Neighbor


@dataclass(frozen=True)
class Leaf:
    """Branch node whose only other child is a leaf (key path, value hash)."""
    skip: int
    key: bytes
    value: bytes


ProofStep = Union[Branch, Fork, Leaf]
Proof = Sequence[ProofStep]


# =============================================================================
# REDEEMERS
# =============================================================================

@dataclass(frozen=True)
class Minting:
    reference: OutputReference


@dataclass(frozen=True)
class Migrating:
    old_policy: bytes
    token_id: TokenId


@dataclass(frozen=True)
class Burning:
    pass


MintRedeemer = Union[Minting, Migrating, Burning]


@dataclass(frozen=True)
class End:
    pass


@dataclass(frozen=True)
class Contribute:
    state_ref: OutputReference


@dataclass(frozen=True)
class Modify:
    proofs: Sequence[Proof] = ()


@dataclass(frozen=True)
class Retract:
    pass


@dataclass(frozen=True)
class Reject:
    pass


SpendRedeemer = Union[End, Contribute, Modify, Retract, Reject]


# =============================================================================
# TRANSACTION
# =============================================================================

@dataclass(frozen=True)
class TxOut:
    address: Address
    value: Value
    datum: Optional[Datum] = None


@dataclass(frozen=True)
class TxIn:
    reference: OutputReference
    output: TxOut


@dataclass(frozen=True)
class Transaction:
    """
    A fully-formed candidate transaction, as seen by every validator.

    Inputs are kept in ledger order (sorted by output reference); Modify
    pairs proofs with requests in that order.
    """
    inputs: Tuple[TxIn, ...]
    outputs: Tuple[TxOut, ...] = ()
    mint: Value = field(default_factory=Value)
    signatories: FrozenSet[bytes] = frozenset()
    validity_range: ValidityRange = field(default_factory=ValidityRange)
    spend_redeemers: Mapping[OutputReference, SpendRedeemer] = field(default_factory=dict)
    mint_redeemers: Mapping[bytes, MintRedeemer] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "inputs", tuple(sorted(self.inputs, key=lambda i: i.reference)))
        object.__setattr__(self, "outputs", tuple(self.outputs))
        object.__setattr__(self, "signatories", frozenset(self.signatories))

    def find_input(self, reference: OutputReference) -> Optional[TxIn]:
        for txin in self.inputs:
            if txin.reference == reference:
                return txin
        return None

    def spend_redeemer(self, reference: OutputReference) -> Optional[SpendRedeemer]:
        return self.spend_redeemers.get(reference)

    def is_signed_by(self, pub_key_hash: bytes) -> bool:
        return pub_key_hash in self.signatories

    def outputs_at(self, address: Address) -> List[TxOut]:
        return [o for o in self.outputs if o.address == address]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inputs": [str(i.reference) for i in self.inputs],
            "outputs": [to_plain(o) for o in self.outputs],
            "mint": self.mint.to_dict(),
            "signatories": sorted(s.hex() for s in self.signatories),
            "validity_range": to_plain(self.validity_range),
            "spend_redeemers": {str(k): to_plain(v) for k, v in sorted(self.spend_redeemers.items())},
            "mint_redeemers": {k.hex(): to_plain(v) for k, v in sorted(self.mint_redeemers.items())},
        }

    @property
    def id(self) -> bytes:
        """Body hash: blake2b-256 over the canonical JSON of the transaction."""
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.blake2b(canonical.encode("utf-8"), digest_size=32).digest()


def to_plain(obj: Any) -> Any:
    """JSON-friendly rendering of model records, tagged with their type."""
    if isinstance(obj, Value):
        return obj.to_dict()
    if isinstance(obj, (bytes, bytearray)):
        return bytes(obj).hex()
    if isinstance(obj, OutputReference):
        return str(obj)
    if is_dataclass(obj) and not isinstance(obj, type):
        out: Dict[str, Any] = {"type": type(obj).__name__}
        for f in fields(obj):
            out[f.name] = to_plain(getattr(obj, f.name))
        return out
    if isinstance(obj, (list, tuple)):
        return [to_plain(x) for x in obj]
    return obj
