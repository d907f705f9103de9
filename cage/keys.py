"""Ed25519 signing keys for Cage participants.

A participant (oracle or requester) is identified on the ledger by the
payment key hash of its verification key:

    pub_key_hash = blake2b-224(raw 32-byte Ed25519 public key)

A transaction is witnessed by signing its id. ``MockLedger`` checks every
witness and derives the transaction's signatories from them; validators only
ever see the key hashes.
"""

from __future__ import annotations

import hashlib
import json
import pathlib
from dataclasses import dataclass
from typing import Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from cage.model import Address


def pub_key_hash(public_key: bytes) -> bytes:
    """Payment key hash of a raw Ed25519 public key."""
    if len(public_key) != 32:
        raise ValueError(f"Ed25519 public key must be 32 bytes, got {len(public_key)}")
    return hashlib.blake2b(public_key, digest_size=28).digest()


@dataclass(frozen=True)
class Witness:
    """A verification key and its signature over a transaction id."""
    vkey: bytes
    signature: bytes

    @property
    def signer(self) -> bytes:
        return pub_key_hash(self.vkey)


class KeyPair:
    """An Ed25519 signing key with its ledger identity."""

    def __init__(self, private_key: Ed25519PrivateKey):
        self._private_key = private_key
        self._public_key = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    @classmethod
    def generate(cls) -> "KeyPair":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_seed(cls, seed: bytes) -> "KeyPair":
        """Deterministic key pair from a 32-byte seed."""
        if len(seed) != 32:
            raise ValueError(f"Ed25519 seed must be 32 bytes, got {len(seed)}")
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    @classmethod
    def load(cls, path: Union[str, pathlib.Path]) -> "KeyPair":
        """Load a key file of the form ``{"seed": "<64 hex chars>"}``."""
        obj = json.loads(pathlib.Path(path).read_text(encoding="utf-8"))
        if not isinstance(obj, dict) or not isinstance(obj.get("seed"), str):
            raise ValueError("key file must be a JSON object with a hex 'seed'")
        return cls.from_seed(bytes.fromhex(obj["seed"]))

    @property
    def public_key(self) -> bytes:
        return self._public_key

    @property
    def pub_key_hash(self) -> bytes:
        return pub_key_hash(self._public_key)

    @property
    def address(self) -> Address:
        return Address.key(self.pub_key_hash)

    def sign(self, message: bytes) -> bytes:
        return self._private_key.sign(message)

    def witness(self, message: bytes) -> Witness:
        return Witness(self._public_key, self.sign(message))

    def __repr__(self) -> str:
        return f"KeyPair({self.pub_key_hash.hex()})"


def verify_witness(witness: Witness, message: bytes) -> bool:
    """True iff ``witness`` carries a valid signature over ``message``."""
    if len(witness.vkey) != 32 or len(witness.signature) != 64:
        return False
    try:
        Ed25519PublicKey.from_public_bytes(witness.vkey).verify(witness.signature, message)
    except InvalidSignature:
        return False
    return True
