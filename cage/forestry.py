"""
Merkle-Patricia Forestry

Reference implementation of the trie capability Cage consumes:

    apply(root, key, operation, proof) -> root'

The trie is a radix-16 Patricia trie over ``blake2b_256(key)``. Each branch
node commits to its 16 children with a 4-level binary Merkle tree, so a proof
step carries at most four sibling digests instead of fifteen.

Node hashes:

    leaf     combine(suffix(path, cursor), blake2b_256(value))
    branch   combine(nibbles(prefix), merkle_16(children))

where ``combine(a, b) = blake2b_256(a || b)`` and the empty trie is 32 zero
bytes. A proof is the list of branch nodes on the way from the root to the
key, each described relative to the key being proven:

    Branch  skip, four sibling digests (8-, 4-, 2-, 1-subtree)
    Fork    skip, the one non-leaf neighbor (nibble, prefix, merkle root)
    Leaf    skip, the one leaf neighbor (key path, value hash)

Given a proof, ``including`` computes the root of the trie with the element
present and ``excluding`` the root with the key absent. Insert, delete and
update check one of those against the current root and return the other.

Cage validators never look inside this module; it is injected through the
``Trie`` protocol.
"""

from __future__ import annotations

import hashlib
from typing import List, Protocol, Sequence

from cage.errors import ProofError
from cage.model import (
    EMPTY_ROOT,
    Branch,
    Delete,
    Fork,
    Insert,
    Leaf,
    Neighbor,
    Operation,
    Proof,
    Update,
)

NULL_HASH = EMPTY_ROOT
PATH_NIBBLES = 64


class Trie(Protocol):
    """The capability the fold engine drives."""

    def apply(self, root: bytes, key: bytes, operation: Operation, proof: Proof) -> bytes:
        ...


def blake2b_256(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


def combine(left: bytes, right: bytes) -> bytes:
    return blake2b_256(left + right)


# =============================================================================
# PATH HELPERS
# =============================================================================

def nibble(path: bytes, index: int) -> int:
    byte = path[index // 2]
    return byte >> 4 if index % 2 == 0 else byte & 0x0F


def nibbles(path: bytes, start: int, end: int) -> bytes:
    """One byte per nibble of ``path[start:end]``."""
    return bytes(nibble(path, i) for i in range(start, end))


def suffix(path: bytes, cursor: int) -> bytes:
    """Encoding of the remaining path from ``cursor``, used in leaf hashes."""
    if cursor % 2 == 0:
        return b"\xff" + path[cursor // 2:]
    return bytes([0x00, nibble(path, cursor)]) + path[(cursor + 1) // 2:]


# =============================================================================
# BRANCH MERKLE TREES
# =============================================================================

def merkle_16(branch: int, root: bytes, neighbors: bytes) -> bytes:
    """Merkle root of a branch given our child and the four sibling subtrees."""
    if len(neighbors) != 4 * 32:
        raise ProofError("branch step must carry 128 bytes of neighbors", size=len(neighbors))
    siblings = [neighbors[i:i + 32] for i in range(0, 128, 32)]
    node = root
    # siblings run from the 8-subtree down to the 1-subtree
    for bit, sibling in zip((1, 2, 4, 8), reversed(siblings)):
        node = combine(sibling, node) if branch & bit else combine(node, sibling)
    return node


def sparse_merkle_16(me: int, me_hash: bytes, neighbor: int, neighbor_hash: bytes) -> bytes:
    """Merkle root of a branch holding exactly two children."""
    level: List[bytes] = [NULL_HASH] * 16
    level[me] = me_hash
    level[neighbor] = neighbor_hash
    while len(level) > 1:
        level = [combine(level[i], level[i + 1]) for i in range(0, len(level), 2)]
    return level[0]


def _next_cursor(cursor: int, skip: int) -> int:
    if skip < 0:
        raise ProofError("negative skip in proof step", skip=skip)
    nxt = cursor + 1 + skip
    if nxt > PATH_NIBBLES:
        raise ProofError("proof is deeper than the key path", cursor=nxt)
    return nxt


def _do_branch(path: bytes, cursor: int, nxt: int, root: bytes, neighbors: bytes) -> bytes:
    branch = nibble(path, nxt - 1)
    prefix = nibbles(path, cursor, nxt - 1)
    return combine(prefix, merkle_16(branch, root, neighbors))


def _do_fork(path: bytes, cursor: int, nxt: int, root: bytes, neighbor: Neighbor) -> bytes:
    branch = nibble(path, nxt - 1)
    prefix = nibbles(path, cursor, nxt - 1)
    if not 0 <= neighbor.nibble < 16 or neighbor.nibble == branch:
        raise ProofError("fork neighbor must sit on a different nibble", nibble=neighbor.nibble)
    return combine(
        prefix,
        sparse_merkle_16(branch, root, neighbor.nibble, combine(neighbor.prefix, neighbor.root)),
    )


def _leaf_neighbor(step: Leaf, nxt: int) -> Neighbor:
    if len(step.key) != 32:
        raise ProofError("leaf neighbor key must be a 32-byte path", size=len(step.key))
    return Neighbor(nibble(step.key, nxt - 1), suffix(step.key, nxt), step.value)


# =============================================================================
# ROOT COMPUTATION
# =============================================================================

def _including(path: bytes, value_hash: bytes, cursor: int, proof: Sequence) -> bytes:
    if not proof:
        return combine(suffix(path, cursor), value_hash)

    step, steps = proof[0], proof[1:]
    nxt = _next_cursor(cursor, step.skip)
    root = _including(path, value_hash, nxt, steps)

    if isinstance(step, Branch):
        return _do_branch(path, cursor, nxt, root, step.neighbors)
    if isinstance(step, Fork):
        return _do_fork(path, cursor, nxt, root, step.neighbor)
    if isinstance(step, Leaf):
        return _do_fork(path, cursor, nxt, root, _leaf_neighbor(step, nxt))
    raise ProofError(f"unknown proof step: {type(step).__name__}")


def _excluding(path: bytes, cursor: int, proof: Sequence) -> bytes:
    if not proof:
        return NULL_HASH

    step, steps = proof[0], proof[1:]

    if isinstance(step, Branch):
        nxt = _next_cursor(cursor, step.skip)
        return _do_branch(path, cursor, nxt, _excluding(path, nxt, steps), step.neighbors)

    if isinstance(step, Fork):
        if not steps:
            # the neighbor absorbs the emptied branch and its prefix
            prefix = nibbles(path, cursor, cursor + step.skip)
            prefix += bytes([step.neighbor.nibble]) + step.neighbor.prefix
            return combine(prefix, step.neighbor.root)
        nxt = _next_cursor(cursor, step.skip)
        return _do_fork(path, cursor, nxt, _excluding(path, nxt, steps), step.neighbor)

    if isinstance(step, Leaf):
        if not steps:
            if len(step.key) != 32:
                raise ProofError("leaf neighbor key must be a 32-byte path", size=len(step.key))
            return combine(suffix(step.key, cursor), step.value)
        nxt = _next_cursor(cursor, step.skip)
        return _do_fork(path, cursor, nxt, _excluding(path, nxt, steps), _leaf_neighbor(step, nxt))

    raise ProofError(f"unknown proof step: {type(step).__name__}")


def including(key: bytes, value: bytes, proof: Proof) -> bytes:
    """Root of the trie described by ``proof`` with ``key -> value`` present."""
    return _including(blake2b_256(key), blake2b_256(value), 0, list(proof))


def excluding(key: bytes, proof: Proof) -> bytes:
    """Root of the trie described by ``proof`` with ``key`` absent."""
    return _excluding(blake2b_256(key), 0, list(proof))


def singleton_root(key: bytes, value: bytes) -> bytes:
    """Root of the trie holding exactly one element."""
    return including(key, value, [])


def leaf_step(key: bytes, value: bytes, skip: int) -> Leaf:
    """Proof step naming an existing leaf ``key -> value`` as the neighbor."""
    return Leaf(skip=skip, key=blake2b_256(key), value=blake2b_256(value))


def common_prefix_length(key_a: bytes, key_b: bytes) -> int:
    """Number of leading nibbles shared by the paths of two keys."""
    pa, pb = blake2b_256(key_a), blake2b_256(key_b)
    n = 0
    while n < PATH_NIBBLES and nibble(pa, n) == nibble(pb, n):
        n += 1
    return n


# =============================================================================
# TRIE CAPABILITY
# =============================================================================

class MerklePatriciaForestry:
    """Stateless trie capability: every method takes and returns a root."""

    def has(self, root: bytes, key: bytes, value: bytes, proof: Proof) -> bool:
        return including(key, value, proof) == root

    def insert(self, root: bytes, key: bytes, value: bytes, proof: Proof) -> bytes:
        if excluding(key, proof) != root:
            raise ProofError("proof does not show key absent from root", key=key, root=root)
        return including(key, value, proof)

    def delete(self, root: bytes, key: bytes, value: bytes, proof: Proof) -> bytes:
        if including(key, value, proof) != root:
            raise ProofError("proof does not show key present with value", key=key, root=root)
        return excluding(key, proof)

    def update(self, root: bytes, key: bytes, old_value: bytes, new_value: bytes, proof: Proof) -> bytes:
        if including(key, old_value, proof) != root:
            raise ProofError("proof does not show key present with old value", key=key, root=root)
        return including(key, new_value, proof)

    def apply(self, root: bytes, key: bytes, operation: Operation, proof: Proof) -> bytes:
        if isinstance(operation, Insert):
            return self.insert(root, key, operation.value, proof)
        if isinstance(operation, Delete):
            return self.delete(root, key, operation.value, proof)
        if isinstance(operation, Update):
            return self.update(root, key, operation.old_value, operation.new_value, proof)
        raise ProofError(f"unknown operation: {type(operation).__name__}")
