"""Proof folding.

Applies a sequence of ``(request, proof)`` pairs to a trie root, left to
right. Every proof is relative to the intermediate root produced by the step
before it, never to the original root. A single invalid proof aborts the
whole fold; there is no partial application.

``pair_proofs`` matches requests with the proofs carried by a Modify
redeemer. Fewer proofs than requests is an underflow; surplus proofs are
ignored so that a builder may over-supply when unsure which requests will be
included.
"""

from __future__ import annotations

from typing import Iterable, List, Sequence, Tuple

from cage.errors import ProofError, ProofUnderflow
from cage.forestry import Trie
from cage.model import Proof, Request
from cage.observability import CageLayer, get_logger

logger = get_logger("fold", CageLayer.FOLD)


def pair_proofs(requests: Sequence[Request], proofs: Sequence[Proof]) -> List[Tuple[Request, Proof]]:
    if len(proofs) < len(requests):
        raise ProofUnderflow(
            "not enough proofs for the requests being folded",
            requests=len(requests), proofs=len(proofs),
        )
    return list(zip(requests, proofs))


def fold(trie: Trie, root: bytes, items: Iterable[Tuple[Request, Proof]]) -> bytes:
    """Fold every request into ``root`` and return the final root."""
    for position, (request, proof) in enumerate(items):
        try:
            root = trie.apply(root, request.key, request.operation, proof)
        except ProofError as e:
            e.context.setdefault("position", position)
            logger.debug(
                "Proof rejected during fold",
                operation="fold",
                position=position,
                key=request.key.hex(),
                kind=type(request.operation).__name__,
            )
            raise
    return root


def fold_requests(trie: Trie, root: bytes, requests: Sequence[Request], proofs: Sequence[Proof]) -> bytes:
    """Pair ``requests`` with ``proofs`` and fold them over ``root``."""
    return fold(trie, root, pair_proofs(requests, proofs))
