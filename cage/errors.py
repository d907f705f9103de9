"""
Cage Error Taxonomy

Every validator in Cage is a predicate over a candidate transaction: either
every clause holds or the whole transaction is void. Failures are raised as
exceptions from the clause that failed and are never recovered locally.

    CageError
    ├── AuthorizationError     missing owner / requester signature
    ├── PhaseViolation         validity range outside the required phase
    ├── BindingError           request / token identity mismatch
    ├── IntegrityError         root mismatch, trie mutated during Reject
    │   ├── ProofError         proof invalid for its root / operation
    │   └── ProofUnderflow     fewer proofs than matching requests
    ├── ConfinementError       token left the controller address
    ├── RefundError            fee / refund clauses
    ├── StructuralError        datum / redeemer shape
    └── LedgerError            rejected by the mock ledger

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class CageError(Exception):
    """Base exception for rejected Cage transitions."""

    code = "cage_error"

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context: Dict[str, Any] = context
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "context": {k: _printable(v) for k, v in self.context.items()},
        }


class AuthorizationError(CageError):
    """A required signatory is missing from the transaction."""

    code = "authorization"


class PhaseViolation(CageError):
    """The validity range does not fall in the phase the transition needs."""

    code = "phase"


class BindingError(CageError):
    """A request or value bundle does not identify the expected token."""

    code = "binding"


class IntegrityError(CageError):
    """A committed root does not match what the transition produces."""

    code = "integrity"


class ProofError(IntegrityError):
    """A trie proof is invalid for the root it is applied to."""

    code = "proof"


class ProofUnderflow(IntegrityError):
    """Fewer proofs were supplied than there are requests to fold."""

    code = "proof_underflow"


class ConfinementError(CageError):
    """The token was sent somewhere other than its controller address."""

    code = "confinement"


class RefundError(CageError):
    """A request fee or requester refund clause failed."""

    code = "refund"


class StructuralError(CageError):
    """Missing datum, bad encoding or an incompatible datum/redeemer pair."""

    code = "structural"


class LedgerError(CageError):
    """The mock ledger refused a transaction before any validator ran."""

    code = "ledger"


def _printable(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    return value


def error_code(exc: BaseException) -> Optional[str]:
    """Return the taxonomy code of a Cage exception, if it is one."""
    return getattr(exc, "code", None) if isinstance(exc, CageError) else None
