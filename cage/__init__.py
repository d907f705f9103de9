"""
CAGE: Authenticated Key/Value Index on a UTxO Ledger

A single oracle maintains a Merkle-Patricia trie whose root lives in the
datum of a unique token. Requesters lock proposed changes next to it; the
oracle must fold them into the root or explicitly discard them within
bounded time windows, and requesters can always get their bond back.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                           CAGE VALIDATORS                                │
    │                                                                          │
    │  DEPLOYMENT                                                              │
    │    instance.py     CageInstance: policy id, address, evaluate(tx)       │
    │    ledger.py       MockLedger: UTxO set, witnesses, clock               │
    │                                                                          │
    │  VALIDATORS                                                              │
    │    lifecycle.py    Minting policy: Minting / Migrating / Burning        │
    │    transitions.py  Spending validator: End / Modify / Reject /          │
    │                    Contribute / Retract                                  │
    │                                                                          │
    │  PRIMITIVES                                                              │
    │    identity.py     Asset-name derivation, single-token extraction       │
    │    phases.py       Process / retract / reject windows                   │
    │    fold.py         Left fold of (request, proof) over a root            │
    │    forestry.py     Merkle-Patricia Forestry trie capability             │
    │                                                                          │
    │  SUPPORT                                                                 │
    │    model.py  codec.py  keys.py  errors.py  config.py  observability.py  │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Token Lifecycle
───────────────

    Mint ──▶ Modify / Reject (any number) ──▶ End + Burn
                       │
                       └──▶ End + Burn on old instance + Migrate on new one

Request Lifecycle
─────────────────

    submit ──▶ phase 1: Contribute to Modify     (oracle folds it)
           ──▶ phase 2: Retract                 (requester withdraws)
           ──▶ phase 3: Contribute to Reject    (oracle discards it)

Copyright (c) 2026 Momentum. All rights reserved.
"""

__version__ = "0.1.0"


# Lazy imports to avoid circular dependencies
def __getattr__(name):
    """Lazy import Cage modules on first access."""

    # Model exports
    if name in ("OutputReference", "Address", "Value", "ValidityRange", "TokenId",
                "State", "Request", "Insert", "Delete", "Update", "Minting",
                "Migrating", "Burning", "End", "Contribute", "Modify", "Retract",
                "Reject", "TxIn", "TxOut", "Transaction", "EMPTY_ROOT"):
        from cage import model
        return getattr(model, name)

    # Error exports
    if name in ("CageError", "AuthorizationError", "PhaseViolation", "BindingError",
                "IntegrityError", "ProofError", "ProofUnderflow", "ConfinementError",
                "RefundError", "StructuralError", "LedgerError"):
        from cage import errors
        return getattr(errors, name)

    # Identity and phases
    if name in ("derive_asset_name", "extract_single_token"):
        from cage import identity
        return getattr(identity, name)

    if name in ("Phase", "PhaseClock"):
        from cage import phases
        return getattr(phases, name)

    # Trie and fold
    if name in ("MerklePatriciaForestry", "Trie"):
        from cage import forestry
        return getattr(forestry, name)

    if name in ("pair_proofs", "fold_requests"):
        from cage.fold import fold_requests, pair_proofs
        return {"pair_proofs": pair_proofs, "fold_requests": fold_requests}[name]

    # Deployment
    if name == "CageInstance":
        from cage.instance import CageInstance
        return CageInstance

    if name == "MockLedger":
        from cage.ledger import MockLedger
        return MockLedger

    if name in ("KeyPair", "Witness"):
        from cage import keys
        return getattr(keys, name)

    raise AttributeError(f"module 'cage' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Model
    "OutputReference", "Address", "Value", "ValidityRange", "TokenId", "State",
    "Request", "Insert", "Delete", "Update", "Minting", "Migrating", "Burning",
    "End", "Contribute", "Modify", "Retract", "Reject", "TxIn", "TxOut",
    "Transaction", "EMPTY_ROOT",
    # Errors
    "CageError", "AuthorizationError", "PhaseViolation", "BindingError",
    "IntegrityError", "ProofError", "ProofUnderflow", "ConfinementError",
    "RefundError", "StructuralError", "LedgerError",
    # Primitives
    "derive_asset_name", "extract_single_token", "Phase", "PhaseClock",
    "MerklePatriciaForestry", "Trie", "pair_proofs", "fold_requests",
    # Deployment
    "CageInstance", "MockLedger", "KeyPair", "Witness",
]
