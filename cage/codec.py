"""
Cage Wire Codec

Plutus data (CBOR) encoding of Cage datums and redeemers. Constructor
indices are part of the on-chain interface and must not change:

    Datum           RequestDatum 0   StateDatum 1
    Operation       Insert 0         Delete 1        Update 2
    Mint redeemer   Minting 0        Migrating 1     Burning 2
    Spend redeemer  End 0  Contribute 1  Modify 2  Retract 3  Reject 4
    Proof step      Branch 0         Fork 1          Leaf 2
    OutputReference Constr 0 [tx_id, index]

The ``*Data`` classes mirror the model one to one; validators never see them.
``decode_*`` raise ``StructuralError`` for unknown constructors or malformed
bytes.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from dataclasses import dataclass
from typing import List, Sequence, Type, TypeVar, Union

from pycardano import PlutusData
from pycardano.exception import DeserializeException

from cage.errors import StructuralError
from cage.model import (
    Branch,
    Burning,
    Contribute,
    Datum,
    Delete,
    End,
    Fork,
    Insert,
    Leaf,
    Migrating,
    Minting,
    MintRedeemer,
    Modify,
    Neighbor,
    Operation,
    OutputReference,
    Proof,
    ProofStep,
    Reject,
    Request,
    Retract,
    SpendRedeemer,
    State,
    TokenId,
    Update,
)

# =============================================================================
# PLUTUS DATA SHAPES
# =============================================================================


@dataclass
class OutputReferenceData(PlutusData):
    CONSTR_ID = 0
    tx_id: bytes
    index: int


@dataclass
class TokenIdData(PlutusData):
    CONSTR_ID = 0
    asset_name: bytes


@dataclass
class InsertData(PlutusData):
    CONSTR_ID = 0
    value: bytes


@dataclass
class DeleteData(PlutusData):
    CONSTR_ID = 1
    value: bytes


@dataclass
class UpdateData(PlutusData):
    CONSTR_ID = 2
    old_value: bytes
    new_value: bytes


OperationData = Union[InsertData, DeleteData, UpdateData]


@dataclass
class RequestDatum(PlutusData):
    CONSTR_ID = 0
    target_token: TokenIdData
    requester: bytes
    key: bytes
    operation: OperationData
    fee: int
    submitted_at: int


@dataclass
class StateDatum(PlutusData):
    CONSTR_ID = 1
    owner: bytes
    root: bytes
    max_fee: int


@dataclass
class NeighborData(PlutusData):
    CONSTR_ID = 0
    nibble: int
    prefix: bytes
    root: bytes


@dataclass
class BranchData(PlutusData):
    CONSTR_ID = 0
    skip: int
    neighbors: bytes


@dataclass
class ForkData(PlutusData):
    CONSTR_ID = 1
    skip: int
    neighbor: NeighborData


@dataclass
class LeafData(PlutusData):
    CONSTR_ID = 2
    skip: int
    key: bytes
    value: bytes


ProofStepData = Union[BranchData, ForkData, LeafData]


@dataclass
class MintingData(PlutusData):
    CONSTR_ID = 0
    reference: OutputReferenceData


@dataclass
class MigratingData(PlutusData):
    CONSTR_ID = 1
    old_policy: bytes
    token_id: TokenIdData


@dataclass
class BurningData(PlutusData):
    CONSTR_ID = 2


@dataclass
class EndData(PlutusData):
    CONSTR_ID = 0


@dataclass
class ContributeData(PlutusData):
    CONSTR_ID = 1
    state_ref: OutputReferenceData


@dataclass
class ModifyData(PlutusData):
    CONSTR_ID = 2
    proofs: List[List[ProofStepData]]


@dataclass
class RetractData(PlutusData):
    CONSTR_ID = 3


@dataclass
class RejectData(PlutusData):
    CONSTR_ID = 4


# =============================================================================
# MODEL <-> PLUTUS DATA
# =============================================================================

def _ref_to_data(ref: OutputReference) -> OutputReferenceData:
    return OutputReferenceData(ref.tx_id, ref.index)


def _ref_from_data(data: OutputReferenceData) -> OutputReference:
    try:
        return OutputReference(data.tx_id, data.index)
    except ValueError as e:
        raise StructuralError(f"malformed output reference: {e}") from e


def _operation_to_data(op: Operation) -> OperationData:
    if isinstance(op, Insert):
        return InsertData(op.value)
    if isinstance(op, Delete):
        return DeleteData(op.value)
    if isinstance(op, Update):
        return UpdateData(op.old_value, op.new_value)
    raise StructuralError("unknown operation", operation=type(op).__name__)


def _operation_from_data(data: OperationData) -> Operation:
    if isinstance(data, InsertData):
        return Insert(data.value)
    if isinstance(data, DeleteData):
        return Delete(data.value)
    return Update(data.old_value, data.new_value)


def _step_to_data(step: ProofStep) -> ProofStepData:
    if isinstance(step, Branch):
        return BranchData(step.skip, step.neighbors)
    if isinstance(step, Fork):
        n = step.neighbor
        return ForkData(step.skip, NeighborData(n.nibble, n.prefix, n.root))
    if isinstance(step, Leaf):
        return LeafData(step.skip, step.key, step.value)
    raise StructuralError("unknown proof step", step=type(step).__name__)


def _step_from_data(data: ProofStepData) -> ProofStep:
    if isinstance(data, BranchData):
        return Branch(data.skip, data.neighbors)
    if isinstance(data, ForkData):
        n = data.neighbor
        return Fork(data.skip, Neighbor(n.nibble, n.prefix, n.root))
    return Leaf(data.skip, data.key, data.value)


def datum_to_data(datum: Datum) -> Union[RequestDatum, StateDatum]:
    if isinstance(datum, State):
        return StateDatum(datum.owner, datum.root, datum.max_fee)
    if isinstance(datum, Request):
        return RequestDatum(
            TokenIdData(datum.target_token.asset_name),
            datum.requester,
            datum.key,
            _operation_to_data(datum.operation),
            datum.fee,
            datum.submitted_at,
        )
    raise StructuralError("unknown datum", datum=type(datum).__name__)


def datum_from_data(data: Union[RequestDatum, StateDatum]) -> Datum:
    if isinstance(data, StateDatum):
        return State(data.owner, data.root, data.max_fee)
    return Request(
        TokenId(data.target_token.asset_name),
        data.requester,
        data.key,
        _operation_from_data(data.operation),
        data.fee,
        data.submitted_at,
    )


def mint_redeemer_to_data(redeemer: MintRedeemer) -> Union[MintingData, MigratingData, BurningData]:
    if isinstance(redeemer, Minting):
        return MintingData(_ref_to_data(redeemer.reference))
    if isinstance(redeemer, Migrating):
        return MigratingData(redeemer.old_policy, TokenIdData(redeemer.token_id.asset_name))
    if isinstance(redeemer, Burning):
        return BurningData()
    raise StructuralError("unknown mint redeemer", redeemer=type(redeemer).__name__)


def mint_redeemer_from_data(data: Union[MintingData, MigratingData, BurningData]) -> MintRedeemer:
    if isinstance(data, MintingData):
        return Minting(_ref_from_data(data.reference))
    if isinstance(data, MigratingData):
        return Migrating(data.old_policy, TokenId(data.token_id.asset_name))
    return Burning()


def spend_redeemer_to_data(redeemer: SpendRedeemer) -> PlutusData:
    if isinstance(redeemer, End):
        return EndData()
    if isinstance(redeemer, Contribute):
        return ContributeData(_ref_to_data(redeemer.state_ref))
    if isinstance(redeemer, Modify):
        return ModifyData([[_step_to_data(s) for s in proof] for proof in redeemer.proofs])
    if isinstance(redeemer, Retract):
        return RetractData()
    if isinstance(redeemer, Reject):
        return RejectData()
    raise StructuralError("unknown spend redeemer", redeemer=type(redeemer).__name__)


def spend_redeemer_from_data(data: PlutusData) -> SpendRedeemer:
    if isinstance(data, EndData):
        return End()
    if isinstance(data, ContributeData):
        return Contribute(_ref_from_data(data.state_ref))
    if isinstance(data, ModifyData):
        return Modify(tuple(tuple(_step_from_data(s) for s in proof) for proof in data.proofs))
    if isinstance(data, RetractData):
        return Retract()
    return Reject()


# =============================================================================
# CBOR
# =============================================================================

P = TypeVar("P", bound=PlutusData)


def _decode(cbor: bytes, candidates: Sequence[Type[P]], what: str) -> P:
    """Decode ``cbor`` as whichever candidate matches its constructor tag."""
    for cls in candidates:
        try:
            return cls.from_cbor(cbor)
        except DeserializeException:
            continue
        except ValueError as e:
            raise StructuralError(f"malformed {what} encoding: {e}") from e
    raise StructuralError(f"unknown {what} constructor", cbor=bytes(cbor))


def encode_datum(datum: Datum) -> bytes:
    return datum_to_data(datum).to_cbor()


def decode_datum(cbor: bytes) -> Datum:
    return datum_from_data(_decode(cbor, (RequestDatum, StateDatum), "datum"))


def encode_mint_redeemer(redeemer: MintRedeemer) -> bytes:
    return mint_redeemer_to_data(redeemer).to_cbor()


def decode_mint_redeemer(cbor: bytes) -> MintRedeemer:
    return mint_redeemer_from_data(_decode(cbor, (MintingData, MigratingData, BurningData), "mint redeemer"))


def encode_spend_redeemer(redeemer: SpendRedeemer) -> bytes:
    return spend_redeemer_to_data(redeemer).to_cbor()


def decode_spend_redeemer(cbor: bytes) -> SpendRedeemer:
    candidates = (EndData, ContributeData, ModifyData, RetractData, RejectData)
    return spend_redeemer_from_data(_decode(cbor, candidates, "spend redeemer"))


def encode_proof(proof: Proof) -> List[PlutusData]:
    """Proof steps as Plutus data, e.g. for embedding in a redeemer builder."""
    return [_step_to_data(s) for s in proof]

