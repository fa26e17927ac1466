"""
Operator RPC surface.

Requests and responses are frozen dataclasses; the transport that moves
them (gRPC channels, authentication, retries) is supplied by the caller
through ``ConnectionManager``.  Byte fields carry raw encodings:
compressed SEC 1 public keys, 32-byte scalars, serialised transactions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Protocol, Tuple

from .models import Leaf, NodeSource, Participant, SignatureIntent, Transfer
from .signing import SigningCommitment


# ── signing jobs and results ────────────────────────────────────────────

@dataclass(frozen=True)
class SigningJob:
    """One transaction the wallet wants co-signed."""

    signing_public_key: bytes
    raw_tx: bytes
    signing_nonce_commitment: SigningCommitment


@dataclass(frozen=True)
class LeafRefundTxSigningJob:
    leaf_id: str
    refund_tx_signing_job: SigningJob


@dataclass(frozen=True)
class SigningResult:
    """
    The operators' half of a FROST signature.

    All three maps are keyed by operator identifier.  ``public_keys``
    holds each operator's public key share for the leaf.
    """

    public_keys: Dict[str, bytes]
    signing_nonce_commitments: Dict[str, SigningCommitment]
    signature_shares: Dict[str, bytes]


@dataclass(frozen=True)
class LeafRefundTxSigningResult:
    leaf_id: str
    refund_tx_signing_result: SigningResult
    verifying_key: bytes


@dataclass(frozen=True)
class KeyedSigningResult:
    """A signing result together with the key it verifies under."""

    verifying_key: bytes
    signing_result: SigningResult


@dataclass(frozen=True)
class NodeSignatures:
    node_id: str
    node_tx_signature: bytes = b""
    refund_tx_signature: bytes = b""


# ── key tweaks ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SecretShareTweak:
    secret_share: bytes
    proofs: Tuple[bytes, ...]


@dataclass(frozen=True)
class ClaimLeafKeyTweak:
    """One operator's share of a leaf key rotation."""

    leaf_id: str
    secret_share_tweak: SecretShareTweak
    pubkey_shares_tweak: Dict[str, bytes]


@dataclass(frozen=True)
class SendLeafKeyTweak(ClaimLeafKeyTweak):
    """A claim tweak plus the sender's handover to the receiver."""

    secret_cipher: bytes = b""
    signature: bytes = b""
    refund_signature: bytes = b""


# ── transfers ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class StartSendTransferRequest:
    transfer_id: str
    owner_identity_public_key: bytes
    receiver_identity_public_key: bytes
    expiry_time: datetime
    leaves_to_send: Tuple[LeafRefundTxSigningJob, ...] = ()


@dataclass(frozen=True)
class StartSendTransferResponse:
    transfer: Transfer
    signing_results: Tuple[LeafRefundTxSigningResult, ...] = ()


@dataclass(frozen=True)
class CompleteSendTransferRequest:
    transfer_id: str
    owner_identity_public_key: bytes
    leaves_to_send: Tuple[SendLeafKeyTweak, ...]


@dataclass(frozen=True)
class CompleteSendTransferResponse:
    transfer: Optional[Transfer]


@dataclass(frozen=True)
class ClaimTransferTweakKeysRequest:
    transfer_id: str
    owner_identity_public_key: bytes
    leaves_to_receive: Tuple[ClaimLeafKeyTweak, ...]


@dataclass(frozen=True)
class ClaimTransferSignRefundsRequest:
    transfer_id: str
    owner_identity_public_key: bytes
    signing_jobs: Tuple[LeafRefundTxSigningJob, ...]


@dataclass(frozen=True)
class ClaimTransferSignRefundsResponse:
    signing_results: Tuple[LeafRefundTxSigningResult, ...]


@dataclass(frozen=True)
class FinalizeNodeSignaturesRequest:
    intent: SignatureIntent
    node_signatures: Tuple[NodeSignatures, ...]


@dataclass(frozen=True)
class FinalizeNodeSignaturesResponse:
    nodes: Tuple[Leaf, ...]


@dataclass(frozen=True)
class CooperativeExitRequest:
    transfer: StartSendTransferRequest
    exit_id: str
    exit_txid: str


@dataclass(frozen=True)
class LeafSwapRequest:
    """Counter-party side of a swap: refunds blinded by the adaptor key."""

    transfer: StartSendTransferRequest
    swap_id: str
    adaptor_public_key: bytes


@dataclass(frozen=True)
class CancelSendTransferRequest:
    transfer_id: str
    sender_identity_public_key: bytes


@dataclass(frozen=True)
class CancelSendTransferResponse:
    transfer: Optional[Transfer]


@dataclass(frozen=True)
class QueryPendingTransfersRequest:
    participant: Participant
    transfer_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class QueryTransfersResponse:
    transfers: Tuple[Transfer, ...] = ()


@dataclass(frozen=True)
class QueryNodesRequest:
    source: NodeSource
    include_parents: bool = False


@dataclass(frozen=True)
class QueryNodesResponse:
    nodes: Dict[str, Leaf] = field(default_factory=dict)


# ── timelocks ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RefreshTimelockRequest:
    leaf_id: str
    owner_identity_public_key: bytes
    signing_jobs: Tuple[SigningJob, ...]


@dataclass(frozen=True)
class RefreshTimelockResponse:
    signing_results: Tuple[KeyedSigningResult, ...]


@dataclass(frozen=True)
class ExtendLeafRequest:
    leaf_id: str
    owner_identity_public_key: bytes
    node_tx_signing_job: SigningJob
    refund_tx_signing_job: SigningJob


@dataclass(frozen=True)
class ExtendLeafResponse:
    leaf_id: str
    node_tx_signing_result: KeyedSigningResult
    refund_tx_signing_result: KeyedSigningResult


# ── lightning ───────────────────────────────────────────────────────────

class PreimageSwapReason(Enum):
    SEND = "SEND"
    RECEIVE = "RECEIVE"


@dataclass(frozen=True)
class StorePreimageShareRequest:
    payment_hash: bytes
    preimage_share: SecretShareTweak
    threshold: int
    invoice_string: str
    user_identity_public_key: bytes


@dataclass(frozen=True)
class GetSigningCommitmentsRequest:
    node_ids: Tuple[str, ...]


@dataclass(frozen=True)
class GetSigningCommitmentsResponse:
    """One operator-commitment map per requested node, in request order."""

    signing_commitments: Tuple[Dict[str, SigningCommitment], ...]


@dataclass(frozen=True)
class UserSignedRefund:
    node_id: str
    refund_tx: bytes
    user_signature: bytes
    user_signature_commitment: SigningCommitment
    signing_commitments: Dict[str, SigningCommitment]
    network: str


@dataclass(frozen=True)
class InvoiceAmount:
    value_sats: int
    bolt11_invoice: str = ""


@dataclass(frozen=True)
class InitiatePreimageSwapRequest:
    payment_hash: bytes
    user_signed_refunds: Tuple[UserSignedRefund, ...]
    reason: PreimageSwapReason
    invoice_amount: InvoiceAmount
    transfer: StartSendTransferRequest
    receiver_identity_public_key: bytes
    fee_sats: int = 0


@dataclass(frozen=True)
class InitiatePreimageSwapResponse:
    preimage: bytes = b""
    transfer: Optional[Transfer] = None


@dataclass(frozen=True)
class QueryUserSignedRefundsRequest:
    payment_hash: bytes


@dataclass(frozen=True)
class ProvidePreimageRequest:
    preimage: bytes
    payment_hash: bytes


# ── collaborator protocols ──────────────────────────────────────────────

class OperatorClient(Protocol):
    """Calls one signing operator (or the coordinator) can serve."""

    async def start_send_transfer(
        self, request: StartSendTransferRequest,
    ) -> StartSendTransferResponse: ...

    async def start_leaf_swap(
        self, request: StartSendTransferRequest,
    ) -> StartSendTransferResponse: ...

    async def leaf_swap(self, request: LeafSwapRequest) -> StartSendTransferResponse: ...

    async def complete_send_transfer(
        self, request: CompleteSendTransferRequest,
    ) -> CompleteSendTransferResponse: ...

    async def claim_transfer_tweak_keys(self, request: ClaimTransferTweakKeysRequest) -> None: ...

    async def claim_transfer_sign_refunds(
        self, request: ClaimTransferSignRefundsRequest,
    ) -> ClaimTransferSignRefundsResponse: ...

    async def finalize_node_signatures(
        self, request: FinalizeNodeSignaturesRequest,
    ) -> FinalizeNodeSignaturesResponse: ...

    async def cooperative_exit(
        self, request: CooperativeExitRequest,
    ) -> StartSendTransferResponse: ...

    async def cancel_send_transfer(
        self, request: CancelSendTransferRequest,
    ) -> CancelSendTransferResponse: ...

    async def query_pending_transfers(
        self, request: QueryPendingTransfersRequest,
    ) -> QueryTransfersResponse: ...

    async def query_nodes(self, request: QueryNodesRequest) -> QueryNodesResponse: ...

    async def refresh_timelock(self, request: RefreshTimelockRequest) -> RefreshTimelockResponse: ...

    async def extend_leaf(self, request: ExtendLeafRequest) -> ExtendLeafResponse: ...

    async def store_preimage_share(self, request: StorePreimageShareRequest) -> None: ...

    async def get_signing_commitments(
        self, request: GetSigningCommitmentsRequest,
    ) -> GetSigningCommitmentsResponse: ...

    async def initiate_preimage_swap(
        self, request: InitiatePreimageSwapRequest,
    ) -> InitiatePreimageSwapResponse: ...

    async def query_user_signed_refunds(
        self, request: QueryUserSignedRefundsRequest,
    ) -> List[UserSignedRefund]: ...

    async def provide_preimage(self, request: ProvidePreimageRequest) -> Transfer: ...


class ConnectionManager(Protocol):
    async def create_client(self, address: str) -> OperatorClient: ...
