"""
Leaf transfer protocol: moving leaf ownership between identities.

Sender path
-----------
1. ``send_transfer_sign_refund``: for every leaf, co-sign a refund
   transaction paying the receiver (one interval shorter timelock) with
   the operators.  The coordinator opens the transfer and returns the
   operators' signature shares; the wallet adds its own and aggregates.
2. ``send_transfer_tweak_key``: split  old_key − new_key  into one
   Feldman-verified share per operator, encrypt the new key to the
   receiver and hand every operator its bundle.  **Every** operator must
   acknowledge with the same transfer; otherwise the transfer is
   cancelled wherever it has not been committed yet.

Receiver path
-------------
``verify_pending_transfer`` checks the sender's payload signatures and
decrypts the leaf keys; ``claim_transfer`` rotates those keys to keys
only the receiver knows, co-signs fresh refunds and finalises them.

Swaps and cooperative exits reuse both halves, with the refund
signatures blinded by an adaptor point (see :pymod:`adaptor`).
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar

from .config import SigningOperator, WalletConfig
from .curve import Scalar, public_key_bytes
from .errors import (
    InconsistentOperatorResponse,
    InvalidStateTransition,
    ClaimVerificationFailed,
    OperatorFanOutError,
    PartialKeyTweakError,
)
from .fanout import Require, call_operator, fan_out
from .hash import transfer_payload_hash
from .keys import WalletSigner, verify_identity_signature
from .models import (
    Leaf,
    LeafKeyTweak,
    NodeSource,
    ReceiverIdentity,
    SenderIdentity,
    SignatureIntent,
    Transfer,
    TransferStatus,
)
from .rpc import (
    CancelSendTransferRequest,
    ClaimLeafKeyTweak,
    ClaimTransferSignRefundsRequest,
    ClaimTransferTweakKeysRequest,
    CompleteSendTransferRequest,
    ConnectionManager,
    ExtendLeafRequest,
    FinalizeNodeSignaturesRequest,
    KeyedSigningResult,
    LeafRefundTxSigningJob,
    LeafRefundTxSigningResult,
    LeafSwapRequest,
    NodeSignatures,
    OperatorClient,
    QueryNodesRequest,
    QueryPendingTransfersRequest,
    RefreshTimelockRequest,
    SecretShareTweak,
    SendLeafKeyTweak,
    SigningJob,
    StartSendTransferRequest,
    StartSendTransferResponse,
)
from .secret_sharing import VerifiableSecretShare, find_share
from .signing import Signature, SigningCommitment, signing_share_from_bytes
from .state import can_cancel, ensure_not_expired, is_claimable, is_expired
from .transaction import (
    OutPoint,
    TransactionCodec,
    initial_sequence,
    next_refund_sequence,
    next_sequence,
    signing_context,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _short(key: bytes) -> str:
    return key.hex()[:12]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── per-run data ────────────────────────────────────────────────────────

@dataclass
class LeafRefundSigningData:
    """What the wallet remembers about one leaf while its refund is signed."""

    signing_public_key: bytes
    receiving_public_key: bytes
    signing_nonce_commitment: SigningCommitment
    node_tx: bytes
    vout: int
    refund_tx: bytes = b""


@dataclass
class SignRefundResult:
    transfer: Transfer
    signature_map: Dict[str, bytes]
    leaf_data_map: Dict[str, LeafRefundSigningData]
    signing_results: Tuple[LeafRefundTxSigningResult, ...] = ()


@dataclass
class _TweakShares:
    shares: List[VerifiableSecretShare]
    pubkey_shares_tweak: Dict[str, bytes] = field(default_factory=dict)


# ── shared machinery ────────────────────────────────────────────────────

class BaseTransferService:
    """
    The parts of the transfer protocol that sends, swaps and cooperative
    exits have in common: refund co-signing and the unanimous key tweak.
    """

    def __init__(
        self,
        config: WalletConfig,
        connection_manager: ConnectionManager,
        signer: WalletSigner,
        codec: TransactionCodec,
    ) -> None:
        self.config = config
        self.connection_manager = connection_manager
        self.signer = signer
        self.codec = codec

    # operator access --------------------------------------------------------
    async def _on_operator(
        self,
        operator: SigningOperator,
        call: Callable[[OperatorClient], Awaitable[T]],
    ) -> T:
        return await call_operator(self.connection_manager, operator, call)

    async def _on_coordinator(self, call: Callable[[OperatorClient], Awaitable[T]]) -> T:
        return await self._on_operator(self.config.coordinator, call)

    @property
    def _operators(self) -> List[SigningOperator]:
        return sorted(self.config.signing_operators.values(), key=lambda op: op.id)

    # key tweak (sender) -----------------------------------------------------
    async def send_transfer_tweak_key(
        self,
        transfer: Transfer,
        leaves: Sequence[LeafKeyTweak],
        refund_signature_map: Mapping[str, bytes],
    ) -> Transfer:
        """
        Hand every operator its share of each leaf's key tweak.

        All operators must acknowledge, and all echoes must agree.  On any
        failure the transfer is cancelled at every operator that has not
        committed it; if some operator already has, the transfer can no
        longer be cancelled and ``PartialKeyTweakError`` is raised.
        """
        ensure_not_expired(transfer)
        tweaks = self._prepare_send_transfer_key_tweaks(transfer, leaves, refund_signature_map)
        identity = self.signer.identity_public_key
        logger.info(
            "tweaking keys of %d leaves for transfer %s at %d operators",
            len(leaves), transfer.id, len(tweaks),
        )

        async def complete(op: SigningOperator) -> Transfer:
            request = CompleteSendTransferRequest(
                transfer_id=transfer.id,
                owner_identity_public_key=identity,
                leaves_to_send=tuple(tweaks[op.identifier]),
            )
            response = await self._on_operator(
                op, lambda client: client.complete_send_transfer(request),
            )
            if response.transfer is None:
                raise InconsistentOperatorResponse(
                    f"operator {op.id} returned no transfer"
                )
            return response.transfer

        try:
            result = await fan_out(
                self._operators, complete, Require.ALL, phase="complete_send_transfer",
            )
            echoes = result.values()
            updated = echoes[0]
            for ident, echo in zip(result.succeeded[1:], echoes[1:]):
                if not updated.matches(echo):
                    raise InconsistentOperatorResponse(
                        f"operator {ident[-8:]} disagrees on transfer {transfer.id}"
                    )
        except (OperatorFanOutError, InconsistentOperatorResponse) as exc:
            await self._rollback_send(transfer, exc)
            raise
        return updated

    async def _rollback_send(self, transfer: Transfer, cause: BaseException) -> None:
        """
        Cancel *transfer* wherever it is still cancellable.

        Raises ``PartialKeyTweakError`` (chained to *cause*) if any
        operator reports the tweak as committed.
        """
        logger.warning("rolling back transfer %s: %s", transfer.id, cause)
        request = CancelSendTransferRequest(
            transfer_id=transfer.id,
            sender_identity_public_key=self.signer.identity_public_key,
        )

        async def cancel(op: SigningOperator) -> Optional[Transfer]:
            response = await self._on_operator(
                op, lambda client: client.cancel_send_transfer(request),
            )
            return response.transfer

        try:
            result = await fan_out(
                self._operators, cancel, Require.ANY, phase="cancel_send_transfer",
            )
            outcomes = dict(result.successes)
        except OperatorFanOutError as fan_err:
            logger.warning("no operator cancelled transfer %s", transfer.id)
            outcomes = {}
            failed = sorted(fan_err.errors)
        else:
            failed = result.failed

        cancelled = sorted(
            ident for ident, t in outcomes.items()
            if t is not None and t.status == TransferStatus.CANCELLED
        )
        tweaked = sorted(
            ident for ident, t in outcomes.items()
            if t is not None and not can_cancel(t)
            and t.status != TransferStatus.CANCELLED
        )
        if failed:
            logger.warning(
                "cancellation of transfer %s failed at %d operator(s)",
                transfer.id, len(failed),
            )
        if tweaked:
            raise PartialKeyTweakError(transfer.id, tweaked, cancelled, cause) from cause

    def _split_tweak(self, leaf: LeafKeyTweak) -> _TweakShares:
        """Shares of  signing_key − new_signing_key, one per operator."""
        tweak_public_key = self.signer.subtract_private_keys_given_public_keys(
            leaf.signing_public_key, leaf.new_signing_public_key,
        )
        try:
            shares = self.signer.split_secret_with_proofs(
                tweak_public_key,
                self.config.threshold,
                self.config.num_operators,
                is_secret_pubkey=True,
            )
        finally:
            self.signer.remove_public_key(tweak_public_key)

        out = _TweakShares(shares=shares)
        for op in self._operators:
            share = find_share(shares, op.id)
            out.pubkey_shares_tweak[op.identifier] = public_key_bytes(Scalar(share.share))
        return out

    def _prepare_send_transfer_key_tweaks(
        self,
        transfer: Transfer,
        leaves: Sequence[LeafKeyTweak],
        refund_signature_map: Mapping[str, bytes],
    ) -> Dict[str, List[SendLeafKeyTweak]]:
        by_operator: Dict[str, List[SendLeafKeyTweak]] = {
            op.identifier: [] for op in self._operators
        }
        for leaf in leaves:
            tweak = self._split_tweak(leaf)
            secret_cipher = self.signer.encrypt_leaf_private_key_ecies(
                transfer.receiver_identity_public_key, leaf.new_signing_public_key,
            )
            signature = self.signer.sign_message_with_identity_key(
                transfer_payload_hash(leaf.leaf.id, transfer.id, secret_cipher)
            )
            for op in self._operators:
                share = find_share(tweak.shares, op.id)
                by_operator[op.identifier].append(SendLeafKeyTweak(
                    leaf_id=leaf.leaf.id,
                    secret_share_tweak=SecretShareTweak(
                        secret_share=share.share_bytes(),
                        proofs=tuple(share.proof_bytes()),
                    ),
                    pubkey_shares_tweak=dict(tweak.pubkey_shares_tweak),
                    secret_cipher=secret_cipher,
                    signature=signature,
                    refund_signature=refund_signature_map.get(leaf.leaf.id, b""),
                ))
        return by_operator

    # refund co-signing ------------------------------------------------------
    def _sign_and_aggregate(
        self,
        message: bytes,
        signing_public_key: bytes,
        self_commitment: SigningCommitment,
        result: KeyedSigningResult,
        adaptor_public_key: Optional[bytes] = None,
    ) -> Signature:
        signing_result = result.signing_result
        user_signature = self.signer.sign_frost(
            message,
            signing_public_key,
            result.verifying_key,
            self_commitment,
            signing_result.signing_nonce_commitments,
            adaptor_public_key,
        )
        return self.signer.aggregate_frost(
            message,
            user_signature,
            signing_public_key,
            self_commitment,
            {i: signing_share_from_bytes(z) for i, z in signing_result.signature_shares.items()},
            signing_result.public_keys,
            signing_result.signing_nonce_commitments,
            result.verifying_key,
            adaptor_public_key,
        )

    def sign_refunds(
        self,
        leaf_data_map: Mapping[str, LeafRefundSigningData],
        operator_signing_results: Sequence[LeafRefundTxSigningResult],
        adaptor_public_key: Optional[bytes] = None,
    ) -> List[NodeSignatures]:
        """
        Add the wallet's partial signature to each operator result and
        aggregate.  With *adaptor_public_key* the refunds come out as
        adaptor signatures.
        """
        node_signatures = []
        for result in operator_signing_results:
            data = leaf_data_map.get(result.leaf_id)
            if data is None or not data.refund_tx:
                raise InconsistentOperatorResponse(
                    f"signing result for unknown leaf {result.leaf_id}"
                )
            sighash = self.codec.sighash(
                data.refund_tx, 0, self.codec.output(data.node_tx, 0),
            )
            signature = self._sign_and_aggregate(
                sighash,
                data.signing_public_key,
                data.signing_nonce_commitment,
                KeyedSigningResult(result.verifying_key, result.refund_tx_signing_result),
                adaptor_public_key,
            )
            node_signatures.append(NodeSignatures(
                node_id=result.leaf_id,
                refund_tx_signature=signature.to_bytes(),
            ))
        return node_signatures

    def _prepare_refund_signing_jobs(
        self,
        leaves: Sequence[LeafKeyTweak],
        leaf_data_map: Mapping[str, LeafRefundSigningData],
    ) -> List[LeafRefundTxSigningJob]:
        jobs = []
        for leaf in leaves:
            data = leaf_data_map[leaf.leaf.id]
            ctx = signing_context(leaf.leaf, self.codec)
            sequence = next_refund_sequence(leaf.leaf, self.codec)
            data.refund_tx = self.codec.create_refund_tx(
                sequence,
                ctx.node_outpoint,
                ctx.amount_sats,
                data.receiving_public_key,
                self.config.network.value,
            )
            jobs.append(LeafRefundTxSigningJob(
                leaf_id=leaf.leaf.id,
                refund_tx_signing_job=SigningJob(
                    signing_public_key=data.signing_public_key,
                    raw_tx=data.refund_tx,
                    signing_nonce_commitment=data.signing_nonce_commitment,
                ),
            ))
        return jobs

    def _new_leaf_data(
        self,
        leaf: Leaf,
        signing_public_key: bytes,
        receiving_public_key: bytes,
    ) -> LeafRefundSigningData:
        return LeafRefundSigningData(
            signing_public_key=signing_public_key,
            receiving_public_key=receiving_public_key,
            signing_nonce_commitment=self.signer.get_random_signing_commitment(),
            node_tx=leaf.node_tx,
            vout=leaf.vout,
        )

    def _discard_unsigned(self, leaf_data_map: Mapping[str, LeafRefundSigningData]) -> None:
        self.signer.discard_commitments(
            data.signing_nonce_commitment for data in leaf_data_map.values()
        )

    def _start_request(
        self,
        transfer_id: str,
        receiver_identity_public_key: bytes,
        expiry_time: datetime,
        jobs: Sequence[LeafRefundTxSigningJob],
    ) -> StartSendTransferRequest:
        return StartSendTransferRequest(
            transfer_id=transfer_id,
            owner_identity_public_key=self.signer.identity_public_key,
            receiver_identity_public_key=receiver_identity_public_key,
            expiry_time=expiry_time,
            leaves_to_send=tuple(jobs),
        )

    # cancellation -----------------------------------------------------------
    async def cancel_send_transfer(
        self,
        transfer: Transfer,
        operator: SigningOperator,
    ) -> Optional[Transfer]:
        request = CancelSendTransferRequest(
            transfer_id=transfer.id,
            sender_identity_public_key=self.signer.identity_public_key,
        )
        response = await self._on_operator(
            operator, lambda client: client.cancel_send_transfer(request),
        )
        return response.transfer

    async def query_pending_transfers_by_sender(
        self,
        operator: SigningOperator,
    ) -> List[Transfer]:
        request = QueryPendingTransfersRequest(
            participant=SenderIdentity(self.signer.identity_public_key),
        )
        response = await self._on_operator(
            operator, lambda client: client.query_pending_transfers(request),
        )
        return list(response.transfers)

    async def cancel_all_sender_initiated(self) -> List[str]:
        """
        Cancel, at every operator, each of our outgoing transfers that is
        still cancellable there.  Returns the ids of the transfers that
        were cancelled somewhere.
        """
        async def sweep(op: SigningOperator) -> List[str]:
            done = []
            for transfer in await self.query_pending_transfers_by_sender(op):
                if can_cancel(transfer):
                    if is_expired(transfer):
                        logger.info("cancelling expired transfer %s", transfer.id)
                    await self.cancel_send_transfer(transfer, op)
                    done.append(transfer.id)
            return done

        result = await fan_out(
            self._operators, sweep, Require.ANY, phase="cancel_sender_initiated",
        )
        cancelled = sorted({tid for ids in result.values() for tid in ids})
        if cancelled:
            logger.info("cancelled %d sender-initiated transfer(s)", len(cancelled))
        return cancelled


# ── transfers ───────────────────────────────────────────────────────────

class TransferService(BaseTransferService):
    """Sending, claiming and maintaining leaves."""

    # send -------------------------------------------------------------------
    async def send_transfer(
        self,
        leaves: Sequence[LeafKeyTweak],
        receiver_identity_public_key: bytes,
        expiry_time: Optional[datetime] = None,
    ) -> Transfer:
        expiry_time = expiry_time or _utcnow() + self.config.transfer_expiry
        signed = await self.send_transfer_sign_refund(
            leaves, receiver_identity_public_key, expiry_time,
        )
        return await self.send_transfer_tweak_key(
            signed.transfer, leaves, signed.signature_map,
        )

    async def send_transfer_sign_refund(
        self,
        leaves: Sequence[LeafKeyTweak],
        receiver_identity_public_key: bytes,
        expiry_time: datetime,
    ) -> SignRefundResult:
        return await self._send_transfer_sign_refund(
            leaves, receiver_identity_public_key, expiry_time, for_swap=False,
        )

    async def start_swap_sign_refund(
        self,
        leaves: Sequence[LeafKeyTweak],
        receiver_identity_public_key: bytes,
        expiry_time: datetime,
    ) -> SignRefundResult:
        return await self._send_transfer_sign_refund(
            leaves, receiver_identity_public_key, expiry_time, for_swap=True,
        )

    async def counter_swap_sign_refund(
        self,
        leaves: Sequence[LeafKeyTweak],
        receiver_identity_public_key: bytes,
        expiry_time: datetime,
        adaptor_public_key: bytes,
    ) -> SignRefundResult:
        """Counter-party half of a swap: refunds blinded by *adaptor_public_key*."""
        return await self._send_transfer_sign_refund(
            leaves, receiver_identity_public_key, expiry_time,
            for_swap=True, adaptor_public_key=adaptor_public_key,
        )

    async def _send_transfer_sign_refund(
        self,
        leaves: Sequence[LeafKeyTweak],
        receiver_identity_public_key: bytes,
        expiry_time: datetime,
        for_swap: bool,
        adaptor_public_key: Optional[bytes] = None,
    ) -> SignRefundResult:
        if not leaves:
            raise ValueError("no leaves to send")
        transfer_id = str(uuid.uuid4())
        leaf_data_map = {
            leaf.leaf.id: self._new_leaf_data(
                leaf.leaf, leaf.signing_public_key, receiver_identity_public_key,
            )
            for leaf in leaves
        }
        try:
            jobs = self._prepare_refund_signing_jobs(leaves, leaf_data_map)
            start = self._start_request(
                transfer_id, receiver_identity_public_key, expiry_time, jobs,
            )
            logger.info(
                "starting transfer %s of %d leaves to %s",
                transfer_id, len(leaves), _short(receiver_identity_public_key),
            )

            response: StartSendTransferResponse
            if adaptor_public_key is not None:
                swap = LeafSwapRequest(
                    transfer=start,
                    swap_id=str(uuid.uuid4()),
                    adaptor_public_key=adaptor_public_key,
                )
                response = await self._on_coordinator(lambda c: c.leaf_swap(swap))
            elif for_swap:
                response = await self._on_coordinator(lambda c: c.start_leaf_swap(start))
            else:
                response = await self._on_coordinator(lambda c: c.start_send_transfer(start))

            signatures = self.sign_refunds(
                leaf_data_map, response.signing_results, adaptor_public_key,
            )
        finally:
            self._discard_unsigned(leaf_data_map)
        return SignRefundResult(
            transfer=response.transfer,
            signature_map={s.node_id: s.refund_tx_signature for s in signatures},
            leaf_data_map=leaf_data_map,
            signing_results=tuple(response.signing_results),
        )

    # receive ----------------------------------------------------------------
    async def query_pending_transfers(self) -> List[Transfer]:
        request = QueryPendingTransfersRequest(
            participant=ReceiverIdentity(self.signer.identity_public_key),
        )
        response = await self._on_coordinator(lambda c: c.query_pending_transfers(request))
        return list(response.transfers)

    def verify_pending_transfer(self, transfer: Transfer) -> Dict[str, bytes]:
        """
        Check the sender's signature on every leaf payload and decrypt
        the leaf keys.  Returns leaf id → public key of the decrypted key.
        """
        leaf_keys = {}
        for transfer_leaf in transfer.leaves:
            digest = transfer_payload_hash(
                transfer_leaf.leaf.id, transfer.id, transfer_leaf.secret_cipher,
            )
            if not verify_identity_signature(
                transfer.sender_identity_public_key, digest, transfer_leaf.signature,
            ):
                raise ClaimVerificationFailed(
                    f"leaf {transfer_leaf.leaf.id} of transfer {transfer.id}: "
                    "payload signature does not verify"
                )
            leaf_keys[transfer_leaf.leaf.id] = self.signer.decrypt_ecies(
                transfer_leaf.secret_cipher,
            )
        return leaf_keys

    async def claim_transfer(
        self,
        transfer: Transfer,
        leaves: Sequence[LeafKeyTweak],
    ) -> List[Leaf]:
        """Rotate, re-sign and finalise the leaves of an incoming transfer."""
        if not is_claimable(transfer):
            raise InvalidStateTransition(
                f"transfer {transfer.id} is {transfer.status.value}, not claimable"
            )
        logger.info("claiming transfer %s (%d leaves)", transfer.id, len(leaves))
        if transfer.status == TransferStatus.SENDER_KEY_TWEAKED:
            await self.claim_transfer_tweak_keys(transfer, leaves)
        signatures = await self.claim_transfer_sign_refunds(transfer, leaves)
        return await self._finalize(SignatureIntent.TRANSFER, signatures)

    async def claim_transfer_tweak_keys(
        self,
        transfer: Transfer,
        leaves: Sequence[LeafKeyTweak],
    ) -> None:
        by_operator: Dict[str, List[ClaimLeafKeyTweak]] = {
            op.identifier: [] for op in self._operators
        }
        for leaf in leaves:
            tweak = self._split_tweak(leaf)
            for op in self._operators:
                share = find_share(tweak.shares, op.id)
                by_operator[op.identifier].append(ClaimLeafKeyTweak(
                    leaf_id=leaf.leaf.id,
                    secret_share_tweak=SecretShareTweak(
                        secret_share=share.share_bytes(),
                        proofs=tuple(share.proof_bytes()),
                    ),
                    pubkey_shares_tweak=dict(tweak.pubkey_shares_tweak),
                ))
        identity = self.signer.identity_public_key

        async def tweak_keys(op: SigningOperator) -> None:
            request = ClaimTransferTweakKeysRequest(
                transfer_id=transfer.id,
                owner_identity_public_key=identity,
                leaves_to_receive=tuple(by_operator[op.identifier]),
            )
            await self._on_operator(op, lambda c: c.claim_transfer_tweak_keys(request))

        await fan_out(
            self._operators, tweak_keys, Require.ALL, phase="claim_transfer_tweak_keys",
        )

    async def claim_transfer_sign_refunds(
        self,
        transfer: Transfer,
        leaves: Sequence[LeafKeyTweak],
    ) -> List[NodeSignatures]:
        leaf_data_map = {
            leaf.leaf.id: self._new_leaf_data(
                leaf.leaf, leaf.new_signing_public_key, leaf.new_signing_public_key,
            )
            for leaf in leaves
        }
        try:
            jobs = self._prepare_refund_signing_jobs(leaves, leaf_data_map)
            request = ClaimTransferSignRefundsRequest(
                transfer_id=transfer.id,
                owner_identity_public_key=self.signer.identity_public_key,
                signing_jobs=tuple(jobs),
            )
            response = await self._on_coordinator(
                lambda c: c.claim_transfer_sign_refunds(request),
            )
            return self.sign_refunds(leaf_data_map, response.signing_results)
        finally:
            self._discard_unsigned(leaf_data_map)

    async def _finalize(
        self,
        intent: SignatureIntent,
        node_signatures: Sequence[NodeSignatures],
    ) -> List[Leaf]:
        request = FinalizeNodeSignaturesRequest(
            intent=intent, node_signatures=tuple(node_signatures),
        )
        response = await self._on_coordinator(lambda c: c.finalize_node_signatures(request))
        return list(response.nodes)

    # queries ----------------------------------------------------------------
    async def query_nodes(
        self,
        source: NodeSource,
        include_parents: bool = False,
    ) -> Dict[str, Leaf]:
        request = QueryNodesRequest(source=source, include_parents=include_parents)
        response = await self._on_coordinator(lambda c: c.query_nodes(request))
        return dict(response.nodes)

    # timelock maintenance ---------------------------------------------------
    async def refresh_timelock_nodes(
        self,
        nodes: Sequence[Leaf],
        parent_node: Leaf,
        signing_public_key: bytes,
    ) -> List[Leaf]:
        """
        Decrement the first node's timelock against *parent_node*, chain
        the following nodes behind it with a fresh timelock and reset
        the leaf's refund.  One job per node plus one for the refund.
        """
        if not nodes:
            raise ValueError("no nodes to refresh")
        codec = self.codec

        jobs: List[SigningJob] = []
        try:
            new_node_txs: List[bytes] = []
            for i, node in enumerate(nodes):
                if i == 0:
                    sequence = next_sequence(codec.input_sequence(node.node_tx)).next_sequence
                    new_tx = codec.with_input(node.node_tx, sequence)
                else:
                    new_tx = codec.with_input(
                        node.node_tx, initial_sequence(), codec.txid(new_node_txs[i - 1]),
                    )
                new_node_txs.append(new_tx)
                jobs.append(SigningJob(
                    signing_public_key=signing_public_key,
                    raw_tx=new_tx,
                    signing_nonce_commitment=self.signer.get_random_signing_commitment(),
                ))

            leaf = nodes[-1]
            new_refund_tx = codec.with_input(
                leaf.refund_tx, initial_sequence(), codec.txid(new_node_txs[-1]),
            )
            jobs.append(SigningJob(
                signing_public_key=signing_public_key,
                raw_tx=new_refund_tx,
                signing_nonce_commitment=self.signer.get_random_signing_commitment(),
            ))

            request = RefreshTimelockRequest(
                leaf_id=leaf.id,
                owner_identity_public_key=self.signer.identity_public_key,
                signing_jobs=tuple(jobs),
            )
            response = await self._on_coordinator(lambda c: c.refresh_timelock(request))
            if len(response.signing_results) != len(jobs):
                raise InconsistentOperatorResponse(
                    f"{len(jobs)} signing jobs but {len(response.signing_results)} results"
                )

            node_signatures: List[NodeSignatures] = []
            leaf_signature = refund_signature = b""
            for i, (job, result) in enumerate(zip(jobs, response.signing_results)):
                if i == len(nodes):
                    parent_tx, vout = new_node_txs[-1], 0
                elif i == 0:
                    parent_tx, vout = parent_node.node_tx, nodes[0].vout
                else:
                    parent_tx, vout = new_node_txs[i - 1], nodes[i].vout
                sighash = codec.sighash(job.raw_tx, 0, codec.output(parent_tx, vout))
                signature = self._sign_and_aggregate(
                    sighash, signing_public_key, job.signing_nonce_commitment, result,
                ).to_bytes()

                if i == len(nodes):
                    refund_signature = signature
                elif i == len(nodes) - 1:
                    leaf_signature = signature
                else:
                    node_signatures.append(NodeSignatures(
                        node_id=nodes[i].id, node_tx_signature=signature,
                    ))

            node_signatures.append(NodeSignatures(
                node_id=leaf.id,
                node_tx_signature=leaf_signature,
                refund_tx_signature=refund_signature,
            ))
            logger.info("refreshed timelock of leaf %s", leaf.id)
            return await self._finalize(SignatureIntent.REFRESH, node_signatures)
        finally:
            self.signer.discard_commitments(job.signing_nonce_commitment for job in jobs)

    async def extend_timelock(self, node: Leaf, signing_public_key: bytes) -> List[Leaf]:
        """
        Spend *node*'s transaction into a new node transaction with the
        next timelock and give it a refund with a fresh timelock.
        """
        codec = self.codec
        refund_sequence = codec.input_sequence(node.refund_tx)
        node_sequence = next_sequence(refund_sequence, for_refresh=True).next_sequence
        node_output = codec.output(node.node_tx, 0)

        new_node_tx = codec.create_node_tx(
            OutPoint(codec.txid(node.node_tx), 0), node_sequence, node_output,
        )
        new_refund_tx = codec.create_refund_tx(
            initial_sequence(),
            OutPoint(codec.txid(new_node_tx), 0),
            codec.output_amount(node.refund_tx, 0),
            signing_public_key,
            self.config.network.value,
        )
        node_job = SigningJob(
            signing_public_key=signing_public_key,
            raw_tx=new_node_tx,
            signing_nonce_commitment=self.signer.get_random_signing_commitment(),
        )
        refund_job = SigningJob(
            signing_public_key=signing_public_key,
            raw_tx=new_refund_tx,
            signing_nonce_commitment=self.signer.get_random_signing_commitment(),
        )
        try:
            request = ExtendLeafRequest(
                leaf_id=node.id,
                owner_identity_public_key=self.signer.identity_public_key,
                node_tx_signing_job=node_job,
                refund_tx_signing_job=refund_job,
            )
            response = await self._on_coordinator(lambda c: c.extend_leaf(request))

            node_signature = self._sign_and_aggregate(
                codec.sighash(new_node_tx, 0, node_output),
                signing_public_key,
                node_job.signing_nonce_commitment,
                response.node_tx_signing_result,
            )
            refund_signature = self._sign_and_aggregate(
                codec.sighash(new_refund_tx, 0, codec.output(new_node_tx, 0)),
                signing_public_key,
                refund_job.signing_nonce_commitment,
                response.refund_tx_signing_result,
            )
            logger.info("extended timelock of leaf %s", node.id)
            return await self._finalize(SignatureIntent.EXTEND, [NodeSignatures(
                node_id=response.leaf_id,
                node_tx_signature=node_signature.to_bytes(),
                refund_tx_signature=refund_signature.to_bytes(),
            )])
        finally:
            self.signer.discard_commitments(
                [node_job.signing_nonce_commitment, refund_job.signing_nonce_commitment]
            )
