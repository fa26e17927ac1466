"""
Lightning payments through a preimage swap.

Receiving: the wallet picks a preimage, has an invoice created for its
hash and secret-shares the preimage to **every** operator; the operators
can only release it together, in exchange for the payer's leaves.

Sending: the wallet signs refunds for its leaves towards the service
provider against operator commitments and asks the coordinator to swap
them for the invoice's preimage.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, TypeVar

from .config import SigningOperator, WalletConfig
from .curve import ORDER, SCALAR_BYTES
from .errors import InconsistentOperatorResponse, LeafTransferError
from .fanout import Require, call_operator, fan_out
from .hash import payment_hash as compute_payment_hash
from .keys import WalletSigner
from .models import LeafKeyTweak, Transfer
from .rpc import (
    ConnectionManager,
    GetSigningCommitmentsRequest,
    InitiatePreimageSwapRequest,
    InitiatePreimageSwapResponse,
    InvoiceAmount,
    OperatorClient,
    PreimageSwapReason,
    ProvidePreimageRequest,
    QueryUserSignedRefundsRequest,
    SecretShareTweak,
    StartSendTransferRequest,
    StorePreimageShareRequest,
    UserSignedRefund,
)
from .secret_sharing import find_share
from .signing import SigningCommitment, signing_share_bytes
from .transaction import TransactionCodec, next_refund_sequence, signing_context

logger = logging.getLogger(__name__)

T = TypeVar("T")

# (amount_sats, payment_hash, memo) -> encoded invoice
InvoiceCreator = Callable[[int, bytes, Optional[str]], Awaitable[Optional[str]]]


class LightningSendProvider(Protocol):
    """The SSP pays the invoice once it owns the wallet's leaves."""

    async def request_lightning_send(
        self,
        encoded_invoice: str,
        idempotency_key: str,
    ) -> Any: ...


def random_preimage() -> bytes:
    """32 random bytes reduced below the group order, so they can be shared."""
    value = int.from_bytes(secrets.token_bytes(SCALAR_BYTES), "big") % ORDER
    return value.to_bytes(SCALAR_BYTES, "big")


class LightningService:

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

    async def _on_operator(
        self,
        operator: SigningOperator,
        call: Callable[[OperatorClient], Awaitable[T]],
    ) -> T:
        return await call_operator(self.connection_manager, operator, call)

    # receive ----------------------------------------------------------------
    async def create_lightning_invoice(
        self,
        invoice_creator: InvoiceCreator,
        amount_sats: int,
        memo: Optional[str] = None,
    ) -> str:
        return await self.create_lightning_invoice_with_preimage(
            invoice_creator, amount_sats, random_preimage(), memo,
        )

    async def create_lightning_invoice_with_preimage(
        self,
        invoice_creator: InvoiceCreator,
        amount_sats: int,
        preimage: bytes,
        memo: Optional[str] = None,
    ) -> str:
        """
        Create an invoice for ``sha256(preimage)`` and store one share of
        *preimage* at every operator.  All operators must accept theirs.
        """
        if amount_sats <= 0:
            raise ValueError("invoice amount must be positive")
        digest = compute_payment_hash(preimage)
        invoice = await invoice_creator(amount_sats, digest, memo)
        if not invoice:
            raise LeafTransferError("invoice creator returned no invoice")

        operators = sorted(self.config.signing_operators.values(), key=lambda op: op.id)
        shares = self.signer.split_secret_with_proofs(
            preimage, self.config.threshold, len(operators),
        )
        identity = self.signer.identity_public_key

        async def store(op: SigningOperator) -> None:
            share = find_share(shares, op.id)
            request = StorePreimageShareRequest(
                payment_hash=digest,
                preimage_share=SecretShareTweak(
                    secret_share=share.share_bytes(),
                    proofs=tuple(share.proof_bytes()),
                ),
                threshold=self.config.threshold,
                invoice_string=invoice,
                user_identity_public_key=identity,
            )
            await self._on_operator(op, lambda c: c.store_preimage_share(request))

        await fan_out(operators, store, Require.ALL, phase="store_preimage_share")
        logger.info("stored preimage shares for payment %s", digest.hex()[:12])
        return invoice

    # send -------------------------------------------------------------------
    async def swap_nodes_for_preimage(
        self,
        leaves: Sequence[LeafKeyTweak],
        receiver_identity_public_key: bytes,
        payment_hash: bytes,
        is_inbound_payment: bool,
        invoice_string: str = "",
        invoice_amount_sats: int = 0,
        fee_sats: int = 0,
    ) -> InitiatePreimageSwapResponse:
        """
        Offer *leaves* (refunds signed to *receiver_identity_public_key*)
        in exchange for the preimage of *payment_hash*.
        """
        coordinator = self.config.coordinator
        commitments = await self._on_operator(
            coordinator,
            lambda c: c.get_signing_commitments(GetSigningCommitmentsRequest(
                node_ids=tuple(leaf.leaf.id for leaf in leaves),
            )),
        )
        if len(commitments.signing_commitments) != len(leaves):
            raise InconsistentOperatorResponse(
                f"asked commitments for {len(leaves)} leaves, "
                f"got {len(commitments.signing_commitments)}"
            )
        refunds = self._sign_refunds(
            leaves, commitments.signing_commitments, receiver_identity_public_key,
        )

        reason = PreimageSwapReason.RECEIVE if is_inbound_payment else PreimageSwapReason.SEND
        request = InitiatePreimageSwapRequest(
            payment_hash=payment_hash,
            user_signed_refunds=tuple(refunds),
            reason=reason,
            invoice_amount=InvoiceAmount(
                value_sats=invoice_amount_sats, bolt11_invoice=invoice_string,
            ),
            transfer=StartSendTransferRequest(
                transfer_id=str(uuid.uuid4()),
                owner_identity_public_key=self.signer.identity_public_key,
                receiver_identity_public_key=receiver_identity_public_key,
                expiry_time=datetime.now(timezone.utc) + self.config.preimage_swap_expiry,
            ),
            receiver_identity_public_key=receiver_identity_public_key,
            fee_sats=fee_sats,
        )
        logger.info(
            "initiating preimage swap (%s) of %d leaves for payment %s",
            reason.value, len(leaves), payment_hash.hex()[:12],
        )
        return await self._on_operator(coordinator, lambda c: c.initiate_preimage_swap(request))

    def _sign_refunds(
        self,
        leaves: Sequence[LeafKeyTweak],
        signing_commitments: Sequence[Dict[str, SigningCommitment]],
        receiver_identity_public_key: bytes,
    ) -> List[UserSignedRefund]:
        refunds = []
        for leaf, operator_commitments in zip(leaves, signing_commitments):
            ctx = signing_context(leaf.leaf, self.codec)
            refund_tx = self.codec.create_refund_tx(
                next_refund_sequence(leaf.leaf, self.codec),
                ctx.node_outpoint,
                ctx.amount_sats,
                receiver_identity_public_key,
                self.config.network.value,
            )
            sighash = self.codec.sighash(refund_tx, 0, ctx.node_output)
            commitment = self.signer.get_random_signing_commitment()
            user_signature = self.signer.sign_frost(
                sighash,
                leaf.signing_public_key,
                leaf.leaf.verifying_public_key,
                commitment,
                operator_commitments,
            )
            refunds.append(UserSignedRefund(
                node_id=leaf.leaf.id,
                refund_tx=refund_tx,
                user_signature=signing_share_bytes(user_signature),
                user_signature_commitment=commitment,
                signing_commitments=dict(operator_commitments),
                network=self.config.network.value,
            ))
        return refunds

    async def query_user_signed_refunds(self, payment_hash: bytes) -> List[UserSignedRefund]:
        request = QueryUserSignedRefundsRequest(payment_hash=payment_hash)
        return await self._on_operator(
            self.config.coordinator, lambda c: c.query_user_signed_refunds(request),
        )

    def validate_user_signed_refund(self, refund: UserSignedRefund) -> int:
        """Amount the refund pays out, in satoshis."""
        return self.codec.output_amount(refund.refund_tx, 0)

    async def provide_preimage(self, preimage: bytes) -> Transfer:
        request = ProvidePreimageRequest(
            preimage=preimage, payment_hash=compute_payment_hash(preimage),
        )
        return await self._on_operator(
            self.config.coordinator, lambda c: c.provide_preimage(request),
        )
