"""
High-level wallet orchestration.

Provides a single ``Wallet`` class that ties the protocol services
(transfer, swap, cooperative exit, lightning) to one identity and one
operator set, and keeps a cache of the leaves the wallet owns.

Usage
-----
::

    from leafxfer import Wallet, WalletConfig, WalletSigner

    wallet = Wallet(config, connection_manager, WalletSigner(), codec, ssp)
    await wallet.sync()

    # Send
    transfer = await wallet.transfer(60_000, receiver_identity_public_key)

    # Receive
    await wallet.claim_transfers()

Sends (and everything else that spends leaves) run under one lock,
claims under another, so two concurrent sends can never pick the same
leaf or tweak one leaf twice.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, List, Optional, Protocol, Sequence

from .config import WalletConfig
from .coop_exit import (
    MIN_WITHDRAWAL_SATS,
    CoopExitProvider,
    CoopExitService,
    connector_outputs,
)
from .errors import (
    InconsistentOperatorResponse,
    LeafSelectionError,
    LeafTransferError,
    TimelockExhausted,
)
from .keys import WalletSigner
from .lightning import InvoiceCreator, LightningSendProvider, LightningService
from .models import Leaf, LeafKeyTweak, LeafStatus, NodeIds, OwnerIdentity, Transfer
from .rpc import ConnectionManager
from .selection import select_leaves, select_leaves_for_swap, total_value
from .state import is_claimable
from .swap import SwapProvider, SwapService
from .transaction import TransactionCodec, needs_refresh, next_sequence
from .transfer import TransferService

logger = logging.getLogger(__name__)


class ServiceProvider(SwapProvider, CoopExitProvider, LightningSendProvider, Protocol):
    """Everything the wallet asks of the swap service provider."""


class Wallet:
    """
    One identity's view of its leaves.

    Encapsulates the full lifecycle:
    1. Sync: load owned leaves, restore their signing keys, refresh
       timelocks that are about to run out.
    2. Spend: transfer, pay a lightning invoice, withdraw on-chain.
    3. Receive: claim incoming transfers.
    4. Reshape: swap leaves with the service provider.
    """

    def __init__(
        self,
        config: WalletConfig,
        connection_manager: ConnectionManager,
        signer: WalletSigner,
        codec: TransactionCodec,
        ssp: Optional[ServiceProvider] = None,
    ) -> None:
        self.config = config
        self.signer = signer
        self.codec = codec
        self.ssp = ssp

        self.transfer_service = TransferService(config, connection_manager, signer, codec)
        self.coop_exit_service = CoopExitService(config, connection_manager, signer, codec)
        self.lightning_service = LightningService(config, connection_manager, signer, codec)
        self.swap_service: Optional[SwapService] = None
        if ssp is not None:
            self.swap_service = SwapService(self.transfer_service, ssp, self.claim_transfers)

        self.leaves: List[Leaf] = []
        self._leaves_lock = asyncio.Lock()
        self._claim_lock = asyncio.Lock()

    # ── leaves ─────────────────────────────────────────────────────────

    async def get_leaves(self) -> List[Leaf]:
        """Available leaves owned by this identity, as the operators see them."""
        nodes = await self.transfer_service.query_nodes(
            OwnerIdentity(self.signer.identity_public_key),
        )
        return [node for node in nodes.values() if node.status == LeafStatus.AVAILABLE]

    async def get_balance(self) -> int:
        return total_value(await self.get_leaves())

    async def sync(self) -> None:
        """Reload the leaf cache and bring every timelock back in range."""
        async with self._leaves_lock:
            await self._load_leaves()
        logger.info("synced %d leaves (%d sats)", len(self.leaves), total_value(self.leaves))

    async def _load_leaves(self) -> None:
        self.leaves = await self.get_leaves()
        self.signer.restore_signing_keys(leaf.id for leaf in self.leaves)
        await self._refresh_timelock_nodes()
        await self._extend_timelock_nodes()

    def _leaf_key_tweaks(self, leaves: Sequence[Leaf]) -> List[LeafKeyTweak]:
        return [
            LeafKeyTweak(
                leaf=leaf,
                signing_public_key=self.signer.leaf_signing_key(leaf.id),
                new_signing_public_key=self.signer.generate_public_key(),
            )
            for leaf in leaves
        ]

    def _forget(self, leaves: Sequence[Leaf]) -> None:
        gone = {leaf.id for leaf in leaves}
        self.leaves = [leaf for leaf in self.leaves if leaf.id not in gone]

    async def _select_leaves(self, target_amount: int) -> List[Leaf]:
        """
        Leaves summing to exactly *target_amount*.

        If the current leaves cannot make exact change, one swap with
        the service provider reshapes them and selection runs again.
        """
        if target_amount <= 0:
            raise ValueError("target amount must be positive")
        leaves = await self.get_leaves()
        if not leaves:
            raise LeafSelectionError("no owned leaves")

        selected = select_leaves(leaves, target_amount)
        if total_value(selected) != target_amount:
            logger.info("no exact change for %d sats; swapping leaves", target_amount)
            await self._request_leaves_swap(target_amount=target_amount)
            self.leaves = await self.get_leaves()
            selected = select_leaves(self.leaves, target_amount)
            if total_value(selected) != target_amount:
                raise LeafSelectionError(
                    f"no exact change for {target_amount} sats after swapping"
                )
        return selected

    # ── timelocks ──────────────────────────────────────────────────────

    def _refund_needs_refresh(self, leaf: Leaf) -> bool:
        sequence = self.codec.input_sequence(leaf.refund_tx)
        try:
            return next_sequence(sequence, for_refresh=True).need_refresh
        except TimelockExhausted:
            return True

    async def refresh_timelock_nodes(self, node_id: Optional[str] = None) -> None:
        async with self._leaves_lock:
            await self._refresh_timelock_nodes(node_id)

    async def _refresh_timelock_nodes(self, node_id: Optional[str] = None) -> None:
        """
        Refresh *node_id*, or every cached leaf whose refund timelock
        cannot be decremented again.
        """
        if node_id is not None:
            to_refresh = [leaf for leaf in self.leaves if leaf.id == node_id]
            if not to_refresh:
                raise KeyError(f"leaf {node_id} not found")
        else:
            to_refresh = [leaf for leaf in self.leaves if self._refund_needs_refresh(leaf)]
        if not to_refresh:
            return

        nodes = await self.transfer_service.query_nodes(
            NodeIds(tuple(leaf.id for leaf in to_refresh)), include_parents=True,
        )
        for leaf in to_refresh:
            if leaf.parent_node_id is None:
                raise LeafTransferError(f"leaf {leaf.id} has no parent")
            parent = nodes.get(leaf.parent_node_id)
            if parent is None:
                raise InconsistentOperatorResponse(
                    f"parent {leaf.parent_node_id} of leaf {leaf.id} not returned"
                )
            refreshed = await self.transfer_service.refresh_timelock_nodes(
                [leaf], parent, self.signer.leaf_signing_key(leaf.id),
            )
            if len(refreshed) != 1:
                raise InconsistentOperatorResponse(
                    f"refresh of leaf {leaf.id} returned {len(refreshed)} nodes"
                )
            self._forget([leaf])
            self.leaves.append(refreshed[0])

    async def _extend_timelock_nodes(self) -> None:
        """Extend every cached leaf whose node timelock has run out."""
        to_extend = [
            leaf for leaf in self.leaves
            if needs_refresh(self.codec.input_sequence(leaf.node_tx))
        ]
        for leaf in to_extend:
            await self.transfer_service.extend_timelock(
                leaf, self.signer.leaf_signing_key(leaf.id),
            )
        if to_extend:
            self.leaves = await self.get_leaves()
            self.signer.restore_signing_keys(leaf.id for leaf in self.leaves)

    # ── transfers ──────────────────────────────────────────────────────

    async def transfer(
        self,
        amount_sats: int,
        receiver_identity_public_key: bytes,
    ) -> Transfer:
        """Send exactly *amount_sats* to *receiver_identity_public_key*."""
        async with self._leaves_lock:
            await self._load_leaves()
            leaves = await self._select_leaves(amount_sats)

            transfer = await self.transfer_service.send_transfer(
                self._leaf_key_tweaks(leaves), receiver_identity_public_key,
            )
            self._forget(leaves)
            return transfer

    async def get_pending_transfers(self) -> List[Transfer]:
        return await self.transfer_service.query_pending_transfers()

    async def claim_transfer(self, transfer: Transfer) -> List[Leaf]:
        async with self._claim_lock:
            return await self._claim_transfer(transfer)

    async def claim_transfers(self) -> bool:
        """Claim every claimable incoming transfer.  True if any was claimed."""
        async with self._claim_lock:
            claimed = False
            for transfer in await self.transfer_service.query_pending_transfers():
                if not is_claimable(transfer):
                    continue
                await self._claim_transfer(transfer)
                claimed = True
            return claimed

    async def _claim_transfer(self, transfer: Transfer) -> List[Leaf]:
        leaf_keys = self.transfer_service.verify_pending_transfer(transfer)
        tweaks = [
            LeafKeyTweak(
                leaf=transfer_leaf.leaf,
                signing_public_key=leaf_keys[transfer_leaf.leaf.id],
                new_signing_public_key=self.signer.leaf_signing_key(transfer_leaf.leaf.id),
            )
            for transfer_leaf in transfer.leaves
        ]
        claimed = await self.transfer_service.claim_transfer(transfer, tweaks)
        known = {leaf.id for leaf in self.leaves}
        self.leaves.extend(leaf for leaf in claimed if leaf.id not in known)
        logger.info("claimed transfer %s (%d leaves)", transfer.id, len(claimed))
        return claimed

    async def cancel_all_sender_initiated(self) -> List[str]:
        return await self.transfer_service.cancel_all_sender_initiated()

    # ── swaps ──────────────────────────────────────────────────────────

    async def request_leaves_swap(
        self,
        target_amount: Optional[int] = None,
        leaves: Optional[Sequence[Leaf]] = None,
    ) -> Any:
        async with self._leaves_lock:
            await self._load_leaves()
            if leaves:
                current = {leaf.id: leaf for leaf in self.leaves}
                leaves = [current.get(leaf.id, leaf) for leaf in leaves]
            return await self._request_leaves_swap(target_amount, leaves)

    async def _request_leaves_swap(
        self,
        target_amount: Optional[int] = None,
        leaves: Optional[Sequence[Leaf]] = None,
    ) -> Any:
        if self.swap_service is None:
            raise LeafTransferError("no swap service provider configured")
        if target_amount is not None and target_amount <= 0:
            raise ValueError("target amount must be positive")
        if leaves:
            to_swap = list(leaves)
        elif target_amount is not None:
            to_swap = select_leaves_for_swap(await self.get_leaves(), target_amount)
        else:
            raise ValueError("either a target amount or leaves are required")

        result = await self.swap_service.request_leaves_swap(to_swap, target_amount)
        self._forget(to_swap)
        return result

    # ── lightning ──────────────────────────────────────────────────────

    async def create_lightning_invoice(
        self,
        invoice_creator: InvoiceCreator,
        amount_sats: int,
        memo: Optional[str] = None,
    ) -> str:
        return await self.lightning_service.create_lightning_invoice(
            invoice_creator, amount_sats, memo,
        )

    async def pay_lightning_invoice(
        self,
        invoice: str,
        amount_sats: int,
        payment_hash: bytes,
    ) -> Any:
        """
        Hand leaves worth *amount_sats* to the service provider in
        exchange for it paying *invoice*.
        """
        if self.ssp is None:
            raise LeafTransferError("no swap service provider configured")
        if amount_sats <= 0:
            raise ValueError("invoice amount must be positive")

        async with self._leaves_lock:
            await self._load_leaves()
            leaves = await self._select_leaves(amount_sats)
            tweaks = self._leaf_key_tweaks(leaves)

            response = await self.lightning_service.swap_nodes_for_preimage(
                tweaks,
                self.config.ssp_identity_public_key,
                payment_hash,
                is_inbound_payment=False,
                invoice_string=invoice,
                invoice_amount_sats=amount_sats,
            )
            if response.transfer is None:
                raise InconsistentOperatorResponse("preimage swap returned no transfer")

            await self.transfer_service.send_transfer_tweak_key(response.transfer, tweaks, {})
            result = await self.ssp.request_lightning_send(invoice, payment_hash.hex())
            if result is None:
                raise LeafTransferError("service provider did not accept the payment")
            self._forget(leaves)
            return result

    # ── cooperative exit ───────────────────────────────────────────────

    async def withdraw(
        self,
        onchain_address: str,
        amount_sats: Optional[int] = None,
    ) -> Any:
        """
        Exit *amount_sats* (default: everything) to *onchain_address*.
        """
        if amount_sats is not None and amount_sats < MIN_WITHDRAWAL_SATS:
            raise ValueError(f"the minimum withdrawal is {MIN_WITHDRAWAL_SATS} sats")
        if self.ssp is None:
            raise LeafTransferError("no swap service provider configured")

        async with self._leaves_lock:
            await self._load_leaves()
            if amount_sats is not None:
                leaves = await self._select_leaves(amount_sats)
            else:
                leaves = await self.get_leaves()
            if total_value(leaves) < MIN_WITHDRAWAL_SATS:
                raise ValueError(f"the minimum withdrawal is {MIN_WITHDRAWAL_SATS} sats")
            tweaks = self._leaf_key_tweaks(leaves)

            request = await self.ssp.request_coop_exit(
                [leaf.id for leaf in leaves], onchain_address, str(uuid.uuid4()),
            )
            if request is None:
                raise LeafTransferError("service provider refused the exit")
            connector_tx = request.raw_connector_transaction
            result = await self.coop_exit_service.get_connector_refund_signatures(
                tweaks,
                self.codec.input_outpoint(connector_tx, 0).txid,
                connector_outputs(self.codec, connector_tx),
                self.config.ssp_identity_public_key,
            )
            completed = await self.ssp.complete_coop_exit(result.transfer.id, request.id)
            self._forget(leaves)
            return completed

    # ── accessors ──────────────────────────────────────────────────────

    @property
    def identity_public_key(self) -> bytes:
        return self.signer.identity_public_key

    def __repr__(self) -> str:
        return (
            f"Wallet({self.identity_public_key.hex()[:12]}, "
            f"{len(self.leaves)} leaves, network={self.config.network.name})"
        )
