"""
leafxfer: off-chain leaf ownership transfer with threshold operators.

A leaf is an off-chain unit of Bitcoin value whose signing key is the
sum of a wallet key and a key the operators hold in t-of-n secret
shares.  Ownership moves by:

- **Feldman-verified Shamir sharing** of the key tweak  old − new  to
  every operator, accepted unanimously or rolled back;
- **FROST two-round signing** [Komlo & Goldberg, SAC 2020] of the new
  owner's refund transaction, aggregated into a BIP-340 signature;
- **Adaptor signatures** binding the two halves of a leaf swap.

Quick start
-----------
::

    from leafxfer import Wallet, WalletConfig, WalletSigner

    config = WalletConfig.from_json(open("operators.json").read())
    wallet = Wallet(config, connection_manager, WalletSigner(), codec, ssp)

    await wallet.sync()
    transfer = await wallet.transfer(60_000, receiver_identity_public_key)
"""

__version__ = "0.1.0"

# ── core types ──────────────────────────────────────────────────────────
from .curve import Scalar, Point, G, ORDER

# ── wallet ──────────────────────────────────────────────────────────────
from .wallet import Wallet, ServiceProvider
from .config import Network, SigningOperator, WalletConfig
from .keys import KeyStore, InMemoryKeyStore, WalletSigner

# ── protocol services ───────────────────────────────────────────────────
from .transfer import TransferService, SignRefundResult
from .swap import SwapService, SwapProvider, UserLeaf, SwapLeaf, LeavesSwapRequest
from .coop_exit import CoopExitService, CoopExitProvider, CoopExitRequest
from .lightning import LightningService, LightningSendProvider
from .fanout import Require, FanOutResult, fan_out

# ── entities ────────────────────────────────────────────────────────────
from .models import (
    Leaf,
    LeafStatus,
    LeafKeyTweak,
    Transfer,
    TransferLeaf,
    TransferStatus,
    SignatureIntent,
)
from .transaction import OutPoint, TransactionCodec

# ── cryptographic building blocks ───────────────────────────────────────
from .secret_sharing import (
    SecretShare,
    VerifiableSecretShare,
    split_secret,
    split_secret_with_proofs,
    recover_secret,
    validate_share,
)
from .signing import (
    Signature,
    SigningCommitment,
    SigningSession,
    verify_signature,
)
from .adaptor import (
    AdaptorPair,
    generate_adaptor_from_signature,
    apply_adaptor_to_signature,
    validate_outbound_adaptor_signature,
    extract_adaptor_secret,
)

# ── errors ──────────────────────────────────────────────────────────────
from .errors import (
    LeafTransferError,
    InsufficientShares,
    InvalidShare,
    AggregationMismatch,
    InconsistentOperatorResponse,
    ShareNotFoundForOperator,
    TransferExpired,
    ClaimVerificationFailed,
    OperatorCallError,
    OperatorFanOutError,
    PartialKeyTweakError,
)

__all__ = [
    # version
    "__version__",
    # core
    "Scalar", "Point", "G", "ORDER",
    # wallet
    "Wallet", "ServiceProvider", "Network", "SigningOperator", "WalletConfig",
    "KeyStore", "InMemoryKeyStore", "WalletSigner",
    # services
    "TransferService", "SignRefundResult",
    "SwapService", "SwapProvider", "UserLeaf", "SwapLeaf", "LeavesSwapRequest",
    "CoopExitService", "CoopExitProvider", "CoopExitRequest",
    "LightningService", "LightningSendProvider",
    "Require", "FanOutResult", "fan_out",
    # entities
    "Leaf", "LeafStatus", "LeafKeyTweak", "Transfer", "TransferLeaf",
    "TransferStatus", "SignatureIntent", "OutPoint", "TransactionCodec",
    # secret sharing
    "SecretShare", "VerifiableSecretShare", "split_secret",
    "split_secret_with_proofs", "recover_secret", "validate_share",
    # signing
    "Signature", "SigningCommitment", "SigningSession", "verify_signature",
    # adaptor
    "AdaptorPair", "generate_adaptor_from_signature",
    "apply_adaptor_to_signature", "validate_outbound_adaptor_signature",
    "extract_adaptor_secret",
    # errors
    "LeafTransferError", "InsufficientShares", "InvalidShare",
    "AggregationMismatch", "InconsistentOperatorResponse",
    "ShareNotFoundForOperator", "TransferExpired", "ClaimVerificationFailed",
    "OperatorCallError", "OperatorFanOutError", "PartialKeyTweakError",
]
