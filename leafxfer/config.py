"""
Wallet configuration: the signing-operator set and protocol defaults.

A configuration is loaded from a dict or JSON document::

    {
      "network": "REGTEST",
      "threshold": 2,
      "coordinator_identifier": "00…01",
      "signing_operators": [
        {"id": 0, "address": "https://so0.example", "identity_public_key": "02…"},
        …
      ]
    }

Operator identifiers default to the operator's share index (id + 1)
written as 64 hex digits, the identifier FROST signing uses.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Mapping

from .signing import operator_identifier


class Network(Enum):
    MAINNET = "MAINNET"
    TESTNET = "TESTNET"
    SIGNET = "SIGNET"
    REGTEST = "REGTEST"
    LOCAL = "LOCAL"


DEFAULT_TRANSFER_EXPIRY = timedelta(minutes=10)
DEFAULT_SWAP_EXPIRY = timedelta(minutes=2)
DEFAULT_COOP_EXIT_EXPIRY = timedelta(minutes=24)
DEFAULT_PREIMAGE_SWAP_EXPIRY = timedelta(minutes=2)

# swap service provider identity keys
SSP_IDENTITY_PUBLIC_KEYS = {
    Network.MAINNET: bytes.fromhex(
        "02e0b8d42c5d3b5fe4c5beb6ea796ab3bc8aaf28a3d3195407482c67e0b58228a5"
    ),
}
DEFAULT_SSP_IDENTITY_PUBLIC_KEY = bytes.fromhex(
    "028c094a432d46a0ac95349d792c2e3730bd60c29188db716f56a99e39b95338b4"
)


def default_ssp_identity_public_key(network: Network) -> bytes:
    return SSP_IDENTITY_PUBLIC_KEYS.get(network, DEFAULT_SSP_IDENTITY_PUBLIC_KEY)


@dataclass(frozen=True)
class SigningOperator:
    """One member of the operator set."""

    id: int
    address: str
    identity_public_key: bytes
    identifier: str = ""

    def __post_init__(self) -> None:
        if self.id < 0:
            raise ValueError(f"operator id must be ≥ 0, got {self.id}")
        if not self.identifier:
            object.__setattr__(self, "identifier", operator_identifier(self.id))

    @property
    def share_index(self) -> int:
        return self.id + 1


@dataclass
class WalletConfig:
    """
    Validated protocol configuration.

    Attributes
    ----------
    signing_operators : dict[str, SigningOperator]
        Operator set keyed by identifier.
    coordinator_identifier : str
        The operator that sequences start/finalize calls.
    threshold : int
        Operators needed to sign or reconstruct, 1 ≤ t ≤ n.
    network : Network
    ssp_identity_public_key : bytes
        Identity key of the swap service provider (leaf swaps).
    """

    signing_operators: Dict[str, SigningOperator]
    coordinator_identifier: str
    threshold: int
    network: Network = Network.REGTEST
    ssp_identity_public_key: bytes = b""
    transfer_expiry: timedelta = DEFAULT_TRANSFER_EXPIRY
    swap_expiry: timedelta = DEFAULT_SWAP_EXPIRY
    coop_exit_expiry: timedelta = DEFAULT_COOP_EXIT_EXPIRY
    preimage_swap_expiry: timedelta = DEFAULT_PREIMAGE_SWAP_EXPIRY

    def __post_init__(self) -> None:
        n = len(self.signing_operators)
        if n == 0:
            raise ValueError("at least one signing operator is required")
        if not 1 <= self.threshold <= n:
            raise ValueError(f"threshold {self.threshold} not in 1..{n}")
        if self.coordinator_identifier not in self.signing_operators:
            raise ValueError(
                f"coordinator {self.coordinator_identifier} is not a signing operator"
            )
        ids = set()
        for ident, op in self.signing_operators.items():
            if ident != op.identifier:
                raise ValueError(f"operator keyed as {ident} has identifier {op.identifier}")
            if op.id in ids:
                raise ValueError(f"duplicate operator id {op.id}")
            ids.add(op.id)
        if not self.ssp_identity_public_key:
            self.ssp_identity_public_key = default_ssp_identity_public_key(self.network)

    # ── accessors ──────────────────────────────────────────────────────

    @property
    def coordinator(self) -> SigningOperator:
        return self.signing_operators[self.coordinator_identifier]

    @property
    def coordinator_address(self) -> str:
        return self.coordinator.address

    @property
    def num_operators(self) -> int:
        return len(self.signing_operators)

    # ── factories ──────────────────────────────────────────────────────

    @classmethod
    def from_operators(
        cls,
        operators: List[SigningOperator],
        threshold: int,
        coordinator_id: int = 0,
        **kwargs: Any,
    ) -> WalletConfig:
        by_ident = {op.identifier: op for op in operators}
        coordinator = next((op for op in operators if op.id == coordinator_id), None)
        if coordinator is None:
            raise ValueError(f"no operator with id {coordinator_id}")
        return cls(
            signing_operators=by_ident,
            coordinator_identifier=coordinator.identifier,
            threshold=threshold,
            **kwargs,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WalletConfig:
        operators = [
            SigningOperator(
                id=int(entry["id"]),
                address=entry["address"],
                identity_public_key=bytes.fromhex(entry["identity_public_key"]),
                identifier=entry.get("identifier", ""),
            )
            for entry in data["signing_operators"]
        ]
        by_ident = {op.identifier: op for op in operators}
        coordinator = data.get("coordinator_identifier") or operators[0].identifier

        kwargs: Dict[str, Any] = {}
        for name in ("transfer_expiry", "swap_expiry",
                     "coop_exit_expiry", "preimage_swap_expiry"):
            key = f"{name}_seconds"
            if key in data:
                kwargs[name] = timedelta(seconds=float(data[key]))

        return cls(
            signing_operators=by_ident,
            coordinator_identifier=coordinator,
            threshold=int(data["threshold"]),
            network=Network(data.get("network", Network.REGTEST.value)),
            ssp_identity_public_key=bytes.fromhex(data.get("ssp_identity_public_key", "")),
            **kwargs,
        )

    @classmethod
    def from_json(cls, text: str) -> WalletConfig:
        return cls.from_dict(json.loads(text))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "network": self.network.value,
            "threshold": self.threshold,
            "coordinator_identifier": self.coordinator_identifier,
            "ssp_identity_public_key": self.ssp_identity_public_key.hex(),
            "signing_operators": [
                {
                    "id": op.id,
                    "identifier": op.identifier,
                    "address": op.address,
                    "identity_public_key": op.identity_public_key.hex(),
                }
                for op in sorted(self.signing_operators.values(), key=lambda o: o.id)
            ],
            "transfer_expiry_seconds": self.transfer_expiry.total_seconds(),
            "swap_expiry_seconds": self.swap_expiry.total_seconds(),
            "coop_exit_expiry_seconds": self.coop_exit_expiry.total_seconds(),
            "preimage_swap_expiry_seconds": self.preimage_swap_expiry.total_seconds(),
        }
