"""
Ledger access layer.

The provisioner needs four primitives from a ledger: deploy a contract, submit
a state-changing call, wait for a confirmation receipt, and run a read-only
query. LedgerAdapter is the protocol every backend implements:

    ┌──────────────────────────────────────────────────────────────┐
    │               DeploymentSession (session.py)                  │
    │   deploy → confirm → address      submit → confirm → receipt  │
    └──────────────────────────────┬───────────────────────────────┘
                                   │ LedgerAdapter
                 ┌─────────────────┴──────────────────┐
                 ▼                                    ▼
        ┌─────────────────┐                 ┌──────────────────┐
        │   Web3Ledger    │                 │  InMemoryLedger  │
        │ JSON-RPC + ABIs │                 │  (simulator.py)  │
        └─────────────────┘                 └──────────────────┘

Signers wrap either a local eth-account key (transactions are signed here and
sent raw) or an address managed by the node (``eth_sendTransaction``).

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Union

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from eth_utils import to_checksum_address
from web3 import Web3
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    TimeExhausted,
    TransactionNotFound,
    Web3Exception,
)

from trexkit.errors import (
    ConfirmationTimeout,
    LedgerCallError,
    PreconditionError,
    TransactionRejected,
    TransactionReverted,
)
from trexkit.observability import SuiteLayer, get_logger
from trexkit.validation import require_private_key

logger = get_logger("ledger", SuiteLayer.LEDGER)


# =============================================================================
# NETWORK DEFINITIONS
# =============================================================================

class Network(Enum):
    """Networks the provisioner knows defaults for."""
    MEMORY = "memory"
    HARDHAT = "hardhat"
    LOCALHOST = "localhost"
    SEPOLIA = "sepolia"
    ARBITRUM_SEPOLIA = "arbitrum-sepolia"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, name: str) -> "Network":
        normalized = name.strip().lower()
        for network in cls:
            if network.value == normalized:
                return network
        return cls.CUSTOM

    @property
    def default_rpc_url(self) -> str:
        return {
            Network.HARDHAT: "http://127.0.0.1:8545",
            Network.LOCALHOST: "http://127.0.0.1:8545",
        }.get(self, "")


# =============================================================================
# SIGNERS
# =============================================================================

class Signer:
    """
    A signing identity.

    ``account`` is set for key-backed signers; node-managed signers only carry
    an address and can submit transactions but not sign arbitrary digests.
    """

    def __init__(self, address: str, account: Optional[LocalAccount] = None, label: str = ""):
        self.address = to_checksum_address(address)
        self.account = account
        self.label = label

    @classmethod
    def from_private_key(cls, private_key: str, label: str = "") -> "Signer":
        key = require_private_key(label or "private key", private_key)
        account = Account.from_key(key)
        return cls(account.address, account, label)

    @classmethod
    def random(cls, label: str = "") -> "Signer":
        account = Account.create()
        return cls(account.address, account, label)

    @property
    def has_key(self) -> bool:
        return self.account is not None

    def sign_digest(self, digest: bytes) -> bytes:
        """
        EIP-191 personal-message signature over a 32-byte digest.

        Equivalent to ethers' ``signMessage(arrayify(digest))``: the digest is
        prefixed with ``"\\x19Ethereum Signed Message:\\n32"`` and re-hashed
        before signing.
        """
        if self.account is None:
            raise PreconditionError(
                f"signer {self.address} has no local key and cannot sign claim digests"
            )
        signed = self.account.sign_message(encode_defunct(primitive=digest))
        return bytes(signed.signature)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Signer) and other.address == self.address

    def __hash__(self) -> int:
        return hash(self.address)

    def __repr__(self) -> str:
        kind = "key" if self.account else "node"
        label = f" {self.label}" if self.label else ""
        return f"<Signer{label} {self.address} ({kind})>"


# =============================================================================
# TRANSACTIONS & RECEIPTS
# =============================================================================

@dataclass(frozen=True)
class LogRecord:
    """One opaque receipt log."""
    address: str
    topics: Sequence[bytes]
    data: bytes
    log_index: int = 0


@dataclass
class Receipt:
    """Confirmation receipt for a deployment or call."""
    tx_hash: str
    status: int
    block_number: int = 0
    gas_used: int = 0
    contract_address: Optional[str] = None
    logs: List[LogRecord] = field(default_factory=list)
    revert_reason: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == 1


@dataclass(frozen=True)
class PendingTransaction:
    """Handle for a submitted, not yet confirmed transaction."""
    tx_hash: str
    description: str
    sender: str
    kind: str  # "deploy" or "call"


class LedgerAdapter(Protocol):
    """
    Protocol for ledger backends.

    ``confirm`` returns the receipt for any mined transaction, failed ones
    included; turning a failure status into an error is the session's job.
    """

    @property
    def network(self) -> Network:
        ...

    def pool_signers(self) -> List[Signer]:
        """Signers available without explicit key material."""
        ...

    def deploy(self, contract: str, args: Sequence[Any], signer: Signer) -> PendingTransaction:
        ...

    def submit(
        self,
        address: str,
        contract: str,
        function: str,
        args: Sequence[Any],
        signer: Signer,
    ) -> PendingTransaction:
        ...

    def confirm(self, pending: PendingTransaction, timeout: float) -> Receipt:
        ...

    def call(self, address: str, contract: str, function: str, args: Sequence[Any]) -> Any:
        ...

    def get_code(self, address: str) -> bytes:
        ...


# =============================================================================
# CONTRACT ARTIFACTS
# =============================================================================

@dataclass(frozen=True)
class ContractArtifact:
    """Compiled contract: ABI plus creation bytecode."""
    name: str
    abi: List[Dict[str, Any]]
    bytecode: str
    path: Optional[Path] = None


class ArtifactStore:
    """
    Locates compiled contract artifacts by contract name.

    Reads Hardhat-style JSON files (``<Name>.json`` holding ``abi`` and
    ``bytecode``) from a list of directories searched recursively in order.
    Debug files (``*.dbg.json``) are skipped.
    """

    def __init__(self, directories: Iterable[Union[str, Path]]):
        self._directories = [Path(d) for d in directories]
        self._cache: Dict[str, ContractArtifact] = {}

    def register(self, artifact: ContractArtifact) -> None:
        self._cache[artifact.name] = artifact

    def get(self, name: str) -> ContractArtifact:
        if name in self._cache:
            return self._cache[name]

        for directory in self._directories:
            if not directory.is_dir():
                continue
            for path in sorted(directory.rglob(f"{name}.json")):
                if path.name.endswith(".dbg.json"):
                    continue
                data = json.loads(path.read_text(encoding="utf-8"))
                if "abi" not in data:
                    continue
                artifact = ContractArtifact(
                    name=name,
                    abi=data["abi"],
                    bytecode=data.get("bytecode") or "0x",
                    path=path,
                )
                self._cache[name] = artifact
                return artifact

        searched = ", ".join(str(d) for d in self._directories) or "<none>"
        raise PreconditionError(
            f"No compiled artifact for contract '{name}' (searched: {searched}). "
            "Compile the contracts or point TREX_ARTIFACTS_DIR at the artifacts."
        )


# =============================================================================
# WEB3 LEDGER
# =============================================================================

class Web3Ledger:
    """LedgerAdapter over a JSON-RPC node via web3.py."""

    def __init__(self, w3: Web3, artifacts: ArtifactStore, network: Network = Network.CUSTOM,
                 poll_latency: float = 0.5):
        self._w3 = w3
        self._artifacts = artifacts
        self._network = network
        self._poll_latency = poll_latency

    @classmethod
    def connect(cls, rpc_url: str, artifacts: ArtifactStore, network: Network = Network.CUSTOM,
                poll_latency: float = 0.5) -> "Web3Ledger":
        if not rpc_url:
            raise PreconditionError(
                f"No RPC URL for network '{network.value}'. Set TREX_RPC_URL."
            )
        w3 = Web3(Web3.HTTPProvider(rpc_url))
        if not w3.is_connected():
            raise PreconditionError(f"Unable to reach a node at {rpc_url}")
        logger.info("Connected to ledger", network=network.value, chain_id=w3.eth.chain_id)
        return cls(w3, artifacts, network, poll_latency)

    @property
    def network(self) -> Network:
        return self._network

    @property
    def web3(self) -> Web3:
        return self._w3

    def pool_signers(self) -> List[Signer]:
        return [
            Signer(address, label=f"node-{index}")
            for index, address in enumerate(self._w3.eth.accounts)
        ]

    def _contract(self, contract: str, address: Optional[str] = None) -> Any:
        artifact = self._artifacts.get(contract)
        if address is None:
            return self._w3.eth.contract(abi=artifact.abi, bytecode=artifact.bytecode)
        return self._w3.eth.contract(address=to_checksum_address(address), abi=artifact.abi)

    def _send(self, buildable: Any, signer: Signer, description: str, kind: str) -> PendingTransaction:
        try:
            if signer.account is not None:
                tx = buildable.build_transaction({
                    "from": signer.address,
                    "nonce": self._w3.eth.get_transaction_count(signer.address, "pending"),
                    "chainId": self._w3.eth.chain_id,
                })
                signed = signer.account.sign_transaction(tx)
                tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
            else:
                tx_hash = buildable.transact({"from": signer.address})
        except ContractLogicError as e:
            raise TransactionReverted(description, reason=str(e)) from e
        except (Web3Exception, ValueError) as e:
            # nonce, funds and gas rejections never reach a block
            raise TransactionRejected(description, str(e)) from e

        return PendingTransaction(
            tx_hash=Web3.to_hex(tx_hash),
            description=description,
            sender=signer.address,
            kind=kind,
        )

    def deploy(self, contract: str, args: Sequence[Any], signer: Signer) -> PendingTransaction:
        factory = self._contract(contract)
        return self._send(factory.constructor(*args), signer, f"deploy {contract}", "deploy")

    def submit(
        self,
        address: str,
        contract: str,
        function: str,
        args: Sequence[Any],
        signer: Signer,
    ) -> PendingTransaction:
        instance = self._contract(contract, address)
        fn = instance.get_function_by_name(function)(*args)
        return self._send(fn, signer, f"{contract}.{function}", "call")

    def confirm(self, pending: PendingTransaction, timeout: float) -> Receipt:
        try:
            raw = self._w3.eth.wait_for_transaction_receipt(
                pending.tx_hash, timeout=timeout, poll_latency=self._poll_latency
            )
        except (TimeExhausted, TransactionNotFound) as e:
            raise ConfirmationTimeout(pending.description, pending.tx_hash, timeout) from e

        logs = [
            LogRecord(
                address=to_checksum_address(entry["address"]),
                topics=[bytes(topic) for topic in entry["topics"]],
                data=bytes(entry["data"]),
                log_index=int(entry.get("logIndex", index)),
            )
            for index, entry in enumerate(raw["logs"])
        ]
        contract_address = raw.get("contractAddress")
        return Receipt(
            tx_hash=pending.tx_hash,
            status=int(raw["status"]),
            block_number=int(raw["blockNumber"]),
            gas_used=int(raw["gasUsed"]),
            contract_address=to_checksum_address(contract_address) if contract_address else None,
            logs=logs,
        )

    def call(self, address: str, contract: str, function: str, args: Sequence[Any]) -> Any:
        instance = self._contract(contract, address)
        try:
            return instance.get_function_by_name(function)(*args).call()
        except (ContractLogicError, BadFunctionCallOutput) as e:
            raise LedgerCallError(f"{contract}.{function} query failed: {e}") from e

    def get_code(self, address: str) -> bytes:
        return bytes(self._w3.eth.get_code(to_checksum_address(address)))


def connect_ledger(
    network_name: str,
    rpc_url: str = "",
    artifact_dirs: Iterable[Union[str, Path]] = (),
    poll_latency: float = 0.5,
) -> LedgerAdapter:
    """Build the adapter for a network name; ``memory`` is the in-process simulator."""
    network = Network.parse(network_name)
    if network == Network.MEMORY:
        from trexkit.simulator import InMemoryLedger
        return InMemoryLedger()

    return Web3Ledger.connect(
        rpc_url or network.default_rpc_url,
        ArtifactStore(artifact_dirs),
        network,
        poll_latency,
    )
