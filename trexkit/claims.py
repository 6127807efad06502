"""
Identity claims.

A claim binds (identity, topic, data) to an issuer. The issuer's signing key
signs

    digest = keccak256(abi.encode(address identity, uint256 topic, bytes data))

as an EIP-191 personal message, and the claim is stored on the holder's
identity contract with ``addClaim``. On the ledger a claim is valid when the
recovered signer's key hash holds the CLAIM purpose on the issuer contract.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Optional, Union

from eth_abi import encode
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys.exceptions import BadSignature, ValidationError
from eth_utils import keccak, to_checksum_address

from trexkit.errors import InputValidationError
from trexkit.ledger import Receipt, Signer
from trexkit.observability import SuiteLayer, get_logger
from trexkit.session import DeploymentSession
from trexkit.validation import INTEGER_PATTERN, require_address

logger = get_logger("claims", SuiteLayer.CLAIMS)

UINT256_MAX = 2 ** 256 - 1


class KeyPurpose(IntEnum):
    """ERC-734 key purposes. MANAGEMENT implies every other purpose."""
    MANAGEMENT = 1
    ACTION = 2
    CLAIM = 3
    ENCRYPTION = 4


class KeyType(IntEnum):
    ECDSA = 1
    RSA = 2


ECDSA_SCHEME = 1


def key_hash(address: str) -> bytes:
    """ERC-734 key id of an Ethereum address."""
    return keccak(encode(["address"], [to_checksum_address(address)]))


def topic_id(value: Union[int, str]) -> int:
    """
    Claim topic id.

    Integers and numeric strings (decimal or 0x-hex) are taken literally;
    any other string is a topic name hashed with keccak256.
    """
    if isinstance(value, bool):
        raise InputValidationError("topic", "must be a topic name or uint256", value)
    if isinstance(value, int):
        topic = value
    else:
        text = str(value).strip()
        if not text:
            raise InputValidationError("topic", "must be a topic name or uint256", value)
        if INTEGER_PATTERN.match(text):
            topic = int(text)
        elif text.lower().startswith("0x"):
            try:
                topic = int(text, 16)
            except ValueError:
                raise InputValidationError("topic", "malformed hex topic", value) from None
        else:
            topic = int.from_bytes(keccak(text=text), "big")
    if topic < 0 or topic > UINT256_MAX:
        raise InputValidationError("topic", "out of uint256 range", value)
    return topic


def claim_id(issuer: str, topic: int) -> bytes:
    """Id under which an identity stores the claim of ``issuer`` for ``topic``."""
    return keccak(encode(["address", "uint256"], [to_checksum_address(issuer), topic]))


def claim_digest(identity: str, topic: int, data: bytes) -> bytes:
    return keccak(encode(
        ["address", "uint256", "bytes"],
        [to_checksum_address(identity), topic, bytes(data)],
    ))


def recover_digest_signer(digest: bytes, signature: bytes) -> Optional[str]:
    """Address that produced ``signature`` over the prefixed digest, or None."""
    try:
        return Account.recover_message(encode_defunct(primitive=digest), signature=bytes(signature))
    except (ValueError, BadSignature, ValidationError):
        return None


def recover_claim_signer(identity: str, topic: int, data: bytes, signature: bytes) -> Optional[str]:
    return recover_digest_signer(claim_digest(identity, topic, data), signature)


def encode_claim_data(data: Union[str, bytes]) -> bytes:
    """Claim data is opaque bytes; text is carried as UTF-8."""
    return data.encode("utf-8") if isinstance(data, str) else bytes(data)


@dataclass(frozen=True)
class Claim:
    """A signed claim as stored on an identity contract."""
    identity: str
    topic: int
    scheme: int
    issuer: str
    signature: bytes
    data: bytes
    uri: str = ""

    @property
    def id(self) -> bytes:
        return claim_id(self.issuer, self.topic)

    @property
    def digest(self) -> bytes:
        return claim_digest(self.identity, self.topic, self.data)

    def as_call_args(self) -> list:
        """Arguments of ``Identity.addClaim``."""
        return [self.topic, self.scheme, self.issuer, self.signature, self.data, self.uri]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity": self.identity,
            "topic": self.topic,
            "scheme": self.scheme,
            "issuer": self.issuer,
            "signature": "0x" + self.signature.hex(),
            "data": "0x" + self.data.hex(),
            "uri": self.uri,
            "id": "0x" + self.id.hex(),
        }


def sign_claim(
    signing_key: Signer,
    identity: str,
    topic: int,
    data: Union[str, bytes],
    issuer: str,
    uri: str = "",
    scheme: int = ECDSA_SCHEME,
) -> Claim:
    """Build and sign a claim off-chain."""
    identity = require_address("identity", identity)
    issuer = require_address("issuer", issuer)
    payload = encode_claim_data(data)
    signature = signing_key.sign_digest(claim_digest(identity, topic, payload))
    return Claim(
        identity=identity,
        topic=topic,
        scheme=scheme,
        issuer=issuer,
        signature=signature,
        data=payload,
        uri=uri,
    )


def verify_claim(claim: Claim, signing_key_address: str) -> bool:
    """True when the claim's signature was made by ``signing_key_address``."""
    signer = recover_claim_signer(claim.identity, claim.topic, claim.data, claim.signature)
    return signer is not None and signer == to_checksum_address(signing_key_address)


class ClaimIssuanceEngine:
    """
    Signs claims with the issuer's signing key and stores them on identities.

    The holder submits ``addClaim`` on its own identity; the identity contract
    checks the claim with the issuer, so nothing is verified here first.
    """

    def __init__(self, session: DeploymentSession, issuer_contract: str, signing_key: Signer):
        self.session = session
        self.issuer_contract = require_address("claim issuer contract", issuer_contract)
        self.signing_key = signing_key
        self.issued: list = []

    def issue(
        self,
        identity: str,
        holder: Signer,
        topic: int,
        data: Union[str, bytes],
        uri: str = "",
        scheme: int = ECDSA_SCHEME,
    ) -> Claim:
        claim = sign_claim(self.signing_key, identity, topic, data, self.issuer_contract, uri, scheme)
        self.session.transact(
            claim.identity,
            "Identity",
            "addClaim",
            claim.as_call_args(),
            holder,
            step=f"addClaim {claim.identity}",
        )
        self.issued.append(claim)
        logger.info(
            "Claim issued",
            identity=claim.identity,
            topic=hex(topic),
            issuer=claim.issuer,
            claim_id="0x" + claim.id.hex(),
        )
        return claim


def register_signing_key(
    session: DeploymentSession,
    issuer_contract: str,
    signing_key_address: str,
    manager: Signer,
) -> Receipt:
    """Give the signing key the CLAIM purpose on the issuer contract."""
    return add_identity_key(
        session, issuer_contract, signing_key_address, KeyPurpose.CLAIM, manager,
        step="ClaimIssuer.addKey (claim signing key)",
    )


def add_identity_key(
    session: DeploymentSession,
    identity: str,
    key_address: str,
    purpose: int,
    manager: Signer,
    step: Optional[str] = None,
) -> Receipt:
    """``addKey(keccak256(abi.encode(key_address)), purpose, ECDSA)`` as a management key."""
    key_address = require_address("key", key_address)
    receipt = session.transact(
        identity,
        "Identity",
        "addKey",
        [key_hash(key_address), int(purpose), int(KeyType.ECDSA)],
        manager,
        step=step or f"Identity.addKey {key_address} purpose {int(purpose)}",
    )
    logger.info("Key added", identity=identity, key=key_address, purpose=int(purpose))
    return receipt
