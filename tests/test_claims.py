"""
Claim tests: digests, signatures, key hashes and on-ledger issuance.
"""

import pytest
from eth_abi import encode
from eth_utils import keccak

from trexkit.claims import (
    ClaimIssuanceEngine,
    KeyPurpose,
    add_identity_key,
    claim_digest,
    claim_id,
    encode_claim_data,
    key_hash,
    recover_claim_signer,
    register_signing_key,
    sign_claim,
    topic_id,
    verify_claim,
)
from trexkit.errors import InputValidationError, PreconditionError, StepFailed
from trexkit.ledger import Signer

IDENTITY = "0x5B38Da6a701c568545dCfcB03FcB875f56beddC4"
ISSUER = "0xAb8483F64d9C6d1EcF9b849Ae677dD3315835cb2"
SIGNING_KEY = Signer.from_private_key("0x" + "33" * 32, label="signing")


class TestTopics:
    """Topic ids."""

    def test_name_is_hashed(self):
        assert topic_id("CLAIM_TOPIC") == int.from_bytes(keccak(text="CLAIM_TOPIC"), "big")

    def test_decimal_string(self):
        assert topic_id("7") == 7

    def test_hex_string(self):
        assert topic_id("0x10") == 16

    def test_int_passthrough(self):
        assert topic_id(42) == 42

    @pytest.mark.parametrize("value", ["", "0xzz", -1, 2 ** 256, True])
    def test_invalid(self, value):
        with pytest.raises(InputValidationError):
            topic_id(value)


class TestHashes:
    """Key hashes, claim ids and digests."""

    def test_key_hash(self):
        assert key_hash(IDENTITY) == keccak(encode(["address"], [IDENTITY]))

    def test_key_hash_ignores_case(self):
        assert key_hash(IDENTITY.lower()) == key_hash(IDENTITY)

    def test_claim_id(self):
        assert claim_id(ISSUER, 7) == keccak(encode(["address", "uint256"], [ISSUER, 7]))

    def test_digest_layout(self):
        expected = keccak(encode(["address", "uint256", "bytes"], [IDENTITY, 7, b"data"]))
        assert claim_digest(IDENTITY, 7, b"data") == expected

    def test_digest_depends_on_every_field(self):
        base = claim_digest(IDENTITY, 7, b"data")
        assert claim_digest(ISSUER, 7, b"data") != base
        assert claim_digest(IDENTITY, 8, b"data") != base
        assert claim_digest(IDENTITY, 7, b"other") != base

    def test_text_data_is_utf8(self):
        assert encode_claim_data("Some claim public data.") == b"Some claim public data."


class TestSigning:
    """Off-chain signing and recovery."""

    def test_signature_recovers_signing_key(self):
        claim = sign_claim(SIGNING_KEY, IDENTITY, 7, "payload", ISSUER)
        assert len(claim.signature) == 65
        assert recover_claim_signer(IDENTITY, 7, b"payload", claim.signature) == SIGNING_KEY.address
        assert verify_claim(claim, SIGNING_KEY.address)

    def test_wrong_key_does_not_verify(self):
        claim = sign_claim(SIGNING_KEY, IDENTITY, 7, "payload", ISSUER)
        assert not verify_claim(claim, ISSUER)

    def test_garbage_signature_recovers_nothing(self):
        assert recover_claim_signer(IDENTITY, 7, b"payload", b"\x00" * 10) is None

    def test_claim_fields(self):
        claim = sign_claim(SIGNING_KEY, IDENTITY.lower(), 7, b"\x01\x02", ISSUER, uri="ipfs://x")
        assert claim.identity == IDENTITY
        assert claim.issuer == ISSUER
        assert claim.scheme == 1
        assert claim.id == claim_id(ISSUER, 7)
        assert claim.as_call_args() == [7, 1, ISSUER, claim.signature, b"\x01\x02", "ipfs://x"]
        assert claim.to_dict()["data"] == "0x0102"

    def test_node_signer_cannot_sign(self):
        with pytest.raises(PreconditionError, match="no local key"):
            sign_claim(Signer(IDENTITY), IDENTITY, 7, "payload", ISSUER)


class TestIssuance:
    """Issuing claims on the in-memory ledger."""

    @pytest.fixture
    def issuer_setup(self, session, pool):
        issuer_manager = pool[4]
        holder = pool[5]
        issuer = session.deploy("ClaimIssuer", [issuer_manager.address], issuer_manager)
        identity = session.deploy("Identity", [holder.address, False], holder)
        return issuer, identity, issuer_manager, holder

    def test_registered_signing_key_issues_valid_claim(self, session, issuer_setup):
        issuer, identity, manager, holder = issuer_setup
        register_signing_key(session, issuer, SIGNING_KEY.address, manager)
        assert session.query(issuer, "ClaimIssuer", "keyHasPurpose", [key_hash(SIGNING_KEY.address), 3])

        engine = ClaimIssuanceEngine(session, issuer, SIGNING_KEY)
        claim = engine.issue(identity, holder, 7, "hello")

        stored = session.query(identity, "Identity", "getClaim", [claim.id])
        assert stored[0] == 7
        assert stored[2] == issuer
        assert stored[3] == claim.signature
        assert engine.issued == [claim]
        assert session.query(issuer, "ClaimIssuer", "isClaimValid", [identity, 7, claim.signature, b"hello"])

    def test_unregistered_signing_key_is_rejected_on_ledger(self, session, issuer_setup):
        issuer, identity, _, holder = issuer_setup
        engine = ClaimIssuanceEngine(session, issuer, SIGNING_KEY)
        with pytest.raises(StepFailed) as exc:
            engine.issue(identity, holder, 7, "hello")
        assert "invalid claim" in str(exc.value)
        assert engine.issued == []

    def test_only_management_key_adds_keys(self, session, issuer_setup, pool):
        issuer, _, _, _ = issuer_setup
        with pytest.raises(StepFailed, match="management key"):
            add_identity_key(session, issuer, SIGNING_KEY.address, KeyPurpose.CLAIM, pool[6])

    def test_action_key_added(self, session, issuer_setup):
        _, identity, _, holder = issuer_setup
        action = Signer.random()
        add_identity_key(session, identity, action.address, KeyPurpose.ACTION, holder)
        assert session.query(identity, "Identity", "getKeyPurposes", [key_hash(action.address)]) == [2]
