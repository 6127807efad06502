"""
End-to-end suite runs on the in-memory ledger.

Run with: pytest tests/test_orchestrator.py -v
"""

import pytest

from trexkit.authority import ComponentKind
from trexkit.claims import ClaimIssuanceEngine, key_hash, topic_id
from trexkit.config import SuiteConfig
from trexkit.errors import PreconditionError, StepFailed
from trexkit.linker import LinkStep
from trexkit.orchestrator import (
    SuiteSettings,
    deploy_full_suite,
    deploy_suite_infrastructure,
)
from trexkit.roles import Role, RoleResolver, RoleSource


class TestSettings:
    """Suite settings from configuration."""

    def test_defaults(self, settings):
        assert settings.token_name == "TREXDINO"
        assert settings.token_symbol == "TREX"
        assert settings.token_decimals == 0
        assert settings.topics == (topic_id("CLAIM_TOPIC"),)
        assert (settings.mint_alice, settings.mint_bob) == (1000, 500)

    def test_topics_from_env_are_deduplicated(self, clean_env):
        clean_env.setenv("TREX_CLAIM_TOPICS", "KYC, AML, KYC, 7")
        settings = SuiteSettings.from_config(SuiteConfig())
        assert settings.topics == (topic_id("KYC"), topic_id("AML"), 7)


class TestInfrastructure:
    """Suite deployed and linked, token left paused."""

    def test_components_are_linked(self, session, infrastructure, pool):
        deployment = infrastructure
        suite = deployment.suite

        assert session.query(suite.token, "Token", "paused")
        assert deployment.report.details["token_paused"] is True
        assert deployment.linker.completed[-1] is LinkStep.AGENT_MANAGER
        assert session.query(suite.token, "Token", "identityRegistry") == suite.identity_registry
        assert session.query(suite.token, "Token", "compliance") == suite.compliance
        assert session.query(suite.token, "Token", "onchainID") == suite.token_oid
        assert session.query(suite.identity_registry, "IdentityRegistry", "topicsRegistry") == \
            suite.claim_topics_registry
        assert session.query(suite.trusted_issuers_registry, "TrustedIssuersRegistry",
                             "getTrustedIssuers") == [deployment.claim_issuer]
        assert session.query(deployment.agent_manager, "AgentManager", "isAgentAdmin", [pool[3].address])

    def test_authorities_serve_the_implementations(self, infrastructure):
        for kind in (ComponentKind.TOKEN, ComponentKind.IDENTITY_REGISTRY, ComponentKind.MODULAR_COMPLIANCE):
            assert infrastructure.trex_authority.implementation(kind) is not None
        assert infrastructure.identity_authority.implementation(ComponentKind.IDENTITY) is not None

    def test_factory_registered_with_identity_factory(self, session, infrastructure):
        assert session.query(
            infrastructure.identity_factory, "Factory", "isTokenFactory", [infrastructure.trex_factory]
        )

    def test_signing_key_holds_claim_purpose(self, session, infrastructure):
        key = key_hash(infrastructure.claim_signing_key.address)
        assert session.query(infrastructure.claim_issuer, "ClaimIssuer", "keyHasPurpose", [key, 3])

    def test_report(self, infrastructure, pool):
        report = infrastructure.report
        assert report.operation == "suite infrastructure"
        assert report.network == "memory"
        assert report.accounts["deployer"] == pool[0].address
        assert report.accounts["token_agent"] == pool[2].address
        assert report.suite["token"] == infrastructure.suite.token
        assert report.suite["agent_manager"] == infrastructure.agent_manager
        assert report.factories["trex_factory"] == infrastructure.trex_factory
        assert report.details["role_sources"]["tokenAgent"] == "from_pool"
        assert any("remains paused" in note for note in report.notes)


class TestFullSuite:
    """Deploy, link, onboard participants, go live."""

    @pytest.fixture
    def deployment(self, session, resolver, settings):
        return deploy_full_suite(session, resolver, settings)

    def test_token_is_live_and_minted(self, session, deployment, pool):
        suite = deployment.suite
        assert not session.query(suite.token, "Token", "paused")
        assert session.query(suite.token, "Token", "balanceOf", [pool[5].address]) == 1000
        assert session.query(suite.token, "Token", "balanceOf", [pool[6].address]) == 500
        assert session.query(suite.token, "Token", "totalSupply") == 1500

    def test_unpause_is_the_last_step(self, session, deployment):
        assert session.last_completed_step == "Token.unpause"
        assert deployment.linker.completed[-1] is LinkStep.UNPAUSE

    def test_registered_holders_are_verified(self, session, deployment, pool):
        ir = deployment.suite.identity_registry
        assert session.query(ir, "IdentityRegistry", "isVerified", [pool[5].address])
        assert session.query(ir, "IdentityRegistry", "isVerified", [pool[6].address])
        # charlie has an identity but neither registration nor claim
        assert not session.query(ir, "IdentityRegistry", "isVerified", [pool[7].address])
        assert session.query(ir, "IdentityRegistry", "investorCountry", [pool[6].address]) == 666

    def test_alice_action_key(self, session, deployment):
        alice = deployment.identities["alice"]
        action = deployment.report.accounts["alice_action_key"]
        assert session.query(alice, "Identity", "getKeyPurposes", [key_hash(action)]) == [2]

    def test_claims_issued_per_topic(self, deployment):
        assert len(deployment.claims) == 2 * len(deployment.topics)
        assert {c.identity for c in deployment.claims} == {
            deployment.identities["alice"], deployment.identities["bob"],
        }

    def test_transfer_between_verified_holders(self, session, deployment, pool):
        session.transact(deployment.suite.token, "Token", "transfer", [pool[6].address, 10], pool[5])
        assert session.query(deployment.suite.token, "Token", "balanceOf", [pool[6].address]) == 510

    def test_report_lists_participants(self, deployment, pool):
        report = deployment.report
        assert report.accounts["alice_wallet"] == pool[5].address
        assert set(report.identities) == {"alice", "bob", "charlie"}
        assert report.details["minted"] == {"alice": 1000, "bob": 500}
        assert "TOKEN_ADDRESS=" in report.to_env()

    def test_needs_ten_pooled_signers(self, session, pool, settings, ledger):
        resolver = RoleResolver(pool[:6], env={})
        with pytest.raises(PreconditionError, match="pooled signers"):
            deploy_full_suite(session, resolver, settings)
        assert ledger.transactions == []


class TestVerificationGate:
    """isVerified needs both a registration and a valid claim."""

    def _identity(self, session, deployment, wallet):
        from trexkit.authority import deploy_identity_proxy
        return deploy_identity_proxy(session, deployment.identity_authority, wallet.address,
                                     deployment.roles[Role.DEPLOYER].signer).address

    def test_claim_without_registration(self, session, infrastructure, pool):
        wallet = pool[8]
        identity = self._identity(session, infrastructure, wallet)
        engine = ClaimIssuanceEngine(session, infrastructure.claim_issuer, infrastructure.claim_signing_key)
        for topic in infrastructure.topics:
            engine.issue(identity, wallet, topic, "kyc ok")
        assert not session.query(infrastructure.suite.identity_registry, "IdentityRegistry",
                                 "isVerified", [wallet.address])

    def test_registration_without_claim(self, session, infrastructure, pool):
        wallet = pool[8]
        identity = self._identity(session, infrastructure, wallet)
        session.transact(infrastructure.suite.identity_registry, "IdentityRegistry", "registerIdentity",
                         [wallet.address, identity, 42], pool[2])
        assert not session.query(infrastructure.suite.identity_registry, "IdentityRegistry",
                                 "isVerified", [wallet.address])

    def test_both_verify(self, session, infrastructure, pool):
        wallet = pool[8]
        identity = self._identity(session, infrastructure, wallet)
        session.transact(infrastructure.suite.identity_registry, "IdentityRegistry", "registerIdentity",
                         [wallet.address, identity, 42], pool[2])
        engine = ClaimIssuanceEngine(session, infrastructure.claim_issuer, infrastructure.claim_signing_key)
        for topic in infrastructure.topics:
            engine.issue(identity, wallet, topic, "kyc ok")
        assert session.query(infrastructure.suite.identity_registry, "IdentityRegistry",
                             "isVerified", [wallet.address])

    def test_mint_to_unverified_wallet_fails(self, session, infrastructure, pool):
        with pytest.raises(StepFailed, match="Identity is not verified"):
            session.transact(infrastructure.suite.token, "Token", "mint", [pool[9].address, 1], pool[2])


class TestRoleFallback:
    """Roles without pooled signers or keys fall back to the deployer."""

    def test_fallback_roles_recorded(self, ledger, settings):
        from trexkit.session import DeploymentSession
        from trexkit.observability import Tracer

        session = DeploymentSession(ledger, timeout=1.0, tracer=Tracer("fallback"))
        resolver = RoleResolver(ledger.pool_signers()[:1], env={})
        deployment = deploy_suite_infrastructure(session, resolver, settings)
        sources = deployment.report.details["role_sources"]
        assert sources["deployer"] == RoleSource.FROM_POOL.value
        assert sources["claimIssuer"] == RoleSource.FROM_FALLBACK.value
        assert deployment.report.accounts["token_agent"] == ledger.pool_signers()[0].address
