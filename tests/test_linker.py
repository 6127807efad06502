"""
Suite linking tests: step order, agents, topics and the unpause guard.
"""

import pytest

from trexkit.authority import (
    ComponentKind,
    deploy_identity_authority,
    deploy_identity_proxy,
    deploy_implementations,
    deploy_proxy,
    deploy_suite_authority,
)
from trexkit.errors import OrderingViolation, StepFailed
from trexkit.linker import LinkStep, SuiteLinker, distinct_topics
from trexkit.models import SuiteAddressSet


@pytest.fixture
def suite(session, pool):
    """Proxies of an unlinked suite, owned by pool[0]."""
    deployer = pool[0]
    authority = deploy_suite_authority(session, deploy_implementations(session, deployer), deployer)
    identity = deploy_identity_authority(session, deployer)
    ctr = deploy_proxy(session, ComponentKind.CLAIM_TOPICS_REGISTRY, authority, [], deployer)
    tir = deploy_proxy(session, ComponentKind.TRUSTED_ISSUERS_REGISTRY, authority, [], deployer)
    irs = deploy_proxy(session, ComponentKind.IDENTITY_REGISTRY_STORAGE, authority, [], deployer)
    compliance = session.deploy("DefaultCompliance", [], deployer)
    ir = deploy_proxy(
        session, ComponentKind.IDENTITY_REGISTRY, authority, [tir.address, ctr.address, irs.address], deployer
    )
    oid = deploy_identity_proxy(session, identity.authority, pool[1].address, deployer)
    token = deploy_proxy(
        session, ComponentKind.TOKEN, authority,
        [ir.address, compliance, "Linked", "LNK", 0, oid.address], deployer,
    )
    return SuiteAddressSet(
        token=token.address,
        identity_registry=ir.address,
        identity_registry_storage=irs.address,
        trusted_issuers_registry=tir.address,
        claim_topics_registry=ctr.address,
        compliance=compliance,
        token_oid=oid.address,
    )


@pytest.fixture
def linker(session, suite, pool):
    return SuiteLinker(session, suite, owner=pool[0], agent=pool[2])


@pytest.fixture
def claim_issuer(session, pool):
    return session.deploy("ClaimIssuer", [pool[4].address], pool[4])


class TestLinkOrder:
    """Prerequisites between link steps."""

    def test_full_link_in_order(self, session, linker, suite, claim_issuer, pool):
        linker.link([7, 8], claim_issuer)
        assert linker.completed == [
            LinkStep.BIND_STORAGE,
            LinkStep.ADD_AGENTS,
            LinkStep.ADD_CLAIM_TOPICS,
            LinkStep.ADD_TRUSTED_ISSUER,
        ]
        assert session.query(suite.identity_registry_storage, "IdentityRegistryStorage",
                             "linkedIdentityRegistries") == [suite.identity_registry]
        assert session.query(suite.token, "Token", "isAgent", [pool[2].address])
        assert session.query(suite.identity_registry, "IdentityRegistry", "isAgent", [pool[2].address])
        assert session.query(suite.identity_registry, "IdentityRegistry", "isAgent", [suite.token])
        assert session.query(suite.claim_topics_registry, "ClaimTopicsRegistry", "getClaimTopics") == [7, 8]
        assert session.query(suite.trusted_issuers_registry, "TrustedIssuersRegistry",
                             "getTrustedIssuerClaimTopics", [claim_issuer]) == [7, 8]

    def test_agents_before_binding_refused(self, linker):
        with pytest.raises(OrderingViolation, match="bind identity registry storage"):
            linker.add_agents()

    def test_trusted_issuer_before_topics_refused(self, linker, claim_issuer):
        linker.bind_storage()
        linker.add_agents()
        with pytest.raises(OrderingViolation, match="add claim topics"):
            linker.add_trusted_issuer(claim_issuer, [7])

    def test_step_cannot_repeat(self, linker):
        linker.bind_storage()
        with pytest.raises(OrderingViolation, match="already been done"):
            linker.bind_storage()

    def test_unpause_refused_until_linked(self, session, linker, ledger):
        linker.bind_storage()
        linker.add_agents()
        before = len(ledger.transactions)
        with pytest.raises(OrderingViolation) as exc:
            linker.unpause()
        assert "add claim topics" in str(exc.value)
        assert "add trusted issuer" in str(exc.value)
        assert len(ledger.transactions) == before

    def test_unpause_after_link(self, session, linker, suite, claim_issuer):
        linker.link([7], claim_issuer)
        assert session.query(suite.token, "Token", "paused")
        linker.unpause()
        assert not session.query(suite.token, "Token", "paused")
        assert linker.completed[-1] is LinkStep.UNPAUSE

    def test_failure_midway_names_last_step(self, session, ledger, linker, suite, claim_issuer, pool):
        # the issuer was trusted out of band, so the linker's own addTrustedIssuer reverts
        session.transact(
            suite.trusted_issuers_registry, "TrustedIssuersRegistry", "addTrustedIssuer",
            [claim_issuer, [9]], pool[0],
        )
        with pytest.raises(StepFailed) as exc:
            linker.link([7, 8], claim_issuer)

        assert exc.value.step == "TrustedIssuersRegistry.addTrustedIssuer"
        assert exc.value.last_completed == "ClaimTopicsRegistry.addClaimTopic 0x8"
        assert "trusted Issuer already exists" in str(exc.value)
        assert linker.completed == [LinkStep.BIND_STORAGE, LinkStep.ADD_AGENTS, LinkStep.ADD_CLAIM_TOPICS]

        before = len(ledger.transactions)
        with pytest.raises(OrderingViolation, match="add trusted issuer"):
            linker.unpause()
        assert len(ledger.transactions) == before
        assert all(record.name != "Token.unpause" for record in session.journal)
        assert session.query(suite.token, "Token", "paused")


class TestClaimTopics:
    """Topic registration."""

    def test_distinct_topics_keeps_order(self):
        assert distinct_topics([3, 1, 3, 2, 1]) == [3, 1, 2]

    def test_duplicates_registered_once(self, session, linker, suite):
        linker.bind_storage()
        linker.add_agents()
        assert linker.add_claim_topics([9, 9, 10]) == [9, 10]
        assert session.query(suite.claim_topics_registry, "ClaimTopicsRegistry", "getClaimTopics") == [9, 10]

    def test_present_topics_skipped(self, session, linker, suite, pool):
        session.transact(suite.claim_topics_registry, "ClaimTopicsRegistry", "addClaimTopic", [9], pool[0])
        linker.bind_storage()
        linker.add_agents()
        linker.add_claim_topics([9, 10])
        assert session.query(suite.claim_topics_registry, "ClaimTopicsRegistry", "getClaimTopics") == [9, 10]
        added = [s for s in session.completed_steps if s.startswith("ClaimTopicsRegistry.addClaimTopic 0x")]
        assert added == ["ClaimTopicsRegistry.addClaimTopic 0xa"]


class TestAgentManager:
    """Agent manager wiring."""

    def test_wired_after_agents(self, session, linker, suite, pool):
        manager = session.deploy("AgentManager", [suite.token], pool[2])
        linker.bind_storage()
        linker.add_agents()
        linker.wire_agent_manager(manager, pool[3].address)
        assert session.query(manager, "AgentManager", "isAgentAdmin", [pool[3].address])
        assert session.query(suite.token, "Token", "isAgent", [manager])
        assert session.query(suite.identity_registry, "IdentityRegistry", "isAgent", [manager])

    def test_refused_before_agents(self, session, linker, suite, pool):
        manager = session.deploy("AgentManager", [suite.token], pool[2])
        with pytest.raises(OrderingViolation):
            linker.wire_agent_manager(manager, pool[3].address)
