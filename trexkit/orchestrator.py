"""
Suite orchestration.

Runs the whole provisioning protocol in dependency order:

    roles -> implementations -> authorities -> factories -> proxies
          -> link (storage, agents, topics, claim issuer, trusted issuer)
          -> [participants: identities, registration, claims, mint]
          -> agent manager -> [unpause]

``deploy_suite_infrastructure`` stops after the agent manager and leaves the
token paused; ``deploy_full_suite`` also onboards the sample participants and
unpauses the token as its very last step.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from trexkit.authority import (
    ComponentAuthority,
    ComponentKind,
    deploy_identity_authority,
    deploy_identity_proxy,
    deploy_implementations,
    deploy_proxy,
    deploy_suite_authority,
)
from trexkit.claims import (
    Claim,
    ClaimIssuanceEngine,
    KeyPurpose,
    add_identity_key,
    register_signing_key,
    topic_id,
)
from trexkit.config import SuiteConfig
from trexkit.errors import PreconditionError
from trexkit.ledger import Signer
from trexkit.linker import SuiteLinker, distinct_topics
from trexkit.models import DeploymentReport, SuiteAddressSet
from trexkit.observability import SuiteLayer, get_logger, timed_operation
from trexkit.roles import Role, RoleResolution, RoleResolver, resolve_claim_signing_key
from trexkit.session import DeploymentSession
from trexkit.validation import parse_amount, parse_decimals, require_text

logger = get_logger("orchestrator", SuiteLayer.ORCHESTRATOR)

# Pool indexes of the sample participants of the full suite run.
PARTICIPANTS = (("alice", 5), ("bob", 6), ("charlie", 7), ("david", 8), ("another", 9))
REGISTERED_COUNTRIES = (("alice", 42), ("bob", 666))


@dataclass(frozen=True)
class SuiteSettings:
    """Validated token, claim and mint settings of a suite run."""
    token_name: str
    token_symbol: str
    token_decimals: int
    topics: Tuple[int, ...]
    claim_scheme: int
    claim_data: str
    mint_alice: int
    mint_bob: int

    @classmethod
    def from_config(cls, config: SuiteConfig) -> "SuiteSettings":
        topics = distinct_topics(topic_id(t) for t in config.claims.topics.get())
        if not topics:
            raise PreconditionError("At least one claim topic is required (TREX_CLAIM_TOPICS)")
        return cls(
            token_name=require_text("token name", config.token.name.get(), "TREXDINO"),
            token_symbol=require_text("token symbol", config.token.symbol.get(), "TREX"),
            token_decimals=parse_decimals(config.token.decimals.get(), 0),
            topics=tuple(topics),
            claim_scheme=config.claims.scheme.get(),
            claim_data=config.claims.sample_data.get(),
            mint_alice=parse_amount("TREX_MINT_ALICE", config.mint.alice.get(), 1000),
            mint_bob=parse_amount("TREX_MINT_BOB", config.mint.bob.get(), 500),
        )


@dataclass
class SuiteDeployment:
    """Everything a suite run produced."""
    report: DeploymentReport
    suite: SuiteAddressSet
    roles: Dict[Role, RoleResolution]
    claim_signing_key: Signer
    trex_authority: ComponentAuthority
    identity_authority: ComponentAuthority
    trex_factory: str
    identity_factory: str
    claim_issuer: str
    agent_manager: str
    topics: List[int]
    linker: SuiteLinker
    identities: Dict[str, str] = field(default_factory=dict)
    claims: List[Claim] = field(default_factory=list)


def _deploy_linked_suite(
    session: DeploymentSession,
    resolver: RoleResolver,
    settings: SuiteSettings,
    operation: str,
) -> SuiteDeployment:
    roles = resolver.resolve_all()
    deployer = roles[Role.DEPLOYER].signer
    token_issuer = roles[Role.TOKEN_ISSUER].signer
    token_agent = roles[Role.TOKEN_AGENT].signer
    claim_issuer_account = roles[Role.CLAIM_ISSUER].signer
    signing_key = resolve_claim_signing_key(resolver.env)

    implementations = deploy_implementations(session, deployer)
    identity = deploy_identity_authority(session, deployer)
    trex_authority = deploy_suite_authority(session, implementations, deployer)

    trex_factory = session.deploy(
        "TREXFactory", [trex_authority.address, identity.factory], deployer, label="TREXFactory"
    )
    session.transact(
        identity.factory, "Factory", "addTokenFactory", [trex_factory], deployer,
        step="IdFactory.addTokenFactory",
    )

    ctr = deploy_proxy(session, ComponentKind.CLAIM_TOPICS_REGISTRY, trex_authority, [], deployer)
    tir = deploy_proxy(session, ComponentKind.TRUSTED_ISSUERS_REGISTRY, trex_authority, [], deployer)
    irs = deploy_proxy(session, ComponentKind.IDENTITY_REGISTRY_STORAGE, trex_authority, [], deployer)
    compliance = session.deploy("DefaultCompliance", [], deployer)
    ir = deploy_proxy(
        session, ComponentKind.IDENTITY_REGISTRY, trex_authority,
        [tir.address, ctr.address, irs.address], deployer,
    )
    token_oid = deploy_identity_proxy(
        session, identity.authority, token_issuer.address, deployer, label="token OnchainID"
    )
    token = deploy_proxy(
        session, ComponentKind.TOKEN, trex_authority,
        [ir.address, compliance, settings.token_name, settings.token_symbol,
         settings.token_decimals, token_oid.address],
        deployer,
    )
    agent_manager = session.deploy("AgentManager", [token.address], token_agent)

    suite = SuiteAddressSet(
        token=token.address,
        identity_registry=ir.address,
        identity_registry_storage=irs.address,
        trusted_issuers_registry=tir.address,
        claim_topics_registry=ctr.address,
        compliance=compliance,
        token_oid=token_oid.address,
    )

    linker = SuiteLinker(session, suite, owner=deployer, agent=token_agent)
    linker.bind_storage()
    linker.add_agents()
    topics = linker.add_claim_topics(settings.topics)

    claim_issuer = session.deploy(
        "ClaimIssuer", [claim_issuer_account.address], claim_issuer_account, label="ClaimIssuer"
    )
    register_signing_key(session, claim_issuer, signing_key.address, claim_issuer_account)
    linker.add_trusted_issuer(claim_issuer, topics)

    report = DeploymentReport(operation=operation, network=session.ledger.network.value)
    report.accounts.update({
        "deployer": deployer.address,
        "token_issuer": token_issuer.address,
        "token_agent": token_agent.address,
        "token_admin": roles[Role.TOKEN_ADMIN].address,
        "claim_issuer": claim_issuer_account.address,
        "claim_issuer_signing_key": signing_key.address,
    })
    report.add_suite(suite)
    report.suite.update({"claim_issuer_contract": claim_issuer, "agent_manager": agent_manager})
    report.authorities.update({
        "trex_implementation_authority": trex_authority.address,
        "identity_implementation_authority": identity.authority.address,
    })
    report.factories.update({"trex_factory": trex_factory, "identity_factory": identity.factory})
    report.details["claim_topics"] = [hex(t) for t in topics]
    report.details["role_sources"] = {r.value: res.source.value for r, res in roles.items()}

    return SuiteDeployment(
        report=report,
        suite=suite,
        roles=roles,
        claim_signing_key=signing_key,
        trex_authority=trex_authority,
        identity_authority=identity.authority,
        trex_factory=trex_factory,
        identity_factory=identity.factory,
        claim_issuer=claim_issuer,
        agent_manager=agent_manager,
        topics=topics,
        linker=linker,
    )


@timed_operation(logger, "deploy_suite_infrastructure")
def deploy_suite_infrastructure(
    session: DeploymentSession,
    resolver: RoleResolver,
    settings: SuiteSettings,
) -> SuiteDeployment:
    """Deploy and link the suite; the token stays paused."""
    logger.info("Starting TREX suite infrastructure deployment")
    deployment = _deploy_linked_suite(session, resolver, settings, "suite infrastructure")
    deployment.linker.wire_agent_manager(
        deployment.agent_manager, resolver.signer(Role.TOKEN_ADMIN).address
    )
    deployment.report.details["token_paused"] = True
    deployment.report.notes.append(
        "Token remains paused. Unpause it via the token agent when ready to go live."
    )
    logger.info("TREX suite infrastructure deployed", token=deployment.suite.token)
    return deployment


def _participants(resolver: RoleResolver) -> Dict[str, Signer]:
    participants: Dict[str, Signer] = {}
    for name, index in PARTICIPANTS:
        signer = resolver.pooled(index)
        if signer is None:
            raise PreconditionError(
                f"The full suite run needs {PARTICIPANTS[-1][1] + 1} pooled signers for its sample "
                f"participants; the ledger offers {len(resolver.pool)}."
            )
        participants[name] = signer
    return participants


@timed_operation(logger, "deploy_full_suite")
def deploy_full_suite(
    session: DeploymentSession,
    resolver: RoleResolver,
    settings: SuiteSettings,
    action_key: Optional[Signer] = None,
) -> SuiteDeployment:
    """
    Deploy, link, onboard the sample participants and go live.

    Alice and Bob get identities, registrations, claims and minted balances;
    Charlie gets an identity only. Alice's identity also carries an action key.
    """
    participants = _participants(resolver)
    logger.info("Starting full TREX suite deployment")
    deployment = _deploy_linked_suite(session, resolver, settings, "full suite")
    suite = deployment.suite
    deployer = resolver.deployer
    token_agent = resolver.signer(Role.TOKEN_AGENT)
    action_key = action_key or Signer.random(label="aliceActionKey")

    for name in ("alice", "bob", "charlie"):
        proxy = deploy_identity_proxy(
            session, deployment.identity_authority, participants[name].address, deployer,
            label=f"{name} identity",
        )
        deployment.identities[name] = proxy.address

    add_identity_key(
        session, deployment.identities["alice"], action_key.address, KeyPurpose.ACTION,
        participants["alice"], step="alice Identity.addKey (action key)",
    )

    session.transact(
        suite.identity_registry,
        "IdentityRegistry",
        "batchRegisterIdentity",
        [
            [participants[name].address for name, _ in REGISTERED_COUNTRIES],
            [deployment.identities[name] for name, _ in REGISTERED_COUNTRIES],
            [country for _, country in REGISTERED_COUNTRIES],
        ],
        token_agent,
        step="IdentityRegistry.batchRegisterIdentity (alice, bob)",
    )

    engine = ClaimIssuanceEngine(session, deployment.claim_issuer, deployment.claim_signing_key)
    for name, _ in REGISTERED_COUNTRIES:
        for topic in deployment.topics:
            deployment.claims.append(engine.issue(
                deployment.identities[name], participants[name], topic,
                settings.claim_data, scheme=settings.claim_scheme,
            ))

    for name, amount in (("alice", settings.mint_alice), ("bob", settings.mint_bob)):
        session.transact(
            suite.token, "Token", "mint", [participants[name].address, amount], token_agent,
            step=f"Token.mint {name}",
        )

    deployment.linker.wire_agent_manager(
        deployment.agent_manager, resolver.signer(Role.TOKEN_ADMIN).address
    )
    deployment.linker.unpause()

    report = deployment.report
    report.accounts["alice_action_key"] = action_key.address
    for name, signer in participants.items():
        report.accounts[f"{name}_wallet"] = signer.address
    report.identities.update(deployment.identities)
    report.details["token_paused"] = False
    report.details["minted"] = {"alice": settings.mint_alice, "bob": settings.mint_bob}
    logger.info("TREX suite deployed successfully", token=suite.token)
    return deployment
