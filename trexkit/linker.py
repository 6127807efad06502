"""
Suite linking.

Once the components exist they are wired together, one confirmed transaction
at a time, in this order:

    1. bind storage     IdentityRegistryStorage.bindIdentityRegistry(ir)
    2. agents           Token.addAgent(agent), IdentityRegistry.addAgent(agent),
                        IdentityRegistry.addAgent(token)
    3. claim topics     ClaimTopicsRegistry.addClaimTopic(t) per distinct topic
    4. trusted issuer   TrustedIssuersRegistry.addTrustedIssuer(issuer, topics)
    5. agent manager    AgentManager.addAgentAdmin(admin) by the agent, then the
                        manager becomes agent of the token and the registry
    6. unpause          Token.unpause() by the agent

Step 5 is optional. Unpause is refused unless steps 1-4 have confirmed.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, List, Optional, Sequence

from trexkit.errors import OrderingViolation
from trexkit.ledger import Signer
from trexkit.models import SuiteAddressSet
from trexkit.observability import SuiteLayer, get_logger
from trexkit.session import DeploymentSession
from trexkit.validation import require_address

logger = get_logger("linker", SuiteLayer.LINKER)


class LinkStep(Enum):
    BIND_STORAGE = "bind identity registry storage"
    ADD_AGENTS = "add agents"
    ADD_CLAIM_TOPICS = "add claim topics"
    ADD_TRUSTED_ISSUER = "add trusted issuer"
    AGENT_MANAGER = "wire agent manager"
    UNPAUSE = "unpause token"


# Steps that must have confirmed before each step may run.
PREREQUISITES = {
    LinkStep.BIND_STORAGE: (),
    LinkStep.ADD_AGENTS: (LinkStep.BIND_STORAGE,),
    LinkStep.ADD_CLAIM_TOPICS: (LinkStep.BIND_STORAGE, LinkStep.ADD_AGENTS),
    LinkStep.ADD_TRUSTED_ISSUER: (LinkStep.BIND_STORAGE, LinkStep.ADD_AGENTS, LinkStep.ADD_CLAIM_TOPICS),
    LinkStep.AGENT_MANAGER: (LinkStep.ADD_AGENTS,),
    LinkStep.UNPAUSE: (
        LinkStep.BIND_STORAGE,
        LinkStep.ADD_AGENTS,
        LinkStep.ADD_CLAIM_TOPICS,
        LinkStep.ADD_TRUSTED_ISSUER,
    ),
}


def distinct_topics(topics: Iterable[int]) -> List[int]:
    seen: List[int] = []
    for topic in topics:
        if topic not in seen:
            seen.append(topic)
    return seen


class SuiteLinker:
    """
    Wires a deployed suite.

    ``owner`` owns the registries and the token (the deployer in the suite
    flows); ``agent`` is the token agent.
    """

    def __init__(self, session: DeploymentSession, suite: SuiteAddressSet, owner: Signer, agent: Signer):
        self.session = session
        self.suite = suite
        self.owner = owner
        self.agent = agent
        self.completed: List[LinkStep] = []
        self.topics: List[int] = []

    def _check(self, step: LinkStep) -> None:
        if step in self.completed:
            raise OrderingViolation(f"'{step.value}' has already been done for this suite")
        missing = [p.value for p in PREREQUISITES[step] if p not in self.completed]
        if missing:
            raise OrderingViolation(
                f"'{step.value}' requested before: {', '.join(missing)}"
            )

    def _done(self, step: LinkStep) -> None:
        self.completed.append(step)
        logger.info("Link step completed", step=step.value, token=self.suite.token)

    def bind_storage(self) -> None:
        self._check(LinkStep.BIND_STORAGE)
        self.session.transact(
            self.suite.identity_registry_storage, "IdentityRegistryStorage", "bindIdentityRegistry",
            [self.suite.identity_registry], self.owner,
            step="IdentityRegistryStorage.bindIdentityRegistry",
        )
        self._done(LinkStep.BIND_STORAGE)

    def add_agents(self) -> None:
        self._check(LinkStep.ADD_AGENTS)
        self.session.transact(
            self.suite.token, "Token", "addAgent", [self.agent.address], self.owner,
            step="Token.addAgent (token agent)",
        )
        self.session.transact(
            self.suite.identity_registry, "IdentityRegistry", "addAgent", [self.agent.address], self.owner,
            step="IdentityRegistry.addAgent (token agent)",
        )
        self.session.transact(
            self.suite.identity_registry, "IdentityRegistry", "addAgent", [self.suite.token], self.owner,
            step="IdentityRegistry.addAgent (token)",
        )
        self._done(LinkStep.ADD_AGENTS)

    def add_claim_topics(self, topics: Sequence[int]) -> List[int]:
        """Register each distinct topic not already present; returns the suite's topics."""
        self._check(LinkStep.ADD_CLAIM_TOPICS)
        wanted = distinct_topics(topics)
        present = set(self.session.query(
            self.suite.claim_topics_registry, "ClaimTopicsRegistry", "getClaimTopics"
        ))
        for topic in wanted:
            if topic in present:
                logger.info("Claim topic already registered", topic=hex(topic))
                continue
            self.session.transact(
                self.suite.claim_topics_registry, "ClaimTopicsRegistry", "addClaimTopic", [topic], self.owner,
                step=f"ClaimTopicsRegistry.addClaimTopic {hex(topic)}",
            )
        self.topics = wanted
        self._done(LinkStep.ADD_CLAIM_TOPICS)
        return wanted

    def add_trusted_issuer(self, issuer: str, topics: Optional[Sequence[int]] = None) -> None:
        self._check(LinkStep.ADD_TRUSTED_ISSUER)
        issuer = require_address("claim issuer", issuer)
        self.session.transact(
            self.suite.trusted_issuers_registry, "TrustedIssuersRegistry", "addTrustedIssuer",
            [issuer, list(topics if topics is not None else self.topics)], self.owner,
            step="TrustedIssuersRegistry.addTrustedIssuer",
        )
        self._done(LinkStep.ADD_TRUSTED_ISSUER)

    def wire_agent_manager(self, agent_manager: str, admin: str) -> None:
        self._check(LinkStep.AGENT_MANAGER)
        agent_manager = require_address("agent manager", agent_manager)
        self.session.transact(
            agent_manager, "AgentManager", "addAgentAdmin", [require_address("token admin", admin)], self.agent,
            step="AgentManager.addAgentAdmin",
        )
        self.session.transact(
            self.suite.token, "Token", "addAgent", [agent_manager], self.owner,
            step="Token.addAgent (agent manager)",
        )
        self.session.transact(
            self.suite.identity_registry, "IdentityRegistry", "addAgent", [agent_manager], self.owner,
            step="IdentityRegistry.addAgent (agent manager)",
        )
        self._done(LinkStep.AGENT_MANAGER)

    def link(self, topics: Sequence[int], claim_issuer: str) -> None:
        """Steps 1-4 in order."""
        self.bind_storage()
        self.add_agents()
        self.add_claim_topics(topics)
        self.add_trusted_issuer(claim_issuer)

    def unpause(self) -> None:
        """Make the token transferable; always the last step."""
        self._check(LinkStep.UNPAUSE)
        self.session.transact(
            self.suite.token, "Token", "unpause", [], self.agent, step="Token.unpause",
        )
        self._done(LinkStep.UNPAUSE)
