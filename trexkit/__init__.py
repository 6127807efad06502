"""
trexkit: T-REX suite provisioning

Deploys and wires the contracts of a T-REX permissioned token: the token,
its identity registry and storage, the trusted issuers and claim topics
registries, compliance, the implementation authorities behind the upgradeable
proxies, the factories, and the OnchainID identities and signed claims that
make holders eligible.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                          PROVISIONING FLOWS                              │
    │    orchestrator.py   Full suite and infrastructure-only runs            │
    │    factory.py        Salt-idempotent property token via TREXFactory     │
    │    registration.py   Single-user identity deploy / register / verify    │
    │                                                                          │
    │                          SUITE BUILDING BLOCKS                           │
    │    roles.py          Role -> signer resolution with deployer fallback   │
    │    authority.py      Implementations, authorities and proxies           │
    │    linker.py         Ordered wiring of the deployed components          │
    │    claims.py         Claim digests, signatures and issuance             │
    │    events.py         Log decoding, TREXSuiteDeployed extraction         │
    │                                                                          │
    │                          LEDGER ACCESS                                   │
    │    session.py        Journaled, confirmed steps of one run              │
    │    ledger.py         web3.py adapter, signers, receipts, artifacts      │
    │    simulator.py      In-memory ledger with the suite's contract logic   │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Design Principles
─────────────────

    Confirm Before Continuing: every transaction is awaited before the next
    one is built from its results. A run that fails reports the last step
    that completed.

    Fail Before Submitting: inputs, role keys, implementation sets and link
    ordering are checked before anything reaches the ledger.

    Salt Idempotency: a factory deployment whose salt already has a token is
    a successful no-op.

Copyright © 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

__version__ = "0.3.0"


def __getattr__(name):
    """Lazy import of the public API on first access."""

    if name in ("Role", "RoleResolver", "RoleResolution", "RoleSource", "resolve_role"):
        from trexkit import roles
        return getattr(roles, name)

    if name in ("ComponentKind", "ComponentAuthority", "ProxyHandle", "deploy_proxy",
                "deploy_suite_authority", "deploy_implementations"):
        from trexkit import authority
        return getattr(authority, name)

    if name in ("SuiteLinker", "LinkStep"):
        from trexkit import linker
        return getattr(linker, name)

    if name in ("Claim", "ClaimIssuanceEngine", "sign_claim", "verify_claim", "topic_id"):
        from trexkit import claims
        return getattr(claims, name)

    if name in ("EventSchema", "DecodedEvent", "TREX_SUITE_DEPLOYED", "extract_suite_addresses"):
        from trexkit import events
        return getattr(events, name)

    if name in ("ExistingSuite", "PropertyTokenRequest", "PropertyTokenResult",
                "deploy_property_token", "check_existing"):
        from trexkit import factory
        return getattr(factory, name)

    if name in ("SuiteSettings", "SuiteDeployment", "deploy_full_suite",
                "deploy_suite_infrastructure"):
        from trexkit import orchestrator
        return getattr(orchestrator, name)

    if name in ("DeploymentSession",):
        from trexkit import session
        return getattr(session, name)

    if name in ("Signer", "Receipt", "Web3Ledger", "connect_ledger"):
        from trexkit import ledger
        return getattr(ledger, name)

    if name in ("InMemoryLedger",):
        from trexkit import simulator
        return getattr(simulator, name)

    if name in ("SuiteAddressSet", "DeploymentReport"):
        from trexkit import models
        return getattr(models, name)

    raise AttributeError(f"module 'trexkit' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Roles
    "Role",
    "RoleResolver",
    "RoleResolution",
    "RoleSource",
    "resolve_role",
    # Authorities and proxies
    "ComponentKind",
    "ComponentAuthority",
    "ProxyHandle",
    "deploy_proxy",
    "deploy_suite_authority",
    "deploy_implementations",
    # Linking
    "SuiteLinker",
    "LinkStep",
    # Claims
    "Claim",
    "ClaimIssuanceEngine",
    "sign_claim",
    "verify_claim",
    "topic_id",
    # Events
    "EventSchema",
    "DecodedEvent",
    "TREX_SUITE_DEPLOYED",
    "extract_suite_addresses",
    # Flows
    "ExistingSuite",
    "PropertyTokenRequest",
    "PropertyTokenResult",
    "deploy_property_token",
    "check_existing",
    "SuiteSettings",
    "SuiteDeployment",
    "deploy_full_suite",
    "deploy_suite_infrastructure",
    # Ledger
    "DeploymentSession",
    "Signer",
    "Receipt",
    "Web3Ledger",
    "InMemoryLedger",
    "connect_ledger",
    # Models
    "SuiteAddressSet",
    "DeploymentReport",
]
