"""
Single-user identity runs against an already deployed suite.

Three follow-ups, usually run in sequence with the output of one exported
into the environment of the next:

    deploy_user_identity     identity proxy with USER_WALLET as management key
    register_user_identity   USER_WALLET <-> USER_IDENTITY_ADDRESS on the registry
    check_verification       isVerified(USER_WALLET)

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from trexkit.authority import ComponentAuthority, IDENTITY_AUTHORITY_CONTRACT, deploy_identity_proxy
from trexkit.errors import LedgerCallError
from trexkit.ledger import Receipt, Signer
from trexkit.observability import SuiteLayer, get_logger, timed_operation
from trexkit.session import DeploymentSession
from trexkit.validation import require_address

logger = get_logger("registration", SuiteLayer.REGISTRATION)

DEFAULT_COUNTRY = 42


@timed_operation(logger, "deploy_user_identity")
def deploy_user_identity(
    session: DeploymentSession,
    implementation_authority: str,
    user_wallet: str,
    agent: Signer,
) -> str:
    """Deploy an identity for ``user_wallet`` and return its address."""
    user_wallet = require_address("User wallet address", user_wallet)
    authority = ComponentAuthority(session, implementation_authority, IDENTITY_AUTHORITY_CONTRACT)
    logger.info("Deploying a new OnchainID", user_wallet=user_wallet, authority=authority.address)
    proxy = deploy_identity_proxy(session, authority, user_wallet, agent, label=f"identity of {user_wallet}")
    logger.info("OnchainID deployed", user_wallet=user_wallet, identity=proxy.address)
    return proxy.address


@timed_operation(logger, "register_user_identity")
def register_user_identity(
    session: DeploymentSession,
    identity_registry: str,
    user_wallet: str,
    user_identity: str,
    agent: Signer,
    country: int = DEFAULT_COUNTRY,
) -> Receipt:
    """Register the wallet/identity pair; the agent must be a registry agent."""
    identity_registry = require_address("Identity registry address", identity_registry)
    user_wallet = require_address("User wallet address", user_wallet)
    user_identity = require_address("User identity address", user_identity)
    receipt = session.transact(
        identity_registry,
        "IdentityRegistry",
        "batchRegisterIdentity",
        [[user_wallet], [user_identity], [int(country)]],
        agent,
        step=f"IdentityRegistry.batchRegisterIdentity {user_wallet}",
    )
    logger.info(
        "User registered",
        user_wallet=user_wallet,
        identity=user_identity,
        country=int(country),
        tx_hash=receipt.tx_hash,
    )
    return receipt


def check_verification(session: DeploymentSession, identity_registry: str, user_wallet: str) -> bool:
    identity_registry = require_address("Identity registry address", identity_registry)
    user_wallet = require_address("User wallet address", user_wallet)
    try:
        verified = bool(session.query(identity_registry, "IdentityRegistry", "isVerified", [user_wallet]))
    except LedgerCallError as e:
        logger.error(
            "isVerified() call failed; the registry's verification logic itself is failing",
            registry=identity_registry,
            error=str(e),
        )
        raise
    if verified:
        logger.info("Identity is verified", user_wallet=user_wallet)
    else:
        logger.warning(
            "Identity is NOT verified: check its claims and the registry's trusted issuers",
            user_wallet=user_wallet,
            registry=identity_registry,
        )
    return verified
