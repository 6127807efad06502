"""
Role to signer resolution.

Every suite role maps to exactly one signer per run, chosen in this order:

    1. the role's private key from the environment (TREX_<ROLE>_PRIVATE_KEY)
    2. the pooled signer at the role's index
    3. the deployer, with a warning logged once for the role

The deployer itself comes from TREX_DEPLOYER_PRIVATE_KEY, then PRIVATE_KEY,
then the first pooled signer.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional, Sequence

from trexkit.errors import PreconditionError
from trexkit.ledger import Signer
from trexkit.observability import SuiteLayer, get_logger
from trexkit.validation import require_private_key

logger = get_logger("roles", SuiteLayer.ROLES)

DEPLOYER_KEY_VARS = ("TREX_DEPLOYER_PRIVATE_KEY", "PRIVATE_KEY")
AGENT_KEY_VARS = ("AGENT_PRIVATE_KEY", "PRIVATE_KEY")
CLAIM_SIGNING_KEY_VAR = "TREX_CLAIM_ISSUER_SIGNING_KEY_PRIVATE_KEY"


class Role(Enum):
    DEPLOYER = "deployer"
    TOKEN_ISSUER = "tokenIssuer"
    TOKEN_AGENT = "tokenAgent"
    TOKEN_ADMIN = "tokenAdmin"
    CLAIM_ISSUER = "claimIssuer"

    @property
    def pool_index(self) -> int:
        return _POOL_INDEX[self]

    @property
    def env_var(self) -> str:
        return f"TREX_{self.value.upper()}_PRIVATE_KEY"


_POOL_INDEX = {
    Role.DEPLOYER: 0,
    Role.TOKEN_ISSUER: 1,
    Role.TOKEN_AGENT: 2,
    Role.TOKEN_ADMIN: 3,
    Role.CLAIM_ISSUER: 4,
}

SUITE_ROLES = (Role.TOKEN_ISSUER, Role.TOKEN_AGENT, Role.TOKEN_ADMIN, Role.CLAIM_ISSUER)


class RoleSource(Enum):
    FROM_KEY = "from_key"
    FROM_POOL = "from_pool"
    FROM_FALLBACK = "from_fallback"


@dataclass(frozen=True)
class RoleResolution:
    role: Role
    signer: Signer
    source: RoleSource

    @property
    def address(self) -> str:
        return self.signer.address


def _env_key(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def check_key_material(env: Mapping[str, str]) -> None:
    """Reject malformed key variables before a ledger is contacted."""
    names = DEPLOYER_KEY_VARS + AGENT_KEY_VARS + tuple(r.env_var for r in SUITE_ROLES) + (CLAIM_SIGNING_KEY_VAR,)
    for name in dict.fromkeys(names):
        key = _env_key(env, name)
        if key is not None:
            require_private_key(name, key)


def resolve_role(
    role: Role,
    env: Mapping[str, str],
    pool_signer: Optional[Signer],
    deployer: Signer,
) -> RoleResolution:
    """Pick the signer for ``role``; does not log."""
    key = _env_key(env, role.env_var)
    if key is not None:
        return RoleResolution(role, Signer.from_private_key(key, label=role.value), RoleSource.FROM_KEY)
    if pool_signer is not None:
        return RoleResolution(role, pool_signer, RoleSource.FROM_POOL)
    return RoleResolution(role, deployer, RoleSource.FROM_FALLBACK)


def resolve_deployer(env: Mapping[str, str], pool: Sequence[Signer]) -> RoleResolution:
    for name in DEPLOYER_KEY_VARS:
        key = _env_key(env, name)
        if key is not None:
            return RoleResolution(
                Role.DEPLOYER, Signer.from_private_key(key, label=name), RoleSource.FROM_KEY
            )
    if pool:
        return RoleResolution(Role.DEPLOYER, pool[0], RoleSource.FROM_POOL)
    raise PreconditionError(
        "No signer available: set TREX_DEPLOYER_PRIVATE_KEY or PRIVATE_KEY, "
        "or use a network whose node exposes accounts."
    )


def resolve_agent(env: Mapping[str, str]) -> Signer:
    """Operational agent for the single-identity commands."""
    for name in AGENT_KEY_VARS:
        key = _env_key(env, name)
        if key is not None:
            return Signer.from_private_key(key, label=name)
    raise PreconditionError("Missing AGENT_PRIVATE_KEY (preferred) or PRIVATE_KEY in environment.")


def resolve_claim_signing_key(env: Mapping[str, str]) -> Signer:
    """The claim issuer's signing key; a fresh one unless configured."""
    key = _env_key(env, CLAIM_SIGNING_KEY_VAR)
    if key is not None:
        return Signer.from_private_key(key, label="claimIssuerSigningKey")
    logger.info("Generated a fresh claim issuer signing key", variable=CLAIM_SIGNING_KEY_VAR)
    return Signer.random(label="claimIssuerSigningKey")


class RoleResolver:
    """
    Resolves each role once per run.

    Results are cached, so the fallback warning is logged at most once per
    role no matter how often a role is requested.
    """

    def __init__(self, pool: Sequence[Signer], env: Optional[Mapping[str, str]] = None):
        self.pool = list(pool)
        self.env = dict(os.environ if env is None else env)
        self._resolved: Dict[Role, RoleResolution] = {}

    @property
    def deployer(self) -> Signer:
        return self.resolve(Role.DEPLOYER).signer

    def resolve(self, role: Role) -> RoleResolution:
        if role in self._resolved:
            return self._resolved[role]

        if role is Role.DEPLOYER:
            resolution = resolve_deployer(self.env, self.pool)
        else:
            pool_signer = self.pool[role.pool_index] if role.pool_index < len(self.pool) else None
            resolution = resolve_role(role, self.env, pool_signer, self.deployer)
            if resolution.source is RoleSource.FROM_FALLBACK:
                logger.warning(
                    f"No dedicated signer configured for {role.value}. "
                    f"Falling back to deployer account ({resolution.address}).",
                    role=role.value,
                )

        self._resolved[role] = resolution
        logger.debug("Role resolved", role=role.value, address=resolution.address,
                     source=resolution.source.value)
        return resolution

    def signer(self, role: Role) -> Signer:
        return self.resolve(role).signer

    def resolve_all(self) -> Dict[Role, RoleResolution]:
        return {role: self.resolve(role) for role in (Role.DEPLOYER,) + SUITE_ROLES}

    def pooled(self, index: int) -> Optional[Signer]:
        """Pooled signer by index, for the sample participants."""
        return self.pool[index] if index < len(self.pool) else None
