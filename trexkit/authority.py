"""
Implementation authorities and proxies.

Every suite component is reached through a proxy whose logic lives in an
implementation contract. The proxy does not store that address: on each call
it asks its implementation authority, which holds the single current binding
per component kind. Upgrading a component therefore means retargeting the
authority, and every proxy follows on its next call.

Two authority flavours are deployed:

    TREXImplementationAuthority   versioned; one binding for each of the six
                                  T-REX components, activated together
    ImplementationAuthority       OnchainID; one binding for Identity

A proxy is only deployed once its authority resolves a non-zero implementation
for the proxy's kind.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from trexkit.errors import AuthorityNotReady, IncompleteImplementationSet, PreconditionError
from trexkit.ledger import Signer
from trexkit.observability import SuiteLayer, get_logger
from trexkit.session import DeploymentSession
from trexkit.validation import ZERO_ADDRESS, is_zero_address, require_address

logger = get_logger("authority", SuiteLayer.AUTHORITY)
proxy_logger = get_logger("proxy", SuiteLayer.PROXY)

TREX_VERSION = (4, 0, 0)

TREX_AUTHORITY_CONTRACT = "TREXImplementationAuthority"
IDENTITY_AUTHORITY_CONTRACT = "ImplementationAuthority"


class ComponentKind(Enum):
    TOKEN = "token"
    CLAIM_TOPICS_REGISTRY = "ctr"
    IDENTITY_REGISTRY = "ir"
    IDENTITY_REGISTRY_STORAGE = "irs"
    TRUSTED_ISSUERS_REGISTRY = "tir"
    MODULAR_COMPLIANCE = "mc"
    IDENTITY = "identity"

    @property
    def getter(self) -> str:
        """Authority function returning the current implementation."""
        if self is ComponentKind.IDENTITY:
            return "getImplementation"
        if self is ComponentKind.TOKEN:
            return "getTokenImplementation"
        return f"get{self.value.upper()}Implementation"

    @property
    def implementation_contract(self) -> str:
        return _CONTRACTS[self][0]

    @property
    def proxy_contract(self) -> str:
        return _CONTRACTS[self][1]

    @property
    def authority_contract(self) -> str:
        if self is ComponentKind.IDENTITY:
            return IDENTITY_AUTHORITY_CONTRACT
        return TREX_AUTHORITY_CONTRACT


_CONTRACTS = {
    ComponentKind.TOKEN: ("Token", "TokenProxy"),
    ComponentKind.CLAIM_TOPICS_REGISTRY: ("ClaimTopicsRegistry", "ClaimTopicsRegistryProxy"),
    ComponentKind.IDENTITY_REGISTRY: ("IdentityRegistry", "IdentityRegistryProxy"),
    ComponentKind.IDENTITY_REGISTRY_STORAGE: ("IdentityRegistryStorage", "IdentityRegistryStorageProxy"),
    ComponentKind.TRUSTED_ISSUERS_REGISTRY: ("TrustedIssuersRegistry", "TrustedIssuersRegistryProxy"),
    ComponentKind.MODULAR_COMPLIANCE: ("ModularCompliance", "ModularComplianceProxy"),
    ComponentKind.IDENTITY: ("Identity", "IdentityProxy"),
}

# Field order of the TREXContracts struct taken by addAndUseTREXVersion.
SUITE_KINDS = (
    ComponentKind.TOKEN,
    ComponentKind.CLAIM_TOPICS_REGISTRY,
    ComponentKind.IDENTITY_REGISTRY,
    ComponentKind.IDENTITY_REGISTRY_STORAGE,
    ComponentKind.TRUSTED_ISSUERS_REGISTRY,
    ComponentKind.MODULAR_COMPLIANCE,
)

# Order in which the implementations are deployed.
IMPLEMENTATION_ORDER = (
    ComponentKind.CLAIM_TOPICS_REGISTRY,
    ComponentKind.TRUSTED_ISSUERS_REGISTRY,
    ComponentKind.IDENTITY_REGISTRY_STORAGE,
    ComponentKind.IDENTITY_REGISTRY,
    ComponentKind.MODULAR_COMPLIANCE,
    ComponentKind.TOKEN,
)


class ComponentAuthority:
    """Handle on a deployed implementation authority."""

    def __init__(self, session: DeploymentSession, address: str, contract: str = TREX_AUTHORITY_CONTRACT):
        self.session = session
        self.address = require_address("implementation authority", address)
        self.contract = contract

    def implementation(self, kind: ComponentKind) -> Optional[str]:
        """Current implementation for ``kind``, queried from the ledger every time."""
        current = self.session.query(self.address, self.contract, kind.getter)
        return None if is_zero_address(current) else current

    def require_ready(self, kind: ComponentKind) -> str:
        current = self.implementation(kind)
        if current is None:
            raise AuthorityNotReady(
                f"{self.contract} at {self.address} has no {kind.value} implementation; "
                f"refusing to deploy {kind.proxy_contract}"
            )
        return current

    def upgrade(
        self,
        new_implementation: str,
        signer: Signer,
        kind: ComponentKind = ComponentKind.IDENTITY,
    ) -> None:
        """
        Retarget ``kind`` to ``new_implementation``; live proxies follow immediately.

        An identity authority takes the new address as is. The versioned
        T-REX authority only switches whole versions, so the current six
        bindings are read back, ``kind`` is replaced and the set is activated
        as the next minor version.
        """
        new_implementation = require_address("implementation", new_implementation)
        if kind.authority_contract != self.contract:
            raise PreconditionError(
                f"{self.contract} at {self.address} does not serve {kind.value} implementations"
            )

        if self.contract == IDENTITY_AUTHORITY_CONTRACT:
            self.session.transact(
                self.address,
                self.contract,
                "updateImplementation",
                [new_implementation],
                signer,
                step=f"{self.contract}.updateImplementation",
            )
            logger.info("Implementation updated", authority=self.address, implementation=new_implementation)
            return

        contracts = {k: self.require_ready(k) for k in SUITE_KINDS}
        contracts[kind] = new_implementation
        major, minor, _ = self.current_version()
        version = (major, minor + 1, 0)
        self.session.transact(
            self.address,
            self.contract,
            "addAndUseTREXVersion",
            [version, tuple(contracts[k] for k in SUITE_KINDS)],
            signer,
            step=f"{self.contract}.addAndUseTREXVersion",
        )
        logger.info(
            "T-REX version activated",
            authority=self.address,
            version=".".join(map(str, version)),
            kind=kind.value,
            implementation=new_implementation,
        )

    def current_version(self) -> Tuple[int, int, int]:
        major, minor, patch = self.session.query(self.address, self.contract, "getCurrentVersion")
        return int(major), int(minor), int(patch)

    def __repr__(self) -> str:
        return f"<ComponentAuthority {self.contract} {self.address}>"


@dataclass(frozen=True)
class ProxyHandle:
    """Stable address of a component plus the interface used to call it."""
    address: str
    kind: ComponentKind
    authority: str

    @property
    def interface(self) -> str:
        return self.kind.implementation_contract


@dataclass(frozen=True)
class AuthorityDeployment:
    implementation: str
    authority: ComponentAuthority


@dataclass(frozen=True)
class IdentityAuthorityBundle:
    implementation: str
    authority: ComponentAuthority
    factory: str


def deploy_implementations(session: DeploymentSession, signer: Signer) -> Dict[ComponentKind, str]:
    """Deploy the six T-REX logic contracts."""
    return {
        kind: session.deploy(kind.implementation_contract, [], signer,
                             label=f"{kind.implementation_contract} implementation")
        for kind in IMPLEMENTATION_ORDER
    }


def deploy_authority_for(
    session: DeploymentSession,
    implementation_contract: str,
    init_args: Sequence[Any],
    signer: Signer,
) -> AuthorityDeployment:
    """Deploy an implementation, then an ImplementationAuthority pointing at it."""
    implementation = session.deploy(
        implementation_contract, init_args, signer, label=f"{implementation_contract} implementation"
    )
    authority = session.deploy(
        IDENTITY_AUTHORITY_CONTRACT, [implementation], signer,
        label=f"{implementation_contract} implementation authority",
    )
    logger.info("Authority deployed", implementation=implementation, authority=authority)
    return AuthorityDeployment(implementation, ComponentAuthority(session, authority, IDENTITY_AUTHORITY_CONTRACT))


def deploy_identity_authority(session: DeploymentSession, signer: Signer) -> IdentityAuthorityBundle:
    """Identity library implementation, its authority, and the identity factory."""
    deployment = deploy_authority_for(session, "Identity", [signer.address, True], signer)
    factory = session.deploy("Factory", [deployment.authority.address], signer, label="IdFactory")
    return IdentityAuthorityBundle(deployment.implementation, deployment.authority, factory)


def deploy_suite_authority(
    session: DeploymentSession,
    implementations: Mapping[ComponentKind, str],
    signer: Signer,
    version: Tuple[int, int, int] = TREX_VERSION,
) -> ComponentAuthority:
    """
    Deploy the versioned T-REX authority and activate ``version``.

    All six implementations must be present and non-zero; otherwise nothing
    is submitted.
    """
    missing = [
        kind.value for kind in SUITE_KINDS
        if is_zero_address(implementations.get(kind, ZERO_ADDRESS))
    ]
    if missing:
        raise IncompleteImplementationSet(
            f"cannot activate T-REX version {'.'.join(map(str, version))}: "
            f"missing implementations for {', '.join(missing)}"
        )
    contracts = [require_address(kind.value, implementations[kind]) for kind in SUITE_KINDS]

    address = session.deploy(
        TREX_AUTHORITY_CONTRACT, [True, ZERO_ADDRESS, ZERO_ADDRESS], signer,
        label=TREX_AUTHORITY_CONTRACT,
    )
    session.transact(
        address,
        TREX_AUTHORITY_CONTRACT,
        "addAndUseTREXVersion",
        [tuple(version), tuple(contracts)],
        signer,
        step=f"{TREX_AUTHORITY_CONTRACT}.addAndUseTREXVersion",
    )
    logger.info("T-REX version activated", authority=address, version=".".join(map(str, version)))
    return ComponentAuthority(session, address, TREX_AUTHORITY_CONTRACT)


def deploy_proxy(
    session: DeploymentSession,
    kind: ComponentKind,
    authority: ComponentAuthority,
    constructor_args: Sequence[Any],
    signer: Signer,
    label: Optional[str] = None,
) -> ProxyHandle:
    """Deploy ``kind``'s proxy once the authority can serve its implementation."""
    implementation = authority.require_ready(kind)
    address = session.deploy(
        kind.proxy_contract,
        [authority.address, *constructor_args],
        signer,
        label=label or kind.proxy_contract,
    )
    proxy_logger.info(
        "Proxy deployed",
        kind=kind.value,
        proxy=address,
        authority=authority.address,
        implementation=implementation,
    )
    return ProxyHandle(address, kind, authority.address)


def deploy_identity_proxy(
    session: DeploymentSession,
    authority: ComponentAuthority,
    management_key: str,
    signer: Signer,
    label: Optional[str] = None,
) -> ProxyHandle:
    """Identity proxy whose initial management key is ``management_key``."""
    management_key = require_address("management key", management_key)
    return deploy_proxy(
        session, ComponentKind.IDENTITY, authority, [management_key], signer,
        label=label or f"IdentityProxy for {management_key}",
    )
