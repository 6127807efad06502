"""
Result models shared by the deployment flows.

SuiteAddressSet is the hand-off artifact of a suite run; DeploymentReport is
what the CLI renders (json, yaml, table, text, or env lines for the next run).

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from trexkit.validation import require_address

SUITE_FIELDS = (
    "token",
    "identity_registry",
    "identity_registry_storage",
    "trusted_issuers_registry",
    "claim_topics_registry",
    "compliance",
)


@dataclass(frozen=True)
class SuiteAddressSet:
    """
    Addresses of one linked suite.

    Every field except the token's OnchainID is required and must be a
    non-zero address; the factory event does not report the token identity.
    """
    token: str
    identity_registry: str
    identity_registry_storage: str
    trusted_issuers_registry: str
    claim_topics_registry: str
    compliance: str
    token_oid: Optional[str] = None

    def __post_init__(self) -> None:
        for name in SUITE_FIELDS:
            object.__setattr__(self, name, require_address(name, getattr(self, name)))
        if self.token_oid is not None:
            object.__setattr__(self, "token_oid", require_address("token_oid", self.token_oid))

    def with_token_oid(self, token_oid: str) -> "SuiteAddressSet":
        return replace(self, token_oid=token_oid)

    def to_dict(self) -> Dict[str, Optional[str]]:
        data = asdict(self)
        if data["token_oid"] is None:
            del data["token_oid"]
        return data


# Keys the follow-up commands read from the environment.
ENV_NAMES = {
    ("suite", "token"): "TOKEN_ADDRESS",
    ("suite", "identity_registry"): "IDENTITY_REGISTRY_ADDRESS",
    ("authorities", "identity_implementation_authority"): "IDENTITY_IMPLEMENTATION_AUTHORITY",
    ("factories", "trex_factory"): "TREX_FACTORY_ADDRESS",
    ("accounts", "user_wallet"): "USER_WALLET",
    ("identities", "user"): "USER_IDENTITY_ADDRESS",
}


def env_name(section: str, key: str) -> str:
    return ENV_NAMES.get((section, key), f"{section}_{key}".upper())


@dataclass
class DeploymentReport:
    """Addresses and notes produced by one run, grouped by section."""
    operation: str
    network: str
    accounts: Dict[str, str] = field(default_factory=dict)
    identities: Dict[str, str] = field(default_factory=dict)
    suite: Dict[str, str] = field(default_factory=dict)
    authorities: Dict[str, str] = field(default_factory=dict)
    factories: Dict[str, str] = field(default_factory=dict)
    details: Dict[str, Any] = field(default_factory=dict)
    notes: List[str] = field(default_factory=list)
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    SECTIONS = ("accounts", "identities", "suite", "authorities", "factories")

    def add_suite(self, addresses: SuiteAddressSet) -> None:
        self.suite.update({k: v for k, v in addresses.to_dict().items() if v})

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "operation": self.operation,
            "network": self.network,
            "created_at": self.created_at,
        }
        for section in self.SECTIONS:
            values = getattr(self, section)
            if values:
                data[section] = dict(values)
        if self.details:
            data["details"] = dict(self.details)
        if self.notes:
            data["notes"] = list(self.notes)
        return data

    def to_env(self) -> str:
        """``KEY=value`` lines ready to be exported into a follow-up run."""
        lines = []
        for section in self.SECTIONS:
            for key, value in getattr(self, section).items():
                lines.append(f"{env_name(section, key)}={value}")
        return "\n".join(lines)
