"""
Factory-driven single-suite deployment.

``deployTREXSuite`` creates a whole suite from one transaction. The factory
remembers the token deployed for each salt, which makes the salt an
idempotency key: before submitting, ``check_existing`` asks the factory for
the salt's token and the run stops early, successfully, if one exists. The
new suite's addresses are only reported through the TREXSuiteDeployed event
and are recovered from the receipt.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from trexkit.config import DEFAULT_FACTORY_PLACEHOLDER, SuiteConfig
from trexkit.errors import LedgerCallError, PreconditionError
from trexkit.events import TREX_SUITE_DEPLOYED, extract_suite_addresses
from trexkit.ledger import Network, Signer
from trexkit.models import SuiteAddressSet
from trexkit.observability import SuiteLayer, get_logger, timed_operation
from trexkit.session import DeploymentSession
from trexkit.validation import (
    ZERO_ADDRESS,
    is_zero_address,
    parse_decimals,
    require_address,
    require_salt,
    require_text,
    unique_addresses,
)

logger = get_logger("factory", SuiteLayer.FACTORY)

FACTORY_CONTRACT = "TREXFactory"
DEFAULT_PROPERTY_NAME = "Luxury Villa A4"
DEFAULT_PROPERTY_SYMBOL = "LVA1"


@dataclass(frozen=True)
class ExistingSuite:
    """A suite already exists for the salt; nothing was submitted."""
    salt: str
    token: str
    factory: str

    exit_code = 0

    @property
    def message(self) -> str:
        return (
            f"Detected existing TREX suite for salt \"{self.salt}\": {self.token}. "
            "Aborting to avoid duplicate deployment."
        )


@dataclass(frozen=True)
class PropertyTokenRequest:
    factory: str
    name: str
    symbol: str
    decimals: int
    owner: str
    salt: str

    @classmethod
    def from_config(
        cls,
        config: SuiteConfig,
        pool: Sequence[Signer] = (),
        deployer: Optional[Signer] = None,
    ) -> "PropertyTokenRequest":
        """
        Validate the property token settings.

        The salt defaults to the token name. Without a configured owner the
        request is left unowned until ``with_default_owner`` is given the
        ledger's signers; passing ``deployer`` here resolves it at once.
        """
        section = config.property_token
        name = require_text("name", section.name.get(), DEFAULT_PROPERTY_NAME)
        owner_input = section.owner.get().strip()
        request = cls(
            factory=require_address("TREX factory address", section.factory_address.get() or DEFAULT_FACTORY_PLACEHOLDER),
            name=name,
            symbol=require_text("symbol", section.symbol.get(), DEFAULT_PROPERTY_SYMBOL),
            decimals=parse_decimals(section.decimals.get(), 0),
            owner=require_address("Property owner address", owner_input) if owner_input else "",
            salt=require_salt(section.salt.get() or name),
        )
        if deployer is not None:
            request = request.with_default_owner(pool, deployer)
        return request

    def with_default_owner(self, pool: Sequence[Signer], deployer: Signer) -> "PropertyTokenRequest":
        """The second pooled signer, then the deployer, unless an owner is set."""
        if self.owner:
            return self
        owner = pool[1].address if len(pool) > 1 else deployer.address
        return replace(self, owner=require_address("Property owner address", owner))


@dataclass(frozen=True)
class PropertyTokenResult:
    request: PropertyTokenRequest
    tx_hash: str
    block_number: int
    gas_used: int
    suite: SuiteAddressSet

    exit_code = 0


def check_existing(session: DeploymentSession, factory: str, salt: str) -> Optional[str]:
    """
    Token already deployed by ``factory`` for ``salt``, if any.

    A failing query does not block the deployment: it is logged and treated
    as "no existing suite".
    """
    try:
        token = session.query(factory, FACTORY_CONTRACT, "getToken", [salt])
    except LedgerCallError as e:
        logger.warning(
            f"Skipping duplicate deployment check because factory.getToken reverted: {e}. "
            "Continuing with deployment.",
            factory=factory,
            salt=salt,
        )
        return None
    if is_zero_address(token):
        return None
    return require_address("existing token", token)


def ensure_contract_deployed(session: DeploymentSession, address: str, label: str) -> None:
    if session.has_code(address):
        return
    network = session.ledger.network
    if network in (Network.HARDHAT, Network.MEMORY):
        hint = (
            "Start a local node and rerun with `--network localhost`, "
            "or deploy the factory first (`trexkit suite infrastructure`)."
        )
    else:
        hint = f'Make sure the contract is deployed on the "{network.value}" network.'
    raise PreconditionError(
        f'{label} ({address}) has no contract bytecode on network "{network.value}". {hint}'
    )


def build_token_details(request: PropertyTokenRequest, agents: List[str]) -> Tuple[Any, ...]:
    """TokenDetails struct; the factory deploys storage and token identity itself."""
    return (
        request.owner,
        request.name,
        request.symbol,
        request.decimals,
        ZERO_ADDRESS,
        ZERO_ADDRESS,
        agents,
        agents,
        [],
        [],
    )


def build_claim_details() -> Tuple[List[int], List[str], List[List[int]]]:
    return ([], [], [])


@timed_operation(logger, "deploy_property_token")
def deploy_property_token(
    session: DeploymentSession,
    request: PropertyTokenRequest,
    deployer: Signer,
) -> Union[PropertyTokenResult, ExistingSuite]:
    request = request.with_default_owner(session.ledger.pool_signers(), deployer)
    ensure_contract_deployed(session, request.factory, "TREX factory address")

    existing = check_existing(session, request.factory, request.salt)
    if existing is not None:
        result = ExistingSuite(request.salt, existing, request.factory)
        logger.warning(result.message, salt=request.salt, token=existing)
        return result

    agents = unique_addresses([deployer.address, request.owner])
    logger.info(
        f"Deploying token {request.name} ({request.symbol}) with {request.decimals} decimals",
        factory=request.factory,
        salt=request.salt,
        deployer=deployer.address,
        owner=request.owner,
    )

    receipt = session.transact(
        request.factory,
        FACTORY_CONTRACT,
        "deployTREXSuite",
        [request.salt, build_token_details(request, agents), build_claim_details()],
        deployer,
        step=f"{FACTORY_CONTRACT}.deployTREXSuite {request.salt}",
    )
    logger.info(
        "Transaction confirmed",
        tx_hash=receipt.tx_hash,
        block_number=receipt.block_number,
        gas_used=receipt.gas_used,
    )

    suite = extract_suite_addresses(receipt, TREX_SUITE_DEPLOYED)
    return PropertyTokenResult(
        request=request,
        tx_hash=receipt.tx_hash,
        block_number=receipt.block_number,
        gas_used=receipt.gas_used,
        suite=suite,
    )


def result_details(result: Union[PropertyTokenResult, ExistingSuite]) -> Dict[str, Any]:
    if isinstance(result, ExistingSuite):
        return {"status": "existing", "salt": result.salt, "token": result.token, "factory": result.factory}
    return {
        "status": "deployed",
        "salt": result.request.salt,
        "tx_hash": result.tx_hash,
        "block_number": result.block_number,
        "gas_used": result.gas_used,
    }
