"""
In-memory ledger.

InMemoryLedger implements LedgerAdapter in-process: deterministic accounts,
immediate mining, receipts with encoded logs, and simulated versions of the
T-REX and OnchainID contracts the provisioner deploys. It backs the ``memory``
network (dry runs) and the test suite.

Simulated contracts expose functions marked ``@external`` or ``@view``;
anything else is internal state handling. A failing ``require`` raises Revert,
which rolls the whole transaction back and yields a receipt with status 0.
Proxies keep their own storage and resolve the logic class through their
implementation authority on every call, so an authority upgrade is visible
immediately and a proxy whose authority has no implementation is unusable.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple, Type

from eth_utils import keccak, to_checksum_address
from eth_abi import encode

from trexkit.claims import KeyPurpose, claim_digest, claim_id, key_hash, recover_digest_signer
from trexkit.errors import ConfirmationTimeout, LedgerCallError, PreconditionError
from trexkit.events import TREX_SUITE_DEPLOYED, EventSchema
from trexkit.ledger import LogRecord, Network, PendingTransaction, Receipt, Signer
from trexkit.observability import SuiteLayer, get_logger
from trexkit.validation import ZERO_ADDRESS, is_zero_address

logger = get_logger("simulator", SuiteLayer.LEDGER)

PLACEHOLDER_CODE = bytes.fromhex("608060405234801561001057600080fd5b50")

DEPLOYED = EventSchema.from_signature("Deployed(address indexed _addr)")
OWNERSHIP_TRANSFERRED = EventSchema.from_signature(
    "OwnershipTransferred(address indexed previousOwner, address indexed newOwner)"
)
AGENT_ADDED = EventSchema.from_signature("AgentAdded(address indexed _agent)")
TRANSFER = EventSchema.from_signature(
    "Transfer(address indexed from, address indexed to, uint256 value)"
)
UNPAUSED = EventSchema.from_signature("Unpaused(address _userAddress)")
KEY_ADDED = EventSchema.from_signature(
    "KeyAdded(bytes32 indexed key, uint256 indexed purpose, uint256 indexed keyType)"
)
CLAIM_ADDED = EventSchema.from_signature(
    "ClaimAdded(bytes32 indexed claimId, uint256 indexed topic, uint256 scheme, "
    "address indexed issuer, bytes signature, bytes data, string uri)"
)
IDENTITY_REGISTERED = EventSchema.from_signature(
    "IdentityRegistered(address indexed investorAddress, address indexed identity)"
)
CLAIM_TOPIC_ADDED = EventSchema.from_signature("ClaimTopicAdded(uint256 indexed claimTopic)")
TRUSTED_ISSUER_ADDED = EventSchema.from_signature(
    "TrustedIssuerAdded(address indexed trustedIssuer, uint256[] claimTopics)"
)


class Revert(Exception):
    """A failed ``require`` inside a simulated contract."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


def require(condition: Any, reason: str) -> None:
    if not condition:
        raise Revert(reason)


def external(fn: Callable) -> Callable:
    fn.visibility = "external"  # type: ignore[attr-defined]
    return fn


def view(fn: Callable) -> Callable:
    fn.visibility = "view"  # type: ignore[attr-defined]
    return fn


def _addr(value: Any) -> str:
    if isinstance(value, bytes) and len(value) == 20:
        value = "0x" + value.hex()
    try:
        return to_checksum_address(value)
    except (TypeError, ValueError):
        raise Revert(f"invalid address argument: {value!r}") from None


def _b32(value: Any) -> bytes:
    if isinstance(value, str):
        value = bytes.fromhex(value[2:] if value.startswith("0x") else value)
    return bytes(value)


class CallContext:
    """Execution context of one (possibly nested) call."""

    def __init__(
        self, ledger: "InMemoryLedger", sender: str, this: str, logs: List[LogRecord], static: bool = False,
    ):
        self.ledger = ledger
        self.sender = sender
        self.this = this
        self.logs = logs
        self.static = static

    def call(self, address: str, function: str, *args: Any) -> Any:
        return self.ledger._run(self.this, address, function, args, self.logs, self.static)

    def create(self, contract: str, *args: Any) -> str:
        return self.ledger._create(self.this, contract, args, self.logs)

    def emit(self, schema: EventSchema, **values: Any) -> None:
        self.logs.append(schema.encode_log(self.this, values, len(self.logs)))


class SimulatedContract:
    """Base class: function dispatch and Ownable."""

    address: str = ZERO_ADDRESS

    def __init__(self) -> None:
        self._owner = ZERO_ADDRESS

    def constructor(self, ctx: CallContext, *args: Any) -> None:
        self._owner = ctx.sender

    def dispatch(self, ctx: CallContext, function: str, args: Sequence[Any]) -> Any:
        method = getattr(self, function, None)
        if getattr(method, "visibility", None) is None:
            raise Revert(f"{type(self).__name__}: function {function} not found")
        if ctx.static and method.visibility != "view":
            raise Revert(f"{type(self).__name__}: {function} modifies state in a static call")
        return method(ctx, *args)

    def _only_owner(self, ctx: CallContext) -> None:
        require(ctx.sender == self._owner, "Ownable: caller is not the owner")

    @view
    def owner(self, ctx: CallContext) -> str:
        return self._owner

    @external
    def transferOwnership(self, ctx: CallContext, new_owner: str) -> None:
        self._only_owner(ctx)
        new_owner = _addr(new_owner)
        require(not is_zero_address(new_owner), "Ownable: new owner is the zero address")
        previous, self._owner = self._owner, new_owner
        ctx.emit(OWNERSHIP_TRANSFERRED, previousOwner=previous, newOwner=new_owner)


class AgentRoleContract(SimulatedContract):
    """Ownable contract with an agent role."""

    def __init__(self) -> None:
        super().__init__()
        self._agents: Set[str] = set()

    def _only_agent(self, ctx: CallContext) -> None:
        require(ctx.sender in self._agents, "AgentRole: caller does not have the Agent role")

    @external
    def addAgent(self, ctx: CallContext, agent: str) -> None:
        self._only_owner(ctx)
        agent = _addr(agent)
        require(not is_zero_address(agent), "invalid argument - zero address")
        require(agent not in self._agents, "Roles: account already has role")
        self._agents.add(agent)
        ctx.emit(AGENT_ADDED, _agent=agent)

    @external
    def removeAgent(self, ctx: CallContext, agent: str) -> None:
        self._only_owner(ctx)
        agent = _addr(agent)
        require(agent in self._agents, "Roles: account does not have role")
        self._agents.discard(agent)

    @view
    def isAgent(self, ctx: CallContext, agent: str) -> bool:
        return _addr(agent) in self._agents


# =============================================================================
# ONCHAINID
# =============================================================================

class Identity(SimulatedContract):
    """ERC-734/735 identity: purpose-tagged keys and issuer-signed claims."""

    def __init__(self) -> None:
        super().__init__()
        self._library = False
        self._keys: Dict[bytes, Dict[str, Any]] = {}
        self._claims: Dict[bytes, Tuple[int, int, str, bytes, bytes, str]] = {}
        self._claims_by_topic: Dict[int, List[bytes]] = {}

    def constructor(self, ctx: CallContext, initial_management_key: str, is_library: bool = False) -> None:
        super().constructor(ctx)
        self._library = bool(is_library)
        if not self._library:
            self.init(ctx, initial_management_key)

    def init(self, ctx: CallContext, initial_management_key: str) -> None:
        key = key_hash(_addr(initial_management_key))
        self._keys[key] = {"purposes": {int(KeyPurpose.MANAGEMENT)}, "key_type": 1}

    def dispatch(self, ctx: CallContext, function: str, args: Sequence[Any]) -> Any:
        method = getattr(self, function, None)
        if self._library and getattr(method, "visibility", None) == "external":
            raise Revert("Interacting with the library contract is forbidden.")
        return super().dispatch(ctx, function, args)

    def _has_purpose(self, key: bytes, purpose: int) -> bool:
        entry = self._keys.get(key)
        if entry is None:
            return False
        return int(KeyPurpose.MANAGEMENT) in entry["purposes"] or purpose in entry["purposes"]

    def _only_manager(self, ctx: CallContext) -> None:
        require(
            ctx.sender == self.address
            or self._has_purpose(key_hash(ctx.sender), int(KeyPurpose.MANAGEMENT)),
            "Permissions: Sender does not have management key",
        )

    @view
    def keyHasPurpose(self, ctx: CallContext, key: Any, purpose: int) -> bool:
        return self._has_purpose(_b32(key), int(purpose))

    @view
    def getKeyPurposes(self, ctx: CallContext, key: Any) -> List[int]:
        entry = self._keys.get(_b32(key))
        return sorted(entry["purposes"]) if entry else []

    @external
    def addKey(self, ctx: CallContext, key: Any, purpose: int, key_type: int) -> bool:
        self._only_manager(ctx)
        key, purpose = _b32(key), int(purpose)
        entry = self._keys.setdefault(key, {"purposes": set(), "key_type": int(key_type)})
        require(purpose not in entry["purposes"], "Conflict: Key already has purpose")
        entry["purposes"].add(purpose)
        ctx.emit(KEY_ADDED, key=key, purpose=purpose, keyType=int(key_type))
        return True

    @external
    def removeKey(self, ctx: CallContext, key: Any, purpose: int) -> bool:
        self._only_manager(ctx)
        entry = self._keys.get(_b32(key))
        require(entry is not None and int(purpose) in entry["purposes"], "NonExisting: Key isn't registered")
        entry["purposes"].discard(int(purpose))
        if not entry["purposes"]:
            del self._keys[_b32(key)]
        return True

    @external
    def addClaim(
        self,
        ctx: CallContext,
        topic: int,
        scheme: int,
        issuer: str,
        signature: bytes,
        data: bytes,
        uri: str,
    ) -> bytes:
        require(
            ctx.sender == self.address
            or self._has_purpose(key_hash(ctx.sender), int(KeyPurpose.CLAIM)),
            "Permissions: Sender does not have claim signer key",
        )
        issuer = _addr(issuer)
        if issuer != self.address:
            valid = ctx.call(issuer, "isClaimValid", self.address, topic, signature, data)
            require(valid, "invalid claim")

        cid = claim_id(issuer, int(topic))
        if cid not in self._claims:
            self._claims_by_topic.setdefault(int(topic), []).append(cid)
        self._claims[cid] = (int(topic), int(scheme), issuer, bytes(signature), bytes(data), uri)
        ctx.emit(
            CLAIM_ADDED,
            claimId=cid, topic=int(topic), scheme=int(scheme), issuer=issuer,
            signature=bytes(signature), data=bytes(data), uri=uri,
        )
        return cid

    @view
    def getClaim(self, ctx: CallContext, cid: Any) -> Tuple[int, int, str, bytes, bytes, str]:
        return self._claims.get(_b32(cid), (0, 0, ZERO_ADDRESS, b"", b"", ""))

    @view
    def getClaimIdsByTopic(self, ctx: CallContext, topic: int) -> List[bytes]:
        return list(self._claims_by_topic.get(int(topic), []))

    @view
    def isClaimValid(self, ctx: CallContext, identity: str, topic: int, signature: bytes, data: bytes) -> bool:
        signer = recover_digest_signer(claim_digest(_addr(identity), int(topic), bytes(data)), signature)
        if signer is None:
            return False
        return self._has_purpose(key_hash(signer), int(KeyPurpose.CLAIM))


class ClaimIssuer(Identity):
    """Identity that issues claims and can revoke them by signature."""

    def __init__(self) -> None:
        super().__init__()
        self._revoked: Set[bytes] = set()

    def constructor(self, ctx: CallContext, initial_management_key: str) -> None:
        super().constructor(ctx, initial_management_key, False)

    @external
    def revokeClaimBySignature(self, ctx: CallContext, signature: bytes) -> None:
        self._only_manager(ctx)
        require(bytes(signature) not in self._revoked, "Conflict: Claim already revoked")
        self._revoked.add(bytes(signature))

    @view
    def isClaimRevoked(self, ctx: CallContext, signature: bytes) -> bool:
        return bytes(signature) in self._revoked

    @view
    def isClaimValid(self, ctx: CallContext, identity: str, topic: int, signature: bytes, data: bytes) -> bool:
        if bytes(signature) in self._revoked:
            return False
        return super().isClaimValid(ctx, identity, topic, signature, data)


class ImplementationAuthority(SimulatedContract):
    """OnchainID implementation authority: one mutable implementation address."""

    def __init__(self) -> None:
        super().__init__()
        self._implementation = ZERO_ADDRESS

    def constructor(self, ctx: CallContext, implementation: str) -> None:
        super().constructor(ctx)
        implementation = _addr(implementation)
        require(not is_zero_address(implementation), "invalid argument - zero address")
        self._implementation = implementation

    @view
    def getImplementation(self, ctx: CallContext) -> str:
        return self._implementation

    @external
    def updateImplementation(self, ctx: CallContext, implementation: str) -> None:
        self._only_owner(ctx)
        implementation = _addr(implementation)
        require(not is_zero_address(implementation), "invalid argument - zero address")
        self._implementation = implementation


class IdFactory(SimulatedContract):
    """OnchainID factory; token factories may create token identities."""

    def __init__(self) -> None:
        super().__init__()
        self._authority = ZERO_ADDRESS
        self._token_factories: Set[str] = set()
        self._salts: Set[str] = set()

    def constructor(self, ctx: CallContext, implementation_authority: str) -> None:
        super().constructor(ctx)
        authority = _addr(implementation_authority)
        require(not is_zero_address(authority), "invalid argument - zero address")
        self._authority = authority

    @view
    def implementationAuthority(self, ctx: CallContext) -> str:
        return self._authority

    @external
    def addTokenFactory(self, ctx: CallContext, factory: str) -> None:
        self._only_owner(ctx)
        factory = _addr(factory)
        require(not is_zero_address(factory), "invalid argument - zero address")
        require(factory not in self._token_factories, "already a factory")
        self._token_factories.add(factory)

    @view
    def isTokenFactory(self, ctx: CallContext, factory: str) -> bool:
        return _addr(factory) in self._token_factories

    def _deploy_identity(self, ctx: CallContext, salt: str, management_key: str) -> str:
        require(salt not in self._salts, "salt already taken")
        self._salts.add(salt)
        return ctx.create("IdentityProxy", self._authority, _addr(management_key))

    @external
    def createIdentity(self, ctx: CallContext, wallet: str, salt: str) -> str:
        self._only_owner(ctx)
        return self._deploy_identity(ctx, f"OID{salt}", wallet)

    @external
    def createTokenIdentity(self, ctx: CallContext, token: str, token_owner: str, salt: str) -> str:
        require(
            ctx.sender in self._token_factories or ctx.sender == self._owner,
            "only Factory or owner can call",
        )
        return self._deploy_identity(ctx, f"Token{salt}", token_owner)


# =============================================================================
# T-REX
# =============================================================================

TREX_COMPONENTS = ("token", "ctr", "ir", "irs", "tir", "mc")


class TREXImplementationAuthority(SimulatedContract):
    """Versioned authority holding one implementation per suite component."""

    def __init__(self) -> None:
        super().__init__()
        self._reference = False
        self._versions: Dict[Tuple[int, int, int], Dict[str, str]] = {}
        self._current: Optional[Tuple[int, int, int]] = None

    def constructor(self, ctx: CallContext, reference: bool, trex_factory: str, ia_factory: str) -> None:
        super().constructor(ctx)
        self._reference = bool(reference)

    @external
    def addTREXVersion(self, ctx: CallContext, version: Sequence[int], contracts: Sequence[str]) -> None:
        self._only_owner(ctx)
        require(self._reference, "ONLY reference contract can add versions")
        key = tuple(int(v) for v in version)
        require(key not in self._versions, "version already exists")
        require(len(contracts) == len(TREX_COMPONENTS), "invalid argument - contracts struct")
        addresses = [_addr(c) for c in contracts]
        require(all(not is_zero_address(a) for a in addresses), "invalid argument - zero address")
        self._versions[key] = dict(zip(TREX_COMPONENTS, addresses))

    @external
    def useTREXVersion(self, ctx: CallContext, version: Sequence[int]) -> None:
        self._only_owner(ctx)
        key = tuple(int(v) for v in version)
        require(key != self._current, "version already in use")
        require(key in self._versions, "invalid argument - non existing version")
        self._current = key

    @external
    def addAndUseTREXVersion(self, ctx: CallContext, version: Sequence[int], contracts: Sequence[str]) -> None:
        self.addTREXVersion(ctx, version, contracts)
        self.useTREXVersion(ctx, version)

    @view
    def getCurrentVersion(self, ctx: CallContext) -> Tuple[int, int, int]:
        return self._current or (0, 0, 0)

    @view
    def isReferenceContract(self, ctx: CallContext) -> bool:
        return self._reference

    def _implementation(self, component: str) -> str:
        if self._current is None:
            return ZERO_ADDRESS
        return self._versions[self._current][component]

    @view
    def getTokenImplementation(self, ctx: CallContext) -> str:
        return self._implementation("token")

    @view
    def getCTRImplementation(self, ctx: CallContext) -> str:
        return self._implementation("ctr")

    @view
    def getIRImplementation(self, ctx: CallContext) -> str:
        return self._implementation("ir")

    @view
    def getIRSImplementation(self, ctx: CallContext) -> str:
        return self._implementation("irs")

    @view
    def getTIRImplementation(self, ctx: CallContext) -> str:
        return self._implementation("tir")

    @view
    def getMCImplementation(self, ctx: CallContext) -> str:
        return self._implementation("mc")


class ClaimTopicsRegistry(SimulatedContract):

    def __init__(self) -> None:
        super().__init__()
        self._topics: List[int] = []

    def init(self, ctx: CallContext) -> None:
        self._owner = ctx.sender

    @external
    def addClaimTopic(self, ctx: CallContext, topic: int) -> None:
        self._only_owner(ctx)
        require(len(self._topics) < 15, "cannot require more than 15 topics")
        require(int(topic) not in self._topics, "claimTopic already exists")
        self._topics.append(int(topic))
        ctx.emit(CLAIM_TOPIC_ADDED, claimTopic=int(topic))

    @external
    def removeClaimTopic(self, ctx: CallContext, topic: int) -> None:
        self._only_owner(ctx)
        if int(topic) in self._topics:
            self._topics.remove(int(topic))

    @view
    def getClaimTopics(self, ctx: CallContext) -> List[int]:
        return list(self._topics)


class TrustedIssuersRegistry(SimulatedContract):

    def __init__(self) -> None:
        super().__init__()
        self._issuers: Dict[str, List[int]] = {}

    def init(self, ctx: CallContext) -> None:
        self._owner = ctx.sender

    @external
    def addTrustedIssuer(self, ctx: CallContext, issuer: str, topics: Sequence[int]) -> None:
        self._only_owner(ctx)
        issuer = _addr(issuer)
        require(not is_zero_address(issuer), "invalid argument - zero address")
        require(issuer not in self._issuers, "trusted Issuer already exists")
        require(len(topics) > 0, "trusted claim topics cannot be empty")
        require(len(topics) <= 15, "cannot have more than 15 claim topics")
        require(len(self._issuers) < 50, "cannot have more than 50 trusted issuers")
        self._issuers[issuer] = [int(t) for t in topics]
        ctx.emit(TRUSTED_ISSUER_ADDED, trustedIssuer=issuer, claimTopics=[int(t) for t in topics])

    @view
    def getTrustedIssuers(self, ctx: CallContext) -> List[str]:
        return list(self._issuers)

    @view
    def isTrustedIssuer(self, ctx: CallContext, issuer: str) -> bool:
        return _addr(issuer) in self._issuers

    @view
    def getTrustedIssuerClaimTopics(self, ctx: CallContext, issuer: str) -> List[int]:
        issuer = _addr(issuer)
        require(issuer in self._issuers, "trusted Issuer doesn't exist")
        return list(self._issuers[issuer])

    @view
    def getTrustedIssuersForClaimTopic(self, ctx: CallContext, topic: int) -> List[str]:
        return [issuer for issuer, topics in self._issuers.items() if int(topic) in topics]

    @view
    def hasClaimTopic(self, ctx: CallContext, issuer: str, topic: int) -> bool:
        return int(topic) in self._issuers.get(_addr(issuer), [])


class IdentityRegistryStorage(AgentRoleContract):
    """Wallet -> (identity, country) records; only bound registries may write."""

    def __init__(self) -> None:
        super().__init__()
        self._identities: Dict[str, Tuple[str, int]] = {}
        self._registries: List[str] = []

    def init(self, ctx: CallContext) -> None:
        self._owner = ctx.sender

    @external
    def bindIdentityRegistry(self, ctx: CallContext, registry: str) -> None:
        self._only_owner(ctx)
        registry = _addr(registry)
        require(not is_zero_address(registry), "invalid argument - zero address")
        require(len(self._registries) < 300, "cannot bind more than 300 IR to 1 IRS")
        self.addAgent(ctx, registry)
        self._registries.append(registry)

    @view
    def linkedIdentityRegistries(self, ctx: CallContext) -> List[str]:
        return list(self._registries)

    @external
    def addIdentityToStorage(self, ctx: CallContext, user: str, identity: str, country: int) -> None:
        self._only_agent(ctx)
        user, identity = _addr(user), _addr(identity)
        require(not is_zero_address(user) and not is_zero_address(identity), "invalid argument - zero address")
        require(user not in self._identities, "address stored already")
        self._identities[user] = (identity, int(country))

    @view
    def storedIdentity(self, ctx: CallContext, user: str) -> str:
        return self._identities.get(_addr(user), (ZERO_ADDRESS, 0))[0]

    @view
    def storedInvestorCountry(self, ctx: CallContext, user: str) -> int:
        return self._identities.get(_addr(user), (ZERO_ADDRESS, 0))[1]


class IdentityRegistry(AgentRoleContract):
    """Registers investor identities and answers ``isVerified``."""

    def __init__(self) -> None:
        super().__init__()
        self._tir = ZERO_ADDRESS
        self._ctr = ZERO_ADDRESS
        self._irs = ZERO_ADDRESS

    def init(self, ctx: CallContext, tir: str, ctr: str, irs: str) -> None:
        tir, ctr, irs = _addr(tir), _addr(ctr), _addr(irs)
        require(
            not any(is_zero_address(a) for a in (tir, ctr, irs)),
            "invalid argument - zero address",
        )
        self._owner = ctx.sender
        self._tir, self._ctr, self._irs = tir, ctr, irs

    @view
    def identityStorage(self, ctx: CallContext) -> str:
        return self._irs

    @view
    def issuersRegistry(self, ctx: CallContext) -> str:
        return self._tir

    @view
    def topicsRegistry(self, ctx: CallContext) -> str:
        return self._ctr

    @external
    def registerIdentity(self, ctx: CallContext, user: str, identity: str, country: int) -> None:
        self._only_agent(ctx)
        ctx.call(self._irs, "addIdentityToStorage", user, identity, country)
        ctx.emit(IDENTITY_REGISTERED, investorAddress=_addr(user), identity=_addr(identity))

    @external
    def batchRegisterIdentity(
        self,
        ctx: CallContext,
        users: Sequence[str],
        identities: Sequence[str],
        countries: Sequence[int],
    ) -> None:
        require(len(users) == len(identities) == len(countries), "arrays length mismatch")
        for user, identity, country in zip(users, identities, countries):
            self.registerIdentity(ctx, user, identity, country)

    @view
    def identity(self, ctx: CallContext, user: str) -> str:
        return ctx.call(self._irs, "storedIdentity", user)

    @view
    def investorCountry(self, ctx: CallContext, user: str) -> int:
        return ctx.call(self._irs, "storedInvestorCountry", user)

    @view
    def contains(self, ctx: CallContext, user: str) -> bool:
        return not is_zero_address(self.identity(ctx, user))

    @view
    def isVerified(self, ctx: CallContext, user: str) -> bool:
        identity = self.identity(ctx, user)
        if is_zero_address(identity):
            return False
        for topic in ctx.call(self._ctr, "getClaimTopics"):
            issuers = ctx.call(self._tir, "getTrustedIssuersForClaimTopic", topic)
            if not self._has_valid_claim(ctx, identity, topic, issuers):
                return False
        return True

    def _has_valid_claim(self, ctx: CallContext, identity: str, topic: int, issuers: Sequence[str]) -> bool:
        for issuer in issuers:
            stored_topic, _, stored_issuer, signature, data, _ = ctx.call(
                identity, "getClaim", claim_id(issuer, topic)
            )
            if stored_topic != topic or stored_issuer != issuer:
                continue
            try:
                if ctx.call(issuer, "isClaimValid", identity, topic, signature, data):
                    return True
            except Revert:
                continue
        return False


class DefaultCompliance(SimulatedContract):
    """Compliance that allows every transfer."""

    def __init__(self) -> None:
        super().__init__()
        self._tokens: Set[str] = set()

    @external
    def bindToken(self, ctx: CallContext, token: str) -> None:
        self._tokens.add(_addr(token))

    @view
    def canTransfer(self, ctx: CallContext, sender: str, to: str, amount: int) -> bool:
        return True

    @external
    def created(self, ctx: CallContext, to: str, amount: int) -> None:
        pass

    @external
    def transferred(self, ctx: CallContext, sender: str, to: str, amount: int) -> None:
        pass


class ModularCompliance(DefaultCompliance):
    """Modular compliance with no modules bound; one token per instance."""

    def __init__(self) -> None:
        super().__init__()
        self._token = ZERO_ADDRESS
        self._modules: List[str] = []

    def init(self, ctx: CallContext) -> None:
        self._owner = ctx.sender

    @external
    def bindToken(self, ctx: CallContext, token: str) -> None:
        require(
            ctx.sender == self._owner or (is_zero_address(self._token) and ctx.sender == _addr(token)),
            "only owner or token can call",
        )
        self._token = _addr(token)

    @view
    def getTokenBound(self, ctx: CallContext) -> str:
        return self._token

    @view
    def getModules(self, ctx: CallContext) -> List[str]:
        return list(self._modules)


class Token(AgentRoleContract):
    """ERC-3643 token: paused on creation, mint only to verified wallets."""

    def __init__(self) -> None:
        super().__init__()
        self._name = ""
        self._symbol = ""
        self._decimals = 0
        self._onchain_id = ZERO_ADDRESS
        self._ir = ZERO_ADDRESS
        self._compliance = ZERO_ADDRESS
        self._paused = True
        self._balances: Dict[str, int] = {}
        self._total_supply = 0

    def init(
        self,
        ctx: CallContext,
        identity_registry: str,
        compliance: str,
        name: str,
        symbol: str,
        decimals: int,
        onchain_id: str,
    ) -> None:
        require(
            not is_zero_address(identity_registry) and not is_zero_address(compliance),
            "invalid argument - zero address",
        )
        require(name != "" and symbol != "", "invalid argument - empty string")
        require(0 <= int(decimals) <= 18, "decimals between 0 and 18")
        self._owner = ctx.sender
        self._name, self._symbol, self._decimals = name, symbol, int(decimals)
        self._onchain_id = _addr(onchain_id) if onchain_id else ZERO_ADDRESS
        self._ir = _addr(identity_registry)
        self._compliance = _addr(compliance)
        self._paused = True
        ctx.call(self._compliance, "bindToken", self.address)

    @view
    def name(self, ctx: CallContext) -> str:
        return self._name

    @view
    def symbol(self, ctx: CallContext) -> str:
        return self._symbol

    @view
    def decimals(self, ctx: CallContext) -> int:
        return self._decimals

    @view
    def onchainID(self, ctx: CallContext) -> str:
        return self._onchain_id

    @view
    def identityRegistry(self, ctx: CallContext) -> str:
        return self._ir

    @view
    def compliance(self, ctx: CallContext) -> str:
        return self._compliance

    @view
    def paused(self, ctx: CallContext) -> bool:
        return self._paused

    @view
    def balanceOf(self, ctx: CallContext, wallet: str) -> int:
        return self._balances.get(_addr(wallet), 0)

    @view
    def totalSupply(self, ctx: CallContext) -> int:
        return self._total_supply

    @external
    def setOnchainID(self, ctx: CallContext, onchain_id: str) -> None:
        self._only_owner(ctx)
        self._onchain_id = _addr(onchain_id)

    @external
    def pause(self, ctx: CallContext) -> None:
        self._only_agent(ctx)
        require(not self._paused, "Pausable: paused")
        self._paused = True

    @external
    def unpause(self, ctx: CallContext) -> None:
        self._only_agent(ctx)
        require(self._paused, "Pausable: not paused")
        self._paused = False
        ctx.emit(UNPAUSED, _userAddress=ctx.sender)

    @external
    def mint(self, ctx: CallContext, to: str, amount: int) -> None:
        self._only_agent(ctx)
        to = _addr(to)
        require(ctx.call(self._ir, "isVerified", to), "Identity is not verified.")
        require(ctx.call(self._compliance, "canTransfer", ZERO_ADDRESS, to, amount), "Compliance not followed")
        self._balances[to] = self._balances.get(to, 0) + int(amount)
        self._total_supply += int(amount)
        ctx.call(self._compliance, "created", to, amount)
        ctx.emit(TRANSFER, **{"from": ZERO_ADDRESS, "to": to, "value": int(amount)})

    @external
    def transfer(self, ctx: CallContext, to: str, amount: int) -> bool:
        require(not self._paused, "Pausable: paused")
        to = _addr(to)
        require(self._balances.get(ctx.sender, 0) >= int(amount), "Insufficient Balance")
        require(ctx.call(self._ir, "isVerified", to), "Transfer not possible")
        self._balances[ctx.sender] -= int(amount)
        self._balances[to] = self._balances.get(to, 0) + int(amount)
        ctx.call(self._compliance, "transferred", ctx.sender, to, amount)
        ctx.emit(TRANSFER, **{"from": ctx.sender, "to": to, "value": int(amount)})
        return True


class AgentManager(SimulatedContract):
    """Delegates token agent actions to agent admins."""

    def __init__(self) -> None:
        super().__init__()
        self._token = ZERO_ADDRESS
        self._admins: Set[str] = set()

    def constructor(self, ctx: CallContext, token: str) -> None:
        super().constructor(ctx)
        self._token = _addr(token)

    @external
    def addAgentAdmin(self, ctx: CallContext, admin: str) -> None:
        self._only_owner(ctx)
        admin = _addr(admin)
        require(admin not in self._admins, "Roles: account already has role")
        self._admins.add(admin)

    @view
    def isAgentAdmin(self, ctx: CallContext, admin: str) -> bool:
        return _addr(admin) in self._admins

    @view
    def token(self, ctx: CallContext) -> str:
        return self._token


class TREXFactory(SimulatedContract):
    """Deploys a whole suite from one call and reports it in TREXSuiteDeployed."""

    def __init__(self) -> None:
        super().__init__()
        self._authority = ZERO_ADDRESS
        self._id_factory = ZERO_ADDRESS
        self._tokens: Dict[str, str] = {}

    def constructor(self, ctx: CallContext, implementation_authority: str, id_factory: str) -> None:
        super().constructor(ctx)
        self._authority = _addr(implementation_authority)
        self._id_factory = _addr(id_factory)
        require(
            not is_zero_address(self._authority) and not is_zero_address(self._id_factory),
            "invalid argument - zero address",
        )

    @view
    def getToken(self, ctx: CallContext, salt: str) -> str:
        return self._tokens.get(salt, ZERO_ADDRESS)

    @view
    def getImplementationAuthority(self, ctx: CallContext) -> str:
        return self._authority

    @view
    def getIdFactory(self, ctx: CallContext) -> str:
        return self._id_factory

    def _deploy(self, ctx: CallContext, contract: str, *args: Any) -> str:
        address = ctx.create(contract, *args)
        ctx.emit(DEPLOYED, _addr=address)
        return address

    @external
    def deployTREXSuite(
        self,
        ctx: CallContext,
        salt: str,
        token_details: Sequence[Any],
        claim_details: Sequence[Any],
    ) -> None:
        self._only_owner(ctx)
        (owner, name, symbol, decimals, irs, onchain_id,
         ir_agents, token_agents, modules, settings) = token_details
        topics, issuers, issuer_claims = claim_details

        require(salt not in self._tokens, "token already deployed")
        require(len(issuers) == len(issuer_claims), "claim pattern not valid")
        require(len(issuers) <= 5, "max 5 claim issuers at deployment")
        require(len(topics) <= 5, "max 5 claim topics at deployment")
        require(len(ir_agents) <= 5 and len(token_agents) <= 5, "max 5 agents at deployment")
        require(len(modules) <= 30, "max 30 module actions at deployment")
        require(len(modules) >= len(settings), "invalid compliance pattern")

        authority = self._authority
        if is_zero_address(irs):
            irs = self._deploy(ctx, "IdentityRegistryStorageProxy", authority)
        tir = self._deploy(ctx, "TrustedIssuersRegistryProxy", authority)
        ctr = self._deploy(ctx, "ClaimTopicsRegistryProxy", authority)
        mc = self._deploy(ctx, "ModularComplianceProxy", authority)
        ir = self._deploy(ctx, "IdentityRegistryProxy", authority, tir, ctr, irs)
        token = self._deploy(
            ctx, "TokenProxy", authority, ir, mc, name, symbol, decimals,
            onchain_id if not is_zero_address(onchain_id) else ZERO_ADDRESS,
        )
        if is_zero_address(onchain_id):
            token_id = ctx.call(self._id_factory, "createTokenIdentity", token, owner, salt)
            ctx.call(token, "setOnchainID", token_id)

        for topic in topics:
            ctx.call(ctr, "addClaimTopic", topic)
        for issuer, claims in zip(issuers, issuer_claims):
            ctx.call(tir, "addTrustedIssuer", issuer, claims)
        ctx.call(irs, "bindIdentityRegistry", ir)
        ctx.call(ir, "addAgent", token)
        for agent in ir_agents:
            ctx.call(ir, "addAgent", agent)
        for agent in token_agents:
            ctx.call(token, "addAgent", agent)

        for contract in (token, ir, irs, tir, ctr, mc):
            ctx.call(contract, "transferOwnership", owner)

        self._tokens[salt] = token
        ctx.emit(
            TREX_SUITE_DEPLOYED,
            _token=token, _ir=ir, _irs=irs, _tir=tir, _ctr=ctr, _mc=mc, _salt=salt,
        )


# =============================================================================
# PROXIES
# =============================================================================

class ComponentProxy(SimulatedContract):
    """
    Proxy delegating to an instance of the current implementation class.

    The implementation is looked up through the authority on every call.
    When it changes, the held logic instance is rebuilt from the new class
    and takes over the proxy's storage; storage the new logic adds starts
    from that class's defaults.
    """

    getter = "getImplementation"

    def __init__(self) -> None:
        super().__init__()
        self._authority = ZERO_ADDRESS
        self._logic: Optional[SimulatedContract] = None

    def _logic_class(self, ctx: CallContext) -> Type[SimulatedContract]:
        implementation = ctx.call(self._authority, self.getter)
        logic = ctx.ledger.contract_at(implementation)
        require(logic is not None and not is_zero_address(implementation), "implementation not set")
        return type(logic)

    def _bind(self, ctx: CallContext) -> SimulatedContract:
        logic_class = self._logic_class(ctx)
        if type(self._logic) is not logic_class:
            logic = logic_class()
            if self._logic is not None:
                vars(logic).update(vars(self._logic))
            logic.address = self.address
            self._logic = logic
        return self._logic

    def constructor(self, ctx: CallContext, authority: str, *init_args: Any) -> None:
        authority = _addr(authority)
        require(not is_zero_address(authority), "invalid argument - zero address")
        self._authority = authority
        self._bind(ctx).init(ctx, *init_args)  # type: ignore[attr-defined]

    def dispatch(self, ctx: CallContext, function: str, args: Sequence[Any]) -> Any:
        if function == "getImplementationAuthority":
            return self._authority
        return self._bind(ctx).dispatch(ctx, function, args)


class IdentityProxy(ComponentProxy):
    getter = "getImplementation"


class TokenProxy(ComponentProxy):
    getter = "getTokenImplementation"


class IdentityRegistryProxy(ComponentProxy):
    getter = "getIRImplementation"


class IdentityRegistryStorageProxy(ComponentProxy):
    getter = "getIRSImplementation"


class TrustedIssuersRegistryProxy(ComponentProxy):
    getter = "getTIRImplementation"


class ClaimTopicsRegistryProxy(ComponentProxy):
    getter = "getCTRImplementation"


class ModularComplianceProxy(ComponentProxy):
    getter = "getMCImplementation"


CONTRACTS: Dict[str, Type[SimulatedContract]] = {
    "Identity": Identity,
    "ClaimIssuer": ClaimIssuer,
    "ImplementationAuthority": ImplementationAuthority,
    "Factory": IdFactory,
    "IdFactory": IdFactory,
    "TREXImplementationAuthority": TREXImplementationAuthority,
    "TREXFactory": TREXFactory,
    "ClaimTopicsRegistry": ClaimTopicsRegistry,
    "TrustedIssuersRegistry": TrustedIssuersRegistry,
    "IdentityRegistryStorage": IdentityRegistryStorage,
    "IdentityRegistry": IdentityRegistry,
    "ModularCompliance": ModularCompliance,
    "DefaultCompliance": DefaultCompliance,
    "Token": Token,
    "AgentManager": AgentManager,
    "IdentityProxy": IdentityProxy,
    "TokenProxy": TokenProxy,
    "IdentityRegistryProxy": IdentityRegistryProxy,
    "IdentityRegistryStorageProxy": IdentityRegistryStorageProxy,
    "TrustedIssuersRegistryProxy": TrustedIssuersRegistryProxy,
    "ClaimTopicsRegistryProxy": ClaimTopicsRegistryProxy,
    "ModularComplianceProxy": ModularComplianceProxy,
}


# =============================================================================
# LEDGER
# =============================================================================

@dataclass(frozen=True)
class SimulatedTransaction:
    """Journal entry for every submitted transaction, failed ones included."""
    tx_hash: str
    kind: str
    sender: str
    to: Optional[str]
    contract: str
    function: str
    status: int


class InMemoryLedger:
    """Deterministic in-process LedgerAdapter."""

    def __init__(self, accounts: int = 10, seed: str = "trexkit"):
        self._signers = [
            Signer.from_private_key(keccak(text=f"{seed}:account:{index}").hex(), label=f"account-{index}")
            for index in range(accounts)
        ]
        self._contracts: Dict[str, SimulatedContract] = {}
        self._nonces: Dict[str, int] = {}
        self._receipts: Dict[str, Receipt] = {}
        self._withheld: Set[str] = set()
        self.block_number = 0
        self.transactions: List[SimulatedTransaction] = []

    @property
    def network(self) -> Network:
        return Network.MEMORY

    def pool_signers(self) -> List[Signer]:
        return list(self._signers)

    def contract_at(self, address: str) -> Optional[SimulatedContract]:
        if not address or is_zero_address(address):
            return None
        return self._contracts.get(to_checksum_address(address))

    def withhold_confirmation(self, description: str) -> None:
        """Never confirm transactions whose description matches, e.g. ``Token.unpause``."""
        self._withheld.add(description)

    def _next_address(self, sender: str) -> str:
        nonce = self._nonces.get(sender, 0)
        self._nonces[sender] = nonce + 1
        return to_checksum_address(keccak(encode(["address", "uint256"], [sender, nonce]))[-20:])

    def _create(self, sender: str, contract: str, args: Sequence[Any], logs: List[LogRecord]) -> str:
        contract_class = CONTRACTS[contract]
        address = self._next_address(sender)
        instance = contract_class()
        instance.address = address
        self._contracts[address] = instance
        instance.constructor(CallContext(self, sender, address, logs), *args)
        return address

    def _run(
        self,
        sender: str,
        address: str,
        function: str,
        args: Sequence[Any],
        logs: List[LogRecord],
        static: bool = False,
    ) -> Any:
        instance = self.contract_at(address)
        if instance is None:
            raise Revert(f"function call to a non-contract account {address}")
        return instance.dispatch(CallContext(self, sender, instance.address, logs, static), function, args)

    def _execute(
        self,
        kind: str,
        signer: Signer,
        contract: str,
        function: str,
        args: Sequence[Any],
        to: Optional[str] = None,
    ) -> PendingTransaction:
        description = f"deploy {contract}" if kind == "deploy" else f"{contract}.{function}"
        snapshot = copy.deepcopy((self._contracts, self._nonces))
        logs: List[LogRecord] = []
        created: Optional[str] = None
        status, reason = 1, ""
        try:
            if kind == "deploy":
                created = self._create(signer.address, contract, args, logs)
            else:
                self._run(signer.address, to, function, args, logs)
        except Revert as e:
            self._contracts, self._nonces = snapshot
            logs, created, status, reason = [], None, 0, e.reason
            logger.debug("Simulated transaction reverted", description=description, reason=reason)

        self.block_number += 1
        tx_hash = "0x" + keccak(text=f"{len(self.transactions)}:{signer.address}:{description}").hex()
        self._receipts[tx_hash] = Receipt(
            tx_hash=tx_hash,
            status=status,
            block_number=self.block_number,
            gas_used=21000 + 25000 * (len(logs) + (1 if created else 0)),
            contract_address=created,
            logs=logs,
            revert_reason=reason,
        )
        self.transactions.append(SimulatedTransaction(
            tx_hash=tx_hash,
            kind=kind,
            sender=signer.address,
            to=to,
            contract=contract,
            function=function,
            status=status,
        ))
        return PendingTransaction(tx_hash=tx_hash, description=description, sender=signer.address, kind=kind)

    def deploy(self, contract: str, args: Sequence[Any], signer: Signer) -> PendingTransaction:
        if contract not in CONTRACTS:
            raise PreconditionError(f"No simulated contract named '{contract}'")
        return self._execute("deploy", signer, contract, "constructor", args)

    def submit(
        self,
        address: str,
        contract: str,
        function: str,
        args: Sequence[Any],
        signer: Signer,
    ) -> PendingTransaction:
        return self._execute("call", signer, contract, function, args, to=to_checksum_address(address))

    def confirm(self, pending: PendingTransaction, timeout: float) -> Receipt:
        if pending.description in self._withheld or pending.tx_hash not in self._receipts:
            raise ConfirmationTimeout(pending.description, pending.tx_hash, timeout)
        return self._receipts[pending.tx_hash]

    def call(self, address: str, contract: str, function: str, args: Sequence[Any]) -> Any:
        """Static call; only view functions run, so no state is copied."""
        try:
            return self._run(ZERO_ADDRESS, address, function, args, [], static=True)
        except Revert as e:
            raise LedgerCallError(f"{contract}.{function} query failed: {e.reason}") from e

    def get_code(self, address: str) -> bytes:
        return PLACEHOLDER_CODE if self.contract_at(address) is not None else b""
