"""
trexkit Configuration

Run settings from YAML files, environment variables and runtime overrides.

Configuration Sources (in order of precedence):
    1. Environment variables (TREX_*, PROPERTY_*, and the hand-off variables
       such as IDENTITY_REGISTRY_ADDRESS)
    2. Runtime overrides / values from a loaded YAML file
    3. Default values

Private keys are not part of the config tree: role keys are read from the
environment by the role resolver.

Copyright (c) 2024 Momentum. All rights reserved.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml
from jsonschema import Draft202012Validator

from trexkit.errors import ConfigError, ConfigValidationError

T = TypeVar("T")

DEFAULT_FACTORY_PLACEHOLDER = "0xB7f8BC63BbcaD18155201308C8f3540b07f84F5e"
# Arbitrum Sepolia deployments used by the single-user follow-up runs
DEFAULT_IDENTITY_IMPLEMENTATION_AUTHORITY = "0xd436Ac872F300c2b163D2d8ecBB1498AbEEe1DdC"
DEFAULT_IDENTITY_REGISTRY = "0x51991f45EA1475C4C0eD37a9f615041a3b0bCc6C"


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding and validation.
    Blank environment values count as unset; secret values are masked
    wherever the config is displayed.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    secret: bool = False
    _value: Optional[T] = field(default=None, repr=False)

    def get(self) -> T:
        if self.env_var:
            env_value = os.environ.get(self.env_var)
            if env_value is not None and env_value.strip():
                return self._coerce(env_value.strip())

        return self._value if self._value is not None else self.default

    def shown(self) -> Any:
        """The value as displayed; a set secret is masked."""
        value = self.get()
        return "***" if self.secret and value else value

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if isinstance(value, str) and not isinstance(self.default, str):
            value = self._coerce(value)
        if self.validator and not self.validator(value):
            raise ConfigValidationError(self.env_var or "config", "invalid value", value)

        self._value = value

    def _coerce(self, value: str) -> T:
        """Coerce string value to the type of the default."""
        target_type = type(self.default)

        try:
            if target_type == bool:
                return value.lower() in ("true", "1", "yes", "on")  # type: ignore
            elif target_type == int:
                return int(value)  # type: ignore
            elif target_type == float:
                return float(value)  # type: ignore
            elif target_type == Decimal:
                return Decimal(value)  # type: ignore
            elif target_type == list:
                return [item.strip() for item in value.split(",") if item.strip()]  # type: ignore
            else:
                return value  # type: ignore
        except (ArithmeticError, ValueError):
            raise ConfigValidationError(
                self.env_var or "config",
                f"expected {target_type.__name__}",
                value,
            ) from None


def _is_rpc_url(value: str) -> bool:
    return value == "" or value.startswith(("http://", "https://", "ws://", "wss://"))


@dataclass
class NetworkConfig:
    """Which ledger to talk to and how long to wait for it."""
    name: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="memory",
        env_var="TREX_NETWORK",
        description="Network name (memory, hardhat, localhost, sepolia, arbitrum-sepolia, ...)",
        validator=lambda x: bool(x.strip()),
    ))
    rpc_url: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="TREX_RPC_URL",
        description="JSON-RPC endpoint; defaults per network when blank",
        validator=_is_rpc_url,
        secret=True,
    ))
    artifacts_dir: ConfigValue[list] = field(default_factory=lambda: ConfigValue(
        default=["artifacts", "node_modules/@onchain-id/solidity/artifacts"],
        env_var="TREX_ARTIFACTS_DIR",
        description="Directories holding compiled contract artifacts (abi + bytecode)",
    ))
    confirmation_timeout_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=120.0,
        env_var="TREX_CONFIRMATION_TIMEOUT",
        description="Seconds to wait for one confirmation before the run aborts",
        validator=lambda x: x > 0,
    ))
    poll_latency_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=0.5,
        env_var="TREX_POLL_LATENCY",
        description="Receipt polling interval in seconds",
        validator=lambda x: x > 0,
    ))


@dataclass
class TokenConfig:
    """Token deployed by the suite runs."""
    name: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="TREXDINO",
        env_var="TREX_TOKEN_NAME",
        description="Token name",
    ))
    symbol: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="TREX",
        env_var="TREX_TOKEN_SYMBOL",
        description="Token symbol",
    ))
    decimals: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="TREX_TOKEN_DECIMALS",
        description="Token decimals (0-18)",
        validator=lambda x: 0 <= x <= 18,
    ))


@dataclass
class ClaimConfig:
    """Claim topics registered by the suite runs."""
    topics: ConfigValue[list] = field(default_factory=lambda: ConfigValue(
        default=["CLAIM_TOPIC"],
        env_var="TREX_CLAIM_TOPICS",
        description="Claim topic names (hashed with keccak256) or numeric ids",
        validator=lambda x: len(x) > 0,
    ))
    scheme: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=1,
        env_var="TREX_CLAIM_SCHEME",
        description="Claim signature scheme (1 = ECDSA)",
        validator=lambda x: x >= 0,
    ))
    sample_data: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="Some claim public data.",
        env_var="TREX_CLAIM_DATA",
        description="Public data carried by the sample claims of the full suite run",
    ))


@dataclass
class MintConfig:
    """Initial mints of the full suite run."""
    alice: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=1000,
        env_var="TREX_MINT_ALICE",
        description="Amount minted to alice",
        validator=lambda x: x >= 0,
    ))
    bob: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=500,
        env_var="TREX_MINT_BOB",
        description="Amount minted to bob",
        validator=lambda x: x >= 0,
    ))


@dataclass
class PropertyTokenConfig:
    """Single token deployed through an existing factory."""
    factory_address: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default=DEFAULT_FACTORY_PLACEHOLDER,
        env_var="TREX_FACTORY_ADDRESS",
        description="TREX factory address",
    ))
    name: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="Luxury Villa A4",
        env_var="PROPERTY_TOKEN_NAME",
        description="Property token name",
    ))
    symbol: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="LVA1",
        env_var="PROPERTY_TOKEN_SYMBOL",
        description="Property token symbol",
    ))
    decimals: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="0",
        env_var="PROPERTY_TOKEN_DECIMALS",
        description="Property token decimals (0-18), validated at deploy time",
    ))
    owner: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="PROPERTY_OWNER_ADDRESS",
        description="Token owner; defaults to the second pooled signer, then the deployer",
    ))
    salt: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="PROPERTY_TOKEN_SALT",
        description="Deployment salt; defaults to the token name",
    ))


@dataclass
class IdentityConfig:
    """Inputs of the single-user identity runs."""
    implementation_authority: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default=DEFAULT_IDENTITY_IMPLEMENTATION_AUTHORITY,
        env_var="IDENTITY_IMPLEMENTATION_AUTHORITY",
        description="OnchainID implementation authority used for new identities",
    ))
    registry: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default=DEFAULT_IDENTITY_REGISTRY,
        env_var="IDENTITY_REGISTRY_ADDRESS",
        description="Identity registry that users are registered with",
    ))
    user_wallet: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="USER_WALLET",
        description="User wallet address",
    ))
    user_identity: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="USER_IDENTITY_ADDRESS",
        description="Identity contract of the user",
    ))
    country: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=42,
        env_var="USER_COUNTRY",
        description="ISO-3166 numeric country code stored with the registration",
        validator=lambda x: 0 <= x <= 65535,
    ))


@dataclass
class ObservabilityConfig:
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="TREX_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="TREX_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class SuiteConfig:
    """Root configuration."""
    network: NetworkConfig = field(default_factory=NetworkConfig)
    token: TokenConfig = field(default_factory=TokenConfig)
    claims: ClaimConfig = field(default_factory=ClaimConfig)
    mint: MintConfig = field(default_factory=MintConfig)
    property_token: PropertyTokenConfig = field(default_factory=PropertyTokenConfig)
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self) -> Dict[str, Any]:
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                return obj.shown()
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)


def _section_schema(section: Any) -> Dict[str, Any]:
    """JSON Schema for one config section, derived from its ConfigValues."""
    json_types = {bool: "boolean", int: "integer", float: "number", str: "string", list: "array"}
    properties: Dict[str, Any] = {}
    for name in section.__dataclass_fields__:
        value = getattr(section, name)
        if isinstance(value, ConfigValue):
            kind = json_types.get(type(value.default), "string")
            if kind == "number":
                properties[name] = {"type": ["number", "integer"]}
            elif kind == "integer":
                properties[name] = {"type": ["integer", "string"]}
            elif kind == "string" and isinstance(value.default, str):
                properties[name] = {"type": ["string", "integer"]}
            else:
                properties[name] = {"type": kind}
    return {"type": "object", "properties": properties, "additionalProperties": False}


def config_file_schema(config: Optional[SuiteConfig] = None) -> Dict[str, Any]:
    """JSON Schema that YAML config documents must satisfy."""
    config = config or SuiteConfig()
    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "properties": {
            name: _section_schema(getattr(config, name))
            for name in config.__dataclass_fields__
        },
        "additionalProperties": False,
    }


class ConfigManager:
    """Configuration manager with file loading and environment binding."""

    def __init__(self, config: Optional[SuiteConfig] = None):
        self._config = config or SuiteConfig()

    @property
    def config(self) -> SuiteConfig:
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load and schema-check a YAML file, then apply it."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Configuration file {path} is not valid YAML: {e}") from e

        if data is None:
            return
        errors = self.validate_document(data)
        if errors:
            raise ConfigError(f"Configuration file {path} is invalid: " + "; ".join(errors))

        self._apply_dict(data)

    def load_defaults(self) -> None:
        """Load the first default config file that exists, if any."""
        default_paths = [
            Path("trexkit.yaml"),
            Path("config/trexkit.yaml"),
            Path.home() / ".trexkit" / "config.yaml",
        ]

        for path in default_paths:
            if path.exists():
                self.load_from_file(path)
                return

    def validate_document(self, data: Any) -> List[str]:
        validator = Draft202012Validator(config_file_schema(self._config))
        return [
            f"{error.json_path}: {error.message}"
            for error in validator.iter_errors(data)
        ]

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        def apply_to_config(config_obj: Any, values: Dict[str, Any]) -> None:
            for key, value in values.items():
                if hasattr(config_obj, key):
                    attr = getattr(config_obj, key)
                    if isinstance(attr, ConfigValue):
                        attr.set(value)
                    elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                        apply_to_config(attr, value)

        apply_to_config(self._config, data)

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by dotted path.

        Example: manager.set("token.decimals", 6)
        """
        attr = self._resolve(path)
        if isinstance(attr, ConfigValue):
            attr.set(value)
        else:
            raise ConfigError(f"Invalid config path: {path}")

    def get(self, path: str) -> Any:
        """
        Get a configuration value by dotted path.

        Example: manager.get("network.confirmation_timeout_seconds")
        """
        obj = self._resolve(path)
        if isinstance(obj, ConfigValue):
            return obj.get()
        if hasattr(obj, "__dataclass_fields__"):
            return {k: getattr(obj, k).get() for k in obj.__dataclass_fields__}
        return obj

    def _resolve(self, path: str) -> Any:
        obj: Any = self._config
        for part in path.split("."):
            if not hasattr(obj, "__dataclass_fields__") or part not in obj.__dataclass_fields__:
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)
        return obj

    def validate(self) -> List[str]:
        """
        Validate all configuration values, environment included.

        Returns list of validation errors.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    value = obj.get()
                    if obj.validator and not obj.validator(value):
                        errors.append(f"{path}: validation failed for value {obj.shown()}")
                except ConfigValidationError as e:
                    errors.append(f"{path}: {e}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)
        return errors

    def export_schema(self) -> Dict[str, Any]:
        """Export configuration schema for documentation."""
        schema: Dict[str, Any] = {"properties": {}}

        def extract_schema(obj: Any, properties: Dict[str, Any]) -> None:
            if isinstance(obj, ConfigValue):
                properties["type"] = type(obj.default).__name__
                properties["default"] = str(obj.default)
                properties["description"] = obj.description
                if obj.env_var:
                    properties["env_var"] = obj.env_var
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    properties[field_name] = {}
                    extract_schema(getattr(obj, field_name), properties[field_name])

        extract_schema(self._config, schema["properties"])
        return schema
