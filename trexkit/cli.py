#!/usr/bin/env python3
"""
trexkit CLI

Usage:
    trexkit [--network NAME] [--config FILE] [--format FMT] <command> <subcommand>

Commands:
    suite       deploy (full demo suite) | infrastructure (suite only, paused)
    token       deploy (single property token through a TREX factory)
    identity    deploy | register | verify (single-user follow-ups)
    claim       sign | verify (offline claim signatures)
    config      show | get | validate | schema

Addresses go to stdout in the chosen format; ``--format env`` prints
``KEY=value`` lines that can be exported into the next run. Logs go to stderr.

Copyright (c) 2024 Momentum. All rights reserved.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

import yaml

from trexkit import __version__
from trexkit.config import ConfigManager
from trexkit.errors import PreconditionError, TrexError
from trexkit.ledger import LedgerAdapter, Signer, connect_ledger
from trexkit.models import DeploymentReport
from trexkit.observability import (
    SuiteLayer,
    configure_logging,
    generate_correlation_id,
    get_logger,
    set_correlation_id,
)
from trexkit.session import DeploymentSession
from trexkit.validation import require_address

logger = get_logger("cli", SuiteLayer.CLI)


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"
    TABLE = "table"
    TEXT = "text"
    ENV = "env"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format a handler result for stdout."""
    if fmt == OutputFormat.ENV:
        if isinstance(data, DeploymentReport):
            return data.to_env()
        return _format_env(data)

    if isinstance(data, DeploymentReport):
        data = data.to_dict()
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        return yaml.dump(data, default_flow_style=False, sort_keys=False)
    elif fmt == OutputFormat.TABLE:
        return _format_table(data)
    else:
        return _format_text(data)


def _format_table(data: Any) -> str:
    """Two-column tables, one per section."""
    if not isinstance(data, dict):
        return str(data)

    scalars = {k: v for k, v in data.items() if not isinstance(v, (dict, list))}
    blocks = []
    if scalars:
        blocks.append(_two_columns(scalars))
    for key, value in data.items():
        if isinstance(value, dict):
            title = key.replace("_", " ").title()
            blocks.append(f"--- {title} ---\n{_two_columns(value)}")
        elif isinstance(value, list):
            title = key.replace("_", " ").title()
            blocks.append(f"--- {title} ---\n" + "\n".join(str(v) for v in value))
    return "\n\n".join(blocks)


def _two_columns(values: Dict[str, Any]) -> str:
    if not values:
        return "(empty)"
    width = max(len(str(k)) for k in values)
    lines = [f"{'name'.ljust(width)} | value", f"{'-' * width}-+-{'-' * 42}"]
    for key, value in values.items():
        shown = json.dumps(value, default=str) if isinstance(value, (dict, list)) else str(value)
        lines.append(f"{str(key).ljust(width)} | {shown}")
    return "\n".join(lines)


def _format_text(data: Any, indent: int = 0) -> str:
    if not isinstance(data, dict):
        return str(data)
    pad = "  " * indent
    lines = []
    for key, value in data.items():
        if isinstance(value, dict):
            lines.append(f"{pad}{key}:")
            lines.append(_format_text(value, indent + 1))
        else:
            lines.append(f"{pad}{key}: {value}")
    return "\n".join(lines)


def _format_env(data: Any) -> str:
    if not isinstance(data, dict):
        return str(data)
    return "\n".join(
        f"{str(key).upper()}={value}"
        for key, value in data.items()
        if not isinstance(value, (dict, list))
    )


class TrexCLI:
    """Main CLI application."""

    def __init__(self, ledger: Optional[LedgerAdapter] = None, env: Optional[Mapping[str, str]] = None):
        self._ledger = ledger
        self.env = env
        self.manager = ConfigManager()

        self.parser = argparse.ArgumentParser(
            prog="trexkit",
            description="Provision T-REX trust and compliance suites",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"trexkit {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=[f.value for f in OutputFormat],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress logs and error messages",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="YAML configuration file (default: trexkit.yaml if present)",
        )
        self.parser.add_argument(
            "--network", "-n",
            help="Network name, overrides TREX_NETWORK (memory, hardhat, localhost, ...)",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        self._register_suite_commands()
        self._register_token_commands()
        self._register_identity_commands()
        self._register_claim_commands()
        self._register_config_commands()

    def _register_suite_commands(self) -> None:
        suite = self.subparsers.add_parser("suite", help="Suite deployment")
        suite_sub = suite.add_subparsers(dest="subcommand")

        # suite deploy
        suite_sub.add_parser("deploy", help="Deploy the full suite with sample participants, then unpause")

        # suite infrastructure
        suite_sub.add_parser("infrastructure", help="Deploy and link the suite; the token stays paused")

    def _register_token_commands(self) -> None:
        token = self.subparsers.add_parser("token", help="Factory token deployment")
        token_sub = token.add_subparsers(dest="subcommand")

        # token deploy
        token_sub.add_parser(
            "deploy",
            help="Deploy one property token through TREX_FACTORY_ADDRESS (idempotent per salt)",
        )

    def _register_identity_commands(self) -> None:
        identity = self.subparsers.add_parser("identity", help="Single-user identity runs")
        identity_sub = identity.add_subparsers(dest="subcommand")

        # identity deploy
        identity_sub.add_parser("deploy", help="Deploy an identity for USER_WALLET")

        # identity register
        register = identity_sub.add_parser("register", help="Register USER_WALLET with USER_IDENTITY_ADDRESS")
        register.add_argument("--country", type=int, help="Country code (default: USER_COUNTRY or 42)")

        # identity verify
        identity_sub.add_parser("verify", help="Query isVerified(USER_WALLET)")

    def _register_claim_commands(self) -> None:
        claim = self.subparsers.add_parser("claim", help="Offline claim signatures")
        claim_sub = claim.add_subparsers(dest="subcommand")

        # claim sign
        sign = claim_sub.add_parser(
            "sign", help="Sign a claim with TREX_CLAIM_ISSUER_SIGNING_KEY_PRIVATE_KEY"
        )
        sign.add_argument("--identity", "-i", required=True, help="Identity contract address")
        sign.add_argument("--issuer", required=True, help="Claim issuer contract address")
        sign.add_argument("--topic", "-t", default="CLAIM_TOPIC", help="Topic name or uint256")
        sign.add_argument("--data", "-d", default="Some claim public data.", help="Claim data (text)")
        sign.add_argument("--uri", default="", help="Claim URI")

        # claim verify
        verify = claim_sub.add_parser("verify", help="Check a claim signature")
        verify.add_argument("--identity", "-i", required=True, help="Identity contract address")
        verify.add_argument("--topic", "-t", default="CLAIM_TOPIC", help="Topic name or uint256")
        verify.add_argument("--data", "-d", default="Some claim public data.", help="Claim data (text)")
        verify.add_argument("--signature", "-s", required=True, help="0x-prefixed signature")
        verify.add_argument("--signer", required=True, help="Expected signing key address")

    def _register_config_commands(self) -> None:
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        # config show
        config_sub.add_parser("show", help="Show effective configuration")

        # config get
        get = config_sub.add_parser("get", help="Get a configuration value")
        get.add_argument("path", help="Dotted path, e.g. token.decimals")

        # config validate
        config_sub.add_parser("validate", help="Validate configuration")

        # config schema
        config_sub.add_parser("schema", help="Export configuration schema")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        try:
            self._configure(parsed)
            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except TrexError as e:
            logger.error("Command failed", command=parsed.command, error=str(e),
                         error_code=type(e).__name__)
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return 1

        except Exception as e:
            logger.error("Unexpected failure", command=parsed.command, exc_info=True)
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return 1

    def _configure(self, args: argparse.Namespace) -> None:
        if args.config:
            self.manager.load_from_file(args.config)
        else:
            self.manager.load_defaults()
        observability = self.manager.config.observability
        level = "error" if args.quiet else observability.log_level.get()
        configure_logging(level, observability.log_format.get())
        # one id per invocation, carried by every log line of the run
        set_correlation_id(generate_correlation_id())

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}".strip(), exit_code=2)

        return handler(args)

    # Shared helpers
    @property
    def environment(self) -> Mapping[str, str]:
        return os.environ if self.env is None else self.env

    def _network_name(self, args: argparse.Namespace) -> str:
        return args.network or self.manager.config.network.name.get()

    def _session(self, args: argparse.Namespace) -> DeploymentSession:
        network = self.manager.config.network
        if self._ledger is None:
            self._ledger = connect_ledger(
                self._network_name(args),
                network.rpc_url.get(),
                network.artifacts_dir.get(),
                network.poll_latency_seconds.get(),
            )
        return DeploymentSession(self._ledger, timeout=network.confirmation_timeout_seconds.get())

    def _required(self, value: str, name: str, command: str) -> str:
        if not value.strip():
            raise PreconditionError(
                f"{name} is required. Provide it as an environment variable:\n"
                f"  {name}=<address> trexkit {command}\n"
                f"  or set it in trexkit.yaml"
            )
        return value.strip()

    # Suite handlers
    def _handle_suite_deploy(self, args: argparse.Namespace) -> Any:
        from trexkit.orchestrator import SuiteSettings, deploy_full_suite
        from trexkit.roles import RoleResolver, check_key_material

        settings = SuiteSettings.from_config(self.manager.config)
        check_key_material(self.environment)
        session = self._session(args)
        resolver = RoleResolver(session.ledger.pool_signers(), self.environment)
        return deploy_full_suite(session, resolver, settings).report

    def _handle_suite_infrastructure(self, args: argparse.Namespace) -> Any:
        from trexkit.orchestrator import SuiteSettings, deploy_suite_infrastructure
        from trexkit.roles import RoleResolver, check_key_material

        settings = SuiteSettings.from_config(self.manager.config)
        check_key_material(self.environment)
        session = self._session(args)
        resolver = RoleResolver(session.ledger.pool_signers(), self.environment)
        return deploy_suite_infrastructure(session, resolver, settings).report

    # Token handlers
    def _handle_token_deploy(self, args: argparse.Namespace) -> Any:
        from trexkit.factory import ExistingSuite, PropertyTokenRequest, deploy_property_token, result_details
        from trexkit.roles import RoleResolver, check_key_material

        request = PropertyTokenRequest.from_config(self.manager.config)
        check_key_material(self.environment)

        session = self._session(args)
        pool = session.ledger.pool_signers()
        deployer = RoleResolver(pool, self.environment).deployer
        request = request.with_default_owner(pool, deployer)

        result = deploy_property_token(session, request, deployer)

        report = DeploymentReport(operation="token deploy", network=session.ledger.network.value)
        report.accounts.update({"deployer": deployer.address, "property_owner": request.owner})
        report.factories["trex_factory"] = request.factory
        report.details.update(result_details(result))
        if isinstance(result, ExistingSuite):
            report.suite["token"] = result.token
            report.notes.append(result.message)
        else:
            report.add_suite(result.suite)
        return report

    # Identity handlers
    def _handle_identity_deploy(self, args: argparse.Namespace) -> Any:
        from trexkit.registration import deploy_user_identity
        from trexkit.roles import resolve_agent

        identity = self.manager.config.identity
        agent = resolve_agent(self.environment)
        wallet = require_address(
            "User wallet address", self._required(identity.user_wallet.get(), "USER_WALLET", "identity deploy")
        )
        authority = require_address("Identity implementation authority", identity.implementation_authority.get())
        session = self._session(args)

        address = deploy_user_identity(session, authority, wallet, agent)
        report = DeploymentReport(operation="identity deploy", network=session.ledger.network.value)
        report.accounts["user_wallet"] = wallet
        report.identities["user"] = address
        report.notes.append("Export USER_IDENTITY_ADDRESS for `trexkit identity register`.")
        return report

    def _handle_identity_register(self, args: argparse.Namespace) -> Any:
        from trexkit.registration import register_user_identity
        from trexkit.roles import resolve_agent

        identity = self.manager.config.identity
        agent = resolve_agent(self.environment)
        wallet = require_address(
            "User wallet address", self._required(identity.user_wallet.get(), "USER_WALLET", "identity register")
        )
        user_identity = require_address("User identity address", self._required(
            identity.user_identity.get(), "USER_IDENTITY_ADDRESS", "identity register"
        ))
        registry = require_address("Identity registry address", identity.registry.get())
        country = args.country if args.country is not None else identity.country.get()
        session = self._session(args)

        receipt = register_user_identity(session, registry, wallet, user_identity, agent, country)
        return {
            "user_wallet": wallet,
            "identity": user_identity,
            "registry": registry,
            "country": country,
            "tx_hash": receipt.tx_hash,
        }

    def _handle_identity_verify(self, args: argparse.Namespace) -> Any:
        from trexkit.registration import check_verification

        identity = self.manager.config.identity
        wallet = require_address(
            "User wallet address", self._required(identity.user_wallet.get(), "USER_WALLET", "identity verify")
        )
        registry = require_address("Identity registry address", identity.registry.get())
        session = self._session(args)
        verified = check_verification(session, registry, wallet)
        return {"user_wallet": wallet, "registry": registry, "verified": verified}

    # Claim handlers
    def _handle_claim_sign(self, args: argparse.Namespace) -> Any:
        from trexkit.claims import sign_claim, topic_id
        from trexkit.roles import CLAIM_SIGNING_KEY_VAR

        key = self.environment.get(CLAIM_SIGNING_KEY_VAR, "").strip()
        if not key:
            raise PreconditionError(f"{CLAIM_SIGNING_KEY_VAR} is required to sign claims")
        signing_key = Signer.from_private_key(key, label=CLAIM_SIGNING_KEY_VAR)
        claim = sign_claim(
            signing_key, args.identity, topic_id(args.topic), args.data, args.issuer, args.uri
        )
        return {**claim.to_dict(), "signing_key": signing_key.address}

    def _handle_claim_verify(self, args: argparse.Namespace) -> Any:
        from trexkit.claims import encode_claim_data, recover_claim_signer, topic_id

        identity = require_address("identity", args.identity)
        expected = require_address("signer", args.signer)
        signature = args.signature[2:] if args.signature.startswith("0x") else args.signature
        try:
            raw_signature = bytes.fromhex(signature)
        except ValueError:
            raise CLIError("signature must be hex encoded", exit_code=2) from None

        recovered = recover_claim_signer(
            identity, topic_id(args.topic), encode_claim_data(args.data), raw_signature
        )
        return {"valid": recovered == expected, "recovered_signer": recovered, "expected_signer": expected}

    # Config handlers
    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        return {"path": args.path, "value": self.manager.get(args.path)}

    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        return self.manager.config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        errors = self.manager.validate()
        return {"valid": len(errors) == 0, "errors": errors}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        return self.manager.export_schema()


def main() -> int:
    """CLI entry point."""
    cli = TrexCLI()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
