"""
CLI tests on the memory network.

Each command runs against a shared InMemoryLedger so the output of one run
can be exported into the environment of the next, as an operator would.
"""

import json

import pytest
import yaml

from trexkit.cli import OutputFormat, TrexCLI, format_output
from trexkit.models import DeploymentReport


def _key(signer) -> str:
    return "0x" + bytes(signer.account.key).hex()


@pytest.fixture(autouse=True)
def workdir(tmp_path, monkeypatch):
    # keeps a trexkit.yaml in the developer's checkout out of the runs
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def run(ledger, capsys):
    def _run(*args):
        code = TrexCLI(ledger=ledger).run(list(args))
        captured = capsys.readouterr()
        return code, captured.out, captured.err
    return _run


@pytest.fixture
def deployed(run):
    code, out, _ = run("--format", "json", "suite", "infrastructure")
    assert code == 0
    return json.loads(out)


class UntouchedLedger:
    """Stands in for a node that must not be contacted."""

    def __getattr__(self, name):
        raise AssertionError(f"ledger contacted: {name}")


@pytest.fixture
def offline(capsys):
    def _run(*args):
        code = TrexCLI(ledger=UntouchedLedger()).run(list(args))
        captured = capsys.readouterr()
        assert "ledger contacted" not in captured.err
        return code, captured.out, captured.err
    return _run


class TestFormatting:
    """Output formats."""

    def test_report_as_env(self):
        report = DeploymentReport(operation="x", network="memory")
        report.suite["token"] = "0x1111111111111111111111111111111111111111"
        assert format_output(report, OutputFormat.ENV) == "TOKEN_ADDRESS=0x1111111111111111111111111111111111111111"

    def test_dict_as_env_skips_nested(self):
        assert format_output({"valid": True, "errors": []}, OutputFormat.ENV) == "VALID=True"

    def test_table_has_section_headers(self):
        report = DeploymentReport(operation="x", network="memory")
        report.accounts["deployer"] = "0xabc"
        table = format_output(report, OutputFormat.TABLE)
        assert "--- Accounts ---" in table
        assert "deployer | 0xabc" in table

    def test_yaml(self):
        assert yaml.safe_load(format_output({"a": 1}, OutputFormat.YAML)) == {"a": 1}

    def test_text_nests(self):
        assert format_output({"a": {"b": 1}}, OutputFormat.TEXT) == "a:\n  b: 1"


class TestSuiteCommands:
    """suite deploy / suite infrastructure."""

    def test_no_command_prints_help(self, run):
        code, out, _ = run()
        assert code == 0
        assert "usage: trexkit" in out

    def test_infrastructure(self, deployed):
        assert deployed["operation"] == "suite infrastructure"
        assert deployed["details"]["token_paused"] is True
        assert set(deployed["suite"]) >= {"token", "identity_registry", "compliance", "agent_manager"}

    def test_full_suite_env_output(self, run):
        code, out, _ = run("--format", "env", "suite", "deploy")
        assert code == 0
        lines = out.splitlines()
        assert any(line.startswith("TOKEN_ADDRESS=0x") for line in lines)
        assert any(line.startswith("IDENTITIES_ALICE=0x") for line in lines)

    def test_version(self, run):
        with pytest.raises(SystemExit) as exc:
            run("--version")
        assert exc.value.code == 0

    def test_bad_role_key_before_connecting(self, offline, clean_env):
        clean_env.setenv("TREX_TOKENAGENT_PRIVATE_KEY", "zz" * 32)
        code, _, err = offline("suite", "infrastructure")
        assert code == 1
        assert "TREX_TOKENAGENT_PRIVATE_KEY: must be a 32-byte hex private key" in err


class TestTokenCommands:
    """token deploy."""

    def test_missing_factory(self, run):
        code, out, err = run("token", "deploy")
        assert code == 1
        assert out == ""
        assert "has no contract bytecode" in err

    def test_deploy_then_detect_existing(self, run, deployed, clean_env):
        clean_env.setenv("TREX_FACTORY_ADDRESS", deployed["factories"]["trex_factory"])
        code, out, _ = run("token", "deploy")
        assert code == 0
        first = json.loads(out)
        assert first["details"]["status"] == "deployed"

        code, out, _ = run("token", "deploy")
        assert code == 0
        second = json.loads(out)
        assert second["details"]["status"] == "existing"
        assert second["suite"]["token"] == first["suite"]["token"]
        assert "Aborting to avoid duplicate deployment" in second["notes"][0]

    def test_invalid_decimals(self, run, deployed, clean_env):
        clean_env.setenv("TREX_FACTORY_ADDRESS", deployed["factories"]["trex_factory"])
        clean_env.setenv("PROPERTY_TOKEN_DECIMALS", "19")
        code, _, err = run("token", "deploy")
        assert code == 1
        assert "between 0 and 18" in err

    def test_input_checked_before_connecting(self, offline, clean_env):
        clean_env.setenv("PROPERTY_TOKEN_DECIMALS", "19")
        code, out, err = offline("token", "deploy")
        assert code == 1
        assert out == ""
        assert "between 0 and 18" in err

    def test_bad_deployer_key_before_connecting(self, offline, clean_env):
        clean_env.setenv("TREX_DEPLOYER_PRIVATE_KEY", "0x1234")
        code, _, err = offline("token", "deploy")
        assert code == 1
        assert "TREX_DEPLOYER_PRIVATE_KEY: must be a 32-byte hex private key" in err
        assert "0x1234" not in err


class TestIdentityCommands:
    """identity deploy / register / verify."""

    def test_agent_key_required(self, run, clean_env, pool):
        clean_env.setenv("USER_WALLET", pool[8].address)
        code, _, err = run("identity", "deploy")
        assert code == 1
        assert "Missing AGENT_PRIVATE_KEY (preferred) or PRIVATE_KEY in environment." in err

    def test_wallet_required(self, run, clean_env, pool):
        clean_env.setenv("AGENT_PRIVATE_KEY", _key(pool[2]))
        code, _, err = run("identity", "deploy")
        assert code == 1
        assert "USER_WALLET is required" in err

    def test_bad_identity_before_connecting(self, offline, clean_env, pool):
        clean_env.setenv("AGENT_PRIVATE_KEY", _key(pool[2]))
        clean_env.setenv("USER_WALLET", pool[8].address)
        clean_env.setenv("USER_IDENTITY_ADDRESS", "0x1234")
        code, _, err = offline("identity", "register")
        assert code == 1
        assert "User identity address: must be a valid Ethereum address" in err

    def test_bad_wallet_before_connecting(self, offline, clean_env, pool):
        clean_env.setenv("AGENT_PRIVATE_KEY", _key(pool[2]))
        clean_env.setenv("USER_WALLET", "not-a-wallet")
        code, _, err = offline("identity", "deploy")
        assert code == 1
        assert "User wallet address: must be a valid Ethereum address" in err

    def test_bad_registry_before_connecting(self, offline, clean_env, pool):
        clean_env.setenv("USER_WALLET", pool[8].address)
        clean_env.setenv("IDENTITY_REGISTRY_ADDRESS", "0x5b38Da6a701c568545dCfcB03FcB875f56beddC4")
        code, _, err = offline("identity", "verify")
        assert code == 1
        assert "Identity registry address: must be a valid Ethereum address" in err

    def test_deploy_register_verify(self, run, deployed, clean_env, pool):
        clean_env.setenv("AGENT_PRIVATE_KEY", _key(pool[2]))
        clean_env.setenv("USER_WALLET", pool[8].address)
        clean_env.setenv(
            "IDENTITY_IMPLEMENTATION_AUTHORITY", deployed["authorities"]["identity_implementation_authority"]
        )
        clean_env.setenv("IDENTITY_REGISTRY_ADDRESS", deployed["suite"]["identity_registry"])

        code, out, _ = run("--format", "env", "identity", "deploy")
        assert code == 0
        exported = dict(line.split("=", 1) for line in out.splitlines())
        assert exported["USER_WALLET"] == pool[8].address

        code, _, err = run("identity", "register")
        assert code == 1
        assert "USER_IDENTITY_ADDRESS is required" in err

        clean_env.setenv("USER_IDENTITY_ADDRESS", exported["USER_IDENTITY_ADDRESS"])
        code, out, _ = run("identity", "register", "--country", "250")
        assert code == 0
        assert json.loads(out)["country"] == 250

        code, out, _ = run("identity", "verify")
        assert code == 0
        assert json.loads(out)["verified"] is False


class TestClaimCommands:
    """Offline claim signing."""

    IDENTITY = "0x5B38Da6a701c568545dCfcB03FcB875f56beddC4"
    ISSUER = "0xAb8483F64d9C6d1EcF9b849Ae677dD3315835cb2"

    def test_sign_requires_key(self, run):
        code, _, err = run("claim", "sign", "--identity", self.IDENTITY, "--issuer", self.ISSUER)
        assert code == 1
        assert "TREX_CLAIM_ISSUER_SIGNING_KEY_PRIVATE_KEY" in err

    def test_sign_then_verify(self, run, clean_env, pool):
        clean_env.setenv("TREX_CLAIM_ISSUER_SIGNING_KEY_PRIVATE_KEY", _key(pool[4]))
        code, out, _ = run("claim", "sign", "--identity", self.IDENTITY, "--issuer", self.ISSUER, "--topic", "KYC")
        assert code == 0
        signed = json.loads(out)
        assert signed["signing_key"] == pool[4].address

        code, out, _ = run(
            "claim", "verify", "--identity", self.IDENTITY, "--topic", "KYC",
            "--signature", signed["signature"], "--signer", pool[4].address,
        )
        assert code == 0
        assert json.loads(out)["valid"] is True

        code, out, _ = run(
            "claim", "verify", "--identity", self.IDENTITY, "--topic", "AML",
            "--signature", signed["signature"], "--signer", pool[4].address,
        )
        assert json.loads(out)["valid"] is False

    def test_verify_rejects_non_hex_signature(self, run, pool):
        code, _, err = run(
            "claim", "verify", "--identity", self.IDENTITY,
            "--signature", "0xnothex", "--signer", pool[4].address,
        )
        assert code == 2
        assert "hex" in err


class TestConfigCommands:
    """config show / get / validate / schema."""

    def test_get(self, run, clean_env):
        clean_env.setenv("TREX_TOKEN_NAME", "Villa")
        code, out, _ = run("config", "get", "token.name")
        assert code == 0
        assert json.loads(out) == {"path": "token.name", "value": "Villa"}

    def test_get_unknown_path(self, run):
        code, _, err = run("config", "get", "token.colour")
        assert code == 1
        assert "Invalid config path" in err

    def test_show_yaml(self, run):
        code, out, _ = run("--format", "yaml", "config", "show")
        assert code == 0
        assert yaml.safe_load(out)["network"]["name"] == "memory"

    def test_validate(self, run, clean_env):
        clean_env.setenv("TREX_LOG_LEVEL", "verbose")
        code, out, _ = run("--quiet", "config", "validate")
        assert code == 0
        result = json.loads(out)
        assert result["valid"] is False

    def test_config_file(self, run, workdir):
        (workdir / "custom.yaml").write_text("token:\n  symbol: CFG\n", encoding="utf-8")
        code, out, _ = run("--config", "custom.yaml", "config", "get", "token.symbol")
        assert code == 0
        assert json.loads(out)["value"] == "CFG"

    def test_schema(self, run):
        code, out, _ = run("config", "schema")
        assert code == 0
        assert "network" in json.loads(out)["properties"]
