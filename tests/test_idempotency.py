"""
Factory deployment tests.

A salt the factory already knows yields the existing token and no
transaction; a new salt deploys a suite recovered from TREXSuiteDeployed.
"""

import logging

import pytest

from trexkit.config import SuiteConfig
from trexkit.errors import InputValidationError, PreconditionError, StepFailed
from trexkit.factory import (
    ExistingSuite,
    PropertyTokenRequest,
    PropertyTokenResult,
    build_token_details,
    check_existing,
    deploy_property_token,
    result_details,
)
from trexkit.validation import ZERO_ADDRESS


@pytest.fixture
def config(infrastructure):
    config = SuiteConfig()
    config.property_token.factory_address.set(infrastructure.trex_factory)
    return config


@pytest.fixture
def deployer(resolver):
    return resolver.deployer


class TestRequest:
    """Input handling before anything is submitted."""

    def test_defaults(self, pool, deployer):
        request = PropertyTokenRequest.from_config(SuiteConfig(), pool, deployer)
        assert request.name == "Luxury Villa A4"
        assert request.symbol == "LVA1"
        assert request.decimals == 0
        assert request.owner == pool[1].address
        assert request.salt == "Luxury Villa A4"

    def test_owner_falls_back_to_deployer(self, pool, deployer):
        request = PropertyTokenRequest.from_config(SuiteConfig(), pool[:1], deployer)
        assert request.owner == deployer.address

    def test_validated_without_signers(self, pool, deployer):
        request = PropertyTokenRequest.from_config(SuiteConfig())
        assert request.owner == ""
        assert request.with_default_owner(pool, deployer).owner == pool[1].address

    def test_configured_owner_is_kept(self, pool, deployer, clean_env):
        clean_env.setenv("PROPERTY_OWNER_ADDRESS", pool[7].address.lower())
        request = PropertyTokenRequest.from_config(SuiteConfig())
        assert request.with_default_owner(pool, deployer).owner == pool[7].address

    def test_explicit_salt(self, pool, deployer, clean_env):
        clean_env.setenv("PROPERTY_TOKEN_SALT", "  villa-2  ")
        assert PropertyTokenRequest.from_config(SuiteConfig(), pool, deployer).salt == "villa-2"

    @pytest.mark.parametrize("decimals", ["19", "-1", "abc"])
    def test_bad_decimals(self, pool, deployer, clean_env, decimals):
        clean_env.setenv("PROPERTY_TOKEN_DECIMALS", decimals)
        with pytest.raises(InputValidationError, match="between 0 and 18"):
            PropertyTokenRequest.from_config(SuiteConfig(), pool, deployer)

    def test_bad_owner(self, pool, deployer, clean_env):
        clean_env.setenv("PROPERTY_OWNER_ADDRESS", "0x1234")
        with pytest.raises(InputValidationError, match="Property owner address"):
            PropertyTokenRequest.from_config(SuiteConfig(), pool, deployer)

    def test_token_details_layout(self, pool, deployer):
        request = PropertyTokenRequest.from_config(SuiteConfig(), pool, deployer)
        details = build_token_details(request, [deployer.address])
        assert details[:4] == (request.owner, request.name, request.symbol, 0)
        assert details[4] == details[5] == ZERO_ADDRESS
        assert details[6] == details[7] == [deployer.address]
        assert details[8] == details[9] == []


class TestFactoryDeployment:
    """deployTREXSuite through the factory."""

    def test_new_salt_deploys_suite(self, session, config, pool, deployer):
        request = PropertyTokenRequest.from_config(config, pool, deployer)
        result = deploy_property_token(session, request, deployer)

        assert isinstance(result, PropertyTokenResult)
        suite = result.suite
        assert session.query(suite.token, "Token", "name") == "Luxury Villa A4"
        assert session.query(suite.token, "Token", "owner") == request.owner
        assert session.query(suite.token, "Token", "isAgent", [deployer.address])
        assert session.query(suite.token, "Token", "isAgent", [request.owner])
        assert session.query(suite.token, "Token", "onchainID") != ZERO_ADDRESS
        assert session.query(suite.identity_registry, "IdentityRegistry", "identityStorage") == \
            suite.identity_registry_storage
        assert session.query(request.factory, "TREXFactory", "getToken", [request.salt]) == suite.token
        assert result_details(result)["status"] == "deployed"

    def test_existing_salt_submits_nothing(self, session, ledger, config, pool, deployer):
        request = PropertyTokenRequest.from_config(config, pool, deployer)
        first = deploy_property_token(session, request, deployer)
        before = len(ledger.transactions)

        second = deploy_property_token(session, request, deployer)

        assert isinstance(second, ExistingSuite)
        assert second.token == first.suite.token
        assert second.exit_code == 0
        assert "Aborting to avoid duplicate deployment" in second.message
        assert len(ledger.transactions) == before
        assert result_details(second) == {
            "status": "existing", "salt": request.salt, "token": first.suite.token, "factory": request.factory,
        }

    def test_distinct_salts_give_distinct_suites(self, session, config, pool, deployer, clean_env):
        first = deploy_property_token(session, PropertyTokenRequest.from_config(config, pool, deployer), deployer)
        clean_env.setenv("PROPERTY_TOKEN_SALT", "second-villa")
        second = deploy_property_token(session, PropertyTokenRequest.from_config(config, pool, deployer), deployer)
        assert first.suite.token != second.suite.token

    def test_unowned_request_gets_pooled_owner(self, session, config, pool, deployer):
        result = deploy_property_token(session, PropertyTokenRequest.from_config(config), deployer)
        assert result.request.owner == pool[1].address
        assert session.query(result.suite.token, "Token", "owner") == pool[1].address

    def test_owner_equal_to_deployer_is_one_agent(self, session, config, pool, deployer, clean_env):
        clean_env.setenv("PROPERTY_OWNER_ADDRESS", deployer.address)
        request = PropertyTokenRequest.from_config(config, pool, deployer)
        result = deploy_property_token(session, request, deployer)
        assert session.query(result.suite.token, "Token", "isAgent", [deployer.address])

    def test_missing_factory_code(self, session, ledger, pool, deployer):
        request = PropertyTokenRequest.from_config(SuiteConfig(), pool, deployer)
        before = len(ledger.transactions)
        with pytest.raises(PreconditionError) as exc:
            deploy_property_token(session, request, deployer)
        assert "has no contract bytecode" in str(exc.value)
        assert "trexkit suite infrastructure" in str(exc.value)
        assert len(ledger.transactions) == before

    def test_failing_lookup_is_not_fatal(self, session, infrastructure, caplog):
        # the claim issuer has code but no getToken: the check warns and moves on
        with caplog.at_level(logging.WARNING, logger="trexkit"):
            assert check_existing(session, infrastructure.claim_issuer, "salt") is None
        assert any("Skipping duplicate deployment check" in r.getMessage() for r in caplog.records)

    def test_only_factory_owner_deploys(self, session, config, pool):
        outsider = pool[7]
        request = PropertyTokenRequest.from_config(config, pool, outsider)
        with pytest.raises(StepFailed, match="not the owner"):
            deploy_property_token(session, request, outsider)
