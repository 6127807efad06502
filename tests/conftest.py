import os
import pathlib
import sys
import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import trexkit`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))


# Variables read by the role resolver and the config layer; cleared for every
# test so the developer's shell never leaks into a run.
_ENV_PREFIXES = ("TREX_", "PROPERTY_")
_ENV_NAMES = (
    "PRIVATE_KEY",
    "AGENT_PRIVATE_KEY",
    "USER_WALLET",
    "USER_IDENTITY_ADDRESS",
    "USER_COUNTRY",
    "IDENTITY_REGISTRY_ADDRESS",
    "IDENTITY_IMPLEMENTATION_AUTHORITY",
)


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: slow correctness tests (skipped unless TREX_RUN_SLOW=1)",
    )
    config.addinivalue_line(
        "markers",
        "node: tests that need a local JSON-RPC node (skipped unless TREX_RUN_NODE=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_slow = _env_flag('TREX_RUN_SLOW')
    run_node = _env_flag('TREX_RUN_NODE')

    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set TREX_RUN_SLOW=1 to enable'))
        if 'node' in item.keywords and not run_node:
            item.add_marker(pytest.mark.skip(reason='node tests skipped; set TREX_RUN_NODE=1 to enable'))


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith(_ENV_PREFIXES) or name in _ENV_NAMES:
            monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def ledger():
    from trexkit.simulator import InMemoryLedger
    return InMemoryLedger()


@pytest.fixture
def session(ledger):
    from trexkit.session import DeploymentSession
    from trexkit.observability import Tracer
    return DeploymentSession(ledger, timeout=1.0, tracer=Tracer("trexkit-test"))


@pytest.fixture
def pool(ledger):
    return ledger.pool_signers()


@pytest.fixture
def resolver(pool):
    from trexkit.roles import RoleResolver
    return RoleResolver(pool, env={})


@pytest.fixture
def settings():
    from trexkit.config import SuiteConfig
    from trexkit.orchestrator import SuiteSettings
    return SuiteSettings.from_config(SuiteConfig())


@pytest.fixture
def infrastructure(session, resolver, settings):
    """A linked, paused suite with its factories."""
    from trexkit.orchestrator import deploy_suite_infrastructure
    return deploy_suite_infrastructure(session, resolver, settings)
