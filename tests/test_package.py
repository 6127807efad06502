"""
Package-level checks: every trexkit module carries the Momentum notice.
"""

import importlib
import pkgutil

import pytest

import trexkit

MODULES = sorted(
    info.name for info in pkgutil.iter_modules(trexkit.__path__, "trexkit.")
    if info.name != "trexkit.__main__"
)


class TestModuleHeaders:
    """Module docstrings."""

    def test_package_notice(self):
        assert "Momentum. All rights reserved." in trexkit.__doc__

    @pytest.mark.parametrize("name", MODULES)
    def test_module_notice(self, name):
        module = importlib.import_module(name)
        assert module.__doc__ is not None
        last_lines = module.__doc__.strip().splitlines()[-2:]
        assert any(line.startswith("Copyright") and "Momentum. All rights reserved." in line
                   for line in last_lines)
