"""Conftest for unit tests: mark everything unit, and on-disk tests slow."""

import pytest


def pytest_collection_modifyitems(config, items):
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        # SQLite-backed tests write real files
        if "tmp_path" in getattr(item, "fixturenames", ()):
            item.add_marker(pytest.mark.slow)
