"""Package-level exports stay importable."""

import importlib

import pytest


@pytest.mark.parametrize(
    "package",
    [
        "saaqengine.cache",
        "saaqengine.config",
        "saaqengine.core",
        "saaqengine.dimensions",
        "saaqengine.ingest",
        "saaqengine.query",
        "saaqengine.regularization",
        "saaqengine.store",
    ],
)
def test_all_names_resolve(package: str) -> None:
    module = importlib.import_module(package)
    missing = [name for name in module.__all__ if not hasattr(module, name)]
    assert missing == []
