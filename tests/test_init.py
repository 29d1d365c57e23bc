"""Tests for fprot_sdk.__init__ lazy imports and exports."""

import pytest

import fprot_sdk


def test_lazy_import_async_client():
    cls = fprot_sdk.AsyncFprotClient
    assert cls.__name__ == "AsyncFprotClient"


def test_lazy_import_unknown_raises():
    with pytest.raises(AttributeError, match="has no attribute"):
        _ = fprot_sdk.NoSuchThing  # type: ignore[attr-defined]


def test_all_exports():
    for name in fprot_sdk.__all__:
        assert hasattr(fprot_sdk, name)
