"""Tests for the persisted retrieval reference."""

import pytest

from qrpay.store.reference_store import ReferenceStore


@pytest.mark.asyncio
async def test_empty_store_loads_none(session_factory):
    assert await ReferenceStore(session_factory).load() is None


@pytest.mark.asyncio
async def test_save_then_load(session_factory):
    store = ReferenceStore(session_factory)
    await store.save("R1")
    assert await store.load() == "R1"


@pytest.mark.asyncio
async def test_save_overwrites(session_factory):
    store = ReferenceStore(session_factory)
    await store.save("R1")
    await store.save("R2")
    assert await store.load() == "R2"


@pytest.mark.asyncio
async def test_clear(session_factory):
    store = ReferenceStore(session_factory)
    await store.save("R1")
    await store.clear()
    await store.clear()
    assert await store.load() is None


@pytest.mark.asyncio
async def test_clear_only_removes_expected_reference(session_factory):
    store = ReferenceStore(session_factory)
    await store.save("R2")

    await store.clear(expected="R1")
    assert await store.load() == "R2"

    await store.clear(expected="R2")
    assert await store.load() is None


@pytest.mark.asyncio
async def test_keys_are_independent(session_factory):
    first = ReferenceStore(session_factory, key="a")
    second = ReferenceStore(session_factory, key="b")
    await first.save("R1")

    assert await second.load() is None
    assert await first.load() == "R1"
