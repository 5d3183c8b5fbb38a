"""Tests for the NoncePool: FIFO order, single issue, refill behaviour."""

from __future__ import annotations

import asyncio

import pytest

from loadgen.core.latency import LatencyRecorder
from loadgen.core.nonce import DIRECTORY_LABEL, NoncePool
from loadgen.exceptions import NetworkError, ProtocolError

from conftest import API_BASE


@pytest.fixture
def recorder(recording_logger):
    return LatencyRecorder(logger=recording_logger)


@pytest.fixture
def pool(fake_acme, recorder, recording_logger):
    return NoncePool(fake_acme.client(), API_BASE, recorder, logger=recording_logger)


class TestNonceOrdering:
    @pytest.mark.asyncio
    async def test_get_returns_tokens_in_insertion_order(self, pool, fake_acme):
        for nonce in ("a", "b", "c", "d"):
            pool.add(nonce)

        got = [await pool.get() for _ in range(4)]

        assert got == ["a", "b", "c", "d"]
        assert len(pool) == 0
        assert fake_acme.count("HEAD", "/directory") == 0

    @pytest.mark.asyncio
    async def test_interleaved_add_and_get_never_repeats(self, pool):
        pool.add("n1")
        first = await pool.get()
        pool.add("n2")
        pool.add("n3")
        second = await pool.get()
        pool.add("n4")
        rest = [await pool.get(), await pool.get()]

        issued = [first, second, *rest]
        assert issued == ["n1", "n2", "n3", "n4"]
        assert len(set(issued)) == len(issued)

    @pytest.mark.asyncio
    async def test_concurrent_callers_receive_distinct_tokens(self, pool, fake_acme):
        seeded = [f"seed-{i}" for i in range(64)]
        for nonce in seeded:
            pool.add(nonce)

        results = await asyncio.gather(*(pool.get() for _ in range(50)))

        assert len(set(results)) == 50
        assert set(results) <= set(seeded)
        assert len(pool) == 14
        assert fake_acme.count("HEAD", "/directory") == 0


class TestNonceRefill:
    @pytest.mark.asyncio
    async def test_empty_pool_fetches_from_directory(self, pool, fake_acme, recorder):
        nonce = await pool.get()

        assert nonce.startswith("nonce-")
        assert fake_acme.count("HEAD", "/directory") == 1
        # The refilled nonce goes straight to the caller.
        assert len(pool) == 0
        assert recorder.count(DIRECTORY_LABEL) == 1

    @pytest.mark.asyncio
    async def test_missing_header_raises_protocol_error(self, pool, fake_acme, recorder):
        fake_acme.omit_directory_nonce = True

        with pytest.raises(ProtocolError) as exc_info:
            await pool.get()

        assert exc_info.value.code == "PROTOCOL"
        assert len(pool) == 0
        report = recorder.report()[DIRECTORY_LABEL]
        assert report["error_count"] == 1
        assert report["error_types"] == {"missing_nonce": 1}

    @pytest.mark.asyncio
    async def test_transport_failure_raises_network_error(self, pool, fake_acme, recorder):
        fake_acme.raise_on_paths.add("/directory")

        with pytest.raises(NetworkError) as exc_info:
            await pool.get()

        assert exc_info.value.code == "NETWORK"
        assert recorder.report()[DIRECTORY_LABEL]["error_types"] == {"network_connect": 1}

    @pytest.mark.asyncio
    async def test_pooled_tokens_used_before_refill(self, pool, fake_acme):
        pool.add("pooled")

        assert await pool.get() == "pooled"
        assert (await pool.get()).startswith("nonce-")
        assert fake_acme.count("HEAD", "/directory") == 1
