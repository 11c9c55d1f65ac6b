"""
Tests for Flusher - single write attempts and outcome reporting.
"""

import asyncio

import pytest

from livepersist.core.json_utils import JsonCodec
from livepersist.errors import ParseError, WriteError
from livepersist.state.flusher import Flusher


def make_flusher(store, on_saved=None, metrics=None):
    return Flusher("state.json", store, JsonCodec(), asyncio.get_running_loop(),
                   on_saved=on_saved, metrics=metrics)


class TestSuccess:

    @pytest.mark.asyncio
    async def test_writes_encoded_value_once(self, spy_store):
        flusher = make_flusher(spy_store)

        outcome = await flusher.flush({"x": 1})

        assert outcome.ok
        assert outcome.error is None
        assert outcome.nbytes == len(b'{"x":1}')
        assert spy_store.written() == [{"x": 1}]
        assert spy_store.writes[0][0] == "state.json"

    @pytest.mark.asyncio
    async def test_on_saved_receives_none_and_value(self, spy_store):
        calls = []
        value = {"x": 1}
        flusher = make_flusher(spy_store, on_saved=lambda err, v: calls.append((err, v)))

        await flusher.flush(value)

        assert len(calls) == 1
        assert calls[0][0] is None
        assert calls[0][1] is value

    @pytest.mark.asyncio
    async def test_success_clears_last_error(self, spy_store):
        flusher = make_flusher(spy_store, on_saved=lambda err, v: None)
        spy_store.write_error = PermissionError(13, "Permission denied")
        await flusher.flush({})
        assert isinstance(flusher.last_error, WriteError)

        spy_store.write_error = None
        await flusher.flush({})
        assert flusher.last_error is None


class TestFailure:

    @pytest.mark.asyncio
    async def test_write_failure_reported_to_on_saved(self, spy_store, capture_faults):
        faults = capture_faults()
        calls = []
        spy_store.write_error = PermissionError(13, "Permission denied")
        flusher = make_flusher(spy_store, on_saved=lambda err, v: calls.append(err))

        outcome = await flusher.flush({"x": 1})

        assert not outcome.ok
        assert len(calls) == 1
        assert isinstance(calls[0], WriteError)
        assert calls[0].path == "state.json"
        assert isinstance(calls[0].__cause__, PermissionError)
        assert faults == []

    @pytest.mark.asyncio
    async def test_failure_without_callback_escalated(self, spy_store, capture_faults):
        faults = capture_faults()
        spy_store.write_error = OSError(28, "No space left on device")
        flusher = make_flusher(spy_store)

        await flusher.flush({"x": 1})

        assert len(faults) == 1
        assert isinstance(faults[0]["exception"], WriteError)
        assert faults[0]["path"] == "state.json"

    @pytest.mark.asyncio
    async def test_unencodable_value_is_parse_error_without_write(self, spy_store):
        calls = []
        flusher = make_flusher(spy_store, on_saved=lambda err, v: calls.append(err))

        outcome = await flusher.flush({"x": object()})

        assert isinstance(outcome.error, ParseError)
        assert isinstance(calls[0], ParseError)
        assert spy_store.writes == []

    @pytest.mark.asyncio
    async def test_raising_callback_escalated(self, spy_store, capture_faults):
        faults = capture_faults()

        def on_saved(err, value):
            raise RuntimeError("callback bug")

        flusher = make_flusher(spy_store, on_saved=on_saved)
        outcome = await flusher.flush({})

        assert outcome.ok
        assert len(faults) == 1
        assert isinstance(faults[0]["exception"], RuntimeError)

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, spy_store):
        spy_store.write_gate = asyncio.Event()
        flusher = make_flusher(spy_store, on_saved=lambda err, v: None)

        task = asyncio.ensure_future(flusher.flush({}))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


class TestMetrics:

    @pytest.mark.asyncio
    async def test_outcomes_counted(self, spy_store, metrics):
        flusher = make_flusher(spy_store, on_saved=lambda err, v: None, metrics=metrics)
        await flusher.flush({"a": 1})
        spy_store.write_error = OSError("disk gone")
        await flusher.flush({"a": 2})

        registry = metrics.get_registry()
        labels = {"path": "state.json"}
        assert registry.get_sample_value("livepersist_flushes_total", {**labels, "outcome": "ok"}) == 1.0
        assert registry.get_sample_value("livepersist_flushes_total", {**labels, "outcome": "error"}) == 1.0
        assert registry.get_sample_value("livepersist_flush_bytes", labels) == float(len(b'{"a":1}'))
        assert registry.get_sample_value("livepersist_flush_latency_ms_count", labels) == 2.0
