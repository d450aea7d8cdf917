"""
Unit tests for network time synchronization.

Network access is replaced with fake `http_get` callables and the local
clock with a settable fake, so every test is deterministic and offline.
"""

import json
import tempfile
import threading
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

import requests

from models import ClockState
from services.clock_service import (
    TIME_PROVIDERS,
    ClockSource,
    ClockStateStore,
    TimeProvider,
    _parse_timeapi_io,
    _parse_worldclockapi,
    _parse_worldtimeapi,
)

TPE = timezone(timedelta(hours=8))
T0 = datetime(2025, 10, 4, 10, 0, 0, tzinfo=TPE)


class FakeTime:
    def __init__(self, current: datetime) -> None:
        self.current = current

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class FakeMonotonic:
    def __init__(self) -> None:
        self.current = 0.0

    def __call__(self) -> float:
        return self.current


class FakeResponse:
    """Streams a JSON payload (or raw bytes) in small chunks."""

    def __init__(self, payload, status_code: int = 200, chunk_size: int = 16, on_chunk=None) -> None:
        self.body = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        self.status_code = status_code
        self.chunk_size = chunk_size
        self.on_chunk = on_chunk
        self.closed = False

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.body), self.chunk_size):
            if self.on_chunk is not None:
                self.on_chunk()
            yield self.body[i:i + self.chunk_size]

    def close(self) -> None:
        self.closed = True


def worldtime_payload(dt: datetime) -> dict:
    return {"datetime": dt.isoformat()}


class ClockTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.state_path = Path(self._tmp.name) / "clock_state.json"
        self.store = ClockStateStore(str(self.state_path), "timeSyncState")
        self.time = FakeTime(T0)
        self.ticks = FakeMonotonic()
        self.calls: list[dict] = []

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def make_clock(self, responder, providers=None) -> ClockSource:
        def http_get(url, timeout=None, headers=None, stream=False):
            self.calls.append({"url": url, "timeout": timeout, "stream": stream})
            return responder(url)

        return ClockSource(
            store=self.store,
            providers=providers,
            local_now=self.time,
            http_get=http_get,
            monotonic=self.ticks,
        )


class TestClockStateStore(ClockTestCase):
    def test_missing_file_gives_defaults(self) -> None:
        self.assertEqual(self.store.load(), ClockState())

    def test_round_trip(self) -> None:
        state = ClockState(is_network_time=True, last_sync_time=T0, error=None, offset=5000)
        self.store.save(state)
        self.assertEqual(self.store.load(), state)

        record = json.loads(self.state_path.read_text(encoding="utf-8"))["timeSyncState"]
        self.assertEqual(
            record,
            {"isNetworkTime": True, "lastSyncTime": "2025-10-04T10:00:00+08:00", "error": None, "offset": 5000},
        )

    def test_round_trip_with_error(self) -> None:
        state = ClockState(is_network_time=False, last_sync_time=None, error="timeout", offset=-1200)
        self.store.save(state)
        self.assertEqual(self.store.load(), state)

    def test_corrupt_file_gives_defaults(self) -> None:
        self.state_path.write_text("{not json", encoding="utf-8")
        self.assertEqual(self.store.load(), ClockState())

    def test_malformed_record_gives_defaults(self) -> None:
        records = (
            {"offset": "abc"},
            {"lastSyncTime": "yesterday"},
            "oops",
            {"isNetworkTime": True, "lastSyncTime": T0.isoformat(), "offset": float("nan")},
            {"isNetworkTime": True, "lastSyncTime": T0.isoformat(), "offset": float("inf")},
            {"isNetworkTime": True, "lastSyncTime": T0.isoformat(), "offset": 1e12},
            {"isNetworkTime": "false", "lastSyncTime": T0.isoformat()},
            {"offset": True},
        )
        for record in records:
            with self.subTest(record=record):
                # json.dumps writes NaN / Infinity literals, which json.load accepts
                self.state_path.write_text(json.dumps({"timeSyncState": record}), encoding="utf-8")
                self.assertEqual(self.store.load(), ClockState())

    def test_save_keeps_other_keys(self) -> None:
        self.state_path.write_text(json.dumps({"theme": "dark"}), encoding="utf-8")
        self.store.save(ClockState())
        data = json.loads(self.state_path.read_text(encoding="utf-8"))
        self.assertEqual(data["theme"], "dark")
        self.assertIn("timeSyncState", data)


class TestProviderParsers(unittest.TestCase):
    def test_worldtimeapi(self) -> None:
        dt = _parse_worldtimeapi({"datetime": "2025-10-04T10:30:00.123456+08:00"})
        self.assertEqual(dt, datetime(2025, 10, 4, 2, 30, 0, 123456, tzinfo=timezone.utc))

    def test_timeapi_io_is_taipei_local(self) -> None:
        dt = _parse_timeapi_io({"dateTime": "2025-10-04T10:30:00.1234567"})
        self.assertEqual(dt.utcoffset(), timedelta(hours=8))
        self.assertEqual((dt.hour, dt.minute), (10, 30))

    def test_worldclockapi_is_utc(self) -> None:
        dt = _parse_worldclockapi({"currentDateTime": "2025-10-04T02:30Z"})
        self.assertEqual(dt, datetime(2025, 10, 4, 10, 30, tzinfo=TPE))

    def test_missing_field_raises(self) -> None:
        with self.assertRaises(KeyError):
            _parse_worldtimeapi({"dateTime": "2025-10-04T10:30:00"})

    def test_provider_order(self) -> None:
        self.assertEqual([p.name for p in TIME_PROVIDERS], ["worldtimeapi", "timeapi.io", "worldclockapi"])


class TestClockNow(ClockTestCase):
    def test_local_time_without_sync(self) -> None:
        clock = self.make_clock(lambda url: FakeResponse({}))
        self.assertEqual(clock.now(), T0)
        self.assertEqual(self.calls, [])

    def test_applies_offset_after_sync(self) -> None:
        clock = self.make_clock(lambda url: FakeResponse(worldtime_payload(T0 + timedelta(seconds=5))))
        self.assertTrue(clock.sync())
        self.assertEqual(clock.get_state().offset, 5000)

        self.time.advance(minutes=10)
        self.assertEqual(clock.now(), T0 + timedelta(minutes=10, seconds=5))

    def test_expired_sync_falls_back_and_persists(self) -> None:
        clock = self.make_clock(lambda url: FakeResponse(worldtime_payload(T0 - timedelta(minutes=2))))
        self.assertTrue(clock.sync())

        self.time.advance(minutes=30)
        self.assertEqual(clock.now(), T0 + timedelta(minutes=28))

        self.time.advance(seconds=1)
        self.assertEqual(clock.now(), T0 + timedelta(minutes=30, seconds=1))
        self.assertFalse(clock.get_sync_status()["isNetworkTime"])
        self.assertFalse(self.store.load().is_network_time)

    def test_state_loaded_lazily_from_store(self) -> None:
        self.store.save(ClockState(is_network_time=True, last_sync_time=T0, offset=-3000))
        clock = self.make_clock(lambda url: FakeResponse({}))
        self.time.advance(minutes=1)
        self.assertEqual(clock.now(), T0 + timedelta(minutes=1, seconds=-3))

    def test_corrupt_offset_on_disk_uses_local_time(self) -> None:
        self.state_path.write_text(
            json.dumps({"timeSyncState": {"isNetworkTime": True, "lastSyncTime": T0.isoformat(), "offset": float("nan")}}),
            encoding="utf-8",
        )
        clock = self.make_clock(lambda url: FakeResponse({}))
        self.time.advance(minutes=1)
        self.assertEqual(clock.now(), T0 + timedelta(minutes=1))
        self.assertFalse(clock.get_sync_status()["isNetworkTime"])

    def test_returned_state_is_a_copy(self) -> None:
        clock = self.make_clock(lambda url: FakeResponse(worldtime_payload(T0)))
        clock.sync()
        state = clock.get_state()
        state.offset = 999999
        state.is_network_time = False
        status = clock.get_sync_status()
        status["isNetworkTime"] = False
        self.assertEqual(clock.get_state().offset, 0)
        self.assertTrue(clock.get_sync_status()["isNetworkTime"])


class TestClockSync(ClockTestCase):
    def test_success_updates_state(self) -> None:
        clock = self.make_clock(lambda url: FakeResponse(worldtime_payload(T0 + timedelta(milliseconds=1500))))
        self.assertTrue(clock.sync())

        self.assertEqual(
            clock.get_sync_status(),
            {"isNetworkTime": True, "lastSyncTime": T0.isoformat(), "error": None},
        )
        self.assertEqual(self.store.load(), ClockState(True, T0, None, 1500))
        self.assertEqual(self.calls[0]["timeout"], 5)
        self.assertTrue(self.calls[0]["stream"])

    def test_falls_through_to_next_provider(self) -> None:
        def responder(url):
            if "worldtimeapi" in url:
                raise requests.ConnectionError("unreachable")
            if "timeapi.io" in url:
                return FakeResponse({"unexpected": True})
            return FakeResponse({"currentDateTime": "2025-10-04T02:00:10Z"})

        clock = self.make_clock(responder)
        self.assertTrue(clock.sync())
        self.assertEqual(len(self.calls), 3)
        self.assertEqual(clock.get_state().offset, 10000)

    def test_failure_without_prior_sync(self) -> None:
        def responder(url):
            raise requests.Timeout("timed out")

        clock = self.make_clock(responder)
        self.assertFalse(clock.sync())

        status = clock.get_sync_status()
        self.assertFalse(status["isNetworkTime"])
        self.assertIsNone(status["lastSyncTime"])
        self.assertIn("timed out", status["error"])
        self.assertEqual(self.store.load().error, status["error"])
        self.assertEqual(clock.now(), T0)

    def test_failure_kinds_are_all_recovered(self) -> None:
        responses = [
            FakeResponse({}, status_code=503),
            FakeResponse(b"<html>not json</html>"),
            FakeResponse({"datetime": "not a date"}),
            FakeResponse(["datetime"]),
        ]
        for response in responses:
            clock = self.make_clock(lambda url, r=response: r, providers=[TIME_PROVIDERS[0]])
            self.assertFalse(clock.sync())
            self.assertIsNotNone(clock.get_sync_status()["error"])

    def test_recent_failure_keeps_network_time(self) -> None:
        responses = [FakeResponse(worldtime_payload(T0 + timedelta(seconds=3)))]
        clock = self.make_clock(lambda url: responses[0], providers=[TIME_PROVIDERS[0]])
        self.assertTrue(clock.sync())

        responses[0] = FakeResponse({}, status_code=500)
        self.time.advance(minutes=10)
        self.assertFalse(clock.sync())

        state = clock.get_state()
        self.assertTrue(state.is_network_time)
        self.assertEqual(state.offset, 3000)
        self.assertEqual(state.last_sync_time, T0)
        self.assertIsNotNone(state.error)
        self.assertEqual(clock.now(), T0 + timedelta(minutes=10, seconds=3))

    def test_stale_failure_drops_network_time(self) -> None:
        responses = [FakeResponse(worldtime_payload(T0 + timedelta(seconds=3)))]
        clock = self.make_clock(lambda url: responses[0], providers=[TIME_PROVIDERS[0]])
        self.assertTrue(clock.sync())

        responses[0] = FakeResponse({}, status_code=500)
        self.time.advance(minutes=45)
        self.assertFalse(clock.sync())

        state = clock.get_state()
        self.assertFalse(state.is_network_time)
        self.assertEqual(state.offset, 3000)
        self.assertFalse(self.store.load().is_network_time)

    def test_no_providers(self) -> None:
        clock = self.make_clock(lambda url: FakeResponse({}), providers=[])
        self.assertFalse(clock.sync())
        self.assertTrue(clock.get_sync_status()["error"])

    def test_custom_provider(self) -> None:
        provider = TimeProvider("custom", "https://time.example/now", lambda data: datetime.fromisoformat(data["now"]))
        clock = self.make_clock(
            lambda url: FakeResponse({"now": "2025-10-04T10:00:01+08:00"}),
            providers=[provider],
        )
        self.assertTrue(clock.sync())
        self.assertEqual(self.calls[0]["url"], "https://time.example/now")
        self.assertEqual(clock.get_state().offset, 1000)

    def test_implausible_offset_is_rejected(self) -> None:
        def responder(url):
            if "worldtimeapi" in url:
                return FakeResponse(worldtime_payload(T0 + timedelta(days=400)))
            return FakeResponse({"dateTime": "2025-10-04T10:00:02"})

        clock = self.make_clock(responder, providers=TIME_PROVIDERS[:2])
        self.assertTrue(clock.sync())
        self.assertEqual(clock.get_state().offset, 2000)

    def test_overlapping_sync_is_ignored(self) -> None:
        entered = threading.Event()
        release = threading.Event()

        def responder(url):
            entered.set()
            release.wait(5)
            return FakeResponse(worldtime_payload(T0))

        clock = self.make_clock(responder, providers=[TIME_PROVIDERS[0]])
        results = []
        worker = threading.Thread(target=lambda: results.append(clock.sync()))
        worker.start()
        self.assertTrue(entered.wait(5))

        self.assertFalse(clock.sync())
        self.assertEqual(len(self.calls), 1)

        release.set()
        worker.join(5)
        self.assertEqual(results, [True])
        # lock released: next trigger runs again
        self.assertTrue(clock.sync())
        self.assertEqual(len(self.calls), 2)


class TestSyncDeadline(ClockTestCase):
    def test_providers_share_one_time_budget(self) -> None:
        def responder(url):
            self.ticks.current += 3
            raise requests.Timeout("read timed out")

        clock = self.make_clock(responder)
        self.assertFalse(clock.sync())

        # second request only gets what is left of the 5 seconds, third is never sent
        self.assertEqual([call["timeout"] for call in self.calls], [5, 2])
        self.assertIn("同步時限", clock.get_sync_status()["error"])

    def test_slow_body_is_cut_off(self) -> None:
        def tick():
            self.ticks.current += 1

        response = FakeResponse(worldtime_payload(T0), chunk_size=4, on_chunk=tick)
        clock = self.make_clock(lambda url: response, providers=[TIME_PROVIDERS[0]])

        self.assertFalse(clock.sync())
        self.assertTrue(response.closed)
        self.assertIn("同步時限", clock.get_sync_status()["error"])
        self.assertEqual(clock.now(), T0)

    def test_each_sync_gets_a_fresh_budget(self) -> None:
        def responder(url):
            self.ticks.current += 10
            raise requests.Timeout("read timed out")

        clock = self.make_clock(responder, providers=[TIME_PROVIDERS[0]])
        self.assertFalse(clock.sync())
        self.assertFalse(clock.sync())
        self.assertEqual([call["timeout"] for call in self.calls], [5, 5])


if __name__ == "__main__":
    unittest.main()
