"""Tests for catmix.perf — phase timing."""

import threading
import time

import pytest

from catmix.perf import PerfMonitor, PhaseStats


class TestPhaseStats:
    def test_add(self):
        s = PhaseStats()
        s.add(0.2)
        s.add(0.4)
        assert s.call_count == 2
        assert s.total_time == pytest.approx(0.6)
        assert s.mean_time == pytest.approx(0.3)
        assert s.min_time == pytest.approx(0.2)
        assert s.max_time == pytest.approx(0.4)

    def test_empty_mean(self):
        assert PhaseStats().mean_time == 0.0


class TestPerfMonitor:
    def test_disabled_is_noop(self):
        perf = PerfMonitor(enabled=False)
        with perf.track('build'):
            pass
        perf.record('query', 1.0)
        assert perf.get_stats() == {}

    def test_track(self):
        perf = PerfMonitor(enabled=True)
        perf.start()
        with perf.track('build'):
            time.sleep(0.01)
        perf.stop()
        stats = perf.get_stats()
        assert stats['build'].call_count == 1
        assert stats['build'].total_time > 0.0

    def test_track_records_on_exception(self):
        perf = PerfMonitor(enabled=True)
        with pytest.raises(RuntimeError):
            with perf.track('query'):
                raise RuntimeError("boom")
        assert perf.get_stats()['query'].call_count == 1

    def test_thread_safe_record(self):
        perf = PerfMonitor(enabled=True)

        def worker():
            for _ in range(500):
                perf.record('query', 0.001)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for th in threads:
            th.start()
        for th in threads:
            th.join()
        assert perf.get_stats()['query'].call_count == 2000

    def test_summary(self):
        perf = PerfMonitor(enabled=True)
        perf.record('build', 0.3)
        perf.record('query', 0.1)
        summary = perf.summary()
        assert summary['build']['calls'] == 1
        assert summary['build']['pct'] == pytest.approx(75.0)
        assert summary['_total_s'] == pytest.approx(0.4)

    def test_report(self):
        perf = PerfMonitor(enabled=True)
        perf.record('build', 0.05)
        text = perf.report(title="Step timing")
        assert "Step timing" in text
        assert "build" in text
        assert "TOTAL" in text

    def test_reset(self):
        perf = PerfMonitor(enabled=True)
        perf.record('build', 0.05)
        perf.reset()
        assert perf.get_stats() == {}
        assert perf.summary()['_total_s'] == 0.0
