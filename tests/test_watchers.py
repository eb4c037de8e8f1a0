import asyncio

from core.watchers import DeadlineTimer, StallDetector, compute_deadline


def test_deadline_floor_dominates_short_chunks():
    assert compute_deadline(5) == 30


def test_deadline_multiplier_dominates_long_chunks():
    assert compute_deadline(20) == 40
    assert compute_deadline(15) == 30


def test_stall_fires_on_fifth_identical_sample():
    detector = StallDetector(lambda: 12.0, lambda: None, interval=1.0, limit=5)
    results = [detector.observe() for _ in range(5)]
    assert results == [False, False, False, False, True]


def test_stall_counter_resets_when_marker_advances():
    markers = iter([1.0, 1.0, 1.0, 1.0, 2.0, 2.0, 2.0, 2.0, 2.0])
    detector = StallDetector(lambda: next(markers), lambda: None, limit=5)
    results = [detector.observe() for _ in range(9)]
    assert results == [False] * 8 + [True]


def test_missing_marker_counts_as_no_progress():
    detector = StallDetector(lambda: None, lambda: None, limit=3)
    assert [detector.observe() for _ in range(3)] == [False, False, True]


def test_stall_loop_calls_back_once():
    async def _run():
        fired = []
        detector = StallDetector(lambda: 0.0, lambda: fired.append(True), interval=0.01, limit=5)
        detector.start()
        await asyncio.sleep(0.2)
        detector.cancel()
        return fired

    assert asyncio.run(_run()) == [True]


def test_stall_loop_cancelled_before_firing():
    async def _run():
        fired = []
        detector = StallDetector(lambda: 0.0, lambda: fired.append(True), interval=0.05, limit=5)
        detector.start()
        await asyncio.sleep(0.1)
        detector.cancel()
        await asyncio.sleep(0.3)
        return fired

    assert asyncio.run(_run()) == []


def test_deadline_timer_fires_and_cancel_prevents_it():
    async def _run():
        fired = []
        timer = DeadlineTimer(0.02, lambda: fired.append("first"))
        timer.start()
        cancelled = DeadlineTimer(0.02, lambda: fired.append("second"))
        cancelled.start()
        cancelled.cancel()
        cancelled.cancel()
        await asyncio.sleep(0.1)
        return fired

    assert asyncio.run(_run()) == ["first"]
