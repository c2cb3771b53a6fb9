import pytest

from stockmeta.errors import ConfigurationError, GenerationCancelled
from stockmeta.quota_tracker import QuotaTracker
from stockmeta.signals import CancellationToken

from conftest import FakeClock


def test_assigns_round_robin_across_keys():
    tracker = QuotaTracker(["a", "b", "c"], max_per_minute=15, clock=FakeClock())

    assigned = [tracker.try_assign(3) for _ in range(6)]

    assert assigned == [0, 1, 2, 0, 1, 2]
    assert tracker.request_counts == [6, 6, 6]


def test_reserves_capacity_at_assignment():
    tracker = QuotaTracker(["a"], max_per_minute=15, clock=FakeClock())

    tracker.try_assign(3)

    assert tracker.request_counts == [3]
    assert tracker.get_remaining(0) == 12


@pytest.mark.parametrize("batch_size", [1, 2, 3, 4, 5])
@pytest.mark.parametrize("limit", [5, 7, 15])
def test_never_exceeds_per_key_limit(batch_size, limit):
    tracker = QuotaTracker(["a", "b"], max_per_minute=limit, clock=FakeClock())

    while tracker.try_assign(batch_size) is not None:
        assert all(count <= limit for count in tracker.request_counts)

    assert all(count + batch_size > limit for count in tracker.request_counts)


def test_skips_full_key_and_falls_back_to_the_next_one():
    tracker = QuotaTracker(["a", "b"], max_per_minute=4, clock=FakeClock())

    assert tracker.try_assign(3) == 0
    assert tracker.try_assign(3) == 1
    # key a has 1 left, key b has 1 left
    assert tracker.try_assign(1) == 0
    assert tracker.try_assign(1) == 1
    assert tracker.try_assign(1) is None


def test_window_resets_after_sixty_seconds():
    clock = FakeClock()
    tracker = QuotaTracker(["a"], max_per_minute=3, clock=clock)
    tracker.try_assign(3)

    clock.advance(60)
    assert tracker.try_assign(3) is None

    clock.advance(0.5)
    assert tracker.try_assign(3) == 0
    assert tracker.request_counts == [3]


def test_status_reports_usage():
    clock = FakeClock()
    tracker = QuotaTracker(["a", "b"], max_per_minute=10, clock=clock)
    tracker.try_assign(4)

    status = tracker.get_status()

    assert status["used"] == [4, 0]
    assert status["remaining"] == [6, 10]
    assert status["resets_in"] == 61.0


@pytest.mark.anyio
async def test_empty_key_list_fails_fast():
    tracker = QuotaTracker([], clock=FakeClock())

    with pytest.raises(ConfigurationError):
        await tracker.assign(3)


@pytest.mark.anyio
async def test_batch_larger_than_any_key_limit_is_rejected():
    tracker = QuotaTracker(["a", "b"], max_per_minute=2, clock=FakeClock())

    with pytest.raises(ConfigurationError, match="exceeds the per-key limit"):
        await tracker.assign(3)
    assert tracker.request_counts == [0, 0]


@pytest.mark.parametrize("batch_size", [0, -1, 1.5, None, True])
def test_batch_size_must_be_a_positive_integer(batch_size):
    tracker = QuotaTracker(["a"], max_per_minute=15, clock=FakeClock())

    with pytest.raises(ConfigurationError, match="positive whole number"):
        tracker.validate(batch_size)


@pytest.mark.anyio
async def test_waits_for_window_rollover_when_all_keys_are_full():
    clock = FakeClock()
    tracker = QuotaTracker(["a"], max_per_minute=3, clock=clock, poll_interval=0)
    tracker.try_assign(3)
    waits = []

    def on_wait(seconds):
        waits.append(seconds)
        clock.advance(30.5)

    index = await tracker.assign(3, CancellationToken(), on_wait=on_wait)

    assert index == 0
    assert waits == [61, 31]
    assert tracker.request_counts == [3]


@pytest.mark.anyio
async def test_stop_during_rate_limit_wait():
    tracker = QuotaTracker(["a"], max_per_minute=3, clock=FakeClock(), poll_interval=0)
    tracker.try_assign(3)
    token = CancellationToken()

    with pytest.raises(GenerationCancelled):
        await tracker.assign(3, token, on_wait=lambda seconds: token.cancel())
