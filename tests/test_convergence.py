from coretemp.core.convergence import ConvergenceTracker


def _feed(counts: list[int]) -> list[bool]:
    tracker = ConvergenceTracker()
    return [tracker.observe(count) for count in counts]


def test_three_equal_counts_converge_on_third() -> None:
    assert _feed([5, 5, 5]) == [False, False, True]


def test_change_resets_unchanged_cycles() -> None:
    assert _feed([5, 6, 6, 6]) == [False, False, False, True]


def test_reset_restores_initial_state() -> None:
    tracker = ConvergenceTracker()
    for count in (2, 2, 2):
        tracker.observe(count)
    assert tracker.converged

    tracker.reset()
    assert tracker.last_count == -1
    assert tracker.unchanged_cycles == 0
    assert not tracker.converged
    assert tracker.observe(2) is False


def test_zero_counts_converge_too() -> None:
    assert _feed([0, 0, 0]) == [False, False, True]
