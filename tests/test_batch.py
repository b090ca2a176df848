import threading
import time

from drivesync.providers.gdrive.batch import depth_batches, run_in_waves


def test_concurrency_never_exceeds_limit():
    lock = threading.Lock()
    state = {"running": 0, "peak": 0}

    def make(n):
        def action():
            with lock:
                state["running"] += 1
                state["peak"] = max(state["peak"], state["running"])
            time.sleep(0.01)
            with lock:
                state["running"] -= 1
            return n
        return action

    results = run_in_waves([make(n) for n in range(12)], limit=5)

    assert results == list(range(12))
    assert state["peak"] <= 5


def test_failure_does_not_cancel_siblings():
    def ok(n):
        return lambda: n

    def boom():
        raise RuntimeError("upload_file_failed_status_500")

    results = run_in_waves([ok(1), boom, ok(3), ok(4)], limit=2)

    assert results == [1, None, 3, 4]


def test_wave_settles_before_next_starts():
    first_wave_done = threading.Event()
    seen = []

    def slow():
        time.sleep(0.05)
        first_wave_done.set()
        return "slow"

    def fast():
        return "fast"

    def second():
        seen.append(first_wave_done.is_set())
        return "second"

    run_in_waves([slow, fast, second], limit=2)

    assert seen == [True]


def test_empty_action_list():
    assert run_in_waves([], limit=3) == []


def test_depth_batches_group_shallowest_first():
    batches = depth_batches(["a/b/c", "x", "a", "a/b", "x/y"])
    assert batches == [["a", "x"], ["a/b", "x/y"], ["a/b/c"]]


def test_depth_counts_segments_even_without_ancestors():
    assert depth_batches(["deep/only/here"]) == [["deep/only/here"]]
