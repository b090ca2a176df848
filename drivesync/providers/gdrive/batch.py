import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional, TypeVar

from .vault import path_depth

T = TypeVar("T")

DEFAULT_CONCURRENCY = 5

logger = logging.getLogger("batch")


def run_in_waves(actions: List[Callable[[], T]], limit: int = DEFAULT_CONCURRENCY) -> List[Optional[T]]:
    """Run ``actions`` at most ``limit`` at a time, one wave after another.

    A wave fully settles before the next one starts. A failing action does not
    cancel its siblings; its slot in the returned list is ``None``.
    """

    limit = max(1, int(limit or DEFAULT_CONCURRENCY))
    results: List[Optional[T]] = []

    for start in range(0, len(actions), limit):
        wave = actions[start:start + limit]
        with ThreadPoolExecutor(max_workers=len(wave), thread_name_prefix="drivesync-batch") as executor:
            futures = [executor.submit(action) for action in wave]
            wait(futures)

        for future in futures:
            try:
                results.append(future.result())
            except Exception as e:
                logger.warning("batch_action_failed %s", e)
                results.append(None)

    return results


def depth_batches(paths: List[str]) -> List[List[str]]:
    """Group paths by segment count, shallowest first.

    Depth comes from the path string alone, so "a/b/c" is depth 3 whether or
    not "a" and "a/b" exist yet.
    """
    batches: Dict[int, List[str]] = {}
    for path in paths:
        batches.setdefault(path_depth(path), []).append(path)
    return [sorted(batches[depth]) for depth in sorted(batches)]
