"""Chunking, address de-duplication and the sequential chunk runner.

Every multi-recipient path (publish writes, broadcast records, push sends)
goes through these helpers so that batch ceilings are honored in one place.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from typing import List, Optional, TypeVar

from .types import FanoutResult

LOGGER = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 500

T = TypeVar("T")


def chunk(items: Sequence[T], max_size: int = DEFAULT_CHUNK_SIZE) -> List[List[T]]:
    """Split ``items`` into ordered slices of at most ``max_size``."""
    if max_size < 1:
        raise ValueError(f"max_size must be at least 1 (got {max_size})")
    return [list(items[start : start + max_size]) for start in range(0, len(items), max_size)]


def dedupe_by_address(targets: Iterable[T], address: Callable[[T], Optional[str]]) -> List[T]:
    """Keep the first target per delivery address; targets without one are dropped."""
    seen: set[str] = set()
    unique: List[T] = []
    for target in targets:
        key = address(target)
        if not key or key in seen:
            continue
        seen.add(key)
        unique.append(target)
    return unique


def run_chunked(
    slices: Sequence[Sequence[T]],
    worker: Callable[[Sequence[T]], Optional[int]],
    *,
    label: str = "fan-out",
) -> FanoutResult:
    """Run ``worker`` over each slice strictly in order and aggregate the outcome.

    The worker returns ``None`` when the whole slice succeeded, or the number
    of items in the slice that succeeded. A worker exception marks the whole
    slice failed; the remaining slices still run.
    """
    result = FanoutResult()
    for index, items in enumerate(slices):
        size = len(items)
        result.attempted += size
        try:
            outcome = worker(items)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("%s chunk %d/%d failed (%d items): %s", label, index + 1, len(slices), size, exc)
            result.failed += size
            result.failed_chunks.append(index)
            continue

        succeeded = size if outcome is None else max(0, min(int(outcome), size))
        result.succeeded += succeeded
        result.failed += size - succeeded

    if result.failed:
        LOGGER.info(
            "%s finished with %d/%d succeeded across %d chunk(s)",
            label,
            result.succeeded,
            result.attempted,
            len(slices),
        )
    return result
