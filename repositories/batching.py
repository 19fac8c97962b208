"""
Bounded set-membership reads and bounded batch writes.

The backing store caps both the cardinality of an `in` filter and the number of
rows accepted by one write request. Callers that need either at scale go
through these helpers instead of re-implementing the chunking.

Writes are committed batch by batch. There is no rollback across batches: if
batch N fails, batches 1..N-1 stay committed and PartialBatchFailure reports
how far the job got.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Iterator, List, Sequence, TypeVar

from domain.errors import PartialBatchFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Observed limit on the number of values in one `in` filter.
DEFAULT_IN_CHUNK_SIZE: int = 30

# Observed per-request write ceiling is a few hundred operations.
DEFAULT_WRITE_BATCH_SIZE: int = 450

# Default max rows returned by one PostgREST response.
DEFAULT_PAGE_SIZE: int = 1000


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive slices of at most `size` items."""

    if size < 1:
        raise ValueError("chunk size must be >= 1")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def unique_in_order(values: Iterable[T]) -> List[T]:
    seen: set = set()
    result: List[T] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result


def select_in_chunks(
    client: Any,
    table: str,
    column: str,
    values: Iterable[Any],
    chunk_size: int = DEFAULT_IN_CHUNK_SIZE,
    columns: str = "*",
) -> List[dict[str, Any]]:
    """
    Fetch every row whose `column` is in `values`, one bounded `in` query per chunk.

    Duplicate values are queried once; the union of chunk results is returned
    in chunk order.
    """

    distinct = unique_in_order(values)
    rows: List[dict[str, Any]] = []

    for chunk in chunked(distinct, chunk_size):
        response = client.table(table).select(columns).in_(column, chunk).execute()
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to query {table} by {column}: {error}")
        rows.extend(getattr(response, "data", None) or [])

    return rows


def fetch_all(
    client: Any,
    table: str,
    order_by: str,
    page_size: int = DEFAULT_PAGE_SIZE,
    columns: str = "*",
) -> List[dict[str, Any]]:
    """Read a whole table page by page, ordered by `order_by` for stable paging."""

    rows: List[dict[str, Any]] = []
    offset = 0

    while True:
        response = (
            client.table(table)
            .select(columns)
            .order(order_by)
            .range(offset, offset + page_size - 1)
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to list {table}: {error}")

        page = getattr(response, "data", None) or []
        rows.extend(page)
        if len(page) < page_size:
            return rows
        offset += page_size


def write_in_batches(
    rows: Sequence[T],
    write: Callable[[List[T]], None],
    batch_size: int = DEFAULT_WRITE_BATCH_SIZE,
) -> int:
    """
    Commit `rows` through `write` one bounded batch at a time.

    Returns:
        Number of rows committed (all of them on success).

    Raises:
        PartialBatchFailure: when a batch fails; earlier batches remain committed.
    """

    batches = list(chunked(rows, batch_size))
    committed = 0

    for index, batch in enumerate(batches):
        try:
            write(batch)
        except Exception as e:
            logger.error(
                "Batch write failed",
                extra={
                    "failed_batch": index,
                    "total_batches": len(batches),
                    "committed_rows": committed,
                },
            )
            raise PartialBatchFailure(
                committed=committed,
                failed_batch=index,
                total_batches=len(batches),
                cause=e,
            ) from e
        committed += len(batch)

    return committed


__all__ = [
    "DEFAULT_IN_CHUNK_SIZE",
    "DEFAULT_PAGE_SIZE",
    "DEFAULT_WRITE_BATCH_SIZE",
    "chunked",
    "fetch_all",
    "select_in_chunks",
    "unique_in_order",
    "write_in_batches",
]
