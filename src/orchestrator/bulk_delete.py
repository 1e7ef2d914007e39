"""Paginated bulk deletion with per-item failure isolation.

Enumeration follows continuation tokens up to a hard page ceiling so it
terminates even against an API that paginates forever. Deletion walks
fixed-size batches in enumeration order, pausing briefly every few
deletions and longer between batches. A failing item is recorded and
skipped; it never stops the run. "Not found" on delete counts as deleted.

The engine performs no whole-pass retry. DeletionResult.retriable_items
tells the caller which failures were dependency conflicts worth another
pass.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from .config import Config
from .errors import DependencyInUse, PartialFailure, RemoteApiError, ResourceNotFound
from .remote import ListPage, call_api
from .retry import RetryPolicy, Sleeper

logger = logging.getLogger(__name__)

ListOperation = Callable[[str | None], ListPage]
DeleteOperation = Callable[[Any], None]

DEFAULT_VERIFY_SAMPLE_SIZE = 10


def item_label(item: Any) -> str:
    return str(getattr(item, "name", None) or getattr(item, "id", None) or item)


@dataclass
class PageCursor:
    """Continuation token plus a page counter bounded by a ceiling."""

    ceiling: int
    token: str | None = None
    page: int = 0
    truncated: bool = False

    def advance(self, next_token: str | None) -> bool:
        """Record a fetched page; return True if another page should be read."""
        self.page += 1
        if not next_token:
            self.token = None
            return False
        if self.page >= self.ceiling:
            self.truncated = True
            return False
        self.token = next_token
        return True


@dataclass(frozen=True)
class DeletionBatch:
    """A bounded slice of items deleted back to back."""

    index: int
    items: tuple[Any, ...]

    def __len__(self) -> int:
        return len(self.items)


@dataclass
class DeletionResult:
    """Outcome of one delete_all pass."""

    deleted_count: int = 0
    failed_count: int = 0
    failed_items: list[Any] = field(default_factory=list)
    retriable_items: list[Any] = field(default_factory=list)
    not_found_count: int = 0
    batch_sizes: list[int] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.failed_count == 0

    @property
    def retriable(self) -> bool:
        """True when every failure was a dependency conflict."""
        return self.failed_count > 0 and len(self.retriable_items) == self.failed_count

    def raise_for_failures(self) -> None:
        if self.failed_count:
            raise PartialFailure(self.deleted_count, list(self.failed_items))


@dataclass(frozen=True)
class VerificationResult:
    """First-page-only check after deletion."""

    remaining_count: int
    remaining_sample: list[str]
    has_more: bool = False

    @property
    def clean(self) -> bool:
        return self.remaining_count == 0 and not self.has_more


class Enumeration:
    """Lazy, finite, restartable listing.

    Each `async for` starts again from the first page. `pages` and
    `truncated` describe the most recent traversal.
    """

    def __init__(self, engine: BulkDeletionEngine, list_operation: ListOperation) -> None:
        self._engine = engine
        self._list_operation = list_operation
        self._cursor: PageCursor | None = None

    def __aiter__(self) -> AsyncIterator[Any]:
        self._cursor = PageCursor(ceiling=self._engine.page_ceiling)
        return self._engine._iterate(self._list_operation, self._cursor)

    @property
    def pages(self) -> int:
        return self._cursor.page if self._cursor else 0

    @property
    def truncated(self) -> bool:
        return bool(self._cursor and self._cursor.truncated)

    async def collect(self) -> list[Any]:
        return [item async for item in self]


class BulkDeletionEngine:
    """Enumerate, batch, delete and verify large result sets."""

    def __init__(
        self,
        page_ceiling: int = 2000,
        page_delay_seconds: float = 0.1,
        batch_size: int = 50,
        burst_every: int = 10,
        burst_delay_seconds: float = 1.0,
        batch_delay_seconds: float = 2.0,
        sleep: Sleeper = asyncio.sleep,
        call_retry: RetryPolicy | None = None,
        progress: Callable[[str], None] | None = None,
    ) -> None:
        if page_ceiling < 1:
            raise ValueError("page_ceiling must be at least 1")
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.page_ceiling = page_ceiling
        self.batch_size = batch_size
        self._page_delay = page_delay_seconds
        self._burst_every = max(1, burst_every)
        self._burst_delay = burst_delay_seconds
        self._batch_delay = batch_delay_seconds
        self._sleep = sleep
        self._call_retry = call_retry or RetryPolicy(max_attempts=3, backoff_seconds=1.0)
        self._progress = progress

    @classmethod
    def from_config(
        cls,
        config: Config,
        sleep: Sleeper = asyncio.sleep,
        progress: Callable[[str], None] | None = None,
    ) -> BulkDeletionEngine:
        return cls(
            page_ceiling=config.page_ceiling,
            page_delay_seconds=config.page_delay_seconds,
            batch_size=config.batch_size,
            burst_every=config.burst_every,
            burst_delay_seconds=config.burst_delay_seconds,
            batch_delay_seconds=config.batch_delay_seconds,
            sleep=sleep,
            progress=progress,
        )

    def _report(self, message: str) -> None:
        if self._progress is not None:
            self._progress(message)

    # =========================================================================
    # Enumeration
    # =========================================================================

    def enumerate_all(self, list_operation: ListOperation) -> Enumeration:
        return Enumeration(self, list_operation)

    async def _fetch(self, list_operation: ListOperation, token: str | None) -> ListPage:
        async def fetch() -> ListPage:
            return await call_api(list_operation, token)

        return await self._call_retry.call(fetch, sleep=self._sleep, description="Page fetch")

    async def _iterate(
        self, list_operation: ListOperation, cursor: PageCursor
    ) -> AsyncIterator[Any]:
        while True:
            page = await self._fetch(list_operation, cursor.token)
            more = cursor.advance(page.next_token)

            logger.debug(
                "Fetched page",
                extra={"page": cursor.page, "items": len(page.items), "more": more},
            )
            for item in page.items:
                yield item

            if not more:
                break
            await self._sleep(self._page_delay)

        if cursor.truncated:
            logger.warning(
                "Page ceiling reached, enumeration truncated",
                extra={"pages": cursor.page, "ceiling": cursor.ceiling},
            )
            self._report(
                f"  ! stopped after {cursor.page} pages (ceiling reached); re-run to continue"
            )

    # =========================================================================
    # Deletion
    # =========================================================================

    def batches(self, items: Sequence[Any], batch_size: int | None = None) -> list[DeletionBatch]:
        size = batch_size if batch_size is not None else self.batch_size
        if size < 1:
            raise ValueError("batch_size must be at least 1")
        return [
            DeletionBatch(index=i // size, items=tuple(items[i : i + size]))
            for i in range(0, len(items), size)
        ]

    async def delete_all(
        self,
        items: Iterable[Any],
        delete_operation: DeleteOperation,
        batch_size: int | None = None,
    ) -> DeletionResult:
        """Delete every item, isolating per-item failures."""
        batches = self.batches(list(items), batch_size)
        result = DeletionResult(batch_sizes=[len(b) for b in batches])

        for batch in batches:
            self._report(
                f"  batch {batch.index + 1}/{len(batches)}: deleting {len(batch)} item(s)"
            )
            for position, item in enumerate(batch.items, start=1):
                await self._delete_one(item, delete_operation, result)
                if position % self._burst_every == 0 and position < len(batch):
                    await self._sleep(self._burst_delay)

            if batch.index < len(batches) - 1:
                await self._sleep(self._batch_delay)

        logger.info(
            "Bulk deletion finished",
            extra={
                "deleted": result.deleted_count,
                "failed": result.failed_count,
                "not_found": result.not_found_count,
                "batches": len(batches),
            },
        )
        return result

    async def _delete_one(
        self, item: Any, delete_operation: DeleteOperation, result: DeletionResult
    ) -> None:
        async def delete() -> None:
            await call_api(delete_operation, item)

        label = item_label(item)
        try:
            await self._call_retry.call(delete, sleep=self._sleep, description="Delete")
        except ResourceNotFound:
            # Removed concurrently since enumeration
            result.deleted_count += 1
            result.not_found_count += 1
            return
        except DependencyInUse as e:
            result.failed_count += 1
            result.failed_items.append(item)
            result.retriable_items.append(item)
            result.errors[label] = str(e)
            logger.warning("Deletion blocked by dependency", extra={"item": label, "error": str(e)})
            return
        except RemoteApiError as e:
            result.failed_count += 1
            result.failed_items.append(item)
            result.errors[label] = str(e)
            logger.warning("Deletion failed", extra={"item": label, "error": str(e)})
            return
        except Exception as e:
            # One bad item must not abort the rest of the pass
            result.failed_count += 1
            result.failed_items.append(item)
            result.errors[label] = f"{type(e).__name__}: {e}"
            logger.exception("Unexpected error deleting item", extra={"item": label})
            return

        result.deleted_count += 1

    # =========================================================================
    # Verification
    # =========================================================================

    async def verify(
        self, list_operation: ListOperation, sample_size: int = DEFAULT_VERIFY_SAMPLE_SIZE
    ) -> VerificationResult:
        """Re-list the first page only and report what is left."""
        page = await self._fetch(list_operation, None)
        verification = VerificationResult(
            remaining_count=len(page.items),
            remaining_sample=[item_label(item) for item in page.items[:sample_size]],
            has_more=bool(page.next_token),
        )
        logger.info(
            "Verification listing",
            extra={
                "remaining": verification.remaining_count,
                "has_more": verification.has_more,
                "clean": verification.clean,
            },
        )
        return verification
