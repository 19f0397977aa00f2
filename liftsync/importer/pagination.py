from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from loguru import logger

from liftsync.importer import progress_tracker as tracker
from liftsync.importer.errors import ImportTimeoutError, PageNotFoundError, StepExecutionError
from liftsync.importer.store import ProgressStore

MAX_PAGES = 1000
PAGE_DELAY_SECONDS = 0.1

PageFetcher = Callable[[int, int], Awaitable[Mapping[str, Any]]]
ItemProcessor = Callable[[list[Any]], Awaitable[None]]


async def fetch_paginated(
    fetch_page: PageFetcher,
    process_items: ItemProcessor,
    *,
    data_key: str,
    page_size: int,
    should_stop: Callable[[], bool] | None = None,
    max_pages: int = MAX_PAGES,
    page_delay: float = PAGE_DELAY_SECONDS,
    operation: str | None = None,
    store: ProgressStore | None = None,
) -> int:
    """Walk a paginated collection and hand each page's items to `process_items`.

    `fetch_page(page, page_size)` returns a mapping holding the items under
    `data_key` and optionally `page_count`. The walk ends on an empty page,
    a short page, the last reported page, or a PageNotFoundError.

    Raises:
        ImportTimeoutError: `should_stop()` returned True before a page. When
            both `store` and `operation` are given, the operation is recorded
            as deferred first so a later run can finish it.
        StepExecutionError: More than `max_pages` pages were requested.
    """
    page = 1
    total = 0

    while page <= max_pages:
        if should_stop is not None and should_stop():
            if store is not None and operation:
                tracker.mark_deferred_operation(store, operation)
            raise ImportTimeoutError(f"Timeout approaching while fetching {data_key} (page {page})")

        try:
            response = await fetch_page(page, page_size)
        except PageNotFoundError:
            logger.debug(f"[IMPORT] Page {page} of {data_key} not found, treating as end of collection")
            return total

        items = list(response.get(data_key) or [])
        if not items:
            return total

        await process_items(items)
        total += len(items)

        page_count = response.get("page_count")
        if len(items) < page_size or (page_count and page >= page_count):
            return total

        page += 1
        if page_delay:
            await asyncio.sleep(page_delay)

    raise StepExecutionError(
        operation or data_key,
        f"Maximum page limit ({max_pages}) reached while fetching {data_key}; {total} items processed",
    )
