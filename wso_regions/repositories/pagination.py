"""
Pagination-safe batch retrieval.

The backing store silently caps every request at a fixed number of rows, so a
single select undercounts any result set larger than that cap. Every
aggregate read in this package goes through PaginatedAggregator instead.
"""

import time
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from loguru import logger

from ..config_loader import Config
from ..errors import PageFetchFailure, RegionsError

Row = Dict[str, Any]


def chunked(values: Sequence[Any], size: int) -> Iterator[List[Any]]:
    """Yield successive lists of at most ``size`` items."""
    if size <= 0:
        raise ValueError("Chunk size must be positive")
    for i in range(0, len(values), size):
        yield list(values[i : i + size])


class PaginatedAggregator:
    """
    Sequential range-paginated reads with bounded retries.

    The database object must provide
    ``select_range(table, columns, filters, start, end, order_by, count) -> (rows, total)``
    (see SupabaseDatabase).

    Example:
        aggregator = PaginatedAggregator(db, page_size=1000)
        rows = aggregator.fetch_all("meets", ["meet_id"], {"Date": {"gte": "2025-01-01"}},
                                    order_by="meet_id")
    """

    def __init__(
        self,
        db: Any,
        page_size: int = 1000,
        hard_cap: int = 50000,
        id_batch_size: int = 200,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        backoff: str = "exponential",
        sleep: Callable[[float], None] = time.sleep,
    ):
        if page_size <= 0 or hard_cap <= 0 or id_batch_size <= 0:
            raise ValueError("page_size, hard_cap and id_batch_size must be positive")
        self.db = db
        self.page_size = page_size
        self.hard_cap = hard_cap
        self.id_batch_size = id_batch_size
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.backoff = backoff
        self._sleep = sleep

    @classmethod
    def from_config(cls, db: Any, config: Config, **overrides: Any) -> "PaginatedAggregator":
        """Build an aggregator from the 'pagination' config section."""
        settings = {
            "page_size": int(config.get_pagination_setting("page_size")),
            "hard_cap": int(config.get_pagination_setting("hard_cap")),
            "id_batch_size": int(config.get_pagination_setting("id_batch_size")),
            "max_retries": int(config.get_pagination_setting("max_retries")),
            "retry_delay": float(config.get_pagination_setting("retry_delay")),
            "backoff": str(config.get_pagination_setting("backoff")),
        }
        settings.update(overrides)
        return cls(db, **settings)

    def _retry_wait(self, attempt: int) -> float:
        if self.backoff == "exponential":
            return self.retry_delay * (2 ** (attempt - 1))
        return self.retry_delay

    def fetch_page(
        self,
        table: str,
        columns: Optional[List[str]],
        filters: Optional[Dict[str, Any]],
        start: int,
        end: int,
        order_by: Optional[str] = None,
        count: bool = False,
    ) -> Any:
        """
        Fetch one page, retrying transient failures.

        Raises:
            PageFetchFailure: After max_retries failed attempts.
        """
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                return self.db.select_range(table, columns, filters, start, end, order_by, count)
            except Exception as e:
                last_error = e
                if attempt < self.max_retries:
                    wait = self._retry_wait(attempt)
                    logger.warning(
                        f"   ⚠️ Attempt {attempt} failed on {table} at offset {start}: {e}. "
                        f"Retrying in {wait:.1f}s..."
                    )
                    self._sleep(wait)
                else:
                    logger.error(
                        f"   ❌ All {self.max_retries} attempts failed on {table} at offset {start}: {e}"
                    )
        raise PageFetchFailure(table, start, self.max_retries, last_error)

    def fetch_all(
        self,
        table: str,
        columns: Optional[List[str]] = None,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        page_size: Optional[int] = None,
        hard_cap: Optional[int] = None,
    ) -> List[Row]:
        """
        Retrieve every matching row in sequential pages.

        Pages until the exact total reported with the first page has been
        read, or at the hard cap (logged as a warning). Offsets advance by the
        rows actually returned, so a store capping requests below page_size is
        still read in full. A short page ends the fetch only when the store
        reported no total; an empty page while rows are still missing raises
        PageFetchFailure, as does any failed page.

        Args:
            table: Table name
            columns: Columns to select
            filters: Filter conditions
            order_by: Stable ordering column; without one, pages may overlap
            page_size: Rows per request (defaults to the aggregator setting)
            hard_cap: Maximum rows to retrieve (defaults to the aggregator setting)

        Returns:
            All rows across all pages
        """
        page_size = page_size or self.page_size
        hard_cap = hard_cap or self.hard_cap
        if not order_by:
            logger.debug(f"   ⚠️ Paginating {table} without an explicit order")

        rows: List[Row] = []
        start = 0
        total: Optional[int] = None
        pages = 0

        while len(rows) < hard_cap:
            end = start + page_size - 1
            batch, reported = self.fetch_page(
                table, columns, filters, start, end, order_by, count=(pages == 0)
            )
            pages += 1
            if pages == 1:
                total = reported

            batch = batch or []
            rows.extend(batch)

            if pages > 1:
                logger.trace(f"   📄 Page {pages}: {len(batch)} rows (total: {len(rows)})")

            if total is None:
                # Without a reported total, a short page is the only end-of-data signal
                if len(batch) < page_size:
                    break
            elif len(rows) >= total:
                break
            elif not batch:
                raise PageFetchFailure(
                    table,
                    start,
                    1,
                    RegionsError(f"empty page after {len(rows)} of {total} reported rows"),
                )
            start += len(batch)

        if len(rows) >= hard_cap:
            logger.warning(
                f"   ⚠️ Reached maximum record limit ({hard_cap}) for {table} query; "
                f"results are capped"
            )
            rows = rows[:hard_cap]

        if pages > 1:
            logger.debug(f"   ✅ Paginated query complete: {len(rows)} rows from {pages} pages")
        return rows

    def fetch_in_batches(
        self,
        table: str,
        columns: Optional[List[str]],
        key: str,
        ids: Sequence[Any],
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        batch_size: Optional[int] = None,
    ) -> List[Row]:
        """
        Fetch rows whose ``key`` is in ``ids``, splitting the id list into
        sub-batches and paginating each one.

        Args:
            table: Table name
            columns: Columns to select
            key: Column matched against ids
            ids: Values for the 'in' filter
            filters: Additional filter conditions
            order_by: Stable ordering column
            batch_size: Ids per request (defaults to the aggregator setting)

        Returns:
            All rows across all batches
        """
        batch_size = batch_size or self.id_batch_size
        unique_ids = list(dict.fromkeys(i for i in ids if i is not None))
        if not unique_ids:
            return []

        rows: List[Row] = []
        batches = 0
        for id_batch in chunked(unique_ids, batch_size):
            batches += 1
            batch_filters = dict(filters or {})
            batch_filters[key] = {"in": id_batch}
            rows.extend(self.fetch_all(table, columns, batch_filters, order_by=order_by))

        logger.debug(
            f"   ✅ {len(rows)} rows from {table} for {len(unique_ids)} ids in {batches} batch(es)"
        )
        return rows
