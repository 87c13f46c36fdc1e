"""
Socrata Dataset Fetcher

Paginated, retrying reads from NYC / NYS open data portals. Pages of one
dataset are fetched strictly in offset order; each blocking request runs in
a worker thread so several datasets can be fetched concurrently.
"""
import asyncio
from datetime import date
from typing import AsyncIterator, Callable, Dict, List, Optional

from sodapy import Socrata

from config.settings import settings
from src.propsignal.errors import TransientFetchError
from src.propsignal.scrapers.datasets import DatasetSpec
from src.propsignal.scrapers.retry import RetryPolicy
from src.propsignal.utils.logger import get_logger

logger = get_logger(__name__)


def default_client_factory(domain: str) -> Socrata:
    return Socrata(
        domain,
        app_token=settings.socrata_app_token,
        timeout=settings.socrata_timeout_seconds,
    )


class SocrataFetcher:
    """
    Fetches raw JSON rows from Socrata datasets.

    Pagination stops on a short page or once max_records rows have been
    read. Each page is retried according to the injected RetryPolicy; a page
    that exhausts its retries raises TransientFetchError for that dataset
    only.
    """

    def __init__(
        self,
        retry_policy: Optional[RetryPolicy] = None,
        client_factory: Optional[Callable[[str], Socrata]] = None,
        page_size: Optional[int] = None,
        max_records: Optional[int] = None,
    ):
        """
        Initialize the fetcher.

        Args:
            retry_policy: Retry/backoff policy per page
            client_factory: Builds a Socrata client for a domain (for testing)
            page_size: Rows per request
            max_records: Cap on rows per dataset
        """
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.client_factory = client_factory or default_client_factory
        self.page_size = page_size or settings.etl_page_size
        self.max_records = max_records or settings.etl_max_records

        logger.info(
            "socrata_fetcher_initialized",
            page_size=self.page_size,
            max_records=self.max_records,
            max_attempts=self.retry_policy.max_attempts,
        )

    def fetch_page(
        self,
        client: Socrata,
        spec: DatasetSpec,
        offset: int,
        limit: int,
        where: Optional[str] = None,
    ) -> List[Dict]:
        """
        Fetch one page with retries.

        Raises:
            TransientFetchError: when every attempt failed
        """
        def request() -> List[Dict]:
            return client.get(
                spec.dataset_id,
                limit=limit,
                offset=offset,
                where=where,
                order=spec.order,
            )

        try:
            page = self.retry_policy.call(request, description=f"{spec.name}@{offset}")
        except self.retry_policy.retry_on as e:
            raise TransientFetchError(spec.name, offset, self.retry_policy.max_attempts, e) from e

        return page or []

    async def iter_pages(
        self,
        spec: DatasetSpec,
        since_date: Optional[date] = None,
        page_size: Optional[int] = None,
    ) -> AsyncIterator[List[Dict]]:
        """
        Yield pages of raw rows in increasing offset order.

        Args:
            spec: Dataset to read
            since_date: Start of the incremental window (None for all rows)
            page_size: Override rows per request

        Yields:
            Lists of raw JSON rows
        """
        page_size = page_size or self.page_size
        where = spec.where_clause(since_date)
        client = self.client_factory(spec.domain)
        offset = 0

        logger.info(
            "dataset_fetch_started",
            dataset=spec.name,
            dataset_id=spec.dataset_id,
            domain=spec.domain,
            where=where or "all",
        )

        try:
            while True:
                batch_limit = self._next_batch_size(offset, page_size)
                if batch_limit == 0:
                    logger.info("dataset_max_records_reached", dataset=spec.name, max_records=self.max_records)
                    break

                page = await asyncio.to_thread(
                    self.fetch_page, client, spec, offset, batch_limit, where
                )
                if not page:
                    break

                logger.debug("dataset_page_fetched", dataset=spec.name, offset=offset, rows=len(page))
                yield page
                offset += len(page)

                if len(page) < batch_limit:
                    break
        finally:
            close = getattr(client, "close", None)
            if callable(close):
                close()

        logger.info("dataset_fetch_completed", dataset=spec.name, rows=offset)

    async def fetch_dataset(
        self,
        spec: DatasetSpec,
        since_date: Optional[date] = None,
        page_size: Optional[int] = None,
    ) -> List[Dict]:
        """
        Fetch every row of a dataset (up to max_records).

        Returns:
            Raw JSON rows in fetch order
        """
        rows: List[Dict] = []
        async for page in self.iter_pages(spec, since_date, page_size):
            rows.extend(page)
        return rows

    def _next_batch_size(self, offset: int, page_size: int) -> int:
        """Determine next batch size respecting the max_records cap."""
        remaining = max(self.max_records - offset, 0)
        return min(page_size, remaining)
