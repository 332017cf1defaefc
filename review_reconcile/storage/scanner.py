# ==============================================
# PaginatedScanner
# ==============================================
#
# PURPOSE:
#   Walks a whole collection in ascending `_id` order, one page at a time,
#   and can resume after any `_id`.
#
# WHY `_id` ORDER:
#   It needs no extra index and is stable while the live app writes:
#   updates never move a document, and an insert only shows up ahead of
#   the cursor if its ID sorts after it.
#
# CLASS: PaginatedScanner
# -----------------------
#   Stateful: remembers the last ID it handed out.
#
#   Constructor:
#   ------------
#   - __init__(mongo_client, collection_name, page_size=1000,
#              start_after=None, limit=None)
#
#   Methods / attributes:
#   ---------------------
#   - pages() -> Iterator[list[dict]]
#   - __iter__() -> Iterator[dict]
#   - last_id                   → last `_id` yielded, as stored
#   - last_cursor: str | None   → the same ID as a string (for logs and resume)
#   - pages_fetched, records_seen
#
# ==============================================

import logging
from typing import Any, Iterator, List, Optional

from ..config import MAX_PAGE_SIZE


logger = logging.getLogger(__name__)


class PaginatedScanner:
    """Lazy, finite, restartable `_id`-ordered scan."""

    def __init__(
        self,
        mongo_client,
        collection_name: str,
        page_size: int = MAX_PAGE_SIZE,
        start_after: Any = None,
        limit: Optional[int] = None
    ):
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self._mongo = mongo_client
        self._collection_name = collection_name
        self.page_size = min(page_size, MAX_PAGE_SIZE)
        self.limit = limit
        self.last_id = start_after
        self.last_cursor: Optional[str] = None if start_after is None else str(start_after)
        self.pages_fetched = 0
        self.records_seen = 0

    def pages(self) -> Iterator[List[dict]]:
        """Yield pages until one comes back empty or the limit is reached."""
        cursor = self.last_id
        fetched = 0
        while True:
            if self.limit is not None and fetched >= self.limit:
                return
            size = self.page_size
            if self.limit is not None:
                size = min(size, self.limit - fetched)

            page = self._mongo.fetch_page(self._collection_name, cursor, size)
            if not page:
                return
            self.pages_fetched += 1
            fetched += len(page)
            logger.debug(
                "Fetched page %d (%d docs) after cursor %s",
                self.pages_fetched, len(page), cursor
            )
            cursor = page[-1]["_id"]
            yield page

    def __iter__(self) -> Iterator[dict]:
        for page in self.pages():
            for document in page:
                self.last_id = document["_id"]
                self.last_cursor = str(self.last_id)
                self.records_seen += 1
                yield document
