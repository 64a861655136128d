"""Keyset pagination over a record store."""

from intake_ledger.domain.paging import Page, PageCursor
from intake_ledger.domain.records import IntakeType, RecordKind
from intake_ledger.infrastructure.stores.base import RecordStore
from intake_ledger.utils.exceptions import ValidationError
from intake_ledger.utils.parameters import PaginationConfig


class CursorPager:
    """
    Pages records in (timestamp DESC, id DESC) order.

    One extra record is fetched per page to decide whether another page
    exists, so no separate count query is needed.
    """

    def __init__(self, config: PaginationConfig | None = None) -> None:
        self.config = config or PaginationConfig()

    def resolve_limit(self, limit: int | None) -> int:
        if limit is None:
            return self.config.default_page_size
        if limit < 1:
            raise ValidationError(f"Page size must be positive, got {limit}")
        return min(limit, self.config.max_page_size)

    async def page(
        self,
        store: RecordStore,
        kind: RecordKind,
        before: PageCursor | int | None = None,
        limit: int | None = None,
        intake_type: IntakeType | None = None,
    ) -> Page:
        """
        Fetch one page.

        Args:
            store: Store to read from.
            kind: Record kind.
            before: Cursor from the previous page, a bare timestamp, or None
                for the first page.
            limit: Page size (defaults to the configured size, capped at the
                configured maximum).
            intake_type: Optional intake type filter.

        Returns:
            Page whose ``next_cursor`` is None once the stream is exhausted.
        """
        size = self.resolve_limit(limit)
        if isinstance(before, int):
            before = PageCursor(timestamp=before)

        records = await store.list_page(kind, before, size + 1, intake_type)
        if len(records) <= size:
            return Page(records=records, next_cursor=None)

        kept = records[:size]
        return Page(records=kept, next_cursor=PageCursor.after(kept[-1]))
