"""Keyset pagination types for the timestamp-descending record stream."""

from typing import Generic, TypeVar

from pydantic import BaseModel, Field

from intake_ledger.domain.records import LedgerRecord

RecordT = TypeVar("RecordT", bound=LedgerRecord)


class PageCursor(BaseModel):
    """
    Position in the (timestamp DESC, id DESC) ordering.

    ``id`` is None when a caller only knows a timestamp; the next page then
    starts strictly before that timestamp.
    """

    timestamp: int = Field(ge=0)
    id: str | None = None

    model_config = {"frozen": True}

    @classmethod
    def after(cls, record: LedgerRecord) -> "PageCursor":
        """Cursor positioned just past ``record``."""
        return cls(timestamp=record.timestamp, id=record.id)


class Page(BaseModel, Generic[RecordT]):
    """One page of records plus the cursor for the next page."""

    records: list[RecordT]
    next_cursor: PageCursor | None = None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None
