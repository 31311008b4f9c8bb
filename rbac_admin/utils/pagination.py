"""
Paging and export helpers for the admin listings.

Listings (users, roles, permissions, audit logs) are paged by offset:

    GET /api/users?page=2&per_page=50

Audit exports stream in fixed-size batches so a large log never has to be
loaded at once:

    GET /api/audit-logs/export?format=jsonl
"""

import csv
import io
import json
import math
from enum import Enum
from typing import Any, AsyncIterator, Callable, Generic, Sequence, TypeVar

from fastapi import Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")

MAX_PER_PAGE = 100

RowSerializer = Callable[[Any], dict[str, Any]]


class OffsetParams(BaseModel):
    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=20, ge=1, le=MAX_PER_PAGE)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


class OffsetPage(BaseModel, Generic[T]):
    """One page of rows plus the totals needed to render a pager."""

    items: list[T]
    total: int
    page: int
    per_page: int
    pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def create(cls, items: Sequence[T], total: int, page: int, per_page: int) -> "OffsetPage[T]":
        pages = math.ceil(total / per_page) if per_page else 0
        return cls(
            items=list(items),
            total=total,
            page=page,
            per_page=per_page,
            pages=pages,
            has_next=page < pages,
            has_prev=page > 1,
        )


class Paginator:
    """Runs a select twice: once for the total, once for the requested slice."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def paginate_offset(self, query: Select, page: int = 1, per_page: int = 20) -> OffsetPage:
        params = OffsetParams(page=page, per_page=per_page)
        total = await self.count(query)
        rows = await self.db.scalars(query.offset(params.offset).limit(params.per_page))
        return OffsetPage.create(rows.all(), total=total, page=page, per_page=per_page)

    async def count(self, query: Select) -> int:
        # Ordering is irrelevant to the count and some backends reject it in subqueries
        counted = select(func.count()).select_from(query.order_by(None).subquery())
        return await self.db.scalar(counted) or 0


class ExportFormat(str, Enum):
    CSV = "csv"
    JSONL = "jsonl"


async def stream_query(
    db: AsyncSession,
    query: Select,
    batch_size: int = 500,
) -> AsyncIterator[Any]:
    """
    Yield every row of ``query``, fetching ``batch_size`` rows at a time.

    ``query`` needs a deterministic ORDER BY or batches may overlap.
    """
    offset = 0
    while True:
        batch = (await db.scalars(query.offset(offset).limit(batch_size))).all()
        for row in batch:
            yield row
        if len(batch) < batch_size:
            return
        offset += batch_size


def _attachment(body: AsyncIterator[str], media_type: str, filename: str) -> StreamingResponse:
    return StreamingResponse(
        body,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _csv_cell(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return value


def create_csv_streaming_response(
    rows: AsyncIterator[Any],
    serializer: RowSerializer,
    filename: str = "export.csv",
) -> StreamingResponse:
    """Stream ``rows`` as CSV. The header comes from the first serialized row."""

    async def body() -> AsyncIterator[str]:
        buffer = io.StringIO()
        writer: csv.DictWriter | None = None
        async for row in rows:
            record = serializer(row)
            if writer is None:
                writer = csv.DictWriter(buffer, fieldnames=list(record))
                writer.writeheader()
            writer.writerow({key: _csv_cell(value) for key, value in record.items()})
            yield buffer.getvalue()
            buffer.seek(0)
            buffer.truncate()

    return _attachment(body(), "text/csv", filename)


def create_jsonl_streaming_response(
    rows: AsyncIterator[Any],
    serializer: RowSerializer,
    filename: str = "export.jsonl",
) -> StreamingResponse:
    """Stream ``rows`` as JSON Lines, one object per line."""

    async def body() -> AsyncIterator[str]:
        async for row in rows:
            yield json.dumps(serializer(row), default=str) + "\n"

    return _attachment(body(), "application/jsonl", filename)


def get_offset_params(
    page: int = Query(1, ge=1, description="Page number, starting at 1"),
    per_page: int = Query(20, ge=1, le=MAX_PER_PAGE, description="Rows per page"),
) -> OffsetParams:
    return OffsetParams(page=page, per_page=per_page)
