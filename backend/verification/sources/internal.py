"""
Internal store adapter.
Backed by an in-process mapping or an async lookup callable supplied by the caller.
"""
from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Union

from shared.models.domain import RecordRef
from shared.models.enums import Source
from shared.utils.logging import get_logger

from verification.config import DEFAULT_FIELD_KINDS
from verification.errors import NotFoundError, ParseError
from verification.sources.base import SourceAdapter, clean_fields

logger = get_logger(__name__)

Lookup = Callable[[RecordRef], Union[Awaitable[Optional[Mapping[str, Any]]], Optional[Mapping[str, Any]]]]


class InternalSource(SourceAdapter):
    """Reads the current stored row for a record; only field columns are returned."""

    def __init__(
        self,
        rows: Union[Mapping[str, Mapping[str, Any]], Lookup],
        fields: Optional[Iterable[str]] = None,
        name: str = Source.INTERNAL.value,
    ) -> None:
        self._rows = rows
        self._fields = frozenset(fields) if fields is not None else frozenset(DEFAULT_FIELD_KINDS)
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    async def _lookup(self, record: RecordRef) -> Optional[Mapping[str, Any]]:
        if callable(self._rows):
            row = self._rows(record)
            if inspect.isawaitable(row):
                row = await row
            return row
        return self._rows.get(record.record_id)

    async def fetch(self, record: RecordRef) -> dict[str, Any]:
        row = await self._lookup(record)
        if row is None:
            raise NotFoundError(self.name, record.record_id, "no stored row")
        if not isinstance(row, Mapping):
            raise ParseError(self.name, record.record_id, f"row is {type(row).__name__}, expected mapping")
        return clean_fields({k: v for k, v in row.items() if k in self._fields})
