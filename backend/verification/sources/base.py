"""
Base source adapter interface.
Every catalog returns a flat {field: raw value} mapping for one record; the
conflict resolver does all comparison normalization.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from shared.models.domain import RecordRef
from shared.utils.logging import get_logger

from verification.errors import NotFoundError
from verification.sources.http_client import CatalogHTTPClient

logger = get_logger(__name__)


def clean_fields(data: dict[str, Any]) -> dict[str, Any]:
    """Drop empty values and catalog placeholders like "N/A"."""
    cleaned: dict[str, Any] = {}
    for key, value in data.items():
        if value is None:
            continue
        if isinstance(value, str) and (not value.strip() or value.strip().upper() == "N/A"):
            continue
        if isinstance(value, (list, tuple)) and not value:
            continue
        cleaned[key] = value
    return cleaned


class SourceAdapter(ABC):
    """Base for TMDB, OMDb, Wikipedia, Wikidata and the internal store."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def fetch(self, record: RecordRef) -> dict[str, Any]:
        """
        Fetch field values for one record.
        Raise a FetchError subclass on failure; NotFoundError when the catalog
        has no entry for the record.
        """
        pass

    async def start(self) -> None:
        pass

    async def close(self) -> None:
        pass


class HTTPSourceAdapter(SourceAdapter):
    """Adapter backed by a CatalogHTTPClient."""

    def __init__(self, http: CatalogHTTPClient) -> None:
        self._http = http

    async def start(self) -> None:
        await self._http.start()

    async def close(self) -> None:
        await self._http.close()

    def _require_title(self, record: RecordRef) -> str:
        if not record.title:
            raise NotFoundError(self.name, record.record_id, "record has no title to search by")
        return record.title

    def _require_key(self, key: Optional[str], record: RecordRef) -> str:
        if not key:
            raise NotFoundError(self.name, record.record_id, "api key not configured")
        return key
