"""OMDb catalog adapter."""
from __future__ import annotations

from typing import Any, Optional

import httpx

from shared.config import get_settings
from shared.models.domain import RecordRef
from shared.models.enums import Source
from shared.utils.logging import get_logger

from verification.errors import FetchError, NotFoundError, ParseError
from verification.sources.base import HTTPSourceAdapter, clean_fields
from verification.sources.http_client import CatalogHTTPClient

logger = get_logger(__name__)

OMDB_BASE = "https://www.omdbapi.com"


def _split(value: Any) -> list[str]:
    if not isinstance(value, str) or value.strip().upper() == "N/A":
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def payload_to_fields(data: dict[str, Any]) -> dict[str, Any]:
    """Map an OMDb response to field values."""
    rating = data.get("imdbRating")
    actors = _split(data.get("Actors"))
    directors = _split(data.get("Director"))
    languages = _split(data.get("Language"))
    return clean_fields({
        "title": data.get("Title"),
        "release_date": data.get("Released"),
        "release_year": data.get("Year"),
        "synopsis": data.get("Plot"),
        "rating": f"{rating}/10" if rating and rating != "N/A" else None,
        "runtime": data.get("Runtime"),
        "director": directors[0] if directors else None,
        "hero": actors[0] if actors else None,
        "genres": _split(data.get("Genre")),
        "language": languages[0] if languages else None,
        "certification": data.get("Rated"),
    })


class OMDbSource(HTTPSourceAdapter):
    """Alternate film database adapter."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        http: Optional[CatalogHTTPClient] = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(http or CatalogHTTPClient(Source.OMDB.value, OMDB_BASE, transport=transport))
        self._api_key = api_key if api_key is not None else get_settings().omdb_api_key

    @property
    def name(self) -> str:
        return Source.OMDB.value

    async def fetch(self, record: RecordRef) -> dict[str, Any]:
        key = self._require_key(self._api_key, record)
        params: dict[str, Any] = {"apikey": key, "plot": "short"}
        if record.imdb_id:
            params["i"] = record.imdb_id
        else:
            params["t"] = self._require_title(record)
            if record.year:
                params["y"] = record.year
        data = await self._http.get_json("/", record.record_id, params=params)
        if not isinstance(data, dict):
            raise ParseError(self.name, record.record_id, "response is not an object")
        if data.get("Response") == "False":
            error = str(data.get("Error") or "")
            if "not found" in error.lower():
                raise NotFoundError(self.name, record.record_id, error)
            raise FetchError(self.name, record.record_id, error or "request rejected")
        return payload_to_fields(data)
