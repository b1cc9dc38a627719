"""
Wikipedia catalog adapter using the REST page summary endpoint.
Looks up "<title> (<year> film)" first, then the bare title.
"""
from __future__ import annotations

import re
from typing import Any, Optional
from urllib.parse import quote

import httpx

from shared.models.domain import RecordRef
from shared.models.enums import Source
from shared.utils.logging import get_logger

from verification.errors import NotFoundError, ParseError
from verification.sources.base import HTTPSourceAdapter, clean_fields
from verification.sources.http_client import CatalogHTTPClient

logger = get_logger(__name__)

WIKIPEDIA_BASE = "https://en.wikipedia.org/api/rest_v1"

# Short descriptions look like "2008 film by Christopher Nolan"
_DESCRIPTION_RE = re.compile(
    r"^(?P<year>\d{4})\s+(?:[\w-]+\s+)*?film(?:\s+(?:directed\s+)?by\s+(?P<director>.+))?$",
    re.IGNORECASE,
)


def summary_to_fields(data: dict[str, Any]) -> dict[str, Any]:
    """Map a page summary payload to field values."""
    fields: dict[str, Any] = {
        "title": data.get("title"),
        "synopsis": data.get("extract"),
    }
    match = _DESCRIPTION_RE.match((data.get("description") or "").strip())
    if match:
        fields["release_year"] = match.group("year")
        director = match.group("director")
        if director and " and " not in director:
            fields["director"] = director.strip()
    return clean_fields(fields)


class WikipediaSource(HTTPSourceAdapter):
    """Encyclopedia adapter."""

    def __init__(
        self,
        http: Optional[CatalogHTTPClient] = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(http or CatalogHTTPClient(Source.WIKIPEDIA.value, WIKIPEDIA_BASE, transport=transport))

    @property
    def name(self) -> str:
        return Source.WIKIPEDIA.value

    def _candidates(self, record: RecordRef) -> list[str]:
        title = self._require_title(record)
        candidates = [f"{title} ({record.year} film)"] if record.year else []
        candidates += [f"{title} (film)", title]
        return candidates

    async def fetch(self, record: RecordRef) -> dict[str, Any]:
        for page in self._candidates(record):
            path = "/page/summary/" + quote(page.replace(" ", "_"), safe="")
            try:
                data = await self._http.get_json(path, record.record_id)
            except NotFoundError:
                continue
            if not isinstance(data, dict):
                raise ParseError(self.name, record.record_id, "summary is not an object")
            if data.get("type") == "disambiguation" or not data.get("extract"):
                logger.debug("wikipedia_page_skipped", page=page, type=data.get("type"))
                continue
            return summary_to_fields(data)
        raise NotFoundError(self.name, record.record_id, f"no article for '{record.title}'")
