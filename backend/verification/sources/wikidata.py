"""
Wikidata catalog adapter using the public SPARQL endpoint.
Matches a film by IMDb id (P345) when known, else by English label and release year.
"""
from __future__ import annotations

from typing import Any, Optional

import httpx

from shared.models.domain import RecordRef
from shared.models.enums import Source
from shared.utils.logging import get_logger

from verification.errors import NotFoundError, ParseError
from verification.sources.base import HTTPSourceAdapter, clean_fields
from verification.sources.http_client import CatalogHTTPClient

logger = get_logger(__name__)

WIKIDATA_BASE = "https://query.wikidata.org"

_SELECT = """
SELECT ?film ?filmLabel ?directorLabel ?composerLabel ?imdbId ?releaseDate ?duration WHERE {{
  ?film wdt:P31 wd:Q11424 .
  {match}
  OPTIONAL {{ ?film wdt:P577 ?releaseDate . }}
  OPTIONAL {{ ?film wdt:P57 ?director . }}
  OPTIONAL {{ ?film wdt:P86 ?composer . }}
  OPTIONAL {{ ?film wdt:P345 ?imdbId . }}
  OPTIONAL {{ ?film wdt:P2047 ?duration . }}
  {year_filter}
  SERVICE wikibase:label {{ bd:serviceParam wikibase:language "en". }}
}}
ORDER BY ?releaseDate
LIMIT 1
"""


def _literal(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def build_query(record: RecordRef) -> str:
    if record.imdb_id:
        match = f"?film wdt:P345 {_literal(record.imdb_id)} ."
        year_filter = ""
    else:
        match = f"?film rdfs:label {_literal(record.title or '')}@en ."
        year_filter = f"FILTER(YEAR(?releaseDate) = {int(record.year)})" if record.year else ""
    return _SELECT.format(match=match, year_filter=year_filter)


def binding_to_fields(binding: dict[str, Any]) -> dict[str, Any]:
    """Map one SPARQL result row to field values."""
    def value(key: str) -> Optional[str]:
        return (binding.get(key) or {}).get("value")

    release = value("releaseDate")
    duration = value("duration")
    return clean_fields({
        "title": value("filmLabel"),
        "director": value("directorLabel"),
        "music_director": value("composerLabel"),
        "release_date": release,
        "release_year": release[:4] if release else None,
        "runtime": duration,
    })


class WikidataSource(HTTPSourceAdapter):
    """Structured knowledge graph adapter."""

    def __init__(
        self,
        http: Optional[CatalogHTTPClient] = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(http or CatalogHTTPClient(
            Source.WIKIDATA.value,
            WIKIDATA_BASE,
            headers={"Accept": "application/sparql-results+json"},
            transport=transport,
        ))

    @property
    def name(self) -> str:
        return Source.WIKIDATA.value

    async def fetch(self, record: RecordRef) -> dict[str, Any]:
        if not record.imdb_id:
            self._require_title(record)
        data = await self._http.get_json(
            "/sparql",
            record.record_id,
            params={"query": build_query(record), "format": "json"},
        )
        try:
            bindings = data["results"]["bindings"]
        except (KeyError, TypeError) as exc:
            raise ParseError(self.name, record.record_id, "missing results.bindings") from exc
        if not bindings:
            raise NotFoundError(self.name, record.record_id, "no matching entity")
        return binding_to_fields(bindings[0])
