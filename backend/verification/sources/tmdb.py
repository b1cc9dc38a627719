"""
TMDB catalog adapter.
Search by title/year (or find by IMDb id), then one details call with credits appended.
"""
from __future__ import annotations

from typing import Any, Optional

import httpx

from shared.config import get_settings
from shared.models.domain import RecordRef
from shared.models.enums import Source
from shared.utils.logging import get_logger

from verification.errors import NotFoundError, ParseError
from verification.sources.base import HTTPSourceAdapter, clean_fields
from verification.sources.http_client import CatalogHTTPClient

logger = get_logger(__name__)

TMDB_BASE = "https://api.themoviedb.org/3"

# TMDB cast gender codes
_FEMALE = 1
_MALE = 2

_MUSIC_JOBS = ("Original Music Composer", "Music", "Music Director")


def _first_by_order(cast: list[dict[str, Any]], gender: int) -> Optional[str]:
    members = sorted((c for c in cast if c.get("gender") == gender), key=lambda c: c.get("order", 999))
    return members[0].get("name") if members else None


def _crew_member(crew: list[dict[str, Any]], jobs: tuple[str, ...]) -> Optional[str]:
    for job in jobs:
        for member in crew:
            if member.get("job") == job:
                return member.get("name")
    return None


def details_to_fields(movie: dict[str, Any]) -> dict[str, Any]:
    """Map a TMDB movie details payload (with credits) to field values."""
    credits = movie.get("credits") or {}
    cast = credits.get("cast") or []
    crew = credits.get("crew") or []
    release_date = movie.get("release_date") or None
    return clean_fields({
        "title": movie.get("title"),
        "release_date": release_date,
        "release_year": release_date[:4] if release_date else None,
        "synopsis": movie.get("overview"),
        "rating": movie.get("vote_average") if movie.get("vote_count") else None,
        "runtime": movie.get("runtime") or None,
        "genres": [g.get("name") for g in movie.get("genres") or [] if g.get("name")],
        "language": movie.get("original_language"),
        "director": _crew_member(crew, ("Director",)),
        "music_director": _crew_member(crew, _MUSIC_JOBS),
        "hero": _first_by_order(cast, _MALE),
        "heroine": _first_by_order(cast, _FEMALE),
    })


class TMDBSource(HTTPSourceAdapter):
    """Film database adapter."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        http: Optional[CatalogHTTPClient] = None,
        preferred_language: Optional[str] = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(http or CatalogHTTPClient(Source.TMDB.value, TMDB_BASE, transport=transport))
        self._api_key = api_key if api_key is not None else get_settings().tmdb_api_key
        self._preferred_language = preferred_language

    @property
    def name(self) -> str:
        return Source.TMDB.value

    async def _find_id(self, record: RecordRef, key: str) -> int:
        if record.imdb_id:
            data = await self._http.get_json(
                f"/find/{record.imdb_id}",
                record.record_id,
                params={"api_key": key, "external_source": "imdb_id"},
            )
            results = data.get("movie_results") or []
            if results:
                return results[0]["id"]
        title = self._require_title(record)
        params: dict[str, Any] = {"api_key": key, "query": title, "language": "en-US"}
        if record.year:
            params["year"] = record.year
        data = await self._http.get_json("/search/movie", record.record_id, params=params)
        results = data.get("results") or []
        if not results:
            raise NotFoundError(self.name, record.record_id, f"no search results for '{title}'")
        movie = results[0]
        if self._preferred_language:
            movie = next((m for m in results if m.get("original_language") == self._preferred_language), movie)
        return movie["id"]

    async def fetch(self, record: RecordRef) -> dict[str, Any]:
        key = self._require_key(self._api_key, record)
        try:
            movie_id = await self._find_id(record, key)
        except (KeyError, TypeError, AttributeError) as exc:
            raise ParseError(self.name, record.record_id, f"unexpected search payload: {exc}") from exc
        movie = await self._http.get_json(
            f"/movie/{movie_id}",
            record.record_id,
            params={"api_key": key, "append_to_response": "credits"},
        )
        if not isinstance(movie, dict):
            raise ParseError(self.name, record.record_id, "details payload is not an object")
        return details_to_fields(movie)
