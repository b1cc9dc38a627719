from verification.sources.base import HTTPSourceAdapter, SourceAdapter
from verification.sources.http_client import CatalogHTTPClient
from verification.sources.internal import InternalSource
from verification.sources.omdb import OMDbSource
from verification.sources.tmdb import TMDBSource
from verification.sources.wikidata import WikidataSource
from verification.sources.wikipedia import WikipediaSource

__all__ = [
    "SourceAdapter",
    "HTTPSourceAdapter",
    "CatalogHTTPClient",
    "TMDBSource",
    "OMDbSource",
    "WikipediaSource",
    "WikidataSource",
    "InternalSource",
]
