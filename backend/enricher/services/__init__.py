"""Service layer for enrichment runs."""
from .geocoder import GeocodingResolver, NominatimClient, build_query_cascade
from .pipeline import EnrichmentPipeline
from .queue import GeocodingQueue
from .tmdb import IdentityResolver, MetadataFetcher, TMDBClient

__all__ = [
    "EnrichmentPipeline",
    "GeocodingQueue",
    "GeocodingResolver",
    "IdentityResolver",
    "MetadataFetcher",
    "NominatimClient",
    "TMDBClient",
    "build_query_cascade",
]
