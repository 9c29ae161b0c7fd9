"""
Metadata for ordrfm

1. Local tags (mutagen)
2. Catalog sources (Discogs, MusicBrainz) behind shared token buckets
3. Match scoring and confidence gating
"""

from .tag_reader import TagReader
from .rate_limiter import TokenBucket, get_rate_limiter_registry
from .api_services import DiscogsService, MusicBrainzService
from .enrichment import EnrichmentClient, MatchScorer

__all__ = [
    'TagReader',
    'TokenBucket',
    'get_rate_limiter_registry',
    'DiscogsService',
    'MusicBrainzService',
    'EnrichmentClient',
    'MatchScorer',
]
