"""
API Services for Metadata Lookup

Discogs and MusicBrainz release search clients. Each request first takes
a token from the source's shared bucket, carries a bounded timeout, and
turns every transport or protocol failure into EnrichmentError.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Deque, Dict, List, Optional

import requests

from ..core.exceptions import EnrichmentError
from ..core.models import MetadataRecord
from ..core.constants import API_TIMEOUT, API_RESULTS_PER_PAGE, USER_AGENT
from ..utils.decorators import retry, track_performance
from ..utils.naming import parse_year
from .rate_limiter import TokenBucket

_DISAMBIGUATION = re.compile(r'\s*\(\d+\)$')


class MetadataSource(ABC):
    """Abstract base for catalog sources with shared request handling"""

    name = "source"

    def __init__(self, bucket: TokenBucket, timeout: float = API_TIMEOUT,
                 user_agent: str = USER_AGENT, enabled: bool = True):
        self.bucket = bucket
        self.timeout = timeout
        self.user_agent = user_agent
        self.enabled = enabled
        self.logger = logging.getLogger(__name__)
        self._performance_metrics: Dict[str, Deque[float]] = {}

    def _headers(self) -> Dict[str, str]:
        return {'User-Agent': self.user_agent, 'Accept': 'application/json'}

    @retry(max_attempts=2, delay=1.0, exceptions=(requests.ConnectionError,))
    def _send(self, url: str, params: Dict[str, Any]) -> requests.Response:
        return requests.get(url, params=params, headers=self._headers(), timeout=self.timeout)

    @track_performance(threshold_ms=5000)
    def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Rate-limited GET returning decoded JSON"""
        if not self.bucket.acquire(timeout=self.timeout):
            raise EnrichmentError(f"{self.name}: rate limit wait exceeded {self.timeout}s",
                                  source=self.name)

        try:
            response = self._send(url, params or {})
        except requests.Timeout as e:
            raise EnrichmentError(f"{self.name}: request timed out", source=self.name) from e
        except requests.RequestException as e:
            raise EnrichmentError(f"{self.name}: request failed: {e}", source=self.name) from e

        if response.status_code == 429:
            raise EnrichmentError(f"{self.name}: rate limited by remote (HTTP 429)", source=self.name)

        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            raise EnrichmentError(f"{self.name}: HTTP {response.status_code}", source=self.name) from e

        try:
            return response.json()
        except ValueError as e:
            raise EnrichmentError(f"{self.name}: malformed JSON response", source=self.name) from e

    @abstractmethod
    def search(self, artist: str, title: str, year: Optional[int] = None) -> List[MetadataRecord]:
        """Candidate releases for an artist and album title"""
        pass

    def fetch_details(self, record: MetadataRecord) -> MetadataRecord:
        """Add fields only available from a release lookup; default is a no-op"""
        return record


class DiscogsService(MetadataSource):
    """
    Discogs database client.

    Features:
    - Release search by artist and title
    - Release details for series and remixer credits
    - Token authentication
    """

    name = "discogs"
    base_url = 'https://api.discogs.com'

    def __init__(self, bucket: TokenBucket, token: str, **kwargs):
        super().__init__(bucket, **kwargs)
        self.token = token
        if not self.token:
            self.enabled = False
            self.logger.warning("Discogs service disabled (no token)")

    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        headers['Authorization'] = f"Discogs token={self.token}"
        return headers

    def search(self, artist: str, title: str, year: Optional[int] = None) -> List[MetadataRecord]:
        params = {
            'q': f"{artist} {title}".strip(),
            'type': 'release',
            'per_page': API_RESULTS_PER_PAGE,
        }
        data = self._get_json(f"{self.base_url}/database/search", params)

        candidates = []
        for result in data.get('results', []):
            record = self._parse_search_result(result)
            if record:
                candidates.append(record)

        self.logger.debug(f"Discogs returned {len(candidates)} candidates for {artist} - {title}")
        return candidates

    def _parse_search_result(self, result: Dict[str, Any]) -> Optional[MetadataRecord]:
        full_title = result.get('title') or ''
        if ' - ' in full_title:
            artist, title = full_title.split(' - ', 1)
        else:
            artist, title = None, full_title
        if not title:
            return None

        labels = result.get('label') or []
        genres = result.get('genre') or []
        styles = result.get('style') or []

        return MetadataRecord(
            artist=_DISAMBIGUATION.sub('', artist.strip()) if artist else None,
            album_title=title.strip(),
            year=parse_year(result.get('year')),
            label=labels[0] if labels else None,
            catalog_number=(result.get('catno') or None) if result.get('catno') != 'none' else None,
            genre=genres[0] if genres else None,
            style=styles[0] if styles else None,
            source_id=str(result['id']) if result.get('id') is not None else None,
            confidence=0.0,
            source_name=self.name,
        )

    def fetch_details(self, record: MetadataRecord) -> MetadataRecord:
        if not record.source_id:
            return record

        data = self._get_json(f"{self.base_url}/releases/{record.source_id}")

        artists = data.get('artists') or []
        if artists and artists[0].get('name'):
            record.artist = _DISAMBIGUATION.sub('', artists[0]['name'])

        labels = data.get('labels') or []
        if labels:
            record.label = record.label or labels[0].get('name')
            catno = labels[0].get('catno')
            if catno and catno.lower() != 'none':
                record.catalog_number = catno

        series = data.get('series') or []
        if series and series[0].get('name'):
            record.series = _DISAMBIGUATION.sub('', series[0]['name'])

        record.remix_artists = self._remixers(data)
        return record

    def _remixers(self, data: Dict[str, Any]) -> List[str]:
        remixers = []
        credits = list(data.get('extraartists') or [])
        for track in data.get('tracklist') or []:
            credits.extend(track.get('extraartists') or [])

        for credit in credits:
            role = (credit.get('role') or '').lower()
            name = _DISAMBIGUATION.sub('', credit.get('name') or '')
            if name and ('remix' in role) and name not in remixers:
                remixers.append(name)
        return remixers


class MusicBrainzService(MetadataSource):
    """
    MusicBrainz web service client for release search.

    Rate limiting compliance: MusicBrainz allows one request per second
    per client, enforced by the shared bucket.
    """

    name = "musicbrainz"
    base_url = 'https://musicbrainz.org/ws/2'

    def search(self, artist: str, title: str, year: Optional[int] = None) -> List[MetadataRecord]:
        query = f'release:"{self._escape(title)}" AND artist:"{self._escape(artist)}"'
        if year:
            query += f' AND date:{year}'

        data = self._get_json(f"{self.base_url}/release/", {
            'query': query,
            'fmt': 'json',
            'limit': API_RESULTS_PER_PAGE,
        })

        candidates = []
        for release in data.get('releases', []):
            record = self._parse_release(release)
            if record:
                candidates.append(record)

        self.logger.debug(f"MusicBrainz returned {len(candidates)} candidates for {artist} - {title}")
        return candidates

    @staticmethod
    def _escape(value: str) -> str:
        return (value or '').replace('\\', '\\\\').replace('"', '\\"')

    def _parse_release(self, release: Dict[str, Any]) -> Optional[MetadataRecord]:
        title = release.get('title')
        if not title:
            return None

        credits = release.get('artist-credit') or []
        artist = ''.join(
            (c.get('name') or c.get('artist', {}).get('name', '')) + (c.get('joinphrase') or '')
            for c in credits
        ).strip() or None

        label_info = release.get('label-info') or []
        label = None
        catalog = None
        if label_info:
            label = (label_info[0].get('label') or {}).get('name')
            catalog = label_info[0].get('catalog-number')

        return MetadataRecord(
            artist=artist,
            album_title=title,
            year=parse_year(release.get('date')),
            label=label,
            catalog_number=catalog,
            source_id=release.get('id'),
            confidence=0.0,
            source_name=self.name,
        )
