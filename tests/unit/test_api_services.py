"""
Unit tests for the Discogs and MusicBrainz clients.
"""

from unittest.mock import Mock, patch

import pytest
import requests

from ordrfm.core.exceptions import EnrichmentError
from ordrfm.core.models import MetadataRecord
from ordrfm.metadata.api_services import DiscogsService, MetadataSource, MusicBrainzService
from ordrfm.metadata.rate_limiter import TokenBucket


def _response(payload=None, status=200):
    response = Mock()
    response.status_code = status
    response.json.return_value = payload if payload is not None else {}
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    else:
        response.raise_for_status.return_value = None
    return response


@pytest.fixture
def bucket():
    return TokenBucket(1000.0, capacity=10, source="test")


DISCOGS_SEARCH = {
    'results': [
        {
            'id': 1234,
            'title': 'Aphex Twin (2) - Selected Ambient Works 85-92',
            'year': '1992',
            'label': ['Apollo', 'R&S Records'],
            'catno': 'AMB 3922',
            'genre': ['Electronic'],
            'style': ['Ambient', 'IDM'],
        },
        {'id': 99, 'title': ''},
        {'id': 5, 'title': 'No Artist Split', 'catno': 'none'},
    ]
}

DISCOGS_RELEASE = {
    'artists': [{'name': 'Aphex Twin'}],
    'labels': [{'name': 'Apollo', 'catno': 'AMB 3922'}],
    'series': [{'name': 'Apollo Ambient (3)'}],
    'extraartists': [{'name': 'Richard D. James', 'role': 'Written-By'}],
    'tracklist': [
        {'extraartists': [{'name': 'Mu-Ziq (2)', 'role': 'Remix'}]},
        {'extraartists': [{'name': 'Mu-Ziq (2)', 'role': 'Remix [Additional]'}]},
    ],
}


class TestDiscogsService:
    """Discogs search and release parsing."""

    def test_disabled_without_token(self, bucket):
        assert not DiscogsService(bucket, token="").enabled

    def test_search_parses_results(self, bucket):
        service = DiscogsService(bucket, token="secret", timeout=3.0)
        with patch('ordrfm.metadata.api_services.requests.get',
                   return_value=_response(DISCOGS_SEARCH)) as mock_get:
            results = service.search("Aphex Twin", "Selected Ambient Works 85-92")

        assert len(results) == 2
        first = results[0]
        assert first.artist == 'Aphex Twin'
        assert first.album_title == 'Selected Ambient Works 85-92'
        assert first.year == 1992
        assert first.label == 'Apollo'
        assert first.catalog_number == 'AMB 3922'
        assert first.style == 'Ambient'
        assert first.source_id == '1234'
        assert first.source_name == 'discogs'
        assert results[1].artist is None
        assert results[1].catalog_number is None

        _, kwargs = mock_get.call_args
        assert kwargs['timeout'] == 3.0
        assert kwargs['headers']['Authorization'] == 'Discogs token=secret'
        assert kwargs['params']['type'] == 'release'

    def test_fetch_details_adds_series_and_remixers(self, bucket):
        service = DiscogsService(bucket, token="secret")
        record = MetadataRecord(artist='Aphex Twin (2)', album_title='SAW', source_id='1234',
                                source_name='discogs')
        with patch('ordrfm.metadata.api_services.requests.get',
                   return_value=_response(DISCOGS_RELEASE)) as mock_get:
            details = service.fetch_details(record)

        assert mock_get.call_args[0][0].endswith('/releases/1234')
        assert details.artist == 'Aphex Twin'
        assert details.series == 'Apollo Ambient'
        assert details.catalog_number == 'AMB 3922'
        assert details.remix_artists == ['Mu-Ziq']

    def test_fetch_details_without_id_is_noop(self, bucket):
        record = MetadataRecord(artist='A', album_title='B')
        with patch('ordrfm.metadata.api_services.requests.get') as mock_get:
            assert DiscogsService(bucket, token="secret").fetch_details(record) is record
        mock_get.assert_not_called()


class TestMusicBrainzService:
    """MusicBrainz search parsing."""

    def test_search_parses_artist_credit_and_label_info(self, bucket):
        payload = {'releases': [{
            'id': 'mbid-1',
            'title': 'Music Has the Right to Children',
            'date': '1998-04-20',
            'artist-credit': [{'name': 'Boards of Canada', 'joinphrase': ''}],
            'label-info': [{'label': {'name': 'Warp Records'}, 'catalog-number': 'WARPCD55'}],
        }, {'id': 'mbid-2'}]}
        service = MusicBrainzService(bucket)
        with patch('ordrfm.metadata.api_services.requests.get', return_value=_response(payload)) as mock_get:
            results = service.search("Boards of Canada", 'Music Has the "Right"', 1998)

        assert len(results) == 1
        record = results[0]
        assert record.artist == 'Boards of Canada'
        assert record.year == 1998
        assert record.label == 'Warp Records'
        assert record.catalog_number == 'WARPCD55'
        assert record.source_id == 'mbid-1'

        params = mock_get.call_args[1]['params']
        assert params['fmt'] == 'json'
        assert 'date:1998' in params['query']
        assert '\\"Right\\"' in params['query']

    def test_joined_artist_credit(self, bucket):
        payload = {'releases': [{
            'title': 'Collab',
            'artist-credit': [{'artist': {'name': 'Moodymann'}, 'joinphrase': ' & '},
                              {'name': 'Theo Parrish'}],
        }]}
        with patch('ordrfm.metadata.api_services.requests.get', return_value=_response(payload)):
            results = MusicBrainzService(bucket).search("Moodymann", "Collab")

        assert results[0].artist == 'Moodymann & Theo Parrish'


class TestRequestFailures:
    """Transport and protocol errors become EnrichmentError."""

    @pytest.mark.parametrize("failure", [
        requests.Timeout("read timed out"),
        requests.RequestException("boom"),
    ])
    def test_transport_errors(self, bucket, failure):
        with patch('ordrfm.metadata.api_services.requests.get', side_effect=failure):
            with pytest.raises(EnrichmentError) as exc_info:
                MusicBrainzService(bucket).search("A", "B")
        assert exc_info.value.source == 'musicbrainz'

    def test_connection_error_is_retried(self, bucket):
        payload = {'releases': [{'title': 'B', 'artist-credit': [{'name': 'A'}]}]}
        with patch('ordrfm.utils.decorators.time.sleep'), \
                patch('ordrfm.metadata.api_services.requests.get',
                      side_effect=[requests.ConnectionError("reset"), _response(payload)]) as mock_get:
            results = MusicBrainzService(bucket).search("A", "B")

        assert mock_get.call_count == 2
        assert results[0].album_title == 'B'

    @pytest.mark.parametrize("status", [429, 500, 404])
    def test_http_errors(self, bucket, status):
        with patch('ordrfm.metadata.api_services.requests.get', return_value=_response(status=status)):
            with pytest.raises(EnrichmentError):
                DiscogsService(bucket, token="secret").search("A", "B")

    def test_malformed_json(self, bucket):
        response = _response()
        response.json.side_effect = ValueError("not json")
        with patch('ordrfm.metadata.api_services.requests.get', return_value=response):
            with pytest.raises(EnrichmentError):
                MusicBrainzService(bucket).search("A", "B")

    def test_rate_limit_wait_exceeded(self):
        bucket = TokenBucket(0.001, capacity=1)
        bucket.try_acquire()
        service = MusicBrainzService(bucket, timeout=0.05)

        with patch('ordrfm.metadata.api_services.requests.get') as mock_get:
            with pytest.raises(EnrichmentError, match="rate limit"):
                service.search("A", "B")
        mock_get.assert_not_called()


class TestMetadataSource:
    """Base class contract."""

    def test_base_cannot_be_instantiated(self, bucket):
        with pytest.raises(TypeError):
            MetadataSource(bucket)

    def test_subclass_gets_default_details(self, bucket):
        class StaticSource(MetadataSource):
            name = "static"

            def search(self, artist, title, year=None):
                return [MetadataRecord(artist=artist, album_title=title, source_name=self.name)]

        source = StaticSource(bucket)
        record = source.search("Plaid", "Not For Threes")[0]

        assert source.fetch_details(record) is record
        assert record.source_name == "static"
