import io
import json
from urllib.error import HTTPError, URLError

import pytest

from igdb.client import IGDBClient, build_query, resolve_igdb_page_size
from sync.errors import RateLimited, SourceUnavailable


class FakeResponse:
    def __init__(self, payload):
        if isinstance(payload, bytes):
            self._body = payload
        else:
            self._body = json.dumps(payload).encode('utf-8')

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False


def _http_error(url, code, body=b'', headers=None):
    return HTTPError(url, code, 'error', headers or {}, io.BytesIO(body))


def _make_opener(*outcomes):
    queue = list(outcomes)
    requests = []

    def opener(request):
        requests.append(request)
        outcome = queue.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return FakeResponse(outcome)

    return opener, requests


def _client(opener, **kwargs):
    sleeps = []
    kwargs.setdefault('access_token', 'token')
    client = IGDBClient(
        client_id='client',
        client_secret='secret',
        user_agent='tests/1.0',
        opener=opener,
        sleep=sleeps.append,
        env={},
        **kwargs,
    )
    return client, sleeps


def test_build_query_renders_apicalypse_clauses():
    query = build_query(
        fields=('id', 'name'),
        where='updated_at >= 10',
        limit=500,
        offset=1000,
        sort='id asc',
    )
    assert query == (
        'fields id,name; where updated_at >= 10; limit 500; offset 1000; sort id asc;'
    )
    assert build_query() == ''


def test_resolve_igdb_page_size_clamps_values():
    assert resolve_igdb_page_size(100) == 100
    assert resolve_igdb_page_size(5000) == 500
    assert resolve_igdb_page_size(0) == 500
    assert resolve_igdb_page_size('oops') == 500


def test_fetch_posts_query_with_headers():
    opener, requests = _make_opener([{'id': 1, 'name': 'Action'}, 'junk'])
    client, _ = _client(opener)

    records = client.fetch('genres', fields=('id', 'name'), limit=2, offset=4)

    assert records == [{'id': 1, 'name': 'Action'}]
    request = requests[0]
    assert request.full_url == 'https://api.igdb.com/v4/genres'
    assert request.get_method() == 'POST'
    assert request.data == b'fields id,name; limit 2; offset 4; sort id asc;'
    assert request.get_header('Client-id') == 'client'
    assert request.get_header('Authorization') == 'Bearer token'
    assert request.get_header('User-agent') == 'tests/1.0'


def test_fetch_rejects_non_list_payload():
    opener, _ = _make_opener({'message': 'nope'})
    client, _ = _client(opener)

    with pytest.raises(SourceUnavailable):
        client.fetch('genres', fields=('id',), limit=10)


@pytest.mark.parametrize('payload', [{'count': 34}, [{'count': 34}]])
def test_count_reads_count_payload(payload):
    opener, requests = _make_opener(payload)
    client, _ = _client(opener)

    assert client.count('genres', where='updated_at >= 5') == 34
    assert requests[0].full_url == 'https://api.igdb.com/v4/genres/count'
    assert requests[0].data == b'where updated_at >= 5;'


def test_count_rejects_malformed_payload():
    opener, _ = _make_opener({'total': 'many'})
    client, _ = _client(opener)

    with pytest.raises(SourceUnavailable):
        client.count('genres')


def test_rate_limit_is_retried_after_delay():
    url = 'https://api.igdb.com/v4/genres'
    opener, requests = _make_opener(
        _http_error(url, 429, headers={'Retry-After': '2'}),
        [{'id': 3, 'name': 'Racing'}],
    )
    client, sleeps = _client(opener)

    records = client.fetch('genres', fields=('id', 'name'), limit=10)

    assert records == [{'id': 3, 'name': 'Racing'}]
    assert sleeps == [2.0]
    assert len(requests) == 2


def test_rate_limit_exhaustion_raises_rate_limited():
    url = 'https://api.igdb.com/v4/genres'
    opener, requests = _make_opener(
        _http_error(url, 429),
        _http_error(url, 429),
        _http_error(url, 429, body=b'Too Many Requests'),
    )
    client, sleeps = _client(opener, rate_limit_wait=0.5)

    with pytest.raises(RateLimited) as excinfo:
        client.fetch('genres', fields=('id',), limit=10)

    assert excinfo.value.status == 429
    assert excinfo.value.retry_after == 0.5
    assert 'Too Many Requests' in str(excinfo.value)
    assert sleeps == [0.5, 0.5]
    assert len(requests) == 3


def test_server_error_raises_source_unavailable():
    url = 'https://api.igdb.com/v4/genres'
    opener, _ = _make_opener(_http_error(url, 503, body=b'maintenance'))
    client, sleeps = _client(opener)

    with pytest.raises(SourceUnavailable) as excinfo:
        client.fetch('genres', fields=('id',), limit=10)

    assert excinfo.value.status == 503
    assert not isinstance(excinfo.value, RateLimited)
    assert sleeps == []


def test_network_error_raises_source_unavailable():
    opener, _ = _make_opener(URLError('connection refused'))
    client, _ = _client(opener)

    with pytest.raises(SourceUnavailable):
        client.count('genres')


def test_invalid_json_raises_source_unavailable():
    opener, _ = _make_opener(b'<html>oops</html>')
    client, _ = _client(opener)

    with pytest.raises(SourceUnavailable, match='invalid JSON'):
        client.fetch('genres', fields=('id',), limit=10)


def test_token_is_exchanged_when_missing():
    opener, requests = _make_opener(
        {'access_token': 'fresh', 'expires_in': 3600},
        [{'count': 2}],
    )
    client, _ = _client(opener, access_token=None)

    assert client.count('genres') == 2
    assert requests[0].full_url == IGDBClient.TOKEN_URL
    assert b'grant_type=client_credentials' in requests[0].data
    assert requests[1].get_header('Authorization') == 'Bearer fresh'


def test_unauthorized_triggers_single_token_refresh():
    url = 'https://api.igdb.com/v4/genres'
    opener, requests = _make_opener(
        _http_error(url, 401),
        {'access_token': 'renewed'},
        [{'id': 8, 'name': 'Platform'}],
    )
    client, _ = _client(opener, access_token='stale')

    records = client.fetch('genres', fields=('id', 'name'), limit=10)

    assert records == [{'id': 8, 'name': 'Platform'}]
    assert requests[2].get_header('Authorization') == 'Bearer renewed'


def test_missing_credentials_raise_source_unavailable():
    client = IGDBClient(env={}, opener=lambda request: pytest.fail('no request expected'))

    with pytest.raises(SourceUnavailable, match='credentials'):
        client.count('genres')
