import pytest

from commands import genres as genres_command
from genres.store import ReferenceUpsertSink, SyncStateStore
from sync.errors import PersistenceError, SourceUnavailable
from sync.models import PersistedEntity


class FakeIGDBClient:
    def __init__(self, records, *, fail_count=False):
        self.records = list(records)
        self.fail_count = fail_count
        self.count_calls = []
        self.fetch_calls = []

    def count(self, endpoint, *, where=None):
        self.count_calls.append((endpoint, where))
        if self.fail_count:
            raise SourceUnavailable('IGDB genres/count request failed: 503')
        return len(self.records)

    def fetch(self, endpoint, *, fields, limit, offset=0, where=None, sort='id asc'):
        self.fetch_calls.append((limit, offset, where))
        return [dict(record) for record in self.records[offset:offset + limit]]


GENRE_RECORDS = [
    {'id': 2, 'name': 'Point-and-click'},
    {'id': 4, 'name': 'Fighting'},
    {'id': 5, 'name': 'Shooter'},
    {'id': 7, 'name': 'Music'},
    {'id': 8, 'name': 'Platform'},
]


@pytest.fixture
def fake_client(monkeypatch):
    client = FakeIGDBClient(GENRE_RECORDS)
    monkeypatch.setattr(genres_command, 'build_igdb_client', lambda app: client)
    return client


def _stored_genres(app):
    return ReferenceUpsertSink(app.extensions['db_engine']).list_entities()


def test_command_replicates_genres(app, fake_client):
    runner = app.test_cli_runner()

    result = runner.invoke(args=['get-genres-from-igdb'])

    assert result.exit_code == 0, result.output
    assert genres_command.SUCCESS_MESSAGE in result.output
    assert fake_client.count_calls == [('genres', None)]
    assert [PersistedEntity(record['id'], record['name']) for record in GENRE_RECORDS] == (
        _stored_genres(app)
    )

    state = SyncStateStore(app.extensions['db_engine']).get('genres')
    assert state['total_count'] == 5
    assert state['last_synced_at'] > 0


def test_command_is_idempotent(app, fake_client):
    runner = app.test_cli_runner()

    runner.invoke(args=['get-genres-from-igdb'])
    result = runner.invoke(args=['fetch-genres'])

    assert result.exit_code == 0, result.output
    assert len(_stored_genres(app)) == 5


def test_command_passes_since_filter(app, fake_client):
    runner = app.test_cli_runner()

    result = runner.invoke(args=['get-genres-from-igdb', '--from', '1700000000'])

    assert result.exit_code == 0, result.output
    assert fake_client.count_calls == [('genres', 'updated_at >= 1700000000')]
    assert fake_client.fetch_calls == [(500, 0, 'updated_at >= 1700000000')]


def test_command_uses_batch_size(app, fake_client):
    runner = app.test_cli_runner()

    result = runner.invoke(args=['get-genres-from-igdb', '--batch-size', '2'])

    assert result.exit_code == 0, result.output
    assert [call[:2] for call in fake_client.fetch_calls] == [(2, 0), (2, 2), (2, 4)]
    assert 'Processed 5 / 5 genres' in result.output


def test_incremental_run_resumes_from_last_sync(app, fake_client):
    with app.app_context():
        store = SyncStateStore(app.extensions['db_engine'])
        store.ensure_table()
        store.record('genres', total=5, synced_at=1700000000)

    runner = app.test_cli_runner()
    result = runner.invoke(args=['get-genres-from-igdb', '--incremental'])

    assert result.exit_code == 0, result.output
    assert 'Resuming from last sync' in result.output
    assert fake_client.count_calls == [('genres', 'updated_at >= 1700000000')]


@pytest.mark.parametrize('value', ['yesterday', '-5', 'inf'])
def test_invalid_since_exits_without_io(app, monkeypatch, value):
    def fail_build(app):
        raise AssertionError('IGDB must not be contacted for invalid input')

    monkeypatch.setattr(genres_command, 'build_igdb_client', fail_build)
    runner = app.test_cli_runner()

    result = runner.invoke(args=['get-genres-from-igdb', '--since', value])

    assert result.exit_code == 1
    assert 'valid UNIX timestamp' in result.output
    assert genres_command.SUCCESS_MESSAGE not in result.output


def test_source_failure_exits_with_stage(app, monkeypatch):
    client = FakeIGDBClient(GENRE_RECORDS, fail_count=True)
    monkeypatch.setattr(genres_command, 'build_igdb_client', lambda app: client)
    runner = app.test_cli_runner()

    result = runner.invoke(args=['get-genres-from-igdb'])

    assert result.exit_code == 1
    assert 'failed during count' in result.output
    assert client.fetch_calls == []
    assert _stored_genres(app) == []
    assert SyncStateStore(app.extensions['db_engine']).get('genres') is None


def test_build_igdb_client_reads_app_config(app):
    client = genres_command.build_igdb_client(app)

    assert client.client_id == 'client'
    assert client.user_agent == app.config['IGDB_USER_AGENT']


def test_missing_credentials_exit_before_contacting_igdb(app, monkeypatch):
    def fail_build(app):
        raise AssertionError('IGDB must not be contacted without credentials')

    monkeypatch.setattr(genres_command, 'build_igdb_client', fail_build)
    app.config['IGDB_CLIENT_ID'] = ''
    runner = app.test_cli_runner()

    result = runner.invoke(args=['get-genres-from-igdb'])

    assert result.exit_code == 1
    assert 'credentials are missing' in result.output
    assert 'IGDB_CLIENT_ID' in result.output


def test_incremental_state_read_failure_exits_cleanly(app, fake_client, monkeypatch):
    def broken_read(self, collection):
        raise PersistenceError(f'failed to read sync state for {collection}: locked')

    monkeypatch.setattr(SyncStateStore, 'last_synced_at', broken_read)
    runner = app.test_cli_runner()

    result = runner.invoke(args=['get-genres-from-igdb', '--incremental'])

    assert result.exit_code == 1
    assert 'Genre sync failed: failed to read sync state for genres' in result.output
    assert fake_client.count_calls == []


def test_progress_lines_are_printed_off_terminal(app, fake_client, monkeypatch):
    monkeypatch.delenv('FORCE_COLOR', raising=False)
    monkeypatch.delenv('TTY_COMPATIBLE', raising=False)
    runner = app.test_cli_runner()

    result = runner.invoke(args=['get-genres-from-igdb', '--batch-size', '2'])

    assert result.exit_code == 0, result.output
    assert '0 / 5 genres' in result.output
    assert '4 / 5 genres' in result.output
    assert '5 / 5 genres' in result.output
