import io

import pytest
from rich.console import Console

from sync.progress import (
    CallbackProgressReporter,
    NullProgressReporter,
    ProgressReporter,
    RichProgressReporter,
)


def _console():
    return Console(file=io.StringIO(), force_terminal=False, width=100)


def test_progress_reporter_is_abstract():
    with pytest.raises(TypeError):
        ProgressReporter()


def test_null_reporter_accepts_calls():
    reporter = NullProgressReporter()
    reporter.total(10)
    reporter.advance(5)


def test_callback_reporter_forwards_cumulative_progress():
    updates = []

    def update_progress(**kwargs):
        updates.append(kwargs)

    reporter = CallbackProgressReporter(update_progress, label='genres')
    reporter.total(1200)
    reporter.advance(500)
    reporter.advance(500)
    reporter.advance(200)

    assert updates[0] == {'current': 0, 'total': 1200, 'message': '0 / 1200 genres'}
    assert [update['current'] for update in updates] == [0, 500, 1000, 1200]
    assert updates[-1]['message'] == '1200 / 1200 genres'


def test_rich_reporter_tracks_completed_records():
    console = _console()

    with RichProgressReporter('Genres', console=console) as reporter:
        reporter.total(34)
        reporter.advance(20)
        reporter.advance(14)
        assert reporter.completed == 34

    output = console.file.getvalue()
    assert 'Genres' in output
    assert '34/34' in output


def test_rich_reporter_ignores_advance_before_total():
    with RichProgressReporter('Genres', console=_console()) as reporter:
        reporter.advance(3)
        assert reporter.completed == 0


def test_rich_reporter_marks_failure_on_exception():
    console = _console()

    with pytest.raises(RuntimeError):
        with RichProgressReporter('Genres', console=console) as reporter:
            reporter.total(10)
            reporter.advance(5)
            raise RuntimeError('boom')

    assert '✗' in console.file.getvalue()
