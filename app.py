"""Entry point for the ``flask`` command line.

Run ``flask --app app get-genres-from-igdb`` (or the installed
``tt-game-liste`` script) to replicate IGDB genres into the database.
"""
from __future__ import annotations

from flask.cli import FlaskGroup

from web.app_factory import create_app

app = create_app()

cli = FlaskGroup(create_app=lambda: app)


if __name__ == '__main__':
    cli()
