"""Flask application factory and service client initialization."""
from __future__ import annotations

import logging
import logging.config
import os
from pathlib import Path
from typing import Any, Mapping

from flask import Flask, g

import config as app_config
from db import utils as db_utils

logger = logging.getLogger(__name__)


def _determine_log_level(flask_app: Flask) -> int:
    if flask_app.debug:
        return logging.DEBUG
    if os.environ.get('FLASK_DEBUG', '').lower() in {'1', 'true', 'yes', 'on'}:
        return logging.DEBUG
    level_name = str(flask_app.config.get('LOG_LEVEL') or '').upper()
    level = logging.getLevelName(level_name) if level_name else None
    if isinstance(level, int):
        return level
    return logging.INFO


def _configure_logging(flask_app: Flask) -> None:
    log_level = _determine_log_level(flask_app)

    handlers: dict[str, dict[str, Any]] = {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'standard',
            'level': log_level,
            'stream': 'ext://sys.stderr',
        },
    }

    log_file = flask_app.config.get('LOG_FILE')
    if log_file:
        log_path = Path(log_file)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            log_path = None
        if log_path is not None:
            handlers['file'] = {
                'class': 'logging.handlers.RotatingFileHandler',
                'formatter': 'standard',
                'level': logging.DEBUG,
                'filename': os.fspath(log_path),
                'maxBytes': 5 * 1024 * 1024,
                'backupCount': 5,
                'encoding': 'utf-8',
            }

    for handler in list(flask_app.logger.handlers):
        flask_app.logger.removeHandler(handler)

    logging.config.dictConfig(
        {
            'version': 1,
            'disable_existing_loggers': False,
            'formatters': {
                'standard': {
                    'format': '%(asctime)s %(levelname)s [%(name)s] %(message)s',
                    'datefmt': '%Y-%m-%d %H:%M:%S',
                }
            },
            'handlers': handlers,
            'root': {
                'level': log_level,
                'handlers': list(handlers),
            },
        }
    )

    flask_app.logger.setLevel(log_level)
    logger.setLevel(log_level)


def _close_db(exc: BaseException | None) -> None:
    g.pop('db', None)


def create_app(test_config: Mapping[str, Any] | None = None) -> Flask:
    """Return a configured Flask application instance.

    ``test_config`` overrides the values read from :mod:`config`; tests use it
    to point ``DATABASE_DSN`` and ``LOG_FILE`` at temporary locations.
    """

    flask_app = Flask('tt_game_liste')
    flask_app.config.from_mapping(
        SECRET_KEY=app_config.APP_SECRET_KEY,
        DATABASE_DSN=app_config.DB_DSN,
        DB_CONNECT_TIMEOUT=app_config.DB_CONNECT_TIMEOUT_SECONDS,
        LOG_FILE=app_config.LOG_FILE,
        LOG_LEVEL=os.environ.get('LOG_LEVEL'),
        IGDB_CLIENT_ID=app_config.IGDB_CLIENT_ID,
        IGDB_CLIENT_SECRET=app_config.IGDB_CLIENT_SECRET,
        IGDB_USER_AGENT=app_config.IGDB_USER_AGENT,
        IGDB_BATCH_SIZE=app_config.IGDB_BATCH_SIZE,
        IGDB_MAX_RETRIES=app_config.IGDB_MAX_RETRIES,
        IGDB_RATE_LIMIT_WAIT=app_config.IGDB_RATE_LIMIT_WAIT_SECONDS,
    )
    if test_config:
        flask_app.config.update(test_config)

    _configure_logging(flask_app)

    engine = db_utils.build_engine_from_dsn(
        flask_app.config['DATABASE_DSN'],
        timeout=flask_app.config['DB_CONNECT_TIMEOUT'],
    )
    flask_app.extensions['db_engine'] = engine
    db_utils.set_fallback_connection(engine)
    flask_app.teardown_appcontext(_close_db)

    from commands.genres import register_commands

    register_commands(flask_app)
    logger.debug('Application created with database %s', engine.engine.url)
    return flask_app


__all__ = ['create_app']
