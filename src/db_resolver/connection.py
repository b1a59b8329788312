"""Database connection handling module."""
import logging
import sqlite3
from typing import Any, Dict, Optional

import psycopg2

from .config import Sentinels, database_options, read_config
from .errors import BackendError
from .models import DatabaseType

logger = logging.getLogger(__name__)

_PG_OPTIONS = ('dbname', 'user', 'password', 'host', 'port')


class DatabaseConnection:
    """Opens a DB-API connection described by an INI file, with context manager support."""

    def __init__(self, config_path: str):
        """Initialize connection parameters from config file.

        Args:
            config_path: Path to the configuration file
        """
        parser = read_config(config_path)
        self.config = self._load_config(database_options(parser))
        self.dialect = DatabaseType.parse(self.config.pop('dialect', 'postgresql'))
        self.sentinels = Sentinels.from_parser(parser)
        self._conn: Optional[Any] = None

    @staticmethod
    def _load_config(options: Dict[str, str]) -> Dict[str, str]:
        """Normalise option names of the ``[database]`` section.

        Args:
            options: Raw section values

        Returns:
            Dictionary with database connection parameters
        """
        config = dict(options)
        if 'database' in config and 'dbname' not in config:
            config['dbname'] = config.pop('database')
        return config

    def connect(self):
        """Establish database connection.

        Returns:
            Active database connection
        """
        if self._conn is None:
            logger.info("Connecting to %s database", self.dialect.value)
            self._conn = self._open()
        return self._conn

    def _open(self):
        config = self.config
        try:
            if self.dialect is DatabaseType.SQLITE:
                return sqlite3.connect(config.get('path', ':memory:'))
            if self.dialect is DatabaseType.POSTGRESQL:
                return psycopg2.connect(**{k: config[k] for k in _PG_OPTIONS if k in config})
            if self.dialect is DatabaseType.MYSQL:
                import pymysql
                from pymysql.constants import CLIENT
                try:
                    return pymysql.connect(
                        host=config.get('host', 'localhost'),
                        port=int(config.get('port', 3306)),
                        user=config.get('user'),
                        password=config.get('password', ''),
                        database=config.get('dbname'),
                        client_flag=CLIENT.FOUND_ROWS,
                    )
                except pymysql.err.Error as exc:
                    raise BackendError(f"could not connect to mysql: {exc}") from exc
            if self.dialect is DatabaseType.DUCKDB:
                import duckdb
                try:
                    return duckdb.connect(config.get('path', ':memory:'))
                except duckdb.Error as exc:
                    raise BackendError(f"could not open duckdb database: {exc}") from exc
        except (sqlite3.Error, psycopg2.Error) as exc:
            raise BackendError(f"could not connect to {self.dialect.value}: {exc}") from exc
        raise BackendError(f"database type {self.dialect.value} is not supported yet")

    def close(self):
        """Close the database connection if it exists."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        """Context manager entry.

        Returns:
            Active database connection
        """
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
