# SPDX-License-Identifier: Apache-2.0
#
# Copyright (c) 2024-2025 Dashsync Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Database connection management for dashsync.

SQLite with one connection per thread, so sync workers can write records
concurrently with the orchestrator thread that owns the checkpoint.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from config.constants import DATABASE_CONNECTION_TIMEOUT_SECONDS

logger = logging.getLogger("dashsync.database")

SCHEMA_VERSION = 1


class DatabaseConnection:
    """
    Manages thread-local SQLite connections.

    Every thread gets its own connection to the same database file; SQLite's
    busy timeout serializes concurrent writers.
    """

    def __init__(self, db_path: str):
        """
        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = Path(db_path).expanduser()
        self._local = threading.local()

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"Database connection manager initialized: {self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the connection for the current thread."""
        if getattr(self._local, "connection", None) is None:
            logger.debug(
                f"Creating new database connection for thread {threading.current_thread().name}"
            )

            conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                timeout=DATABASE_CONNECTION_TIMEOUT_SECONDS,
            )
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode = WAL")
            conn.row_factory = sqlite3.Row

            self._local.connection = conn

        return self._local.connection

    @contextmanager
    def get_cursor(self, commit: bool = False):
        """
        Context manager for database cursor operations.

        Args:
            commit: Whether to commit the transaction on success

        Yields:
            Database cursor

        Example:
            with db.get_cursor(commit=True) as cursor:
                cursor.execute("INSERT INTO ...")
        """
        conn = self._get_connection()
        cursor = conn.cursor()

        try:
            yield cursor
            if commit:
                conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Transaction rolled back due to error: {e}")
            raise
        finally:
            cursor.close()

    def execute(self, query: str, params: tuple = None, commit: bool = False):
        """
        Execute a single SQL query.

        Returns:
            All fetched rows
        """
        with self.get_cursor(commit=commit) as cursor:
            if params:
                cursor.execute(query, params)
            else:
                cursor.execute(query)
            return cursor.fetchall()

    def execute_script(self, script: str, commit: bool = True):
        """Execute a SQL script (multiple statements)."""
        conn = self._get_connection()
        try:
            conn.executescript(script)
            if commit:
                conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Script execution failed: {e}")
            raise

    def initialize_schema(self, schema_path: Optional[str] = None):
        """
        Create tables from the schema file if they do not exist yet.

        Args:
            schema_path: Path to schema.sql. Defaults to the bundled schema.
        """
        if schema_path is None:
            schema_path = Path(__file__).parent / "schema.sql"
        else:
            schema_path = Path(schema_path)

        if not schema_path.exists():
            logger.error(f"Schema file not found: {schema_path}")
            raise FileNotFoundError(f"Schema file not found: {schema_path}")

        logger.info(f"Initializing database schema from {schema_path}")

        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()

        self.execute_script(schema_sql, commit=True)

        if self.get_version() < SCHEMA_VERSION:
            self.set_version(SCHEMA_VERSION)

        logger.info("Database schema initialized successfully")

    def get_version(self) -> int:
        """Return the stored schema version, or 0 if not set."""
        try:
            result = self.execute("SELECT value FROM app_settings WHERE key = 'schema_version'")
            if result:
                return int(result[0]["value"])
            return 0
        except sqlite3.OperationalError:
            # app_settings does not exist yet
            return 0

    def set_version(self, version: int):
        self.execute(
            """
            INSERT OR REPLACE INTO app_settings (key, value, updated_at)
            VALUES ('schema_version', ?, CURRENT_TIMESTAMP)
            """,
            (str(version),),
            commit=True,
        )
        logger.info(f"Database schema version set to {version}")

    def close(self):
        """Close the database connection for the current thread."""
        connection = getattr(self._local, "connection", None)
        if connection is not None:
            connection.close()
            self._local.connection = None
            logger.debug("Database connection closed")
