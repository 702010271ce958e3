"""DuckDB schema for the Mailboard cache.

The cache holds nothing that cannot be refetched, so a database written by an
older layout is dropped and recreated rather than converted.
"""

from typing import Optional

import duckdb


class CacheSchema:
    """Creates and versions the cache tables."""

    SCHEMA_VERSION = 1

    TABLES = ("cache_entries", "cache_meta")

    DDL = (
        """
        CREATE TABLE IF NOT EXISTS cache_meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """,
        # payload is the JSON document of one entry, replaced wholesale
        """
        CREATE TABLE IF NOT EXISTS cache_entries (
            namespace TEXT NOT NULL,
            cache_key TEXT NOT NULL,
            scope_id TEXT,
            payload TEXT NOT NULL,
            cached_at DOUBLE NOT NULL,
            PRIMARY KEY (namespace, cache_key)
        )
        """,
    )

    @classmethod
    def create_schema(cls, conn: duckdb.DuckDBPyConnection) -> None:
        """Create all tables and stamp the current version."""
        for statement in cls.DDL:
            conn.execute(statement)
        conn.execute(
            "INSERT OR REPLACE INTO cache_meta (key, value) VALUES ('schema_version', ?)",
            [str(cls.SCHEMA_VERSION)],
        )

    @classmethod
    def get_schema_version(cls, conn: duckdb.DuckDBPyConnection) -> Optional[int]:
        """Version stamped in the database, or None for a fresh file."""
        try:
            row = conn.execute(
                "SELECT value FROM cache_meta WHERE key = 'schema_version'"
            ).fetchone()
        except duckdb.CatalogException:
            return None
        return int(row[0]) if row else None

    @classmethod
    def needs_migration(cls, conn: duckdb.DuckDBPyConnection) -> bool:
        version = cls.get_schema_version(conn)
        return version is None or version < cls.SCHEMA_VERSION

    @classmethod
    def migrate(cls, conn: duckdb.DuckDBPyConnection) -> None:
        """Bring the database to SCHEMA_VERSION.

        Args:
            conn: DuckDB connection
        """
        version = cls.get_schema_version(conn)
        if version is not None and version < cls.SCHEMA_VERSION:
            cls.drop_all_tables(conn)
        cls.create_schema(conn)

    @classmethod
    def drop_all_tables(cls, conn: duckdb.DuckDBPyConnection) -> None:
        for table in cls.TABLES:
            conn.execute(f"DROP TABLE IF EXISTS {table}")
