"""
Animal repository for database operations.

Provides async read operations for the animal table (``animals`` by
default, see ``database_table``) using asyncpg with PostgreSQL. Every call
acquires its own pooled connection, so connections are returned to the pool
on success, miss and failure alike.
"""

import asyncio
import asyncpg
import structlog
from typing import Any, List, Optional, Tuple

from rfid_api.src.exceptions import StorageError, ValidationError
from rfid_api.src.models.animal import (
    AnimalRecord,
    DEFAULT_TABLE,
    SORTABLE_COLUMNS,
    SortOrder,
    check_table_name,
)

logger = structlog.get_logger(__name__)

ANIMAL_COLUMNS = "id, rfid_code, nama, jenis, usia, status_kesehatan"

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS {table} (
    id SERIAL PRIMARY KEY,
    rfid_code VARCHAR(64) NOT NULL UNIQUE,
    nama TEXT NOT NULL,
    jenis TEXT NOT NULL,
    usia INTEGER NOT NULL CHECK (usia >= 0),
    status_kesehatan TEXT NOT NULL CHECK (char_length(status_kesehatan) >= 3)
)
"""

# Failures that mean the datastore could not answer the query.
STORAGE_EXCEPTIONS = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    asyncio.TimeoutError,
)


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so search text matches literally."""
    return (
        value.replace("\\", "\\\\")
        .replace("%", "\\%")
        .replace("_", "\\_")
    )


def build_search_filter(search: Optional[str]) -> Tuple[str, List[Any]]:
    """
    Build the WHERE fragment shared by the count and page queries.

    Args:
        search: Case-insensitive substring matched against nama or jenis

    Returns:
        Tuple of (where SQL, bound parameters)
    """
    if not search:
        return "", []
    return "WHERE nama ILIKE $1 OR jenis ILIKE $1", [f"%{escape_like(search)}%"]


def build_list_queries(
    search: Optional[str],
    sort_by: str,
    order: SortOrder,
    limit: int,
    offset: int,
    table: str = DEFAULT_TABLE
) -> Tuple[str, str, List[Any], List[Any]]:
    """
    Build the count and page queries for a list request.

    Only ``table``, ``sort_by`` and ``order`` are interpolated; the table is
    a checked identifier and the other two come from fixed allow-lists.
    Everything else is a bound parameter.

    Returns:
        Tuple of (count SQL, page SQL, count params, page params)

    Raises:
        ValidationError: If sort_by is not a sortable column
    """
    if sort_by not in SORTABLE_COLUMNS:
        raise ValidationError(f"Invalid sortBy column: {sort_by}")
    order = SortOrder(order)
    table = check_table_name(table)

    where_sql, params = build_search_filter(search)
    param_count = len(params) + 1

    count_sql = f"""
        SELECT COUNT(*) AS count
        FROM {table}
        {where_sql}
    """

    tiebreak = "" if sort_by == "id" else f", id {order.value}"
    page_sql = f"""
        SELECT {ANIMAL_COLUMNS}
        FROM {table}
        {where_sql}
        ORDER BY {sort_by} {order.value}{tiebreak}
        LIMIT ${param_count} OFFSET ${param_count + 1}
    """

    return count_sql, page_sql, list(params), [*params, limit, offset]


class AnimalRepository:
    """Repository for animal record database operations."""

    def __init__(self, pool: asyncpg.Pool, table: str = DEFAULT_TABLE):
        """
        Initialize animal repository.

        Args:
            pool: asyncpg connection pool
            table: Table holding the animal rows

        Raises:
            ValueError: If table is not a plain identifier
        """
        self.pool = pool
        self.table = check_table_name(table)

    async def get_by_rfid(self, rfid_code: str) -> Optional[AnimalRecord]:
        """
        Get the animal carrying an RFID tag.

        Args:
            rfid_code: Tag value

        Returns:
            Animal record or None if no row matches

        Raises:
            StorageError: If the datastore cannot be queried
        """
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"""
                    SELECT {ANIMAL_COLUMNS}
                    FROM {self.table}
                    WHERE rfid_code = $1
                    """,
                    rfid_code
                )
        except STORAGE_EXCEPTIONS as e:
            logger.error("animal_lookup_failed", error=str(e), rfid_code=rfid_code)
            raise StorageError() from e

        if not row:
            logger.debug("animal_not_found", rfid_code=rfid_code)
            return None

        return AnimalRecord(**dict(row))

    async def list_animals(
        self,
        search: Optional[str] = None,
        sort_by: str = "id",
        order: SortOrder = SortOrder.ASC,
        limit: int = 10,
        offset: int = 0
    ) -> Tuple[List[AnimalRecord], int]:
        """
        List animals with search, sorting and pagination.

        Args:
            search: Case-insensitive substring matched against nama or jenis
            sort_by: Sortable column name
            order: Sort direction
            limit: Maximum number of rows to return
            offset: Number of rows to skip

        Returns:
            Tuple of (page of records, total matching count)

        Raises:
            ValidationError: If sort_by is not a sortable column
            StorageError: If the datastore cannot be queried
        """
        count_sql, page_sql, count_params, page_params = build_list_queries(
            search, sort_by, order, limit, offset, table=self.table
        )

        try:
            async with self.pool.acquire() as conn:
                count_row = await conn.fetchrow(count_sql, *count_params)
                total_count = count_row["count"]

                rows = await conn.fetch(page_sql, *page_params)
        except STORAGE_EXCEPTIONS as e:
            logger.error(
                "animal_list_failed",
                error=str(e),
                search=search,
                sort_by=sort_by,
                order=SortOrder(order).value
            )
            raise StorageError() from e

        animals = [AnimalRecord(**dict(row)) for row in rows]
        return animals, total_count

    async def ping(self) -> bool:
        """
        Check the datastore answers a trivial query.

        Returns:
            True if the database responded
        """
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except STORAGE_EXCEPTIONS as e:
            logger.error("database_health_check_failed", error=str(e))
            return False

    async def ensure_schema(self) -> None:
        """
        Create the animal table if it does not exist.

        Raises:
            StorageError: If the DDL fails
        """
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(CREATE_TABLE_SQL.format(table=self.table))
            logger.info("animal_schema_ensured", table=self.table)
        except STORAGE_EXCEPTIONS as e:
            logger.error("animal_schema_failed", error=str(e))
            raise StorageError() from e
