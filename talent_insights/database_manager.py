"""Read-only access to the talent database"""
import logging
from typing import Any, Mapping, Optional, Sequence, Union

import pandas as pd
import psycopg
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from talent_insights.config import DatabaseSettings
from talent_insights.exceptions import QueryExecutionError, UnknownQueryError

logger = logging.getLogger(__name__)

QueryParams = Optional[Union[Sequence[Any], Mapping[str, Any]]]

# Fixed queries used outside the analytics pipeline
ALLOWED_QUERIES = {
    "GET_ALL_INFLUENCERS": (
        "SELECT u.*, (SELECT COUNT(*) FROM posts WHERE user_id = u.user_id) AS post_count "
        "FROM users u ORDER BY name"
    ),
    "GET_USER_POSTS": (
        "SELECT post_id, title, content, view_count, created_at FROM posts "
        "WHERE user_id = %(user_id)s ORDER BY created_at DESC LIMIT %(limit)s"
    ),
    "GET_BY_SPORT": "SELECT * FROM users WHERE sport = %(sport)s",
}


class ReadOnlyStore:
    """Pooled PostgreSQL access where every query runs in a read-only transaction"""

    def __init__(self, settings: DatabaseSettings, pool: Optional[AsyncConnectionPool] = None):
        self.settings = settings
        self.pool = pool or AsyncConnectionPool(
            conninfo=settings.dsn,
            min_size=settings.min_pool_size,
            max_size=settings.max_pool_size,
            timeout=settings.pool_timeout,
            kwargs={"row_factory": dict_row},
            open=False,
        )

    async def open(self):
        await self.pool.open()
        logger.info(f"Database pool opened (max_size={self.settings.max_pool_size})")

    async def close(self):
        await self.pool.close()
        logger.info("Database pool closed")

    async def execute(self, sql: str, params: QueryParams = None) -> pd.DataFrame:
        """Run a query inside a read-only transaction

        The transaction commits on success and rolls back on any error; the
        connection goes back to the pool as soon as the query finishes.

        Args:
            sql: Query text
            params: Optional query parameters

        Returns:
            DataFrame with the cursor's column order preserved

        Raises:
            QueryExecutionError: If the database rejects or fails the query
        """
        try:
            async with self.pool.connection() as conn:
                async with conn.transaction():
                    async with conn.cursor(row_factory=dict_row) as cur:
                        await cur.execute("SET TRANSACTION READ ONLY")
                        await cur.execute(sql, params)
                        if cur.description is None:
                            return pd.DataFrame()
                        columns = [column.name for column in cur.description]
                        rows = await cur.fetchall()
        except psycopg.Error as e:
            logger.error(f"Read-only query failed: {str(e)}")
            raise QueryExecutionError(str(e)) from e

        logger.info(f"Query executed: {len(rows)} rows returned")
        return pd.DataFrame.from_records(rows, columns=columns)

    async def run_allowed(self, name: str, params: QueryParams = None) -> pd.DataFrame:
        """Run one of the named allow-listed queries"""
        if name not in ALLOWED_QUERIES:
            raise UnknownQueryError(f"Query {name} is not allowed")
        return await self.execute(ALLOWED_QUERIES[name], params)
