"""Read-only check for generated SQL

This is a fast-reject heuristic. Plain substring matching means a column such
as ``update_count`` is rejected too. The read-only transaction in
``ReadOnlyStore`` is what actually stops writes.
"""
import logging
from typing import Optional

from talent_insights.exceptions import QueryRejectedError

logger = logging.getLogger(__name__)

FORBIDDEN_KEYWORDS = [
    'INSERT', 'UPDATE', 'DELETE', 'DROP', 'CREATE',
    'ALTER', 'TRUNCATE', 'GRANT', 'REVOKE'
]


def find_forbidden_keyword(sql: str) -> Optional[str]:
    """Return the first forbidden keyword found anywhere in the query"""
    sql_upper = sql.upper()
    for keyword in FORBIDDEN_KEYWORDS:
        if keyword in sql_upper:
            return keyword
    return None


def validate_read_only_sql(sql: str) -> bool:
    """Validate query safety - only SELECT statements allowed

    Args:
        sql: SQL query to validate

    Returns:
        True if safe, False otherwise
    """
    keyword = find_forbidden_keyword(sql)
    if keyword:
        logger.warning(f"Forbidden keyword found in query: {keyword}")
        return False

    if not sql.upper().strip().startswith('SELECT'):
        logger.warning("Query does not start with SELECT, potentially not read-only")
        return False

    return True


def ensure_read_only_sql(sql: str) -> str:
    """Return the query unchanged, or raise QueryRejectedError"""
    if not validate_read_only_sql(sql):
        raise QueryRejectedError(
            "Generated query failed read-only validation",
            details={"sql": sql, "keyword": find_forbidden_keyword(sql)}
        )
    return sql
