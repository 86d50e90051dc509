"""
Database utility functions.
Handles connections, queries, and batch operations over any SQLAlchemy URL.
"""
import logging
import pandas as pd
from sqlalchemy import create_engine, text

from config.db_config import (
    DB_URL,
    DB_POOL_SIZE,
    DB_MAX_OVERFLOW,
    TABLES,
    QUERY_TIMEOUT,
    BATCH_SIZE,
)

logger = logging.getLogger(__name__)


def get_sqlalchemy_engine(url: str = None):
    """Create and return a SQLAlchemy engine."""
    url = url or DB_URL
    if url.startswith("sqlite"):
        # SQLite has no connection pool sizing; the file lock is the limit
        return create_engine(url, connect_args={"timeout": QUERY_TIMEOUT})
    engine = create_engine(
        url,
        pool_pre_ping=True,
        pool_size=DB_POOL_SIZE,
        max_overflow=DB_MAX_OVERFLOW,
        pool_timeout=QUERY_TIMEOUT,
    )
    return engine


def _table_name(table_key: str) -> str:
    table_name = TABLES.get(table_key)
    if table_name is None:
        raise ValueError(f"Unknown table key: {table_key}. Valid keys: {list(TABLES.keys())}")
    return table_name


def db_time(value) -> str:
    """Timestamp in the text form SQLAlchemy stores DateTime columns as on SQLite."""
    return pd.Timestamp(value).strftime("%Y-%m-%d %H:%M:%S.%f")


def _db_value(value):
    if isinstance(value, (list, dict)):
        return value
    if isinstance(value, pd.Timestamp):
        return db_time(value)
    if pd.isna(value):
        return None
    return value


def read_table(table_key: str, engine=None, where_clause: str = None,
               params: dict = None) -> pd.DataFrame:
    """
    Read an entire table (or filtered subset) into a DataFrame.

    Parameters
    ----------
    table_key : str
        Key from config.db_config.TABLES (e.g. 'bookings').
    engine : sqlalchemy.Engine, optional
        Reuse an existing engine; one is created if not provided.
    where_clause : str, optional
        SQL WHERE clause (without the WHERE keyword), may use :named params.
    params : dict, optional
        Bound parameters for the WHERE clause.

    Returns
    -------
    pd.DataFrame
    """
    table_name = _table_name(table_key)

    if engine is None:
        engine = get_sqlalchemy_engine()

    query = f"SELECT * FROM {table_name}"
    if where_clause:
        query += f" WHERE {where_clause}"

    logger.debug(f"Reading table {table_name} ...")
    with engine.connect() as conn:
        df = pd.read_sql(text(query), conn, params=params)
    logger.debug(f"  -> {len(df)} rows, {len(df.columns)} columns")
    return df


def execute_statement(statement: str, engine=None, params=None) -> int:
    """
    Execute a data-modifying statement in its own transaction.

    `params` may be a dict or a list of dicts (executemany).
    Returns the affected row count.
    """
    if engine is None:
        engine = get_sqlalchemy_engine()
    with engine.begin() as conn:
        result = conn.execute(text(statement), params or {})
    return result.rowcount


def insert_dataframe(df: pd.DataFrame, table_key: str, engine=None, if_exists: str = "append"):
    """
    Insert a DataFrame into a database table.

    Parameters
    ----------
    df : pd.DataFrame
    table_key : str
    engine : sqlalchemy.Engine, optional
    if_exists : str
        'append' (default), 'replace', or 'fail'.
    """
    table_name = _table_name(table_key)

    if engine is None:
        engine = get_sqlalchemy_engine()

    if df.empty:
        return
    logger.debug(f"Inserting {len(df)} rows into {table_name} ...")
    df.to_sql(
        table_name,
        engine,
        if_exists=if_exists,
        index=False,
        chunksize=BATCH_SIZE,
        method="multi",
    )


def upsert_rows(df: pd.DataFrame, table_key: str, key_columns: list, engine=None):
    """
    Upsert (insert or update) rows into a table.
    Deletes rows matching each key then inserts the new version, inside
    one transaction, so it works on every backend.

    Parameters
    ----------
    df : pd.DataFrame
    table_key : str
    key_columns : list[str]
        Columns that form the unique key for matching.
    engine : sqlalchemy.Engine, optional
    """
    table_name = _table_name(table_key)

    if engine is None:
        engine = get_sqlalchemy_engine()

    if df.empty:
        return

    all_columns = list(df.columns)
    where = " AND ".join([f"{c} = :{c}" for c in key_columns])
    insert_cols = ", ".join(all_columns)
    insert_vals = ", ".join([f":{c}" for c in all_columns])

    records = [{k: _db_value(v) for k, v in row.items()} for row in df.to_dict("records")]
    keys = [{c: r[c] for c in key_columns} for r in records]

    with engine.begin() as conn:
        conn.execute(text(f"DELETE FROM {table_name} WHERE {where}"), keys)
        conn.execute(text(f"INSERT INTO {table_name} ({insert_cols}) VALUES ({insert_vals})"), records)

    logger.debug(f"Upserted {len(df)} rows into {table_name}.")


def test_connection(engine=None) -> bool:
    """Test database connectivity. Returns True if successful."""
    try:
        if engine is None:
            engine = get_sqlalchemy_engine()
        with engine.connect() as conn:
            result = conn.execute(text("SELECT 1"))
            result.fetchone()
        logger.info("Database connection successful.")
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False
