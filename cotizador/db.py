import logging
from contextlib import contextmanager
from typing import Iterable, Iterator, Optional

import psycopg2
from psycopg2 import sql
from psycopg2.extensions import connection as PgConnection
from psycopg2.pool import ThreadedConnectionPool

from cotizador.config import settings
from cotizador.errors import SchemaNotAllowedError

logger = logging.getLogger(__name__)

QUOTES_TABLE = "cotizaciones"
QUOTE_ITEMS_TABLE = "itemsxcotizacion"
CATALOG_TABLE = "inv_items"
ORDER_ID_INDEX = "cotizaciones_idcotizacionweb_uq"

_pool: Optional[ThreadedConnectionPool] = None

def init_pool(minconn: Optional[int] = None, maxconn: Optional[int] = None):
    global _pool
    if _pool is None:
        _pool = ThreadedConnectionPool(
            minconn or settings.db_pool_min,
            maxconn or settings.db_pool_max,
            settings.database_url,
        )
        logger.info("DB pool initialized")

def get_pool() -> ThreadedConnectionPool:
    global _pool
    if _pool is None:
        init_pool()
    assert _pool is not None
    return _pool

def close_pool():
    global _pool
    if _pool is not None:
        _pool.closeall()
        _pool = None
        logger.info("DB pool closed")

@contextmanager
def connection() -> Iterator[PgConnection]:
    """
    Borrow one pooled connection for the duration of the block.
    The connection goes back exactly once; a closed (broken) one is discarded.
    """
    pool = get_pool()
    conn = pool.getconn()
    try:
        yield conn
    finally:
        pool.putconn(conn, close=bool(conn.closed))

def table(schema: str, name: str) -> sql.Identifier:
    """Quoted "schema"."table" identifier; the schema must be allow-listed."""
    if schema not in settings.schema_list:
        raise SchemaNotAllowedError(schema)
    return sql.Identifier(schema, name)

def ensure_order_id_index(schemas: Iterable[str]):
    for schema in schemas:
        stmt = sql.SQL("CREATE UNIQUE INDEX IF NOT EXISTS {} ON {} (idcotizacionweb)").format(
            sql.Identifier(ORDER_ID_INDEX),
            table(schema, QUOTES_TABLE),
        )
        try:
            with connection() as conn:
                with conn, conn.cursor() as cur:
                    cur.execute(stmt)
            logger.info("Unique order_id index ensured on %s.%s", schema, QUOTES_TABLE)
        except psycopg2.Error as e:
            logger.warning("Could not ensure order_id index on %s.%s: %s", schema, QUOTES_TABLE, e)
