"""
Order ingestion: turns a validated order payload into a quotation header plus
its line items, atomically, on one pooled connection.
"""
import logging
from typing import Dict, List, Optional

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2 import sql

from cotizador import db
from cotizador.config import settings
from cotizador.errors import CotizadorError, DatabaseError, SkuNotFoundError
from cotizador.schemas import OrderBody, OrderItem, OrderResult

logger = logging.getLogger(__name__)


def build_reference(body: OrderBody) -> str:
    reference = body.reference or f"{settings.reference_prefix} {body.customer.name}"
    return reference[:settings.reference_max_length]


def distinct_skus(items: List[OrderItem]) -> List[str]:
    """Trimmed SKUs, deduplicated, in input order."""
    skus: List[str] = []
    for it in items:
        sku = it.sku.strip()
        if sku not in skus:
            skus.append(sku)
    return skus


def _find_existing(cur, schema: str, order_id: int) -> Optional[int]:
    cur.execute(
        sql.SQL("SELECT id FROM {} WHERE idcotizacionweb = %s LIMIT 1").format(
            db.table(schema, db.QUOTES_TABLE)
        ),
        (order_id,),
    )
    row = cur.fetchone()
    return int(row[0]) if row else None


def _resolve_skus(cur, schema: str, skus: List[str]) -> Dict[str, int]:
    cur.execute(
        sql.SQL("SELECT id, item FROM {} WHERE item = ANY(%s) ORDER BY id").format(
            db.table(schema, db.CATALOG_TABLE)
        ),
        (skus,),
    )
    found: Dict[str, int] = {}
    for iditem, sku in cur.fetchall():
        found.setdefault(sku, int(iditem))
    return found


def _insert_header(cur, schema: str, body: OrderBody) -> int:
    cur.execute(
        sql.SQL("""
            INSERT INTO {} (
                fecha, referencia, tipoproceso, idusuario, tipocliente, idcliente,
                idciudadinstalacion, descuento, anticipo, estado, causalnegacion,
                especial, idoc, embalaje, version, idproyecto, iva, idsolicitud,
                vrservicios, nombrecliente, telefonos, email, idcotizacionweb
            ) VALUES (
                CURRENT_DATE, %s, 0, %s, 0, 0,
                0, 0, 0, 0, 0,
                FALSE, 0, 0, 1, 0, %s, 0,
                0, %s, %s, %s, %s
            ) RETURNING id
        """).format(db.table(schema, db.QUOTES_TABLE)),
        (
            build_reference(body),
            settings.default_user_id,
            settings.tax_rate,
            body.customer.name,
            body.customer.phone,
            str(body.customer.email),
            body.order_id,
        ),
    )
    return int(cur.fetchone()[0])


def _insert_items(cur, schema: str, idcotizacion: int, items: List[OrderItem], sku_ids: Dict[str, int]):
    stmt = sql.SQL("""
        INSERT INTO {} (
            idcotizacion, detalle, iditem, nombre, cantidad, precioventa, iva,
            especial, espedido, porcentajedescuento
        ) VALUES (
            %s, %s, %s, %s, %s, %s, %s,
            FALSE, FALSE, %s
        )
    """).format(db.table(schema, db.QUOTE_ITEMS_TABLE))
    # input order is kept: one insert per item
    for it in items:
        cur.execute(
            stmt,
            (
                idcotizacion,
                settings.item_detail,
                sku_ids[it.sku.strip()],
                it.name,
                it.qty,
                it.price,
                settings.tax_rate,
                it.discount,
            ),
        )


def _rollback(conn):
    if not conn.closed:
        conn.rollback()


def _idempotent_result(schema: str, order_id: int, idcotizacion: int) -> OrderResult:
    logger.info("Order %s already stored as cotizacion %s in %s", order_id, idcotizacion, schema)
    return OrderResult(
        idcotizacion=idcotizacion,
        schema_name=schema,
        idempotent=True,
        message=f"Cotización ya existía para idcotizacionweb={order_id}",
    )


def _ingest(conn, body: OrderBody) -> OrderResult:
    schema = body.schema_name
    try:
        with conn.cursor() as cur:
            # 1) Idempotency
            existing = _find_existing(cur, schema, body.order_id)
            if existing is not None:
                _rollback(conn)
                return _idempotent_result(schema, body.order_id, existing)

            # 2) All SKUs in one round-trip
            skus = distinct_skus(body.items)
            sku_ids = _resolve_skus(cur, schema, skus)
            missing = [sku for sku in skus if sku not in sku_ids]
            if missing:
                logger.warning("Order %s rejected, missing SKUs in %s: %s", body.order_id, schema, missing)
                raise SkuNotFoundError(schema, missing)

            # 3) Header, 4) items
            idcotizacion = _insert_header(cur, schema, body)
            _insert_items(cur, schema, idcotizacion, body.items, sku_ids)
        conn.commit()
    except pg_errors.UniqueViolation:
        # A concurrent submission of the same order committed first
        _rollback(conn)
        with conn.cursor() as cur:
            existing = _find_existing(cur, schema, body.order_id)
        _rollback(conn)
        if existing is None:
            raise
        return _idempotent_result(schema, body.order_id, existing)
    except Exception:
        logger.info("Rolling back order %s in %s", body.order_id, schema)
        _rollback(conn)
        raise

    logger.info(
        "Cotizacion %s created in %s for order %s (%d items)",
        idcotizacion, schema, body.order_id, len(body.items),
    )
    return OrderResult(
        idcotizacion=idcotizacion,
        schema_name=schema,
        idempotent=False,
        items=len(body.items),
        message="Cotización creada con éxito",
    )


def create_order(body: OrderBody) -> OrderResult:
    """
    Create the quotation for `body`, or return the existing one when the
    order id was already ingested. Raises CotizadorError subclasses.
    """
    try:
        with db.connection() as conn:
            return _ingest(conn, body)
    except CotizadorError:
        raise
    except psycopg2.Error as e:
        logger.error("Order %s failed: %s", body.order_id, e)
        raise DatabaseError((e.pgerror or str(e)).strip()) from e
