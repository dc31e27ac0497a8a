import os

import pytest

# Allow-list used by the whole test session; must be set before settings load
os.environ['ALLOWED_SCHEMAS'] = 'public,prev'
os.environ.setdefault('ENSURE_ORDER_ID_INDEX', 'false')

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2.pool import PoolError
from fastapi.testclient import TestClient

from cotizador import db
from cotizador.main import app


class FakeDatabase:
    """
    In-memory stand-in for the quotation tables of every schema.
    Writes are staged per connection and only become visible on commit.
    """

    def __init__(self, catalog):
        # (schema, id, sku)
        self.catalog = list(catalog)
        self.quotes = []
        self.items = []
        self.statements = []
        self.next_quote_id = 500
        self.next_item_id = 9000
        self.unique_order_id = False
        self.concurrent_winner = False
        self.fail_on_item = None

    def quotes_for(self, schema, order_id=None):
        return [
            q for q in self.quotes
            if q['schema'] == schema and (order_id is None or q['idcotizacionweb'] == order_id)
        ]

    def items_for(self, idcotizacion):
        return [it for it in self.items if it['idcotizacion'] == idcotizacion]

    def new_quote_id(self):
        self.next_quote_id += 1
        return self.next_quote_id

    def new_item_id(self):
        self.next_item_id += 1
        return self.next_item_id


def _schema_of(text):
    for schema in ('public', 'prev'):
        if f"Identifier('{schema}'," in text:
            return schema
    raise AssertionError(f'no schema in statement: {text}')


class FakeCursor:

    def __init__(self, conn):
        self.conn = conn
        self.db = conn.db
        self._rows = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query, params=None):
        text = query if isinstance(query, str) else repr(query)
        self.db.statements.append((text, params))
        self.conn.statements.append(text)
        self._rows = []

        if 'CREATE UNIQUE INDEX' in text:
            self.db.unique_order_id = True
        elif 'INSERT INTO' in text and "'cotizaciones'" in text:
            self._insert_header(_schema_of(text), params)
        elif 'INSERT INTO' in text and "'itemsxcotizacion'" in text:
            self._insert_item(params)
        elif "'cotizaciones'" in text and 'idcotizacionweb = %s' in text:
            schema = _schema_of(text)
            visible = self.db.quotes + self.conn.staged_quotes
            self._rows = [
                (q['id'],) for q in visible
                if q['schema'] == schema and q['idcotizacionweb'] == params[0]
            ][:1]
        elif "'inv_items'" in text:
            schema = _schema_of(text)
            skus = set(params[0])
            self._rows = sorted(
                (iditem, sku) for s, iditem, sku in self.db.catalog
                if s == schema and sku in skus
            )
        else:
            raise AssertionError(f'unexpected statement: {text}')

    def _insert_header(self, schema, params):
        referencia, idusuario, iva, nombre, telefonos, email, order_id = params
        if self.db.concurrent_winner:
            # another transaction commits the same order first
            self.db.concurrent_winner = False
            self.db.quotes.append({
                'id': self.db.new_quote_id(), 'schema': schema, 'idcotizacionweb': order_id,
                'referencia': 'otra', 'nombrecliente': nombre, 'telefonos': telefonos,
                'email': email, 'idusuario': idusuario, 'iva': iva,
            })
        if self.db.unique_order_id and self.db.quotes_for(schema, order_id):
            raise pg_errors.UniqueViolation('duplicate key value violates unique constraint')
        quote = {
            'id': self.db.new_quote_id(), 'schema': schema, 'idcotizacionweb': order_id,
            'referencia': referencia, 'nombrecliente': nombre, 'telefonos': telefonos,
            'email': email, 'idusuario': idusuario, 'iva': iva,
        }
        self.conn.staged_quotes.append(quote)
        self._rows = [(quote['id'],)]

    def _insert_item(self, params):
        idcotizacion, detalle, iditem, nombre, cantidad, precio, iva, descuento = params
        if self.db.fail_on_item is not None and nombre == self.db.fail_on_item:
            raise psycopg2.OperationalError('server closed the connection unexpectedly')
        self.conn.staged_items.append({
            'id': self.db.new_item_id(), 'idcotizacion': idcotizacion, 'detalle': detalle,
            'iditem': iditem, 'nombre': nombre, 'cantidad': cantidad,
            'precioventa': precio, 'iva': iva, 'porcentajedescuento': descuento,
        })

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)


class FakeConnection:

    def __init__(self, db):
        self.db = db
        self.closed = 0
        self.commits = 0
        self.rollbacks = 0
        self.statements = []
        self.staged_quotes = []
        self.staged_items = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.commit()
        else:
            self.rollback()
        return False

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        self.commits += 1
        self.db.quotes.extend(self.staged_quotes)
        self.db.items.extend(self.staged_items)
        self.staged_quotes, self.staged_items = [], []

    def rollback(self):
        self.rollbacks += 1
        self.staged_quotes, self.staged_items = [], []


class FakePool:

    def __init__(self, db):
        self.db = db
        self.connections = []
        self.returned = []
        self.exhausted = False
        self.closed_all = False

    def getconn(self):
        if self.exhausted:
            raise PoolError('connection pool exhausted')
        conn = FakeConnection(self.db)
        self.connections.append(conn)
        return conn

    def putconn(self, conn, close=False):
        self.returned.append((conn, close))

    def closeall(self):
        self.closed_all = True

    @property
    def checked_out(self):
        return len(self.connections) - len(self.returned)


@pytest.fixture
def fake_db():
    """Catalog with a few SKUs in both allowed schemas."""
    return FakeDatabase([
        ('public', 11, 'ABC'),
        ('public', 12, 'DEF-1'),
        ('public', 13, 'gh/2'),
        ('public', 14, 'abc'),
        ('prev', 21, 'ABC'),
    ])


@pytest.fixture
def fake_pool(fake_db):
    """Install the fake pool as the process pool."""
    pool = FakePool(fake_db)
    previous = db._pool
    db._pool = pool
    yield pool
    db._pool = previous


@pytest.fixture
def client(fake_pool):
    """Create test client bound to the fake pool."""
    return TestClient(app)


@pytest.fixture
def order_payload():
    return {
        'order_id': 1001,
        'customer': {'name': 'Ana', 'email': 'a@x.com'},
        'items': [{'sku': 'ABC', 'name': 'Widget', 'qty': 2, 'price': 10.5}],
    }
