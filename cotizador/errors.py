"""Application exceptions for the cotizador API."""
from typing import Iterable, List


class CotizadorError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['ok'] = False
        rv['error'] = self.message
        return rv


class SchemaNotAllowedError(CotizadorError):
    """Raised when a schema name is not in the configured allow-list."""
    def __init__(self, schema: str):
        super().__init__(f"Schema no permitido: {schema!r}", status_code=400)
        self.schema = schema


class SkuNotFoundError(CotizadorError):
    """Raised when one or more SKUs do not exist in the catalog."""
    def __init__(self, schema: str, missing: Iterable[str]):
        self.missing: List[str] = list(missing)
        message = f"SKUs no encontrados en {schema}.inv_items: {', '.join(self.missing)}"
        super().__init__(message, status_code=500)


class DatabaseError(CotizadorError):
    """Wraps failures coming from the storage layer."""
    def __init__(self, message):
        super().__init__(message, status_code=500)
