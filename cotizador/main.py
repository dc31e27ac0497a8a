import logging
import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cotizador import __version__
from cotizador.config import settings
from cotizador.db import close_pool, ensure_order_id_index, init_pool
from cotizador.errors import CotizadorError
from cotizador.orders import create_order
from cotizador.schemas import OrderBody, OrderResult, flatten_validation_errors

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Cotizador API", version=__version__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.origin_list,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
def _startup():
    init_pool()
    if settings.ensure_order_id_index:
        ensure_order_id_index(settings.schema_list)

@app.on_event("shutdown")
def _shutdown():
    close_pool()

# --- Error handlers ---
@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"ok": False, "error": flatten_validation_errors(exc.errors())},
    )

@app.exception_handler(CotizadorError)
async def _cotizador_error(request: Request, exc: CotizadorError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(Exception)
async def _unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"ok": False, "error": str(exc)})

# --- Healthcheck ---
@app.get("/health")
def health():
    return {"status": "ok"}

# --- Orders ---
@app.post("/api/orders", response_model=OrderResult, response_model_exclude_none=True)
def post_order(body: OrderBody):
    """
    Crea la cotización (header + items) de un pedido externo, de forma atómica.
    Reenviar el mismo order_id devuelve la cotización existente.
    """
    t0 = time.perf_counter()
    try:
        result = create_order(body)
    except CotizadorError as e:
        latency = int((time.perf_counter() - t0) * 1000)
        logger.warning("POST /api/orders order_id=%s failed in %dms: %s", body.order_id, latency, e.message)
        raise

    latency = int((time.perf_counter() - t0) * 1000)
    logger.info(
        "POST /api/orders order_id=%s -> idcotizacion=%s idempotent=%s in %dms",
        body.order_id, result.idcotizacion, result.idempotent, latency,
    )
    return result
