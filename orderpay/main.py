from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
import structlog
from orderpay.version import VERSION
from orderpay.api import orders, payments
from orderpay.core.logging import configure_logging
from orderpay.errors import OrderPayError, GatewayError

configure_logging()
logger = structlog.get_logger(__name__)

# Create instrumentator first
instrumentator = Instrumentator()

app = FastAPI(title="Order & Payment Service", version=VERSION)

# Instrument the app BEFORE adding routes or middleware
instrumentator.instrument(app).expose(
    app,
    include_in_schema=False,
    endpoint="/orderpay/metrics",
    should_gzip=True,
)

@app.exception_handler(OrderPayError)
async def orderpay_error_handler(request: Request, exc: OrderPayError):
    log = logger.error if isinstance(exc, GatewayError) else logger.info
    log("request_failed", path=request.url.path, error=type(exc).__name__, detail=str(exc))
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})

# Health endpoints
@app.get("/health")
def health():
    return {"status": "ok"}

@app.get("/orderpay/health")
def orderpay_health():
    return {"status": "ok"}

@app.get("/v1/_info")
def info():
    return {"service": "orderpay", "version": VERSION}

@app.on_event("startup")
async def startup_event():
    for route in app.routes:
        if hasattr(route, "methods") and hasattr(route, "path"):
            logger.info("route_registered", methods=sorted(route.methods), path=route.path)

# Include routers
app.include_router(orders.router, prefix="/orderpay", tags=["orders"])
app.include_router(payments.router, prefix="/orderpay", tags=["payments"])
