import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from eshop.api import cart, checkout, coupons, mpesa, orders
from eshop.core.config import settings
from eshop.core.errors import CheckoutError
from eshop.version import VERSION

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("eshop")

instrumentator = Instrumentator()

app = FastAPI(title="EShop Checkout", version=VERSION)

instrumentator.instrument(app).expose(
    app,
    include_in_schema=False,
    endpoint="/metrics",
    should_gzip=True,
)

@app.exception_handler(CheckoutError)
async def checkout_error_handler(request: Request, err: CheckoutError):
    if err.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, err.message)
    return JSONResponse(err.to_dict(), status_code=err.status_code)

@app.get("/health")
def health():
    return {"status": "ok"}

@app.get("/v1/_info")
def info():
    return {"service": "checkout", "version": VERSION, "env": settings.APP_ENV}

@app.on_event("startup")
async def startup_event():
    for route in app.routes:
        if hasattr(route, "methods") and hasattr(route, "path"):
            logger.info("%s %s", sorted(route.methods), route.path)

app.include_router(cart.router, prefix="/cart", tags=["cart"])
app.include_router(checkout.router, prefix="/checkout", tags=["checkout"])
app.include_router(orders.router, prefix="/orders", tags=["orders"])
app.include_router(coupons.router, prefix="/coupons", tags=["coupons"])
app.include_router(mpesa.router, prefix="/mpesa", tags=["mpesa"])
