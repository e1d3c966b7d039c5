import asyncio
import contextlib
import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from app.core.config import settings
from app.core.logging import configure_logging
from app.db.session import create_db_and_tables

# Import models to ensure they are registered with SQLModel metadata
from app.models.worker import Worker
from app.models.product import Product
from app.models.cart import Cart, CartItem
from app.models.bill import Bill, BillLineItem, BillSequence

from app.tasks.cleanup import run_periodic_cleanup

configure_logging()
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()

    cleanup_task = None
    if settings.CART_CLEANUP_INTERVAL_SECONDS > 0:
        cleanup_task = asyncio.create_task(run_periodic_cleanup(settings.CART_CLEANUP_INTERVAL_SECONDS))
    yield
    if cleanup_task:
        cleanup_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await cleanup_task

app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    lifespan=lifespan,
    description="Point-of-sale API for PharmaCare pharmacy workers"
)

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    # Storage faults and bugs end the request with a generic answer
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})

@app.get("/")
def read_root():
    return {"message": "Welcome to PharmaCare POS API. Visit /docs for Swagger UI."}

from app.routers import auth, products, cart, bills

app.include_router(auth.router, prefix="/api/v1/auth", tags=["auth"])
app.include_router(products.router, prefix="/api/v1/products", tags=["products"])
app.include_router(cart.router, prefix="/api/v1/cart", tags=["cart"])
app.include_router(bills.router, prefix="/api/v1/bills", tags=["bills"])

# Add CORS
from fastapi.middleware.cors import CORSMiddleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], # Allow all for demo
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
