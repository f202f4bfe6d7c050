import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, status
from erp_sync.core.db import init_db, close_db
from erp_sync.api.v1.orders import router as orders_router
from erp_sync.api.v1.inventory import router as inventory_router
from erp_sync.api.v1.webhook import router as webhook_router
from erp_sync.api.v1.admin import router as admin_router
from erp_sync.core.config import PROJECT_NAME, VERSION
from erp_sync.core.exception_handlers import setup_exception_handlers
from erp_sync.services.runtime import close_runtime, get_circuit_breaker, get_queue_manager

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
log = logging.getLogger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handles startup and shutdown events."""
    log.info(f"Starting {PROJECT_NAME} v{VERSION}...")
    await init_db() # Connect to DB and generate schemas
    yield
    await close_runtime()
    await close_db()
    log.info(f"{PROJECT_NAME} stopped.")

app = FastAPI(
    title=PROJECT_NAME,
    version=VERSION,
    lifespan=lifespan,
    # Configure API documentation and paths
    docs_url="/docs",
    redoc_url="/redoc"
)

# Include routers for modular API structure
app.include_router(orders_router, prefix="/api/v1/orders", tags=["Order Management"])
app.include_router(inventory_router, prefix="/api/v1/inventory", tags=["Inventory Utilities"])
app.include_router(webhook_router, prefix="/api/v1/erp", tags=["ERP Webhooks"])
app.include_router(admin_router, prefix="/api/v1/admin", tags=["Sync Administration"])


setup_exception_handlers(app)

@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Health of the sync: ERP circuit state, queue depth and unresolved dead letters."""
    queue = get_queue_manager()
    breaker = await get_circuit_breaker().status()
    return {
        "status": "ok" if breaker["is_healthy"] else "degraded",
        "app_name": PROJECT_NAME,
        "circuit_breaker": breaker,
        "queue_depth": await queue.queue_depth(),
        "dead_letters": await queue.dead_letter_count(),
    }
