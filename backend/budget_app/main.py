from fastapi import FastAPI, APIRouter, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from datetime import datetime
import logging
from budget_app.config import settings
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from budget_app.api import (
    auth,
    plaid,
    transactions,
    budgets,
    fraud,
    reports,
)
from budget_app.api.limiter import limiter
from budget_app.services.exceptions import ServiceError, ValidationError

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    # Startup
    logger.info("Starting Budget API")
    from budget_app.database.postgres_db import init_db, get_db_context
    from budget_app.database.seed import seed_system_categories
    init_db(settings.DATABASE_URL)
    with get_db_context() as db:
        seed_system_categories(db)
    logger.info("Database initialized")

    scheduler = None
    if settings.SYNC_SCHEDULER_ENABLED:
        from budget_app.services.sync_scheduler import get_sync_scheduler
        scheduler = get_sync_scheduler()
        scheduler.start()

    yield

    # Shutdown
    logger.info("Shutting down...")
    if scheduler is not None:
        scheduler.stop()
    from budget_app.database.postgres_db import close_db
    close_db()


app = FastAPI(
    title="Budget API",
    description="API for tracking spending, budgets and suspicious transactions",
    version="1.0.0",
    lifespan=lifespan
)

# Security: Add rate limiter to app state and register exception handler
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    content = {"detail": exc.message}
    if isinstance(exc, ValidationError):
        content["errors"] = exc.errors
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    message = "Internal server error" if settings.is_production else str(exc)
    return JSONResponse(status_code=500, content={"error": message})


api_router = APIRouter(prefix="/api")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

api_router.include_router(auth.router)
api_router.include_router(plaid.router)
api_router.include_router(transactions.router)
api_router.include_router(budgets.router)
api_router.include_router(fraud.router)
api_router.include_router(reports.router)

app.include_router(api_router)

# Initialize Prometheus metrics instrumentation
Instrumentator().instrument(app).expose(app)


@app.get("/")
async def root():
    return {
        "message": "Budget API",
        "version": "1.0.0",
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "timestamp": datetime.utcnow().isoformat()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "budget_app.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=True
    )
