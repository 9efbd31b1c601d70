from contextlib import asynccontextmanager
import logging
import traceback

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from budgetvote.database import Base, engine, get_db, ping_database
import budgetvote.models  # noqa: F401  # Ensure all SQLAlchemy models are registered
from budgetvote.routers import budget as budget_router
from budgetvote.routers import realtime as realtime_router
from budgetvote.routers import sessions as sessions_router
from budgetvote.utils.logging_config import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    Base.metadata.create_all(bind=engine)
    logging.getLogger("app").info("Database initialized.")
    yield
    logging.getLogger("app").info("Application shutdown.")


app = FastAPI(
    title="Budgetvote",
    description="Participatory median budget voting",
    lifespan=lifespan,
)

app.include_router(budget_router.router)
app.include_router(sessions_router.router)
app.include_router(realtime_router.router)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger = logging.getLogger("app")
    logger.error(f"Global exception: {str(exc)}\n{traceback.format_exc()}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal Server Error. Please check logs."},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    logger = logging.getLogger("app")
    if exc.status_code >= 500:
        logger.error(f"HTTP {exc.status_code} error: {exc.detail}")
    else:
        logger.info(f"HTTP {exc.status_code}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger = logging.getLogger("app")
    # Messages only, so the body is always serializable
    error_messages = [err["msg"] for err in exc.errors()]
    logger.warning(f"Validation error: {error_messages}")
    return JSONResponse(
        status_code=422,
        content={"detail": error_messages},
    )


@app.get("/health", tags=["healthcheck"])
async def health_check(db: Session = Depends(get_db)):
    try:
        ping_database(db)
    except Exception as exc:
        logging.getLogger("app").error("Health check database error: %s", exc)
        raise HTTPException(status_code=503, detail="Database connection failed")
    return {"status": "healthy", "database": "connected"}
