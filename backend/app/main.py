import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.cache import UserReadCache
from app.core.config import settings
from app.core.errors import LedgerError
from app.core.logging import setup_logging
from app.db.pool import create_db_pool
from app.routers.accounts import router as accounts_router
from app.routers.system import router as system_router
from app.routers.transactions import router as transactions_router

setup_logging(settings.log_level, settings.log_dir)
logger = logging.getLogger(__name__)

API_PREFIX = "/api/v2"


@asynccontextmanager
async def lifespan(app: FastAPI):
    pool = create_db_pool(settings)
    pool.open()
    app.state.db_pool = pool
    app.state.read_cache = UserReadCache(redis_url=settings.redis_url, key_prefix=settings.redis_prefix)
    logger.info("wallet tracker api started redis_cache=%s", app.state.read_cache.uses_redis)
    try:
        yield
    finally:
        app.state.read_cache.close()
        pool.close()
        logger.info("wallet tracker api stopped")


app = FastAPI(title="Wallet Tracker", lifespan=lifespan)
if settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(system_router, prefix=API_PREFIX)
app.include_router(accounts_router, prefix=API_PREFIX)
app.include_router(transactions_router, prefix=API_PREFIX)


def format_validation_errors(exc: RequestValidationError) -> list[dict[str, str]]:
    errors = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ())]
        field = ".".join(loc[1:]) or (loc[0] if loc else "body")
        message = str(error.get("msg", "Invalid value")).removeprefix("Value error, ")
        errors.append({"field": field, "message": message})
    return errors


@app.exception_handler(HTTPException)
def http_exc_handler(_, exc: HTTPException):
    content = {"ok": False, "detail": exc.detail}
    if isinstance(exc, LedgerError) and exc.errors:
        content["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
def validation_exc_handler(_, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"ok": False, "detail": "Validation failed", "errors": format_validation_errors(exc)},
    )


@app.exception_handler(Exception)
def unhandled_exc_handler(req: Request, exc: Exception):
    logger.exception("unhandled error method=%s path=%s", req.method, req.url.path)
    return JSONResponse(status_code=500, content={"ok": False, "detail": "Internal server error"})
