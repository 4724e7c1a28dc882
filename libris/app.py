#!/usr/bin/env python3

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from libris.routes import api
from libris.configs import OPTIONS, CORS_ORIGINS, SCHEDULER_ENABLED
from libris.core.db import SessionLocal, init as init_db
from libris.core.exceptions import LibrisAPIError, InternalError, ValidationError
from libris.core.policy import PolicyStore
from libris.core.scheduler import create_scheduler
from libris import __version__ as VERSION

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    db = SessionLocal()
    try:
        PolicyStore.ensure_default(db)
        db.commit()
    finally:
        db.close()
    scheduler = None
    if SCHEDULER_ENABLED:
        scheduler = create_scheduler()
        scheduler.start()
        logger.info("Background scheduler started")
    yield
    if scheduler is not None:
        scheduler.shutdown(wait=False)


app = FastAPI(
    title="Libris API",
    description="Libris: loans, returns and fines for a university library",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def error_response(error: LibrisAPIError):
    return JSONResponse(
        status_code=error.status_code,
        content={"success": False, "error": error.to_dict()},
    )


@app.exception_handler(LibrisAPIError)
async def libris_error_handler(request: Request, exc: LibrisAPIError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return error_response(exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        {
            "field": ".".join(str(part) for part in err["loc"] if part not in ("body", "query", "path")),
            "message": err["msg"],
        }
        for err in exc.errors()
    ]
    return error_response(ValidationError(details=details))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return error_response(InternalError())


app.include_router(api.router, prefix="/v1/api")

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("libris.app:app", **OPTIONS)
