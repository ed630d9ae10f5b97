"""FastAPI application entry point."""

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from imagevault.database import SessionLocal
from imagevault.errors import ImageVaultError, InvalidInput
from imagevault.ratelimit import limiter
from imagevault.routers import images
from imagevault.settings import settings

app = FastAPI(
    title="imagevault",
    description="Image upload, validation and caption search service",
    version="0.1.0",
    debug=settings.debug,
)
logger = logging.getLogger(__name__)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(ImageVaultError)
async def imagevault_error_handler(request: Request, exc: ImageVaultError):
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s: %s", request.method, request.url.path, exc.kind, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    error = InvalidInput("; ".join(messages) or "Invalid request")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.on_event("startup")
async def load_upload_policy_on_startup():
    """Read the bucket upload policy and make sure the vector collection exists."""
    try:
        from imagevault.dependencies import get_object_store
        from imagevault.embeddings import EmbeddingGateway
        from imagevault.intake import load_upload_policy
        from imagevault.vector_index import SqlVectorIndex

        load_upload_policy(get_object_store())
        db = SessionLocal()
        try:
            EmbeddingGateway(SqlVectorIndex(db)).ensure_collection()
        finally:
            db.close()
    except Exception:
        # Requests retry the policy load lazily.
        logger.exception("Startup initialization failed")


@app.on_event("startup")
async def start_worker_mode():
    """Start background queue worker when service runs in worker mode."""
    if not settings.worker_mode:
        return
    try:
        from imagevault.worker import start_background_worker_thread

        start_background_worker_thread()
    except Exception:
        # Keep API process alive even if worker startup fails.
        logger.exception("Failed to start worker mode thread")


@app.on_event("shutdown")
async def stop_worker_mode():
    """Stop background queue worker when service shuts down."""
    if not settings.worker_mode:
        return
    try:
        from imagevault.worker import stop_background_worker_thread

        stop_background_worker_thread()
    except Exception:
        logger.exception("Failed to stop worker mode thread")


_allowed_origins = [settings.app_url]
if settings.is_development:
    _allowed_origins += [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(images.router)


@app.get("/health")
async def health_check():
    """Health check endpoint with DB connectivity verification."""
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return {"status": "healthy"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"Database unavailable: {exc}")
    finally:
        db.close()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "imagevault.api:app",
        host=settings.api_host,
        port=settings.api_port,
        workers=settings.api_workers,
    )
