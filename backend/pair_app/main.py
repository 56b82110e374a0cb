from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware
from contextlib import asynccontextmanager
import asyncio
import os

import uvicorn

from pair_app.config import settings
from pair_app.api import pairing
from pair_app.core.log import log, error_log
from pair_app.services.redis_subscriber import redis_subscriber
from pair_app.services.session_manager import session_manager


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    if not settings.sessions_dir.exists():
        os.makedirs(settings.sessions_dir, exist_ok=True)
        log("Startup", "Created session directory.")

    # Bridge events must be flowing before any connection is opened
    app.state.subscriber_task = asyncio.create_task(redis_subscriber.start())

    if settings.default_session_enabled:
        try:
            await session_manager.start_default_session()
        except Exception as e:
            error_log("Startup", f"Default session failed to start: {e}")

    log("Startup", f"API running on port {settings.port}")

    yield

    # Shutdown
    await session_manager.shutdown()
    await redis_subscriber.stop()
    app.state.subscriber_task.cancel()
    log("Shutdown", "All sessions stopped")


app = FastAPI(
    title="WhatsApp Pairing API",
    description="Pairing-code sessions with downloadable credential archives",
    version="1.0.0",
    lifespan=lifespan
)

# Trust proxy headers so download links keep the original scheme
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": "Invalid request"})


app.include_router(pairing.router, tags=["Pairing"])


@app.get("/")
async def root():
    return {"message": "WhatsApp Pairing API", "version": "1.0.0"}


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


def run():
    uvicorn.run(app, host="0.0.0.0", port=settings.port, proxy_headers=True)


if __name__ == "__main__":
    run()
