import asyncio
import traceback
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from api import agents_router, audit_router, capital_router, execute_router
from api.deps import Services, build_services
from models.database import init_database
from services.errors import AegisError
from utils.logger import get_logger, setup_logging
from utils.utcnow import utcnow
from workers.hitl_expiry_worker import run_worker_loop

setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON, log_file=settings.LOG_FILE)
logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting agent wallet execution service...")

    await init_database()
    logger.info("Database initialized")

    if getattr(app.state, "services", None) is None:
        app.state.services = build_services()
    services: Services = app.state.services

    expiry_task = asyncio.create_task(run_worker_loop(services.approvals), name="hitl-expiry")

    try:
        yield
    finally:
        logger.info("Shutting down...")
        expiry_task.cancel()
        try:
            await expiry_task
        except asyncio.CancelledError:
            pass
        await services.close()
        logger.info("Shutdown complete")


def create_app(services: Optional[Services] = None) -> FastAPI:
    app = FastAPI(
        title="Aegis",
        description="Policy-guarded wallet execution for autonomous agents",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services

    @app.exception_handler(AegisError)
    async def aegis_error_handler(request: Request, exc: AegisError):
        level = logger.error if exc.status_code >= 500 else logger.info
        level(
            "Request failed",
            path=request.url.path,
            method=request.method,
            status=exc.status_code,
            error=exc.message,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            f"{'.'.join(str(p) for p in e.get('loc', ()) if p != 'body')}: {e.get('msg')}"
            for e in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"error": ", ".join(errors), "errors": errors})

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            traceback=traceback.format_exc(),
        )
        return JSONResponse(status_code=500, content={"error": "internal server error"})

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(agents_router)
    app.include_router(execute_router)
    app.include_router(audit_router)
    app.include_router(capital_router)

    @app.get("/health")
    async def health_check():
        """Basic health check - for load balancers"""
        return {"status": "ok", "timestamp": utcnow().isoformat() + "Z"}

    return app


app = create_app()


if __name__ == "__main__":
    import os
    import uvicorn

    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port, timeout_keep_alive=30)
