import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.core.errors import GradingError
from app.core.logging_config import configure_logging
from app.routes import github, grading, notion, webhook

logger = logging.getLogger(__name__)


async def grading_error_handler(request: Request, exc: GradingError) -> JSONResponse:
    content = {"success": False, "error": exc.error, "timestamp": datetime.now(timezone.utc).isoformat()}
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s: %s", request.method, request.url.path,
                     type(exc).__name__, exc.message)
        content["message"] = exc.message
    return JSONResponse(status_code=exc.status_code, content=content)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Invalid request body",
            "message": "; ".join(
                f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
            ),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="Automated Grading Assistant", version="1.0.0")

    # CORS configuration (allow all origins by default, restrict in production)
    origins = [origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(GradingError, grading_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # Include API routers
    app.include_router(grading.router, prefix="/grade", tags=["Grading"])
    app.include_router(webhook.router, prefix="/webhook", tags=["Webhooks"])
    app.include_router(github.router, prefix="/api/github", tags=["GitHub"])
    app.include_router(notion.router, prefix="/api/notion", tags=["Notion"])

    @app.get("/")
    async def root():
        return {
            "status": "success",
            "message": "Automated Grading Assistant API is running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app


app = create_app()
