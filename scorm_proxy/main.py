"""SCORM-LTI proxy application.

Hosts the LTI and dispatch launch endpoints, the SCORM runtime API used by
the player, and the admin API. Extracted course content is served from
``/content``; the player from ``/static`` when that directory is present.
"""

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pathlib import Path
import logging
import os
import subprocess
from datetime import datetime

from scorm_proxy.config import LIVE_SETTING_KEYS, settings_store
from scorm_proxy.db.config import SessionLocal, close_db, init_db
from scorm_proxy.repositories.settings_repo import SettingsRepository
from scorm_proxy.routers import admin, dispatch, health, lti, scorm_api

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

APP_NAME = "SCORM-LTI Proxy API"
VERSION = "1.0.0"
DESCRIPTION = """
SCORM-LTI Proxy

Hosts SCORM packages once and exposes them to many LMSs.

## Features

* **LTI 1.1 Launch**: OAuth 1.0a signed launches with grade passback
* **Dispatch Packages**: thin SCORM packages redirecting to hosted content
* **xAPI Reporting**: statements for dispatch launches
* **Admin API**: consumers, courses, dispatch packages, reporting
"""

PROJECT_DIR = Path(__file__).resolve().parent.parent
STATIC_DIR = PROJECT_DIR / "static"


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


def _error_body(request, message) -> dict:
    return {
        "success": False,
        "error": message,
        "timestamp": datetime.utcnow().isoformat(),
        "path": str(request.url),
    }


app = FastAPI(
    title=APP_NAME,
    description=DESCRIPTION,
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

cors_origins = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:3001"
).split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    """Render API errors as the JSON error envelope"""
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, exc.detail),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500, content=_error_body(request, "Internal server error")
    )


app.include_router(lti.router)
app.include_router(dispatch.router)
app.include_router(scorm_api.router)
app.include_router(health.router, prefix="/api/v1", tags=["Health"])
app.include_router(admin.router, prefix="/api/v1")

content_dir = Path(settings_store.current.content_dir)
content_dir.mkdir(parents=True, exist_ok=True)
app.mount("/content", StaticFiles(directory=str(content_dir)), name="content")
if STATIC_DIR.is_dir():
    app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")


@app.get("/", tags=["Root"])
async def root():
    settings = settings_store.current
    return {
        "name": APP_NAME,
        "version": VERSION,
        "status": "running",
        "environment": settings.environment,
        "docs": "/docs",
        "health": "/api/v1/health",
        "ltiLaunchUrl": settings.launch_url,
    }


def run_migrations() -> None:
    """Run ``alembic upgrade head`` from the project directory."""
    logger.info("AUTO_MIGRATE enabled: upgrading schema to head")
    try:
        result = subprocess.run(
            ["alembic", "upgrade", "head"],
            cwd=str(PROJECT_DIR),
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError:
        logger.error("alembic executable not found; schema left unchanged")
        return
    if result.returncode != 0:
        logger.error(
            f"Schema upgrade failed (exit {result.returncode}): {result.stderr.strip()}"
        )
    else:
        logger.info("Schema upgraded")


async def load_live_settings() -> None:
    """Overlay values persisted in the settings table on the env snapshot."""
    async with SessionLocal() as session:
        stored = await SettingsRepository(session).load_all()
    values = {k: v for k, v in stored.items() if k in LIVE_SETTING_KEYS}
    if values:
        settings_store.update(values)
        logger.info(f"Loaded live settings: {', '.join(sorted(values))}")


@app.on_event("startup")
async def startup_event():
    settings = settings_store.current
    logger.info(f"Starting {APP_NAME} v{VERSION} ({settings.environment})")
    logger.info(f"Serving course content from {content_dir}")
    if _env_flag("AUTO_MIGRATE"):
        run_migrations()
    try:
        await init_db(create_schema=_env_flag("AUTO_CREATE_SCHEMA", "true"))
        await load_live_settings()
    except Exception as exc:
        logger.error(f"Database unavailable at startup: {exc}")
        raise
    logger.info(f"LTI launch URL: {settings_store.current.launch_url}")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info(f"Shutting down {APP_NAME}")
    await close_db()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "scorm_proxy.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", 8000)),
        log_level="info",
    )
