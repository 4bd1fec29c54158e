import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import get_settings
from app.api.v1.router import api_router
from app.infrastructure.db import create_all

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.backend_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(api_router, prefix=settings.api_prefix)


@app.on_event("startup")
def _on_startup_create_tables():
    # Alembic owns the schema in production; dev SQLite gets created on the fly
    if settings.database_url.startswith("sqlite"):
        create_all()
        logger.info("SQLite schema ensured at %s", settings.database_url)


@app.get("/")
def root():
    return {"status": "ok"}
