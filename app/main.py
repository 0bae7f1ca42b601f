"""
SquarePro License Backend API
Issues and verifies per-domain license keys, keeps them in step with Stripe
and gates billing-portal access behind emailed one-time codes.
"""
from dotenv import load_dotenv
load_dotenv()

import logging
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

# Configure logging; the platform captures stdout
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)],
    force=True  # Override any existing configuration
)

logger = logging.getLogger(__name__)


def run_migrations() -> None:
    """Run Alembic migrations on startup. Uses alembic.ini and DATABASE_URL.
    Fails startup if migrations fail, so the DB is never left out of sync."""
    project_root = Path(__file__).resolve().parent.parent
    alembic_ini = project_root / "alembic.ini"
    if not alembic_ini.exists():
        logger.warning("alembic.ini not found, skipping Alembic migrations")
        return
    try:
        alembic_cfg = Config(str(alembic_ini))
        alembic_cfg.set_main_option("script_location", str(project_root / "alembic"))
        alembic_cfg.attributes["configure_logger"] = False
        command.upgrade(alembic_cfg, "head")
        logger.info("Alembic migrations completed successfully")
    except Exception as e:
        logger.exception("Alembic migration failed: %s", e)
        raise


from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.api.routes import license as license_router, stripe as stripe_router
from app.core.config import get_settings
from app.db.session import engine
from app.db.base import Base
# Import all models to ensure they're registered with Base
from app.models import License, LicenseDomain, EmailOtp  # noqa: F401

settings = get_settings()

app = FastAPI(title="SquarePro License Backend")


@app.on_event("startup")
async def startup_event():
    """Refuse to start without required secrets, then create tables and run migrations."""
    settings.validate()

    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)

    run_migrations()


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.get("/health")
async def health():
    return {"ok": True}


# Register routers
app.include_router(license_router.router, prefix="/license", tags=["License"])
app.include_router(stripe_router.router, prefix="/stripe", tags=["Stripe"])
