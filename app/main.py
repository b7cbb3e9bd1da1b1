from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from app.services.store import get_store

# Import routers directly from submodules
from app.tools.appointment import router as appointment_router
from app.tools.commission import router as commission_router
from app.tools.invoice import router as invoice_router
from app.health import router as health_router


def configure_logging() -> None:
    """Ensure application logs use the configured level (INFO by default)."""
    level = getattr(logging, get_settings().log_level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    else:
        root_logger.setLevel(level)

# Configure logging as soon as the module is loaded
configure_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manages application startup and shutdown events.
    """
    # --- Startup Logic ---
    settings = get_settings()

    settings_snapshot = settings.model_dump(mode="json")
    logger.info("Application settings on startup: %s", settings_snapshot)

    store = get_store()
    invoice_settings = await store.settings.get()
    logger.info(
        "Invoice numbering starts at %s-%d",
        invoice_settings.invoice_number_prefix,
        invoice_settings.next_invoice_number,
    )
    logger.info("Application startup complete.")

    try:
        yield  # The application is now running
    finally:
        # --- Shutdown Logic ---
        logger.info("Application shutdown complete.")


# --- Application Setup ---

settings = get_settings()
app = FastAPI(
    title=settings.app_name,
    lifespan=lifespan,
    redirect_slashes=False
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin).rstrip("/") for origin in settings.cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Include Routers ---

app.include_router(invoice_router, prefix="/invoices")
app.include_router(appointment_router, prefix="/bookings")
app.include_router(commission_router, prefix="/commissions")
app.include_router(health_router)
