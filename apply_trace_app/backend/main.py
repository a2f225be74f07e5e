from dotenv import load_dotenv

load_dotenv()

from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles
from .api import auth, application, webhook, debug, health
from .models.db.database import engine, Base
from .models.db import user as user_model
from .models.db import email_session as email_session_model
from .models.db import application as application_model
from .utils.logging_config import setup_logging, get_logger
from .config.settings import get_settings

STATIC_DIR = Path(__file__).parent / "static"

# Initialize settings
settings = get_settings()

# Setup logging configuration
setup_logging(
    level=settings.log_level,
    log_file=settings.log_file
)
logger = get_logger(__name__)

# Validate configuration on startup
missing_settings = settings.validate_required_settings()
if missing_settings:
    for setting in missing_settings:
        logger.error("Configuration error: %s", setting)
    if settings.is_production():
        raise RuntimeError("Invalid configuration for production environment")

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    docs_url="/docs" if settings.api_docs_enabled else None,
    redoc_url="/redoc" if settings.api_docs_enabled else None,
)

# Add CORS middleware if enabled
if settings.cors_enabled:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# Routers
app.include_router(health.router, prefix="/api", tags=["Health Check"])
app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
app.include_router(application.router, prefix="/api/applications", tags=["Application Tracker"])
app.include_router(webhook.router, prefix="/api/webhook", tags=["Gmail Webhook"])
app.include_router(debug.router, prefix="/api", tags=["Debug"])

app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

@app.on_event("startup")
def on_startup():
    """Initialize database tables and log application startup."""
    logger.info("Starting %s...", settings.app_name)
    # Model modules are imported above so their tables are registered on Base.
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables initialized successfully")

@app.get("/", include_in_schema=False)
def read_root():
    return FileResponse(STATIC_DIR / "index.html")
