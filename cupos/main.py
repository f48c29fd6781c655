# cupos/main.py
import os
import logging

from fastapi import FastAPI

from .config import settings
from .database import init_db
from .jobs.scheduler import start_scheduler, stop_scheduler
from .services.waitlist import get_waitlist_engine

# Routers
from .routers.appointments import router as appointments_router
from .routers.waitlist import router as waitlist_router
from .routers.webhooks import router as webhooks_router
from .routers.admin import router as admin_router

# ──────────────────────────────────────────────────────────────────────────────
# LOGGING
# Controla niveles con variables de entorno:
#   LOG_LEVEL, WAITLIST_LOG_LEVEL, SQLA_LOG_LEVEL, UVICORN_LOG_LEVEL
# ──────────────────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

# Verbosidad del motor de lista de espera
logging.getLogger("cupos.services").setLevel(
    getattr(logging, os.getenv("WAITLIST_LOG_LEVEL", "INFO"), logging.INFO)
)
logging.getLogger("sqlalchemy.engine").setLevel(
    getattr(logging, os.getenv("SQLA_LOG_LEVEL", "WARNING"), logging.WARNING)
)
logging.getLogger("apscheduler").setLevel(
    getattr(logging, os.getenv("APSCHEDULER_LOG_LEVEL", "WARNING"), logging.WARNING)
)
logging.getLogger("uvicorn.error").setLevel(
    getattr(logging, os.getenv("UVICORN_LOG_LEVEL", "INFO"), logging.INFO)
)

logger = logging.getLogger(__name__)

# ──────────────────────────────────────────────────────────────────────────────
# FastAPI App
# ──────────────────────────────────────────────────────────────────────────────
app = FastAPI(title=settings.APP_NAME)

app.include_router(appointments_router)
app.include_router(waitlist_router)
app.include_router(webhooks_router)
app.include_router(admin_router, prefix="/admin")  # ← el admin.py NO debe repetir /admin

# ──────────────────────────────────────────────────────────────────────────────
# Ciclo de vida: el barrido de ofertas vive y muere con el proceso
# ──────────────────────────────────────────────────────────────────────────────
@app.on_event("startup")
def on_startup():
    init_db()
    app.state.scheduler = None
    if settings.SCHEDULER_ENABLED:
        engine = get_waitlist_engine()
        app.state.scheduler = start_scheduler(
            engine.sweeper,
            reminders=engine.reminders if settings.REMINDERS_ENABLED else None,
        )
    logger.info("Startup completo: %s (%s)", settings.APP_NAME, settings.ENV)


@app.on_event("shutdown")
def on_shutdown():
    stop_scheduler(getattr(app.state, "scheduler", None))
    logger.info("Shutdown completo: %s", settings.APP_NAME)


@app.get("/")
def root():
    return {"ok": True, "app": settings.APP_NAME, "env": settings.ENV}
