"""SignFlow - collaborative PDF signing workflow API."""
# Load .env before any app code that might read config
from dotenv import load_dotenv
from pathlib import Path
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from signflow.config import get_settings
from signflow.database import Base, engine
# Import models so Base.metadata has all tables before create_all (schema source of truth)
from signflow.models import DocumentRecord, AuditLog  # noqa: F401
from signflow.routers import audit, documents, public

settings = get_settings()
app = FastAPI(title=settings.app_name, debug=settings.debug)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(documents.router)
app.include_router(audit.router)
app.include_router(public.router)

_scheduler = None


@app.on_event("startup")
def startup():
    import logging
    log = logging.getLogger("uvicorn.error")
    try:
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        log.warning("Database startup failed (tables not created). Check DATABASE_URL. Error: %s", e)

    # Scheduler: retry snapshot saves that failed after an in-memory transition
    if not settings.persistence_retry_enabled:
        return
    global _scheduler
    from apscheduler.schedulers.background import BackgroundScheduler
    from signflow.dependencies import get_coordinator

    _scheduler = BackgroundScheduler()
    _scheduler.add_job(
        lambda: get_coordinator().retry_pending_saves(),
        "interval",
        seconds=settings.persistence_retry_seconds,
        id="persistence_retry",
        coalesce=True,
        max_instances=1,
    )
    _scheduler.start()
    log.info("Persistence retry job every %ss", settings.persistence_retry_seconds)


@app.on_event("shutdown")
def shutdown():
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None


@app.get("/")
def root():
    return {"app": settings.app_name, "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
