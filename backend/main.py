from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.alerts import router as alerts_router
from api.anomalies import router as anomalies_router
from core.config import configure_logging, get_settings
from services import get_scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    scheduler = get_scheduler()
    if settings.sweep_interval_minutes > 0:
        scheduler.start()
    yield
    if scheduler.is_running:
        scheduler.stop(timeout=settings.subject_timeout_seconds)

app = FastAPI(
    title="Pet Health Alerts API",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(alerts_router, prefix="/api")
app.include_router(anomalies_router, prefix="/api")

@app.get("/")
async def root():
    return {
        "name": "Pet Health Alerts API",
        "version": "1.0.0",
        "docs": "/docs",
    }

@app.get("/health")
async def health():
    from alerts import get_alert_engine
    from db import get_storage

    engine = get_alert_engine()
    stats = engine.stats()
    scheduler = get_scheduler()

    return {
        "status": "healthy",
        "engine": {
            "evaluations": stats["evaluations"],
            "triggers": stats["triggers"],
            "sweeps": stats["sweeps"],
            "uptime_seconds": stats["uptime_seconds"]
        },
        "storage": get_storage().get_stats(),
        "scheduler": scheduler.stats.to_dict()
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
