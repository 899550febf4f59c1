from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rpm_core.core.config import settings
from rpm_core.core.db import init_db
from rpm_core.core.logging import setup_logging
from rpm_core.core.middleware import StructlogMiddleware
from rpm_core.core.scheduler import start_scheduler, stop_scheduler
from rpm_core.modules.alerts import router as alerts_router
from rpm_core.modules.billing import router as billing_router
from rpm_core.modules.checkins import router as checkins_router
from rpm_core.modules.interactions import router as interactions_router
from rpm_core.modules.labs import router as labs_router
from rpm_core.modules.measurements import router as measurements_router
from rpm_core.modules.time_entries import router as time_entries_router

setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    mongo_client = await init_db()
    app.state.mongo_client = mongo_client
    if settings.SCHEDULER_ENABLED:
        start_scheduler()

    yield

    # Shutdown
    stop_scheduler()
    await mongo_client.close()


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="""
    ## Renal RPM Core API

    This API provides:
    * **Measurements**: Unit-normalised, de-duplicated ingestion from patients and devices
    * **Trends**: Per-type summaries and paired blood-pressure series
    * **Alerts**: Clinical rule evaluation, escalation and clinician acknowledgement
    * **Billing**: Device-day and clinician-time summaries with CPT eligibility

    Clinician actions are attributed through the `X-Clinician-ID` header.
    """,
    version="0.1.0",
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

# Set all CORS enabled origins
if settings.BACKEND_CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.BACKEND_CORS_ORIGINS],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(StructlogMiddleware)

app.include_router(
    measurements_router.router, prefix=settings.API_V1_STR, tags=["measurements"]
)
app.include_router(alerts_router.router, prefix=settings.API_V1_STR, tags=["alerts"])
app.include_router(checkins_router.router, prefix=settings.API_V1_STR, tags=["checkins"])
app.include_router(labs_router.router, prefix=settings.API_V1_STR, tags=["labs"])
app.include_router(
    time_entries_router.router, prefix=settings.API_V1_STR, tags=["time-entries"]
)
app.include_router(billing_router.router, prefix=settings.API_V1_STR, tags=["billing"])
app.include_router(
    interactions_router.router, prefix=settings.API_V1_STR, tags=["interactions"]
)


@app.get("/health")
def health_check() -> dict[str, str]:
    return {"status": "ok"}
