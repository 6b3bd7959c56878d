"""Local REST API for monitoring and controlling the guardian."""

from typing import Optional

import structlog
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from .. import __version__
from ..collaborators import QueueSensorSource
from ..config import Settings
from ..errors import SessionError
from ..models import SensitivityLevel, SensorSample
from ..monitor import GuardianMonitor
from ..scheduler import BackgroundScheduler

logger = structlog.get_logger(__name__)


class SampleBatch(BaseModel):
    """Samples pushed by a remote accelerometer."""

    samples: list[SensorSample] = Field(min_length=1, max_length=1000)


class AutoModeUpdate(BaseModel):
    enabled: bool


def create_server(
    monitor: GuardianMonitor,
    scheduler: Optional[BackgroundScheduler],
    settings: Settings,
    sensor_source: Optional[QueueSensorSource] = None,
) -> FastAPI:
    """Create the local FastAPI server."""
    app = FastAPI(
        title="Pocket Guardian API",
        description="Local API for monitoring and controlling the pocket guardian",
        version=__version__,
    )

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "service": settings.service_name}

    @app.get("/status")
    async def get_status():
        """Monitor, session and background scheduler status."""
        status = monitor.get_status().model_dump(mode="json")
        status["background"] = (
            scheduler.get_status().model_dump(mode="json") if scheduler else None
        )
        return status

    @app.post("/samples")
    async def push_samples(batch: SampleBatch):
        if sensor_source is None:
            raise HTTPException(status_code=404, detail="Sample ingestion is not enabled")
        accepted = sensor_source.push(batch.samples)
        if accepted == 0:
            raise HTTPException(status_code=503, detail="Monitor is not consuming samples")
        return {"status": "accepted", "count": accepted}

    @app.post("/trigger")
    async def trigger_alert():
        """Start an alert manually."""
        try:
            snapshot = await monitor.trigger_manual()
        except SessionError as e:
            raise HTTPException(status_code=409, detail=str(e))
        logger.info("Manual alert triggered via API", session_id=snapshot.session_id)
        return snapshot.model_dump(mode="json")

    @app.post("/cancel")
    async def cancel_alert():
        try:
            snapshot = await monitor.cancel_session()
        except SessionError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return snapshot.model_dump(mode="json")

    @app.post("/retry")
    async def retry_alert():
        """Redispatch the evidence of the last failed alert."""
        try:
            snapshot = await monitor.retry_dispatch()
        except SessionError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return snapshot.model_dump(mode="json")

    @app.post("/test-alert")
    async def test_alert():
        """Send a test alert to every emergency contact."""
        try:
            report = await monitor.test_dispatch()
        except SessionError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return {
            "success": report.success,
            "successful_contacts": report.successful_contacts,
            "report": report.model_dump(mode="json"),
        }

    @app.post("/arm")
    async def arm():
        monitor.arm()
        return {"status": "armed"}

    @app.post("/disarm")
    async def disarm():
        monitor.disarm()
        return {"status": "disarmed"}

    @app.post("/auto-mode")
    async def set_auto_mode(update: AutoModeUpdate):
        monitor.set_auto_mode(update.enabled)
        return {"status": "success", "auto_mode": update.enabled, "armed": monitor.armed}

    @app.put("/sensitivity/{level}")
    async def set_sensitivity(level: SensitivityLevel):
        monitor.set_sensitivity(level)
        return {"status": "success", "sensitivity": level.value}

    @app.post("/background/tick")
    async def background_tick():
        """Run one background pass immediately."""
        if scheduler is None:
            raise HTTPException(status_code=404, detail="Background scheduler is not configured")
        result = await scheduler.on_tick()
        return result.model_dump(mode="json")

    return app
