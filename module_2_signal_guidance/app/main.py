import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from module_1_lane_detection.app.config.settings import load_settings
from module_2_signal_guidance.app.factory import build_controller
from module_2_signal_guidance.app.settings import get_settings
from module_2_signal_guidance.services.orchestrator import OrchestrationController


logger = logging.getLogger(__name__)
settings = get_settings()
lane_settings = load_settings()

controller = build_controller(settings, lane_settings)


class PositionFix(BaseModel):
    lat: float
    lon: float
    timestamp_ms: Optional[int] = Field(default=None, ge=0)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Guidance API ready for intersection %s",
        controller.detector.config.intersection_id,
    )
    try:
        yield
    finally:
        await controller.shutdown()


app = FastAPI(title="Module 2 Signal Guidance", version="0.1.0", lifespan=lifespan)

# Allow a display client to poll the API during local development.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_controller() -> OrchestrationController:
    return controller


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/guidance/status")
async def guidance_status(service: OrchestrationController = Depends(get_controller)) -> dict:
    return jsonable_encoder(service.status())


@app.post("/guidance/position")
async def guidance_position(
    fix: PositionFix,
    service: OrchestrationController = Depends(get_controller),
) -> dict:
    status = await service.handle_fix(fix.lat, fix.lon, fix.timestamp_ms)
    return jsonable_encoder(status)


@app.post("/guidance/reset", status_code=204)
async def guidance_reset(service: OrchestrationController = Depends(get_controller)) -> None:
    await service.reset()
