from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routers import pumps, sensors, uploads
from .. import config_store
from ..control import PlantNode, build_node
from ..logs import setup_logging
from ..settings import (
    OUTPUT_PINS,
    DEFAULT_SAMPLING_S,
    DEFAULT_ON_S,
    DEFAULT_SOAK_S,
    CAPTURE_INTERVAL_S,
    UPLOAD_URL,
    SNAPSHOT_DIR,
    THINGSPEAK_HOST,
    FIELD_IMAGE_URL,
    FIELD_MOISTURE,
    APP_HOST,
    APP_PORT,
    LOG_LEVEL,
)


def create_app(
    node: Optional[PlantNode] = None,
    node_factory: Callable[[], PlantNode] = build_node,
) -> FastAPI:
    """
    Build the API around a PlantNode.

    With no node given, the lifespan builds one from the hardware settings,
    starts its control loop and stops it again on shutdown. A node passed in
    is served as-is and its lifecycle stays with the caller.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if app.state.node is None:
            owned = node_factory()
            app.state.node = owned
            owned.start()
        try:
            yield
        finally:
            if owned is not None:
                owned.stop()
                app.state.node = None

    app = FastAPI(title="plantnode API", lifespan=lifespan)
    app.state.node = node

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(pumps.router)
    app.include_router(sensors.router)
    app.include_router(uploads.router)

    @app.get("/config", tags=["system"])
    def get_config():
        """Global node configuration."""
        return {
            "pins": OUTPUT_PINS,
            "defaults": {
                "sampling_s": DEFAULT_SAMPLING_S,
                "on_s": DEFAULT_ON_S,
                "soak_s": DEFAULT_SOAK_S,
                "capture_interval_s": CAPTURE_INTERVAL_S,
            },
            "upload": {
                "configured": bool(UPLOAD_URL),
                "snapshot_dir": str(SNAPSHOT_DIR) if SNAPSHOT_DIR else None,
                "telemetry_host": THINGSPEAK_HOST,
                "fields": {"image_url": FIELD_IMAGE_URL, "moisture": FIELD_MOISTURE},
            },
            "calibration": config_store.load_calibration(),
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    setup_logging(LOG_LEVEL)
    uvicorn.run("plantnode.api.main:app", host=APP_HOST, port=APP_PORT)
