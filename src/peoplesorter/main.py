"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from peoplesorter.api.routes import router
from peoplesorter.classification.handles import HandleRegistry
from peoplesorter.classification.session import ClassificationSession
from peoplesorter.classification.store import ResultStore
from peoplesorter.config import Settings, get_settings
from peoplesorter.ml.detector import load_detector
from peoplesorter.ml.inference import InferencePool
from peoplesorter.ml.loader import ModelLoader
from peoplesorter.ml.model_manager import OnnxModelManager, lightest_model

logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).parent / "static"


def init_state(app: FastAPI, settings: Settings) -> None:
    """Build the service objects and attach them to ``app.state``.

    The model loader is created but not started.
    """
    app.state.settings = settings
    app.state.inference_pool = InferencePool(settings)
    app.state.model_manager = OnnxModelManager(settings)
    app.state.model_loader = ModelLoader(
        partial(load_detector, app.state.model_manager, lightest_model().name),
    )
    app.state.session = ClassificationSession(
        app.state.model_loader,
        app.state.inference_pool,
        ResultStore(HandleRegistry()),
        settings,
    )


async def teardown_state(app: FastAPI) -> None:
    """Stop work in flight and release everything held in memory."""
    await app.state.session.close()
    await app.state.model_loader.close()
    app.state.inference_pool.shutdown()
    app.state.model_manager.shutdown()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting PeopleSorter (device=%s, max_concurrent=%s, batch_concurrency=%s, detector=%s)",
        settings.device,
        settings.max_concurrent,
        settings.batch_concurrency,
        lightest_model().name,
    )

    init_state(app, settings)
    app.state.model_loader.start()

    logger.info("PeopleSorter ready, detector loading in background")
    yield

    logger.info("Shutting down PeopleSorter")
    await teardown_state(app)
    logger.info("PeopleSorter shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="PeopleSorter",
        description="Sorts uploaded images by the number of people detected in them",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    application.mount("/", StaticFiles(directory=STATIC_DIR, html=True), name="static")
    return application


app = create_app()


def run() -> None:
    """Serve the application with uvicorn using the configured host and port."""
    settings = get_settings()
    uvicorn.run("peoplesorter.main:app", host=settings.host, port=settings.port)
