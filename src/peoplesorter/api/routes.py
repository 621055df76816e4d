"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, File, HTTPException, Request, Response, UploadFile, status

from peoplesorter.api.middleware import verify_api_key
from peoplesorter.api.schemas import (
    CategoryGroup,
    ClassifiedImageInfo,
    ErrorResponse,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
    ResultsResponse,
    RunStatusResponse,
)
from peoplesorter.classification.pipeline import ImageInput
from peoplesorter.ml.loader import ModelUnavailableError
from peoplesorter.ml.model_manager import MODEL_REGISTRY, lightest_model

if TYPE_CHECKING:
    from peoplesorter.classification.session import ClassificationSession, RunStatus
    from peoplesorter.classification.store import ClassifiedImage
    from peoplesorter.config import Settings
    from peoplesorter.ml.inference import InferencePool
    from peoplesorter.ml.loader import ModelLoader
    from peoplesorter.ml.model_manager import ModelManager

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_loader(request: Request) -> ModelLoader:
    loader: ModelLoader = request.app.state.model_loader
    return loader


def _get_session(request: Request) -> ClassificationSession:
    session: ClassificationSession = request.app.state.session
    return session


def _status_response(run: RunStatus) -> RunStatusResponse:
    return RunStatusResponse(
        run_id=run.run_id,
        state=run.state,
        total=run.stats.total,
        processed=run.stats.processed,
        failed=run.stats.failed,
        percent=run.stats.percent,
    )


def _image_info(request: Request, image: ClassifiedImage) -> ClassifiedImageInfo:
    return ClassifiedImageInfo(
        id=image.id,
        url=str(request.app.url_path_for("get_image", handle=image.display_handle)),
        category=image.category,
        filename=image.filename,
        person_count=image.person_count,
    )


@router.post(
    "/runs",
    response_model=RunStatusResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse}},
    summary="Start classifying a set of uploaded files",
)
async def start_run(
    request: Request,
    files: Annotated[list[UploadFile], File(description="Dropped or picked files; non-images are ignored")],
) -> RunStatusResponse:
    """Replace any previous results with a new run over the uploaded images."""
    session = _get_session(request)
    inputs = [
        ImageInput(
            filename=upload.filename or "",
            content_type=upload.content_type or "",
            data=await upload.read(),
        )
        for upload in files
    ]
    try:
        run = await session.start(inputs)
    except ModelUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return _status_response(run)


@router.get(
    "/runs/current",
    response_model=RunStatusResponse,
    summary="Progress of the current run",
)
async def current_run(request: Request) -> RunStatusResponse:
    return _status_response(_get_session(request).status)


@router.post(
    "/runs/current/cancel",
    response_model=RunStatusResponse,
    summary="Cancel the current run",
)
async def cancel_run(request: Request) -> RunStatusResponse:
    """Stop the run in flight. Images classified so far are kept."""
    run = await _get_session(request).cancel()
    return _status_response(run)


@router.get(
    "/results",
    response_model=ResultsResponse,
    summary="Classified images grouped by category",
)
async def list_results(request: Request) -> ResultsResponse:
    store = _get_session(request).store
    groups = [
        CategoryGroup(
            category=category,
            count=len(images),
            images=[_image_info(request, image) for image in images],
        )
        for category, images in store.grouped()
    ]
    return ResultsResponse(total=len(store), categories=groups)


@router.delete(
    "/results/{image_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a classified image",
)
async def remove_result(request: Request, image_id: str) -> Response:
    """Remove one image and free its data. Unknown ids are ignored."""
    _get_session(request).store.remove(image_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/images/{handle}",
    responses={status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}},
    summary="Original bytes of a classified image",
)
async def get_image(request: Request, handle: str) -> Response:
    blob = _get_session(request).store.handles.get(handle)
    if blob is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Image not found")
    return Response(content=blob.data, media_type=blob.content_type, headers={"Cache-Control": "private"})


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    loader = _get_loader(request)
    manager: ModelManager = request.app.state.model_manager
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        model_state=loader.state,
        model_error=loader.error,
        models_loaded=manager.get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models() -> ModelsResponse:
    """Return the registered detectors; the lightest one is the active detector."""
    active = lightest_model().name
    models = [
        ModelInfo(
            name=spec.name,
            task=spec.task,
            status="active" if spec.name == active else "available",
            license=spec.license,
        )
        for spec in MODEL_REGISTRY.values()
    ]
    return ModelsResponse(models=models)
