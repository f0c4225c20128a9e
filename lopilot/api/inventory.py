"""
Model and context API endpoints - Installed models and ambient context feed.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from .deps import get_orchestrator
from ..core.model_catalog import display_name
from ..core.orchestrator import SessionOrchestrator
from ..models.api import ActivationRequest, ModelInfo, ModelList, RunningAppsRequest, SelectModelRequest

router = APIRouter(tags=["models"])


def _model_list(orchestrator: SessionOrchestrator) -> ModelList:
    return ModelList(
        installed=[
            ModelInfo(name=name, display_name=display_name(name))
            for name in sorted(orchestrator.installed_models)
        ],
        selected=orchestrator.selected_model,
    )


@router.get("/models", response_model=ModelList)
async def list_models(orchestrator: SessionOrchestrator = Depends(get_orchestrator)):
    """Refresh and return the locally installed models."""
    await orchestrator.refresh_models()
    return _model_list(orchestrator)


@router.put("/models/selected", response_model=ModelList)
async def select_model(body: SelectModelRequest, orchestrator: SessionOrchestrator = Depends(get_orchestrator)):
    if body.model not in orchestrator.installed_models:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Model {body.model} is not installed")
    await orchestrator.select_model(body.model)
    return _model_list(orchestrator)


@router.post("/context/activation", status_code=status.HTTP_204_NO_CONTENT)
async def record_activation(body: ActivationRequest, orchestrator: SessionOrchestrator = Depends(get_orchestrator)):
    """Called by the desktop shell whenever another app comes to the front."""
    orchestrator.ambient.record_activation(body.app_name)


@router.put("/context/running-apps", status_code=status.HTTP_204_NO_CONTENT)
async def set_running_apps(body: RunningAppsRequest, orchestrator: SessionOrchestrator = Depends(get_orchestrator)):
    orchestrator.ambient.set_running_applications(body.names)
