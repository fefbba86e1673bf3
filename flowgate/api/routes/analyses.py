"""
FlowGate API - analysis submission, listing, status checks and deletion.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from flowgate.api.dependencies import (
    UserContext,
    get_accessible_analysis,
    get_current_user,
    get_orchestrator,
)
from flowgate.api.models import (
    AnalysisCreate,
    AnalysisListResponse,
    AnalysisResponse,
    BaseResponse,
    CheckStatusResponse,
)
from flowgate.core.orchestrator import Orchestrator
from flowgate.core.schemas.analysis import Analysis
from flowgate.core.status_tracker import PollScope, periodic_check_needed
from flowgate.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.post("/analyses", response_model=AnalysisResponse, status_code=201)
def create_analysis(
    payload: AnalysisCreate,
    user: UserContext = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """
    Create an analysis and submit it to the module's server.

    A rejected submission still creates the analysis, in status ERROR with
    the backend's message.
    """
    module = orchestrator.registry.get_module(payload.module_id)
    if module is None:
        raise HTTPException(status_code=404, detail=f"Module {payload.module_id} not found")

    dataset = None
    if payload.dataset_id is not None:
        dataset = orchestrator.registry.get_dataset(payload.dataset_id)
        if dataset is None:
            raise HTTPException(
                status_code=404, detail=f"Dataset {payload.dataset_id} not found"
            )

    analysis = Analysis(
        analysis_name=payload.analysis_name,
        analysis_description=payload.analysis_description,
        user=user.username,
        experiment_id=payload.experiment_id,
        module_id=module.id,
        dataset_id=payload.dataset_id,
    )
    result = orchestrator.launcher.launch(analysis, module, dataset, payload.params)

    return AnalysisResponse(
        success=result.submitted,
        message=result.message or f"Analysis submitted as job {result.job_number}",
        analysis=result.analysis,
    )


@router.get("/analyses", response_model=AnalysisListResponse)
def list_analyses(
    experiment_id: Optional[int] = None,
    user: UserContext = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Administrators see every analysis; users see their own visible ones."""
    if user.is_admin:
        analyses = orchestrator.store.list(experiment_id=experiment_id)
    else:
        analyses = orchestrator.store.list(
            experiment_id=experiment_id, user=user.username, include_hidden=False
        )
    return AnalysisListResponse(
        analyses=analyses,
        periodic_check_needed=periodic_check_needed(analyses),
    )


@router.post("/analyses/check-status", response_model=CheckStatusResponse)
def check_status(
    experiment_id: Optional[int] = None,
    user: UserContext = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Poll the backends for the caller's unfinished analyses."""
    if user.is_admin:
        scope = PollScope.all(experiment_id=experiment_id)
    else:
        scope = PollScope.owner(user.username, experiment_id=experiment_id)

    report = orchestrator.tracker.poll(scope)
    return CheckStatusResponse(
        message=f"{len(report.updated)} analyses updated",
        report=report,
        upd_chk_status="pending" if report.periodic_check_needed else "clear",
    )


@router.get("/analyses/{analysis_id}", response_model=AnalysisResponse)
def get_analysis(analysis: Analysis = Depends(get_accessible_analysis)):
    return AnalysisResponse(analysis=analysis)


@router.delete("/analyses/{analysis_id}", response_model=BaseResponse)
def delete_analysis(
    erase: bool = False,
    analysis: Analysis = Depends(get_accessible_analysis),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Soft delete (hide) an analysis, or remove it with ``erase=true``."""
    if erase:
        orchestrator.store.erase(analysis.id)
        return BaseResponse(message=f"Analysis {analysis.id} deleted")

    orchestrator.store.hide(analysis.id)
    return BaseResponse(message=f"Analysis {analysis.id} hidden")
