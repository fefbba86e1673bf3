"""
FlowGate API - result artifacts.

Artifacts are streamed straight from the backend. When nothing can be
served the endpoints answer with a small inline HTML message (404), never
with a server error.
"""

from html import escape

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse, StreamingResponse

from flowgate.api.dependencies import get_accessible_analysis, get_orchestrator
from flowgate.core.exceptions import NoResultError
from flowgate.core.orchestrator import Orchestrator
from flowgate.core.result_retriever import ResultSelector
from flowgate.core.schemas.analysis import Analysis
from flowgate.core.schemas.job_result import JobResult

router = APIRouter()


def no_result_response(error: NoResultError) -> HTMLResponse:
    return HTMLResponse(
        content=f'<div class="alert alert-danger">{escape(error.message)}</div>',
        status_code=404,
    )


def _serve(
    orchestrator: Orchestrator,
    analysis: Analysis,
    selector: ResultSelector,
    download: bool,
):
    try:
        artifact = orchestrator.retriever.retrieve(analysis, selector, download)
    except NoResultError as e:
        return no_result_response(e)
    return StreamingResponse(
        artifact.stream, media_type=artifact.content_type, headers=artifact.headers
    )


@router.get("/analyses/{analysis_id}/result")
def default_result(
    download: bool = False,
    analysis: Analysis = Depends(get_accessible_analysis),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """The analysis' rendered report (``render_result``)."""
    return _serve(orchestrator, analysis, ResultSelector.default(), download)


@router.get("/analyses/{analysis_id}/files")
def named_output(
    path: str,
    download: bool = False,
    analysis: Analysis = Depends(get_accessible_analysis),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    return _serve(orchestrator, analysis, ResultSelector.output(path), download)


@router.get("/analyses/{analysis_id}/stderr")
def error_log(
    download: bool = False,
    analysis: Analysis = Depends(get_accessible_analysis),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    return _serve(orchestrator, analysis, ResultSelector.error(), download)


@router.get("/analyses/{analysis_id}/bundle")
def zip_bundle(
    download: bool = False,
    analysis: Analysis = Depends(get_accessible_analysis),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    return _serve(orchestrator, analysis, ResultSelector.bundle(), download)


@router.get("/analyses/{analysis_id}/job-result", response_model=JobResult)
def job_result(
    analysis: Analysis = Depends(get_accessible_analysis),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """The backend's job record, for listing outputs."""
    result = orchestrator.retriever.job_result(analysis)
    if result is None:
        return no_result_response(NoResultError())
    return result
