"""
Job launcher: the entry point of the analysis lifecycle.

One call to ``launch`` performs exactly one submission attempt. Binding and
configuration problems abort before any network call and persist nothing;
once the backend has been called the Analysis is persisted exactly once,
either PROCESSING with the backend job id or ERROR with the failure message.
Submissions are never retried.
"""

from typing import Any, Mapping, Optional

from pydantic import BaseModel

from flowgate.backends import ClientRegistry
from flowgate.core.analysis_store import AnalysisStore
from flowgate.core.exceptions import SubmissionError
from flowgate.core.parameter_binder import ModuleParameterBinder
from flowgate.core.schemas.analysis import (
    DEFAULT_RENDER_RESULT,
    FAILED_JOB_NUMBER,
    Analysis,
    AnalysisStatus,
)
from flowgate.core.schemas.catalog import Dataset, Module
from flowgate.core.server_registry import ServerRegistry
from flowgate.utils.logger import get_logger

logger = get_logger(__name__)


class LaunchResult(BaseModel):
    """Outcome of one submission attempt."""

    job_number: str
    status: AnalysisStatus
    message: Optional[str] = None
    analysis: Analysis

    @property
    def submitted(self) -> bool:
        return self.status == AnalysisStatus.PROCESSING


class JobLauncher:
    """Orchestrates a single submission of an Analysis to its backend."""

    def __init__(
        self,
        registry: ServerRegistry,
        clients: ClientRegistry,
        store: AnalysisStore,
        binder: Optional[ModuleParameterBinder] = None,
    ):
        self.registry = registry
        self.clients = clients
        self.store = store
        self.binder = binder or ModuleParameterBinder()

    def launch(
        self,
        analysis: Analysis,
        module: Module,
        dataset: Optional[Dataset],
        raw_form_values: Optional[Mapping[str, Any]] = None,
    ) -> LaunchResult:
        """
        Submit ``analysis`` and persist the outcome.

        Args:
            analysis: New, unpersisted Analysis in status INIT
            module: Module to run
            dataset: Dataset bound to the run, if any
            raw_form_values: Submission form values

        Returns:
            LaunchResult: job number, resulting status and message

        Raises:
            ConfigurationError: Module/server binding unusable (nothing persisted)
            ParameterValidationError: Form values invalid (nothing persisted)
        """
        server = self.registry.server_for(module)
        kind = self.registry.classify(server)
        parameters = self.binder.bind(module, dataset, raw_form_values)
        if parameters.experiment_id is None:
            parameters.experiment_id = analysis.experiment_id

        client = self.clients.get(kind)
        credentials = self.registry.credentials_for(server)

        update = {
            "module_id": module.id,
            "dataset_id": dataset.id if dataset is not None else analysis.dataset_id,
            "render_result": module.render_result
            or analysis.render_result
            or DEFAULT_RENDER_RESULT,
        }
        try:
            job_number = client.submit(server, module, parameters, credentials)
        except SubmissionError as e:
            logger.error(
                f"Submission of '{analysis.analysis_name}' to {server.name} failed: "
                f"{e.message}"
            )
            update.update(
                job_number=FAILED_JOB_NUMBER,
                analysis_status=AnalysisStatus.ERROR,
                message=e.message,
            )
        else:
            logger.info(
                f"Analysis '{analysis.analysis_name}' submitted to {server.name} "
                f"({kind.value}) as job {job_number}"
            )
            update.update(
                job_number=job_number,
                analysis_status=AnalysisStatus.PROCESSING,
                message=None,
            )

        stored = self.store.add(analysis.model_copy(update=update))
        return LaunchResult(
            job_number=stored.job_number,
            status=stored.analysis_status,
            message=stored.message,
            analysis=stored,
        )
