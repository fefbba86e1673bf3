"""
In-process mock backend.

Deterministic stand-in for a GenePattern server used by tests and demo
setups: job numbers come from a counter, jobs listed in ``finished_jobs``
report finished with an HTML report, and submission can be configured to
fail.
"""

import io
import threading
import zipfile
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set

from flowgate.backends.base_client import BackendClient, BackendClientConfig
from flowgate.core.exceptions import NotFoundError, SubmissionError
from flowgate.core.schemas.analysis import DEFAULT_RENDER_RESULT, parse_job_number
from flowgate.core.schemas.catalog import AnalysisServer, Credentials, Module
from flowgate.core.schemas.job_result import JobResult, JobStatusBlock, OutputFile
from flowgate.core.schemas.parameters import ResolvedParameters
from flowgate.core.server_registry import BackendKind
from flowgate.utils.logger import get_logger

logger = get_logger(__name__)

REPORT_TEMPLATE = "<html><body><h1>Mock report for job {job_id}</h1></body></html>"
STDERR_NAME = "stderr.txt"


class MockClient(BackendClient):
    """Deterministic in-memory backend."""

    kind = BackendKind.MOCK

    def __init__(
        self,
        finished_jobs: Iterable[int] = (36,),
        fail_on_submit: bool = False,
        start_job_number: int = 1,
        config: Optional[BackendClientConfig] = None,
    ):
        super().__init__(config)
        self.finished_jobs: Set[int] = set(finished_jobs)
        self.failed_jobs: Set[int] = set()
        self.fail_on_submit = fail_on_submit
        self.submissions: Dict[int, Dict[str, Any]] = {}
        self._next_job_number = start_job_number
        self._lock = threading.Lock()

    def submit(
        self,
        server: AnalysisServer,
        module: Module,
        parameters: ResolvedParameters,
        credentials: Credentials,
    ) -> str:
        if self.fail_on_submit:
            raise SubmissionError(
                f"Mock server {server.name} rejected the job", {"server": server.name}
            )
        with self._lock:
            job_number = self._next_job_number
            self._next_job_number += 1
            self.submissions[job_number] = {
                "module": module.name,
                "parameters": {p.key: list(p.values) for p in parameters},
            }
        logger.info(f"Mock job {job_number} accepted for module {module.name}")
        return str(job_number)

    def mark_finished(self, job_id: str) -> None:
        self.finished_jobs.add(self._job_number(job_id))

    def mark_failed(self, job_id: str) -> None:
        self.failed_jobs.add(self._job_number(job_id))

    def _job_number(self, job_id: str) -> int:
        number = parse_job_number(job_id)
        if number is None or number <= 0:
            raise NotFoundError(f"Unknown mock job '{job_id}'", {"job_id": job_id})
        return number

    def _files(self, job_number: int) -> Dict[str, bytes]:
        if job_number in self.failed_jobs:
            return {STDERR_NAME: f"job {job_number} failed\n".encode("utf-8")}
        if job_number in self.finished_jobs:
            return {
                DEFAULT_RENDER_RESULT: REPORT_TEMPLATE.format(job_id=job_number).encode(
                    "utf-8"
                )
            }
        return {}

    def status(
        self, server: AnalysisServer, job_id: str, credentials: Credentials
    ) -> JobResult:
        job_number = self._job_number(job_id)
        failed = job_number in self.failed_jobs
        finished = failed or job_number in self.finished_jobs
        outputs = [
            OutputFile(
                path=path,
                link=f"{server.url}/jobs/{job_number}/{path}",
                content_type="text/html" if path.endswith(".html") else "text/plain",
                size=len(content),
            )
            for path, content in self._files(job_number).items()
        ]
        return JobResult(
            output_files=outputs,
            status=JobStatusBlock(
                is_finished=finished,
                has_error=failed,
                is_pending=not finished,
            ),
            completed_at=datetime.now() if finished else None,
        )

    def fetch_output(
        self,
        server: AnalysisServer,
        job_id: str,
        output_path: str,
        credentials: Credentials,
    ) -> Iterator[bytes]:
        content = self._files(self._job_number(job_id)).get(output_path)
        if content is None:
            raise NotFoundError(
                f"Mock job {job_id} has no output '{output_path}'",
                {"job_id": job_id, "path": output_path},
            )
        return iter([content])

    def fetch_zip_bundle(
        self, server: AnalysisServer, job_id: str, credentials: Credentials
    ) -> Iterator[bytes]:
        files = self._files(self._job_number(job_id))
        if not files:
            raise NotFoundError(f"Mock job {job_id} has no outputs", {"job_id": job_id})
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as archive:
            for path, content in files.items():
                archive.writestr(path, content)
        return iter([buffer.getvalue()])

    def list_modules(
        self, server: AnalysisServer, credentials: Credentials
    ) -> List[Dict[str, Any]]:
        return [{"name": "MockModule", "lsid": "urn:lsid:flowgate.mock:module:1"}]
