"""
GenePattern REST API client.

Submits jobs to ``/gp/rest/v1/jobs``, resolves task names to LSIDs, uploads
local input files to the server's job-input area, and projects job records
onto ``JobResult``.
"""

import os
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import quote

from flowgate.backends.base_client import BackendClient, submission_error_from
from flowgate.core.exceptions import NotFoundError, SubmissionError
from flowgate.core.schemas.catalog import AnalysisServer, Credentials, Module
from flowgate.core.schemas.job_result import JobResult, JobStatusBlock, OutputFile
from flowgate.core.schemas.parameters import ResolvedParameter, ResolvedParameters
from flowgate.core.server_registry import BackendKind
from flowgate.utils.logger import get_logger

logger = get_logger(__name__)

LSID_PREFIX = "urn:"


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp as reported by GenePattern or Galaxy."""
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        logger.debug(f"Unparseable timestamp '{value}'")
        return None


def job_result_from_payload(payload: Dict[str, Any], status_code: int = 200) -> JobResult:
    """Project a GenePattern job record onto a ``JobResult``."""
    status = payload.get("status") or {}
    outputs = []
    for output in payload.get("outputFiles") or []:
        link = output.get("link") or {}
        outputs.append(
            OutputFile(
                path=output.get("path") or link.get("name") or "",
                link=link.get("href"),
                content_type=output.get("contentType"),
                size=output.get("fileLength"),
            )
        )

    return JobResult(
        status_code=status_code,
        output_files=outputs,
        status=JobStatusBlock(
            is_finished=bool(status.get("isFinished", False)),
            has_error=bool(status.get("hasError", False)),
            is_pending=bool(status.get("isPending", False)),
            message=status.get("statusMessage"),
            stderr_location=status.get("stderrLocation"),
        ),
        completed_at=parse_timestamp(
            status.get("completedInGp") or payload.get("dateCompleted")
        ),
    )


class GenePatternRestClient(BackendClient):
    """Client for GenePattern servers reached over the REST API."""

    kind = BackendKind.GENEPATTERN_REST

    JOBS_PATH = "/gp/rest/v1/jobs"
    TASKS_PATH = "/gp/rest/v1/tasks"
    UPLOAD_PATH = "/gp/rest/v1/data/upload/job_input"

    def submit(
        self,
        server: AnalysisServer,
        module: Module,
        parameters: ResolvedParameters,
        credentials: Credentials,
    ) -> str:
        lsid = self.resolve_lsid(server, module.name, credentials)
        body = {
            "lsid": lsid,
            "params": [
                {"name": p.key, "values": self.submission_values(server, p, credentials)}
                for p in parameters
            ],
        }

        response = self._request(
            "POST",
            f"{server.url}{self.JOBS_PATH}",
            headers=self.auth_headers(credentials),
            error_cls=SubmissionError,
            json=body,
        )
        try:
            job_id = response.json().get("jobId")
        except ValueError as e:
            raise submission_error_from(e, "Invalid job submission response") from e
        if job_id in (None, ""):
            raise SubmissionError(
                "GenePattern accepted the request but returned no job id",
                {"server": server.name},
            )

        logger.info(f"Submitted {lsid} to {server.name} as job {job_id}")
        return str(job_id)

    def resolve_lsid(
        self, server: AnalysisServer, task_name: str, credentials: Credentials
    ) -> str:
        """Return the LSID of a task, looking up plain task names on the server."""
        if task_name.startswith(LSID_PREFIX):
            return task_name

        response = self._request(
            "GET",
            f"{server.url}{self.TASKS_PATH}/{quote(task_name, safe='')}",
            headers=self.auth_headers(credentials),
            error_cls=SubmissionError,
        )
        try:
            lsid = response.json().get("lsid")
        except ValueError as e:
            raise submission_error_from(e, f"Invalid task record for '{task_name}'") from e
        if not lsid:
            raise SubmissionError(
                f"Task '{task_name}' has no LSID on {server.name}",
                {"task": task_name},
            )
        return lsid

    def submission_values(
        self, server: AnalysisServer, parameter: ResolvedParameter, credentials: Credentials
    ) -> List[str]:
        """
        Values to send for one parameter.

        Generated files and file-typed values that exist locally are uploaded
        first and replaced by the server-side location.
        """
        if parameter.generated is not None:
            return [
                self.upload(
                    server,
                    parameter.generated.name,
                    parameter.generated.content.encode("utf-8"),
                    credentials,
                )
            ]
        if not parameter.is_file:
            return list(parameter.values)

        values = []
        for value in parameter.values:
            if os.path.isfile(value):
                with open(value, "rb") as handle:
                    values.append(
                        self.upload(server, os.path.basename(value), handle, credentials)
                    )
            else:
                values.append(value)
        return values

    def upload(
        self, server: AnalysisServer, file_name: str, content: Any, credentials: Credentials
    ) -> str:
        """Upload one job input file and return its server-side location."""
        headers = self.auth_headers(credentials)
        headers["Content-Type"] = "application/octet-stream"
        response = self._request(
            "POST",
            f"{server.url}{self.UPLOAD_PATH}",
            headers=headers,
            error_cls=SubmissionError,
            params={"name": file_name},
            data=content,
        )
        location = response.headers.get("Location") or response.text.strip()
        if not location:
            raise SubmissionError(
                f"Upload of '{file_name}' returned no location", {"file": file_name}
            )
        logger.debug(f"Uploaded {file_name} to {server.name}")
        return location

    def status(
        self, server: AnalysisServer, job_id: str, credentials: Credentials
    ) -> JobResult:
        response = self._request(
            "GET",
            f"{server.url}{self.JOBS_PATH}/{job_id}",
            headers=self.auth_headers(credentials),
        )
        try:
            payload = response.json()
        except ValueError:
            logger.warning(f"Job {job_id} on {server.name} returned a non-JSON body")
            return JobResult(status_code=502, reason="Invalid job record")
        return job_result_from_payload(payload, response.status_code)

    def fetch_output(
        self,
        server: AnalysisServer,
        job_id: str,
        output_path: str,
        credentials: Credentials,
    ) -> Iterator[bytes]:
        result = self.status(server, job_id, credentials)
        output = result.find_output(output_path)
        if output is None:
            raise NotFoundError(
                f"Job {job_id} has no output '{output_path}'",
                {"job_id": job_id, "path": output_path},
            )
        return self.open_output(server, job_id, output, credentials)

    def open_output(
        self,
        server: AnalysisServer,
        job_id: str,
        output: OutputFile,
        credentials: Credentials,
    ) -> Iterator[bytes]:
        url = output.link or f"{server.url}/gp/jobResults/{job_id}/{output.path}"
        return self._stream(url, headers=self.auth_headers(credentials))

    def fetch_location(
        self,
        server: AnalysisServer,
        job_id: str,
        location: str,
        credentials: Credentials,
    ) -> Iterator[bytes]:
        return self._stream(location, headers=self.auth_headers(credentials))

    def fetch_zip_bundle(
        self, server: AnalysisServer, job_id: str, credentials: Credentials
    ) -> Iterator[bytes]:
        return self._stream(
            f"{server.url}{self.JOBS_PATH}/{job_id}/download",
            headers=self.auth_headers(credentials),
        )

    def list_modules(
        self, server: AnalysisServer, credentials: Credentials
    ) -> List[Dict[str, Any]]:
        response = self._request(
            "GET",
            f"{server.url}{self.TASKS_PATH}/all.json",
            headers=self.auth_headers(credentials),
        )
        return response.json().get("all_modules", [])
