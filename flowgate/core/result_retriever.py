"""
Result retrieval for finished analyses.

Resolves which artifact the user asked for (the default rendered report, a
named output, the error log or a zip bundle of everything), checks it
against the backend's job record and hands back a lazy byte stream with the
headers needed to serve it. Every failure on the way becomes a
``NoResultError``, which the API renders as an inline message.
"""

import itertools
import mimetypes
import posixpath
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, Optional, Tuple

from pydantic import BaseModel

from flowgate.backends import BackendClient, ClientRegistry
from flowgate.core.exceptions import ConfigurationError, FlowgateError, NoResultError
from flowgate.core.schemas.analysis import DEFAULT_RENDER_RESULT, Analysis
from flowgate.core.schemas.catalog import AnalysisServer, Credentials
from flowgate.core.schemas.job_result import JobResult
from flowgate.core.server_registry import ServerRegistry
from flowgate.utils.logger import get_logger

logger = get_logger(__name__)

STDERR_FILE_NAME = "stderr.txt"
DOWNLOAD_CONTENT_TYPE = "application/octet-stream"
ZIP_CONTENT_TYPE = "application/zip"
FALLBACK_CONTENT_TYPE = "text/html"


class ResultSelectorKind(str, Enum):
    DEFAULT = "default"
    OUTPUT = "output"
    ERROR = "error"
    BUNDLE = "bundle"


class ResultSelector(BaseModel):
    """Which artifact of a job to retrieve."""

    kind: ResultSelectorKind = ResultSelectorKind.DEFAULT
    path: Optional[str] = None

    @classmethod
    def default(cls) -> "ResultSelector":
        return cls(kind=ResultSelectorKind.DEFAULT)

    @classmethod
    def output(cls, path: str) -> "ResultSelector":
        return cls(kind=ResultSelectorKind.OUTPUT, path=path)

    @classmethod
    def error(cls) -> "ResultSelector":
        return cls(kind=ResultSelectorKind.ERROR)

    @classmethod
    def bundle(cls) -> "ResultSelector":
        return cls(kind=ResultSelectorKind.BUNDLE)


@dataclass
class RetrievedArtifact:
    """A streamable artifact plus how to serve it."""

    stream: Iterator[bytes]
    content_type: str
    filename: str
    headers: Dict[str, str] = field(default_factory=dict)

    def read_all(self) -> bytes:
        return b"".join(self.stream)


def inline_content_type(path: str, hint: Optional[str] = None) -> str:
    """Content type for inline display: backend hint, then extension, then HTML."""
    if hint:
        return hint
    guessed, _ = mimetypes.guess_type(path)
    return guessed or FALLBACK_CONTENT_TYPE


def _code_suffix(code: int, reason: Optional[str]) -> str:
    return f" ({code} {reason})" if reason else f" ({code})"


def _primed(stream: Iterator[bytes]) -> Iterator[bytes]:
    """Pull the first chunk now so connection failures surface before serving."""
    iterator = iter(stream)
    try:
        first = next(iterator)
    except StopIteration:
        return iter(())
    return itertools.chain([first], iterator)


class ResultRetriever:
    """Streams result artifacts of analyses back to the user."""

    def __init__(self, registry: ServerRegistry, clients: ClientRegistry):
        self.registry = registry
        self.clients = clients

    def retrieve(
        self,
        analysis: Analysis,
        selector: Optional[ResultSelector] = None,
        download: bool = False,
    ) -> RetrievedArtifact:
        """
        Fetch one artifact of ``analysis``.

        Args:
            analysis: Analysis whose job produced the artifact
            selector: What to fetch (default: the rendered report)
            download: Serve as an attachment instead of inline

        Returns:
            RetrievedArtifact: stream, content type, filename and headers

        Raises:
            NoResultError: The artifact is not available, for whatever reason
        """
        selector = selector or ResultSelector.default()
        if analysis.is_failed_on_submit:
            raise NoResultError(details={"analysis_id": analysis.id})

        client, server, credentials = self._backend_for(analysis)
        job_id = analysis.job_number

        if selector.kind == ResultSelectorKind.BUNDLE:
            stream = self._open(
                lambda: client.fetch_zip_bundle(server, job_id, credentials), analysis
            )
            return self._artifact(
                stream, f"{job_id}.zip", ZIP_CONTENT_TYPE, download
            )

        result = self._job_result_or_raise(client, server, credentials, analysis)

        if selector.kind == ResultSelectorKind.ERROR:
            location = result.status.stderr_location
            if location:
                filename = posixpath.basename(location.split("?", 1)[0]) or STDERR_FILE_NAME
                stream = self._open(
                    lambda: client.fetch_location(server, job_id, location, credentials),
                    analysis,
                )
                return self._artifact(
                    stream, filename, inline_content_type(filename, "text/plain"), download
                )
            path = STDERR_FILE_NAME
        elif selector.kind == ResultSelectorKind.OUTPUT:
            path = selector.path or ""
        else:
            path = analysis.render_result or DEFAULT_RENDER_RESULT

        output = result.find_output(path)
        if output is None:
            logger.info(f"Job {job_id} has no output '{path}'")
            raise NoResultError(details={"analysis_id": analysis.id, "path": path})

        stream = self._open(
            lambda: client.open_output(server, job_id, output, credentials), analysis
        )
        return self._artifact(
            stream, path, inline_content_type(path, output.content_type), download
        )

    def job_result(self, analysis: Analysis) -> Optional[JobResult]:
        """The job record of ``analysis``, or None when it cannot be had."""
        if analysis.is_failed_on_submit:
            return None
        try:
            client, server, credentials = self._backend_for(analysis)
            return client.status(server, analysis.job_number, credentials)
        except FlowgateError as e:
            logger.info(f"No job record for job {analysis.job_number}: {e}")
            return None

    def _job_result_or_raise(
        self,
        client: BackendClient,
        server: AnalysisServer,
        credentials: Credentials,
        analysis: Analysis,
    ) -> JobResult:
        try:
            result = client.status(server, analysis.job_number, credentials)
        except FlowgateError as e:
            code = e.details.get("status_code")
            suffix = _code_suffix(code, e.details.get("reason")) if code else ""
            logger.info(f"Status of job {analysis.job_number} unavailable: {e}")
            raise NoResultError(
                f"{NoResultError.DEFAULT_MESSAGE}{suffix}",
                {"analysis_id": analysis.id},
            ) from e

        if not result.is_success:
            suffix = _code_suffix(result.status_code, result.reason)
            raise NoResultError(
                f"{NoResultError.DEFAULT_MESSAGE}{suffix}",
                {"analysis_id": analysis.id, "status_code": result.status_code},
            )
        return result

    def _open(self, fetch, analysis: Analysis) -> Iterator[bytes]:
        try:
            return _primed(fetch())
        except FlowgateError as e:
            logger.info(f"Artifact of job {analysis.job_number} unavailable: {e}")
            raise NoResultError(details={"analysis_id": analysis.id}) from e

    @staticmethod
    def _artifact(
        stream: Iterator[bytes], filename: str, inline_type: str, download: bool
    ) -> RetrievedArtifact:
        if download:
            return RetrievedArtifact(
                stream=stream,
                content_type=DOWNLOAD_CONTENT_TYPE,
                filename=filename,
                headers={"Content-Disposition": f"attachment; filename={filename}"},
            )
        return RetrievedArtifact(stream=stream, content_type=inline_type, filename=filename)

    def _backend_for(
        self, analysis: Analysis
    ) -> Tuple[BackendClient, AnalysisServer, Credentials]:
        module = self.registry.get_module(analysis.module_id)
        if module is None:
            raise NoResultError(details={"analysis_id": analysis.id})
        try:
            server = self.registry.server_for(module)
            kind = self.registry.classify(server)
        except ConfigurationError as e:
            raise NoResultError(details={"analysis_id": analysis.id}) from e
        return self.clients.get(kind), server, self.registry.credentials_for(server)
