"""
Abstract base class for compute backend clients.

This module defines the interface every backend client implements, plus the
shared HTTP plumbing: Basic authentication, timeouts, translation of
``requests`` failures into the FlowGate exception hierarchy, and chunked
streaming of remote artifacts.
"""

import base64
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterator, List, Optional, Type
from urllib.parse import urlsplit, urlunsplit

import requests
from pydantic import BaseModel

from flowgate.core.exceptions import (
    BackendError,
    NotFoundError,
    SubmissionError,
    TransientError,
)
from flowgate.core.schemas.catalog import AnalysisServer, Credentials, Module
from flowgate.core.schemas.job_result import JobResult, OutputFile
from flowgate.core.schemas.parameters import ResolvedParameters
from flowgate.core.server_registry import BackendKind
from flowgate.utils.logger import get_logger
from flowgate.version import __version__

logger = get_logger(__name__)

CHUNK_SIZE = 64 * 1024


class BackendClientConfig(BaseModel):
    """Configuration shared by all backend clients."""

    timeout: float = 30.0
    verify_ssl: bool = True
    chunk_size: int = CHUNK_SIZE
    user_agent: str = f"FlowGate-Orchestrator/{__version__}"


def basic_auth_header(credentials: Credentials) -> str:
    """Build an HTTP Basic ``Authorization`` header value."""
    raw = f"{credentials.username}:{credentials.password.get_secret_value()}"
    return "Basic " + base64.b64encode(raw.encode("utf-8")).decode("ascii")


def redact_url(url: str) -> str:
    """Strip userinfo and query string from a URL before logging it."""
    parts = urlsplit(url)
    netloc = parts.hostname or ""
    if parts.port:
        netloc = f"{netloc}:{parts.port}"
    return urlunsplit((parts.scheme, netloc, parts.path, "", ""))


class BackendClient(ABC):
    """
    Polymorphic client for one family of compute backends.

    Every method either returns normally or raises a ``BackendError``
    subclass; callers never see a raw ``requests`` exception.
    """

    kind: BackendKind

    def __init__(
        self,
        config: Optional[BackendClientConfig] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = config or BackendClientConfig()
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": self.config.user_agent})

    @abstractmethod
    def submit(
        self,
        server: AnalysisServer,
        module: Module,
        parameters: ResolvedParameters,
        credentials: Credentials,
    ) -> str:
        """
        Submit one job and return the backend-assigned job id.

        Raises:
            SubmissionError: On rejection or any transport failure
        """
        pass

    @abstractmethod
    def status(
        self, server: AnalysisServer, job_id: str, credentials: Credentials
    ) -> JobResult:
        """
        Query a job and project it onto a ``JobResult``.

        Raises:
            TransientError: Backend unreachable or refusing the call
            NotFoundError: Job no longer exists
        """
        pass

    @abstractmethod
    def fetch_output(
        self,
        server: AnalysisServer,
        job_id: str,
        output_path: str,
        credentials: Credentials,
    ) -> Iterator[bytes]:
        """Stream one output artifact as byte chunks."""
        pass

    def open_output(
        self,
        server: AnalysisServer,
        job_id: str,
        output: OutputFile,
        credentials: Credentials,
    ) -> Iterator[bytes]:
        """Stream an output already listed in the job record."""
        return self.fetch_output(server, job_id, output.path, credentials)

    @abstractmethod
    def fetch_zip_bundle(
        self, server: AnalysisServer, job_id: str, credentials: Credentials
    ) -> Iterator[bytes]:
        """Stream a zip archive of all job outputs as byte chunks."""
        pass

    def fetch_location(
        self,
        server: AnalysisServer,
        job_id: str,
        location: str,
        credentials: Credentials,
    ) -> Iterator[bytes]:
        """Stream an artifact addressed by a backend-reported location."""
        raise NotFoundError(
            f"{type(self).__name__} cannot fetch locations",
            {"job_id": job_id, "location": location},
        )

    @abstractmethod
    def list_modules(
        self, server: AnalysisServer, credentials: Credentials
    ) -> List[Dict[str, Any]]:
        """List the modules (tasks or workflows) the server offers."""
        pass

    def auth_headers(self, credentials: Credentials) -> Dict[str, str]:
        return {"Authorization": basic_auth_header(credentials)}

    def _request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        error_cls: Optional[Type[BackendError]] = None,
        is_failure: Optional[Callable[[requests.Response], bool]] = None,
        **kwargs,
    ) -> requests.Response:
        """
        Perform one HTTP call and translate failures.

        With ``error_cls`` set (submission), every failure raises that type.
        Otherwise timeouts, connection errors, 401/403 and 5xx raise
        ``TransientError`` while 404/410 raise ``NotFoundError``.
        ``is_failure`` replaces the default ``status_code >= 400`` check for
        protocols that carry errors in a response body.
        """
        kwargs.setdefault("timeout", self.config.timeout)
        kwargs.setdefault("verify", self.config.verify_ssl)
        safe_url = redact_url(url)

        try:
            response = self.session.request(method, url, headers=headers, **kwargs)
        except requests.exceptions.Timeout as e:
            logger.warning(f"{method} {safe_url} timed out")
            raise (error_cls or TransientError)(
                f"Backend timed out: {safe_url}", {"url": safe_url}
            ) from e
        except requests.exceptions.RequestException as e:
            logger.warning(f"{method} {safe_url} failed: {type(e).__name__}")
            raise (error_cls or TransientError)(
                f"Backend unreachable: {safe_url}", {"url": safe_url}
            ) from e

        failed = is_failure(response) if is_failure else response.status_code >= 400
        if failed:
            code = response.status_code
            reason = response.reason or ""
            details = {"url": safe_url, "status_code": code, "reason": reason}
            if kwargs.get("stream"):
                response.close()
            logger.warning(f"{method} {safe_url} returned {code} {reason}")
            if error_cls is not None:
                raise error_cls(f"Backend returned {code} {reason}".strip(), details)
            if code in (404, 410):
                details["gone"] = code == 410
                raise NotFoundError(f"Not found on backend: {safe_url}", details)
            raise TransientError(f"Backend returned {code} {reason}".strip(), details)

        return response

    def _stream(self, url: str, headers: Optional[Dict[str, str]] = None) -> Iterator[bytes]:
        """
        Open ``url`` eagerly and return an iterator over its body.

        Connection failures surface here, before the first byte is handed
        out; failures mid-stream surface as ``TransientError`` from the
        iterator.
        """
        response = self._request("GET", url, headers=headers, stream=True)
        return self._iter_response(response, url)

    def _iter_response(self, response: requests.Response, url: str) -> Iterator[bytes]:
        try:
            for chunk in response.iter_content(chunk_size=self.config.chunk_size):
                if chunk:
                    yield chunk
        except requests.exceptions.RequestException as e:
            raise TransientError(
                f"Stream interrupted: {redact_url(url)}", {"url": redact_url(url)}
            ) from e
        finally:
            response.close()


def submission_error_from(exc: Exception, message: str) -> SubmissionError:
    """Wrap an unexpected payload error raised while submitting."""
    return SubmissionError(f"{message}: {exc}", {"error_type": type(exc).__name__})
