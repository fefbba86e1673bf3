"""
Galaxy workflow client.

Workflow inputs are staged in a Galaxy data library before the workflow is
invoked: the library (``FlowGate`` by default) holds one folder per
experiment, each experiment file is uploaded once into its folder, and the
invocation references the library datasets (``{"src": "ld"}``) by step
index. Invocation status is derived from the jobs of its steps: the first
job in error state wins, otherwise the job of the last step decides.
Galaxy outputs are exported out-of-band to a shared result root
(``<root>/<invocation id>/...``), which is where artifacts are read from.
"""

import os
import tempfile
import threading
import uuid
import zipfile
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from flowgate.backends.base_client import (
    BackendClient,
    BackendClientConfig,
    submission_error_from,
)
from flowgate.backends.genepattern_rest import parse_timestamp
from flowgate.core.exceptions import (
    BackendError,
    NotFoundError,
    SubmissionError,
    TransientError,
)
from flowgate.core.schemas.catalog import AnalysisServer, Credentials, Module
from flowgate.core.schemas.job_result import JobResult, JobStatusBlock, OutputFile
from flowgate.core.schemas.parameters import ResolvedParameter, ResolvedParameters
from flowgate.core.server_registry import BackendKind
from flowgate.utils.logger import get_logger

logger = get_logger(__name__)

FINISHED_STATES = frozenset({"ok"})
ERROR_STATES = frozenset({"error", "failed", "cancelled"})
AUTH_FAILURE_CODES = (401, 403)
DEFAULT_LIBRARY = "FlowGate"


def map_job_state(state: Optional[str]) -> Tuple[bool, bool]:
    """Return ``(is_finished, has_error)`` for a Galaxy job or invocation state."""
    state = (state or "").lower()
    if state in ERROR_STATES:
        return True, True
    return state in FINISHED_STATES, False


def galaxy_file_type(file_name: str) -> str:
    return "fcs" if file_name.lower().endswith(".fcs") else "auto"


def unique_name(file_name: str) -> str:
    """``annotation.txt`` -> ``annotation-<uuid>.txt``."""
    stem, ext = os.path.splitext(file_name)
    return f"{stem}-{uuid.uuid4()}{ext}"


def _rewind(kwargs: Dict[str, Any]) -> None:
    for value in (kwargs.get("files") or {}).values():
        handle = value[1] if isinstance(value, tuple) else value
        if hasattr(handle, "seek"):
            handle.seek(0)


class LibraryFolder:
    """A folder of the FlowGate data library and the datasets already in it."""

    def __init__(self, library_id: str, folder_id: str, datasets: Dict[str, str]):
        self.library_id = library_id
        self.folder_id = folder_id
        self.datasets = datasets


class GalaxyClient(BackendClient):
    """Client for Galaxy servers running FlowGate workflows."""

    kind = BackendKind.GALAXY

    def __init__(
        self,
        result_root: Path,
        config: Optional[BackendClientConfig] = None,
        session=None,
        library_name: str = DEFAULT_LIBRARY,
        history_id: Optional[str] = None,
    ):
        super().__init__(config, session)
        self.result_root = Path(result_root)
        self.library_name = library_name
        self.history_id = history_id
        self._api_keys: Dict[Tuple[str, str], str] = {}
        self._keys_lock = threading.Lock()

    # ------------------------------------------------------------------
    # authentication
    # ------------------------------------------------------------------

    def api_key(self, server: AnalysisServer, credentials: Credentials, error_cls=None) -> str:
        """Exchange Basic credentials for an API key (cached per server and user)."""
        cache_key = (server.url, credentials.username)
        with self._keys_lock:
            if cache_key in self._api_keys:
                return self._api_keys[cache_key]

        response = self._request(
            "GET",
            f"{server.url}/api/authenticate/baseauth",
            headers=self.auth_headers(credentials),
            error_cls=error_cls,
        )
        try:
            key = response.json().get("api_key")
        except ValueError:
            key = None
        if not key:
            raise (error_cls or TransientError)(
                f"Galaxy server {server.name} returned no API key",
                {"server": server.name},
            )

        with self._keys_lock:
            self._api_keys[cache_key] = key
        return key

    def forget_api_key(self, server: AnalysisServer, credentials: Credentials) -> None:
        with self._keys_lock:
            self._api_keys.pop((server.url, credentials.username), None)

    def _api_request(
        self,
        method: str,
        server: AnalysisServer,
        path: str,
        credentials: Credentials,
        error_cls=None,
        **kwargs,
    ):
        """
        Call the Galaxy API with the cached key.

        A 401/403 drops the cached key and retries once with a fresh one, so
        a rotated or revoked key does not block the server until restart.
        """
        for attempt in range(2):
            headers = {"x-api-key": self.api_key(server, credentials, error_cls)}
            try:
                return self._request(
                    method,
                    f"{server.url}{path}",
                    headers=headers,
                    error_cls=error_cls,
                    **kwargs,
                )
            except BackendError as e:
                if attempt or e.details.get("status_code") not in AUTH_FAILURE_CODES:
                    raise
                logger.info(f"API key for {server.name} rejected, exchanging a new one")
                self.forget_api_key(server, credentials)
                _rewind(kwargs)

    def _api_json(
        self,
        method: str,
        server: AnalysisServer,
        path: str,
        credentials: Credentials,
        error_cls=None,
        **kwargs,
    ) -> Any:
        response = self._api_request(method, server, path, credentials, error_cls, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            if error_cls is not None:
                raise submission_error_from(e, f"Invalid JSON from Galaxy: {path}") from e
            raise TransientError(
                f"Invalid JSON from Galaxy: {path}", {"path": path}
            ) from e

    def _get_json(self, server: AnalysisServer, path: str, credentials: Credentials) -> Any:
        return self._api_json("GET", server, path, credentials)

    # ------------------------------------------------------------------
    # input staging
    # ------------------------------------------------------------------

    def library_folder(
        self,
        server: AnalysisServer,
        experiment_id: Optional[int],
        credentials: Credentials,
    ) -> LibraryFolder:
        """
        Find or create the experiment folder of the FlowGate library.

        Without an experiment the library's root folder is used.
        """
        libraries = self._api_json(
            "GET", server, "/api/libraries", credentials, SubmissionError
        )
        library = next(
            (
                lib
                for lib in libraries
                if lib.get("name") == self.library_name and not lib.get("deleted")
            ),
            None,
        )
        if library is None:
            logger.info(f"Creating library '{self.library_name}' on {server.name}")
            library = self._api_json(
                "POST",
                server,
                "/api/libraries",
                credentials,
                SubmissionError,
                json={"name": self.library_name},
            )
        library_id = library["id"]

        folder_id = library.get("root_folder_id")
        if experiment_id is not None or not folder_id:
            contents = self._api_json(
                "GET", server, f"/api/libraries/{library_id}/contents", credentials, SubmissionError
            )
            folders = {c.get("name"): c.get("id") for c in contents if c.get("type") == "folder"}
            folder_id = folder_id or folders.get("/")
            if experiment_id is not None:
                experiment_folder = folders.get(f"/{experiment_id}")
                if experiment_folder is None:
                    created = self._api_json(
                        "POST",
                        server,
                        f"/api/folders/{folder_id}",
                        credentials,
                        SubmissionError,
                        json={
                            "name": str(experiment_id),
                            "description": f"Experiment {experiment_id}",
                        },
                    )
                    if isinstance(created, list):
                        created = created[0]
                    experiment_folder = created["id"]
                folder_id = experiment_folder

        listing = self._api_json(
            "GET", server, f"/api/folders/{folder_id}/contents", credentials, SubmissionError
        )
        datasets = {
            item.get("name"): item.get("id")
            for item in listing.get("folder_contents", [])
            if item.get("type") == "file"
        }
        return LibraryFolder(library_id, folder_id, datasets)

    def upload(
        self,
        server: AnalysisServer,
        folder: LibraryFolder,
        file_name: str,
        content: Any,
        credentials: Credentials,
    ) -> str:
        """Upload one file into ``folder`` and return its library dataset id."""
        uploaded = self._api_json(
            "POST",
            server,
            f"/api/libraries/{folder.library_id}/contents",
            credentials,
            SubmissionError,
            data={
                "folder_id": folder.folder_id,
                "create_type": "file",
                "upload_option": "upload_file",
                "file_type": galaxy_file_type(file_name),
                "files_0|NAME": file_name,
            },
            files={"files_0|file_data": (file_name, content)},
        )
        if isinstance(uploaded, list):
            uploaded = uploaded[0] if uploaded else {}
        dataset_id = uploaded.get("id")
        if not dataset_id:
            raise SubmissionError(
                f"Upload of '{file_name}' returned no dataset id", {"file": file_name}
            )
        folder.datasets[file_name] = dataset_id
        logger.debug(f"Uploaded {file_name} to library '{self.library_name}' on {server.name}")
        return dataset_id

    def _local_files(self, value: str) -> List[str]:
        if os.path.isdir(value):
            return sorted(
                os.path.join(value, name)
                for name in os.listdir(value)
                if not name.startswith(".") and os.path.isfile(os.path.join(value, name))
            )
        if os.path.isfile(value):
            return [value]
        raise SubmissionError(f"Input file not found: {value}", {"path": value})

    def _library_dataset(
        self,
        server: AnalysisServer,
        folder: LibraryFolder,
        path: str,
        credentials: Credentials,
    ) -> str:
        file_name = os.path.basename(path)
        if file_name in folder.datasets:
            return folder.datasets[file_name]
        try:
            with open(path, "rb") as handle:
                return self.upload(server, folder, file_name, handle, credentials)
        except OSError as e:
            raise SubmissionError(
                f"Cannot read input file {file_name}: {e.strerror or e}", {"path": path}
            ) from e

    def workflow_input(
        self,
        server: AnalysisServer,
        parameter: ResolvedParameter,
        folder: Optional[LibraryFolder],
        credentials: Credentials,
    ) -> Any:
        """Translate one resolved parameter into a workflow invocation input."""
        if parameter.generated is not None:
            dataset_id = self.upload(
                server,
                folder,
                unique_name(parameter.generated.name),
                parameter.generated.content.encode("utf-8"),
                credentials,
            )
            return {"src": "ld", "id": dataset_id}
        if not parameter.is_file:
            return parameter.values[0] if parameter.values else None

        inputs = []
        for value in parameter.values:
            if "://" in value and not value.startswith("file://"):
                inputs.append({"src": "url", "url": value, "name": os.path.basename(value)})
                continue
            path = value[len("file://"):] if value.startswith("file://") else value
            existing = folder.datasets.get(os.path.basename(path))
            if existing is not None:
                inputs.append({"src": "ld", "id": existing})
                continue
            for local in self._local_files(path):
                inputs.append(
                    {"src": "ld", "id": self._library_dataset(server, folder, local, credentials)}
                )
        if not inputs:
            return None
        return inputs[0] if len(inputs) == 1 else inputs

    @staticmethod
    def _needs_library(parameters: ResolvedParameters) -> bool:
        return any(
            p.generated is not None
            or (p.is_file and any("://" not in v or v.startswith("file://") for v in p.values))
            for p in parameters
        )

    # ------------------------------------------------------------------
    # BackendClient
    # ------------------------------------------------------------------

    def submit(
        self,
        server: AnalysisServer,
        module: Module,
        parameters: ResolvedParameters,
        credentials: Credentials,
    ) -> str:
        folder = None
        if self._needs_library(parameters):
            folder = self.library_folder(server, parameters.experiment_id, credentials)

        inputs = {}
        for index, p in enumerate(parameters):
            value = self.workflow_input(server, p, folder, credentials)
            if value is not None:
                inputs[str(p.order if p.order is not None else index)] = value

        body: Dict[str, Any] = {"inputs": inputs, "inputs_by": "step_index"}
        if self.history_id:
            body["history_id"] = self.history_id
        payload = self._api_json(
            "POST",
            server,
            f"/api/workflows/{module.name}/invocations",
            credentials,
            SubmissionError,
            json=body,
        )
        if isinstance(payload, list):
            payload = payload[0] if payload else {}

        invocation_id = payload.get("id")
        if not invocation_id:
            raise SubmissionError(
                f"Galaxy did not invoke workflow '{module.name}'",
                {"workflow": module.name},
            )
        logger.info(
            f"Invoked workflow {module.name} on {server.name} as {invocation_id}"
        )
        return str(invocation_id)

    def _deciding_job(
        self, server: AnalysisServer, steps: List[Dict[str, Any]], credentials: Credentials
    ) -> Optional[Dict[str, Any]]:
        ordered = sorted(steps, key=lambda s: s.get("order_index") or 0)
        for index, step in enumerate(ordered):
            job_id = step.get("job_id")
            if not job_id:
                continue
            job = self._get_json(server, f"/api/jobs/{job_id}", credentials)
            _, has_error = map_job_state(job.get("state"))
            if has_error or index == len(ordered) - 1:
                return job
        return None

    def status(
        self, server: AnalysisServer, job_id: str, credentials: Credentials
    ) -> JobResult:
        invocation = self._get_json(server, f"/api/invocations/{job_id}", credentials)
        job = self._deciding_job(server, invocation.get("steps") or [], credentials)

        if job is not None:
            state = job.get("state")
            completed_at = parse_timestamp(job.get("update_time"))
            message = job.get("stderr") or None
        else:
            state = invocation.get("state")
            completed_at = None
            message = None
        is_finished, has_error = map_job_state(state)
        # without a deciding job only a failed invocation is settled
        if job is None and not has_error:
            is_finished = False

        return JobResult(
            status_code=200,
            output_files=self.local_outputs(job_id) if is_finished and not has_error else [],
            status=JobStatusBlock(
                is_finished=is_finished,
                has_error=has_error,
                is_pending=state in ("new", "queued", "scheduled", "ready"),
                message=message or state,
            ),
            completed_at=completed_at if is_finished else None,
        )

    # ------------------------------------------------------------------
    # exported outputs
    # ------------------------------------------------------------------

    def _invocation_dir(self, job_id: str) -> Path:
        root = self.result_root.resolve()
        directory = (root / job_id).resolve()
        if root not in directory.parents:
            raise NotFoundError(f"Invalid invocation id '{job_id}'", {"job_id": job_id})
        return directory

    def local_outputs(self, job_id: str) -> List[OutputFile]:
        """Output files exported for an invocation, as relative posix paths."""
        directory = self._invocation_dir(job_id)
        if not directory.is_dir():
            return []
        try:
            return [
                OutputFile(
                    path=path.relative_to(directory).as_posix(),
                    link=path.as_uri(),
                    size=path.stat().st_size,
                )
                for path in sorted(p for p in directory.rglob("*") if p.is_file())
            ]
        except OSError as e:
            raise TransientError(
                f"Cannot list outputs of invocation {job_id}: {e.strerror or e}",
                {"job_id": job_id},
            ) from e

    def fetch_output(
        self,
        server: AnalysisServer,
        job_id: str,
        output_path: str,
        credentials: Credentials,
    ) -> Iterator[bytes]:
        directory = self._invocation_dir(job_id)
        target = (directory / output_path).resolve()
        if directory not in target.parents or not target.is_file():
            raise NotFoundError(
                f"Invocation {job_id} has no output '{output_path}'",
                {"job_id": job_id, "path": output_path},
            )
        try:
            handle = open(target, "rb")
        except OSError as e:
            raise TransientError(
                f"Cannot read output '{output_path}' of invocation {job_id}: "
                f"{e.strerror or e}",
                {"job_id": job_id, "path": output_path},
            ) from e
        return self._iter_file(handle, job_id)

    def fetch_zip_bundle(
        self, server: AnalysisServer, job_id: str, credentials: Credentials
    ) -> Iterator[bytes]:
        directory = self._invocation_dir(job_id)
        if not directory.is_dir():
            raise NotFoundError(
                f"No exported outputs for invocation {job_id}", {"job_id": job_id}
            )

        spool = tempfile.SpooledTemporaryFile(max_size=8 * 1024 * 1024)
        try:
            with zipfile.ZipFile(spool, "w", zipfile.ZIP_DEFLATED) as archive:
                for path in sorted(p for p in directory.rglob("*") if p.is_file()):
                    archive.write(path, path.relative_to(directory).as_posix())
        except OSError as e:
            spool.close()
            raise TransientError(
                f"Cannot bundle outputs of invocation {job_id}: {e.strerror or e}",
                {"job_id": job_id},
            ) from e
        spool.seek(0)
        return self._iter_file(spool, job_id)

    def _iter_file(self, handle, job_id: str) -> Iterator[bytes]:
        try:
            while True:
                chunk = handle.read(self.config.chunk_size)
                if not chunk:
                    break
                yield chunk
        except OSError as e:
            raise TransientError(
                f"Reading outputs of invocation {job_id} failed", {"job_id": job_id}
            ) from e
        finally:
            handle.close()

    def list_modules(
        self, server: AnalysisServer, credentials: Credentials
    ) -> List[Dict[str, Any]]:
        return self._get_json(server, "/api/workflows", credentials)
