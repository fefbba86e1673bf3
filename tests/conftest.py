"""
Pytest configuration and shared fixtures for the FlowGate test suite.

This module provides the catalog, store, backend and orchestrator fixtures
used by the unit and integration tests.
"""

import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Generator

import pytest

from flowgate.backends import ClientRegistry, MockClient
from flowgate.config.settings import reset_settings
from flowgate.core.analysis_store import AnalysisStore
from flowgate.core.orchestrator import Orchestrator
from flowgate.core.schemas import (
    Analysis,
    AnalysisServer,
    AnalysisStatus,
    Catalog,
    Dataset,
    ExpFile,
    Module,
    ModuleParam,
    ParamType,
    ServerPlatform,
)
from flowgate.core.server_registry import BackendKind, EnvCredentialProvider, ServerRegistry

# Test constants
TEST_WORKSPACE_PREFIX = "flowgate_test_"
GP_REST_URL = "http://gp.test"
GP_SOAP_URL = "https://gp.secure.test"
GALAXY_URL = "http://galaxy.test"
MOCK_URL = "mock://dummy-gp"


# ==============================================================================
# Pytest Configuration Hooks
# ==============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


# ==============================================================================
# Core Infrastructure Fixtures
# ==============================================================================


@pytest.fixture(scope="function")
def temp_workspace() -> Generator[Path, None, None]:
    """Create isolated temporary workspace for each test."""
    workspace_path = Path(tempfile.mkdtemp(prefix=TEST_WORKSPACE_PREFIX))
    (workspace_path / "data").mkdir(exist_ok=True)
    try:
        yield workspace_path
    finally:
        shutil.rmtree(workspace_path, ignore_errors=True)


@pytest.fixture(scope="function")
def isolated_environment(temp_workspace: Path, monkeypatch) -> Generator[Path, None, None]:
    """Point every FlowGate setting into the temporary workspace."""
    monkeypatch.chdir(temp_workspace)
    test_env = {
        "FLOWGATE_DATA_DIR": str(temp_workspace / "data"),
        "FLOWGATE_CATALOG_PATH": str(temp_workspace / "data" / "catalog.json"),
        "FLOWGATE_STORE_PATH": str(temp_workspace / "data" / "analyses.jsonl"),
        "FLOWGATE_GALAXY_RESULT_ROOT": str(temp_workspace / "galaxy"),
        "FLOWGATE_SWEEP_INTERVAL": "0",
    }
    for key, value in test_env.items():
        monkeypatch.setenv(key, value)
    for key in (
        "FLOWGATE_CALLBACK_TOKEN",
        "FLOWGATE_GALAXY_LIBRARY",
        "FLOWGATE_GALAXY_HISTORY_ID",
    ):
        monkeypatch.delenv(key, raising=False)

    reset_settings()
    yield temp_workspace
    reset_settings()


# ==============================================================================
# Catalog Fixtures
# ==============================================================================


@pytest.fixture
def servers() -> Dict[str, AnalysisServer]:
    return {
        "gp-rest": AnalysisServer(name="gp-rest", url=GP_REST_URL, username="gpuser"),
        "gp-soap": AnalysisServer(name="gp-soap", url=GP_SOAP_URL, username="gpuser"),
        "galaxy": AnalysisServer(
            name="galaxy",
            url=GALAXY_URL,
            username="galaxy@lab.test",
            platform=ServerPlatform.GALAXY,
        ),
        "dummy": AnalysisServer(name="dummy", url=MOCK_URL, username="tester"),
    }


@pytest.fixture
def sample_dataset() -> Dataset:
    return Dataset(
        id=7,
        experiment_id=3,
        name="Baseline tubes",
        files=[
            ExpFile(
                id=1,
                file_name="tube1.fcs",
                file_path="/data/exp3",
                metadata={"Condition": "ctrl", "Donor": "D1"},
            ),
            ExpFile(
                id=2,
                file_name="tube2.fcs",
                file_path="/data/exp3",
                metadata={"Condition": "stim", "Visit": "V2"},
            ),
        ],
    )


@pytest.fixture
def empty_dataset() -> Dataset:
    return Dataset(id=8, experiment_id=3, name="Empty", files=[])


def make_module(module_id: int, server: str, name: str = "FlowClust", **kwargs) -> Module:
    params = kwargs.pop(
        "params",
        [
            ModuleParam(id=10, key="Input.Files", type=ParamType.DATASET),
            ModuleParam(id=11, key="Input.Cores", type=ParamType.VALUE, default="2"),
        ],
    )
    return Module(id=module_id, name=name, server=server, params=params, **kwargs)


@pytest.fixture
def catalog(servers, sample_dataset, empty_dataset) -> Catalog:
    return Catalog(
        servers=list(servers.values()),
        modules=[
            make_module(1, "gp-rest"),
            make_module(2, "gp-soap", name="urn:lsid:broad.mit.edu:cancer.software.genepattern.module.analysis:00385:2"),
            make_module(
                3,
                "galaxy",
                name="f2db41e1fa331b3e",
                params=[
                    ModuleParam(id=20, key="fcs_files", type=ParamType.DATASET, order=0),
                    ModuleParam(id=21, key="annotation", type=ParamType.META, order=1),
                ],
            ),
            make_module(4, "dummy", name="DummyModule", render_result="Reports/Summary.html"),
            make_module(5, "dummy", name="DefaultReportModule"),
            Module(id=6, name="Orphan", server=None),
        ],
        datasets=[sample_dataset, empty_dataset],
    )


@pytest.fixture
def credential_env() -> Dict[str, str]:
    return {
        "FLOWGATE_SERVER_GP_REST_PASSWORD": "gp-secret",
        "FLOWGATE_SERVER_GP_SOAP_PASSWORD": "gp-secret",
        "FLOWGATE_SERVER_GALAXY_PASSWORD": "galaxy-secret",
    }


@pytest.fixture
def registry(catalog, credential_env) -> ServerRegistry:
    return ServerRegistry(catalog, EnvCredentialProvider(credential_env))


# ==============================================================================
# Store, Backend and Service Fixtures
# ==============================================================================


@pytest.fixture
def store(temp_workspace: Path) -> AnalysisStore:
    return AnalysisStore(temp_workspace / "data" / "analyses.jsonl")


@pytest.fixture
def mock_client() -> MockClient:
    return MockClient(finished_jobs={36}, start_job_number=100)


@pytest.fixture
def clients(mock_client, temp_workspace) -> ClientRegistry:
    registry = ClientRegistry(galaxy_result_root=temp_workspace / "galaxy")
    registry.register(BackendKind.MOCK, mock_client)
    return registry


@pytest.fixture
def orchestrator(registry, clients, store) -> Orchestrator:
    return Orchestrator(registry, clients, store, poll_workers=2)


def make_analysis(**overrides: Any) -> Analysis:
    values = {
        "analysis_name": "Run 1",
        "user": "alice",
        "experiment_id": 3,
        "module_id": 4,
        "dataset_id": 7,
        "job_number": "36",
        "analysis_status": AnalysisStatus.PROCESSING,
    }
    values.update(overrides)
    return Analysis(**values)


@pytest.fixture
def analysis_builder():
    """Build unsaved analyses with sensible defaults."""
    return make_analysis


@pytest.fixture
def analysis_factory(store):
    """Persist analyses with sensible defaults."""

    def _create(**overrides: Any) -> Analysis:
        return store.add(make_analysis(**overrides))

    return _create
