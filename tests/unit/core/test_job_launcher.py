"""
Unit tests for JobLauncher.
"""

from unittest.mock import Mock

import pytest

from flowgate.core.exceptions import (
    ConfigurationError,
    MissingDatasetError,
    SubmissionError,
)
from flowgate.core.job_launcher import JobLauncher
from flowgate.core.schemas import DEFAULT_RENDER_RESULT, Analysis, AnalysisStatus


def new_analysis(module_id=4):
    return Analysis(analysis_name="Launch", user="alice", experiment_id=3, module_id=module_id)


class TestJobLauncher:
    """Test the single submission attempt and what gets persisted."""

    def test_successful_submission(self, registry, clients, store, mock_client, sample_dataset):
        launcher = JobLauncher(registry, clients, store)

        result = launcher.launch(new_analysis(), registry.get_module(4), sample_dataset, {})

        assert result.submitted
        assert result.job_number == "100"
        assert result.status == AnalysisStatus.PROCESSING
        stored = store.get(result.analysis.id)
        assert stored.job_number == "100"
        assert stored.dataset_id == sample_dataset.id
        assert stored.analysis_status == AnalysisStatus.PROCESSING
        assert mock_client.submissions[100]["parameters"]["Input.Cores"] == ["2"]

    def test_render_result_comes_from_module(self, registry, clients, store, sample_dataset):
        launcher = JobLauncher(registry, clients, store)

        custom = launcher.launch(new_analysis(4), registry.get_module(4), sample_dataset)
        default = launcher.launch(new_analysis(5), registry.get_module(5), sample_dataset)

        assert custom.analysis.render_result == "Reports/Summary.html"
        assert default.analysis.render_result == DEFAULT_RENDER_RESULT

    def test_rejected_submission_is_persisted_as_error(
        self, registry, clients, store, mock_client, sample_dataset
    ):
        mock_client.fail_on_submit = True
        launcher = JobLauncher(registry, clients, store)

        result = launcher.launch(new_analysis(), registry.get_module(4), sample_dataset)

        assert not result.submitted
        assert result.job_number == "-1"
        assert result.status == AnalysisStatus.ERROR
        assert "rejected" in result.message
        assert store.get(result.analysis.id).analysis_status == AnalysisStatus.ERROR
        assert len(store.list()) == 1

    def test_submission_error_from_client_is_not_retried(
        self, registry, clients, store, sample_dataset
    ):
        client = Mock()
        client.submit.side_effect = SubmissionError("Backend returned 500")
        clients.get = Mock(return_value=client)
        launcher = JobLauncher(registry, clients, store)

        result = launcher.launch(new_analysis(), registry.get_module(4), sample_dataset)

        assert client.submit.call_count == 1
        assert result.message == "Backend returned 500"

    def test_missing_dataset_persists_nothing(
        self, registry, clients, store, mock_client, empty_dataset
    ):
        launcher = JobLauncher(registry, clients, store)

        with pytest.raises(MissingDatasetError):
            launcher.launch(new_analysis(), registry.get_module(4), empty_dataset)

        assert store.list() == []
        assert mock_client.submissions == {}

    def test_module_without_server_persists_nothing(self, registry, clients, store):
        launcher = JobLauncher(registry, clients, store)

        with pytest.raises(ConfigurationError):
            launcher.launch(new_analysis(6), registry.get_module(6), None)

        assert store.list() == []

    def test_submit_receives_server_and_credentials(
        self, registry, clients, store, sample_dataset
    ):
        client = Mock()
        client.submit.return_value = "1292"
        clients.get = Mock(return_value=client)
        launcher = JobLauncher(registry, clients, store)

        launcher.launch(new_analysis(1), registry.get_module(1), sample_dataset)

        server, module, parameters, credentials = client.submit.call_args[0]
        assert server.name == "gp-rest"
        assert module.id == 1
        assert parameters.get("Input.Files") is not None
        assert credentials.password.get_secret_value() == "gp-secret"
