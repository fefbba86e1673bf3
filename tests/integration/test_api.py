"""
Integration tests for the FlowGate HTTP API.

The application runs against a real store and the in-process mock backend;
Galaxy traffic is intercepted with ``responses``.
"""

import json

import pytest
import responses
from fastapi.testclient import TestClient

from flowgate.api.main import create_app
from flowgate.core.schemas import AnalysisStatus

ALICE = {"X-User": "alice"}
BOB = {"X-User": "bob"}
ADMIN = {"X-User": "root", "X-User-Roles": "Administrator"}

GALAXY = "http://galaxy.test"
WORKFLOW = "f2db41e1fa331b3e"
INVOCATION = "0c5ffef6d88a1e97"


@pytest.fixture
def app(isolated_environment, orchestrator):
    return create_app(orchestrator)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def submit(client, headers=ALICE, **overrides):
    payload = {
        "module_id": 5,
        "dataset_id": 7,
        "experiment_id": 3,
        "analysis_name": "Clustering run",
    }
    payload.update(overrides)
    return client.post("/api/v1/analyses", json=payload, headers=headers)


class TestHealth:
    def test_health(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["sweeper_running"] is False
        assert "X-Request-ID" in response.headers


class TestCreateAnalysis:
    """Test submission through the API."""

    def test_requires_user(self, client):
        assert submit(client, headers={}).status_code == 401

    def test_submit_to_mock_backend(self, client, orchestrator):
        response = submit(client)

        assert response.status_code == 201
        data = response.json()
        assert data["success"] is True
        assert data["analysis"]["job_number"] == "100"
        assert data["analysis"]["analysis_status"] == AnalysisStatus.PROCESSING.value
        assert data["analysis"]["user"] == "alice"
        assert orchestrator.store.get(data["analysis"]["id"]).job_number == "100"

    def test_rejected_submission_is_recorded(self, client, mock_client):
        mock_client.fail_on_submit = True

        response = submit(client)

        assert response.status_code == 201
        data = response.json()
        assert data["success"] is False
        assert data["analysis"]["job_number"] == "-1"
        assert data["analysis"]["analysis_status"] == AnalysisStatus.ERROR.value
        assert "rejected" in data["message"]

    def test_empty_dataset(self, client, orchestrator):
        response = submit(client, dataset_id=8)

        assert response.status_code == 422
        data = response.json()
        assert data["error_code"] == "MissingDatasetError"
        assert "Input.Files" in data["field_errors"]
        assert orchestrator.store.list() == []

    def test_unknown_module(self, client):
        assert submit(client, module_id=404).status_code == 404

    def test_unknown_dataset(self, client):
        assert submit(client, dataset_id=404).status_code == 404

    def test_module_without_server(self, client, orchestrator):
        response = submit(client, module_id=6)

        assert response.status_code == 400
        assert response.json()["error_code"] == "ConfigurationError"
        assert orchestrator.store.list() == []

    def test_blank_name(self, client):
        assert submit(client, analysis_name="   ").status_code == 422


class TestTaskStatusCallback:
    """Test the backend callback endpoint."""

    def test_finished_callback(self, client, orchestrator):
        analysis_id = submit(client).json()["analysis"]["id"]

        response = client.get("/api/v1/task-status", params={"jobId": "100", "status": "Finished"})

        assert response.status_code == 200
        assert response.json() == {"msg": "got status! jobId=100 jobStatus=Finished"}
        stored = orchestrator.store.get(analysis_id)
        assert stored.analysis_status == AnalysisStatus.DONE
        assert stored.date_completed is not None

    def test_post_callback(self, client, orchestrator):
        analysis_id = submit(client).json()["analysis"]["id"]

        client.post("/api/v1/task-status", params={"jobId": "100", "status": "Error"})

        assert orchestrator.store.get(analysis_id).analysis_status == AnalysisStatus.ERROR

    def test_callback_without_parameters(self, client):
        response = client.get("/api/v1/task-status")

        assert response.json() == {"msg": "got no status!"}

    def test_callback_for_unknown_job(self, client):
        response = client.get("/api/v1/task-status", params={"jobId": "555", "status": "Finished"})

        assert response.status_code == 200

    def test_callback_token(self, client, orchestrator, analysis_factory):
        orchestrator.callback_token = "s3cret"
        analysis = analysis_factory(job_number="36")
        params = {"jobId": "36", "status": "Finished"}

        assert client.get("/api/v1/task-status", params=params).status_code == 401
        assert (
            client.get(
                "/api/v1/task-status", params={**params, "token": "wrong"}
            ).status_code
            == 401
        )
        assert orchestrator.store.get(analysis.id).analysis_status == AnalysisStatus.PROCESSING

        response = client.get(
            "/api/v1/task-status", params=params, headers={"X-Callback-Token": "s3cret"}
        )

        assert response.status_code == 200
        assert orchestrator.store.get(analysis.id).analysis_status == AnalysisStatus.DONE


class TestListAndCheckStatus:
    def test_users_see_their_visible_analyses(self, client, orchestrator, analysis_factory):
        mine = analysis_factory(user="alice")
        analysis_factory(user="bob")
        hidden = analysis_factory(user="alice")
        orchestrator.store.hide(hidden.id)

        data = client.get("/api/v1/analyses", headers=ALICE).json()

        assert [a["id"] for a in data["analyses"]] == [mine.id]
        assert data["periodic_check_needed"] is True

    def test_admin_sees_everything(self, client, analysis_factory):
        analysis_factory(user="alice")
        analysis_factory(user="bob")

        data = client.get("/api/v1/analyses", headers=ADMIN).json()

        assert len(data["analyses"]) == 2

    def test_experiment_filter(self, client, analysis_factory):
        analysis_factory(experiment_id=3)
        other = analysis_factory(experiment_id=4)

        data = client.get("/api/v1/analyses", params={"experiment_id": 4}, headers=ADMIN).json()

        assert [a["id"] for a in data["analyses"]] == [other.id]

    def test_check_status_updates_finished_jobs(self, client, orchestrator, analysis_factory):
        analysis = analysis_factory(user="alice", job_number="36")

        response = client.post("/api/v1/analyses/check-status", headers=ALICE)

        assert response.status_code == 200
        data = response.json()
        assert data["report"]["updated"] == [analysis.id]
        assert data["upd_chk_status"] == "clear"
        assert orchestrator.store.get(analysis.id).analysis_status == AnalysisStatus.DONE

    def test_check_status_pending(self, client, analysis_factory):
        analysis_factory(user="alice", job_number="37")

        data = client.post("/api/v1/analyses/check-status", headers=ALICE).json()

        assert data["upd_chk_status"] == "pending"

    def test_check_status_only_touches_own_rows(self, client, orchestrator, analysis_factory):
        theirs = analysis_factory(user="bob", job_number="36")

        client.post("/api/v1/analyses/check-status", headers=ALICE)

        assert orchestrator.store.get(theirs.id).analysis_status == AnalysisStatus.PROCESSING


class TestResults:
    """Test result streaming and the inline no-result message."""

    def test_default_result(self, client, analysis_factory):
        analysis = analysis_factory(module_id=5, job_number="36")

        response = client.get(f"/api/v1/analyses/{analysis.id}/result", headers=ALICE)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert "Mock report for job 36" in response.text

    def test_download(self, client, analysis_factory):
        analysis = analysis_factory(module_id=5, job_number="36")

        response = client.get(
            f"/api/v1/analyses/{analysis.id}/result",
            params={"download": "true"},
            headers=ALICE,
        )

        assert response.headers["content-type"] == "application/octet-stream"
        assert response.headers["content-disposition"].startswith("attachment; filename=")

    def test_no_result_is_inline_message(self, client, analysis_factory):
        analysis = analysis_factory(module_id=5, job_number="37")

        response = client.get(f"/api/v1/analyses/{analysis.id}/result", headers=ALICE)

        assert response.status_code == 404
        assert response.text == (
            '<div class="alert alert-danger">No result file found to download!</div>'
        )

    def test_failed_submission_has_no_result(self, client, analysis_factory):
        analysis = analysis_factory(job_number="-1", analysis_status=AnalysisStatus.ERROR)

        response = client.get(f"/api/v1/analyses/{analysis.id}/bundle", headers=ALICE)

        assert response.status_code == 404
        assert "alert-danger" in response.text

    def test_named_file_and_bundle(self, client, analysis_factory):
        analysis = analysis_factory(module_id=5, job_number="36")

        named = client.get(
            f"/api/v1/analyses/{analysis.id}/files",
            params={"path": "Reports/AutoReport.html"},
            headers=ALICE,
        )
        bundle = client.get(f"/api/v1/analyses/{analysis.id}/bundle", headers=ALICE)

        assert named.status_code == 200
        assert bundle.status_code == 200
        assert bundle.headers["content-type"] == "application/zip"
        assert bundle.content.startswith(b"PK")

    def test_stderr(self, client, mock_client, analysis_factory):
        analysis = analysis_factory(module_id=5, job_number="37")
        mock_client.mark_failed("37")

        response = client.get(f"/api/v1/analyses/{analysis.id}/stderr", headers=ALICE)

        assert response.status_code == 200
        assert response.text == "job 37 failed\n"

    def test_job_result(self, client, analysis_factory):
        analysis = analysis_factory(module_id=5, job_number="36")

        data = client.get(f"/api/v1/analyses/{analysis.id}/job-result", headers=ALICE).json()

        assert data["status"]["is_finished"] is True
        assert data["output_files"][0]["path"] == "Reports/AutoReport.html"

    def test_other_users_are_forbidden(self, client, analysis_factory):
        analysis = analysis_factory(user="alice", module_id=5, job_number="36")

        assert client.get(f"/api/v1/analyses/{analysis.id}/result", headers=BOB).status_code == 403
        assert client.get(f"/api/v1/analyses/{analysis.id}/result", headers=ADMIN).status_code == 200


class TestDeleteAnalysis:
    def test_soft_delete(self, client, orchestrator, analysis_factory):
        analysis = analysis_factory(user="alice")

        response = client.delete(f"/api/v1/analyses/{analysis.id}", headers=ALICE)

        assert response.status_code == 200
        assert orchestrator.store.get(analysis.id).analysis_status == AnalysisStatus.HIDDEN
        assert client.get("/api/v1/analyses", headers=ALICE).json()["analyses"] == []

    def test_erase(self, client, analysis_factory):
        analysis = analysis_factory(user="alice")

        client.delete(f"/api/v1/analyses/{analysis.id}", params={"erase": "true"}, headers=ALICE)

        response = client.get(f"/api/v1/analyses/{analysis.id}", headers=ALICE)
        assert response.status_code == 404
        assert response.json()["error_code"] == "AnalysisNotFoundError"

    def test_hidden_analysis_ignores_callbacks(self, client, orchestrator, analysis_factory):
        analysis = analysis_factory(user="alice", job_number="36")
        client.delete(f"/api/v1/analyses/{analysis.id}", headers=ALICE)

        client.get("/api/v1/task-status", params={"jobId": "36", "status": "Finished"})

        assert orchestrator.store.get(analysis.id).analysis_status == AnalysisStatus.HIDDEN


class TestGalaxyWorkflow:
    """Submit a Galaxy workflow, receive its callback and read its report."""

    @responses.activate
    def test_end_to_end(self, client, orchestrator, temp_workspace):
        responses.add(
            responses.GET, f"{GALAXY}/api/authenticate/baseauth", json={"api_key": "k-1"}
        )
        responses.add(
            responses.GET,
            f"{GALAXY}/api/libraries",
            json=[{"id": "lib1", "name": "FlowGate", "root_folder_id": "F0"}],
        )
        responses.add(
            responses.GET,
            f"{GALAXY}/api/libraries/lib1/contents",
            json=[
                {"id": "F0", "name": "/", "type": "folder"},
                {"id": "F3", "name": "/3", "type": "folder"},
            ],
        )
        responses.add(
            responses.GET,
            f"{GALAXY}/api/folders/F3/contents",
            json={
                "folder_contents": [
                    {"id": "ld1", "name": "tube1.fcs", "type": "file"},
                    {"id": "ld2", "name": "tube2.fcs", "type": "file"},
                ]
            },
        )
        responses.add(
            responses.POST,
            f"{GALAXY}/api/libraries/lib1/contents",
            json=[{"id": "ld-meta", "name": "metadata.txt"}],
        )
        responses.add(
            responses.POST,
            f"{GALAXY}/api/workflows/{WORKFLOW}/invocations",
            json={"id": INVOCATION},
        )
        responses.add(
            responses.GET,
            f"{GALAXY}/api/invocations/{INVOCATION}",
            json={"id": INVOCATION, "steps": [{"order_index": 0, "job_id": "j1"}]},
        )
        responses.add(
            responses.GET,
            f"{GALAXY}/api/jobs/j1",
            json={"id": "j1", "state": "ok", "update_time": "2024-03-01T10:15:00"},
        )

        created = submit(client, module_id=3)
        assert created.status_code == 201
        analysis = created.json()["analysis"]
        assert analysis["job_number"] == INVOCATION

        invocation = next(
            call
            for call in responses.calls
            if call.request.url == f"{GALAXY}/api/workflows/{WORKFLOW}/invocations"
        )
        invocation_body = json.loads(invocation.request.body)
        assert invocation_body["inputs_by"] == "step_index"
        assert invocation_body["inputs"]["0"] == [
            {"src": "ld", "id": "ld1"},
            {"src": "ld", "id": "ld2"},
        ]
        assert invocation_body["inputs"]["1"] == {"src": "ld", "id": "ld-meta"}

        report = temp_workspace / "galaxy" / INVOCATION / "Reports" / "AutoReport.html"
        report.parent.mkdir(parents=True)
        report.write_text("<html>galaxy report</html>")

        callback = client.get(
            "/api/v1/task-status", params={"jobId": INVOCATION, "status": "Finished"}
        )
        assert callback.json()["msg"] == f"got status! jobId={INVOCATION} jobStatus=Finished"

        stored = orchestrator.store.get(analysis["id"])
        assert stored.analysis_status == AnalysisStatus.DONE
        assert stored.date_completed.year == 2024

        result = client.get(f"/api/v1/analyses/{analysis['id']}/result", headers=ALICE)
        assert result.status_code == 200
        assert result.text == "<html>galaxy report</html>"


class TestTaskChangeFeed:
    def test_status_change_is_pushed(self, client, analysis_factory):
        analysis = analysis_factory(job_number="36")

        with client.websocket_connect("/api/v1/ws/task-change") as websocket:
            client.get("/api/v1/task-status", params={"jobId": "36", "status": "Finished"})
            message = websocket.receive_json()

        assert message == {
            "msg": "task status change",
            "jobNo": "36",
            "analysisId": analysis.id,
            "status": AnalysisStatus.DONE.value,
        }
