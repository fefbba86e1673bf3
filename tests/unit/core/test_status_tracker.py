"""
Unit tests for the status tracker: callback (push) path, polling (pull)
path, write conflicts and the background sweeper.
"""

from datetime import datetime
from unittest.mock import Mock

import pytest

from flowgate.core.exceptions import StaleWriteError, TransientError
from flowgate.core.notifier import FanoutNotifier
from flowgate.core.schemas import AnalysisStatus, JobResult, JobStatusBlock
from flowgate.core.status_tracker import (
    MAX_WRITE_ATTEMPTS,
    CallbackOutcome,
    PollScope,
    StatusSweeper,
    StatusTracker,
    periodic_check_needed,
    status_from_result,
    status_from_token,
)


@pytest.fixture
def notifier():
    return FanoutNotifier()


@pytest.fixture
def notifications(notifier):
    received = []
    notifier.subscribe(received.append)
    return received


@pytest.fixture
def tracker(registry, clients, store, notifier):
    return StatusTracker(registry, clients, store, notifier, max_workers=2)


class TestStatusMapping:
    @pytest.mark.parametrize(
        "token,expected",
        [
            ("Finished", AnalysisStatus.DONE),
            ("finished", AnalysisStatus.DONE),
            ("ERROR", AnalysisStatus.ERROR),
            ("Processing", AnalysisStatus.PROCESSING),
            ("queued", AnalysisStatus.PROCESSING),
            (None, AnalysisStatus.PROCESSING),
        ],
    )
    def test_status_from_token(self, token, expected):
        assert status_from_token(token) == expected

    def test_status_from_result(self):
        assert status_from_result(JobResult()) == AnalysisStatus.PROCESSING
        assert (
            status_from_result(JobResult(status=JobStatusBlock(is_finished=True)))
            == AnalysisStatus.DONE
        )
        assert (
            status_from_result(
                JobResult(status=JobStatusBlock(is_finished=True, has_error=True))
            )
            == AnalysisStatus.ERROR
        )

    def test_periodic_check_needed(self, analysis_builder):
        done = analysis_builder(analysis_status=AnalysisStatus.DONE)
        failed_submit = analysis_builder(job_number="-1", analysis_status=AnalysisStatus.ERROR)
        running = analysis_builder(analysis_status=AnalysisStatus.PROCESSING)
        remote_error = analysis_builder(analysis_status=AnalysisStatus.ERROR)

        assert not periodic_check_needed([])
        assert not periodic_check_needed([done, failed_submit])
        assert periodic_check_needed([done, running])
        assert periodic_check_needed([remote_error])


class TestCallbackOutcome:
    def test_messages(self):
        assert CallbackOutcome().message == "got no status!"
        assert (
            CallbackOutcome(job_id="1292", status_token="Finished").message
            == "got status! jobId=1292 jobStatus=Finished"
        )


class TestHandleCallback:
    """Test the push path."""

    def test_finished_marks_done_and_notifies(self, tracker, store, analysis_factory, notifications):
        analysis = analysis_factory(job_number="36")

        outcome = tracker.handle_callback("36", "Finished")

        assert outcome.applied
        stored = store.get(analysis.id)
        assert stored.analysis_status == AnalysisStatus.DONE
        assert stored.date_completed is not None
        assert notifications == [
            {
                "msg": "task status change",
                "jobNo": "36",
                "analysisId": analysis.id,
                "status": AnalysisStatus.DONE.value,
            }
        ]

    def test_error_marks_error(self, tracker, store, analysis_factory):
        analysis = analysis_factory(job_number="36")

        tracker.handle_callback("36", "Error")

        assert store.get(analysis.id).analysis_status == AnalysisStatus.ERROR

    def test_unknown_token_means_processing(self, tracker, store, analysis_factory):
        analysis = analysis_factory(job_number="36", analysis_status=AnalysisStatus.INIT)

        outcome = tracker.handle_callback("36", "Whatever")

        assert outcome.applied
        assert store.get(analysis.id).analysis_status == AnalysisStatus.PROCESSING

    def test_duplicate_callback_is_idempotent(self, tracker, analysis_factory, notifications):
        analysis_factory(job_number="36")

        tracker.handle_callback("36", "Finished")
        second = tracker.handle_callback("36", "Finished")

        assert not second.applied
        assert len(notifications) == 1

    def test_done_is_never_overwritten(self, tracker, store, analysis_factory):
        analysis = analysis_factory(job_number="36", analysis_status=AnalysisStatus.DONE)

        outcome = tracker.handle_callback("36", "Error")

        assert not outcome.applied
        assert store.get(analysis.id).analysis_status == AnalysisStatus.DONE

    def test_hidden_is_never_overwritten(self, tracker, store, analysis_factory):
        analysis = analysis_factory(job_number="36")
        store.hide(analysis.id)

        tracker.handle_callback("36", "Finished")

        assert store.get(analysis.id).analysis_status == AnalysisStatus.HIDDEN

    @pytest.mark.parametrize("token", ["Processing", "Whatever"])
    def test_error_is_not_reopened_by_late_callback(
        self, tracker, store, analysis_factory, notifications, token
    ):
        analysis = analysis_factory(job_number="77", analysis_status=AnalysisStatus.ERROR)

        outcome = tracker.handle_callback("77", token)

        assert not outcome.applied
        assert outcome.status == AnalysisStatus.ERROR
        assert store.get(analysis.id).analysis_status == AnalysisStatus.ERROR
        assert notifications == []

    def test_error_can_still_finish(self, tracker, store, analysis_factory):
        analysis = analysis_factory(job_number="77", analysis_status=AnalysisStatus.ERROR)

        outcome = tracker.handle_callback("77", "Finished")

        assert outcome.applied
        assert store.get(analysis.id).analysis_status == AnalysisStatus.DONE

    @pytest.mark.parametrize("job_id", ["-1", "0"])
    def test_non_positive_job_id_ignored(self, tracker, store, analysis_factory, job_id):
        analysis = analysis_factory(job_number="-1", analysis_status=AnalysisStatus.ERROR)

        outcome = tracker.handle_callback(job_id, "Finished")

        assert not outcome.applied
        assert outcome.message == f"got status! jobId={job_id} jobStatus=Finished"
        assert store.get(analysis.id).analysis_status == AnalysisStatus.ERROR

    def test_unknown_job_acknowledged(self, tracker):
        outcome = tracker.handle_callback("9999", "Finished")

        assert not outcome.applied
        assert outcome.reason == "unknown job"

    def test_missing_job_id(self, tracker):
        outcome = tracker.handle_callback(None, None)

        assert outcome.message == "got no status!"

    def test_galaxy_hex_job_id(self, tracker, store, analysis_factory):
        analysis = analysis_factory(module_id=3, job_number="f2db41e1fa331b3e")
        tracker._completion_time = Mock(return_value=datetime(2024, 1, 1))

        tracker.handle_callback("f2db41e1fa331b3e", "Finished")

        stored = store.get(analysis.id)
        assert stored.analysis_status == AnalysisStatus.DONE
        assert stored.date_completed == datetime(2024, 1, 1)

    def test_retries_after_stale_write(self, tracker, store, analysis_factory):
        analysis_factory(job_number="36")
        real_cas = store.compare_and_swap
        calls = {"count": 0}

        def flaky_cas(analysis, expected_version):
            calls["count"] += 1
            if calls["count"] == 1:
                raise StaleWriteError("changed concurrently")
            return real_cas(analysis, expected_version)

        store.compare_and_swap = flaky_cas

        outcome = tracker.handle_callback("36", "Finished")

        assert outcome.applied
        assert calls["count"] == 2

    def test_gives_up_after_repeated_conflicts(self, tracker, store, analysis_factory, notifications):
        analysis_factory(job_number="36")
        store.compare_and_swap = Mock(side_effect=StaleWriteError("changed concurrently"))

        outcome = tracker.handle_callback("36", "Finished")

        assert not outcome.applied
        assert outcome.reason == "write conflict"
        assert store.compare_and_swap.call_count == MAX_WRITE_ATTEMPTS
        assert notifications == []

    def test_notifier_failure_does_not_fail_write(self, registry, clients, store, analysis_factory):
        notifier = Mock()
        notifier.notify.side_effect = RuntimeError("listener down")
        tracker = StatusTracker(registry, clients, store, notifier)
        analysis = analysis_factory(job_number="36")

        outcome = tracker.handle_callback("36", "Finished")

        assert outcome.applied
        assert store.get(analysis.id).analysis_status == AnalysisStatus.DONE


class TestPoll:
    """Test the pull path."""

    def test_no_candidates_makes_no_calls(self, tracker, clients, analysis_factory):
        client = Mock()
        clients.get = Mock(return_value=client)
        analysis_factory(analysis_status=AnalysisStatus.DONE)
        analysis_factory(job_number="-1", analysis_status=AnalysisStatus.ERROR)

        report = tracker.poll(PollScope.all())

        assert report.checked == 0
        assert not report.periodic_check_needed
        client.status.assert_not_called()

    def test_finished_job_becomes_done(self, tracker, store, analysis_factory, notifications):
        finished = analysis_factory(job_number="36")
        running = analysis_factory(job_number="37")

        report = tracker.poll(PollScope.all())

        assert report.checked == 2
        assert report.updated == [finished.id]
        assert report.unchanged == [running.id]
        assert report.periodic_check_needed
        assert store.get(finished.id).analysis_status == AnalysisStatus.DONE
        assert store.get(running.id).analysis_status == AnalysisStatus.PROCESSING
        assert [n["jobNo"] for n in notifications] == ["36"]

    def test_failed_job_becomes_error(self, tracker, store, mock_client, analysis_factory):
        analysis = analysis_factory(job_number="37")
        mock_client.mark_failed("37")

        tracker.poll(PollScope.all())

        assert store.get(analysis.id).analysis_status == AnalysisStatus.ERROR

    def test_error_is_upgraded_to_done(self, tracker, store, analysis_factory):
        analysis = analysis_factory(job_number="36", analysis_status=AnalysisStatus.ERROR)

        report = tracker.poll(PollScope.all())

        assert report.updated == [analysis.id]
        assert store.get(analysis.id).analysis_status == AnalysisStatus.DONE

    def test_error_is_not_downgraded_to_processing(self, tracker, store, analysis_factory):
        analysis = analysis_factory(job_number="37", analysis_status=AnalysisStatus.ERROR)

        report = tracker.poll(PollScope.all())

        assert report.unchanged == [analysis.id]
        assert store.get(analysis.id).analysis_status == AnalysisStatus.ERROR

    def test_transient_failure_skips_analysis(self, tracker, store, clients, analysis_factory):
        analysis = analysis_factory(job_number="36")
        client = Mock()
        client.status.side_effect = TransientError("Backend unreachable")
        clients.get = Mock(return_value=client)

        report = tracker.poll(PollScope.all())

        assert report.skipped == [analysis.id]
        assert report.periodic_check_needed
        assert store.get(analysis.id).analysis_status == AnalysisStatus.PROCESSING

    def test_non_success_result_skips_analysis(self, tracker, store, clients, analysis_factory):
        analysis = analysis_factory(job_number="36")
        client = Mock()
        client.status.return_value = JobResult(status_code=503, reason="Service Unavailable")
        clients.get = Mock(return_value=client)

        report = tracker.poll(PollScope.all())

        assert report.skipped == [analysis.id]
        assert store.get(analysis.id).version == analysis.version

    def test_unconfigured_module_skips_analysis(self, tracker, analysis_factory):
        orphan = analysis_factory(module_id=404, job_number="36")

        report = tracker.poll(PollScope.all())

        assert report.skipped == [orphan.id]

    def test_owner_scope(self, tracker, store, analysis_factory):
        mine = analysis_factory(user="alice", job_number="36")
        theirs = analysis_factory(user="bob", job_number="36")

        report = tracker.poll(PollScope.owner("alice"))

        assert report.updated == [mine.id]
        assert store.get(theirs.id).analysis_status == AnalysisStatus.PROCESSING

    def test_owner_scope_skips_hidden(self, tracker, store, analysis_factory):
        analysis = analysis_factory(user="alice", job_number="36")
        store.hide(analysis.id)

        assert tracker.candidates(PollScope.owner("alice")) == []

    def test_experiment_scope(self, tracker, analysis_factory):
        analysis_factory(experiment_id=3, job_number="37")
        other = analysis_factory(experiment_id=4, job_number="37")

        candidates = tracker.candidates(PollScope.all(experiment_id=4))

        assert [a.id for a in candidates] == [other.id]

    def test_candidates_exclude_settled(self, tracker, analysis_factory):
        analysis_factory(analysis_status=AnalysisStatus.DONE)
        pending = analysis_factory(analysis_status=AnalysisStatus.INIT)
        failed = analysis_factory(analysis_status=AnalysisStatus.ERROR)

        ids = [a.id for a in tracker.candidates(PollScope.all())]

        assert ids == [pending.id, failed.id]

    def test_poll_does_not_overwrite_concurrent_done(self, tracker, store, mock_client, analysis_factory):
        analysis = analysis_factory(job_number="37")
        mock_client.mark_failed("37")
        # push lands between the poll's read and its write
        store.save(
            store.get(analysis.id).model_copy(update={"analysis_status": AnalysisStatus.DONE})
        )

        server = tracker.registry.get_server("dummy")
        changed = tracker._apply_pull(analysis, mock_client.status(server, "37", None))

        assert not changed
        assert store.get(analysis.id).analysis_status == AnalysisStatus.DONE


class TestStatusSweeper:
    def test_disabled_with_non_positive_interval(self, tracker):
        sweeper = StatusSweeper(tracker, 0)

        assert sweeper.start() is False
        assert not sweeper.is_running

    def test_sweep_once_polls_everything(self, tracker, store, analysis_factory):
        analysis = analysis_factory(user="bob", job_number="36")

        report = StatusSweeper(tracker, 60).sweep_once()

        assert report.updated == [analysis.id]
        assert store.get(analysis.id).analysis_status == AnalysisStatus.DONE

    def test_sweep_once_swallows_errors(self):
        tracker = Mock()
        tracker.poll.side_effect = RuntimeError("store unavailable")

        assert StatusSweeper(tracker, 60).sweep_once() is None

    def test_start_and_stop(self, tracker):
        sweeper = StatusSweeper(tracker, 3600)

        assert sweeper.start()
        assert sweeper.is_running
        sweeper.stop()
        assert not sweeper.is_running
