"""Tests for scanner_its/session.py"""

import subprocess
import threading

import pytest

from conftest import BASE, PROJECT, mock_provisioned, mock_settled
from scanner_its.errors import (
    AnalysisFailed,
    ConfigError,
    ExternalServiceFailure,
    OperationTimeout,
    SessionAlreadyActive,
    SessionNotBuilt,
    SessionStateError,
)
from scanner_its.models import BeginConfig, EndConfig, ProcessResult, SessionState
from scanner_its.session import AnalysisSessionController

BUILD_OK = ProcessResult(command=("msbuild",), exit_code=0, logs="Build succeeded.")
BUILD_FAILED = ProcessResult(command=("msbuild",), exit_code=1, logs="Build FAILED.")


def _begin(controller, tmp_path, **kwargs):
    return controller.begin(BeginConfig(PROJECT, **kwargs), tmp_path)


# ---------------------------------------------------------------------------
# begin
# ---------------------------------------------------------------------------

def test_begin_moves_to_began(controller, fake_run, requests_mock, tmp_path):
    mock_provisioned(requests_mock)
    mock_settled(requests_mock)
    session = _begin(controller, tmp_path, project_name="sample", project_version="1.0")

    assert session.state is SessionState.BEGAN
    assert session.baseline_task == "old"
    assert session.working_dir == str(tmp_path)
    assert fake_run.calls[0][:3] == ["scanner", "begin", f"/k:{PROJECT}"]
    assert f"/d:sonar.host.url={BASE}" in fake_run.calls[0]
    assert controller.active(PROJECT) is session


def test_begin_with_empty_key_fails_without_contact(controller, fake_run, requests_mock, tmp_path):
    with pytest.raises(ConfigError):
        controller.begin(BeginConfig(""), tmp_path)
    assert not requests_mock.called
    assert fake_run.calls == []


def test_begin_unprovisioned_project_is_rejected(controller, fake_run, requests_mock, tmp_path):
    requests_mock.get(f"{BASE}/api/projects/search", json={"components": []})
    with pytest.raises(ExternalServiceFailure, match="not provisioned"):
        _begin(controller, tmp_path)
    assert fake_run.calls == []
    assert controller.active(PROJECT) is None


def test_begin_scanner_failure_is_rejected(controller, fake_run, requests_mock, tmp_path):
    mock_provisioned(requests_mock)
    mock_settled(requests_mock)
    fake_run.script("begin", 1, "Could not connect")
    with pytest.raises(AnalysisFailed) as info:
        _begin(controller, tmp_path)
    assert info.value.result.exit_code == 1
    assert controller.active(PROJECT) is None


def test_begin_twice_is_session_already_active(controller, fake_run, requests_mock, tmp_path):
    mock_provisioned(requests_mock)
    mock_settled(requests_mock)
    _begin(controller, tmp_path)
    calls = len(fake_run.calls)
    with pytest.raises(SessionAlreadyActive):
        _begin(controller, tmp_path)
    assert len(fake_run.calls) == calls


def test_begin_timeout_releases_key(controller, fake_run, requests_mock, tmp_path):
    mock_provisioned(requests_mock)
    mock_settled(requests_mock)
    fake_run.raises["begin"] = subprocess.TimeoutExpired(["scanner"], 10)
    with pytest.raises(OperationTimeout):
        _begin(controller, tmp_path)
    assert controller.active(PROJECT) is None


def test_concurrent_begins_for_one_key_admit_one(controller, requests_mock, tmp_path):
    mock_provisioned(requests_mock)
    requests_mock.get(f"{BASE}/api/ce/component", json={"queue": []})
    errors: list[Exception] = []

    def attempt():
        try:
            _begin(controller, tmp_path)
        except SessionAlreadyActive as exc:
            errors.append(exc)

    threads = [threading.Thread(target=attempt) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(errors) == 3


# ---------------------------------------------------------------------------
# build / end ordering
# ---------------------------------------------------------------------------

def test_end_without_build_raises_and_queries_nothing(controller, fake_run, requests_mock, tmp_path):
    mock_provisioned(requests_mock)
    mock_settled(requests_mock)
    session = _begin(controller, tmp_path)
    http_calls = requests_mock.call_count

    with pytest.raises(SessionNotBuilt):
        controller.end(session)

    assert requests_mock.call_count == http_calls
    assert fake_run.verbs() == ["begin"]
    assert session.state is SessionState.BEGAN


def test_end_from_idle_raises(controller):
    from scanner_its.models import AnalysisSession
    with pytest.raises(SessionNotBuilt):
        controller.end(AnalysisSession(PROJECT))


def test_mark_built_requires_began(controller):
    from scanner_its.models import AnalysisSession
    with pytest.raises(SessionStateError):
        controller.mark_built(AnalysisSession(PROJECT), BUILD_OK)


def test_failed_build_still_allows_end(controller, fake_run, requests_mock, tmp_path):
    mock_provisioned(requests_mock)
    mock_settled(requests_mock)
    session = _begin(controller, tmp_path)
    controller.mark_built(session, BUILD_FAILED)
    assert session.state is SessionState.BUILT
    controller.end(session)
    assert session.state is SessionState.ENDED_SUCCESS


# ---------------------------------------------------------------------------
# end
# ---------------------------------------------------------------------------

def test_end_waits_for_background_task(controller, fake_run, requests_mock, tmp_path):
    mock_provisioned(requests_mock)
    mock_settled(requests_mock)
    session = _begin(controller, tmp_path)
    controller.mark_built(session, BUILD_OK)

    controller.end(session, EndConfig(verbose=True))

    assert session.state is SessionState.ENDED_SUCCESS
    assert fake_run.calls[-1] == ["scanner", "end", "/d:sonar.verbose=true", "/d:sonar.login=squ_test"]
    ce_calls = [r for r in requests_mock.request_history if r.path == "/api/ce/component"]
    assert len(ce_calls) == 3
    assert controller.active(PROJECT) is None


def test_end_failure_reports_reason(controller, fake_run, requests_mock, tmp_path):
    mock_provisioned(requests_mock)
    mock_settled(requests_mock)
    session = _begin(controller, tmp_path)
    controller.mark_built(session, BUILD_OK)
    fake_run.script("end", 1, "No analysable projects were found. SonarQube analysis will not be performed.")

    with pytest.raises(AnalysisFailed) as info:
        controller.end(session)

    assert info.value.reason == "no_analysable_projects"
    assert session.state is SessionState.ENDED_FAILURE
    assert session.failure_reason == "no_analysable_projects"
    assert controller.active(PROJECT) is None


def test_failed_background_task_is_end_failure(controller, fake_run, requests_mock, tmp_path):
    mock_provisioned(requests_mock)
    mock_settled(requests_mock, status="FAILED")
    session = _begin(controller, tmp_path)
    controller.mark_built(session, BUILD_OK)

    with pytest.raises(AnalysisFailed):
        controller.end(session)
    assert session.failure_reason == "background_task_failed"


def test_settlement_timeout(client, timeouts, fake_run, requests_mock, tmp_path):
    ticks = iter(range(100))
    controller = AnalysisSessionController(
        client, ["scanner"], timeouts, run=fake_run,
        sleep=lambda _: None, clock=lambda: next(ticks),
    )
    mock_provisioned(requests_mock)
    requests_mock.get(f"{BASE}/api/ce/component",
                      json={"queue": [{"id": "t", "status": "IN_PROGRESS"}]})
    session = _begin(controller, tmp_path)
    controller.mark_built(session, BUILD_OK)

    with pytest.raises(OperationTimeout, match="not processed"):
        controller.end(session)
    assert session.state is SessionState.ENDED_FAILURE
    assert controller.active(PROJECT) is None


def test_key_can_begin_again_after_end(controller, requests_mock, tmp_path):
    mock_provisioned(requests_mock)
    mock_settled(requests_mock)
    session = _begin(controller, tmp_path)
    controller.mark_built(session, BUILD_OK)
    controller.end(session)

    requests_mock.get(f"{BASE}/api/ce/component", json={"current": {"id": "new"}})
    assert _begin(controller, tmp_path).state is SessionState.BEGAN


# ---------------------------------------------------------------------------
# help
# ---------------------------------------------------------------------------

def test_help_succeeds_with_usage_banner(controller, fake_run, requests_mock, tmp_path):
    fake_run.script("/?", 0, "SonarQube Scanner for MSBuild\nUsage:\n  begin ...")
    result = controller.help(tmp_path)
    assert result.success
    assert not requests_mock.called


def test_help_without_banner_fails(controller, fake_run, tmp_path):
    fake_run.script("/?", 0, "nothing useful")
    with pytest.raises(AnalysisFailed):
        controller.help(tmp_path)
