"""Tests for scanner_its/models.py"""

import pytest

from scanner_its.errors import ConfigError
from scanner_its.models import (
    AnalysisSession,
    BeginConfig,
    EndConfig,
    Issue,
    IssueFilter,
    SessionState,
    is_in_subtree,
)


# ---------------------------------------------------------------------------
# BeginConfig
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("key", ["", "   ", "has space", "12345", "bad/slash"])
def test_begin_config_rejects_bad_keys(key):
    with pytest.raises(ConfigError):
        BeginConfig(project_key=key).validate()


def test_begin_config_accepts_hierarchical_key():
    BeginConfig(project_key="my.project:module-1_a").validate()


def test_begin_config_rejects_empty_name():
    with pytest.raises(ConfigError, match="projectName"):
        BeginConfig(project_key="k", project_name="").validate()


def test_begin_config_rejects_malformed_analysis_parameter():
    with pytest.raises(ConfigError, match="/d:"):
        BeginConfig(project_key="k", extra_arguments=("/d:sonar.verbose",)).validate()


def test_begin_arguments_full():
    config = BeginConfig("my.project", "sample", "1.0", verbose=True,
                         extra_arguments=("/d:sonar.cs.opencover.reportsPaths=x.xml",))
    assert config.arguments() == [
        "/k:my.project",
        "/n:sample",
        "/v:1.0",
        "/d:sonar.verbose=true",
        "/d:sonar.cs.opencover.reportsPaths=x.xml",
    ]


def test_begin_arguments_key_only():
    assert BeginConfig("my.project").arguments() == ["/k:my.project"]


def test_end_arguments():
    assert EndConfig().arguments() == []
    assert EndConfig(verbose=True).arguments() == ["/d:sonar.verbose=true"]


# ---------------------------------------------------------------------------
# AnalysisSession
# ---------------------------------------------------------------------------

def test_session_from_config_parses_parameters():
    session = AnalysisSession.from_config(
        BeginConfig("k", verbose=True, extra_arguments=("/d:a.b=c=d",))
    )
    assert session.state is SessionState.IDLE
    assert session.parameters == {"sonar.verbose": "true", "a.b": "c=d"}
    assert session.token


def test_each_session_gets_its_own_token():
    assert AnalysisSession("k").token != AnalysisSession("k").token


def test_terminal_states():
    assert {s for s in SessionState if s.is_terminal} == {
        SessionState.ENDED_SUCCESS, SessionState.ENDED_FAILURE, SessionState.REJECTED,
    }


# ---------------------------------------------------------------------------
# Keys, issues, filters
# ---------------------------------------------------------------------------

def test_subtree_matching_respects_segments():
    assert is_in_subtree("p:m1", "p:m1")
    assert is_in_subtree("p:m1:Foo.cs", "p:m1")
    assert not is_in_subtree("p:m10:Foo.cs", "p:m1")
    assert not is_in_subtree("p:m2:Foo.cs", "p:m1")


def test_issues_compare_as_sets():
    a = Issue("cs:S1", "msg", "p:f")
    b = Issue.from_api({"rule": "cs:S1", "message": "msg", "component": "p:f", "key": "x"})
    assert {a} == {b}
    assert Issue("cs:S1", "other", "p:f") != a


def test_root_filter_requires_component():
    with pytest.raises(ConfigError):
        IssueFilter(qualifier="root")


def test_filter_rejects_unknown_qualifier():
    with pytest.raises(ConfigError):
        IssueFilter(component_key="k", qualifier="leaf")


def test_any_filter_rejects_component_key():
    with pytest.raises(ConfigError, match="qualifier='root'"):
        IssueFilter(component_key="my.project:mod", qualifier="any")
