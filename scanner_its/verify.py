"""Issue and measure queries, and the assertions scenarios make on them.

Functions on ResultVerifier:
    fetch_issues(filter)                 -> set[Issue]
    count_issues(filter)                 -> int  (one per server record)
    fetch_measure(component, metric)     -> int | float | None
    assert_*                             -> raise AssertionFailure on mismatch

Issue sets are compared by rule, message and owning component; order never
matters. Issue counts are taken over the raw records, so two findings of one
rule on different lines of a file count twice. A measure that was never
computed is ``None``, never ``0``.
"""

import logging

from scanner_its.client import NotFoundError, SonarClient
from scanner_its.errors import AssertionFailure, SessionStateError
from scanner_its.models import AnalysisSession, Issue, IssueFilter, SessionState, is_in_subtree

log = logging.getLogger(__name__)


# --------------------------------------------------------------------------- #
# Helpers
# --------------------------------------------------------------------------- #

def _parse_value(raw: dict):
    """Return a numeric value from a SonarQube measure dict, or None if absent."""
    val = raw.get("value")
    if val is None:
        period = raw.get("period")
        val = period.get("value") if isinstance(period, dict) else None
    if val is None:
        return None
    try:
        f = float(val)
        # Return int when the float is a whole number (e.g. 23.0 → 23)
        return int(f) if f == int(f) else f
    except (ValueError, TypeError):
        return None


def require_settled(session: AnalysisSession) -> None:
    """Raise SessionStateError unless *session* ended successfully."""
    if session.state is not SessionState.ENDED_SUCCESS:
        raise SessionStateError(
            f"Results for '{session.project_key}' are not queryable in state "
            f"'{session.state.value}'."
        )


# --------------------------------------------------------------------------- #
# Verifier
# --------------------------------------------------------------------------- #

class ResultVerifier:
    def __init__(self, client: SonarClient) -> None:
        self._client = client

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def fetch_issues(self, issue_filter: IssueFilter | None = None) -> set[Issue]:
        """Return every issue, or those in the subtree of ``component_key``.

        Filtering by a component that does not exist (e.g. an excluded
        project) yields an empty set.
        """
        return set(self.list_issues(issue_filter))

    def count_issues(self, issue_filter: IssueFilter | None = None) -> int:
        """Number of findings, counting equal rule/message/component pairs separately."""
        return len(self.list_issues(issue_filter))

    def list_issues(self, issue_filter: IssueFilter | None = None) -> list[Issue]:
        """One Issue per server record, in server order."""
        issue_filter = issue_filter or IssueFilter()
        params: dict = {}
        if issue_filter.qualifier == "root":
            params["componentKeys"] = issue_filter.component_key

        try:
            raw = self._client.get_paginated("/api/issues/search", params, results_key="issues")
        except NotFoundError:
            log.debug("No component '%s'; treating as no issues", issue_filter.component_key)
            return []

        issues = [Issue.from_api(i) for i in raw]
        if issue_filter.qualifier == "root":
            issues = [i for i in issues if is_in_subtree(i.component, issue_filter.component_key)]
        return issues

    def fetch_measure(self, component_key: str, metric_key: str):
        """Return the value of *metric_key* on *component_key*, or None if absent."""
        try:
            data = self._client.get(
                "/api/measures/component",
                params={"component": component_key, "metricKeys": metric_key},
            )
        except NotFoundError:
            return None

        measures = data.get("component", {}).get("measures", [])
        for m in measures:
            if m.get("metric") == metric_key:
                return _parse_value(m)
        return None

    # ------------------------------------------------------------------
    # Assertions
    # ------------------------------------------------------------------

    def assert_issue_count(self, expected: int, issue_filter: IssueFilter | None = None) -> list[Issue]:
        issues = self.list_issues(issue_filter)
        if len(issues) != expected:
            where = f" under '{issue_filter.component_key}'" if issue_filter and issue_filter.component_key else ""
            raise AssertionFailure(
                f"Expected {expected} issue(s){where}, found {len(issues)}: "
                + ", ".join(sorted(i.rule_key for i in issues))
            )
        return issues

    def assert_issues(self, expected: set[Issue], issue_filter: IssueFilter | None = None) -> None:
        actual = self.fetch_issues(issue_filter)
        if actual != set(expected):
            missing = set(expected) - actual
            unexpected = actual - set(expected)
            raise AssertionFailure(
                f"Issue sets differ: missing={sorted(missing, key=repr)} "
                f"unexpected={sorted(unexpected, key=repr)}"
            )

    def assert_rule_keys_include(self, rule_keys, issue_filter: IssueFilter | None = None) -> None:
        found = {i.rule_key for i in self.fetch_issues(issue_filter)}
        missing = sorted(set(rule_keys) - found)
        if missing:
            raise AssertionFailure(f"Rule key(s) not reported: {', '.join(missing)}")

    def assert_measure(self, component_key: str, metric_key: str, expected) -> None:
        actual = self.fetch_measure(component_key, metric_key)
        if actual is None:
            raise AssertionFailure(
                f"Measure '{metric_key}' is absent on '{component_key}', expected {expected}"
            )
        if actual != expected:
            raise AssertionFailure(
                f"Measure '{metric_key}' on '{component_key}' is {actual}, expected {expected}"
            )

    def assert_measure_absent(self, component_key: str, metric_key: str) -> None:
        actual = self.fetch_measure(component_key, metric_key)
        if actual is not None:
            raise AssertionFailure(
                f"Measure '{metric_key}' on '{component_key}' should be absent, found {actual}"
            )
