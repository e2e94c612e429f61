"""Named end-to-end scenarios and the runner that executes them.

Each scenario provisions the server, runs ``begin``, the build and ``end``,
then verifies issues, measures and log output. Component keys in
expectations are templates formatted with ``{project}``.

Scenarios:
    sample                 full cycle on ProjectUnderTest
    no-name-version        begin with the project key only
    excluded-and-test      test and excluded sub-projects carry nothing
    multi-language         C# and VB.NET profiles on one solution
    parameters             rule parameter from the profile backup
    fxcop-custom           custom rule created from a template
    verbose                /d:sonar.verbose=true switches logs to Debug
    all-projects-excluded  end fails: nothing to analyse
    no-active-rule         empty profile: success, zero issues
    help                   /? prints the usage banner
"""

import logging
import subprocess
import uuid
from dataclasses import asdict, dataclass, field
from pathlib import Path

from scanner_its import scanner
from scanner_its.build import EXCLUDE_ALL_PROPERTY, BuildInvoker
from scanner_its.config import Config
from scanner_its.errors import AnalysisFailed, AssertionFailure, ExternalBuildFailure
from scanner_its.fixtures import ProjectFixture
from scanner_its.models import (
    BeginConfig,
    EndConfig,
    IssueFilter,
    QualityProfileBinding,
    SessionState,
)
from scanner_its.process import RunCommand
from scanner_its.provisioning import Provisioner
from scanner_its.session import AnalysisSessionController
from scanner_its.verify import ResultVerifier, require_settled

log = logging.getLogger(__name__)

# Module GUIDs are fixed by the fixture .csproj files
SAMPLE_MODULE = "{project}:{project}:1049030E-AC7A-49D0-BEDC-F414C5C7DDD8"
SAMPLE_FILE = SAMPLE_MODULE + ":Foo.cs"
EXCLUDED_NORMAL_MODULE = "{project}:{project}:B93B287C-47DB-4406-9EAB-653BCF7D20DC"
EXCLUDED_TEST_MODULE = "{project}:{project}:2DC588FC-16FB-42F8-9FDA-193852E538AF"


# ---------------------------------------------------------------------------
# Scenario definitions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CustomRule:
    custom_key: str
    template_key: str
    name: str
    description: str
    severity: str = "MAJOR"
    params: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Scenario:
    name: str
    description: str
    fixture: str = "ProjectUnderTest"
    profiles: tuple[str, ...] = ()
    bindings: tuple[QualityProfileBinding, ...] = ()
    custom_rules: tuple[CustomRule, ...] = ()
    project_name: str | None = None
    project_version: str | None = None
    verbose: bool = False
    build_target: str = "Rebuild"
    build_properties: dict[str, str] = field(default_factory=dict)
    expect_build_failure: bool = False
    end: EndConfig = EndConfig()
    expect_failure: bool = False
    expected_reason: str | None = None
    issue_count: int | None = None
    rule_keys: tuple[str, ...] = ()
    messages: tuple[str, ...] = ()
    issue_counts_by_root: dict[str, int] = field(default_factory=dict)
    measures: dict[tuple[str, str], int] = field(default_factory=dict)
    absent_measures: tuple[tuple[str, str], ...] = ()
    log_phrases: tuple[str, ...] = ()
    help_only: bool = False


@dataclass
class ScenarioOutcome:
    name: str
    project_key: str | None
    passed: bool
    state: str
    failure_reason: str | None = None
    issue_count: int | None = None
    logs: str = field(default="", repr=False)

    def to_dict(self, include_logs: bool = False) -> dict:
        data = asdict(self)
        if not include_logs:
            data.pop("logs")
        return data


_SAMPLE_BINDING = (QualityProfileBinding("cs", "ProfileForTest"),)
_SAMPLE_PROFILE = ("ProjectUnderTest/TestQualityProfile.xml",)
_SAMPLE_MEASURES = {
    (SAMPLE_FILE, "ncloc"): 23,
    ("{project}", "ncloc"): 37,
    (SAMPLE_FILE, "lines"): 58,
}

SCENARIOS: dict[str, Scenario] = {s.name: s for s in (
    Scenario(
        name="sample",
        description="Full begin/build/end cycle with name and version",
        profiles=_SAMPLE_PROFILE,
        bindings=_SAMPLE_BINDING,
        project_name="sample",
        project_version="1.0",
        issue_count=4,
        measures=_SAMPLE_MEASURES,
    ),
    Scenario(
        name="no-name-version",
        description="begin with only the project key gives the same results",
        profiles=_SAMPLE_PROFILE,
        bindings=_SAMPLE_BINDING,
        issue_count=4,
        measures=_SAMPLE_MEASURES,
    ),
    Scenario(
        name="excluded-and-test",
        description="Issues and ncloc land only in the normal project",
        fixture="ExcludedTest",
        profiles=_SAMPLE_PROFILE,
        bindings=_SAMPLE_BINDING,
        project_name="excludedAndTest",
        project_version="1.0",
        issue_count=4,
        issue_counts_by_root={EXCLUDED_NORMAL_MODULE: 4, EXCLUDED_TEST_MODULE: 0},
        measures={("{project}", "ncloc"): 45, (EXCLUDED_NORMAL_MODULE, "ncloc"): 45},
    ),
    Scenario(
        name="multi-language",
        description="C# and VB.NET projects analysed with their own profiles",
        fixture="ConsoleMultiLanguage",
        profiles=(
            "ConsoleMultiLanguage/TestQualityProfileCSharp.xml",
            "ConsoleMultiLanguage/TestQualityProfileVBNet.xml",
        ),
        bindings=(
            QualityProfileBinding("cs", "ProfileForTestCSharp"),
            QualityProfileBinding("vbnet", "ProfileForTestVBNet"),
        ),
        project_name="multilang",
        project_version="1.0",
        verbose=True,
        issue_count=8,
        rule_keys=(
            "vbnet:S3385",
            "vbnet:S2358",
            "fxcop:DoNotRaiseReservedExceptionTypes",
            "fxcop:DoNotPassLiteralsAsLocalizedParameters",
            "fxcop-vbnet:AvoidUnusedPrivateFields",
            "fxcop-vbnet:AvoidUncalledPrivateCode",
            "csharpsquid:S2228",
            "csharpsquid:S1134",
        ),
        measures={("{project}", "ncloc"): 68},
    ),
    Scenario(
        name="parameters",
        description="Rule parameters from the profile change the reported message",
        profiles=("ProjectUnderTest/TestQualityProfileParameters.xml",),
        bindings=(QualityProfileBinding("cs", "ProfileForTestParameters"),),
        project_name="parameters",
        project_version="1.0",
        issue_count=1,
        rule_keys=("csharpsquid:S107",),
        messages=("Method has 3 parameters, which is greater than the 2 authorized.",),
    ),
    Scenario(
        name="fxcop-custom",
        description="A custom FxCop rule created from the rule template raises one issue",
        custom_rules=(
            CustomRule(
                custom_key="customfxcop",
                template_key="fxcop:CustomRuleTemplate",
                name="customfxcop",
                description="custom rule",
                params={"CheckId": "CA2201"},
            ),
        ),
        profiles=("ProjectUnderTest/TestQualityProfileFxCop.xml",),
        bindings=(QualityProfileBinding("cs", "ProfileForTestFxCop"),),
        project_name="sample",
        project_version="1.0",
        issue_count=1,
        rule_keys=("fxcop:customfxcop",),
    ),
    Scenario(
        name="verbose",
        description="/d:sonar.verbose=true switches the scanner to debug logging",
        profiles=_SAMPLE_PROFILE,
        bindings=_SAMPLE_BINDING,
        project_name="verbose",
        project_version="1.0",
        verbose=True,
        log_phrases=(scanner.KNOWN_PHRASES["downloading"], scanner.KNOWN_PHRASES["verbose_enabled"]),
    ),
    Scenario(
        name="all-projects-excluded",
        description="Excluding every project makes end fail with nothing to analyse",
        profiles=_SAMPLE_PROFILE,
        bindings=_SAMPLE_BINDING,
        project_name="sample",
        project_version="1.0",
        build_properties={EXCLUDE_ALL_PROPERTY: "true"},
        expect_failure=True,
        expected_reason="no_analysable_projects",
        log_phrases=(
            scanner.KNOWN_PHRASES["project_excluded"],
            scanner.KNOWN_PHRASES["no_analysable_projects"],
        ),
        absent_measures=((SAMPLE_MODULE, "ncloc"),),
    ),
    Scenario(
        name="no-active-rule",
        description="An empty quality profile gives a successful analysis with no issues",
        profiles=("ProjectUnderTest/TestEmptyQualityProfile.xml",),
        bindings=(QualityProfileBinding("cs", "EmptyProfileForTest"),),
        project_name="empty",
        project_version="1.0",
        verbose=True,
        issue_count=0,
    ),
    Scenario(
        name="help",
        description="/? exits successfully and prints the usage banner",
        help_only=True,
        log_phrases=(scanner.KNOWN_PHRASES["usage"],),
    ),
)}


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

class ScenarioRunner:
    """Composes provisioning, session control, build and verification."""

    def __init__(
        self,
        config: Config,
        client=None,
        run: RunCommand = subprocess.run,
        workspace: Path | str | None = None,
        controller: AnalysisSessionController | None = None,
    ) -> None:
        self._config = config
        self._client = client or config.make_client()
        self._provisioner = Provisioner(self._client)
        self._verifier = ResultVerifier(self._client)
        self._fixtures = ProjectFixture(config.fixtures_root)
        self._builder = BuildInvoker(config.msbuild_command, config.timeouts.build, run=run)
        self._controller = controller or AnalysisSessionController(
            self._client, config.scanner_command, config.timeouts, run=run
        )
        self._workspace = workspace

    def run(self, scenario: Scenario, unique_key: bool = False) -> ScenarioOutcome:
        """Execute *scenario*; raise AssertionFailure or the unexpected error on failure."""
        log.info("Scenario '%s': %s", scenario.name, scenario.description)
        if scenario.help_only:
            return self._run_help(scenario)

        key = self._config.project_key
        if unique_key:
            key = f"{key}-{uuid.uuid4().hex[:8]}"

        self._provision(scenario, key)
        project_dir = self._fixtures.stage(scenario.fixture, self._workspace)

        begin = BeginConfig(
            project_key=key,
            project_name=scenario.project_name,
            project_version=scenario.project_version,
            verbose=scenario.verbose,
        )
        session = self._controller.begin(begin, project_dir)
        try:
            build = self._builder.run(project_dir, scenario.build_target, scenario.build_properties)
        except Exception:
            self._controller.abandon(session)
            raise
        self._controller.mark_built(session, build)
        if build.success == scenario.expect_build_failure:
            self._controller.abandon(session)
            if build.success:
                raise AssertionFailure(
                    f"Scenario '{scenario.name}' expected the build to fail, but it succeeded"
                )
            raise ExternalBuildFailure(
                f"Build of '{scenario.fixture}' exited with code {build.exit_code}",
                result=build,
            )

        failure: AnalysisFailed | None = None
        try:
            self._controller.end(session, scenario.end)
        except AnalysisFailed as exc:
            if not scenario.expect_failure:
                raise
            log.info("Scenario '%s' failed as expected: %s", scenario.name, exc.reason)
            failure = exc

        if scenario.expect_failure and failure is None:
            raise AssertionFailure(f"Scenario '{scenario.name}' expected end to fail, but it succeeded")
        if failure and scenario.expected_reason and failure.reason != scenario.expected_reason:
            raise AssertionFailure(
                f"Scenario '{scenario.name}' failed with reason '{failure.reason}', "
                f"expected '{scenario.expected_reason}'"
            )

        _assert_log_phrases(scenario, session.logs)
        issue_count = None if failure else self._verify(scenario, session, key)
        for component, metric in scenario.absent_measures:
            self._verifier.assert_measure_absent(component.format(project=key), metric)

        return ScenarioOutcome(
            name=scenario.name,
            project_key=key,
            passed=True,
            state=session.state.value,
            failure_reason=session.failure_reason,
            issue_count=issue_count,
            logs=session.logs,
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _run_help(self, scenario: Scenario) -> ScenarioOutcome:
        cwd = self._fixtures.root if self._fixtures.root.is_dir() else Path.cwd()
        result = self._controller.help(cwd)
        _assert_log_phrases(scenario, result.logs)
        return ScenarioOutcome(
            name=scenario.name,
            project_key=None,
            passed=True,
            state=SessionState.IDLE.value,
            logs=result.logs,
        )

    def _provision(self, scenario: Scenario, key: str) -> None:
        self._provisioner.delete_project(key)
        for rule in scenario.custom_rules:
            self._provisioner.create_rule(
                custom_key=rule.custom_key,
                template_key=rule.template_key,
                name=rule.name,
                description=rule.description,
                severity=rule.severity,
                params=rule.params,
            )
        for descriptor in scenario.profiles:
            self._provisioner.restore_profile(self._fixtures.descriptor(descriptor))
        self._provisioner.create_project(key, scenario.project_name or scenario.name)
        for binding in scenario.bindings:
            self._provisioner.associate_profile(key, binding)

    def _verify(self, scenario: Scenario, session, key: str) -> int:
        require_settled(session)
        project_filter = IssueFilter(component_key=key, qualifier="root")

        if scenario.issue_count is not None:
            issues = self._verifier.assert_issue_count(scenario.issue_count, project_filter)
        else:
            issues = self._verifier.list_issues(project_filter)
        missing = sorted(set(scenario.messages) - {i.message for i in issues})
        if missing:
            raise AssertionFailure(f"Scenario '{scenario.name}': no issue with message(s) {missing}")
        if scenario.rule_keys:
            self._verifier.assert_rule_keys_include(scenario.rule_keys, project_filter)
        for root, count in scenario.issue_counts_by_root.items():
            self._verifier.assert_issue_count(
                count, IssueFilter(component_key=root.format(project=key), qualifier="root")
            )
        for (component, metric), value in scenario.measures.items():
            self._verifier.assert_measure(component.format(project=key), metric, value)
        return len(issues)


def _assert_log_phrases(scenario: Scenario, logs: str) -> None:
    missing = [p for p in scenario.log_phrases if p not in logs]
    if missing:
        raise AssertionFailure(
            f"Scenario '{scenario.name}': log does not contain " + "; ".join(repr(p) for p in missing)
        )
