"""Integration-test harness for the SonarQube Scanner for MSBuild."""

__version__ = "0.1.0"
