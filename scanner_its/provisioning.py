"""Server-side preparation that must happen before ``begin``.

Functions mirror the SonarQube web services used to provision a project:
    create_project / delete_project / is_provisioned
    restore_profile / associate_profile
    create_rule (custom rule from a template)
"""

import logging
from pathlib import Path

from scanner_its.client import NotFoundError, SonarClient
from scanner_its.models import QualityProfileBinding

log = logging.getLogger(__name__)


class Provisioner:
    def __init__(self, client: SonarClient) -> None:
        self._client = client

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(self, key: str, name: str) -> None:
        log.info("Provisioning project %s (%s)", key, name)
        self._client.post("/api/projects/create", {"project": key, "name": name})

    def delete_project(self, key: str) -> bool:
        """Delete *key*; return False when it did not exist."""
        try:
            self._client.post("/api/projects/delete", {"project": key})
        except NotFoundError:
            return False
        log.info("Deleted project %s", key)
        return True

    def is_provisioned(self, key: str) -> bool:
        data = self._client.get("/api/projects/search", {"projects": key})
        return any(c.get("key") == key for c in data.get("components", []))

    # ------------------------------------------------------------------
    # Quality profiles
    # ------------------------------------------------------------------

    def restore_profile(self, descriptor: Path) -> None:
        """Upload a profile backup; an existing profile of the same name is replaced."""
        log.info("Restoring quality profile from %s", descriptor)
        with Path(descriptor).open("rb") as backup:
            self._client.post(
                "/api/qualityprofiles/restore",
                files={"backup": (Path(descriptor).name, backup, "application/xml")},
            )

    def associate_profile(self, key: str, binding: QualityProfileBinding) -> None:
        log.info("Binding %s profile '%s' to %s", binding.language, binding.profile_name, key)
        self._client.post(
            "/api/qualityprofiles/add_project",
            {
                "project": key,
                "language": binding.language,
                "qualityProfile": binding.profile_name,
            },
        )

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def create_rule(
        self,
        custom_key: str,
        template_key: str,
        name: str,
        description: str,
        severity: str = "MAJOR",
        params: dict[str, str] | None = None,
    ) -> dict:
        """Instantiate a custom rule from *template_key*, e.g. ``fxcop:CustomRuleTemplate``."""
        data = {
            "custom_key": custom_key,
            "template_key": template_key,
            "name": name,
            "markdown_description": description,
            "severity": severity,
        }
        if params:
            data["params"] = ";".join(f"{k}={v}" for k, v in params.items())
        log.info("Creating custom rule %s from %s", custom_key, template_key)
        return self._client.post("/api/rules/create", data)
