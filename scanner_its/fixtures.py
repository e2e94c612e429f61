"""Fixture projects staged into a scratch directory before each build."""

import shutil
import tempfile
from pathlib import Path

from scanner_its.errors import ConfigError


class ProjectFixture:
    """Locates fixture projects under *root* and copies them for a build.

    A fixture directory holds the solution to build plus the quality profile
    backups (``*.xml``) its scenarios restore.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def source(self, name: str) -> Path:
        path = self.root / name
        if not path.is_dir():
            raise ConfigError(f"Fixture project not found: '{path}'")
        return path

    def descriptor(self, relative: str) -> Path:
        """Resolve a profile backup path such as ``ProjectUnderTest/TestQualityProfile.xml``."""
        path = self.root / relative
        if not path.is_file():
            raise ConfigError(f"Quality profile descriptor not found: '{path}'")
        return path

    def stage(self, name: str, workspace: Path | str | None = None) -> Path:
        """Copy fixture *name* into *workspace* (a new temp dir by default)."""
        source = self.source(name)
        base = Path(workspace) if workspace else Path(tempfile.mkdtemp(prefix="scanner-its-"))
        target = base / name
        if target.exists():
            shutil.rmtree(target)
        shutil.copytree(source, target)
        return target
