"""
Tests for version module.

Covers __version__ attribute and check_version_consistency().
"""

import re

import beads_sync
from beads_sync.version import check_version_consistency


class TestVersionAttribute:
    """Test __version__ is properly set."""

    def test_version_format(self):
        """__version__ matches semver pattern (X.Y.Z)."""
        assert re.match(r"^\d+\.\d+\.\d+$", beads_sync.__version__)


class TestCheckVersionConsistency:
    """Test check_version_consistency() function."""

    def test_matching_versions(self, tmp_path):
        pyproject = tmp_path / "pyproject.toml"
        pyproject.write_text(
            f'[project]\nversion = "{beads_sync.__version__}"\n'
        )
        ok, message = check_version_consistency(pyproject)
        assert ok is True
        assert message == f"Version verified: {beads_sync.__version__}"

    def test_mismatch(self, tmp_path):
        pyproject = tmp_path / "pyproject.toml"
        pyproject.write_text('[project]\nversion = "99.0.0"\n')
        ok, message = check_version_consistency(pyproject)
        assert ok is False
        assert "Version mismatch" in message
        assert "99.0.0" in message
        assert "pip install -e ." in message

    def test_missing_pyproject_is_consistent(self, tmp_path):
        ok, message = check_version_consistency(tmp_path / "missing.toml")
        assert ok is True
        assert message.startswith("Running beads-sync")

    def test_unreadable_pyproject(self, tmp_path):
        pyproject = tmp_path / "pyproject.toml"
        pyproject.write_text("[project\nversion = ")
        ok, message = check_version_consistency(pyproject)
        assert ok is False
        assert "Failed to read version" in message

    def test_source_checkout_matches(self):
        """The repository's own pyproject.toml agrees with the package."""
        ok, _ = check_version_consistency()
        assert ok is True
