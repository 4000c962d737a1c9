"""Tests for TreekitSettings."""

from __future__ import annotations

from pathlib import Path

import pydantic
import pytest
from pytest_check import check

from treekit.config import TreekitSettings
from treekit.tree.prediction import BINS_LIMIT, DEFAULT_Z
from treekit.tree.rules import INDENT


@pytest.fixture(autouse=True)
def clear_treekit_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Run each test without TREEKIT_* variables or a local .env file.

    Args:
        monkeypatch (pytest.MonkeyPatch): Pytest fixture for environment patching.
        tmp_path (Path): Empty working directory.
    """
    for name in ("BINS_LIMIT", "REGRESSION_Z", "WILSON_Z", "RULE_INDENT", "MISSING_STRATEGY"):
        monkeypatch.delenv(f"TREEKIT_{name}", raising=False)
    monkeypatch.chdir(tmp_path)


class TestTreekitSettings:
    """Tests for defaults, environment overrides and validation."""

    def test_defaults(self) -> None:
        """Defaults match the module constants."""
        # Act
        settings = TreekitSettings()

        # Assert
        with check:
            assert settings.bins_limit == BINS_LIMIT == 32
        with check:
            assert settings.regression_z == settings.wilson_z == DEFAULT_Z
        with check:
            assert settings.rule_indent == INDENT
        with check:
            assert settings.missing_strategy == "last_prediction"

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """TREEKIT_* variables override the defaults.

        Args:
            monkeypatch (pytest.MonkeyPatch): Pytest fixture for environment patching.
        """
        # Arrange
        monkeypatch.setenv("TREEKIT_BINS_LIMIT", "8")
        monkeypatch.setenv("TREEKIT_MISSING_STRATEGY", "proportional")
        monkeypatch.setenv("TREEKIT_WILSON_Z", "2.58")

        # Act
        settings = TreekitSettings()

        # Assert
        with check:
            assert settings.bins_limit == 8
        with check:
            assert settings.missing_strategy == "proportional"
        with check:
            assert settings.wilson_z == 2.58

    def test_dotenv_file_is_read(self, tmp_path: Path) -> None:
        """A .env file in the working directory is read.

        Args:
            tmp_path (Path): Working directory set by the autouse fixture.
        """
        # Arrange
        (tmp_path / ".env").write_text("TREEKIT_RULE_INDENT='  '\n", encoding="utf-8")

        # Act / Assert
        assert TreekitSettings().rule_indent == "  "

    @pytest.mark.parametrize(
        "overrides",
        [{"bins_limit": 0}, {"regression_z": 0.0}, {"missing_strategy": "majority"}],
        ids=["zero-bins", "zero-z", "unknown-strategy"],
    )
    def test_invalid_values_rejected(self, overrides: dict[str, object]) -> None:
        """Out-of-range values fail validation.

        Args:
            overrides (dict[str, object]): Invalid keyword arguments.
        """
        # Act / Assert
        with pytest.raises(pydantic.ValidationError):
            TreekitSettings(**overrides)  # type: ignore[arg-type]
