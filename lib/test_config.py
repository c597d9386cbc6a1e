"""Tests for validation settings."""

from pathlib import Path

import pytest
from extract_peptides.config import StageArtifacts, ValidationSettings, build_settings
from extract_peptides.errors import ConfigurationError


class TestBuildSettings:
    """Test defaults, the YAML file and explicit overrides."""

    def test_defaults(self) -> None:
        settings = build_settings()
        assert settings == ValidationSettings()
        assert settings.max_targets == 5
        assert settings.evalue == pytest.approx(1e-3)
        assert settings.pident == 90
        assert settings.min_length == 7
        assert settings.sensitive is True

    def test_yaml_file_with_dashes(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.yaml"
        path.write_text("min-length: 10\npident: 95\nsensitive: false\n")
        settings = build_settings(path)
        assert settings.min_length == 10
        assert settings.pident == 95
        assert settings.sensitive is False

    def test_overrides_beat_file(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.yaml"
        path.write_text("pident: 95\n")
        settings = build_settings(path, pident=99, min_length=None)
        assert settings.pident == 99
        assert settings.min_length == 7

    @pytest.mark.parametrize(
        "overrides",
        [{"pident": 101}, {"pident": -1}, {"min_length": 0}, {"max_targets": 0}, {"evalue": 0}],
    )
    def test_out_of_range(self, overrides: dict) -> None:
        with pytest.raises(ConfigurationError, match="Invalid validation settings"):
            build_settings(**overrides)

    def test_unknown_key(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.yaml"
        path.write_text("pidnet: 95\n")
        with pytest.raises(ConfigurationError):
            build_settings(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            build_settings(tmp_path / "absent.yaml")

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            build_settings(path)

    def test_describe(self) -> None:
        assert ValidationSettings(sensitive=False).describe() == (
            "max-targets=5, evalue=0.001, pident=90, min-length=7, sensitive=false"
        )


class TestStageArtifacts:
    """Test the step 2 file layout."""

    def test_names(self, tmp_path: Path) -> None:
        artifacts = StageArtifacts(output_dir=tmp_path)
        assert artifacts.validation_output == tmp_path / "diamond_blast_results.tsv"
        assert artifacts.final_output.name == "final_format_aa_sequences.faa"
