#!/usr/bin/env python3
"""
Test suite for tags.py script.

This module contains tests for tag resolution from job names and build parameters,
the tag to sheet mapping, and the CLI interface.
"""

import json

import pytest
from click.testing import CliRunner
from dotenv import dotenv_values

from qa_pipeline.tags import (
    FALLBACK_SHEETS,
    TAG_SOURCE_CUSTOM,
    TAG_SOURCE_JOB_NAME,
    TAG_SOURCE_QA_SERVICE,
    apply_sheet_to_env_file,
    determine_effective_tag,
    get_effective_sheet_names,
    load_sheet_mapping,
    main,
    map_tag_to_sheets,
    resolve_tag,
    set_sheet,
)


class TestDetermineEffectiveTag:
    """Test cases for determine_effective_tag function."""

    @pytest.mark.parametrize(
        "job_name,expected",
        [
            ("qa-api/INAGOV-daily", "inagov"),
            ("qa-api/sbu-regression", "sbu"),
            ("qa-api/emeterai-smoke-staging", "emeterai-smoke-staging"),
            ("qa-api/telkomsign-daily-dev", "telkomsign"),
            ("qa-api/telkomsign-smoke-dev", "telkomsign-smoke-dev"),
            ("qa-web/perisai-digidoc", "perisai-digidoc"),
            ("qa-web/regression-all-web", "regression"),
        ],
    )
    def test_job_name_rules(self, job_name, expected):
        """Test that job name substrings select the tag."""
        assert determine_effective_tag(job_name, "default") == expected

    def test_first_rule_wins(self):
        """Test that rule order decides between several matching substrings."""
        # 'web-peruriid' also contains 'peruriid', which is checked first.
        assert determine_effective_tag("qa-web/web-peruriid", "default") == "peruriid"
        assert determine_effective_tag("inagov-sbu-combined", "default") == "inagov"

    def test_default_when_no_rule_matches(self):
        """Test that the default tag is used for unknown job names."""
        assert determine_effective_tag("qa-api/something-else", "smoke") == "smoke"

    def test_custom_tag_used_when_no_rule_matches(self):
        """Test that a custom tag applies when the job name has no known service."""
        assert determine_effective_tag("qa-api/custom", "smoke", True, "  @high ") == "high"

    def test_blank_custom_tag_falls_back_to_default(self):
        """Test that an empty custom tag is ignored."""
        assert determine_effective_tag("qa-api/custom", "smoke", True, "   ") == "smoke"


class TestResolveTag:
    """Test cases for resolve_tag function."""

    def test_custom_tag_overrides_job_name(self):
        """Test that CUSTOM_TAG wins over job name rules when enabled."""
        resolution = resolve_tag("qa-api/inagov-daily", "smoke", use_custom_tag=True, custom_tag="@sbu and @high")

        assert resolution.tag == "sbu and @high"
        assert resolution.source == TAG_SOURCE_CUSTOM

    def test_custom_tag_ignored_when_disabled(self):
        """Test that CUSTOM_TAG is ignored unless USE_CUSTOM_TAG is set."""
        resolution = resolve_tag("qa-api/inagov-daily", "smoke", use_custom_tag=False, custom_tag="sbu")

        assert resolution.tag == "inagov"
        assert resolution.source == TAG_SOURCE_JOB_NAME

    def test_empty_custom_tag_falls_back_to_job_name(self):
        """Test that an enabled but empty custom tag uses the job name rules."""
        resolution = resolve_tag("qa-api/mbg-nightly", "smoke", use_custom_tag=True, custom_tag="")

        assert resolution.tag == "mbg"
        assert resolution.source == TAG_SOURCE_JOB_NAME

    def test_qa_service_fallback(self):
        """Test that QA_SERVICE is used when nothing else applies."""
        resolution = resolve_tag("qa-api/generic", "positive")

        assert resolution.tag == "positive"
        assert resolution.source == TAG_SOURCE_QA_SERVICE


class TestMapTagToSheets:
    """Test cases for map_tag_to_sheets and get_effective_sheet_names functions."""

    @pytest.mark.parametrize(
        "tag,expected",
        [
            ("inagov", ["INAGOV"]),
            ("  PERURIID ", ["PERURIID"]),
            ("emeterai-smoke-prod", ["SBU"]),
            ("telkomsign-smoke-dev", ["TELKOMSIGN"]),
            ("perisai-digidoc", ["PERISAI-DIGIDOC"]),
            ("change-password", ["PERURIID"]),
            ("mbg", ["MBG"]),
        ],
    )
    def test_single_service_tags(self, tag, expected):
        """Test that service tags map to their own sheet."""
        assert map_tag_to_sheets(tag) == expected

    def test_multi_service_tag(self):
        """Test that broad tags load all service sheets."""
        assert map_tag_to_sheets("regression") == ["PERURIID", "SBU", "INAGOV", "INAPAS", "INAKU", "TELKOMSIGN"]

    def test_unknown_tag_uses_fallback(self):
        """Test that an unmapped tag loads every sheet."""
        assert map_tag_to_sheets("unmapped") == FALLBACK_SHEETS

    def test_result_is_a_copy(self):
        """Test that callers cannot modify the mapping through the result."""
        sheets = map_tag_to_sheets("regression")
        sheets.append("EXTRA")

        assert "EXTRA" not in map_tag_to_sheets("regression")

    def test_custom_mapping(self):
        """Test mapping with a caller supplied table."""
        mapping = {"alpha": ["A"], "beta": ["B"]}

        assert map_tag_to_sheets("beta-smoke", mapping) == ["B"]
        assert map_tag_to_sheets("gamma", mapping) == FALLBACK_SHEETS

    def test_override_is_split_and_trimmed(self):
        """Test that override sheet names are comma separated with blanks dropped."""
        assert get_effective_sheet_names("inagov", " SBU, ,MBG ,") == ["SBU", "MBG"]

    def test_blank_override_uses_mapping(self):
        """Test that a whitespace override is ignored."""
        assert get_effective_sheet_names("inagov", "  ") == ["INAGOV"]


class TestConfigAndEnvFile:
    """Test cases for load_sheet_mapping and apply_sheet_to_env_file functions."""

    def test_load_sheet_mapping_preserves_order(self, tmp_path):
        """Test that the mapping keeps the file's key order."""
        config_file = tmp_path / "mapping.json"
        config_file.write_text('{"zeta": ["Z"], "alpha": ["A"]}')

        mapping = load_sheet_mapping(config_file)

        assert list(mapping) == ["zeta", "alpha"]

    def test_load_sheet_mapping_missing_file(self, tmp_path):
        """Test FileNotFoundError for a missing config."""
        with pytest.raises(FileNotFoundError):
            load_sheet_mapping(tmp_path / "missing.json")

    def test_load_sheet_mapping_invalid_shape(self, tmp_path):
        """Test that values must be lists."""
        config_file = tmp_path / "mapping.json"
        config_file.write_text('{"alpha": "A"}')

        with pytest.raises(ValueError):
            load_sheet_mapping(config_file)

    def test_apply_sheet_replaces_existing_entry(self, tmp_path):
        """Test that SHEET is replaced while other entries are kept."""
        env_file = tmp_path / ".env"
        env_file.write_text("BASE_URL=https://example.test\nSHEET=OLD\n")

        apply_sheet_to_env_file(env_file, "SBU", spreadsheet_id="sheet-123")

        values = dotenv_values(env_file)
        assert values["SHEET"] == "SBU"
        assert values["SPREADSHEET_ID"] == "sheet-123"
        assert values["BASE_URL"] == "https://example.test"
        assert env_file.read_text().count("SHEET=") == 1

    def test_apply_sheet_creates_file(self, tmp_path):
        """Test that a missing .env file is created."""
        env_file = tmp_path / "project" / ".env"

        apply_sheet_to_env_file(env_file, "INAGOV")

        assert dotenv_values(env_file)["SHEET"] == "INAGOV"


class TestMainCLI:
    """Test cases for the CLI interface."""

    def setup_method(self):
        """Set up test runner for each test."""
        self.runner = CliRunner()

    def test_help_output(self):
        """Test that help is displayed correctly."""
        result = self.runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "Resolve the effective test tag" in result.output
        assert "--job-name" in result.output

    def test_missing_required_arguments(self):
        """Test CLI fails when required arguments are missing."""
        result = self.runner.invoke(main, [])
        assert result.exit_code != 0
        assert "Missing option" in result.output

    def test_resolution_written_to_file(self, tmp_path):
        """Test the JSON result of a resolution."""
        output_file = tmp_path / "out" / "tag.json"

        result = self.runner.invoke(
            main,
            ["--job-name", "qa-api/inapas-daily", "--qa-service", "smoke", "--output", str(output_file)],
        )

        assert result.exit_code == 0
        data = json.loads(output_file.read_text())
        assert data == {"tag": "inapas", "source": TAG_SOURCE_JOB_NAME, "sheets": ["INAPAS"]}

    def test_invalid_config(self, tmp_path):
        """Test that a malformed mapping file is reported."""
        config_file = tmp_path / "mapping.json"
        config_file.write_text("not json")

        result = self.runner.invoke(
            main, ["--job-name", "qa-api/x", "--qa-service", "smoke", "--config", str(config_file)]
        )

        assert result.exit_code != 0
        assert "Invalid sheet mapping" in result.output

    def test_set_sheet(self, tmp_path):
        """Test the set-sheet command."""
        env_file = tmp_path / ".env"

        result = self.runner.invoke(set_sheet, ["--env-file", str(env_file), "--sheet", "MBG"])

        assert result.exit_code == 0
        assert dotenv_values(env_file)["SHEET"] == "MBG"

    def test_set_sheet_rejects_blank(self, tmp_path):
        """Test that a blank sheet name is rejected."""
        result = self.runner.invoke(set_sheet, ["--env-file", str(tmp_path / ".env"), "--sheet", " "])
        assert result.exit_code != 0


if __name__ == "__main__":
    # Run tests when script is executed directly
    pytest.main([__file__, "-v"])
