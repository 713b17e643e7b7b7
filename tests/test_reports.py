#!/usr/bin/env python3
"""
Test suite for reports.py script.

This module contains tests for report path sanitisation, report URLs and the copying
of Allure history between runs.
"""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from qa_pipeline.reports import (
    artifact_patterns,
    build_remote_path,
    generate_report_url,
    history,
    history_dir_for,
    main,
    prepare_allure_history,
    sanitize_history_path,
    sanitize_service_name,
    save_allure_history,
)


class TestSanitizeServiceName:
    """Test cases for sanitize_service_name function."""

    @pytest.mark.parametrize(
        "service,expected",
        [
            ("inagov", "inagov"),
            ("@SBU", "sbu"),
            ("@emeterai and @high", "emeterai-high"),
            ("@smoke or @regression", "smoke-regression"),
            ("@api not @slow", "api-slow"),
            ("digidoc dashboard/cmp!", "digidoc-dashboard-cmp"),
            ("--web__peruriid--", "web__peruriid"),
        ],
    )
    def test_sanitize(self, service, expected):
        assert sanitize_service_name(service) == expected

    def test_operator_inside_word_is_kept(self):
        """Test that 'and'/'or' inside a word are not treated as operators."""
        assert sanitize_service_name("brandon") == "brandon"


class TestHistoryPaths:
    """Test cases for Allure history directory naming."""

    def test_sanitize_history_path(self, tmp_path):
        assert sanitize_history_path("/somewhere/@Emeterai and @high", tmp_path) == tmp_path / "emeterai-and-high"

    def test_default_root(self):
        assert sanitize_history_path("inagov") == Path("/var/lib/jenkins/allure-history/inagov")

    def test_web_history_is_separate(self, tmp_path):
        assert history_dir_for("login-success", "web", tmp_path) == tmp_path / "web-login-success"
        assert history_dir_for("login-success", "api", tmp_path) == tmp_path / "login-success"


class TestReportLocations:
    """Test cases for remote paths and report URLs."""

    def test_build_remote_path(self):
        remote_path = build_remote_path("@sbu and @high", "SBU", "20250101-101010-abc-build-7")
        assert remote_path == "obs://quality-assurance/sbu-high/SBU/20250101-101010-abc-build-7/"

    def test_build_remote_path_custom_bucket(self):
        remote_path = build_remote_path("inagov", "INAGOV", "b1", bucket="reports", scheme="oss")
        assert remote_path == "oss://reports/inagov/INAGOV/b1/"

    def test_generate_report_url(self):
        url = generate_report_url("https://qa.example.com/", "@inagov", "INAGOV", "b1")
        assert url == "https://qa.example.com/inagov/INAGOV/b1/index.html"

    def test_artifact_patterns(self):
        assert artifact_patterns("API") == ["allure-report/**", ".env*", "target/allure-results/**"]
        assert "test-results/**/*.png" in artifact_patterns("web", failed=True)
        assert "test-results/**/*.png" not in artifact_patterns("web")

    def test_artifact_patterns_unknown_type(self):
        with pytest.raises(ValueError):
            artifact_patterns("desktop")


class TestAllureHistory:
    """Test cases for prepare_allure_history and save_allure_history functions."""

    def test_prepare_copies_history(self, tmp_path):
        history_dir = tmp_path / "history-store"
        history_dir.mkdir()
        (history_dir / "history.json").write_text("{}")
        (history_dir / "history-trend.json").write_text("[]")
        results_dir = tmp_path / "target" / "allure-results"

        copied = prepare_allure_history(history_dir, results_dir)

        assert copied == 2
        assert (results_dir / "history" / "history-trend.json").read_text() == "[]"

    def test_prepare_without_history(self, tmp_path):
        results_dir = tmp_path / "allure-results"

        copied = prepare_allure_history(tmp_path / "missing", results_dir)

        assert copied == 0
        assert (results_dir / "history").is_dir()

    def test_save_copies_report_history(self, tmp_path):
        report_dir = tmp_path / "allure-report"
        (report_dir / "history").mkdir(parents=True)
        (report_dir / "history" / "history.json").write_text('{"a": 1}')
        history_dir = tmp_path / "store" / "inagov"

        copied = save_allure_history(history_dir, report_dir)

        assert copied == 1
        assert (history_dir / "history.json").read_text() == '{"a": 1}'

    def test_save_without_report_history(self, tmp_path):
        assert save_allure_history(tmp_path / "store", tmp_path / "allure-report") == 0
        assert not (tmp_path / "store").exists()


class TestMainCLI:
    """Test cases for the CLI interfaces."""

    def setup_method(self):
        """Set up test runner for each test."""
        self.runner = CliRunner()

    def test_report_path(self):
        result = self.runner.invoke(
            main,
            [
                "--service",
                "@sbu and @high",
                "--service-name",
                "SBU",
                "--build-path",
                "b7",
                "--base-url",
                "https://qa.example.com",
                "--type",
                "web",
            ],
        )

        assert result.exit_code == 0
        assert "obs://quality-assurance/sbu-high/SBU/b7/" in result.output
        assert "https://qa.example.com/sbu-high/SBU/b7/index.html" in result.output
        assert "playwright-report/**" in result.output

    def test_report_path_unknown_type(self):
        result = self.runner.invoke(
            main,
            ["--service", "a", "--service-name", "A", "--build-path", "b", "--base-url", "u", "--type", "desktop"],
        )
        assert result.exit_code != 0

    def test_history_roundtrip(self, tmp_path):
        """Test saving a report's history and preparing it for the next run."""
        report_dir = tmp_path / "allure-report"
        (report_dir / "history").mkdir(parents=True)
        (report_dir / "history" / "history.json").write_text(json.dumps({"run": 1}))
        history_root = tmp_path / "history-root"
        results_dir = tmp_path / "allure-results"
        common = ["--tag", "@Inagov", "--history-root", str(history_root)]

        saved = self.runner.invoke(history, ["--mode", "save", "--report-dir", str(report_dir), *common])
        prepared = self.runner.invoke(history, ["--mode", "prepare", "--results-dir", str(results_dir), *common])

        assert saved.exit_code == 0
        assert prepared.exit_code == 0
        assert (history_root / "inagov" / "history.json").exists()
        assert json.loads((results_dir / "history" / "history.json").read_text()) == {"run": 1}


if __name__ == "__main__":
    # Run tests when script is executed directly
    pytest.main([__file__, "-v"])
