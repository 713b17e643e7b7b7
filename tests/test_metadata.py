#!/usr/bin/env python3
"""
Test suite for metadata.py script.
"""

from datetime import datetime, timezone

import pytest
from click.testing import CliRunner

from qa_pipeline.metadata import build_path, description, display_name, main


class TestBuildPath:
    """Test cases for build_path function."""

    def test_build_path_in_jakarta_time(self):
        now = datetime(2025, 6, 30, 18, 0, 1, tzinfo=timezone.utc)
        assert build_path("abc1234", "17", now) == "20250701-010001-abc1234-build-17"


class TestDisplayNames:
    """Test cases for display_name and description functions."""

    def test_api_display_name_uses_service(self):
        assert display_name("api", "5", "staging", "inagov", "smoke") == "#5: QA-API staging: smoke"

    def test_api_display_name_with_custom_tag(self):
        name = display_name("API", "5", "staging", "sbu and @high", "smoke", use_custom_tag=True)
        assert name == "#5: QA-API staging: @sbu and @high"

    def test_web_display_name(self):
        assert display_name("web", "9", "prod", "login", "peruriid", True) == "#9: QA-WEB prod: @login"

    def test_mobile_display_name(self):
        assert display_name("mobile", "1", "dev", "ignored", "inapas", True) == "#1: Mobile Test dev: inapas"

    def test_descriptions(self):
        assert description("api", "dev", "inagov") == "Tag: @inagov | Environment: dev"
        assert description("web", "dev", "inagov", browser="webkit") == (
            "Playwright+Allure - webkit | Tag: @inagov | Environment: dev"
        )
        assert description("mobile", "dev", "x", device_type="ios") == "Mobile Automation - ios | Environment: dev"

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            display_name("desktop", "1", "dev", "a", "b")
        with pytest.raises(ValueError):
            description("desktop", "dev", "a")


class TestMainCLI:
    """Test cases for the CLI interface."""

    def test_metadata_output(self):
        runner = CliRunner()
        result = runner.invoke(
            main,
            [
                "--type",
                "web",
                "--commit-id",
                "abc1234",
                "--build-number",
                "8",
                "--target-env",
                "staging",
                "--qa-service",
                "peruriid",
                "--browser",
                "firefox",
            ],
        )

        assert result.exit_code == 0
        assert "-abc1234-build-8" in result.output
        assert "#8: QA-WEB staging: peruriid" in result.output
        assert "Playwright+Allure - firefox | Tag: @peruriid" in result.output


if __name__ == "__main__":
    # Run tests when script is executed directly
    pytest.main([__file__, "-v"])
