#!/usr/bin/env python3
"""
metadata.py - Build path, display name and description for a test build.
"""

import json
import logging
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

import click

log = logging.getLogger(__name__)

TIMEZONE = "Asia/Jakarta"
BUILD_PATH_TIME_FORMAT = "%Y%m%d-%H%M%S"


def build_path(commit_id: str, build_number: str, now: Optional[datetime] = None) -> str:
    """Unique path segment for a build's reports: ``<timestamp>-<commit>-build-<n>``."""
    now = now or datetime.now(ZoneInfo(TIMEZONE))
    timestamp = now.astimezone(ZoneInfo(TIMEZONE)).strftime(BUILD_PATH_TIME_FORMAT)
    return f"{timestamp}-{commit_id}-build-{build_number}"


def _display_tag(tag: str, qa_service: str, use_custom_tag: bool) -> str:
    return f"@{tag}" if use_custom_tag else qa_service


def display_name(
    test_type: str,
    build_number: str,
    target_env: str,
    tag: str,
    qa_service: str,
    use_custom_tag: bool = False,
) -> str:
    test_type = test_type.lower()
    if test_type == "api":
        return f"#{build_number}: QA-API {target_env}: {_display_tag(tag, qa_service, use_custom_tag)}"
    if test_type == "web":
        return f"#{build_number}: QA-WEB {target_env}: {_display_tag(tag, qa_service, use_custom_tag)}"
    if test_type == "mobile":
        return f"#{build_number}: Mobile Test {target_env}: {qa_service}"
    raise ValueError(f"Unknown test type: {test_type}")


def description(
    test_type: str,
    target_env: str,
    tag: str,
    browser: Optional[str] = None,
    device_type: Optional[str] = None,
) -> str:
    test_type = test_type.lower()
    if test_type == "api":
        return f"Tag: @{tag} | Environment: {target_env}"
    if test_type == "web":
        return f"Playwright+Allure - {browser} | Tag: @{tag} | Environment: {target_env}"
    if test_type == "mobile":
        return f"Mobile Automation - {device_type} | Environment: {target_env}"
    raise ValueError(f"Unknown test type: {test_type}")


@click.command()
@click.help_option("--help", "-h")
@click.option(
    "-t",
    "--type",
    "test_type",
    required=True,
    type=click.Choice(["api", "web", "mobile"], case_sensitive=False),
)
@click.option("--commit-id", required=True, help="Short commit id of the tested revision")
@click.option("--build-number", required=True, help="Jenkins build number")
@click.option("--target-env", required=True, help="Environment the tests run against")
@click.option("--qa-service", required=True, help="Value of the QA_SERVICE build parameter")
@click.option("--tag", default=None, help="Effective tag; defaults to --qa-service")
@click.option("--use-custom-tag", is_flag=True, help="Show the tag rather than QA_SERVICE in the name")
@click.option("--browser", default=None, help="Browser used for web tests")
@click.option("--device-type", default=None, help="Device type used for mobile tests")
def main(
    test_type: str,
    commit_id: str,
    build_number: str,
    target_env: str,
    qa_service: str,
    tag: Optional[str],
    use_custom_tag: bool,
    browser: Optional[str],
    device_type: Optional[str],
) -> None:
    """Print build path, display name and description as JSON.

    \b
    Examples:
      qa-build-metadata --type api --commit-id abc1234 --build-number 7 \\
          --target-env staging --qa-service inagov
    """
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    effective_tag = tag or qa_service
    result = {
        "build_path": build_path(commit_id, build_number),
        "display_name": display_name(test_type, build_number, target_env, effective_tag, qa_service, use_custom_tag),
        "description": description(test_type, target_env, effective_tag, browser, device_type),
    }
    log.debug(f"Build metadata: {result}")
    click.echo(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
