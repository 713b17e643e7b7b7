#!/usr/bin/env python3
"""
notifications.py - Post test run summaries to Google Chat.

The webhook is chosen from the test project's .env file based on the service tag,
and the message is built from the statistics the results stage stored.

Usage:
    python notifications.py --type api --status UNSTABLE --report-url https://qa.example/report/index.html \\
        --commit-id abc1234 --job-name qa/api-inagov --build-number 12 --target-env staging \\
        --tag inagov --qa-service inagov --stats-env-file build.env
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Mapping, Optional
from zoneinfo import ZoneInfo

import click
import requests
from dotenv import dotenv_values

from qa_pipeline.results import (
    AnyStats,
    ApiTestStats,
    CaseStats,
    MobileTestStats,
    WebTestStats,
    api_stats_from_env,
    mobile_stats_from_env,
    success_rate,
    web_stats_from_env,
)

log = logging.getLogger(__name__)

REPORT_TITLE = "PERURI TEST AUTOMATION REPORT"
SEPARATOR = "━" * 34
TIMEZONE = "Asia/Jakarta"
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

STATUS_EMOJIS = {
    "SUCCESS": "🟢",
    "UNSTABLE": "🟠",
    "FAILURE": "🔴",
}
DEFAULT_STATUS_EMOJI = "⚪"

SBU_WEBHOOK_KEY = "SBU_WEBHOOK_URL"
PERURIID_WEBHOOK_KEY = "PERURIID_WEBHOOK_URL"
GENERAL_WEBHOOK_KEY = "GENERAL_WEBHOOK_URL"

SBU_SERVICES = ("sbu", "digidoc", "emeterai", "meterai", "metel")
PERURIID_SERVICES = ("peruriid", "wizard")


class WebhookNotConfigured(Exception):
    """Raised when no webhook URL is configured for a service."""


@dataclass
class BuildInfo:
    """Build details shown in a notification."""

    build_number: str
    status: str
    commit_id: str
    environment: str
    tag: str
    service: str
    job_name: str
    time: str
    duration: Optional[str] = None
    browser: Optional[str] = None
    headless: Optional[bool] = None
    device_type: Optional[str] = None
    qa_service: Optional[str] = None


def get_status_emoji(status: str) -> str:
    """Coloured circle for a Jenkins build result, white for anything else."""
    return STATUS_EMOJIS.get(status, DEFAULT_STATUS_EMOJI)


def calculate_success_rate(total: int, passed: int) -> int:
    """Integer success percentage; 100 when no test ran."""
    return success_rate(total, passed)


def create_progress_bar(rate: int, length: int = 10) -> str:
    """Render a success rate as a row of filled and empty squares."""
    filled = rate * length // 100
    return "🟩" * filled + "⬜" * (length - filled)


def get_feature_emoji(rate: int) -> str:
    """Marker for a feature line: all passed, at least 80%, or worse."""
    if rate == 100:
        return "✅"
    if rate >= 80:
        return "🟡"
    return "❌"


def current_time(now: Optional[datetime] = None) -> str:
    """Format a timestamp (now by default) in Jakarta time."""
    now = now or datetime.now(ZoneInfo(TIMEZONE))
    return now.astimezone(ZoneInfo(TIMEZONE)).strftime(TIME_FORMAT)


def clean_duration(duration: Optional[str]) -> Optional[str]:
    """Strip Jenkins' running-build suffix from a duration string."""
    if not duration:
        return None
    return duration.replace(" and counting", "").strip() or None


def short_job_name(job_name: str) -> str:
    """Last segment of a folder-qualified Jenkins job name."""
    return job_name.split("/")[-1]


def resolve_webhook_key(product: str) -> str:
    """Pick the .env key holding the webhook URL for a service tag."""
    tag = product.lower().replace("@", "")

    if any(service in tag for service in SBU_SERVICES):
        return SBU_WEBHOOK_KEY
    if any(service in tag for service in PERURIID_SERVICES):
        return PERURIID_WEBHOOK_KEY
    return GENERAL_WEBHOOK_KEY


def get_webhook_url(product: str, env_file: Path) -> str:
    """Look up the webhook URL for a service tag in a dotenv file.

    Raises:
        WebhookNotConfigured: If the file has no (or an empty) entry for the service
    """
    key = resolve_webhook_key(product)
    values = dotenv_values(env_file) if env_file.exists() else {}
    url = (values.get(key) or "").strip()
    if not url:
        raise WebhookNotConfigured(f"{key} is not set in '{env_file}'")

    log.info(f"Using {key} for '{product}'")
    return url


def build_feature_section(grouped: Mapping[str, Mapping[str, CaseStats]]) -> str:
    """One line per suite with its combined success rate."""
    if not grouped:
        return ""

    lines = ["📑 *FEATURE RESULTS*"]
    for suite_name in sorted(grouped):
        tests = grouped[suite_name].values()
        total = sum(case.total for case in tests)
        passed = sum(case.passed for case in tests)
        rate = success_rate(total, passed)
        lines.append(f"{get_feature_emoji(rate)} *{suite_name}:* {rate}% ({passed}/{total})")
    lines.append(SEPARATOR)
    return "\n".join(lines)


def _header(kind: str) -> str:
    return f"*{kind}*\n*{REPORT_TITLE}*\n{SEPARATOR}"


def _build_info_lines(info: BuildInfo) -> List[str]:
    return [
        f"{get_status_emoji(info.status)} *Build #{info.build_number}* | {info.status}",
        f"🔄 *Commit ID:* {info.commit_id}",
        f"🌐 *Environment:* {info.environment}",
    ]


def _build_info_tail(info: BuildInfo) -> List[str]:
    lines = [f"📋 *Job:* {short_job_name(info.job_name)}", f"🕒 *Time:* {info.time}"]
    if duration := clean_duration(info.duration):
        lines.append(f"⏱️ *Duration:* {duration}")
    lines.append(SEPARATOR)
    return lines


def _results_head(title: str, stats: AnyStats) -> List[str]:
    rate = calculate_success_rate(stats.total, stats.passed)
    return [
        f"📊 *{title}* | {rate}% Success",
        create_progress_bar(rate),
        "",
        f"🔢 *Total Tests:* {stats.total}",
        f"✅ *Passed:* {stats.passed}",
        f"❌ *Failed:* {stats.failed}",
    ]


def build_api_message(info: BuildInfo, stats: ApiTestStats, report_url: str) -> str:
    build_info = _build_info_lines(info) + [
        f"🏷️ *Tags:* @{info.tag}",
        f"🔧 *Service:* {info.service}",
    ]
    build_info += _build_info_tail(info)

    results = _results_head("TEST RESULTS", stats) + [
        f"⚠️ *Broken:* {stats.broken}",
        f"⏭️ *Skipped:* {stats.skipped}",
        SEPARATOR,
    ]
    footer = f"📄 *View Full Report:*\n[{info.service} Allure Report]({report_url})\n{SEPARATOR}"

    sections = [_header("API"), "\n".join(build_info), "\n".join(results)]
    if features := build_feature_section(stats.grouped):
        sections.append(features)
    sections.append(footer)
    return "\n\n".join(sections)


def build_web_message(info: BuildInfo, stats: WebTestStats, report_url: str) -> str:
    build_info = _build_info_lines(info) + [
        f"🏷️ *Service:* {info.qa_service or info.service}",
        f"🔧 *Browser:* {info.browser}",
        f"👤 *Headless:* {str(info.headless).lower()}",
    ]
    build_info += _build_info_tail(info)

    results = _results_head("WEB TEST RESULTS", stats) + [f"⏭️ *Skipped:* {stats.skipped}"]
    if stats.flaky > 0:
        results.append(f"🔀 *Flaky:* {stats.flaky}")
    results.append(SEPARATOR)

    footer = f"📄 *View Test Reports:*\n[🎭 Playwright Report]({report_url})\n{SEPARATOR}"
    return "\n\n".join([_header("WEB"), "\n".join(build_info), "\n".join(results), footer])


def build_mobile_message(info: BuildInfo, stats: MobileTestStats, report_url: str) -> str:
    build_info = _build_info_lines(info) + [
        f"🏷️ *Service:* {info.service}",
        f"📱 *Device:* {info.device_type}",
    ]
    build_info += _build_info_tail(info)

    results = _results_head("MOBILE TEST RESULTS", stats) + [f"⏭️ *Skipped:* {stats.skipped}", SEPARATOR]
    footer = f"📄 *View Test Reports:*\n[📱 Mobile Report]({report_url})\n{SEPARATOR}"
    return "\n\n".join([_header("MOBILE"), "\n".join(build_info), "\n".join(results), footer])


class ChatNotifier:
    """Sends messages to a Google Chat incoming webhook."""

    def __init__(self, webhook_url: str, timeout: int = 30) -> None:
        self.webhook_url = webhook_url
        self.timeout = timeout

    def send(self, message: str) -> Dict:
        """Post a text message.

        Raises:
            requests.RequestException: If the webhook request fails
        """
        log.debug(f"POST chat message ({len(message)} chars)")
        response = requests.post(
            self.webhook_url,
            json={"text": message},
            headers={"Content-Type": "application/json; charset=UTF-8"},
            timeout=self.timeout,
        )

        if 200 <= response.status_code < 300:
            log.info("Chat notification sent")
            return response.json() if response.content else {}

        log.error(f"Failed to send chat notification. Status: {response.status_code}")
        log.error(f"Response: {response.text}")
        raise requests.exceptions.HTTPError(
            f"Webhook returned HTTP {response.status_code}", response=response
        )


def build_message(test_type: str, info: BuildInfo, stats: AnyStats, report_url: str) -> str:
    test_type = test_type.lower()
    if test_type == "api" and isinstance(stats, ApiTestStats):
        return build_api_message(info, stats, report_url)
    if test_type == "web" and isinstance(stats, WebTestStats):
        return build_web_message(info, stats, report_url)
    if test_type == "mobile" and isinstance(stats, MobileTestStats):
        return build_mobile_message(info, stats, report_url)
    raise ValueError(f"Unknown test type '{test_type}' for {type(stats).__name__}")


def send_test_notification(
    test_type: str,
    info: BuildInfo,
    stats: AnyStats,
    report_url: str,
    webhook_url: str,
) -> bool:
    """Build and send the notification for a test run.

    A failed delivery never fails the build: the error is logged and False returned.
    """
    message = build_message(test_type, info, stats, report_url)
    try:
        ChatNotifier(webhook_url).send(message)
    except requests.RequestException as e:
        log.error(f"Failed to send {test_type} notification: {e}")
        return False
    return True


def stats_from_env(test_type: str, env: Mapping[str, Optional[str]]) -> AnyStats:
    test_type = test_type.lower()
    if test_type == "api":
        return api_stats_from_env(env)
    if test_type == "web":
        return web_stats_from_env(env)
    if test_type == "mobile":
        return mobile_stats_from_env(env)
    raise ValueError(f"Unknown test type: {test_type}")


@click.command()
@click.help_option("--help", "-h")
@click.option(
    "-t",
    "--type",
    "test_type",
    required=True,
    type=click.Choice(["api", "web", "mobile"], case_sensitive=False),
    help="Kind of test run",
)
@click.option("--status", default="SUCCESS", show_default=True, help="Build result (SUCCESS, UNSTABLE, FAILURE)")
@click.option("--report-url", required=True, help="URL of the uploaded report")
@click.option("--commit-id", required=True, help="Short commit id of the tested revision")
@click.option("--job-name", required=True, help="Full Jenkins job name (JOB_NAME)")
@click.option("--build-number", required=True, help="Jenkins build number")
@click.option("--target-env", required=True, help="Environment the tests ran against")
@click.option("--qa-service", required=True, help="Value of the QA_SERVICE build parameter")
@click.option("--tag", default=None, help="Effective tag; defaults to --qa-service")
@click.option("--service-name", default=None, help="Display name of the service; defaults to --qa-service")
@click.option("--browser", default=None, help="Browser used for web tests")
@click.option("--headless/--headed", default=True, help="Whether web tests ran headless")
@click.option("--device-type", default=None, help="Device type used for mobile tests")
@click.option("--duration", default=None, help="Build duration string")
@click.option(
    "--stats-env-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Dotenv file with the stored statistics (merged over the process environment)",
)
@click.option(
    "--env-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path(".env"),
    show_default=True,
    help="The test project's .env file holding the webhook URLs",
)
@click.option("--webhook-url", default=None, help="Webhook URL, bypassing the .env lookup")
@click.option("--dry-run", is_flag=True, help="Print the message without sending it")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose logging")
def main(
    test_type: str,
    status: str,
    report_url: str,
    commit_id: str,
    job_name: str,
    build_number: str,
    target_env: str,
    qa_service: str,
    tag: Optional[str],
    service_name: Optional[str],
    browser: Optional[str],
    headless: bool,
    device_type: Optional[str],
    duration: Optional[str],
    stats_env_file: Optional[Path],
    env_file: Path,
    webhook_url: Optional[str],
    dry_run: bool,
    verbose: bool,
) -> None:
    """Send a Google Chat notification summarising a test run.

    \b
    Examples:
      qa-notify --type api --status UNSTABLE --report-url https://qa.example/r/index.html \\
        --commit-id abc1234 --job-name qa/api-inagov --build-number 12 \\
        --target-env staging --qa-service inagov --stats-env-file build.env
      qa-notify --type web --browser chromium --dry-run ...
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    env: Dict[str, Optional[str]] = dict(os.environ)
    if stats_env_file:
        env.update(dotenv_values(stats_env_file))

    try:
        stats = stats_from_env(test_type, env)
    except (ValueError, AttributeError, TypeError) as e:
        raise click.ClickException(f"Invalid statistics in environment: {e}") from e

    effective_tag = tag or qa_service
    info = BuildInfo(
        build_number=build_number,
        status=status or "SUCCESS",
        commit_id=commit_id,
        environment=target_env,
        tag=effective_tag,
        service=service_name or qa_service,
        job_name=job_name,
        time=current_time(),
        duration=duration,
        browser=browser,
        headless=headless,
        device_type=device_type,
        qa_service=qa_service,
    )
    message = build_message(test_type, info, stats, report_url)

    if dry_run:
        click.echo("\n=== DRY RUN: Preview of chat message ===")
        click.echo(message)
        click.echo("=== End of Preview ===")
        return

    if not webhook_url:
        try:
            webhook_url = get_webhook_url(effective_tag, env_file)
        except WebhookNotConfigured as e:
            raise click.ClickException(str(e)) from e

    if not send_test_notification(test_type, info, stats, report_url, webhook_url):
        log.warning("Notification was not delivered")


if __name__ == "__main__":
    main()
