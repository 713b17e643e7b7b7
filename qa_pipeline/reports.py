#!/usr/bin/env python3
"""
reports.py - Report locations for uploaded test reports and Allure history.

Reports are uploaded to object storage under a path built from the sanitised service
tag, the service display name and the build path. Allure trend history is kept in a
persistent directory per tag on the Jenkins agent and copied in and out of each run.

Usage:
    python reports.py --service "@sbu and @high" --service-name SBU --build-path 20250101-101010-abc1234-build-7 \\
        --base-url https://qa.example.com/reports
"""

import json
import logging
import re
import shutil
from pathlib import Path
from typing import Dict, List, Optional

import click

log = logging.getLogger(__name__)

DEFAULT_HISTORY_ROOT = Path("/var/lib/jenkins/allure-history")
DEFAULT_BUCKET = "quality-assurance"
DEFAULT_SCHEME = "obs"

ARTIFACT_PATTERNS: Dict[str, List[str]] = {
    "api": ["allure-report/**", ".env*", "target/allure-results/**"],
    "web": ["playwright-report/**", "test-results/**"],
    "mobile": ["mobile-reports/**", "screenshots/**"],
}
WEB_FAILURE_ARTIFACT_PATTERNS = ["test-results/**/*.png", "test-results/**/*.webm", "test-results/**/*.zip"]


def _collapse_dashes(value: str) -> str:
    value = re.sub(r"[^a-z0-9\-_]", "-", value)
    value = re.sub(r"-+", "-", value)
    return value.strip("-")


def sanitize_service_name(service_name: str) -> str:
    """Turn a tag expression like ``@sbu and @high`` into a path segment (``sbu-high``)."""
    value = service_name.lower().replace("@", "")
    value = re.sub(r"\s+(and|or|not)\s+", "-", value)
    return _collapse_dashes(value)


def sanitize_history_path(original_path: str, history_root: Path = DEFAULT_HISTORY_ROOT) -> Path:
    """Clean the last segment of a history path and place it under the history root."""
    tag = original_path.rstrip("/").rsplit("/", 1)[-1]
    clean_tag = re.sub(r"\s+", "-", tag.lower().replace("@", ""))
    return history_root / _collapse_dashes(clean_tag)


def history_dir_for(tag: str, test_type: str, history_root: Path = DEFAULT_HISTORY_ROOT) -> Path:
    """Persistent Allure history directory for a tag; web runs keep a separate history."""
    name = f"web-{tag}" if test_type.lower() == "web" else tag
    return sanitize_history_path(name, history_root)


def build_remote_path(
    service: str,
    service_name: str,
    build_path: str,
    bucket: str = DEFAULT_BUCKET,
    scheme: str = DEFAULT_SCHEME,
) -> str:
    remote_path = f"{scheme}://{bucket}/{sanitize_service_name(service)}/{service_name}/{build_path}/"
    log.info(f"Built remote path: {remote_path}")
    return remote_path


def generate_report_url(base_url: str, service: str, service_name: str, build_path: str) -> str:
    return f"{base_url.rstrip('/')}/{sanitize_service_name(service)}/{service_name}/{build_path}/index.html"


def _copy_files(source_dir: Path, target_dir: Path) -> int:
    target_dir.mkdir(parents=True, exist_ok=True)
    copied = 0
    for item in source_dir.iterdir():
        if item.is_file():
            shutil.copy2(item, target_dir / item.name)
            copied += 1
    return copied


def prepare_allure_history(history_dir: Path, results_dir: Path = Path("target/allure-results")) -> int:
    """Copy the persistent history into the results so the next report keeps its trends.

    Returns:
        Number of history files copied
    """
    target = results_dir / "history"
    target.mkdir(parents=True, exist_ok=True)

    if not history_dir.is_dir() or not any(history_dir.iterdir()):
        log.info(f"No existing history found in {history_dir}")
        return 0

    copied = _copy_files(history_dir, target)
    log.info(f"Copied {copied} history files from {history_dir}")
    return copied


def save_allure_history(history_dir: Path, report_dir: Path = Path("allure-report")) -> int:
    """Copy the history of a freshly generated report back to the persistent location."""
    source = report_dir / "history"
    if not source.is_dir():
        log.info(f"No history in {report_dir}, nothing to save")
        return 0

    copied = _copy_files(source, history_dir)
    log.info(f"Saved {copied} history files to {history_dir}")
    return copied


def artifact_patterns(test_type: str, failed: bool = False) -> List[str]:
    """Glob patterns of the artifacts a run should archive."""
    test_type = test_type.lower()
    if test_type not in ARTIFACT_PATTERNS:
        raise ValueError(f"Unknown test type: {test_type}")

    patterns = list(ARTIFACT_PATTERNS[test_type])
    if failed and test_type == "web":
        patterns.extend(WEB_FAILURE_ARTIFACT_PATTERNS)
    return patterns


@click.command()
@click.help_option("--help", "-h")
@click.option("--service", required=True, help="Service tag used in the report path (e.g. '@sbu and @high')")
@click.option("--service-name", required=True, help="Service display name used in the report path")
@click.option("--build-path", required=True, help="Build path segment (see qa-build-metadata)")
@click.option("--base-url", required=True, help="Public base URL the bucket is served from")
@click.option("--bucket", default=DEFAULT_BUCKET, show_default=True, help="Object storage bucket")
@click.option("--scheme", default=DEFAULT_SCHEME, show_default=True, help="Object storage URL scheme (obs, oss)")
@click.option("-t", "--type", "test_type", default=None, help="Also list archive patterns for this test type")
def main(
    service: str,
    service_name: str,
    build_path: str,
    base_url: str,
    bucket: str,
    scheme: str,
    test_type: Optional[str],
) -> None:
    """Print where a build's report is uploaded to and where it can be viewed.

    \b
    Examples:
      qa-report-path --service inagov --service-name INAGOV \\
          --build-path 20250101-101010-abc1234-build-7 --base-url https://qa.example.com
    """
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    result = {
        "remote_path": build_remote_path(service, service_name, build_path, bucket, scheme),
        "report_url": generate_report_url(base_url, service, service_name, build_path),
    }
    if test_type:
        try:
            result["artifacts"] = artifact_patterns(test_type)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--type") from e

    click.echo(json.dumps(result, indent=2))


@click.command()
@click.help_option("--help", "-h")
@click.option(
    "-m",
    "--mode",
    required=True,
    type=click.Choice(["prepare", "save"]),
    help="prepare: copy history into the results; save: copy report history back",
)
@click.option("--tag", required=True, help="Effective tag of the run")
@click.option(
    "-t",
    "--type",
    "test_type",
    default="api",
    show_default=True,
    type=click.Choice(["api", "web"], case_sensitive=False),
)
@click.option(
    "--history-root",
    type=click.Path(file_okay=False, path_type=Path),
    default=DEFAULT_HISTORY_ROOT,
    show_default=True,
    help="Directory holding the persistent history per tag",
)
@click.option(
    "--results-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("target/allure-results"),
    show_default=True,
)
@click.option(
    "--report-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("allure-report"),
    show_default=True,
)
def history(mode: str, tag: str, test_type: str, history_root: Path, results_dir: Path, report_dir: Path) -> None:
    """Carry Allure trend history between runs of the same tag."""
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    history_dir = history_dir_for(tag, test_type, history_root)
    try:
        if mode == "prepare":
            prepare_allure_history(history_dir, results_dir)
        else:
            save_allure_history(history_dir, report_dir)
    except OSError as e:
        log.error(f"Error copying Allure history for {history_dir}: {e}")
        raise click.ClickException(f"History {mode} failed: {e}") from e


if __name__ == "__main__":
    main()
