#!/usr/bin/env python3
"""
results.py - Aggregate test results from Allure and Playwright JSON reports.

API runs are summarised from Allure's generated ``data/suites.json`` (with per-suite,
per-test grouping). Web runs are summarised from the Playwright JSON reporter output.
The summaries can be stored as KEY=VALUE pairs so later pipeline stages (notifications)
can pick them up from the environment.

Usage:
    python results.py --type api --report allure-report/data/suites.json --env-file build.env
    python results.py --type web --report test-results/result.json
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import click
from dotenv import set_key

log = logging.getLogger(__name__)

BUILD_RESULT_SUCCESS = "SUCCESS"
BUILD_RESULT_UNSTABLE = "UNSTABLE"

DEFAULT_ALLURE_SUITES = Path("allure-report") / "data" / "suites.json"
DEFAULT_PLAYWRIGHT_RESULTS = Path("test-results") / "result.json"

ALLURE_STATUSES = ("passed", "failed", "broken", "skipped")


def success_rate(total: int, passed: int) -> int:
    """Integer success percentage, 100 when nothing ran."""
    return (passed * 100) // total if total > 0 else 100


@dataclass
class CaseStats:
    """Counts for a single named test within a suite."""

    total: int = 0
    passed: int = 0
    failed: int = 0
    broken: int = 0
    skipped: int = 0

    @property
    def success_rate(self) -> int:
        return success_rate(self.total, self.passed)


@dataclass
class ApiTestStats:
    """Allure-based statistics for an API run."""

    total: int = 0
    passed: int = 0
    failed: int = 0
    broken: int = 0
    skipped: int = 0
    grouped: Dict[str, Dict[str, CaseStats]] = field(default_factory=dict)


@dataclass
class WebTestStats:
    """Playwright-based statistics for a web run."""

    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    flaky: int = 0


@dataclass
class MobileTestStats:
    """Statistics for a mobile run, read back from the MOBILE_TEST_* variables."""

    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0


AnyStats = Union[ApiTestStats, WebTestStats, MobileTestStats]


def _count_status(target: Any, status: Optional[str]) -> None:
    if status in ALLURE_STATUSES:
        setattr(target, status, getattr(target, status) + 1)


def aggregate_allure_suites(suites_data: Mapping[str, Any]) -> ApiTestStats:
    """Count the test cases of an Allure suites tree by status.

    Raises:
        ValueError: If the tree or one of its entries is not a JSON object
    """
    if not isinstance(suites_data, dict):
        raise ValueError(f"Expected a JSON object at the top of suites.json, got {type(suites_data).__name__}")

    stats = ApiTestStats()

    for suite in suites_data.get("children") or []:
        if not isinstance(suite, dict):
            raise ValueError(f"Expected a suite object, got {type(suite).__name__}")
        suite_name = suite.get("name", "")
        suite_stats = stats.grouped.setdefault(suite_name, {})

        for test_case in suite.get("children") or []:
            if not isinstance(test_case, dict):
                raise ValueError(f"Expected a test case object in suite '{suite_name}', got {type(test_case).__name__}")
            case_stats = suite_stats.setdefault(test_case.get("name", ""), CaseStats())
            status = test_case.get("status")

            stats.total += 1
            case_stats.total += 1
            _count_status(stats, status)
            _count_status(case_stats, status)

    return stats


def collect_allure_statistics(suites_file: Path = DEFAULT_ALLURE_SUITES) -> ApiTestStats:
    """Collect API test statistics from an Allure ``suites.json`` file.

    A missing report is not an error: the run may have produced no results, so zero
    statistics are returned and a warning is logged.

    Raises:
        json.JSONDecodeError: If the file exists but is not valid JSON
        ValueError: If the JSON does not have the shape of an Allure suites tree
    """
    if not suites_file.exists():
        log.warning(f"{suites_file} not found - API test statistics will not be available")
        return ApiTestStats()

    try:
        with open(suites_file, encoding="utf-8") as f:
            suites_data = json.load(f)
    except json.JSONDecodeError as e:
        log.error(f"Invalid JSON in Allure suites file {suites_file}: {e}")
        raise

    try:
        stats = aggregate_allure_suites(suites_data)
    except ValueError as e:
        log.error(f"Unexpected content in Allure suites file {suites_file}: {e}")
        raise

    log.info(
        f"API Test Statistics: Total: {stats.total}, Passed: {stats.passed}, Failed: {stats.failed}, "
        f"Broken: {stats.broken}, Skipped: {stats.skipped}"
    )
    return stats


def count_suite_stats(suite: Mapping[str, Any], stats: WebTestStats) -> None:
    """Walk a Playwright suite (and its nested suites) counting each spec once."""
    for nested_suite in suite.get("suites") or []:
        count_suite_stats(nested_suite, stats)

    for spec in suite.get("specs") or []:
        stats.total += 1
        tests = spec.get("tests") or []
        if not tests:
            continue

        # Only the first project's outcome counts for a spec.
        status = tests[0].get("status")
        if status == "expected":
            stats.passed += 1
        elif status == "unexpected":
            stats.failed += 1
        elif status == "flaky":
            stats.flaky += 1
            stats.passed += 1
        elif status == "skipped":
            stats.skipped += 1


def aggregate_playwright_results(results: Mapping[str, Any]) -> WebTestStats:
    """Summarise a Playwright JSON report, preferring its ``stats`` block over walking suites."""
    stats = WebTestStats()

    if report_stats := results.get("stats"):
        stats.passed = int(report_stats.get("expected") or 0)
        stats.failed = int(report_stats.get("unexpected") or 0)
        stats.skipped = int(report_stats.get("skipped") or 0)
        stats.flaky = int(report_stats.get("flaky") or 0)
        stats.total = stats.passed + stats.failed + stats.skipped
        log.debug(f"Stats block found: {report_stats}")

    if stats.total == 0 and results.get("suites"):
        log.debug("Stats empty, counting from suites")
        # Discard partial numbers from an empty stats block before counting.
        stats = WebTestStats()
        for suite in results["suites"]:
            count_suite_stats(suite, stats)

    return stats


def collect_playwright_statistics(results_file: Path = DEFAULT_PLAYWRIGHT_RESULTS) -> WebTestStats:
    """Collect web test statistics from a Playwright JSON report.

    Returns zero statistics when the report is missing or cannot be parsed.
    """
    if not results_file.exists():
        log.warning(f"Playwright JSON report not found at: {results_file}")
        return WebTestStats()

    try:
        with open(results_file, encoding="utf-8") as f:
            results = json.load(f)
        stats = aggregate_playwright_results(results)
    except (json.JSONDecodeError, AttributeError, TypeError, ValueError) as e:
        log.error(f"Error parsing Playwright JSON report {results_file}: {e}")
        return WebTestStats()

    log.info(
        f"Web Test Statistics: Total={stats.total}, Passed={stats.passed}, Failed={stats.failed}, "
        f"Skipped={stats.skipped}, Flaky={stats.flaky}"
    )
    return stats


def grouped_to_json(grouped: Dict[str, Dict[str, CaseStats]]) -> str:
    """Serialise per-suite, per-test counts (with their success rate) for GROUPED_SUITE_STATS."""
    return json.dumps(
        {
            suite: {name: {**asdict(case), "successRate": case.success_rate} for name, case in tests.items()}
            for suite, tests in grouped.items()
        },
        ensure_ascii=False,
    )


def grouped_from_json(text: Optional[str]) -> Dict[str, Dict[str, CaseStats]]:
    """Parse GROUPED_SUITE_STATS back into counts; an empty value means no grouping.

    Raises:
        ValueError: If the value is not valid JSON or not a mapping of suites to tests
    """
    if not text:
        return {}
    data = json.loads(text)
    if not isinstance(data, dict) or not all(isinstance(tests, dict) for tests in data.values()):
        raise ValueError("GROUPED_SUITE_STATS must map suite names to objects of test counts")
    return {
        suite: {
            name: CaseStats(**{k: int(case.get(k, 0)) for k in ("total", *ALLURE_STATUSES)})
            for name, case in tests.items()
        }
        for suite, tests in data.items()
    }


def stats_to_env(stats: AnyStats) -> Dict[str, str]:
    """Render statistics as the environment variables the notification stage reads."""
    if isinstance(stats, ApiTestStats):
        return {
            "LOCAL_TEST_COUNT": str(stats.total),
            "PASSED_COUNT": str(stats.passed),
            "FAILED_COUNT": str(stats.failed),
            "BROKEN_COUNT": str(stats.broken),
            "SKIPPED_COUNT": str(stats.skipped),
            "GROUPED_SUITE_STATS": grouped_to_json(stats.grouped),
        }
    if isinstance(stats, WebTestStats):
        return {
            "TEST_TOTAL": str(stats.total),
            "TEST_PASSED": str(stats.passed),
            "TEST_FAILED": str(stats.failed),
            "TEST_SKIPPED": str(stats.skipped),
            "TEST_FLAKY": str(stats.flaky or 0),
        }
    if isinstance(stats, MobileTestStats):
        return {
            "MOBILE_TEST_TOTAL": str(stats.total),
            "MOBILE_TEST_PASSED": str(stats.passed),
            "MOBILE_TEST_FAILED": str(stats.failed),
            "MOBILE_TEST_SKIPPED": str(stats.skipped),
        }
    raise TypeError(f"Unsupported statistics type: {type(stats).__name__}")


def _env_int(env: Mapping[str, Optional[str]], key: str) -> int:
    value = env.get(key)
    return int(value) if value and value.strip() else 0


def api_stats_from_env(env: Mapping[str, Optional[str]]) -> ApiTestStats:
    """Read API statistics stored by stats_to_env; absent or blank values count as 0."""
    return ApiTestStats(
        total=_env_int(env, "LOCAL_TEST_COUNT"),
        passed=_env_int(env, "PASSED_COUNT"),
        failed=_env_int(env, "FAILED_COUNT"),
        broken=_env_int(env, "BROKEN_COUNT"),
        skipped=_env_int(env, "SKIPPED_COUNT"),
        grouped=grouped_from_json(env.get("GROUPED_SUITE_STATS")),
    )


def web_stats_from_env(env: Mapping[str, Optional[str]]) -> WebTestStats:
    """Read web statistics from the TEST_* variables."""
    return WebTestStats(
        total=_env_int(env, "TEST_TOTAL"),
        passed=_env_int(env, "TEST_PASSED"),
        failed=_env_int(env, "TEST_FAILED"),
        skipped=_env_int(env, "TEST_SKIPPED"),
        flaky=_env_int(env, "TEST_FLAKY"),
    )


def mobile_stats_from_env(env: Mapping[str, Optional[str]]) -> MobileTestStats:
    """Read mobile statistics from the MOBILE_TEST_* variables."""
    return MobileTestStats(
        total=_env_int(env, "MOBILE_TEST_TOTAL"),
        passed=_env_int(env, "MOBILE_TEST_PASSED"),
        failed=_env_int(env, "MOBILE_TEST_FAILED"),
        skipped=_env_int(env, "MOBILE_TEST_SKIPPED"),
    )


def determine_build_result(test_type: str, stats: AnyStats) -> str:
    """Decide whether a build is SUCCESS or UNSTABLE from its test statistics.

    API builds are unstable on any failed or broken test. Web and mobile builds are
    unstable on any failed test, or when no test ran at all.
    """
    test_type = test_type.lower()
    if test_type == "api":
        if stats.failed > 0 or getattr(stats, "broken", 0) > 0:
            log.warning(f"Build UNSTABLE due to {stats.failed + getattr(stats, 'broken', 0)} failed/broken tests")
            return BUILD_RESULT_UNSTABLE
        return BUILD_RESULT_SUCCESS

    if test_type in ("web", "mobile"):
        if stats.failed > 0:
            log.warning(f"Build UNSTABLE due to {stats.failed} failed tests")
            return BUILD_RESULT_UNSTABLE
        if stats.total == 0:
            log.warning("Build UNSTABLE - no tests were executed")
            return BUILD_RESULT_UNSTABLE
        if getattr(stats, "flaky", 0) > 0:
            log.info(f"{stats.flaky} tests were flaky but ultimately passed")
        return BUILD_RESULT_SUCCESS

    raise ValueError(f"Unknown test type: {test_type}")


def write_env_file(values: Mapping[str, str], env_file: Path) -> None:
    """Store variables in a dotenv file, replacing existing keys."""
    try:
        env_file.parent.mkdir(parents=True, exist_ok=True)
        env_file.touch(exist_ok=True)
        for key, value in values.items():
            set_key(str(env_file), key, value)
    except OSError as e:
        log.error(f"Error writing statistics to '{env_file}': {e}")
        raise

    log.info(f"{len(values)} statistics variables stored in '{env_file}'")


def stats_as_dict(stats: AnyStats) -> Dict[str, Any]:
    data = asdict(stats)
    if isinstance(stats, ApiTestStats):
        data["grouped"] = json.loads(grouped_to_json(stats.grouped))
    return data


@click.command()
@click.help_option("--help", "-h")
@click.option(
    "-t",
    "--type",
    "test_type",
    required=True,
    type=click.Choice(["api", "web"], case_sensitive=False),
    help="Kind of test run to summarise",
)
@click.option(
    "-r",
    "--report",
    "report_file",
    required=False,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Allure suites.json (api) or Playwright result.json (web). Defaults to the standard location.",
)
@click.option(
    "-e",
    "--env-file",
    required=False,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Store the statistics as KEY=VALUE pairs in this dotenv file",
)
@click.option(
    "-o",
    "--output",
    "output_file",
    required=False,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write the JSON summary to this file instead of stdout",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose logging")
def main(
    test_type: str,
    report_file: Optional[Path],
    env_file: Optional[Path],
    output_file: Optional[Path],
    verbose: bool,
) -> None:
    """Summarise test results and decide the build result.

    \b
    Examples:
      qa-collect-stats --type api --env-file build.env
      qa-collect-stats --type web --report test-results/result.json -o stats.json
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(message)s")

    test_type = test_type.lower()
    stats: AnyStats
    try:
        if test_type == "api":
            stats = collect_allure_statistics(report_file or DEFAULT_ALLURE_SUITES)
        else:
            stats = collect_playwright_statistics(report_file or DEFAULT_PLAYWRIGHT_RESULTS)
    except (json.JSONDecodeError, ValueError, AttributeError) as e:
        raise click.ClickException(f"Could not read test report: {e}") from e

    build_result = determine_build_result(test_type, stats)

    if env_file:
        try:
            write_env_file(stats_to_env(stats), env_file)
        except OSError as e:
            raise click.ClickException(f"Could not store statistics in '{env_file}': {e}") from e

    payload = json.dumps({"stats": stats_as_dict(stats), "build_result": build_result}, indent=2, ensure_ascii=False)
    if output_file:
        output_file.parent.mkdir(parents=True, exist_ok=True)
        output_file.write_text(payload, encoding="utf-8")
        log.info(f"Statistics written to '{output_file}'")
    else:
        click.echo(payload)


if __name__ == "__main__":
    main()
