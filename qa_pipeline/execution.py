#!/usr/bin/env python3
"""
execution.py - Plan how a test run is started.

Large Cucumber tag selections can exceed the shell's argument length limit, so API
runs are planned as a standard run, a run driven by a properties file, or a series of
batches with smaller tag expressions. Web runs get the Playwright arguments matching
the BROWSER and HEADLESS build parameters.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

import click

log = logging.getLogger(__name__)

LARGE_TEST_TAGS = (
    "regression-all-services",
    "all-services",
    "regression",
    "api",
    "positive",
    "negative",
)

MAX_COMMAND_LENGTH = 32768
COMMAND_PARAMS_BUFFER = 200
PROPERTIES_FILE = "cucumber-execution.properties"
BASE_MAVEN_COMMAND = 'mvn test -Dcucumber.filter.tags="@{tag}"'

STRATEGY_STANDARD = "standard"
STRATEGY_PROPERTIES = "properties"
STRATEGY_BATCH = "batch"

ALL_SERVICES_BATCHES = [
    ["peruriid", "wizard"],
    ["sbu", "digidoc", "emeterai"],
    ["inagov", "inapas", "inaku"],
    ["mbg", "telkomsign"],
]
DEFAULT_BATCHES = [["peruriid"], ["sbu"], ["inagov"], ["inapas"], ["inaku"], ["mbg"]]

BROWSER_PROJECTS = ("chromium", "firefox", "webkit")


@dataclass
class ExecutionPlan:
    """How to start the tests for one tag."""

    tag: str
    strategy: str
    tag_expressions: List[str] = field(default_factory=list)
    properties: Optional[str] = None


def normalize_tag(tag: str) -> str:
    return tag.lower().replace("@", "")


def is_large_test_suite(tag: str) -> bool:
    """Check whether a tag selects enough scenarios to risk an argument list that is too long."""
    normalized_tag = normalize_tag(tag)
    return any(large_tag in normalized_tag for large_tag in LARGE_TEST_TAGS)


def estimate_command_length(base_command: str, tag: str) -> int:
    return len(base_command) + len(tag) + COMMAND_PARAMS_BUFFER


def _service_batches(tag: str, services: Sequence[str]) -> List[List[str]]:
    return [[f"{service} and @{tag}"] for service in services]


def get_batch_groups(tag: str) -> List[List[str]]:
    """Split a large tag into groups of smaller tag selections."""
    normalized_tag = normalize_tag(tag)

    if normalized_tag in ("regression-all-services", "all-services"):
        return [list(group) for group in ALL_SERVICES_BATCHES]
    if normalized_tag == "regression":
        return _service_batches("regression", ["peruriid", "sbu", "inagov", "inapas", "inaku"])
    if normalized_tag == "positive":
        return _service_batches("positive", ["peruriid", "sbu", "inagov", "inapas"])
    if normalized_tag == "negative":
        return _service_batches("negative", ["peruriid", "sbu", "inagov"])

    return [list(group) for group in DEFAULT_BATCHES]


def format_batch_tag(group: Sequence[str]) -> str:
    """Cucumber tag expression for a batch: ``@a`` or ``@a or @b``."""
    if len(group) == 1:
        return f"@{group[0]}"
    return "@" + " or @".join(group)


def build_cucumber_properties(tag: str) -> str:
    return "\n".join(
        [
            "# Cucumber execution configuration",
            f"cucumber.filter.tags=@{tag}",
            "cucumber.plugin=pretty,io.qameta.allure.cucumber7jvm.AllureCucumber7Jvm",
            "cucumber.glue=inadigital.api.steps",
            "cucumber.publish.quiet=true",
            "cucumber.features=src/test/resources/features",
            "",
        ]
    )


def plan_api_execution(tag: str, max_command_length: int = MAX_COMMAND_LENGTH) -> ExecutionPlan:
    """Choose how to run the Cucumber scenarios for a tag.

    Small suites run with the tag on the command line. Large suites are driven by a
    properties file, unless even the estimated command would not fit, in which case
    they are split into batches.

    The estimate is only the base command plus the tag and a fixed buffer, so with the
    default limit of MAX_COMMAND_LENGTH a batch plan needs a lower ``max_command_length``.
    """
    tag = tag.replace("@", "")

    if not is_large_test_suite(tag):
        log.info(f"Standard test execution for tag: @{tag}")
        return ExecutionPlan(tag=tag, strategy=STRATEGY_STANDARD, tag_expressions=[f"@{tag}"])

    log.info(f"Large test suite detected for tag: @{tag}")
    command_length = estimate_command_length(BASE_MAVEN_COMMAND.format(tag=tag), tag)
    if command_length > max_command_length:
        groups = get_batch_groups(tag)
        log.info(f"Estimated command length {command_length} exceeds {max_command_length}, {len(groups)} batch(es)")
        return ExecutionPlan(
            tag=tag,
            strategy=STRATEGY_BATCH,
            tag_expressions=[format_batch_tag(group) for group in groups],
        )

    return ExecutionPlan(
        tag=tag,
        strategy=STRATEGY_PROPERTIES,
        tag_expressions=[f"@{tag}"],
        properties=build_cucumber_properties(tag),
    )


def build_browser_args(browser: Optional[str]) -> List[str]:
    if browser == "all":
        return []
    if browser in BROWSER_PROJECTS:
        return [f"--project={browser}"]
    return ["--project=chromium"]


def build_playwright_args(headless: bool) -> List[str]:
    args = []
    if not headless:
        args.append("--headed")
    args.append("--trace=on-first-retry")
    return args


def plan_web_execution(tag: str, browser: Optional[str], headless: bool) -> List[str]:
    """Arguments for ``npx playwright test``."""
    tag = tag.replace("@", "")
    return build_browser_args(browser) + build_playwright_args(headless) + [f"--grep=@{tag}"]


def render_execution_summary(
    tag: str,
    build_number: str,
    target_env: Optional[str] = None,
    batch_failures: int = 0,
    build_result: Optional[str] = None,
    workspace: Optional[str] = None,
    node_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """Markdown summary archived next to the reports of a run."""
    execution_type = "Large Test Suite (Batch/Properties)" if is_large_test_suite(tag) else "Standard"
    timestamp = (now or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
    return "\n".join(
        [
            "# Test Execution Summary",
            "",
            f"**Tag:** @{normalize_tag(tag)}",
            f"**Execution Type:** {execution_type}",
            f"**Build Number:** {build_number}",
            f"**Environment:** {target_env or 'dev'}",
            f"**Timestamp:** {timestamp}",
            "",
            "## Execution Details",
            f"- **Failed Batches:** {batch_failures}",
            f"- **Build Result:** {build_result or 'SUCCESS'}",
            "",
            "## System Information",
            f"- **Jenkins Workspace:** {workspace or ''}",
            f"- **Agent:** {node_name or 'unknown'}",
            "",
        ]
    )


@click.command()
@click.help_option("--help", "-h")
@click.option(
    "-t",
    "--type",
    "test_type",
    required=True,
    type=click.Choice(["api", "web"], case_sensitive=False),
    help="Kind of test run",
)
@click.option("--tag", required=True, help="Effective tag of the run")
@click.option("--browser", default="chromium", show_default=True, help="Browser for web runs (or 'all')")
@click.option("--headless/--headed", default=True, help="Run web tests headless")
@click.option(
    "--max-command-length",
    type=int,
    default=MAX_COMMAND_LENGTH,
    show_default=True,
    help="Command length above which large API suites are split into batches",
)
@click.option(
    "--properties-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help=f"Write the Cucumber properties of a properties-driven plan here (e.g. {PROPERTIES_FILE})",
)
@click.option(
    "--summary-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write a markdown execution summary here (e.g. execution-summary.md)",
)
@click.option("--build-number", default="", help="Jenkins build number for the summary")
@click.option("--target-env", default=None, help="Target environment for the summary")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose logging")
def main(
    test_type: str,
    tag: str,
    browser: str,
    headless: bool,
    max_command_length: int,
    properties_file: Optional[Path],
    summary_file: Optional[Path],
    build_number: str,
    target_env: Optional[str],
    verbose: bool,
) -> None:
    """Print the plan for starting a test run as JSON.

    \b
    Examples:
      qa-plan-tests --type api --tag regression
      qa-plan-tests --type web --tag login-success --browser firefox --headed
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(message)s")

    if not tag.replace("@", "").strip():
        raise click.BadParameter("Tag is empty.", param_hint="--tag")
    if max_command_length < 1:
        raise click.BadParameter("Must be a positive integer.", param_hint="--max-command-length")

    if summary_file:
        try:
            summary_file.parent.mkdir(parents=True, exist_ok=True)
            summary_file.write_text(render_execution_summary(tag, build_number, target_env), encoding="utf-8")
        except OSError as e:
            raise click.ClickException(f"Could not write execution summary to '{summary_file}': {e}") from e
        log.info(f"Execution summary written to '{summary_file}'")

    if test_type.lower() == "web":
        web_plan = {"tag": tag.replace("@", ""), "args": plan_web_execution(tag, browser, headless)}
        click.echo(json.dumps(web_plan, indent=2))
        return

    plan = plan_api_execution(tag, max_command_length)
    if properties_file and plan.properties:
        try:
            properties_file.parent.mkdir(parents=True, exist_ok=True)
            properties_file.write_text(plan.properties, encoding="utf-8")
        except OSError as e:
            raise click.ClickException(f"Could not write Cucumber properties to '{properties_file}': {e}") from e
        log.info(f"Cucumber properties written to '{properties_file}'")

    click.echo(json.dumps(asdict(plan), indent=2))


if __name__ == "__main__":
    main()
