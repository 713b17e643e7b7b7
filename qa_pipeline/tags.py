#!/usr/bin/env python3
"""
tags.py - Resolve the test tag a build targets and the sheets it needs.

The tag is derived from the Jenkins job name, an explicit custom tag, or the
QA_SERVICE parameter. Each tag maps to one or more Google Sheets worksheets
that supply the test data for that service.

Usage:
    python tags.py --job-name "qa-api/inagov-daily" --qa-service smoke
    python tags.py --job-name "qa-api/regression" --qa-service api --use-custom-tag --custom-tag "@sbu"
"""

import json
import logging
from collections import OrderedDict
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, cast

import click
from dotenv import set_key

log = logging.getLogger(__name__)

TAG_SOURCE_CUSTOM = "CUSTOM_TAG"
TAG_SOURCE_JOB_NAME = "JOB_NAME"
TAG_SOURCE_QA_SERVICE = "QA_SERVICE"

# Ordered (substring, tag) rules matched against the lower-cased job name. First match wins.
JOB_NAME_TAG_RULES: Sequence[Tuple[str, str]] = (
    ("inagov", "inagov"),
    ("inapas", "inapas"),
    ("inaku", "inaku"),
    ("sbu", "sbu"),
    ("emeterai-smoke-staging", "emeterai-smoke-staging"),
    ("emeterai-smoke-prod", "emeterai-smoke-prod"),
    ("mbg", "mbg"),
    ("peruriid", "peruriid"),
    ("wizard", "wizard"),
    ("telkomsign-daily-dev", "telkomsign"),
    ("telkomsign-smoke-dev", "telkomsign-smoke-dev"),
    ("metel", "metel"),
    ("digitrust", "digitrust"),
    ("digidoc-dashboard-cmp", "digidoc-dashboard-cmp"),
    ("emudhra", "emudhra"),
    # Web jobs
    ("web-peruriid", "web-peruriid"),
    ("perisai-digidoc", "perisai-digidoc"),
    ("change-password", "change-password"),
    ("login-success", "login-success"),
    ("regression-all-web", "regression"),
)

ALL_SERVICE_SHEETS = ["PERURIID", "SBU", "INAGOV", "INAPAS", "INAKU", "TELKOMSIGN"]

# Keys are matched as substrings of the tag in insertion order, so more specific keys must come first.
DEFAULT_SHEET_MAPPING: "OrderedDict[str, List[str]]" = OrderedDict(
    [
        ("peruriid", ["PERURIID"]),
        ("external-iam", ["PERURIID"]),
        ("internal-iam", ["PERURIID"]),
        ("wizard", ["PERURIID"]),
        ("sbu", ["SBU"]),
        ("digidoc-dashboard-cmp", ["SBU"]),
        ("digitrust", ["SBU"]),
        ("cmp", ["SBU"]),
        ("emeterai", ["SBU"]),
        ("metel", ["SBU"]),
        ("emudhra", ["SBU"]),
        ("mbg", ["MBG"]),
        ("inagov", ["INAGOV"]),
        ("inapas", ["INAPAS"]),
        ("inaku", ["INAKU"]),
        ("telkomsign", ["TELKOMSIGN"]),
        # Multi-service tags
        ("regression", ALL_SERVICE_SHEETS),
        ("positive", ALL_SERVICE_SHEETS),
        ("negative", ALL_SERVICE_SHEETS),
        ("login", ALL_SERVICE_SHEETS),
        ("smoke", ALL_SERVICE_SHEETS),
        ("api", ALL_SERVICE_SHEETS),
        # Web
        ("perisai-digidoc", ["PERISAI-DIGIDOC"]),
        ("change-password", ["PERURIID"]),
        ("login-success", ["PERURIID"]),
        ("test", ["PERURIID"]),
        ("regression-all-web", ["PERURIID", "SBU"]),
    ]
)

FALLBACK_SHEETS = ["PERURIID", "SBU", "INAGOV", "INAPAS", "INAKU", "PERISAI-DIGIDOC", "TELKOMSIGN", "MBG"]


@dataclass
class TagResolution:
    """The tag a build runs with and where it came from."""

    tag: str
    source: str


def _clean_custom_tag(custom_tag: Optional[str]) -> Optional[str]:
    if not custom_tag or not custom_tag.strip():
        return None
    tag = custom_tag.strip()
    return tag[1:] if tag.startswith("@") else tag


def match_job_name(job_name: str) -> Optional[str]:
    """Return the tag of the first job name rule that matches, if any."""
    job_name_lower = job_name.lower()
    for needle, tag in JOB_NAME_TAG_RULES:
        if needle in job_name_lower:
            return tag
    return None


def determine_effective_tag(
    job_name: str,
    default_tag: str,
    use_custom_tag: bool = False,
    custom_tag: Optional[str] = None,
) -> str:
    """Determine the tag for a job from its name, falling back to the custom tag and then the default."""
    if matched := match_job_name(job_name):
        return matched

    if use_custom_tag:
        if cleaned := _clean_custom_tag(custom_tag):
            return cleaned

    return default_tag


def resolve_tag(
    job_name: str,
    qa_service: str,
    use_custom_tag: bool = False,
    custom_tag: Optional[str] = None,
) -> TagResolution:
    """Resolve the effective tag for a build.

    An explicit custom tag always wins when USE_CUSTOM_TAG is enabled. Otherwise the job
    name rules apply, and the QA_SERVICE parameter is used when none of them match.

    Args:
        job_name: Full Jenkins job name (e.g. "qa/api-inagov-daily")
        qa_service: Value of the QA_SERVICE build parameter
        use_custom_tag: Value of the USE_CUSTOM_TAG build parameter
        custom_tag: Value of the CUSTOM_TAG build parameter

    Returns:
        TagResolution with the tag and the source it was taken from
    """
    if use_custom_tag:
        if cleaned := _clean_custom_tag(custom_tag):
            return TagResolution(tag=cleaned, source=TAG_SOURCE_CUSTOM)
        log.debug("USE_CUSTOM_TAG is set but CUSTOM_TAG is empty, falling back to job name rules")

    if matched := match_job_name(job_name):
        return TagResolution(tag=matched, source=TAG_SOURCE_JOB_NAME)

    return TagResolution(tag=qa_service, source=TAG_SOURCE_QA_SERVICE)


def map_tag_to_sheets(tag: str, mapping: Optional[Dict[str, List[str]]] = None) -> List[str]:
    """Map a tag to the worksheet names holding its test data."""
    sheet_mapping = DEFAULT_SHEET_MAPPING if mapping is None else mapping
    normalized_tag = tag.lower().strip()

    for key, sheets in sheet_mapping.items():
        if key in normalized_tag:
            log.info(f"Tag '{normalized_tag}' mapped to sheets: {sheets}")
            return list(sheets)

    log.info(f"Tag '{normalized_tag}' not found in mapping, using fallback sheets: {FALLBACK_SHEETS}")
    return list(FALLBACK_SHEETS)


def get_effective_sheet_names(
    tag: str,
    override: Optional[str] = None,
    mapping: Optional[Dict[str, List[str]]] = None,
) -> List[str]:
    """Return the override sheet list when given (comma separated), otherwise the mapped sheets."""
    if override and override.strip():
        sheets = [name.strip() for name in override.split(",") if name.strip()]
        log.info(f"Using override sheet names: {sheets}")
        return sheets

    return map_tag_to_sheets(tag, mapping)


def load_sheet_mapping(config_file: Path) -> Dict[str, List[str]]:
    """Load a tag to sheets mapping from a JSON object file.

    Raises:
        FileNotFoundError: If config file doesn't exist
        json.JSONDecodeError: If config file is invalid JSON
        ValueError: If the JSON is not an object of string lists
    """
    try:
        with open(config_file, encoding="utf-8") as f:
            data = json.load(f, object_pairs_hook=OrderedDict)
    except FileNotFoundError:
        log.error(f"Config file not found: {config_file}")
        raise
    except json.JSONDecodeError as e:
        log.error(f"Invalid JSON in config file {config_file}: {e}")
        raise

    if not isinstance(data, dict) or not all(isinstance(v, list) for v in data.values()):
        raise ValueError(f"Sheet mapping in {config_file} must be an object of sheet name lists")

    return cast(Dict[str, List[str]], data)


def apply_sheet_to_env_file(env_file: Path, sheet: str, spreadsheet_id: Optional[str] = None) -> None:
    """Point the test project's .env file at a single sheet (and optionally a spreadsheet)."""
    if not env_file.exists():
        env_file.parent.mkdir(parents=True, exist_ok=True)
        env_file.touch()

    set_key(str(env_file), "SHEET", sheet, quote_mode="never")
    if spreadsheet_id:
        set_key(str(env_file), "SPREADSHEET_ID", spreadsheet_id, quote_mode="never")

    log.info(f"Set SHEET={sheet} in {env_file}")


@click.command()
@click.help_option("--help", "-h")
@click.option("--job-name", required=True, help="Full Jenkins job name (JOB_NAME)")
@click.option("--qa-service", required=True, help="Value of the QA_SERVICE build parameter")
@click.option("--use-custom-tag", is_flag=True, help="Use CUSTOM_TAG when it is set")
@click.option("--custom-tag", default=None, help="Value of the CUSTOM_TAG build parameter")
@click.option("--sheet-override", default=None, help="Comma-separated sheet names overriding the mapping")
@click.option(
    "-c",
    "--config",
    "config_file",
    required=False,
    type=click.Path(exists=True, file_okay=True, dir_okay=False, path_type=Path),
    help="JSON file with a tag to sheets mapping replacing the built-in one",
)
@click.option(
    "-o",
    "--output",
    "output_file",
    required=False,
    type=click.Path(path_type=Path),
    help="Write the JSON result to this file instead of stdout",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose logging")
def main(
    job_name: str,
    qa_service: str,
    use_custom_tag: bool,
    custom_tag: Optional[str],
    sheet_override: Optional[str],
    config_file: Optional[Path],
    output_file: Optional[Path],
    verbose: bool,
) -> None:
    """Resolve the effective test tag and its sheet names.

    \b
    Examples:
      qa-resolve-tag --job-name "qa-api/inagov-daily" --qa-service smoke
      qa-resolve-tag --job-name "qa-api/custom" --qa-service api \\
          --use-custom-tag --custom-tag "@sbu and @high" -o tag.json
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(message)s")

    mapping = None
    if config_file:
        try:
            mapping = load_sheet_mapping(config_file)
        except (json.JSONDecodeError, ValueError) as e:
            raise click.ClickException(f"Invalid sheet mapping: {e}") from e

    resolution = resolve_tag(job_name, qa_service, use_custom_tag, custom_tag)
    log.info(f"Job: {job_name} -> tag @{resolution.tag} ({resolution.source})")

    sheets = get_effective_sheet_names(resolution.tag, sheet_override, mapping)
    result = {**asdict(resolution), "sheets": sheets}
    payload = json.dumps(result, indent=2, ensure_ascii=False)

    if output_file:
        output_file.parent.mkdir(parents=True, exist_ok=True)
        output_file.write_text(payload, encoding="utf-8")
        log.info(f"Tag resolution written to '{output_file}'")
    else:
        click.echo(payload)


@click.command()
@click.option(
    "--env-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path(".env"),
    show_default=True,
    help="The test project's .env file",
)
@click.option("--sheet", required=True, help="Worksheet name to load test data from")
@click.option("--spreadsheet-id", default=None, help="Google Sheets spreadsheet ID")
def set_sheet(env_file: Path, sheet: str, spreadsheet_id: Optional[str]) -> None:
    """Point the test project's .env file at one worksheet before loading its data."""
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    if not sheet.strip():
        raise click.BadParameter("Sheet name is empty.", param_hint="--sheet")

    apply_sheet_to_env_file(env_file, sheet.strip(), spreadsheet_id)


if __name__ == "__main__":
    main()
