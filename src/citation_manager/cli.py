#!/usr/bin/env python3
"""
citation-manager: validate and extract markdown citations

Usage:
    citation-manager validate doc.md              # Check every link in a file
    citation-manager validate doc.md --lines 10-50
    citation-manager fix doc.md --scope docs/     # Rewrite fixable links in place
    citation-manager ast doc.md                   # Dump the parser output
    citation-manager extract links doc.md         # Pull cited sections into one bundle
    citation-manager extract header doc.md "Heading"
"""

from __future__ import annotations

import asyncio
import difflib
import json
import sys
from collections.abc import Sequence
from typing import Any, NoReturn

import click
from click.exceptions import ClickException, UsageError

from . import __version__ as CITATION_MANAGER_VERSION
from .errors import format_error_json


def run_async(coro):
    """Run async function synchronously."""
    return asyncio.run(coro)


# ─────────────────────────────────────────────────────────────────────────────
# Output Formatting
# ─────────────────────────────────────────────────────────────────────────────


def output(data, as_json: bool = False):
    """Output data as JSON or formatted text."""
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
    else:
        click.echo(data)


def _tree_section(title: str, links: list, detail) -> list[str]:
    lines = [f"{title} ({len(links)})"]
    for index, link in enumerate(links):
        is_last = index == len(links) - 1
        prefix = "└─" if is_last else "├─"
        lines.append(f"{prefix} Line {link.line}: {link.full_match}")
        for text in detail(link):
            lines.append(f"│  └─ {text}")
        if not is_last and detail(link):
            lines.append("│")
    lines.append("")
    return lines


def _error_details(link) -> list[str]:
    details = [link.validation.error]
    if link.validation.suggestion:
        details.append(f"Suggestion: {link.validation.suggestion}")
    return details


def _warning_details(link) -> list[str]:
    details = []
    if link.validation.error:
        details.append(link.validation.error)
    if link.validation.suggestion:
        details.append(link.validation.suggestion)
    return details


def format_validation_report(result) -> str:
    """Human-readable validation report with a final verdict line."""
    summary = result.summary
    lines = ["Citation Validation Report", "==========================", "", f"File: {result.file}"]
    if result.line_range:
        lines.append(f"Line Range: {result.line_range}")
    lines.append(f"Processed: {summary.total} citations found")
    lines.append("")

    by_status: dict[str, list] = {"error": [], "warning": [], "valid": []}
    for link in result.links:
        by_status[link.validation.status].append(link)

    if by_status["error"]:
        lines.extend(_tree_section("CRITICAL ERRORS", by_status["error"], _error_details))
    if by_status["warning"]:
        lines.extend(_tree_section("WARNINGS", by_status["warning"], _warning_details))
    if by_status["valid"]:
        lines.extend(_tree_section("VALID CITATIONS", by_status["valid"], lambda link: []))

    lines.extend(
        [
            "SUMMARY:",
            f"- Total citations: {summary.total}",
            f"- Valid: {summary.valid}",
            f"- Warnings: {summary.warnings}",
            f"- Critical errors: {summary.errors}",
            f"- Validation time: {result.validation_time}",
            "",
        ]
    )

    if summary.errors > 0:
        lines.append(f"VALIDATION FAILED - Fix {summary.errors} critical errors")
    elif summary.warnings > 0:
        lines.append(f"VALIDATION PASSED WITH WARNINGS - {summary.warnings} issues to review")
    else:
        lines.append("ALL CITATIONS VALID")
    return "\n".join(lines)


def format_fix_report(report) -> str:
    if not report.fixes:
        return f"No auto-fixable citations found in {report.file}"

    lines = [f"Fixed {len(report.fixes)} citation(s) in {report.file}:"]
    if report.path_corrections:
        lines.append(f"   - {report.path_corrections} path correction(s)")
    if report.anchor_corrections:
        lines.append(f"   - {report.anchor_corrections} anchor correction(s)")
    lines.extend(["", "Changes made:"])
    for fix in report.fixes:
        lines.append(f"  Line {fix.line} ({fix.fix_type}):")
        lines.append(f"    - {fix.old}")
        lines.append(f"    + {fix.new}")
        lines.append("")
    return "\n".join(lines).rstrip("\n")


def _dump(model) -> dict:
    return model.model_dump(by_alias=True)


# ─────────────────────────────────────────────────────────────────────────────
# Error Handling
# ─────────────────────────────────────────────────────────────────────────────


def _handle_error(
    ctx: click.Context,
    error: Exception,
    fallback_message: str | None = None,
    exit_code: int = 2,
) -> NoReturn:
    """Report a fatal error and exit.

    With --json-errors the error goes to stderr as {"error": {...}}; otherwise
    as "ERROR: message" plus an optional hint.
    """
    from .errors import CitationManagerError, ErrorCode

    json_errors = ctx.obj.get("json_errors", False) if ctx.obj else False

    if isinstance(error, CitationManagerError):
        if json_errors:
            click.echo(error.to_json(), err=True)
        else:
            click.echo(f"ERROR: {error.message}", err=True)
            suggestion = error.details.get("suggestion") if error.details else None
            if suggestion:
                click.echo(f"Hint: {suggestion}", err=True)
    else:
        message = fallback_message or str(error)
        if json_errors:
            code = ErrorCode.FILE_READ_ERROR if isinstance(error, OSError) else ErrorCode.INTERNAL_ERROR
            click.echo(format_error_json(code, message), err=True)
        else:
            click.echo(f"ERROR: {message}", err=True)

    sys.exit(exit_code)


def get_error_code_for_exception(exc: Exception) -> str:
    """Map Click exceptions to error codes."""
    if isinstance(exc, click.BadParameter):
        return "INVALID_ARGUMENT"
    elif isinstance(exc, click.MissingParameter):
        return "MISSING_ARGUMENT"
    elif isinstance(exc, click.NoSuchOption):
        return "UNKNOWN_OPTION"
    elif isinstance(exc, UsageError):
        return "USAGE_ERROR"
    elif isinstance(exc, ClickException):
        return "CLI_ERROR"
    return "UNKNOWN_ERROR"


# ─────────────────────────────────────────────────────────────────────────────
# JSON Error Handling
# ─────────────────────────────────────────────────────────────────────────────


class JsonErrorGroup(click.Group):
    """Click group that formats errors as JSON when --json-errors is set.

    Covers Click validation errors (bad option values, missing args) raised
    before a command callback runs, and suggests commands for typos.
    """

    def resolve_command(self, ctx, args):
        """Suggest a similar command for typos."""
        try:
            return super().resolve_command(ctx, args)
        except UsageError as e:
            cmd_name = args[0] if args else ""
            if cmd_name and "No such command" in str(e):
                matches = difflib.get_close_matches(cmd_name, self.list_commands(ctx), n=1, cutoff=0.6)
                if matches:
                    raise UsageError(f"No such command '{cmd_name}'. Did you mean '{matches[0]}'?")
            raise

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except ClickException as e:
            if ctx.find_root().params.get("json_errors"):
                code = get_error_code_for_exception(e)
                click.echo(format_error_json(code, e.format_message()), err=True)
                raise SystemExit(2)
            raise

    def main(
        self,
        args: Sequence[str] | None = None,
        prog_name: str | None = None,
        complete_var: str | None = None,
        standalone_mode: bool = True,
        **extra: Any,
    ) -> Any:
        """Catch errors raised while parsing arguments.

        A --json-errors flag anywhere on the command line is moved to the front
        so Click parses it as the global flag, and Click runs with
        standalone_mode=False so its errors can be reported as JSON.
        """
        argv = list(args) if args is not None else list(sys.argv[1:])

        if "--json-errors" not in argv:
            return super().main(args, prog_name, complete_var, standalone_mode, **extra)

        argv = [a for a in argv if a != "--json-errors"]
        argv.insert(0, "--json-errors")

        try:
            result = super().main(
                argv,
                prog_name,
                complete_var,
                standalone_mode=False,
                **extra,
            )
        except ClickException as e:
            code = get_error_code_for_exception(e)
            click.echo(format_error_json(code, e.format_message()), err=True)
            raise SystemExit(2)
        except SystemExit:
            raise
        except Exception as e:
            click.echo(format_error_json("INTERNAL_ERROR", str(e)), err=True)
            raise SystemExit(2)
        # standalone_mode=False returns ctx.exit() codes instead of exiting
        if isinstance(result, int) and result:
            raise SystemExit(result)
        return result


# ─────────────────────────────────────────────────────────────────────────────
# Shared Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _create_manager(ctx: click.Context, scope: str | None):
    """CitationManager for this invocation, with scope defaulting to project config."""
    from .config import ConfigurationError, get_default_scope
    from .core import CitationManager
    from .errors import CitationManagerError, ErrorCode

    if scope is None:
        try:
            default_scope = get_default_scope()
        except ConfigurationError as e:
            _handle_error(ctx, CitationManagerError(ErrorCode.CONFIGURATION_ERROR, str(e)))
        scope = str(default_scope) if default_scope else None

    try:
        return CitationManager(scope)
    except CitationManagerError as e:
        _handle_error(ctx, e)


def _report_scope(ctx: click.Context, manager) -> None:
    stats = manager.cache_stats
    if stats is None or ctx.obj.get("quiet"):
        return
    click.echo(f"Scanned {stats.total_files} files in {stats.scope_folder}", err=True)
    if stats.duplicates:
        click.echo(f"WARNING: Found {stats.duplicates} duplicate filenames", err=True)


def _print_validation_errors(result) -> None:
    errors = [link for link in result.links if link.validation.status == "error"]
    if not errors:
        return
    click.echo("Validation errors found:", err=True)
    for link in errors:
        click.echo(f"  Line {link.line}: {link.validation.error}", err=True)


# ─────────────────────────────────────────────────────────────────────────────
# Main CLI Group
# ─────────────────────────────────────────────────────────────────────────────


@click.group(cls=JsonErrorGroup)
@click.version_option(version=CITATION_MANAGER_VERSION, prog_name="citation-manager")
@click.option(
    "--json-errors",
    "json_errors",
    is_flag=True,
    help="Output errors as JSON (for programmatic use)",
)
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    envvar="CITATION_MANAGER_QUIET",
    help="Suppress warnings and scope summaries, show only errors and results",
)
@click.pass_context
def cli(ctx: click.Context, json_errors: bool, quiet: bool):
    """citation-manager: validate and extract markdown citations.

    \b
    Validate:
      citation-manager validate doc.md                 # Text report
      citation-manager validate doc.md --format json   # Machine-readable
      citation-manager validate doc.md --scope docs/   # Resolve moved files by name

    \b
    Repair:
      citation-manager fix doc.md --scope docs/

    \b
    Extract:
      citation-manager extract links doc.md --full-files
      citation-manager extract header guide.md "Installation"
      citation-manager extract file guide.md

    \b
    Scope defaults to $CITATION_MANAGER_SCOPE, then the `scope` key of the
    nearest .citation-manager.yaml.
    """
    from ._logging import set_quiet_mode

    ctx.ensure_object(dict)
    ctx.obj["json_errors"] = json_errors
    ctx.obj["quiet"] = quiet

    if quiet:
        set_quiet_mode(True)


# ─────────────────────────────────────────────────────────────────────────────
# Validate / AST / Fix
# ─────────────────────────────────────────────────────────────────────────────


@cli.command()
@click.argument("file", type=click.Path())
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["cli", "json"]),
    default="cli",
    show_default=True,
    help="Report format",
)
@click.option("--lines", help="Only validate links in this line range (e.g. 150-160 or 157)")
@click.option("--scope", type=click.Path(), help="Folder to index for filename-based resolution")
@click.pass_context
def validate(ctx: click.Context, file: str, output_format: str, lines: str | None, scope: str | None):
    """Validate every citation in FILE.

    Exits 1 when any citation has a critical error, 2 on fatal errors.

    \b
    Examples:
      citation-manager validate docs/design.md
      citation-manager validate docs/design.md --lines 10-50 --format json
    """
    from .errors import CitationManagerError
    from .parser import ParseError

    as_json = output_format == "json"
    manager = _create_manager(ctx, scope)
    if not as_json:
        _report_scope(ctx, manager)

    try:
        result = run_async(manager.validate(file, lines))
    except (CitationManagerError, OSError, ParseError) as e:
        if as_json and not ctx.obj.get("json_errors"):
            message = e.message if isinstance(e, CitationManagerError) else str(e)
            output({"error": message, "file": file, "success": False}, as_json=True)
            sys.exit(2)
        _handle_error(ctx, e)

    if as_json:
        output(_dump(result), as_json=True)
    else:
        click.echo(format_validation_report(result))

    if result.summary.errors > 0:
        sys.exit(1)


@cli.command()
@click.argument("file", type=click.Path())
@click.pass_context
def ast(ctx: click.Context, file: str):
    """Print the parser output for FILE as JSON.

    Includes the token tree, links, headings and anchors.
    """
    from .core import CitationManager
    from .errors import CitationManagerError
    from .parser import ParseError

    manager = CitationManager()
    try:
        data = run_async(manager.get_ast(file))
    except (CitationManagerError, OSError, ParseError) as e:
        _handle_error(ctx, e)
    output(data, as_json=True)


@cli.command()
@click.argument("file", type=click.Path())
@click.option("--scope", type=click.Path(), help="Folder to index for filename-based resolution")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def fix(ctx: click.Context, file: str, scope: str | None, as_json: bool):
    """Rewrite fixable citations in FILE in place.

    Fixes paths to files found in another directory and anchors with a known
    header equivalent.
    """
    from .errors import CitationManagerError
    from .parser import ParseError

    manager = _create_manager(ctx, scope)
    if not as_json:
        _report_scope(ctx, manager)

    try:
        report = run_async(manager.fix(file))
    except (CitationManagerError, OSError, ParseError) as e:
        _handle_error(ctx, e)

    if as_json:
        output(report.to_dict(), as_json=True)
    else:
        click.echo(format_fix_report(report))


# ─────────────────────────────────────────────────────────────────────────────
# Extract Commands
# ─────────────────────────────────────────────────────────────────────────────


@cli.group(cls=JsonErrorGroup)
def extract():
    """Extract cited content as a deduplicated JSON bundle."""
    pass


@extract.command("links")
@click.argument("file", type=click.Path())
@click.option("--scope", type=click.Path(), help="Folder to index for filename-based resolution")
@click.option("--full-files", is_flag=True, help="Also extract links without an anchor as whole files")
@click.pass_context
def extract_links(ctx: click.Context, file: str, scope: str | None, full_files: bool):
    """Extract the content cited by every link in FILE.

    Exits 1 when nothing could be extracted.
    """
    from .errors import CitationManagerError
    from .parser import ParseError

    manager = _create_manager(ctx, scope)
    try:
        result, extracted = run_async(manager.extract_links(file, full_files=full_files))
    except (CitationManagerError, OSError, ParseError) as e:
        _handle_error(ctx, e)

    _print_validation_errors(result)
    output(_dump(extracted), as_json=True)
    if extracted.stats.unique_content == 0:
        sys.exit(1)


@extract.command("header")
@click.argument("file", type=click.Path())
@click.argument("heading")
@click.option("--scope", type=click.Path(), help="Folder to index for filename-based resolution")
@click.pass_context
def extract_header(ctx: click.Context, file: str, heading: str, scope: str | None):
    """Extract the section under HEADING in FILE."""
    from .errors import CitationManagerError, CitationValidationError
    from .parser import ParseError

    manager = _create_manager(ctx, scope)
    try:
        extracted = run_async(manager.extract_header(file, heading))
    except CitationValidationError as e:
        _report_validation_failure(ctx, e)
    except (CitationManagerError, OSError, ParseError) as e:
        _handle_error(ctx, e)
    output(_dump(extracted), as_json=True)


@extract.command("file")
@click.argument("file", type=click.Path())
@click.option("--scope", type=click.Path(), help="Folder to index for filename-based resolution")
@click.pass_context
def extract_file(ctx: click.Context, file: str, scope: str | None):
    """Extract the whole of FILE."""
    from .errors import CitationManagerError, CitationValidationError
    from .parser import ParseError

    manager = _create_manager(ctx, scope)
    try:
        extracted = run_async(manager.extract_file(file))
    except CitationValidationError as e:
        _report_validation_failure(ctx, e)
    except (CitationManagerError, OSError, ParseError) as e:
        _handle_error(ctx, e)
    output(_dump(extracted), as_json=True)


def _report_validation_failure(ctx: click.Context, error) -> NoReturn:
    if ctx.obj.get("json_errors"):
        click.echo(error.to_json(), err=True)
    else:
        click.echo(f"Validation failed: {error.message}", err=True)
        if error.suggestion:
            click.echo(f"Suggestion: {error.suggestion}", err=True)
    sys.exit(1)


def main():
    """Entry point for the citation-manager CLI."""
    from ._logging import configure_logging

    configure_logging()
    cli()


if __name__ == "__main__":
    main()
