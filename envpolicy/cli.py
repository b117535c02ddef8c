"""Command-line interface for the envpolicy checker."""

import logging
import shutil
import sys
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from envpolicy import __version__
from envpolicy.config import (
    DEFAULT_RULES_DIR,
    ConfigError,
    ProjectConfig,
    find_config_file,
    load_config,
)
from envpolicy.evaluators.engine import PolicyEngine, filter_rules
from envpolicy.loaders.repository import RepositoryLoadError, load_repository, summarize_files
from envpolicy.loaders.rules import RuleLoadError, load_rules
from envpolicy.logging_setup import configure_logging, resolve_log_level
from envpolicy.models.rule import Rule
from envpolicy.policies import builtin_rules, write_rule_pack
from envpolicy.reporters import REPORTERS, get_reporter
from envpolicy.security import (
    SecurityError,
    sanitize_for_output,
    sanitize_scan_root,
    validate_safe_directory,
)

log = logging.getLogger("envpolicy.cli")

FORMAT_CHOICE = click.Choice(sorted(REPORTERS), case_sensitive=False)


@click.group()
@click.version_option(version=__version__, prog_name="envpolicy")
def cli() -> None:
    """envpolicy - Environment governance checks for conda, pip, renv and CI.

    Scans a repository's environment files, pipelines and Dockerfiles and
    reports where they drift from the team's reproducibility and security
    policies.
    """
    try:
        configure_logging(resolve_log_level())
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)


@cli.command()
@click.argument("path", default=".", type=click.Path(exists=True, file_okay=False))
@click.option(
    "--rules-dir",
    "-r",
    default=None,
    help=f"Directory containing policy rules (default: {DEFAULT_RULES_DIR})",
    type=click.Path(),
)
@click.option(
    "--builtin",
    is_flag=True,
    help="Evaluate the built-in policies instead of a rules directory",
)
@click.option(
    "--format",
    "-f",
    type=FORMAT_CHOICE,
    default=None,
    help="Output format (default: terminal)",
)
@click.option(
    "--strict",
    is_flag=True,
    help="Treat warnings as errors (fail on any violation)",
)
@click.option(
    "--category",
    "-c",
    "categories",
    multiple=True,
    help="Only evaluate rules in this category (repeatable)",
)
@click.option(
    "--exclude",
    "-x",
    multiple=True,
    help="Glob of repository paths to skip (repeatable)",
)
@click.option(
    "--config",
    "config_file",
    default=None,
    help="Project configuration file (default: PATH/.envpolicy.yml when present)",
    type=click.Path(),
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output",
)
def check(
    path: str,
    rules_dir: Optional[str],
    builtin: bool,
    format: Optional[str],
    strict: bool,
    categories: Tuple[str, ...],
    exclude: Tuple[str, ...],
    config_file: Optional[str],
    verbose: bool,
) -> None:
    """Check a repository's environment configuration against policy rules.

    PATH: Repository directory to scan (default: current directory)

    Examples:

        envpolicy check

        envpolicy check . --rules-dir policies --format azure

        envpolicy check --builtin --category security --strict
    """
    exit_code = run_check(
        path,
        rules_dir=rules_dir,
        builtin=builtin,
        format=format,
        strict=strict,
        categories=categories,
        exclude=exclude,
        config_file=config_file,
        verbose=verbose,
    )
    sys.exit(exit_code)


@cli.command()
@click.option(
    "--rules",
    "-r",
    required=True,
    help="Directory containing policy rules",
    type=click.Path(exists=True, file_okay=False),
)
@click.option(
    "--path",
    "-p",
    required=True,
    help="Repository directory to scan",
    type=click.Path(exists=True, file_okay=False),
)
@click.option(
    "--format",
    "-f",
    type=FORMAT_CHOICE,
    default="terminal",
    help="Output format (default: terminal)",
)
@click.option(
    "--strict",
    is_flag=True,
    help="Treat warnings as errors (fail on any violation)",
)
def test(
    rules: str,
    path: str,
    format: str,
    strict: bool,
) -> None:
    """Test policy rules against a repository.

    Explicit version of 'check' command for local rule development. The
    project configuration file is ignored.

    Examples:

        envpolicy test --rules policies --path examples/ml-project

        envpolicy test -r .envpolicy -p . --format json
    """
    exit_code = run_check(
        path,
        rules_dir=rules,
        format=format,
        strict=strict,
        use_config=False,
    )
    sys.exit(exit_code)


@cli.command()
@click.option(
    "--dir",
    "-d",
    default=DEFAULT_RULES_DIR,
    help=f"Directory to create for rules (default: {DEFAULT_RULES_DIR})",
    type=click.Path(),
)
@click.option(
    "--force",
    is_flag=True,
    help="Overwrite existing directory if it exists",
)
@click.option(
    "--minimal",
    is_flag=True,
    help="Only write the core conda checks and a channel allow-list template",
)
def init(dir: str, force: bool, minimal: bool) -> None:
    """Initialize a rules directory with the default policy pack.

    Examples:

        envpolicy init

        envpolicy init --dir policies --minimal

        envpolicy init --force  # Overwrite existing .envpolicy directory
    """
    console = Console()

    try:
        target_dir = validate_safe_directory(dir, must_exist=False)

        if target_dir.exists():
            if not force:
                console.print(f"[red]Error: Directory '{escape(dir)}' already exists.[/red]")
                console.print("Use --force to overwrite or choose a different directory.")
                sys.exit(1)
            console.print(f"[yellow]Removing existing directory '{escape(dir)}'...[/yellow]")
            shutil.rmtree(target_dir)

        written = write_rule_pack(target_dir, minimal=minimal)

        console.print(Panel.fit(
            f"[green]Success! Initialized rules directory:[/green] [bold]{escape(dir)}[/bold]\n\n"
            f"Created {len(written)} rule file(s):\n"
            + "\n".join(f"  - {filename}" for filename in written) + "\n\n"
            "[dim]Next steps:[/dim]\n"
            "  1. Review and customize the rules\n"
            "  2. Run: [bold]envpolicy check[/bold]",
            title="envpolicy Initialized",
            border_style="green",
        ))
        sys.exit(0)

    except (SecurityError, ValueError, OSError) as e:
        safe_error = sanitize_for_output(str(e), context="terminal")
        console.print(f"[red]Error initializing rules directory: {escape(safe_error)}[/red]")
        sys.exit(2)


@cli.command()
@click.option(
    "--rules-dir",
    "-r",
    default=DEFAULT_RULES_DIR,
    help=f"Directory containing policy rules (default: {DEFAULT_RULES_DIR})",
    type=click.Path(exists=True, file_okay=False),
)
def validate_rules(rules_dir: str) -> None:
    """Validate policy rules without running them.

    Checks that all rule files are valid JSON/YAML and conform to the rule
    schema, and that no two rules share an id.

    Examples:

        envpolicy validate-rules

        envpolicy validate-rules --rules-dir policies
    """
    console = Console()

    try:
        console.print(f"[cyan]Validating rules in:[/cyan] {escape(rules_dir)}")

        rules = load_rules(rules_dir)

        console.print(Panel.fit(
            "[green]Success! All rules are valid![/green]\n\n"
            f"Validated {len(rules)} rule(s):\n"
            + "\n".join(f"  - {escape(rule.id)}: {escape(rule.name)}" for rule in rules),
            title="Validation Successful",
            border_style="green",
        ))
        sys.exit(0)

    except RuleLoadError as e:
        safe_error = sanitize_for_output(str(e), context="terminal")
        console.print(f"[red]Rule validation failed:[/red]\n{escape(safe_error)}")
        sys.exit(1)


@cli.command()
@click.argument("rule_id")
@click.option(
    "--rules-dir",
    "-r",
    default=DEFAULT_RULES_DIR,
    help=f"Directory containing policy rules (default: {DEFAULT_RULES_DIR})",
    type=click.Path(),
)
@click.option(
    "--builtin",
    is_flag=True,
    help="Look the rule up in the built-in policies",
)
def explain(rule_id: str, rules_dir: str, builtin: bool) -> None:
    """Explain what a specific rule checks.

    Shows the rule's resource type, scope, comparison, requirements,
    severity and how to fix a violation.

    Examples:

        envpolicy explain conda-dependency-pinned --builtin

        envpolicy explain pip-index-https --rules-dir policies
    """
    console = Console()

    try:
        rules = builtin_rules() if builtin else load_rules(rules_dir)
    except RuleLoadError as e:
        safe_error = sanitize_for_output(str(e), context="terminal")
        console.print(f"[red]Error loading rules: {escape(safe_error)}[/red]")
        sys.exit(2)

    rule = next((r for r in rules if r.id == rule_id), None)

    if rule is None:
        console.print(f"[red]Error: Rule '{escape(rule_id)}' not found.[/red]")
        console.print("\nAvailable rules:")
        for r in rules:
            console.print(f"  - {escape(r.id)}")
        sys.exit(1)

    severity_color = "red" if rule.severity == "error" else "yellow"
    console.print(Panel(
        describe_rule(rule),
        title=f"Rule: {escape(rule.id)}",
        border_style=severity_color,
    ))
    sys.exit(0)


@cli.command()
@click.argument("path", default=".", type=click.Path(exists=True, file_okay=False))
@click.option(
    "--exclude",
    "-x",
    multiple=True,
    help="Glob of repository paths to skip (repeatable)",
)
def discover(path: str, exclude: Tuple[str, ...]) -> None:
    """List the configuration files envpolicy would check.

    Shows each detected file, the loader that reads it and the resources it
    produces. Files that fail to parse are listed with their error.

    Examples:

        envpolicy discover

        envpolicy discover services/api -x "legacy/**"
    """
    console = Console()

    try:
        root = sanitize_scan_root(path)
    except (SecurityError, ValueError) as e:
        safe_error = sanitize_for_output(str(e), context="terminal")
        console.print(f"[red]Error: {escape(safe_error)}[/red]")
        sys.exit(2)

    summary = summarize_files(root, exclude)

    if not summary:
        console.print(f"[yellow]No configuration files found under {escape(path)}[/yellow]")
        sys.exit(0)

    table = Table(show_header=True, header_style="bold cyan", padding=(0, 1))
    table.add_column("File", style="cyan")
    table.add_column("Loader")
    table.add_column("Resources")

    for entry in summary:
        if entry["error"]:
            resources = f"[red]{escape(sanitize_for_output(entry['error']))}[/red]"
        else:
            resources = ", ".join(
                f"{resource_type} ({count})" for resource_type, count in sorted(entry["types"].items())
            ) or "[dim]none[/dim]"
        table.add_row(escape(entry["file"]), entry["loader"], resources)

    console.print(table)
    console.print(f"\n{len(summary)} configuration file(s) found")
    sys.exit(0)


def describe_rule(rule: Rule) -> str:
    """Rich markup describing a rule for the explain command."""
    severity_color = "red" if rule.severity == "error" else "yellow"

    if rule.resource_forbidden:
        operator_info = "[red]Forbidden Resource[/red]\nAny file producing this resource type is not allowed."
    elif rule.property is not None:
        operator_info = f"Property must be: [cyan]{escape(rule.describe_check())}[/cyan]"
    else:
        operator_info = "Required related resources (see below)"

    content = (
        f"[bold]{escape(rule.name)}[/bold]\n\n"
        f"[dim]Rule ID:[/dim] {escape(rule.id)}\n"
        f"[dim]Severity:[/dim] [{severity_color}]{rule.severity.upper()}[/{severity_color}]\n"
        f"[dim]Resource Type:[/dim] {escape(', '.join(rule.target_types()))}\n"
    )

    if rule.category:
        content += f"[dim]Category:[/dim] {escape(rule.category)}\n"

    if rule.property:
        content += f"[dim]Property Path:[/dim] {escape(rule.property)}\n"

    if rule.where:
        scope = ", ".join(f"{k} = {v!r}" for k, v in rule.where.items())
        content += f"[dim]Applies where:[/dim] {escape(scope)}\n"

    content += f"\n[bold]Check:[/bold]\n{operator_info}\n"

    if rule.requires_resources:
        content += "\n[bold]Requires:[/bold]\n"
        for required in rule.requires_resources:
            count = f"at least {required.min_count}"
            if required.max_count is not None:
                count += f", at most {required.max_count}"
            line = f"  - {required.resource_type} ({required.relationship}, {count})"
            if required.filter:
                line += " matching " + ", ".join(f"{k} = {v!r}" for k, v in required.filter.items())
            if required.conditions:
                line += " with " + ", ".join(f"{k} = {v!r}" for k, v in required.conditions.items())
            content += escape(line) + "\n"

    content += f"\n[bold]Violation Message:[/bold]\n{escape(rule.message)}"

    if rule.remediation:
        content += f"\n\n[bold]Remediation:[/bold]\n{escape(rule.remediation)}"

    return content


def _load_project_config(root: Path, config_file: Optional[str]) -> ProjectConfig:
    if config_file is not None:
        return load_config(Path(config_file))
    found = find_config_file(root)
    if found is None:
        return ProjectConfig()
    log.info("Using configuration file %s", found)
    return load_config(found)


def _select_rules(
    root: Path, rules_dir: Optional[str], builtin: bool, config: ProjectConfig
) -> List[Rule]:
    """Pick the rule source: explicit option, then config file, then default."""
    if builtin:
        log.info("Using built-in policies")
        return builtin_rules()

    if rules_dir is not None:
        return load_rules(rules_dir)

    if config.builtin:
        log.info("Using built-in policies (from configuration)")
        return builtin_rules()

    if config.rules_dir is not None:
        return load_rules(config.rules_dir)

    default_dir = root / DEFAULT_RULES_DIR
    if default_dir.is_dir():
        return load_rules(str(default_dir))

    log.info("No %s directory found, using built-in policies", DEFAULT_RULES_DIR)
    return builtin_rules()


def run_check(
    path: str,
    rules_dir: Optional[str] = None,
    builtin: bool = False,
    format: Optional[str] = None,
    strict: bool = False,
    categories: Sequence[str] = (),
    exclude: Sequence[str] = (),
    config_file: Optional[str] = None,
    verbose: bool = False,
    use_config: bool = True,
) -> int:
    """Run policy checks and return exit code.

    Command-line values win over the project configuration, which wins over
    the built-in defaults.

    Returns:
        Exit code: 0 = pass, 1 = violations found, 2 = error
    """
    try:
        root = sanitize_scan_root(path)

        config = _load_project_config(root, config_file) if use_config else ProjectConfig()
        configure_logging(resolve_log_level(config.log_level, verbose))

        output_format = (format or config.format or "terminal").lower()
        strict = strict or config.strict
        selected_categories = list(categories) or config.categories
        excluded = tuple(config.exclude) + tuple(exclude)

        rules = _select_rules(root, rules_dir, builtin, config)
        log.info("Loaded %d rule(s)", len(rules))

        rules = filter_rules(rules, selected_categories)
        if selected_categories:
            log.info("%d rule(s) in categories %s", len(rules), ", ".join(selected_categories))
            if not rules:
                log.warning("No rules match categories: %s", ", ".join(selected_categories))

        resources = load_repository(str(root), exclude=excluded)
        log.info("Loaded %d resource(s) from %s", len(resources), root)

        result = PolicyEngine().run(rules, resources)
        for rule_id in result.skipped_rules:
            log.info("Rule %s matched no resources", rule_id)

        reporter = get_reporter(output_format)
        reporter.report(result.violations)

        return 1 if result.has_failures(strict=strict) else 0

    except ConfigError as e:
        safe_error = sanitize_for_output(str(e), context="terminal")
        click.echo(f"Error loading configuration: {safe_error}", err=True)
        return 2

    except RuleLoadError as e:
        safe_error = sanitize_for_output(str(e), context="terminal")
        click.echo(f"Error loading rules: {safe_error}", err=True)
        return 2

    except RepositoryLoadError as e:
        safe_error = sanitize_for_output(str(e), context="terminal")
        click.echo(f"Error loading repository: {safe_error}", err=True)
        return 2

    except (SecurityError, ValueError) as e:
        safe_error = sanitize_for_output(str(e), context="terminal")
        click.echo(f"Error: {safe_error}", err=True)
        return 2

    except Exception as e:
        # Sanitize error messages to prevent information disclosure
        safe_error = sanitize_for_output(str(e), context="terminal")
        click.echo(f"Unexpected error: {safe_error}", err=True)
        log.debug("Unexpected error while checking %s", path, exc_info=True)
        return 2


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
