"""CLI for the tmplrig template test harness."""

import sys
import time
from pathlib import Path
from typing import Optional

import click
import yaml
from rich.console import Console
from rich.table import Table

from . import __version__
from .baseline import IgnoreRules, compare_file_set, find_baseline, load_baselines
from .config import load_config
from .context import HarnessContext
from .logs import output_for, setup_logging
from .tracking import reap_orphans


console = Console()

config_option = click.option(
    "--config", "-c", "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="Harness configuration file (YAML)",
)


@click.group()
@click.version_option(version=__version__, prog_name="tmplrig")
def cli():
    """tmplrig – end-to-end tests for web project templates."""
    pass


@cli.command("install-templates")
@config_option
def install_templates(config_path: Optional[str]):
    """Reinstall the freshly built template packages into the custom hive."""
    try:
        config = load_config(config_path)
        setup_logging(config.log_dir)
        with HarnessContext(config) as context:
            with console.status("Installing template packages..."):
                context.installer.ensure_initialized(output_for("cli.install"))
        console.print(f"[green]✓ Templates installed into {config.custom_hive_path}[/green]")
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@config_option
def driver(config_path: Optional[str]):
    """Start the browser-automation driver and keep it running."""
    try:
        config = load_config(config_path)
        setup_logging(config.log_dir)
        context = HarnessContext(config)
        instance = context.driver_launcher.get_instance(output_for("cli.driver"))
        console.print(f"[green]✓ Driver running at {instance.uri}[/green] (pid {instance.pid})")
        console.print(f"  Browser endpoint: {instance.ws_endpoint}")
        console.print("\n[dim]Press Ctrl+C to stop[/dim]\n")
        try:
            while not instance.process.has_exited:
                time.sleep(1)
            console.print("[yellow]Driver exited[/yellow]")
        except KeyboardInterrupt:
            console.print("\n[yellow]Shutting down...[/yellow]")
        finally:
            context.close()
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@config_option
def reap(config_path: Optional[str]):
    """Kill processes left behind by an aborted test run."""
    try:
        config = load_config(config_path)
        results = reap_orphans(config.tracking_dir)
        if not results:
            console.print("[dim]No tracked processes[/dim]")
            return
        for result in results:
            state = "[green]killed[/green]" if result.killed else "[dim]not running[/dim]"
            console.print(f"  {result.path.name}: pid {result.pid} {state}")
        console.print(f"[green]✓ Reaped {len(results)} tracking file(s)[/green]")
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.option("--file", "-f", "baseline_file", type=click.Path(exists=True, dir_okay=False),
              help="Baseline manifest (default: the bundled one)")
def baselines(baseline_file: Optional[str]):
    """List the expected file sets per template."""
    try:
        table = Table(title="Template baselines")
        table.add_column("Template", style="cyan")
        table.add_column("Auth option")
        table.add_column("Arguments")
        table.add_column("Files", justify="right")
        for entry in load_baselines(baseline_file):
            table.add_row(entry.template, entry.auth_option or "-", entry.arguments, str(len(entry.files)))
        console.print(table)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("output_dir", type=click.Path(exists=True, file_okay=False))
@click.argument("template")
@click.option("--auth", "-a", "auth_option", default="", help="Auth option key in the manifest")
@click.option("--file", "-f", "baseline_file", type=click.Path(exists=True, dir_okay=False),
              help="Baseline manifest (default: the bundled one)")
@config_option
def verify(output_dir: str, template: str, auth_option: str, baseline_file: Optional[str], config_path: Optional[str]):
    """Compare a generated directory with its baseline."""
    try:
        config = load_config(config_path)
        entry = find_baseline(template, auth_option, load_baselines(baseline_file))
        mismatch = compare_file_set(Path(output_dir), entry.files, IgnoreRules.from_config(config))
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    if not mismatch:
        console.print(f"[green]✓ {output_dir} matches baseline {entry.test_id}[/green]")
        return
    for path in mismatch.missing:
        console.print(f"  [red]missing[/red]    {path}")
    for path in mismatch.unexpected:
        console.print(f"  [yellow]unexpected[/yellow] {path}")
    sys.exit(1)


@cli.command("config")
@config_option
def show_config(config_path: Optional[str]):
    """Print the effective configuration as YAML."""
    try:
        config = load_config(config_path)
        console.print(yaml.dump(config.to_dict(), default_flow_style=False, sort_keys=False), markup=False)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


def main(argv=None):
    """Main entry point."""
    cli(argv)


if __name__ == "__main__":
    main()
