"""
Configuration management commands for the parproc CLI.

Commands:
- show: Display current configuration with all settings
- init: Create a default configuration file
- path: Show the path to the configuration file
"""

import yaml
import typer
from rich import print
from parproc.utils import config as config_module

config_app = typer.Typer(no_args_is_help=True)

@config_app.command("show")
def config_show() -> None:
    """
    Show current configuration.

    Prints the effective settings (defaults, config file and PARPROC_*
    environment overrides combined) as YAML.
    """
    cfg = config_module.get_config()
    print("[cyan]Current configuration:[/cyan]\n")
    print(yaml.dump(cfg.to_dict(), default_flow_style=False, sort_keys=False))

@config_app.command("init")
def config_init(force: bool = typer.Option(False, "--force", "-f", help="Overwrite existing config")) -> None:
    """
    Create default config file.

    Refuses to overwrite an existing file unless --force is given.
    """
    path = config_module.CONFIG_FILE
    if path.exists() and not force:
        print(f"[yellow]Config already exists:[/yellow] {path}")
        print("Use --force to overwrite")
        return

    config_module.get_config().save(path)
    print(f"[green]✓ Config created:[/green] {path}")

@config_app.command("path")
def config_path() -> None:
    """
    Show config file path.
    """
    print(config_module.CONFIG_FILE)
