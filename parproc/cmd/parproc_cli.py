import typer
from rich import print
from rich.markup import escape
from pathlib import Path
from dataclasses import replace
from typing import Dict, List, Optional

from parproc.cmd.cli import config_app
from parproc.manager import ProcessManager
from parproc.process import Process, ProcessStartError, ProcessTimeoutError
from parproc.utils.config import get_config, load_config
from parproc.utils.logging import setup_logging, get_logger

log = get_logger("cli")

app = typer.Typer(no_args_is_help=True, help="parproc: run commands in parallel with a concurrency limit")

@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Write logs to file"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file path"),
):
    config = load_config(config_file)

    # Override with CLI args
    level = "DEBUG" if verbose else config.logging.level
    log_path = log_file or (Path(config.logging.file) if config.logging.file else None)
    setup_logging(level=level, log_file=log_path, verbose=verbose or config.logging.verbose)

app.add_typer(config_app, name="config", help="Configuration management")


def _read_command_file(path: Path) -> List[str]:
    """
    Read one command line per line, skipping blanks and '#' comments.
    """
    lines = []
    for raw in path.read_text().splitlines():
        line = raw.strip()
        if line and not line.startswith("#"):
            lines.append(line)
    return lines


def _parse_env(pairs: Optional[List[str]]) -> Dict[str, str]:
    env = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"expected KEY=VALUE, got '{pair}'", param_hint="--env")
        env[key] = value
    return env


def _stop_running(processes: List[Process]) -> None:
    """
    Stop every process that is still alive before the CLI exits early.
    """
    for process in processes:
        if process.is_running():
            log.info(f"Stopping {process.command_line}")
            process.stop()


@app.command("run")
def run(
    commands: Optional[List[str]] = typer.Argument(None, help="Shell command lines to run"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", exists=True, dir_okay=False, help="File with one command per line"),
    parallel: Optional[int] = typer.Option(None, "--parallel", "-p", help="Maximum number of commands running at once"),
    poll_interval: Optional[int] = typer.Option(None, "--poll-interval", help="Milliseconds between completion checks"),
    start_delay: Optional[int] = typer.Option(None, "--start-delay", help="Milliseconds to wait before each start"),
    timeout: Optional[float] = typer.Option(None, "--timeout", "-t", help="Seconds each command may run"),
    env: Optional[List[str]] = typer.Option(None, "--env", "-e", help="KEY=VALUE added to every command's environment"),
):
    """
    Run shell commands in parallel.

    Examples:
        parproc run "make -C a" "make -C b" "make -C c" --parallel 2

        parproc run --file jobs.txt -p 8 --start-delay 200 --timeout 600
    """
    config = get_config()
    scheduler = replace(
        config.scheduler,
        parallelism=parallel if parallel is not None else config.scheduler.parallelism,
        poll_interval=poll_interval if poll_interval is not None else config.scheduler.poll_interval,
        start_delay=start_delay if start_delay is not None else config.scheduler.start_delay,
    )
    timeout = timeout if timeout is not None else config.process.timeout

    command_lines = list(commands or [])
    if file:
        command_lines.extend(_read_command_file(file))

    if not command_lines:
        print("[red]Error: No commands specified[/red]")
        raise typer.Exit(1)

    overrides = _parse_env(env)

    try:
        manager = ProcessManager.from_config(scheduler)
        processes = [
            Process.from_shell_commandline(line, timeout=timeout, stop_grace=config.process.stop_grace)
            for line in command_lines
        ]
    except ValueError as e:
        print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    failed: List[Process] = []
    timed_out: List[str] = []

    def on_start(process: Process) -> None:
        print(f"[cyan]→[/cyan] {escape(process.command_line)}")

    def on_finish(process: Process) -> None:
        if process.is_successful():
            print(f"[green]✓[/green] {escape(process.command_line)}")
        else:
            print(f"[red]✗[/red] {escape(process.command_line)} [dim](exit {process.exit_code})[/dim]")
            failed.append(process)

    manager.set_start_callback(on_start).set_finish_callback(on_finish)
    log.info(f"Running {len(processes)} commands, {scheduler.parallelism} at a time")

    try:
        for process in processes:
            try:
                manager.submit(process, env=overrides)
            except ProcessTimeoutError as e:
                print(f"[red]Timeout:[/red] {escape(str(e))}")
                timed_out.append(e.command_line)

        while True:
            try:
                manager.wait_all()
                break
            except ProcessTimeoutError as e:
                print(f"[red]Timeout:[/red] {escape(str(e))}")
                timed_out.append(e.command_line)
    except ProcessStartError as e:
        print(f"[red]Error:[/red] {escape(str(e))}")
        _stop_running(processes)
        raise typer.Exit(1)
    except KeyboardInterrupt:
        print("[yellow]Interrupted, stopping running commands...[/yellow]")
        _stop_running(processes)
        raise typer.Exit(130)

    succeeded = len(processes) - len(failed)
    print(f"\n[bold]{succeeded}/{len(processes)} commands succeeded[/bold]")
    if timed_out:
        print(f"[yellow]{len(timed_out)} timed out[/yellow]")

    if failed:
        raise typer.Exit(1)


def main():
    app()

if __name__ == "__main__":
    main()
