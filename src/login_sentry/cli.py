"""CLI commands for login-sentry."""

from pathlib import Path

import click

config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: /etc/login-sentry/config.toml)",
)


@click.group()
@click.version_option(package_name="login-sentry")
def main() -> None:
    """Photograph whoever fails to log in."""
    pass


def _load_config(config_path: Path | None):
    """Load config, exiting with status 1 on an invalid file."""
    from login_sentry.config import Config
    from login_sentry.errors import LoginSentryError

    try:
        return Config.load(config_path)
    except LoginSentryError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)


def _read_only_store(config):
    """Artifact store for listing; it never changes ownership."""
    from login_sentry.artifacts import ArtifactStore

    return ArtifactStore(
        config.capture_dir,
        prefix=config.capture.prefix,
        extension=config.capture.extension,
    )


@main.command()
@config_option
@click.option("--no-log-file", is_flag=True, help="Log to the console only")
def daemon(config_path: Path | None, no_log_file: bool) -> None:
    """Follow the system log and capture on failed logins.

    Exits non-zero on fatal errors (log stream closed, capture directory
    unusable) so the service manager restarts it.
    """
    import asyncio

    from login_sentry.daemon import run_daemon
    from login_sentry.errors import LoginSentryError

    config = _load_config(config_path)
    try:
        asyncio.run(run_daemon(config, log_file=not no_log_file))
    except LoginSentryError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)


@main.command()
@config_option
def status(config_path: Path | None) -> None:
    """Quick health check."""
    import time

    from login_sentry.daemon import running_daemon_pid
    from login_sentry.logging import Icon, info, warn

    config = _load_config(config_path)

    pid = running_daemon_pid(config.pid_path)
    if pid is not None:
        info(f"Daemon: running [dim](PID {pid})[/]", Icon.RUNNING)
    else:
        info("Daemon: stopped", Icon.STOPPED)

    info(f"Trigger: [cyan]{config.trigger.pattern!r}[/]")
    info(
        f"Debounce: [cyan]{config.trigger.debounce_seconds}s[/], "
        f"capture timeout [cyan]{config.capture.timeout}s[/]"
    )
    info(f"Directory: [cyan]{config.capture_dir}[/]")

    store = _read_only_store(config)
    if not config.capture_dir.exists():
        warn("Capture directory does not exist yet")
        return
    try:
        artifacts = store.list_artifacts()
    except OSError as e:
        warn(f"Cannot read capture directory: {e}")
        return

    if not artifacts:
        info("No captures yet.")
        return

    latest = artifacts[0]
    age = time.time() - latest.mtime
    info(
        f"Captures: [cyan]{len(artifacts)}[/], latest {latest.name} [dim]({age:.0f}s ago)[/]",
        Icon.CAPTURE,
    )


@main.command()
@click.option("--limit", "-n", default=20, help="Number of captures to show")
@config_option
def captures(limit: int, config_path: Path | None) -> None:
    """List captured photos, newest first."""
    from datetime import datetime

    config = _load_config(config_path)
    store = _read_only_store(config)

    try:
        artifacts = store.list_artifacts()
    except OSError as e:
        click.echo(f"Error: cannot read {config.capture_dir}: {e}", err=True)
        raise SystemExit(1)

    if not artifacts:
        click.echo("No captures recorded.")
        return

    click.echo(f"{'Captured':19}  {'Mode':>5}  {'UID':>6}  {'GID':>6}  File")
    click.echo("-" * 75)
    for artifact in artifacts[:limit]:
        captured = datetime.fromtimestamp(artifact.mtime).strftime("%Y-%m-%d %H:%M:%S")
        click.echo(
            f"{captured:19}  {artifact.mode:>5o}  {artifact.uid:>6}  {artifact.gid:>6}  "
            f"{artifact.name}"
        )


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
@config_option
def config_show(config_path: Path | None) -> None:
    """Display current configuration."""
    cfg = _load_config(config_path)
    path = config_path or cfg.config_path

    click.echo(f"Config file: {path}")
    click.echo(f"Exists: {path.exists()}")
    click.echo()
    click.echo("[capture]")
    click.echo(f"  owner = {cfg.capture.owner}")
    click.echo(f"  group = {cfg.capture.group}")
    click.echo(f"  device = {cfg.capture.device}")
    click.echo(f"  directory = {cfg.capture.directory}")
    click.echo(f"  timeout = {cfg.capture.timeout}")
    click.echo(f"  command = {' '.join(cfg.capture.command)}")
    click.echo()
    click.echo("[trigger]")
    click.echo(f"  pattern = {cfg.trigger.pattern!r}")
    click.echo(f"  debounce_seconds = {cfg.trigger.debounce_seconds}")
    click.echo()
    click.echo("[stream]")
    click.echo(f"  command = {' '.join(cfg.stream.command)}")


@config.command("edit")
@config_option
def config_edit(config_path: Path | None) -> None:
    """Open config file in editor."""
    import os
    import subprocess

    from login_sentry.config import Config

    # Not loaded: a file that fails validation still opens
    cfg = Config()
    path = config_path or cfg.config_path

    # Create config if it doesn't exist
    if not path.exists():
        cfg.save(path)
        click.echo(f"Created default config at {path}")

    editor = os.environ.get("EDITOR", "nano")
    subprocess.run([editor, str(path)])


@config.command("reset")
@config_option
@click.confirmation_option(prompt="Reset config to defaults?")
def config_reset(config_path: Path | None) -> None:
    """Reset configuration to defaults."""
    from login_sentry.config import Config

    cfg = Config()
    path = config_path or cfg.config_path
    cfg.save(path)
    click.echo(f"Config reset to defaults at {path}")


if __name__ == "__main__":
    main()
