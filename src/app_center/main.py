"""CLI entrypoint for app-center."""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import rich_click as click

from app_center import __version__
from app_center.errors import AppCenterError
from app_center.logging_setup import setup_logging
from app_center.tasks.controllers import (
    AppCenterCliController,
    AppListCommand,
    AppTaskCommand,
    AuditListCommand,
    BundleInstallCommand,
    SettingsSetCommand,
    TaskCommandResult,
    TaskInspectCommand,
    TaskListCommand,
    TaskRetryCommand,
    default_actor,
)

click.rich_click.USE_MARKDOWN = True
APP_CENTER_CONTROLLER = AppCenterCliController()

db_path_option = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)
actor_option = click.option(
    "--actor",
    default=default_actor,
    show_default="$USER or admin",
    help="Name recorded on the task and in the audit log.",
)
no_wait_option = click.option(
    "--no-wait",
    is_flag=True,
    default=False,
    help="Only create the queued task; run it later with `tasks run <id>`.",
)


@click.group()
@click.version_option(version=__version__, prog_name="app-center")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Log level for stderr output.",
)
def app_center(log_level: str) -> None:
    """Managed app center CLI."""

    setup_logging(level=log_level.upper())


@app_center.group()
def apps() -> None:
    """Catalog and app lifecycle commands."""


@apps.command("list")
@db_path_option
def apps_list(db_path: Path | None) -> None:
    """Show every catalog app with its live container status."""

    with _cli_errors():
        _emit_lines(APP_CENTER_CONTROLLER.list_apps(AppListCommand(db_path=db_path)))


@apps.command("bundles")
@db_path_option
def apps_bundles(db_path: Path | None) -> None:
    """Show available bundles and their install order."""

    with _cli_errors():
        _emit_lines(APP_CENTER_CONTROLLER.list_bundles(AppListCommand(db_path=db_path)))


@apps.command("install")
@click.argument("app_id")
@click.option(
    "--skip-if-installed",
    is_flag=True,
    default=False,
    help="Succeed without changes when the container already exists.",
)
@db_path_option
@actor_option
@no_wait_option
def apps_install(
    app_id: str,
    skip_if_installed: bool,
    db_path: Path | None,
    actor: str,
    no_wait: bool,
) -> None:
    """Pull, create and start an app container."""

    _run_app_task(
        AppTaskCommand(
            db_path=db_path,
            app_id=app_id,
            action="install",
            actor=actor,
            options={"skipIfInstalled": skip_if_installed},
            wait=not no_wait,
        ),
    )


def _control_command(action: str, summary: str) -> None:
    @apps.command(action, help=summary)
    @click.argument("app_id")
    @db_path_option
    @actor_option
    @no_wait_option
    def command(app_id: str, db_path: Path | None, actor: str, no_wait: bool) -> None:
        _run_app_task(
            AppTaskCommand(
                db_path=db_path,
                app_id=app_id,
                action=action,
                actor=actor,
                wait=not no_wait,
            ),
        )


_control_command("start", "Start an installed app container.")
_control_command("stop", "Stop a running app container.")
_control_command("restart", "Restart an app container.")


@apps.command("uninstall")
@click.argument("app_id")
@click.option(
    "--remove-data",
    is_flag=True,
    default=False,
    help="Also delete the app data directory. Irreversible.",
)
@db_path_option
@actor_option
@no_wait_option
def apps_uninstall(
    app_id: str,
    remove_data: bool,
    db_path: Path | None,
    actor: str,
    no_wait: bool,
) -> None:
    """Stop and remove an app container."""

    _run_app_task(
        AppTaskCommand(
            db_path=db_path,
            app_id=app_id,
            action="uninstall",
            actor=actor,
            options={"removeData": remove_data},
            wait=not no_wait,
        ),
    )


@apps.command("install-bundle")
@click.argument("bundle_id")
@db_path_option
@actor_option
@no_wait_option
def apps_install_bundle(bundle_id: str, db_path: Path | None, actor: str, no_wait: bool) -> None:
    """Install every app of a bundle, one after another."""

    with _cli_errors():
        result = APP_CENTER_CONTROLLER.install_bundle(
            BundleInstallCommand(
                db_path=db_path,
                bundle_id=bundle_id,
                actor=actor,
                wait=not no_wait,
            ),
        )
    _emit_task_result(result)


@app_center.group()
def tasks() -> None:
    """Task history and retry commands."""


@tasks.command("list")
@db_path_option
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=None,
    help="Maximum tasks to show (defaults to APP_CENTER_TASK_LIST_LIMIT).",
)
def tasks_list(db_path: Path | None, limit: int | None) -> None:
    """List recent tasks, newest first."""

    with _cli_errors():
        _emit_lines(APP_CENTER_CONTROLLER.list_tasks(TaskListCommand(db_path=db_path, limit=limit)))


@tasks.command("show")
@click.argument("task_id", type=int)
@db_path_option
def tasks_show(task_id: int, db_path: Path | None) -> None:
    """Show one task."""

    with _cli_errors():
        _emit_lines(
            APP_CENTER_CONTROLLER.show_task(TaskInspectCommand(db_path=db_path, task_id=task_id)),
        )


@tasks.command("logs")
@click.argument("task_id", type=int)
@db_path_option
def tasks_logs(task_id: int, db_path: Path | None) -> None:
    """Print the captured log of one task."""

    with _cli_errors():
        _emit_lines(
            APP_CENTER_CONTROLLER.task_logs(TaskInspectCommand(db_path=db_path, task_id=task_id)),
        )


@tasks.command("retry")
@click.argument("task_id", type=int)
@db_path_option
@actor_option
@no_wait_option
def tasks_retry(task_id: int, db_path: Path | None, actor: str, no_wait: bool) -> None:
    """Re-run a failed task as a new task."""

    with _cli_errors():
        result = APP_CENTER_CONTROLLER.retry_task(
            TaskRetryCommand(db_path=db_path, task_id=task_id, actor=actor, wait=not no_wait),
        )
    _emit_task_result(result)


@tasks.command("run")
@click.argument("task_id", type=int)
@db_path_option
def tasks_run(task_id: int, db_path: Path | None) -> None:
    """Run a task left queued by --no-wait."""

    with _cli_errors():
        result = APP_CENTER_CONTROLLER.run_task(
            TaskInspectCommand(db_path=db_path, task_id=task_id),
        )
    _emit_task_result(result)


@app_center.group()
def settings() -> None:
    """Integration settings used when installing apps."""


@settings.command("show")
@db_path_option
def settings_show(db_path: Path | None) -> None:
    """Show effective settings (stored values over environment defaults)."""

    with _cli_errors():
        _emit_lines(APP_CENTER_CONTROLLER.show_settings(AppListCommand(db_path=db_path)))


@settings.command("set")
@click.argument("assignments", nargs=-1, required=True)
@db_path_option
def settings_set(assignments: tuple[str, ...], db_path: Path | None) -> None:
    """Store one or more KEY=VALUE settings."""

    with _cli_errors():
        _emit_lines(
            APP_CENTER_CONTROLLER.set_settings(
                SettingsSetCommand(db_path=db_path, assignments=assignments),
            ),
        )


@app_center.command("audit")
@db_path_option
@click.option("--target", default=None, help="Only entries for this app or bundle id.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Maximum entries to show.",
)
def audit(db_path: Path | None, target: str | None, limit: int) -> None:
    """Show recent audit entries."""

    with _cli_errors():
        _emit_lines(
            APP_CENTER_CONTROLLER.list_audit(
                AuditListCommand(db_path=db_path, target=target, limit=limit),
            ),
        )


def _run_app_task(command: AppTaskCommand) -> None:
    with _cli_errors():
        result = APP_CENTER_CONTROLLER.run_app_task(command)
    _emit_task_result(result)


def _emit_task_result(result: TaskCommandResult) -> None:
    _emit_lines(result.lines)
    if result.failed:
        raise click.ClickException("Task failed.")


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except (AppCenterError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    app_center()
