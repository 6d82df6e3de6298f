"""``toolkit`` command line entry point."""

from __future__ import annotations

import logging
import sys
import time
from enum import Enum
from typing import Callable, Optional

import click
import requests
from rich.console import Console

from . import BUILT_DATE, __version__
from .config import RELEASE_NAME, Settings, settings as default_settings
from .errors import ToolkitError
from .k8s_client import K8sClient
from .kubectl import Kubectl
from .orchestrator import ToolkitOrchestrator
from .registry import push_image
from .updates import check_for_updates

logger = logging.getLogger(__name__)
console = Console()


class Command(str, Enum):
    INSTALL = "install"
    UNINSTALL = "uninstall"
    START = "start"
    STOP = "stop"
    STATUS = "status"
    TEST = "test"
    PYTEST = "pytest"
    EXEC = "exec"
    LOGS = "logs"
    GET_PASSWORD = "get-password"
    PUSH = "push"
    HELP = "help"


# commands that only make sense once the toolkit deployment exists
NEEDS_INSTALLED = frozenset(
    {
        Command.START,
        Command.STOP,
        Command.TEST,
        Command.PYTEST,
        Command.EXEC,
        Command.LOGS,
        Command.GET_PASSWORD,
    }
)

DEFAULT_PYTEST_ARGS = ("-m", "not sensitive")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=_resolve_log_level(level),
        format="%(levelname)s: %(message)s",
        stream=sys.stdout,
        force=True,
    )


def _resolve_log_level(raw_level: str) -> int:
    resolved = getattr(logging, raw_level.strip().upper(), None)
    if isinstance(resolved, int):
        return resolved
    return logging.INFO


class ToolkitContext:
    """Per-invocation state shared by the subcommands.

    The cluster connection is made lazily so ``help`` and ``push`` work without one.
    """

    def __init__(
        self,
        cfg: Settings | None = None,
        orchestrator: ToolkitOrchestrator | None = None,
        client_factory: Callable[..., K8sClient] = K8sClient,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = cfg or default_settings
        self.client_factory = client_factory
        self.sleep = sleep
        self._orchestrator = orchestrator

    def orchestrator(self, command: Command) -> ToolkitOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = self._connect()
        if command in NEEDS_INSTALLED:
            self._orchestrator.require_installed()
        return self._orchestrator

    def kubectl(self, namespace: str) -> Kubectl:
        return Kubectl(namespace, self.settings)

    def check_for_updates(self) -> None:
        if self.settings.update_check:
            check_for_updates(__version__, self.settings.version_url)

    def _connect(self) -> ToolkitOrchestrator:
        probe = self.client_factory(cfg=self.settings)
        probe.version()
        logger.info("Cluster API is %s", probe.base_url)

        namespace = self.settings.k8s_namespace or probe.find_platform_namespace()
        logger.info("Platform namespace is %s", namespace)
        return ToolkitOrchestrator(
            probe.with_namespace(namespace), self.settings, sleep=self.sleep, echo=click.echo
        )


class ToolkitGroup(click.Group):
    """Turns toolkit failures, usage errors and unknown commands into exit code 1."""

    def resolve_command(self, ctx, args):
        name = args[0] if args else ""
        if name not in self.commands:
            click.echo(f"Unknown command '{name}'\n")
            click.echo(ctx.get_help())
            ctx.exit(1)
        return super().resolve_command(ctx, args)

    def parse_args(self, ctx, args):
        try:
            return super().parse_args(ctx, args)
        except click.UsageError as e:
            e.exit_code = 1
            raise

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except click.UsageError as e:
            # bad arguments to a subcommand
            e.exit_code = 1
            raise
        except ToolkitError as e:
            logger.error("%s", e)
            ctx.exit(e.exit_code)
        except requests.RequestException as e:
            logger.error("Request to the cluster failed: %s", e)
            ctx.exit(1)


@click.group(cls=ToolkitGroup, invoke_without_command=True)
@click.version_option(version=__version__, prog_name="toolkit")
@click.pass_context
def main(ctx):
    """Domino admin toolkit - install, run and inspect the toolkit in the cluster.

    Run with no command to run the checks against the installed toolkit.
    """
    obj = ctx.ensure_object(ToolkitContext)
    configure_logging(obj.settings.log_level)

    if ctx.invoked_subcommand in (Command.HELP.value, Command.PUSH.value):
        return
    console.print(f"toolkit version: {__version__}, {BUILT_DATE}", highlight=False)
    obj.check_for_updates()

    if ctx.invoked_subcommand is None:
        ctx.invoke(run_tests)


def _passthrough(name: str, help_text: str):
    return main.command(
        name=name,
        help=help_text,
        add_help_option=False,
        context_settings={"ignore_unknown_options": True, "allow_extra_args": True},
    )


# ---------------------------------------------------------------------
# Install / uninstall
# ---------------------------------------------------------------------


@main.command(name=Command.INSTALL.value)
@click.option("--tag", "-t", default=None, help="Run specific docker image tag of the admin toolkit.")
@click.option("--image", default=None, help="Run the admin toolkit from this image repository.")
@click.option("--daemonset", is_flag=True, default=False, help="Enable daemonset functionality.")
@click.option(
    "--daemonset-port", "-d", type=int, default=None,
    help="Set the host port the daemonset listens on. Default is port 5000.",
)
@click.option("--no-ingress", is_flag=True, default=False, help="Disable ingress route to toolkit pod.")
@click.pass_obj
def install(obj: ToolkitContext, tag, image, daemonset, daemonset_port, no_ingress):
    """Install and start the admin toolkit."""
    orch = obj.orchestrator(Command.INSTALL)
    config = orch.deployment_config(
        image=image,
        tag=tag,
        daemonset_mode=True if daemonset else None,
        daemonset_port=daemonset_port,
        ingress_enabled=False if no_ingress else None,
    )
    orch.install(config)
    console.print(f"[green]Admin toolkit is installed and running ({config.image_ref}).[/green]")


@main.command(name=Command.UNINSTALL.value)
@click.pass_obj
def uninstall(obj: ToolkitContext):
    """Uninstall the admin toolkit, deleting all resources."""
    orch = obj.orchestrator(Command.UNINSTALL)
    orch.uninstall(orch.deployment_config())
    console.print("[green]Admin toolkit is uninstalled.[/green]")


# ---------------------------------------------------------------------
# Start / stop / status
# ---------------------------------------------------------------------


@main.command(name=Command.START.value)
@click.pass_obj
def start(obj: ToolkitContext):
    """Starts the admin toolkit if it is stopped."""
    if obj.orchestrator(Command.START).start():
        console.print("Admin toolkit is starting.")


@main.command(name=Command.STOP.value)
@click.pass_obj
def stop(obj: ToolkitContext):
    """Stops the admin toolkit if it is running."""
    if obj.orchestrator(Command.STOP).stop():
        console.print("Admin toolkit is stopping.")


@main.command(name=Command.STATUS.value)
@click.pass_obj
def status(obj: ToolkitContext):
    """Shows whether admin toolkit is installed and running."""
    st = obj.orchestrator(Command.STATUS).status()
    if not st.installed:
        console.print("Admin toolkit is not installed.")
        return
    console.print("Admin toolkit is installed.")
    if st.running:
        console.print("[green]Admin toolkit is running.[/green]")
    else:
        console.print("[yellow]Admin toolkit is not running.[/yellow]")


# ---------------------------------------------------------------------
# Commands run inside the toolkit pod
# ---------------------------------------------------------------------


def _exec_in_toolkit(obj: ToolkitContext, command: Command, argv) -> int:
    orch = obj.orchestrator(command)
    pod_name = orch.require_running()
    return obj.kubectl(orch.namespace).exec(pod_name, RELEASE_NAME, list(argv))


@_passthrough(Command.TEST.value, "Run tests with given options and upload html report to S3.")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def run_tests(ctx, args=()):
    obj: ToolkitContext = ctx.obj
    orch = obj.orchestrator(Command.TEST)
    pod_name = orch.require_running()
    kubectl = obj.kubectl(orch.namespace)

    code = kubectl.exec(pod_name, RELEASE_NAME, ["python", "test_runner.py", *args])
    if args and args[0] == "--local-only":
        kubectl.copy_from_pod(pod_name, "report.html", "./report.html")
    obj.check_for_updates()
    ctx.exit(code)


@_passthrough(Command.PYTEST.value, "Run pytest directly in the toolkit container.")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def run_pytest(ctx, args):
    obj: ToolkitContext = ctx.obj
    click.echo("\nRunning tests:")
    code = _exec_in_toolkit(
        obj, Command.PYTEST, ["pytest", "--compact", "--color=no", *(args or DEFAULT_PYTEST_ARGS)]
    )
    obj.check_for_updates()
    ctx.exit(code)


@_passthrough(
    Command.EXEC.value,
    "Execute a command in the toolkit container (by default /bin/bash), useful for debugging.",
)
@click.argument("command", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def exec_command(ctx, command):
    ctx.exit(_exec_in_toolkit(ctx.obj, Command.EXEC, command or ["/bin/bash"]))


@main.command(name=Command.LOGS.value)
@click.pass_obj
def logs(obj: ToolkitContext):
    """Show toolkit container logs."""
    obj.orchestrator(Command.LOGS).stream_toolkit_logs()


@main.command(name=Command.GET_PASSWORD.value)
@click.pass_obj
def get_password(obj: ToolkitContext):
    """Retrieve the admin toolkit UI username and password."""
    username, password = obj.orchestrator(Command.GET_PASSWORD).get_credentials()
    console.print(
        f"\nThe Admin Toolkit UI username is {username} and password is {password}\n",
        highlight=False,
    )


# ---------------------------------------------------------------------
# No cluster needed
# ---------------------------------------------------------------------


@main.command(name=Command.PUSH.value)
@click.argument("target_image", required=False)
@click.pass_obj
def push(obj: ToolkitContext, target_image: Optional[str]):
    """Copy the toolkit image to TARGET_IMAGE in your own registry."""
    if not target_image:
        raise ToolkitError("target image is missing")
    pushed = push_image(target_image, cfg=obj.settings)
    console.print(f"[green]Pushed {pushed}[/green]")


@main.command(name=Command.HELP.value)
@click.pass_context
def help_command(ctx):
    """Get this help message."""
    click.echo(ctx.parent.get_help())


if __name__ == "__main__":
    main()
