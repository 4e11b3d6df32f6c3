#!/usr/bin/env python
"""Command-line interface for k0rdentd.

This module provides the ``k0rdentd`` command group. Commands only parse
options, build the components of a run around one Reporter and turn
k0rdentd errors into a message and a non-zero exit status.
"""

import functools
import signal
import sys
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click
import questionary
from click.core import ParameterSource
from icecream import ic

from k0rdentd import __version__
from k0rdentd.airgap.exporter import DEFAULT_BUNDLE_PATH, DEFAULT_OUTPUT_DIR, WorkerExporter
from k0rdentd.airgap.registry import DEFAULT_HOST, DEFAULT_PORT, DEFAULT_STORAGE_DIR, RegistryDaemon
from k0rdentd.airgap.verifier import DEFAULT_COSIGN_KEY
from k0rdentd.build import get_metadata, is_airgap
from k0rdentd.cluster import Cluster
from k0rdentd.config import (
    DEFAULT_CONFIG_PATH,
    DEFAULT_PUSH_WORKERS,
    InstallationConfig,
    default_config,
    dump_config,
    load_config_with_fallback,
    validate_config,
    with_overrides,
    write_config_file,
)
from k0rdentd.console import Reporter, console, error, highlight
from k0rdentd.exceptions import AssetError, ConfigurationError, K0rdentdError, RegistryError
from k0rdentd.installer import Installer
from k0rdentd.models import Flavor, Outcome, PhaseResult
from k0rdentd.runtime import K0S_CONFIG_PATH, Runtime
from k0rdentd.styles import PROMPT_STYLE, QMARK
from k0rdentd.ui import DEFAULT_TIMEOUT, UIExposer


@dataclass(slots=True)
class CliState:
    """Options of the command group shared by every command.

    Attributes:
        config_file: Path of the configuration file.
        explicit_config: Whether the path was given by the operator.
        dry_run: Only describe what would be done.
        reporter: Output channel of this run.

    """

    config_file: str
    explicit_config: bool
    dry_run: bool
    reporter: Reporter

    def load_config(self) -> InstallationConfig:
        return load_config_with_fallback(self.config_file, DEFAULT_CONFIG_PATH, explicit=self.explicit_config)


pass_state = click.make_pass_decorator(CliState)


def handle_errors(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Report a K0rdentdError raised by a command and exit with status 1."""

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except K0rdentdError as e:
            error(str(e))
            sys.exit(1)

    return wrapper


def _summary(reporter: Reporter, results: list[PhaseResult]) -> None:
    items = {}
    for result in results:
        detail = f" ({result.message})" if result.message else ""
        items[result.phase] = f"{result.outcome.value}{detail}"
    warned = any(result.outcome is Outcome.WARNING for result in results)
    reporter.newline()
    reporter.summary_panel(
        "Installation completed with warnings" if warned else "Installation completed",
        items,
        border_style="yellow" if warned else "green",
    )


@click.group(help="Install k0s and k0rdent on this host, online or air-gapped")
@click.option(
    "--config-file",
    "-c",
    default=str(DEFAULT_CONFIG_PATH),
    envvar="K0RDENTD_CONFIG_FILE",
    show_default=True,
    help="path to the k0rdentd configuration file",
)
@click.option("--debug", "-d", is_flag=True, help="print debug information")
@click.option("--dry-run", "-n", is_flag=True, help="show what would be done without doing it")
@click.pass_context
def cli(ctx: click.Context, config_file: str, debug: bool, dry_run: bool) -> None:
    """Set up the state shared by all commands.

    Args:
        ctx: The click context.
        config_file: Path of the configuration file.
        debug: Enable debug output.
        dry_run: Only describe what would be done.

    """
    if not debug:
        ic.disable()

    explicit = ctx.get_parameter_source("config_file") is not ParameterSource.DEFAULT
    ctx.obj = CliState(
        config_file=config_file,
        explicit_config=explicit,
        dry_run=dry_run,
        reporter=Reporter(console, debug=debug),
    )


@cli.command(help="Install k0s and k0rdent")
@click.option("--k0s-version", "-k", help="override the k0s version from the config")
@click.option("--k0rdent-version", "-r", help="override the k0rdent version from the config")
@click.option("--bundle-path", help="air-gap bundle to read the k0rdent version from")
@click.option("--push-workers", type=click.IntRange(min=1), help="concurrent image pushes for air-gap bundles")
@pass_state
@handle_errors
def install(
    state: CliState,
    k0s_version: str | None,
    k0rdent_version: str | None,
    bundle_path: str | None,
    push_workers: int | None,
) -> None:
    """Install k0s and k0rdent and expose the k0rdent UI.

    Args:
        state: Shared CLI state.
        k0s_version: k0s version override.
        k0rdent_version: k0rdent version override.
        bundle_path: Air-gap bundle override.
        push_workers: Push concurrency override.

    Raises:
        ConfigurationError: If the configuration has problems.

    """
    reporter = state.reporter
    cfg = with_overrides(
        state.load_config(),
        k0s_version=k0s_version,
        k0rdent_version=k0rdent_version,
        bundle_path=bundle_path,
        push_workers=push_workers,
    )
    problems = validate_config(cfg)
    if problems:
        raise ConfigurationError("Invalid configuration:\n  " + "\n  ".join(problems))

    flavor = get_metadata().flavor
    runtime = Runtime(reporter)
    if flavor is Flavor.ONLINE and not state.dry_run:
        check = runtime.check()
        if check.installed:
            reporter.success(f"k0s is installed: {highlight(check.version)}")
        else:
            runtime.install_binary(cfg.k0s.version)

    installer = Installer(cfg, reporter, runtime=runtime, flavor=flavor, dry_run=state.dry_run)
    results = installer.install()
    if state.dry_run:
        return

    if installer.cluster is not None:
        try:
            UIExposer(installer.cluster, reporter).expose()
        except K0rdentdError as e:
            reporter.warning(f"Failed to expose the k0rdent UI: {e}")

    _summary(reporter, results)


@cli.command(help="Uninstall k0s and k0rdent")
@click.option("--force", "-f", is_flag=True, help="do not ask for confirmation")
@pass_state
@handle_errors
def uninstall(state: CliState, force: bool) -> None:
    """Reset k0s and remove the configuration files.

    Args:
        state: Shared CLI state.
        force: Skip the confirmation prompt.

    Raises:
        click.Abort: If the operator declines.

    """
    reporter = state.reporter
    if state.dry_run:
        reporter.info("Dry run mode - showing what would be done:")
        reporter.step("1. Execute: k0s stop (if running)")
        reporter.step("2. Execute: k0s reset")
        reporter.step(f"3. Remove {K0S_CONFIG_PATH} and {DEFAULT_CONFIG_PATH}")
        return

    if not force:
        confirmed = questionary.confirm(
            "This removes k0s, k0rdent and all cluster data. Continue?",
            default=False,
            style=PROMPT_STYLE,
            qmark=QMARK,
        ).ask()
        if not confirmed:
            raise click.Abort()

    Runtime(reporter).uninstall(remove=[K0S_CONFIG_PATH, DEFAULT_CONFIG_PATH])
    reporter.success("k0s and k0rdent uninstalled")


@cli.command(help="Run the OCI registry serving an air-gap bundle")
@click.option("--port", "-p", default=DEFAULT_PORT, envvar="K0RDENTD_REGISTRY_PORT", show_default=True)
@click.option("--host", "-H", default=DEFAULT_HOST, envvar="K0RDENTD_REGISTRY_HOST", show_default=True)
@click.option(
    "--storage",
    "-s",
    default=str(DEFAULT_STORAGE_DIR),
    envvar="K0RDENTD_REGISTRY_STORAGE",
    show_default=True,
    help="registry storage directory",
)
@click.option(
    "--bundle-path",
    "-b",
    required=True,
    envvar="K0RDENTD_AIRGAP_BUNDLE_PATH",
    help="k0rdent air-gap bundle (tar.gz or extracted directory)",
)
@click.option(
    "--verify/--no-verify",
    default=True,
    envvar="K0RDENTD_VERIFY_SIGNATURE",
    show_default=True,
    help="verify the bundle signature with cosign",
)
@click.option("--cosign-key", default=DEFAULT_COSIGN_KEY, envvar="K0RDENTD_COSIGN_KEY", help="cosign key URL or path")
@click.option("--push-workers", default=DEFAULT_PUSH_WORKERS, type=click.IntRange(min=1), show_default=True)
@pass_state
@handle_errors
def registry(
    state: CliState,
    port: int,
    host: str,
    storage: str,
    bundle_path: str,
    verify: bool,
    cosign_key: str,
    push_workers: int,
) -> None:
    """Serve the bundle images until interrupted.

    Raises:
        RegistryError: If the port is already in use.

    """
    reporter = state.reporter
    daemon = RegistryDaemon(
        reporter,
        bundle_path=bundle_path,
        host=host,
        port=port,
        storage_dir=Path(storage),
        verify=verify,
        cosign_key=cosign_key,
        push_workers=push_workers,
    )
    ic(daemon)
    if state.dry_run:
        reporter.info("Dry run mode - showing what would be done:")
        reporter.step(f"1. Verify signature of {bundle_path}" if verify else "1. Skip signature verification")
        reporter.step(f"2. Start registry on {daemon.address} with storage {storage}")
        reporter.step(f"3. Push bundle images with {push_workers} workers")
        return

    if daemon.is_port_in_use():
        raise RegistryError(f"port {port} is already in use, is another registry running?")

    stop = threading.Event()

    def _shutdown(signum: int, _frame: object) -> None:
        reporter.info(f"Received {signal.Signals(signum).name}, shutting down")
        stop.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
    daemon.run(stop)


@cli.command(help="Show version information")
def version() -> None:
    metadata = get_metadata()
    click.echo(f"k0rdentd version {__version__} ({metadata.flavor.value})")
    if metadata.is_airgap:
        click.echo(f"  k0s version: {metadata.k0s_version}")
        click.echo(f"  k0rdent version: {metadata.k0rdent_version}")
        click.echo(f"  build time: {metadata.build_time}")


@cli.command("show-flavor", help="Show the build flavor (online or airgap)")
def show_flavor() -> None:
    metadata = get_metadata()
    click.echo(f"Build Flavor: {metadata.flavor.value}")
    click.echo(f"Version: {metadata.version}")
    if metadata.is_airgap:
        click.echo(f"K0s Version: {metadata.k0s_version}")
        click.echo(f"K0rdent Version: {metadata.k0rdent_version}")
    click.echo(f"Build Time: {metadata.build_time}")


@cli.group(help="Manage the configuration")
def config() -> None:
    pass


@config.command(help="Validate the configuration file")
@pass_state
@handle_errors
def validate(state: CliState) -> None:
    cfg = state.load_config()
    problems = validate_config(cfg)
    if problems:
        for problem in problems:
            state.reporter.error(problem)
        sys.exit(1)
    state.reporter.success("Configuration is valid")


@config.command(help="Show the effective configuration")
@pass_state
@handle_errors
def show(state: CliState) -> None:
    click.echo(dump_config(state.load_config()), nl=False)


@config.command(help="Create a default configuration file")
@click.option("--output", "-o", default=str(DEFAULT_CONFIG_PATH), show_default=True, help="output file path")
@pass_state
@handle_errors
def init(state: CliState, output: str) -> None:
    if state.dry_run:
        state.reporter.info(f"Dry run mode - would write the default configuration to {output}")
        return
    write_config_file(output, dump_config(default_config()))
    state.reporter.success(f"Default configuration written to {highlight(output)}")


@cli.command("expose-ui", help="Expose the k0rdent UI via ingress and NodePort")
@click.option(
    "--timeout",
    "-t",
    default=DEFAULT_TIMEOUT,
    type=click.FloatRange(min=1),
    show_default=True,
    help="seconds to wait for the UI deployment",
)
@pass_state
@handle_errors
def expose_ui(state: CliState, timeout: float) -> None:
    reporter = state.reporter
    cluster = Cluster.from_kubeconfig(Runtime(reporter).admin_kubeconfig(), reporter)
    UIExposer(cluster, reporter, timeout=timeout).expose()


@cli.command("export-worker-artifacts", help="Export worker artifacts for multi-node air-gapped installations")
@click.option(
    "--output",
    "-o",
    default=str(DEFAULT_OUTPUT_DIR),
    envvar="K0RDENTD_WORKER_BUNDLE_DIR",
    show_default=True,
    help="output directory for worker artifacts",
)
@click.option(
    "--bundle-path",
    "-b",
    default=str(DEFAULT_BUNDLE_PATH),
    envvar="K0RDENTD_AIRGAP_BUNDLE_PATH",
    show_default=True,
    help="k0rdent air-gap bundle referenced by the artifacts",
)
@pass_state
@handle_errors
def export_worker_artifacts(state: CliState, output: str, bundle_path: str) -> None:
    """Write the k0s binary, install script and bundle reference for worker nodes.

    Raises:
        AssetError: On an online build.

    """
    if not is_airgap():
        raise AssetError("export-worker-artifacts is only available in airgap builds")
    WorkerExporter(state.reporter, bundle_path=bundle_path).export(Path(output))


if __name__ == "__main__":
    cli()
