"""k0s runtime management for k0rdentd.

This module provides the Runtime class wrapping the k0s binary: binary
detection and download, controller installation, and the start, stop,
status and reset lifecycle commands.
"""

import platform
import shutil
from pathlib import Path
from typing import Any

import requests
import yaml

from k0rdentd import commands
from k0rdentd.console import Reporter, highlight
from k0rdentd.exceptions import (
    BinaryNotFoundError,
    ClusterConnectionError,
    CommandError,
    ConfigurationError,
    DownloadError,
    UnsupportedPlatformError,
)
from k0rdentd.models import RuntimeCheck

K0S_INSTALL_URL = "https://get.k0s.sh"
K0S_CONFIG_PATH = Path("/etc/k0s/k0s.yaml")
K0S_SERVICE = "k0scontroller.service"

# Substring of `k0s status` output once the API server answers
_RUNNING_MARKER = "Kube-api probing successful: true"


def cpu_arch() -> str:
    """Detect the CPU architecture in k0s naming.

    Returns:
        The architecture ('amd64', 'arm64' or 'arm').

    Raises:
        UnsupportedPlatformError: If the CPU architecture is not supported.

    """
    match platform.machine():
        case "x86_64" | "amd64":
            return "amd64"
        case "aarch64" | "arm64":
            return "arm64"
        case "armv7l" | "armhf":
            return "arm"
        case _:
            raise UnsupportedPlatformError(f"Unsupported CPU architecture: {platform.machine()}")


class Runtime:
    """Manages the k0s binary and the k0s controller service.

    Attributes:
        binary: Name or path of the k0s binary.
        config_path: Location of the generated k0s cluster config.

    """

    def __init__(self, reporter: Reporter, *, binary: str = "k0s", config_path: Path = K0S_CONFIG_PATH) -> None:
        self._reporter = reporter
        self.binary = binary
        self.config_path = config_path

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return f"Runtime(binary={self.binary!r}, config_path={self.config_path!r})"

    def _run(self, args: list[str], description: str, *, stdin: str | None = None) -> str:
        return commands.run(args, description, stdin=stdin)

    def check(self) -> RuntimeCheck:
        """Report whether the k0s binary is available and its version."""
        if shutil.which(self.binary) is None:
            return RuntimeCheck(installed=False, version="")
        try:
            version = self._run([self.binary, "version"], "get k0s version").strip()
        except (BinaryNotFoundError, CommandError) as e:
            self._reporter.debug(f"k0s version failed: {e}")
            return RuntimeCheck(installed=False, version="")
        return RuntimeCheck(installed=True, version=version)

    def _download_install_script(self) -> str:
        """Fetch the k0s install script.

        Raises:
            DownloadError: If the script cannot be fetched.

        """
        chunks: list[bytes] = []
        try:
            with requests.get(K0S_INSTALL_URL, timeout=60, stream=True) as r:
                r.raise_for_status()
                total_size = int(r.headers.get("content-length", 0))
                with self._reporter.download_progress() as progress:
                    task = progress.add_task("k0s install script", total=total_size or None)
                    for chunk in r.iter_content(chunk_size=8192):
                        if chunk:
                            chunks.append(chunk)
                            progress.update(task, advance=len(chunk))
        except requests.RequestException as e:
            raise DownloadError(f"Failed to download {K0S_INSTALL_URL}: {e}") from e
        return b"".join(chunks).decode()

    def install_binary(self, version: str = "") -> None:
        """Download and install the k0s binary with the official install script.

        Args:
            version: k0s version to pin, latest stable when empty.

        Raises:
            UnsupportedPlatformError: If the CPU architecture is not supported.
            DownloadError: If the install script cannot be fetched.
            CommandError: If the install script fails.

        """
        arch = cpu_arch()
        self._reporter.action(f"Installing k0s binary for {highlight(arch)}")
        script = self._download_install_script()
        command = ["sudo", f"K0S_ARCH={arch}"]
        if version:
            command.append(f"K0S_VERSION={version}")
        command.append("sh")
        self._run(command, "install k0s binary", stdin=script)
        self._reporter.success("k0s binary installed")

    def is_installed(self) -> bool:
        """Whether the k0s controller service is installed (enabled in systemd)."""
        try:
            self._run(["systemctl", "is-enabled", K0S_SERVICE], "query k0s service")
        except (BinaryNotFoundError, CommandError):
            return False
        return True

    def is_running(self) -> bool:
        """Whether k0s is running and its API server answers."""
        try:
            output = self._run([self.binary, "status"], "get k0s status")
        except (BinaryNotFoundError, CommandError):
            return False
        return _RUNNING_MARKER in output

    def install_controller(self) -> None:
        """Install k0s as a single-node controller that also runs workloads."""
        self._run(
            [
                self.binary,
                "install",
                "controller",
                "--enable-worker",
                "--no-taints",
                "--config",
                str(self.config_path),
            ],
            "install k0s controller",
        )

    def start(self) -> None:
        self._run([self.binary, "start"], "start k0s")

    def stop(self) -> None:
        self._run([self.binary, "stop"], "stop k0s")

    def reset(self) -> None:
        self._run([self.binary, "reset"], "reset k0s")

    def admin_kubeconfig(self) -> dict[str, Any]:
        """Return the admin kubeconfig generated by k0s.

        Raises:
            ClusterConnectionError: If the output is not a kubeconfig document.

        """
        output = self._run([self.binary, "kubeconfig", "admin"], "get admin kubeconfig")
        try:
            kubeconfig = yaml.safe_load(output)
        except yaml.YAMLError as e:
            raise ClusterConnectionError(f"Invalid kubeconfig from k0s: {e}") from e
        if not isinstance(kubeconfig, dict):
            raise ClusterConnectionError("k0s returned an empty kubeconfig")
        return kubeconfig

    def uninstall(self, *, remove: list[Path]) -> None:
        """Stop and reset k0s, then remove the given config files.

        Args:
            remove: Files to delete once k0s has been reset.

        Raises:
            CommandError: If stopping or resetting k0s fails.

        """
        if self.is_running():
            self._reporter.action("Stopping k0s")
            self.stop()
        self._reporter.action("Resetting k0s")
        self.reset()
        for path in remove:
            if not path.exists():
                continue
            try:
                path.unlink()
            except OSError as e:
                raise ConfigurationError(f"Failed to remove {path}: {e.strerror}") from e
            self._reporter.step(f"Removed {path}")
        self._reporter.success("k0s uninstalled")
