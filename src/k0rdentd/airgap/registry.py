"""The local OCI registry serving an air-gap bundle.

The registry itself is the CNCF distribution ``registry`` binary, run as
a child process with filesystem storage. The daemon verifies the bundle,
starts the registry, pushes every bundle image into it and then keeps it
serving until it is told to stop.
"""

import shutil
import socket
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Any

import yaml
from icecream import ic

from k0rdentd.airgap import assets
from k0rdentd.airgap.bundle import find_image_archives, opened_bundle
from k0rdentd.airgap.pusher import ImagePusher, PushFunc, skopeo_push
from k0rdentd.airgap.verifier import DEFAULT_COSIGN_KEY, BundleVerifier
from k0rdentd.build import is_airgap
from k0rdentd.config import DEFAULT_PUSH_WORKERS
from k0rdentd.console import Reporter, highlight
from k0rdentd.exceptions import BinaryNotFoundError, RegistryError, WaitCancelledError
from k0rdentd.waiter import Waiter

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 5000
DEFAULT_STORAGE_DIR = Path("/var/lib/k0rdentd/registry")
REGISTRY_BINARY = "registry"
REGISTRY_DESTINATION = Path("/usr/local/bin/registry")

STARTUP_TIMEOUT = 30.0
SHUTDOWN_TIMEOUT = 30.0
_SERVE_POLL_INTERVAL = 0.5
_LOG_TAIL_LINES = 20


def format_bytes(size: int) -> str:
    """Format a byte count with binary units, e.g. ``1.5 GiB``."""
    unit = 1024
    if size < unit:
        return f"{size} B"
    div, exp = unit, 0
    n = size // unit
    while n >= unit:
        div *= unit
        exp += 1
        n //= unit
    return f"{size / div:.1f} {'KMGTPE'[exp]}iB"


def registry_config(storage_dir: Path, address: str) -> dict[str, Any]:
    """Return the distribution registry configuration document."""
    return {
        "version": "0.1",
        "log": {"level": "info", "formatter": "text"},
        "storage": {
            "filesystem": {"rootdirectory": str(storage_dir)},
            "delete": {"enabled": False},
        },
        "http": {"addr": address},
    }


class RegistryDaemon:
    """Serves a bundle's images from a disk-backed local registry.

    Attributes:
        bundle_path: Bundle tarball or directory to serve.
        host: Bind address.
        port: Bind port.
        storage_dir: Durable registry storage.
        verify: Whether the bundle signature is verified first.
        push_workers: Number of concurrent image pushes.

    """

    def __init__(
        self,
        reporter: Reporter,
        *,
        bundle_path: str | Path,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        storage_dir: Path = DEFAULT_STORAGE_DIR,
        verify: bool = True,
        cosign_key: str = DEFAULT_COSIGN_KEY,
        push_workers: int = DEFAULT_PUSH_WORKERS,
        push: PushFunc = skopeo_push,
        waiter: Waiter | None = None,
    ) -> None:
        self._reporter = reporter
        self.bundle_path = Path(bundle_path)
        self.host = host
        self.port = port
        self.storage_dir = storage_dir
        self.verify = verify
        self.push_workers = push_workers
        self._verifier = BundleVerifier(reporter, key=cosign_key)
        self._push = push
        self._waiter = waiter if waiter is not None else Waiter(reporter, poll_interval=0.2)
        self._process: subprocess.Popen[bytes] | None = None
        self._log_path: Path | None = None

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return f"RegistryDaemon(address={self.address!r}, storage_dir={self.storage_dir!r})"

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def push_address(self) -> str:
        """Address images are pushed to from this host."""
        return f"localhost:{self.port}"

    def is_port_in_use(self) -> bool:
        """Whether another process is already bound to the registry port."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind((self.host, self.port))
            except OSError:
                return True
        return False

    def storage_size(self) -> int:
        """Total size in bytes of the files in the storage directory."""
        return sum(path.stat().st_size for path in self.storage_dir.rglob("*") if path.is_file())

    def _registry_binary(self) -> str:
        if is_airgap() and assets.find_asset(assets.REGISTRY_ASSET) is not None:
            return str(assets.extract_binary(assets.REGISTRY_ASSET, REGISTRY_DESTINATION))
        path = shutil.which(REGISTRY_BINARY)
        if path is None:
            raise BinaryNotFoundError(f"{REGISTRY_BINARY} not found; please install it and ensure it's on PATH")
        return path

    def _log_tail(self) -> str:
        if self._log_path is None or not self._log_path.exists():
            return ""
        lines = self._log_path.read_text(errors="replace").splitlines()
        return "\n".join(lines[-_LOG_TAIL_LINES:])

    def _accepts_connections(self) -> bool:
        if self._process is not None and self._process.poll() is not None:
            return True
        with socket.create_connection(("127.0.0.1", self.port), timeout=1):
            return True

    def _start_server(self, workdir: Path, cancel: threading.Event) -> None:
        """Start the registry process and wait until it listens.

        Raises:
            RegistryError: If the registry exits during startup.

        """
        binary = self._registry_binary()
        config_path = workdir / "config.yml"
        config_path.write_text(yaml.safe_dump(registry_config(self.storage_dir, self.address), sort_keys=False))
        self._log_path = workdir / "registry.log"

        command = [binary, "serve", str(config_path)]
        ic(command)
        with self._log_path.open("wb") as log:
            try:
                self._process = subprocess.Popen(command, stdout=log, stderr=subprocess.STDOUT)
            except OSError as e:
                raise RegistryError(f"Failed to start registry: {e}") from e

        self._waiter.wait_until(f"registry on {self.address}", self._accepts_connections, STARTUP_TIMEOUT, cancel=cancel)
        if self._process.poll() is not None:
            raise RegistryError(
                f"registry exited during startup with code {self._process.returncode}: {self._log_tail()}"
            )
        self._reporter.success(f"Registry listening on {highlight(self.address)}")

    def _stop_server(self) -> None:
        """Terminate the registry, waiting at most SHUTDOWN_TIMEOUT.

        Raises:
            RegistryError: If the registry does not exit in time.

        """
        process = self._process
        if process is None or process.poll() is not None:
            return
        self._reporter.action("Shutting down registry server")
        process.terminate()
        try:
            process.wait(timeout=SHUTDOWN_TIMEOUT)
        except subprocess.TimeoutExpired as e:
            process.kill()
            process.wait()
            raise RegistryError(f"registry shutdown did not complete within {SHUTDOWN_TIMEOUT:g}s") from e
        self._reporter.success("Registry server stopped gracefully")

    def _push_bundle(self) -> None:
        pusher = ImagePusher(self._reporter, self.push_address, max_workers=self.push_workers, push=self._push)
        with opened_bundle(self.bundle_path) as root:
            archives = find_image_archives(root)
            pusher.push_all(archives, root)

    def _serve(self, stop: threading.Event) -> None:
        """Block until ``stop`` is set or the registry dies."""
        while not stop.wait(_SERVE_POLL_INTERVAL):
            if self._process is not None and self._process.poll() is not None:
                raise RegistryError(
                    f"registry exited unexpectedly with code {self._process.returncode}: {self._log_tail()}"
                )

    def run(self, stop: threading.Event) -> None:
        """Prepare, start and serve the registry until ``stop`` is set.

        Order: extract skopeo (air-gapped builds), verify the bundle signature
        (if enabled), create the storage directory, start the registry, push
        the bundle images, then serve.

        Args:
            stop: Set by the caller (e.g. on SIGTERM) to shut the registry down.

        Raises:
            AssetError: If the embedded skopeo cannot be extracted.
            SignatureVerificationError: If the bundle does not verify.
            RegistryError: If the registry fails to start, dies, or does not stop in time.
            ImagePushError: If any bundle image could not be pushed.

        """
        self._reporter.action("Starting k0rdentd registry daemon")
        if is_airgap():
            assets.extract_binary(assets.SKOPEO_ASSET, assets.SKOPEO_DESTINATION)
            self._reporter.success(f"skopeo extracted to {assets.SKOPEO_DESTINATION}")

        if self.verify:
            self._verifier.verify(self.bundle_path)

        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise RegistryError(f"Failed to create storage dir {self.storage_dir}: {e.strerror}") from e
        self._reporter.info(f"Registry storage: {highlight(str(self.storage_dir))}")

        with tempfile.TemporaryDirectory(prefix="k0rdentd-registry-") as tmp:
            try:
                try:
                    self._start_server(Path(tmp), stop)
                except WaitCancelledError:
                    self._reporter.info("Shutdown requested during startup, stopping registry")
                    return
                self._reporter.action("Pushing images from bundle to local registry")
                self._push_bundle()
                self._reporter.info(f"Registry storage size: {format_bytes(self.storage_size())}")
                self._reporter.info("Registry is serving; press Ctrl+C to stop")
                self._serve(stop)
            finally:
                self._stop_server()
