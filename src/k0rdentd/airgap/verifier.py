"""Signature verification of air-gap bundles with cosign."""

import tempfile
from pathlib import Path

import requests

from k0rdentd import commands
from k0rdentd.console import Reporter, highlight
from k0rdentd.exceptions import BinaryNotFoundError, CommandError, DownloadError, SignatureVerificationError

DEFAULT_COSIGN_KEY = "https://get.mirantis.com/cosign.pub"
SIGNATURE_SUFFIX = ".sig"


def is_remote_key(key: str) -> bool:
    return key.startswith(("http://", "https://"))


def signature_path(bundle_path: str | Path) -> Path:
    """Return the detached signature expected next to a bundle."""
    return Path(f"{bundle_path}{SIGNATURE_SUFFIX}")


def download_key(url: str, dest_dir: Path) -> Path:
    """Download a cosign public key into ``dest_dir``.

    Args:
        url: Location of the key.
        dest_dir: Directory receiving ``cosign.pub``.

    Returns:
        Path of the downloaded key.

    Raises:
        DownloadError: If the key cannot be fetched.

    """
    target = dest_dir / "cosign.pub"
    try:
        with requests.get(url, timeout=60, stream=True) as r:
            if r.status_code == 404:
                raise DownloadError(f"cosign key not found at {url}")
            r.raise_for_status()
            with target.open("wb") as f:
                for chunk in r.iter_content(chunk_size=8192):
                    if chunk:
                        f.write(chunk)
    except requests.RequestException as e:
        raise DownloadError(f"Failed to download cosign key from {url}: {e}") from e
    return target


class BundleVerifier:
    """Verifies a bundle against its detached cosign signature."""

    def __init__(self, reporter: Reporter, *, key: str = DEFAULT_COSIGN_KEY) -> None:
        self._reporter = reporter
        self.key = key

    def verify(self, bundle_path: str | Path) -> None:
        """Verify ``bundle_path`` with ``<bundle_path>.sig``.

        A remote key is downloaded to a scratch directory first.

        Args:
            bundle_path: Path to the bundle.

        Raises:
            BinaryNotFoundError: If cosign is not installed.
            SignatureVerificationError: If the signature is missing or invalid.
            DownloadError: If a remote key cannot be fetched.

        """
        cosign = commands.require("cosign")
        signature = signature_path(bundle_path)
        if not signature.is_file():
            raise SignatureVerificationError(f"signature file not found: {signature}")

        self._reporter.action(f"Verifying bundle signature {highlight(signature.name)}")
        with tempfile.TemporaryDirectory(prefix="k0rdentd-cosign-") as tmp:
            key = str(download_key(self.key, Path(tmp))) if is_remote_key(self.key) else self.key
            try:
                commands.run(
                    [cosign, "verify-blob", "--key", key, "--signature", str(signature), str(bundle_path)],
                    "verify bundle signature",
                )
            except (BinaryNotFoundError, CommandError) as e:
                raise SignatureVerificationError(f"cosign verification failed for {signature}: {e}") from e
        self._reporter.success("Bundle signature verified")
