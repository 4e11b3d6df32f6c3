"""Binaries embedded in air-gapped builds.

Air-gapped wheels carry one binary per directory under
``k0rdentd/assets/<name>/`` (for example ``assets/k0s/k0s-v1.32.8+k0s.0``).
Online builds ship no assets.
"""

import shutil
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path

from k0rdentd.build import is_airgap
from k0rdentd.exceptions import AssetError

K0S_ASSET = "k0s"
SKOPEO_ASSET = "skopeo"
REGISTRY_ASSET = "registry"

K0S_DESTINATION = Path("/usr/local/bin/k0s")
SKOPEO_DESTINATION = Path("/usr/bin/skopeo")


def _assets_root() -> Traversable:
    return resources.files("k0rdentd").joinpath("assets")


def find_asset(name: str) -> Traversable | None:
    """Return the embedded binary of an asset directory, if there is one."""
    directory = _assets_root().joinpath(name)
    if not directory.is_dir():
        return None
    for entry in sorted(directory.iterdir(), key=lambda e: e.name):
        if entry.is_file():
            return entry
    return None


def asset_name(name: str) -> str:
    """Return the file name of an embedded binary, e.g. ``k0s-v1.32.8+k0s.0``.

    Raises:
        AssetError: If the build does not embed the binary.

    """
    asset = find_asset(name)
    if asset is None:
        raise AssetError(f"no {name} binary found in embedded assets")
    return asset.name


def extract_binary(name: str, destination: Path) -> Path:
    """Copy an embedded binary to ``destination`` with mode 0755.

    Args:
        name: Asset directory name.
        destination: Target path of the binary.

    Returns:
        The destination path.

    Raises:
        AssetError: On an online build, when the asset is missing, or when
            the file cannot be written.

    """
    if not is_airgap():
        raise AssetError(f"not an airgap build, cannot extract embedded {name} binary")
    asset = find_asset(name)
    if asset is None:
        raise AssetError(f"no {name} binary found in embedded assets")

    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        with asset.open("rb") as src, destination.open("wb") as dst:
            shutil.copyfileobj(src, dst)
        destination.chmod(0o755)
    except OSError as e:
        raise AssetError(f"Failed to extract {name} to {destination}: {e.strerror}") from e
    return destination
