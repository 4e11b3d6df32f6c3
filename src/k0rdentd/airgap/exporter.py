"""Export of the artifacts needed to join worker nodes to an air-gapped cluster.

The k0rdent bundle itself is referenced, never copied, so the export
does not redistribute enterprise content.
"""

from pathlib import Path

from k0rdentd.airgap import assets
from k0rdentd.console import Reporter, highlight
from k0rdentd.exceptions import AssetError

DEFAULT_OUTPUT_DIR = Path("./worker-bundle")
DEFAULT_BUNDLE_PATH = Path("./airgap-bundle.tar.gz")
BUNDLE_DOWNLOAD_URL = "https://get.mirantis.com/k0rdent-enterprise/"

_INSTALL_SCRIPT = """#!/bin/bash
# k0rdentd worker installation script
set -e

BUNDLE_DIR="$(cd "$(dirname "${{BASH_SOURCE[0]}}")/.." && pwd)"
K0RDENT_BUNDLE="{bundle_path}"

echo "[1/3] Installing k0s"
K0S_BIN=$(find "${{BUNDLE_DIR}}/k0s-binary" -type f -name "k0s*" | head -n 1)
if [ -z "$K0S_BIN" ]; then
    echo "ERROR: k0s binary not found in ${{BUNDLE_DIR}}/k0s-binary/"
    exit 1
fi
sudo install -m 755 "$K0S_BIN" /usr/local/bin/k0s

echo "[2/3] Loading k0rdent images"
if [ -f "$K0RDENT_BUNDLE" ]; then
    IMAGES_DIR=$(mktemp -d)
    tar -xzf "$K0RDENT_BUNDLE" -C "$IMAGES_DIR"
    trap 'rm -rf "$IMAGES_DIR"' EXIT
elif [ -d "$K0RDENT_BUNDLE" ]; then
    IMAGES_DIR="$K0RDENT_BUNDLE"
else
    echo "WARNING: k0rdent bundle not found at $K0RDENT_BUNDLE"
    echo "Download it from {download_url} and re-run this script."
    IMAGES_DIR=""
fi
if [ -n "$IMAGES_DIR" ]; then
    find "$IMAGES_DIR" -type f -name "*.tar" ! -path "*skopeo*" | while read -r img; do
        echo "  Loading: $(basename "$img")"
        sudo k0s ctr images import "$img" || echo "  Warning: failed to load $(basename "$img")"
    done
fi

echo "[3/3] Done"
echo "Create a token on the controller:  sudo k0s token create --role worker"
echo "Then join this node:               sudo k0s worker <token>"
"""

_README = """# k0rdentd worker artifacts

Files needed to join a worker node to an air-gapped k0s cluster running k0rdent.

## Contents

- `k0s-binary/`: the k0s binary matching the controller
- `images/BUNDLE_LOCATION.txt`: where the k0rdent air-gap bundle is expected
- `scripts/install.sh`: installs k0s and loads the bundle images

The k0rdent bundle is not part of this directory. Copy it to the worker as well.

Expected bundle location: `{bundle_path}`

If you do not have the bundle, download it from {download_url}

## Usage

1. Copy this directory and the bundle to the worker node.
2. Run `sudo ./scripts/install.sh`.
3. On the controller, run `sudo k0s token create --role worker`.
4. On the worker, run `sudo k0s worker <token>`.

## Manual installation

    sudo install -m 755 k0s-binary/k0s* /usr/local/bin/k0s
    sudo k0s ctr images import <image>.tar   # for every image archive in the bundle
    sudo k0s worker <token>
"""


class WorkerExporter:
    """Writes the worker artifact directory.

    Attributes:
        bundle_path: Bundle location referenced by the artifacts.

    """

    def __init__(self, reporter: Reporter, *, bundle_path: str | Path = DEFAULT_BUNDLE_PATH) -> None:
        self._reporter = reporter
        self.bundle_path = Path(bundle_path)

    def _write(self, path: Path, content: str, *, mode: int = 0o644) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
            path.chmod(mode)
        except OSError as e:
            raise AssetError(f"Failed to write {path}: {e.strerror}") from e
        self._reporter.step(f"Created {path}")

    def export_k0s_binary(self, output_dir: Path) -> Path:
        """Copy the embedded k0s binary into ``output_dir/k0s-binary``."""
        name = assets.asset_name(assets.K0S_ASSET)
        target = assets.extract_binary(assets.K0S_ASSET, output_dir / "k0s-binary" / name)
        self._reporter.step(f"Extracted {target}")
        return target

    def write_bundle_reference(self, output_dir: Path) -> Path:
        target = output_dir / "images" / "BUNDLE_LOCATION.txt"
        content = (
            "# k0rdent air-gap bundle location\n\n"
            f"BUNDLE_PATH={self.bundle_path}\n\n"
            f"# Download from: {BUNDLE_DOWNLOAD_URL}\n"
            "# Copy the bundle to the worker node, then run scripts/install.sh\n"
        )
        self._write(target, content)
        return target

    def write_install_script(self, output_dir: Path) -> Path:
        target = output_dir / "scripts" / "install.sh"
        self._write(
            target,
            _INSTALL_SCRIPT.format(bundle_path=self.bundle_path, download_url=BUNDLE_DOWNLOAD_URL),
            mode=0o755,
        )
        return target

    def write_readme(self, output_dir: Path) -> Path:
        target = output_dir / "README.md"
        self._write(target, _README.format(bundle_path=self.bundle_path, download_url=BUNDLE_DOWNLOAD_URL))
        return target

    def export(self, output_dir: Path = DEFAULT_OUTPUT_DIR) -> None:
        """Export all worker artifacts to ``output_dir``.

        Raises:
            AssetError: If this is not an air-gapped build or a file cannot be written.

        """
        self._reporter.action(f"Exporting worker artifacts to {highlight(str(output_dir))}")
        self.export_k0s_binary(output_dir)
        self.write_bundle_reference(output_dir)
        self.write_install_script(output_dir)
        self.write_readme(output_dir)
        self._reporter.success("Worker artifacts exported")
        self._reporter.info(f"Remember to copy the k0rdent bundle to worker nodes: {highlight(str(self.bundle_path))}")
