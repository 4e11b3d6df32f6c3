"""Host preparation for an air-gapped installation."""

from pathlib import Path
from typing import Any

from icecream import ic

from k0rdentd.airgap import assets
from k0rdentd.airgap.bundle import extract_version
from k0rdentd.airgap.containerd import CONTAINERD_DROP_IN_DIR, setup_mirror
from k0rdentd.config import InstallationConfig
from k0rdentd.console import Reporter, highlight
from k0rdentd.exceptions import BundleError
from k0rdentd.generator import generate_airgap_runtime_config


def resolve_chart_version(cfg: InstallationConfig, reporter: Reporter) -> str:
    """Return the chart version of the configured bundle.

    Falls back to the configured k0rdent version, with a warning, when no
    bundle is configured or its version cannot be read.

    """
    bundle_path = cfg.airgap.bundle_path
    if not bundle_path:
        reporter.warning(f"No bundle path configured, using k0rdent version {cfg.k0rdent.version}")
        return cfg.k0rdent.version
    try:
        version = extract_version(bundle_path)
    except BundleError as e:
        reporter.warning(f"Could not read version from bundle ({e}), using k0rdent version {cfg.k0rdent.version}")
        return cfg.k0rdent.version
    reporter.info(f"Bundle version: {highlight(version)}")
    return version


def prepare_airgap(
    cfg: InstallationConfig,
    reporter: Reporter,
    *,
    k0s_destination: Path = assets.K0S_DESTINATION,
    drop_in_dir: Path = CONTAINERD_DROP_IN_DIR,
) -> dict[str, Any]:
    """Prepare the host and return the air-gapped k0s config document.

    Extracts the embedded k0s binary, configures the containerd mirror to
    the local registry and generates the k0s config pointing at it.

    Args:
        cfg: The installation configuration.
        reporter: Output channel.
        k0s_destination: Where the k0s binary is installed.
        drop_in_dir: containerd drop-in directory of k0s.

    Returns:
        The k0s Cluster document.

    Raises:
        AssetError: If the k0s binary cannot be extracted.
        ConfigurationError: If the containerd mirror cannot be written.

    """
    registry = cfg.airgap.registry
    address = registry.effective_address
    insecure = registry.is_insecure
    ic(address, insecure)

    assets.extract_binary(assets.K0S_ASSET, k0s_destination)
    reporter.success(f"k0s binary extracted to {highlight(str(k0s_destination))}")

    version = resolve_chart_version(cfg, reporter)

    setup_mirror(address, drop_in_dir=drop_in_dir)
    reporter.success(f"containerd mirror configured for {highlight(address)}")

    return generate_airgap_runtime_config(cfg, address, insecure=insecure, version=version)
