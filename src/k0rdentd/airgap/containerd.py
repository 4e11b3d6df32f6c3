"""containerd registry mirror configuration for air-gapped installs.

k0s loads drop-in files from ``/etc/k0s/containerd.d``; the CRI plugin is
pointed at a ``certs.d`` tree where each upstream registry gets a
``hosts.toml`` redirecting pulls to the local registry.
"""

from pathlib import Path

from k0rdentd.exceptions import ConfigurationError

CONTAINERD_DROP_IN_DIR = Path("/etc/k0s/containerd.d")
MIRRORED_REGISTRIES = ("registry.k8s.io", "quay.io")


def cri_registry_config(certs_dir: Path) -> str:
    return f'version = 2\n\n[plugins."io.containerd.grpc.v1.cri".registry]\nconfig_path = "{certs_dir}"\n'


def hosts_config(upstream: str, mirror: str) -> str:
    """Return the hosts.toml mirroring ``upstream`` to the plain-HTTP ``mirror``."""
    return f'server = "https://{upstream}"\n\n[host."http://{mirror}"]\n  capabilities = ["pull", "resolve"]\n'


def setup_mirror(mirror: str, *, drop_in_dir: Path = CONTAINERD_DROP_IN_DIR) -> list[Path]:
    """Configure containerd to pull the mirrored registries from ``mirror``.

    Args:
        mirror: host:port of the local registry.
        drop_in_dir: containerd drop-in directory of k0s.

    Returns:
        The files written.

    Raises:
        ConfigurationError: If a file cannot be written.

    """
    certs_dir = drop_in_dir / "certs.d"
    written: list[Path] = []
    try:
        certs_dir.mkdir(parents=True, exist_ok=True)
        cri_config = drop_in_dir / "cri-registry.toml"
        cri_config.write_text(cri_registry_config(certs_dir))
        written.append(cri_config)

        for upstream in MIRRORED_REGISTRIES:
            host_dir = certs_dir / upstream
            host_dir.mkdir(parents=True, exist_ok=True)
            hosts_file = host_dir / "hosts.toml"
            hosts_file.write_text(hosts_config(upstream, mirror))
            written.append(hosts_file)
    except OSError as e:
        raise ConfigurationError(f"Failed to configure containerd mirror: {e}") from e
    return written
