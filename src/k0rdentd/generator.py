"""Generation of the k0s cluster configuration.

The generated document is a k0s ``Cluster`` whose Helm extension installs
the k0rdent chart. Air-gapped installs point the chart, the k0s system
images and every component image at the local registry.
"""

import copy
from pathlib import Path
from typing import Any

import yaml

from k0rdentd.config import InstallationConfig, write_config_file
from k0rdentd.runtime import K0S_CONFIG_PATH

K0S_API_VERSION = "k0s.k0sproject.io/v1beta1"
CHART_RELEASE_NAME = "k0rdent"
ONLINE_REPOSITORY = {"name": "k0rdent", "url": "https://charts.k0rdent.io"}
ENTERPRISE_CHART = "k0rdent-enterprise"

# Helm values path -> image path inside the air-gap bundle
_AIRGAP_IMAGES: dict[tuple[str, ...], str] = {
    ("image",): "k0rdent-enterprise/kcm-controller",
    ("k0rdent-ui", "image"): "k0rdent-enterprise/k0rdent-ui",
    ("flux2", "helmController", "image"): "fluxcd/helm-controller",
    ("flux2", "sourceController", "image"): "fluxcd/source-controller",
    ("cert-manager", "image"): "jetstack/cert-manager-controller",
    ("cert-manager", "webhook", "image"): "jetstack/cert-manager-webhook",
    ("cert-manager", "cainjector", "image"): "jetstack/cert-manager-cainjector",
    ("cert-manager", "startupapicheck", "image"): "jetstack/cert-manager-startupapicheck",
}


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge two mappings recursively; values from ``override`` win.

    Neither input is modified.

    Args:
        base: Lower-precedence mapping.
        override: Higher-precedence mapping.

    Returns:
        A new merged mapping.

    """
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _prune(document: dict[str, Any]) -> dict[str, Any]:
    """Drop empty strings and mappings left empty by doing so."""
    pruned: dict[str, Any] = {}
    for key, value in document.items():
        if isinstance(value, dict):
            value = _prune(value)
            if not value:
                continue
        elif value == "":
            continue
        pruned[key] = value
    return pruned


def _format_values(values: dict[str, Any]) -> str:
    if not values:
        return ""
    return yaml.safe_dump(values, sort_keys=False)


def _cluster_spec(cfg: InstallationConfig) -> dict[str, Any]:
    k0s = cfg.k0s
    return _prune(
        {
            "api": {"address": k0s.api.address, "port": k0s.api.port},
            "network": {
                "provider": k0s.network.provider,
                "podCIDR": k0s.network.pod_cidr,
                "serviceCIDR": k0s.network.service_cidr,
            },
            "storage": {
                "type": k0s.storage.type,
                "etcd": {"peerAddress": k0s.storage.etcd_peer_address},
            },
        }
    )


def _cluster(spec: dict[str, Any]) -> dict[str, Any]:
    return {
        "apiVersion": K0S_API_VERSION,
        "kind": "Cluster",
        "metadata": {"name": "k0s"},
        "spec": spec,
    }


def generate_runtime_config(cfg: InstallationConfig) -> dict[str, Any]:
    """Build the k0s config for an online installation.

    Args:
        cfg: The installation configuration.

    Returns:
        The k0s Cluster document.

    """
    spec = _cluster_spec(cfg)
    spec["extensions"] = {
        "helm": {
            "repositories": [dict(ONLINE_REPOSITORY)],
            "charts": [
                {
                    "name": CHART_RELEASE_NAME,
                    "chartname": cfg.k0rdent.helm.chart,
                    "version": cfg.k0rdent.version,
                    "namespace": cfg.k0rdent.helm.namespace,
                    "values": _format_values(cfg.k0rdent.helm.values),
                }
            ],
        }
    }
    return _cluster(spec)


def airgap_values(registry: str, *, insecure: bool) -> dict[str, Any]:
    """Return chart values pointing every component image at ``registry``."""
    values: dict[str, Any] = {
        "controller": {
            "templatesRepoURL": f"oci://{registry}/charts",
            "globalRegistry": registry,
            "insecureRegistry": insecure,
        },
    }
    for path, image in _AIRGAP_IMAGES.items():
        node = values
        for key in path:
            node = node.setdefault(key, {})
        node["repository"] = f"{registry}/{image}"
    return values


def generate_airgap_runtime_config(
    cfg: InstallationConfig,
    registry: str,
    *,
    insecure: bool,
    version: str,
) -> dict[str, Any]:
    """Build the k0s config for an air-gapped installation.

    The chart is pulled from the local registry and the air-gap image
    overrides are merged under the configured values, so values set by
    the operator take precedence.

    Args:
        cfg: The installation configuration.
        registry: host:port of the local registry.
        insecure: Whether the registry is plain HTTP.
        version: Chart version, usually read from the bundle.

    Returns:
        The k0s Cluster document.

    """
    values = deep_merge(airgap_values(registry, insecure=insecure), cfg.k0rdent.helm.values)
    spec = _cluster_spec(cfg)
    spec["images"] = {"repository": registry}
    spec["extensions"] = {
        "helm": {
            "repositories": [{"name": "k0rdent-airgap", "url": f"oci://{registry}/charts", "insecure": insecure}],
            "charts": [
                {
                    "name": CHART_RELEASE_NAME,
                    "chartname": f"oci://{registry}/charts/{ENTERPRISE_CHART}",
                    "version": version,
                    "namespace": cfg.k0rdent.helm.namespace,
                    "values": _format_values(values),
                }
            ],
        }
    }
    return _cluster(spec)


def render(document: dict[str, Any]) -> str:
    """Serialize a k0s config document to YAML."""
    return yaml.safe_dump(document, sort_keys=False)


def write_runtime_config(document: dict[str, Any], path: Path = K0S_CONFIG_PATH) -> None:
    """Write the k0s config with owner-only permissions."""
    write_config_file(path, render(document))
