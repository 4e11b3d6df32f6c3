"""Tests for generator.py module."""

from dataclasses import replace

import yaml

from k0rdentd.config import (
    ApiSettings,
    HelmSettings,
    K0rdentSettings,
    K0sSettings,
    NetworkSettings,
    default_config,
)
from k0rdentd.generator import (
    CHART_RELEASE_NAME,
    deep_merge,
    generate_airgap_runtime_config,
    generate_runtime_config,
    render,
    write_runtime_config,
)


def _chart(document: dict) -> dict:
    return document["spec"]["extensions"]["helm"]["charts"][0]


class TestDeepMerge:
    """Tests for deep_merge function."""

    def test_override_wins(self):
        """Test that scalars from the override replace the base."""
        assert deep_merge({"a": 1, "b": 2}, {"b": 3}) == {"a": 1, "b": 3}

    def test_nested_mappings_are_merged(self):
        """Test that nested mappings keep keys from both sides."""
        merged = deep_merge({"image": {"repository": "r", "tag": "1"}}, {"image": {"tag": "2"}})

        assert merged == {"image": {"repository": "r", "tag": "2"}}

    def test_inputs_are_not_modified(self):
        """Test that neither input is mutated."""
        base = {"image": {"repository": "r"}}
        override = {"image": {"tag": "2"}}

        deep_merge(base, override)

        assert base == {"image": {"repository": "r"}}
        assert override == {"image": {"tag": "2"}}

    def test_scalar_replaces_mapping(self):
        """Test that a non-mapping override replaces a mapping."""
        assert deep_merge({"a": {"b": 1}}, {"a": None}) == {"a": None}


class TestGenerateRuntimeConfig:
    """Tests for the online k0s config."""

    def test_default_document(self):
        """Test the cluster and Helm extension for the defaults."""
        cfg = default_config()

        document = generate_runtime_config(cfg)

        assert document["apiVersion"] == "k0s.k0sproject.io/v1beta1"
        assert document["kind"] == "Cluster"
        assert document["spec"]["api"] == {"port": 6443}
        assert "images" not in document["spec"]
        chart = _chart(document)
        assert chart["name"] == CHART_RELEASE_NAME
        assert chart["chartname"] == cfg.k0rdent.helm.chart
        assert chart["version"] == cfg.k0rdent.version
        assert chart["namespace"] == "kcm-system"
        assert yaml.safe_load(chart["values"]) == {"replicaCount": 1, "k0rdent-ui": {"enabled": True}}

    def test_empty_settings_are_pruned(self):
        """Test that unset strings do not appear in the document."""
        document = generate_runtime_config(default_config())

        assert "podCIDR" not in document["spec"]["network"]
        assert "etcd" not in document["spec"]["storage"]

    def test_configured_settings_are_rendered(self):
        """Test that configured API and network settings are carried over."""
        cfg = replace(
            default_config(),
            k0s=K0sSettings(
                api=ApiSettings(address="10.0.0.5", port=7443),
                network=NetworkSettings(provider="kuberouter", pod_cidr="10.244.0.0/16"),
            ),
        )

        spec = generate_runtime_config(cfg)["spec"]

        assert spec["api"] == {"address": "10.0.0.5", "port": 7443}
        assert spec["network"] == {"provider": "kuberouter", "podCIDR": "10.244.0.0/16"}

    def test_empty_values(self):
        """Test that empty chart values render as an empty string."""
        cfg = replace(default_config(), k0rdent=K0rdentSettings(helm=HelmSettings(values={})))

        assert _chart(generate_runtime_config(cfg))["values"] == ""


class TestGenerateAirgapRuntimeConfig:
    """Tests for the air-gapped k0s config."""

    def test_points_at_local_registry(self):
        """Test that chart, system images and component images use the registry."""
        document = generate_airgap_runtime_config(default_config(), "localhost:5000", insecure=True, version="1.2.3")

        assert document["spec"]["images"] == {"repository": "localhost:5000"}
        repository = document["spec"]["extensions"]["helm"]["repositories"][0]
        assert repository["url"] == "oci://localhost:5000/charts"
        assert repository["insecure"] is True
        chart = _chart(document)
        assert chart["chartname"] == "oci://localhost:5000/charts/k0rdent-enterprise"
        assert chart["version"] == "1.2.3"
        values = yaml.safe_load(chart["values"])
        assert values["controller"]["globalRegistry"] == "localhost:5000"
        assert values["controller"]["insecureRegistry"] is True
        assert values["image"]["repository"] == "localhost:5000/k0rdent-enterprise/kcm-controller"
        assert values["cert-manager"]["webhook"]["image"]["repository"] == (
            "localhost:5000/jetstack/cert-manager-webhook"
        )

    def test_operator_values_take_precedence(self):
        """Test that configured values win over the air-gap overrides."""
        values = {"replicaCount": 3, "image": {"repository": "mirror.example.com/kcm"}}
        cfg = replace(default_config(), k0rdent=K0rdentSettings(helm=HelmSettings(values=values)))

        chart = _chart(generate_airgap_runtime_config(cfg, "localhost:5000", insecure=True, version="1.2.3"))

        rendered = yaml.safe_load(chart["values"])
        assert rendered["replicaCount"] == 3
        assert rendered["image"]["repository"] == "mirror.example.com/kcm"
        assert rendered["controller"]["globalRegistry"] == "localhost:5000"


class TestWriteRuntimeConfig:
    """Tests for writing the k0s config."""

    def test_written_yaml_loads_back(self, tmp_path):
        """Test that the written file holds the rendered document."""
        document = generate_runtime_config(default_config())
        target = tmp_path / "k0s" / "k0s.yaml"

        write_runtime_config(document, target)

        assert yaml.safe_load(target.read_text()) == document
        assert target.read_text() == render(document)
        assert target.stat().st_mode & 0o777 == 0o600
