"""Shared test fixtures for k0rdentd tests."""

import io
from typing import Any
from unittest.mock import patch

import pytest
from rich.console import Console

from k0rdentd.console import Reporter
from k0rdentd.exceptions import ClusterOperationError
from k0rdentd.models import BuildMetadata, CustomResource, Flavor, ReleaseStatus
from k0rdentd.waiter import NullProgress, Waiter


class FakeCluster:
    """In-memory stand-in for k0rdentd.cluster.Cluster.

    Attributes:
        namespaces: Existing namespaces.
        deployments: (namespace, name) -> (ready, desired) replicas.
        secrets: (namespace, name) -> string data.
        objects: (kind, name) -> manifest.
        releases: (namespace, release) -> status.
        failing_kinds: Kinds whose creation raises.
        created: Every object created, as "Kind/name".

    """

    def __init__(self) -> None:
        self.namespaces: set[str] = set()
        self.deployments: dict[tuple[str, str], tuple[int, int]] = {}
        self.secrets: dict[tuple[str, str], dict[str, str]] = {}
        self.objects: dict[tuple[str, str], dict[str, Any]] = {}
        self.releases: dict[tuple[str, str], ReleaseStatus] = {}
        self.failing_kinds: set[str] = set()
        self.created: list[str] = []

    def namespace_exists(self, name: str) -> bool:
        return name in self.namespaces

    def deployment_replicas(self, namespace: str, name: str) -> tuple[int, int] | None:
        return self.deployments.get((namespace, name))

    def is_deployment_ready(self, namespace: str, name: str) -> bool:
        replicas = self.deployment_replicas(namespace, name)
        return replicas is not None and replicas[0] == replicas[1]

    def are_deployments_ready(self, namespace: str, names) -> bool:
        return all(self.is_deployment_ready(namespace, name) for name in names)

    def secret_exists(self, namespace: str, name: str) -> bool:
        return (namespace, name) in self.secrets

    def create_secret(self, namespace: str, name: str, string_data: dict[str, str], *, labels=None) -> None:
        if "Secret" in self.failing_kinds:
            raise ClusterOperationError(f"Failed to create secret {namespace}/{name}: 500 boom")
        self.secrets[(namespace, name)] = dict(string_data)
        self.created.append(f"Secret/{name}")

    def custom_object_exists(self, resource: CustomResource, namespace: str, name: str) -> bool:
        return (resource.kind, name) in self.objects

    def create_custom_object(self, resource: CustomResource, namespace: str, body: dict[str, Any]) -> None:
        name = body["metadata"]["name"]
        if resource.kind in self.failing_kinds:
            raise ClusterOperationError(f"Failed to create {resource.kind} {name}: 500 boom")
        self.objects[(resource.kind, name)] = body
        self.created.append(f"{resource.kind}/{name}")

    def helm_release_status(self, namespace: str, release: str) -> ReleaseStatus:
        return self.releases.get((namespace, release), ReleaseStatus.UNKNOWN)

    def make_ready(self, namespace: str, deployments) -> None:
        """Create the namespace with every deployment fully scaled."""
        self.namespaces.add(namespace)
        for name in deployments:
            self.deployments[(namespace, name)] = (1, 1)


@pytest.fixture
def output():
    """Buffer receiving everything printed by the reporter fixture."""
    return io.StringIO()


@pytest.fixture
def reporter(output):
    """Reporter writing plain text into the output buffer."""
    console = Console(file=output, force_terminal=False, no_color=True, width=200)
    return Reporter(console, debug=True)


@pytest.fixture
def waiter(reporter):
    """Waiter that polls without delay and renders no progress."""
    return Waiter(reporter, progress=NullProgress, poll_interval=0, report_interval=0.01)


@pytest.fixture
def fake_cluster():
    """Empty in-memory cluster."""
    return FakeCluster()


@pytest.fixture
def airgap_build():
    """Pretend to run from an air-gapped build."""
    metadata = BuildMetadata(flavor=Flavor.AIRGAP, version="1.0.0", k0s_version="v1.32.8+k0s.0", k0rdent_version="1.2.2")
    with (
        patch("k0rdentd.build.get_metadata", return_value=metadata),
        patch("k0rdentd.airgap.assets.is_airgap", return_value=True),
    ):
        yield metadata
