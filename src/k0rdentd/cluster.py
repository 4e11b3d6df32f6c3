"""Kubernetes cluster interaction utilities.

This module provides the Cluster class, the namespace, deployment,
secret, service, ingress and custom-resource surface k0rdentd needs
from the k0s API server.
"""

import base64
import binascii
import gzip
import json
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from icecream import ic
from kubernetes import client, config
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import MaxRetryError

from k0rdentd.console import Reporter
from k0rdentd.exceptions import ClusterConnectionError, ClusterOperationError
from k0rdentd.models import CustomResource, ReleaseStatus

_HTTP_NOT_FOUND = 404
_HTTP_CONFLICT = 409

# Helm stores gzip-compressed releases; this is the gzip magic header
_GZIP_MAGIC = b"\x1f\x8b\x08"


def decode_helm_release(encoded: str) -> dict[str, Any]:
    """Decode the ``release`` field of a Helm storage secret.

    Helm base64-encodes the gzipped JSON release, and the Secret API
    base64-encodes that string once more.

    Args:
        encoded: The ``data["release"]`` value as returned by the API.

    Returns:
        The decoded release document.

    Raises:
        ClusterOperationError: If the payload cannot be decoded.

    """
    try:
        raw = base64.b64decode(base64.b64decode(encoded))
        if raw.startswith(_GZIP_MAGIC):
            raw = gzip.decompress(raw)
        return json.loads(raw)
    except (binascii.Error, OSError, ValueError) as e:
        raise ClusterOperationError(f"Failed to decode helm release: {e}") from e


def _release_status(status: str) -> ReleaseStatus:
    match status:
        case "deployed":
            return ReleaseStatus.DEPLOYED
        case "failed":
            return ReleaseStatus.FAILED
        case "pending-install" | "pending-upgrade" | "pending-rollback":
            return ReleaseStatus.PENDING
        case _:
            return ReleaseStatus.UNKNOWN


class Cluster:
    """Typed access to the k0s cluster API.

    Attributes:
        core: CoreV1Api client.
        apps: AppsV1Api client.
        custom: CustomObjectsApi client.
        networking: NetworkingV1Api client.

    """

    def __init__(self, api_client: client.ApiClient, reporter: Reporter) -> None:
        self._reporter = reporter
        self.core = client.CoreV1Api(api_client)
        self.apps = client.AppsV1Api(api_client)
        self.custom = client.CustomObjectsApi(api_client)
        self.networking = client.NetworkingV1Api(api_client)

    @classmethod
    def from_kubeconfig(cls, kubeconfig: dict[str, Any], reporter: Reporter) -> "Cluster":
        """Create a Cluster from a parsed kubeconfig document.

        Raises:
            ClusterConnectionError: If the kubeconfig is invalid.

        """
        try:
            api_client = config.new_client_from_config_dict(kubeconfig)
        except ConfigException as e:
            raise ClusterConnectionError(f"Invalid kubeconfig: {e}") from e
        return cls(api_client, reporter)

    @classmethod
    def from_kubeconfig_file(cls, path: str | Path, reporter: Reporter) -> "Cluster":
        """Create a Cluster from a kubeconfig file.

        Raises:
            ClusterConnectionError: If the kubeconfig is invalid or missing.

        """
        try:
            api_client = config.new_client_from_config(config_file=str(path))
        except ConfigException as e:
            raise ClusterConnectionError(f"Invalid or missing kubeconfig: {e}") from e
        return cls(api_client, reporter)

    @staticmethod
    def _call(description: str, fn: Callable[[], Any]) -> Any:
        """Run an API call, translating transport and API errors."""
        try:
            return fn()
        except MaxRetryError as e:
            raise ClusterConnectionError(f"Failed to connect to the Kubernetes cluster: {e.reason}") from e
        except ApiException as e:
            raise ClusterOperationError(f"Failed to {description}: {e.status} {e.reason}") from e

    @classmethod
    def _exists(cls, description: str, read: Callable[[], Any]) -> bool:
        """Return whether ``read`` finds the object; 404 means it does not exist."""
        try:
            read()
        except ApiException as e:
            if e.status == _HTTP_NOT_FOUND:
                return False
            raise ClusterOperationError(f"Failed to {description}: {e.status} {e.reason}") from e
        except MaxRetryError as e:
            raise ClusterConnectionError(f"Failed to connect to the Kubernetes cluster: {e.reason}") from e
        return True

    def namespace_exists(self, name: str) -> bool:
        return self._exists(f"read namespace {name}", lambda: self.core.read_namespace(name))

    def deployment_replicas(self, namespace: str, name: str) -> tuple[int, int] | None:
        """Return ``(ready, desired)`` replicas of a deployment, or None if it is missing."""
        try:
            deployment = self.apps.read_namespaced_deployment(name, namespace)
        except ApiException as e:
            if e.status == _HTTP_NOT_FOUND:
                return None
            raise ClusterOperationError(f"Failed to read deployment {namespace}/{name}: {e.status} {e.reason}") from e
        except MaxRetryError as e:
            raise ClusterConnectionError(f"Failed to connect to the Kubernetes cluster: {e.reason}") from e

        desired = deployment.spec.replicas if deployment.spec.replicas is not None else 1
        ready = deployment.status.ready_replicas or 0
        return ready, desired

    def is_deployment_ready(self, namespace: str, name: str) -> bool:
        """A deployment is ready when its ready replicas equal the desired count."""
        replicas = self.deployment_replicas(namespace, name)
        ic(namespace, name, replicas)
        if replicas is None:
            return False
        ready, desired = replicas
        return ready == desired

    def are_deployments_ready(self, namespace: str, names: Iterable[str]) -> bool:
        return all(self.is_deployment_ready(namespace, name) for name in names)

    def secret_exists(self, namespace: str, name: str) -> bool:
        return self._exists(
            f"read secret {namespace}/{name}", lambda: self.core.read_namespaced_secret(name, namespace)
        )

    def create_secret(
        self,
        namespace: str,
        name: str,
        string_data: dict[str, str],
        *,
        labels: dict[str, str] | None = None,
    ) -> None:
        """Create an Opaque secret, replacing it if it already exists."""
        body = client.V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=client.V1ObjectMeta(name=name, namespace=namespace, labels=labels or {}),
            type="Opaque",
            string_data=string_data,
        )
        try:
            self.core.create_namespaced_secret(namespace, body)
        except MaxRetryError as e:
            raise ClusterConnectionError(f"Failed to connect to the Kubernetes cluster: {e.reason}") from e
        except ApiException as e:
            if e.status != _HTTP_CONFLICT:
                raise ClusterOperationError(f"Failed to create secret {namespace}/{name}: {e.status} {e.reason}") from e
            self._call(
                f"update secret {namespace}/{name}",
                lambda: self.core.replace_namespaced_secret(name, namespace, body),
            )

    def _read_custom_object(self, resource: CustomResource, namespace: str, name: str) -> dict[str, Any]:
        if resource.namespaced:
            return self.custom.get_namespaced_custom_object(
                resource.group, resource.version, namespace, resource.plural, name
            )
        return self.custom.get_cluster_custom_object(resource.group, resource.version, resource.plural, name)

    def custom_object_exists(self, resource: CustomResource, namespace: str, name: str) -> bool:
        return self._exists(
            f"read {resource.kind} {name}", lambda: self._read_custom_object(resource, namespace, name)
        )

    def create_custom_object(self, resource: CustomResource, namespace: str, body: dict[str, Any]) -> None:
        """Create a custom object, replacing it if it already exists.

        Args:
            resource: API coordinates of the object type.
            namespace: Target namespace, ignored for cluster-scoped types.
            body: The full object manifest.

        Raises:
            ClusterOperationError: If the object cannot be created or replaced.

        """
        name = body["metadata"]["name"]
        try:
            if resource.namespaced:
                self.custom.create_namespaced_custom_object(
                    resource.group, resource.version, namespace, resource.plural, body
                )
            else:
                self.custom.create_cluster_custom_object(resource.group, resource.version, resource.plural, body)
            return
        except ApiException as e:
            if e.status != _HTTP_CONFLICT:
                raise ClusterOperationError(f"Failed to create {resource.kind} {name}: {e.status} {e.reason}") from e
        except MaxRetryError as e:
            raise ClusterConnectionError(f"Failed to connect to the Kubernetes cluster: {e.reason}") from e

        existing = self._call(
            f"read {resource.kind} {name}", lambda: self._read_custom_object(resource, namespace, name)
        )
        updated = {**body, "metadata": {**body["metadata"], "resourceVersion": existing["metadata"]["resourceVersion"]}}
        if resource.namespaced:
            self._call(
                f"update {resource.kind} {name}",
                lambda: self.custom.replace_namespaced_custom_object(
                    resource.group, resource.version, namespace, resource.plural, name, updated
                ),
            )
        else:
            self._call(
                f"update {resource.kind} {name}",
                lambda: self.custom.replace_cluster_custom_object(
                    resource.group, resource.version, resource.plural, name, updated
                ),
            )

    def helm_release_status(self, namespace: str, release: str) -> ReleaseStatus:
        """Return the status of the newest revision of a Helm release.

        Helm keeps one ``sh.helm.release.v1.<release>.v<N>`` secret per
        revision, labelled ``owner=helm`` and ``name=<release>``.

        Args:
            namespace: Namespace the release is installed in.
            release: The release name.

        Returns:
            The release status, UNKNOWN when no revision exists yet.

        """
        secrets = self._call(
            f"list releases of {release}",
            lambda: self.core.list_namespaced_secret(namespace, label_selector=f"owner=helm,name={release}"),
        ).items
        if not secrets:
            return ReleaseStatus.UNKNOWN

        latest = max(secrets, key=lambda s: int((s.metadata.labels or {}).get("version", "0")))
        encoded = (latest.data or {}).get("release")
        if not encoded:
            return ReleaseStatus.UNKNOWN

        document = decode_helm_release(encoded)
        status = document.get("info", {}).get("status", "")
        ic(release, latest.metadata.name, status)
        return _release_status(status)

    def service_exists(self, namespace: str, name: str) -> bool:
        return self._exists(
            f"read service {namespace}/{name}", lambda: self.core.read_namespaced_service(name, namespace)
        )

    def service_node_port(self, namespace: str, name: str) -> int | None:
        """Return the first node port of a service, or None if it has none."""
        service = self._call(
            f"read service {namespace}/{name}", lambda: self.core.read_namespaced_service(name, namespace)
        )
        for port in service.spec.ports or []:
            if port.node_port:
                return int(port.node_port)
        return None

    def patch_service_type(self, namespace: str, name: str, service_type: str) -> None:
        self._call(
            f"patch service {namespace}/{name}",
            lambda: self.core.patch_namespaced_service(name, namespace, {"spec": {"type": service_type}}),
        )

    def apply_ingress(self, namespace: str, body: dict[str, Any]) -> None:
        """Create an ingress, replacing it if it already exists."""
        name = body["metadata"]["name"]
        try:
            self.networking.create_namespaced_ingress(namespace, body)
            return
        except ApiException as e:
            if e.status != _HTTP_CONFLICT:
                raise ClusterOperationError(f"Failed to create ingress {namespace}/{name}: {e.status} {e.reason}") from e
        except MaxRetryError as e:
            raise ClusterConnectionError(f"Failed to connect to the Kubernetes cluster: {e.reason}") from e

        existing = self._call(
            f"read ingress {namespace}/{name}", lambda: self.networking.read_namespaced_ingress(name, namespace)
        )
        updated = {**body, "metadata": {**body["metadata"], "resourceVersion": existing.metadata.resource_version}}
        self._call(
            f"update ingress {namespace}/{name}",
            lambda: self.networking.replace_namespaced_ingress(name, namespace, updated),
        )

    def deployment_env_var(self, namespace: str, deployment: str, container: str, variable: str) -> str | None:
        """Return a literal environment variable of a deployment container, if set."""
        found = self._call(
            f"read deployment {namespace}/{deployment}",
            lambda: self.apps.read_namespaced_deployment(deployment, namespace),
        )
        for spec in found.spec.template.spec.containers or []:
            if spec.name != container:
                continue
            for env in spec.env or []:
                if env.name == variable:
                    return env.value
        return None
