"""Exposure of the k0rdent UI on the host's addresses."""

from collections.abc import Callable
from typing import Any

import requests
from icecream import ic

from k0rdentd import commands
from k0rdentd.cloud import CloudMetadata
from k0rdentd.cluster import Cluster
from k0rdentd.console import Reporter, highlight
from k0rdentd.exceptions import ClusterOperationError, K0rdentdError
from k0rdentd.waiter import Waiter

UI_NAMESPACE = "kcm-system"
UI_DEPLOYMENT = "k0rdent-k0rdent-ui"
UI_SERVICE = "k0rdent-k0rdent-ui"
UI_CONTAINER = "k0rdent-ui"
UI_INGRESS = "k0rdent-ui"
UI_PATH = "/k0rdent-ui"
UI_USERNAME = "admin"
PASSWORD_VARIABLE = "BASIC_AUTH_PASSWORD"

DEFAULT_TIMEOUT = 5 * 60.0
_PROBE_TIMEOUT = 5

# Virtual interfaces of the CNI and container runtimes
_SKIPPED_INTERFACE_PREFIXES = ("cali", "vxlan.calico", "kube-bridge", "tunl", "docker", "wg", "lo")

HttpGet = Callable[..., requests.Response]


def parse_ipv4_addresses(output: str) -> list[str]:
    """Extract host addresses from ``ip -o -4 addr show`` output.

    Loopback and virtual CNI/container interfaces are skipped, and each
    address is returned once, in the order listed.

    """
    addresses: list[str] = []
    for line in output.splitlines():
        fields = line.split()
        if len(fields) < 4 or "inet" not in fields:
            continue
        interface = fields[1]
        if interface.startswith(_SKIPPED_INTERFACE_PREFIXES):
            continue
        address = fields[fields.index("inet") + 1].split("/")[0]
        if address not in addresses:
            addresses.append(address)
    return addresses


def local_ipv4_addresses() -> list[str]:
    """Return the IPv4 addresses of the host's physical interfaces."""
    return parse_ipv4_addresses(commands.run(["ip", "-o", "-4", "addr", "show"], "list network addresses"))


def ui_ingress() -> dict[str, Any]:
    """Return the ingress serving the UI under ``/k0rdent-ui``."""
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "Ingress",
        "metadata": {
            "name": UI_INGRESS,
            "namespace": UI_NAMESPACE,
            "annotations": {"nginx.ingress.kubernetes.io/rewrite-target": "/"},
        },
        "spec": {
            "ingressClassName": "nginx",
            "rules": [
                {
                    "http": {
                        "paths": [
                            {
                                "path": UI_PATH,
                                "pathType": "Prefix",
                                "backend": {"service": {"name": UI_SERVICE, "port": {"number": 80}}},
                            }
                        ]
                    }
                }
            ],
        },
    }


class UIExposer:
    """Makes the k0rdent UI reachable and prints how to access it.

    Attributes:
        timeout: Seconds to wait for the UI deployment.

    """

    def __init__(
        self,
        cluster: Cluster,
        reporter: Reporter,
        *,
        waiter: Waiter | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        addresses: Callable[[], list[str]] = local_ipv4_addresses,
        external_ip: Callable[[], str | None] | None = None,
        http_get: HttpGet = requests.get,
    ) -> None:
        self._cluster = cluster
        self._reporter = reporter
        self._waiter = waiter if waiter is not None else Waiter(reporter, poll_interval=5.0)
        self.timeout = timeout
        self._addresses = addresses
        self._external_ip = external_ip or CloudMetadata(reporter).external_ip
        self._http_get = http_get

    def _deployment_available(self) -> bool:
        replicas = self._cluster.deployment_replicas(UI_NAMESPACE, UI_DEPLOYMENT)
        return replicas is not None and replicas[0] > 0

    def is_reachable(self, url: str) -> bool:
        """Whether ``url`` answers with an HTML page."""
        try:
            response = self._http_get(url, timeout=_PROBE_TIMEOUT)
        except requests.RequestException as e:
            self._reporter.debug(f"Failed to access k0rdent UI at {url}: {e}")
            return False
        content_type = response.headers.get("Content-Type", "")
        ic(url, response.status_code, content_type)
        return content_type.startswith("text/html")

    def host_addresses(self) -> list[str]:
        """Return the public cloud address, if any, followed by the local ones."""
        external = self._external_ip()
        if external:
            self._reporter.info(f"Detected external IP: {highlight(external)}")
        addresses: list[str] = [external] if external else []
        for address in self._addresses():
            if address not in addresses:
                addresses.append(address)
        return addresses

    def _node_port(self) -> int | None:
        try:
            self._cluster.patch_service_type(UI_NAMESPACE, UI_SERVICE, "NodePort")
            self._reporter.success("Modified k0rdent UI service to NodePort type")
            return self._cluster.service_node_port(UI_NAMESPACE, UI_SERVICE)
        except K0rdentdError as e:
            self._reporter.warning(f"Failed to expose the UI service as NodePort: {e}")
            return None

    def _print_password(self) -> None:
        try:
            password = self._cluster.deployment_env_var(UI_NAMESPACE, UI_DEPLOYMENT, UI_CONTAINER, PASSWORD_VARIABLE)
        except K0rdentdError as e:
            self._reporter.warning(f"Failed to read the Basic Auth password: {e}")
            password = None
        if password is None:
            self._reporter.info("Basic Auth credentials: not available")
            return
        self._reporter.info("Basic Auth credentials:")
        self._reporter.step(f"Username: {highlight(UI_USERNAME)}")
        self._reporter.step(f"Password: {highlight(password)}")

    def _print_port_forward(self) -> None:
        self._reporter.info("Alternatively, use port-forwarding:")
        self._reporter.step(f"k0s kubectl port-forward -n {UI_NAMESPACE} svc/{UI_SERVICE} 8080:80")
        self._reporter.step(f"Then open http://localhost:8080{UI_PATH}")

    def expose(self) -> list[str]:
        """Expose the UI and print its URLs.

        Returns:
            The URLs the UI answered on.

        Raises:
            WaitTimeoutError: If the UI deployment does not become available.
            ClusterOperationError: If the service is missing or the ingress cannot be applied.

        """
        self._reporter.action("Checking k0rdent UI deployment status")
        self._waiter.wait_until("k0rdent UI deployment", self._deployment_available, self.timeout)
        if not self._cluster.service_exists(UI_NAMESPACE, UI_SERVICE):
            raise ClusterOperationError(f"k0rdent UI service {UI_NAMESPACE}/{UI_SERVICE} not found")

        node_port = self._node_port()
        addresses = self.host_addresses()
        ic(addresses, node_port)
        if not addresses:
            self._reporter.warning("Could not detect any IP addresses")
            self._print_port_forward()
            self._print_password()
            return []

        self._cluster.apply_ingress(UI_NAMESPACE, ui_ingress())
        self._reporter.success(f"Ingress {highlight(UI_INGRESS)} applied")

        reachable: list[str] = []
        if node_port is not None:
            reachable = [
                url for url in (f"http://{ip}:{node_port}{UI_PATH}" for ip in addresses) if self.is_reachable(url)
            ]

        self._reporter.info("If an ingress controller is installed, the k0rdent UI is at:")
        for ip in addresses:
            self._reporter.step(f"http://{ip}{UI_PATH}")
        if node_port is not None:
            self._reporter.info("NodePort access (firewall rules may need to allow the port):")
            for ip in addresses:
                url = f"http://{ip}:{node_port}{UI_PATH}"
                marker = "[success]reachable[/success]" if url in reachable else "[muted]not reachable yet[/muted]"
                self._reporter.step(f"{url} {marker}")
        self._print_port_forward()
        self._print_password()
        return reachable
