"""Tests for ui.py module."""

from unittest.mock import MagicMock

import pytest
import requests

from k0rdentd.exceptions import ClusterOperationError
from k0rdentd.ui import UI_NAMESPACE, UI_SERVICE, UIExposer, parse_ipv4_addresses, ui_ingress

IP_OUTPUT = """1: lo    inet 127.0.0.1/8 scope host lo\\       valid_lft forever preferred_lft forever
2: eth0    inet 10.0.0.5/24 brd 10.0.0.255 scope global eth0\\       valid_lft forever preferred_lft forever
2: eth0    inet 10.0.0.5/24 brd 10.0.0.255 scope global secondary eth0\\       valid_lft forever
3: docker0    inet 172.17.0.1/16 brd 172.17.255.255 scope global docker0\\       valid_lft forever
4: vxlan.calico    inet 192.168.10.0/32 scope global vxlan.calico\\       valid_lft forever
5: ens5    inet 192.0.2.10/24 brd 192.0.2.255 scope global ens5\\       valid_lft forever
"""


def _response(content_type: str) -> MagicMock:
    response = MagicMock(status_code=200)
    response.headers = {"Content-Type": content_type}
    return response


@pytest.fixture
def cluster():
    """Cluster where the UI deployment and service exist."""
    mock = MagicMock()
    mock.deployment_replicas.return_value = (1, 1)
    mock.service_exists.return_value = True
    mock.service_node_port.return_value = 31443
    mock.deployment_env_var.return_value = "s3cret"
    return mock


class TestParseIpv4Addresses:
    """Tests for parse_ipv4_addresses function."""

    def test_skips_virtual_interfaces(self):
        """Test that loopback and CNI interfaces are skipped and duplicates removed."""
        assert parse_ipv4_addresses(IP_OUTPUT) == ["10.0.0.5", "192.0.2.10"]

    def test_empty_output(self):
        """Test that no interfaces yields no addresses."""
        assert parse_ipv4_addresses("") == []


class TestUiIngress:
    """Tests for ui_ingress function."""

    def test_routes_path_to_service(self):
        """Test the ingress path and backend."""
        ingress = ui_ingress()

        path = ingress["spec"]["rules"][0]["http"]["paths"][0]
        assert ingress["spec"]["ingressClassName"] == "nginx"
        assert path["path"] == "/k0rdent-ui"
        assert path["backend"]["service"]["name"] == UI_SERVICE


@pytest.fixture
def make_exposer(cluster, reporter, waiter):
    """Build a UIExposer with stubbed address discovery."""

    def factory(addresses=(), external_ip=None, **kwargs):
        return UIExposer(
            cluster,
            reporter,
            waiter=waiter,
            addresses=lambda: list(addresses),
            external_ip=lambda: external_ip,
            **kwargs,
        )

    return factory


class TestUIExposer:
    """Tests for UIExposer.expose."""

    def test_reachable_urls(self, make_exposer, cluster, output):
        """Test that URLs answering with HTML are returned."""
        pages = {
            "http://10.0.0.5:31443/k0rdent-ui": _response("text/html; charset=utf-8"),
            "http://192.0.2.10:31443/k0rdent-ui": _response("application/json"),
        }
        exposer = make_exposer(["10.0.0.5", "192.0.2.10"], http_get=lambda url, timeout: pages[url])

        urls = exposer.expose()

        assert urls == ["http://10.0.0.5:31443/k0rdent-ui"]
        cluster.patch_service_type.assert_called_once_with(UI_NAMESPACE, UI_SERVICE, "NodePort")
        cluster.apply_ingress.assert_called_once()
        text = output.getvalue()
        assert "http://10.0.0.5/k0rdent-ui" in text
        assert "Password: s3cret" in text

    def test_external_ip_listed_first(self, make_exposer):
        """Test that the cloud public address comes first and is not repeated."""
        checked: list[str] = []

        def http_get(url, timeout):
            checked.append(url)
            return _response("text/html")

        exposer = make_exposer(["10.0.0.5", "203.0.113.7"], external_ip="203.0.113.7", http_get=http_get)

        urls = exposer.expose()

        assert urls == ["http://203.0.113.7:31443/k0rdent-ui", "http://10.0.0.5:31443/k0rdent-ui"]
        assert checked == urls

    def test_external_ip_without_local_addresses(self, make_exposer, cluster):
        """Test that a public address alone is enough to apply the ingress."""
        make_exposer([], external_ip="203.0.113.7", http_get=lambda url, timeout: _response("text/html")).expose()

        cluster.apply_ingress.assert_called_once()

    def test_unreachable_url(self, make_exposer):
        """Test that connection errors mark a URL as unreachable."""

        def refuse(url, timeout):
            raise requests.ConnectionError("refused")

        assert make_exposer(["10.0.0.5"], http_get=refuse).expose() == []

    def test_no_addresses(self, make_exposer, cluster, output):
        """Test that port-forwarding is suggested without addresses."""
        assert make_exposer().expose() == []
        cluster.apply_ingress.assert_not_called()
        assert "port-forward" in output.getvalue()

    def test_missing_service(self, make_exposer, cluster):
        """Test that a missing UI service is an error."""
        cluster.service_exists.return_value = False

        with pytest.raises(ClusterOperationError, match="service"):
            make_exposer(["10.0.0.5"]).expose()

    def test_node_port_failure_is_a_warning(self, make_exposer, cluster, output):
        """Test that a failing NodePort patch still applies the ingress."""
        cluster.patch_service_type.side_effect = ClusterOperationError("forbidden")

        urls = make_exposer(["10.0.0.5"]).expose()

        assert urls == []
        cluster.apply_ingress.assert_called_once()
        assert "Failed to expose the UI service as NodePort" in output.getvalue()

    def test_password_not_available(self, make_exposer, cluster, output):
        """Test the message when no password is set."""
        cluster.deployment_env_var.return_value = None

        make_exposer().expose()

        assert "Basic Auth credentials: not available" in output.getvalue()
