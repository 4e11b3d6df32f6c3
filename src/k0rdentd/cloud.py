"""Public address detection on cloud virtual machines.

NAT-ed cloud instances only see their private addresses on local
interfaces. The public one is looked up from the metadata service of the
provider, identified by the BIOS vendor.
"""

import ipaddress
from collections.abc import Callable
from enum import Enum
from typing import NamedTuple

import requests
from icecream import ic

from k0rdentd import commands
from k0rdentd.console import Reporter
from k0rdentd.exceptions import K0rdentdError

_METADATA_TIMEOUT = 2

HttpGet = Callable[..., requests.Response]


class CloudProvider(str, Enum):
    """Cloud providers with a supported metadata service."""

    AWS = "aws"
    GCP = "gcp"
    AZURE = "azure"
    NONE = "none"


class MetadataEndpoint(NamedTuple):
    """Where a provider publishes the public address as plain text."""

    url: str
    headers: dict[str, str]


METADATA_ENDPOINTS = {
    CloudProvider.AWS: MetadataEndpoint("http://checkip.amazonaws.com", {}),
    CloudProvider.GCP: MetadataEndpoint(
        "http://metadata.google.internal/computeMetadata/v1/instance/network-interfaces/0/access-configs/0/external-ip",
        {"Metadata-Flavor": "Google"},
    ),
    CloudProvider.AZURE: MetadataEndpoint(
        "http://169.254.169.254/metadata/instance/network/interface/0/ipv4/ipAddress/0/publicIpAddress"
        "?api-version=2021-02-01&format=text",
        {"Metadata": "true"},
    ),
}


def provider_from_vendor(vendor: str) -> CloudProvider:
    """Map a BIOS vendor string to a cloud provider."""
    vendor = vendor.strip().lower()
    if "amazon" in vendor:
        return CloudProvider.AWS
    if "google" in vendor:
        return CloudProvider.GCP
    if "microsoft" in vendor:
        return CloudProvider.AZURE
    return CloudProvider.NONE


def bios_vendor() -> str:
    return commands.run(["dmidecode", "-s", "bios-vendor"], "read the BIOS vendor")


class CloudMetadata:
    """Looks up the public IPv4 address of the host, if it has one."""

    def __init__(
        self,
        reporter: Reporter,
        *,
        vendor: Callable[[], str] = bios_vendor,
        http_get: HttpGet = requests.get,
    ) -> None:
        self._reporter = reporter
        self._vendor = vendor
        self._http_get = http_get

    def detect_provider(self) -> CloudProvider:
        try:
            return provider_from_vendor(self._vendor())
        except K0rdentdError as e:
            self._reporter.debug(f"Cannot detect cloud provider from the BIOS vendor: {e}")
            return CloudProvider.NONE

    def external_ip(self) -> str | None:
        """Return the public address from the metadata service.

        Every failure is logged at debug level and yields None; the
        address is only an addition to the local ones.

        """
        provider = self.detect_provider()
        endpoint = METADATA_ENDPOINTS.get(provider)
        if endpoint is None:
            self._reporter.debug("No known cloud provider detected")
            return None

        try:
            response = self._http_get(endpoint.url, headers=endpoint.headers, timeout=_METADATA_TIMEOUT)
            response.raise_for_status()
        except requests.RequestException as e:
            self._reporter.debug(f"Failed to get the external IP from {provider.value} metadata: {e}")
            return None

        text = response.text.strip()
        ic(provider, text)
        try:
            address = ipaddress.IPv4Address(text)
        except ValueError:
            self._reporter.debug(f"{provider.value} metadata returned no IPv4 address: {text!r}")
            return None
        self._reporter.debug(f"Detected external IP {address} from {provider.value} metadata")
        return str(address)
