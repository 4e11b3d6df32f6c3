"""k0rdentd: installer for k0s and k0rdent, online or air-gapped.

This package installs a single-node k0s cluster running the k0rdent
management plane, provisions cloud credentials into it, and serves
air-gap bundles from a local OCI registry.

Example usage:
    from k0rdentd import Installer, Reporter, load_config

    # Install with the configuration from a file
    installer = Installer(load_config("k0rdentd.yaml"), Reporter())
    results = installer.install()
"""

__version__ = "0.3.0"

from k0rdentd.cli import cli
from k0rdentd.config import InstallationConfig, load_config
from k0rdentd.console import Reporter
from k0rdentd.exceptions import (
    BundleError,
    ClusterConnectionError,
    ConfigurationError,
    ImagePushError,
    InstallationError,
    K0rdentdError,
    ProvisioningError,
    RegistryError,
    WaitTimeoutError,
)
from k0rdentd.installer import Installer
from k0rdentd.waiter import Waiter

__all__ = [
    # Version
    "__version__",
    # Main CLI
    "cli",
    # Classes
    "InstallationConfig",
    "Installer",
    "Reporter",
    "Waiter",
    "load_config",
    # Exceptions
    "K0rdentdError",
    "BundleError",
    "ClusterConnectionError",
    "ConfigurationError",
    "ImagePushError",
    "InstallationError",
    "ProvisioningError",
    "RegistryError",
    "WaitTimeoutError",
]
