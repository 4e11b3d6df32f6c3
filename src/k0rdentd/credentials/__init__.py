"""Idempotent provisioning of cloud credentials into the management cluster."""

from k0rdentd.credentials.manager import CredentialManager, CredentialResult, required_providers
from k0rdentd.credentials.provisioner import Provisioner

__all__ = [
    "CredentialManager",
    "CredentialResult",
    "Provisioner",
    "required_providers",
]
