"""Data models for k0rdentd.

This module provides type-safe data structures shared across the
application: cluster object identities, image references, release and
phase outcomes, and build metadata.
"""

from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple


class Flavor(str, Enum):
    """Build flavor of the k0rdentd distribution.

    Inherits from str to allow direct use in string contexts
    (e.g., command output, JSON metadata).
    """

    ONLINE = "online"
    AIRGAP = "airgap"


class ProviderKind(str, Enum):
    """Cloud providers a credential can be defined for."""

    AWS = "aws"
    AZURE = "azure"
    OPENSTACK = "openstack"


class ResourceKind(str, Enum):
    """Kinds of cluster objects created by the provisioner."""

    SECRET = "Secret"
    AWS_IDENTITY = "AWSClusterStaticIdentity"
    AZURE_IDENTITY = "AzureClusterIdentity"
    CREDENTIAL = "Credential"


class ResourceSpec(NamedTuple):
    """Identity of a cluster object whose existence gates its creation.

    Attributes:
        kind: The object kind.
        namespace: The namespace, empty for cluster-scoped objects.
        name: The object name.

    """

    kind: ResourceKind
    namespace: str
    name: str

    def __str__(self) -> str:
        if not self.namespace:
            return f"{self.kind.value} {self.name}"
        return f"{self.kind.value} {self.namespace}/{self.name}"


class CustomResource(NamedTuple):
    """API coordinates of a custom resource type.

    Attributes:
        group: The API group.
        version: The API version within the group.
        plural: The plural resource name used in API paths.
        kind: The object kind.
        namespaced: Whether objects live in a namespace.

    """

    group: str
    version: str
    plural: str
    kind: str
    namespaced: bool = True

    @property
    def api_version(self) -> str:
        """The apiVersion field value, e.g. ``k0rdent.mirantis.com/v1beta1``."""
        return f"{self.group}/{self.version}"


class ImageReference(NamedTuple):
    """Repository path and tag under which an image is pushed.

    Attributes:
        repository: Repository path, including any namespace prefix.
        tag: The image tag.

    """

    repository: str
    tag: str

    def __str__(self) -> str:
        return f"{self.repository}:{self.tag}"


class ReleaseStatus(str, Enum):
    """Helm release status as stored by Helm in the cluster."""

    DEPLOYED = "deployed"
    FAILED = "failed"
    PENDING = "pending"
    UNKNOWN = "unknown"


class Outcome(str, Enum):
    """Result of a provisioning step or installation phase."""

    OK = "ok"
    SKIPPED = "skipped"
    WARNING = "warning"
    FATAL = "fatal"


class RuntimeCheck(NamedTuple):
    """Presence of the k0s binary on the host.

    Attributes:
        installed: Whether the binary is available.
        version: The reported version, empty when not installed.

    """

    installed: bool
    version: str


@dataclass(frozen=True, slots=True)
class PhaseResult:
    """Outcome of one installation phase.

    Attributes:
        phase: The phase name.
        outcome: How the phase ended.
        message: Human-readable detail for the summary.

    """

    phase: str
    outcome: Outcome
    message: str = ""


@dataclass(frozen=True, slots=True)
class BuildMetadata:
    """Information fixed when the distribution was built.

    Attributes:
        flavor: Online or air-gapped build.
        version: The k0rdentd version.
        k0s_version: The embedded k0s version (air-gapped builds).
        k0rdent_version: The embedded k0rdent version (air-gapped builds).
        build_time: Build timestamp.

    """

    flavor: Flavor = Flavor.ONLINE
    version: str = "dev"
    k0s_version: str = ""
    k0rdent_version: str = ""
    build_time: str = ""

    @property
    def is_airgap(self) -> bool:
        """Whether this is an air-gapped build."""
        return self.flavor is Flavor.AIRGAP
