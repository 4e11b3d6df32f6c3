"""Custom exceptions for k0rdentd.

This module defines the exception hierarchy used throughout the application
to provide meaningful error messages and proper error handling. Lower layers
wrap third-party errors into these classes; only the CLI decides how they
are presented to the operator.
"""


class K0rdentdError(Exception):
    """Base exception for all k0rdentd errors.

    All custom exceptions in this package inherit from this class,
    allowing callers to catch all k0rdentd errors with a single
    except clause if desired.
    """

    pass


class ConfigurationError(K0rdentdError):
    """Raised when the k0rdentd configuration cannot be used.

    This can occur when:
    - An explicitly requested config file is missing or unreadable
    - The file is not valid YAML or has the wrong shape
    - Credential definitions fail validation
    """

    pass


class BinaryNotFoundError(K0rdentdError):
    """Raised when a required binary (k0s, skopeo, cosign, registry) is not found.

    This can occur when:
    - The binary is not installed
    - The binary is not in the system PATH
    - The build does not embed the binary
    """

    pass


class CommandError(K0rdentdError):
    """Raised when an external command exits with a non-zero status.

    Attributes:
        command: The command line that was executed.
        returncode: The exit status of the command.
        stderr: Captured standard error, stripped.

    """

    def __init__(self, message: str, *, command: list[str], returncode: int, stderr: str = "") -> None:
        details = f" - {stderr}" if stderr else ""
        super().__init__(f"{message} (exit code {returncode}){details}")
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class DownloadError(K0rdentdError):
    """Raised when a remote resource (install script, signing key) cannot be fetched."""

    pass


class UnsupportedPlatformError(K0rdentdError):
    """Raised when the current platform is not supported.

    k0rdentd supports Linux on these CPU architectures:
    - x86_64 (amd64)
    - aarch64 (arm64)
    - armv7l (arm)
    """

    pass


class ClusterConnectionError(K0rdentdError):
    """Raised when connection to the Kubernetes cluster fails.

    This can occur when:
    - The admin kubeconfig cannot be produced or parsed
    - The API server is unreachable
    - Authentication fails
    """

    pass


class ClusterOperationError(K0rdentdError):
    """Raised when a Kubernetes API call fails for a reason other than connectivity."""

    pass


class WaitTimeoutError(K0rdentdError):
    """Raised when a readiness wait exceeds its time budget.

    Attributes:
        description: Human-readable description of what was awaited.
        timeout: The budget in seconds that elapsed.

    """

    def __init__(self, description: str, timeout: float) -> None:
        super().__init__(f"timeout after {timeout:g}s waiting for {description}")
        self.description = description
        self.timeout = timeout


class WaitCancelledError(K0rdentdError):
    """Raised when a readiness wait is cancelled before its condition holds."""

    pass


class ProvisioningError(K0rdentdError):
    """Raised when a cluster object cannot be checked or created."""

    pass


class BundleError(K0rdentdError):
    """Raised when an air-gap bundle cannot be read or introspected.

    This can occur when:
    - The bundle path does not exist or is not a tar.gz or directory
    - No chart manifest is found inside the bundle
    - The chart manifest has an empty or missing version field
    """

    pass


class SignatureVerificationError(K0rdentdError):
    """Raised when the bundle signature is missing or does not verify."""

    pass


class RegistryError(K0rdentdError):
    """Raised when the local registry cannot be started, kept alive or stopped."""

    pass


class ImagePushError(K0rdentdError):
    """Raised after a batch push when at least one image failed.

    Attributes:
        failed: Number of images that could not be pushed.
        total: Number of images attempted.

    """

    def __init__(self, failed: int, total: int) -> None:
        super().__init__(f"failed to push {failed} out of {total} images")
        self.failed = failed
        self.total = total


class AssetError(K0rdentdError):
    """Raised when an embedded binary cannot be extracted from the build."""

    pass


class InstallationError(K0rdentdError):
    """Raised when a fatal installation phase fails.

    Attributes:
        phase: The phase that failed.

    """

    def __init__(self, phase: str, cause: Exception) -> None:
        super().__init__(f"{phase} failed: {cause}")
        self.phase = phase
        self.cause = cause
