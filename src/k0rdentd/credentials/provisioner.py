"""Check-then-create provisioning of cluster objects.

A ResourceSpec names the object; an existence check decides whether the
creation action runs at all, so a repeated run makes no write calls for
objects that are already there.
"""

from collections.abc import Callable

from kubernetes.client.exceptions import ApiException

from k0rdentd.console import Reporter
from k0rdentd.exceptions import K0rdentdError, ProvisioningError
from k0rdentd.models import Outcome, ResourceSpec

_HTTP_NOT_FOUND = 404

ExistsCheck = Callable[[], bool]
CreateAction = Callable[[], None]


class Provisioner:
    """Creates cluster objects only when they do not exist yet."""

    def __init__(self, reporter: Reporter) -> None:
        self._reporter = reporter

    def ensure(self, spec: ResourceSpec, exists: ExistsCheck, create: CreateAction) -> Outcome:
        """Create the object described by ``spec`` unless it already exists.

        Args:
            spec: Identity of the object.
            exists: Returns True when the object is present. A "not found"
                API error counts as absent.
            create: Creates the object.

        Returns:
            Outcome.SKIPPED if the object existed, Outcome.OK if it was created.

        Raises:
            ProvisioningError: If existence cannot be decided or creation fails.

        """
        try:
            present = exists()
        except ApiException as e:
            if e.status != _HTTP_NOT_FOUND:
                raise ProvisioningError(f"failed to check if {spec} exists: {e.status} {e.reason}") from e
            present = False
        except K0rdentdError as e:
            raise ProvisioningError(f"failed to check if {spec} exists: {e}") from e

        if present:
            self._reporter.step(f"{spec} already exists, skipping")
            return Outcome.SKIPPED

        try:
            create()
        except (ApiException, K0rdentdError) as e:
            raise ProvisioningError(f"failed to create {spec}: {e}") from e

        self._reporter.success(f"Created {spec}")
        return Outcome.OK
