"""Bounded-concurrency push of bundle images into a registry.

Each image archive is copied with skopeo by a worker of a thread pool.
A failing image never stops the others; failures are counted and
reported once every push has finished.
"""

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

from k0rdentd import commands
from k0rdentd.airgap.bundle import path_to_image_ref
from k0rdentd.config import DEFAULT_PUSH_WORKERS
from k0rdentd.console import Reporter
from k0rdentd.exceptions import ImagePushError, K0rdentdError
from k0rdentd.models import ImageReference

PushFunc = Callable[[Path, ImageReference, str], None]


def skopeo_push(archive: Path, reference: ImageReference, registry: str) -> None:
    """Copy one OCI archive into ``registry`` with skopeo.

    Raises:
        BinaryNotFoundError: If skopeo is not installed.
        CommandError: If the copy fails.

    """
    commands.run(
        [
            "skopeo",
            "copy",
            "--insecure-policy",
            "--dest-tls-verify=false",
            f"oci-archive:{archive}",
            f"docker://{registry}/{reference}",
        ],
        f"push {reference}",
    )


@dataclass(slots=True)
class PushSummary:
    """Result of a batch push.

    Attributes:
        pushed: References pushed successfully.
        failed: References that failed, mapped to the error message.

    """

    pushed: list[ImageReference] = field(default_factory=list)
    failed: dict[ImageReference, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.pushed) + len(self.failed)


class ImagePusher:
    """Pushes the image archives of a bundle into a registry.

    Attributes:
        registry: host:port of the destination registry.
        max_workers: Number of concurrent pushes.

    """

    def __init__(
        self,
        reporter: Reporter,
        registry: str,
        *,
        max_workers: int = DEFAULT_PUSH_WORKERS,
        push: PushFunc = skopeo_push,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._reporter = reporter
        self._push = push
        self.registry = registry
        self.max_workers = max_workers

    def push_all(self, archives: list[Path], bundle_root: Path) -> PushSummary:
        """Push every archive, then raise if any of them failed.

        Args:
            archives: Image archives found in the bundle.
            bundle_root: Root directory the image references are derived from.

        Returns:
            The summary when every image was pushed.

        Raises:
            ImagePushError: If at least one push failed, after all were attempted.

        """
        summary = PushSummary()
        if not archives:
            self._reporter.warning("No images found in bundle")
            return summary

        references = {archive: path_to_image_ref(archive, bundle_root) for archive in archives}
        self._reporter.info(f"Found {len(archives)} images to push to {self.registry}")

        with self._reporter.task_progress() as progress:
            task = progress.add_task("Pushing images", total=len(archives))

            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = {
                    executor.submit(self._push, archive, reference, self.registry): reference
                    for archive, reference in references.items()
                }
                for future in as_completed(futures):
                    reference = futures[future]
                    try:
                        future.result()
                    except (K0rdentdError, OSError) as e:
                        summary.failed[reference] = str(e)
                        self._reporter.warning(f"Failed to push {reference}: {e}")
                    else:
                        summary.pushed.append(reference)
                        self._reporter.debug(f"Pushed {reference}")
                    progress.advance(task)

        if summary.failed:
            raise ImagePushError(failed=len(summary.failed), total=summary.total)

        self._reporter.success(f"All {summary.total} images pushed to registry")
        return summary
