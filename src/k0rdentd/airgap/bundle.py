"""Introspection of k0rdent air-gap bundles.

A bundle is either a gzip-compressed tarball or an already extracted
directory. It holds the k0rdent enterprise chart under ``charts/`` and
one OCI archive (``.tar``) per image.
"""

import io
import tarfile
import tempfile
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path, PurePosixPath

from icecream import ic

from k0rdentd.exceptions import BundleError
from k0rdentd.models import ImageReference

CHART_NAME = "k0rdent-enterprise"
CHART_MANIFEST = "Chart.yaml"
ARCHIVE_SUFFIX = ".tar"
COMPRESSED_SUFFIXES = (".tar.gz", ".tgz")
# Helper binaries shipped inside some bundles that are not images
_NOT_AN_IMAGE = "skopeo"


def parse_chart_version(content: str) -> str:
    """Return the ``version:`` value of a chart manifest.

    The manifest is scanned line by line; the first ``version:`` line
    wins and surrounding quotes are stripped.

    Args:
        content: The Chart.yaml text.

    Returns:
        The non-empty version string.

    Raises:
        BundleError: If the field is empty or absent.

    """
    for line in content.splitlines():
        trimmed = line.strip()
        if not trimmed.startswith("version:"):
            continue
        version = trimmed.removeprefix("version:").strip().strip('"').strip("'")
        if not version:
            raise BundleError("version field is empty")
        return version
    raise BundleError(f"version field not found in {CHART_MANIFEST}")


def _version_from_chart_archive(path: Path) -> str:
    """Read the chart version from a chart stored as a nested tar archive."""
    with tarfile.open(fileobj=io.BytesIO(path.read_bytes()), mode="r:*") as tar:
        for member in tar:
            if member.isfile() and PurePosixPath(member.name).name == CHART_MANIFEST:
                extracted = tar.extractfile(member)
                if extracted is not None:
                    return parse_chart_version(extracted.read().decode())
    raise BundleError(f"{CHART_MANIFEST} not found in {path.name}")


def _version_from_directory(bundle: Path) -> str:
    charts = bundle / "charts"
    if not charts.is_dir():
        raise BundleError(f"charts directory not found in {bundle}")

    for entry in sorted(charts.iterdir()):
        if not entry.name.startswith(CHART_NAME):
            continue
        if entry.is_dir():
            manifest = entry / CHART_MANIFEST
            try:
                return parse_chart_version(manifest.read_text())
            except OSError as e:
                raise BundleError(f"Failed to read {manifest}: {e.strerror}") from e
        if entry.is_file() and entry.name.endswith(ARCHIVE_SUFFIX):
            try:
                return _version_from_chart_archive(entry)
            except (BundleError, tarfile.TarError, OSError) as e:
                ic(entry, e)
                continue
    raise BundleError(f"k0rdent {CHART_MANIFEST} not found in bundle directory {bundle}")


def _version_from_tarball(bundle: Path) -> str:
    try:
        with tarfile.open(bundle, mode="r|gz") as tar:
            for member in tar:
                if CHART_NAME in member.name and member.name.endswith(CHART_MANIFEST) and member.isfile():
                    extracted = tar.extractfile(member)
                    if extracted is not None:
                        return parse_chart_version(extracted.read().decode())
    except (tarfile.TarError, OSError) as e:
        raise BundleError(f"Failed to read bundle {bundle}: {e}") from e
    raise BundleError(f"k0rdent {CHART_MANIFEST} not found in bundle {bundle}")


def extract_version(bundle_path: str | Path) -> str:
    """Derive the k0rdent version from a bundle.

    Args:
        bundle_path: Path to a bundle tarball or extracted directory.

    Returns:
        The chart version.

    Raises:
        BundleError: If the bundle cannot be read or has no usable version.

    """
    bundle = Path(bundle_path)
    if bundle.is_dir():
        return _version_from_directory(bundle)
    if not bundle.exists():
        raise BundleError(f"bundle not found: {bundle}")
    return _version_from_tarball(bundle)


def is_compressed(bundle_path: str | Path) -> bool:
    return str(bundle_path).endswith(COMPRESSED_SUFFIXES)


@contextmanager
def opened_bundle(bundle_path: str | Path) -> Generator[Path, None, None]:
    """Yield a directory with the bundle contents.

    Compressed bundles are extracted into a temporary directory that is
    removed on exit; directories are yielded as they are.

    Raises:
        BundleError: If the bundle does not exist or cannot be extracted.

    """
    bundle = Path(bundle_path)
    if not bundle.exists():
        raise BundleError(f"bundle not found: {bundle}")
    if bundle.is_dir():
        yield bundle
        return
    if not is_compressed(bundle):
        raise BundleError(f"unsupported bundle format: {bundle} (expected a directory, .tar.gz or .tgz)")

    with tempfile.TemporaryDirectory(prefix="k0rdent-bundle-") as tmp:
        try:
            with tarfile.open(bundle, "r:gz") as tar:
                tar.extractall(path=tmp, filter="data")
        except (tarfile.TarError, OSError) as e:
            raise BundleError(f"Failed to extract bundle {bundle}: {e}") from e
        yield Path(tmp)


def find_image_archives(bundle_root: Path) -> list[Path]:
    """List every image archive under the bundle root, sorted by path."""
    archives = [
        path
        for path in bundle_root.rglob(f"*{ARCHIVE_SUFFIX}")
        if path.is_file() and _NOT_AN_IMAGE not in path.relative_to(bundle_root).as_posix()
    ]
    return sorted(archives)


def path_to_image_ref(archive: Path, bundle_root: Path) -> ImageReference:
    """Derive the image reference of an archive from its path in the bundle.

    The file name, without ``.tar``, is split on its last ``_``, or else
    its last ``:``, into name and tag; the tag is ``latest`` when neither
    is present. The archive's directory becomes the repository prefix.

    Args:
        archive: Path of the image archive.
        bundle_root: Root directory of the bundle.

    Returns:
        The repository path and tag.

    """
    relative = PurePosixPath(archive.relative_to(bundle_root).as_posix())
    filename = relative.name.removesuffix(ARCHIVE_SUFFIX)

    if "_" in filename:
        name, _, tag = filename.rpartition("_")
    elif ":" in filename:
        name, _, tag = filename.rpartition(":")
    else:
        name, tag = filename, "latest"

    parent = relative.parent.as_posix()
    repository = name if parent == "." else f"{parent}/{name}"
    return ImageReference(repository=repository, tag=tag)
