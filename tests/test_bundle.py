"""Tests for airgap/bundle.py module."""

import io
import tarfile
from pathlib import Path

import pytest

from k0rdentd.airgap.bundle import (
    extract_version,
    find_image_archives,
    opened_bundle,
    parse_chart_version,
    path_to_image_ref,
)
from k0rdentd.exceptions import BundleError
from k0rdentd.models import ImageReference

CHART = 'apiVersion: v2\nname: k0rdent-enterprise\nversion: "1.2.3"\nappVersion: 1.2.3\n'


def _add_file(tar: tarfile.TarFile, name: str, content: bytes) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(content)
    tar.addfile(info, io.BytesIO(content))


def _chart_archive(manifest: str) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        _add_file(tar, "k0rdent-enterprise/Chart.yaml", manifest.encode())
        _add_file(tar, "k0rdent-enterprise/values.yaml", b"image: {}\n")
    return buffer.getvalue()


def _tarball(path: Path, files: dict[str, bytes]) -> Path:
    with tarfile.open(path, "w:gz") as tar:
        for name, content in files.items():
            _add_file(tar, name, content)
    return path


class TestParseChartVersion:
    """Tests for parse_chart_version function."""

    def test_double_quotes_are_stripped(self):
        """Test that a quoted version is returned without quotes."""
        assert parse_chart_version(CHART) == "1.2.3"

    def test_single_quotes_are_stripped(self):
        """Test single-quoted versions."""
        assert parse_chart_version("version: '2.0.0'\n") == "2.0.0"

    def test_first_match_wins(self):
        """Test that the first version line is used."""
        assert parse_chart_version("version: 1.0.0\nversion: 2.0.0\n") == "1.0.0"

    def test_empty_version_fails(self):
        """Test that an empty value is an error, never an empty string."""
        with pytest.raises(BundleError, match="version field is empty"):
            parse_chart_version('name: x\nversion: ""\n')

    def test_missing_version_fails(self):
        """Test that a missing field is an error."""
        with pytest.raises(BundleError, match="version field not found"):
            parse_chart_version("name: x\n")


class TestExtractVersion:
    """Tests for extract_version function."""

    def test_directory_with_chart_directory(self, tmp_path):
        """Test a bundle directory holding an unpacked chart."""
        chart_dir = tmp_path / "charts" / "k0rdent-enterprise"
        chart_dir.mkdir(parents=True)
        (chart_dir / "Chart.yaml").write_text(CHART)

        assert extract_version(tmp_path) == "1.2.3"

    def test_directory_with_nested_chart_archive(self, tmp_path):
        """Test a bundle directory holding the chart as a tar archive."""
        charts = tmp_path / "charts"
        charts.mkdir()
        (charts / "k0rdent-enterprise_1.2.3.tar").write_bytes(_chart_archive("version: 1.2.3\n"))

        assert extract_version(tmp_path) == "1.2.3"

    def test_directory_skips_unreadable_chart_archive(self, tmp_path):
        """Test that a corrupt chart archive is skipped for the next candidate."""
        charts = tmp_path / "charts"
        charts.mkdir()
        (charts / "k0rdent-enterprise_0-broken.tar").write_bytes(b"not a tar archive")
        (charts / "k0rdent-enterprise_1.2.3.tar").write_bytes(_chart_archive("version: 1.2.3\n"))

        assert extract_version(tmp_path) == "1.2.3"

    def test_directory_without_charts(self, tmp_path):
        """Test that a directory without charts/ is an error."""
        with pytest.raises(BundleError, match="charts directory not found"):
            extract_version(tmp_path)

    def test_tarball(self, tmp_path):
        """Test a gzip-compressed bundle."""
        bundle = _tarball(
            tmp_path / "bundle.tar.gz",
            {
                "images/k0sproject/k0s_v1.32.8-k0s.0.tar": b"image",
                "charts/k0rdent-enterprise/Chart.yaml": CHART.encode(),
            },
        )

        assert extract_version(bundle) == "1.2.3"

    def test_tarball_with_empty_version(self, tmp_path):
        """Test that an empty version inside a tarball fails."""
        bundle = _tarball(tmp_path / "bundle.tar.gz", {"charts/k0rdent-enterprise/Chart.yaml": b"version:\n"})

        with pytest.raises(BundleError, match="version field is empty"):
            extract_version(bundle)

    def test_tarball_without_chart(self, tmp_path):
        """Test that a tarball without the chart manifest fails."""
        bundle = _tarball(tmp_path / "bundle.tar.gz", {"images/a_1.tar": b"image"})

        with pytest.raises(BundleError, match="not found in bundle"):
            extract_version(bundle)

    def test_missing_bundle(self, tmp_path):
        """Test that a missing path fails."""
        with pytest.raises(BundleError, match="bundle not found"):
            extract_version(tmp_path / "missing.tar.gz")


class TestPathToImageRef:
    """Tests for path_to_image_ref function."""

    @pytest.mark.parametrize(
        ("relative", "expected"),
        [
            ("charts/k0rdent-enterprise_1.2.2.tar", ImageReference("charts/k0rdent-enterprise", "1.2.2")),
            ("k0sproject/k0s:v1.32.8-k0s.0.tar", ImageReference("k0sproject/k0s", "v1.32.8-k0s.0")),
            ("k0sproject/pause.tar", ImageReference("k0sproject/pause", "latest")),
            ("busybox_1.36.tar", ImageReference("busybox", "1.36")),
            ("a/b/c/cert_manager_v1.0.tar", ImageReference("a/b/c/cert_manager", "v1.0")),
        ],
    )
    def test_examples(self, tmp_path, relative, expected):
        """Test the documented derivation examples."""
        assert path_to_image_ref(tmp_path / relative, tmp_path) == expected

    def test_deterministic(self, tmp_path):
        """Test that the same inputs always give the same reference."""
        archive = tmp_path / "charts" / "k0rdent-enterprise_1.2.2.tar"

        assert path_to_image_ref(archive, tmp_path) == path_to_image_ref(archive, tmp_path)

    def test_string_form(self, tmp_path):
        """Test the repository:tag rendering used for pushes."""
        assert str(path_to_image_ref(tmp_path / "k0sproject" / "k0s_v1.tar", tmp_path)) == "k0sproject/k0s:v1"


class TestFindImageArchives:
    """Tests for find_image_archives function."""

    def test_lists_archives_except_skopeo(self, tmp_path):
        """Test that only image archives are returned, sorted."""
        for name in ["b/img_1.tar", "a/img_2.tar", "skopeo/skopeo_1.tar", "a/readme.txt"]:
            path = tmp_path / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(b"x")

        archives = find_image_archives(tmp_path)

        assert archives == [tmp_path / "a" / "img_2.tar", tmp_path / "b" / "img_1.tar"]


class TestOpenedBundle:
    """Tests for opened_bundle context manager."""

    def test_directory_is_used_in_place(self, tmp_path):
        """Test that a directory bundle is not copied."""
        with opened_bundle(tmp_path) as root:
            assert root == tmp_path

    def test_tarball_is_extracted_and_removed(self, tmp_path):
        """Test that a tarball is extracted to a temporary directory."""
        bundle = _tarball(tmp_path / "bundle.tar.gz", {"images/img_1.tar": b"image"})

        with opened_bundle(bundle) as root:
            extracted = root
            assert (root / "images" / "img_1.tar").read_bytes() == b"image"

        assert not extracted.exists()

    def test_unsupported_format(self, tmp_path):
        """Test that other files are rejected."""
        bundle = tmp_path / "bundle.zip"
        bundle.write_bytes(b"zip")

        with pytest.raises(BundleError, match="unsupported bundle format"), opened_bundle(bundle):
            pass
