"""Tests for airgap/verifier.py module."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from k0rdentd.airgap.verifier import BundleVerifier, download_key, is_remote_key, signature_path
from k0rdentd.exceptions import CommandError, DownloadError, SignatureVerificationError


class TestHelpers:
    """Tests for key and signature helpers."""

    def test_remote_key(self):
        """Test remote key detection."""
        assert is_remote_key("https://get.mirantis.com/cosign.pub")
        assert not is_remote_key("/etc/k0rdentd/cosign.pub")

    def test_signature_path(self):
        """Test that the signature sits next to the bundle."""
        assert str(signature_path("/opt/bundle.tar.gz")) == "/opt/bundle.tar.gz.sig"


class TestDownloadKey:
    """Tests for download_key function."""

    def test_not_found(self, tmp_path):
        """Test that a 404 is a download error."""
        response = MagicMock(status_code=404)
        response.__enter__.return_value = response

        with patch("k0rdentd.airgap.verifier.requests.get", return_value=response):
            with pytest.raises(DownloadError, match="cosign key not found"):
                download_key("https://example.com/cosign.pub", tmp_path)

    def test_connection_error(self, tmp_path):
        """Test that network errors are wrapped."""
        with patch("k0rdentd.airgap.verifier.requests.get", side_effect=requests.ConnectionError("down")):
            with pytest.raises(DownloadError, match="Failed to download cosign key"):
                download_key("https://example.com/cosign.pub", tmp_path)


class TestBundleVerifier:
    """Tests for BundleVerifier.verify."""

    def test_missing_signature(self, reporter, tmp_path):
        """Test that a bundle without signature fails verification."""
        bundle = tmp_path / "bundle.tar.gz"
        bundle.write_bytes(b"bundle")

        with patch("k0rdentd.airgap.verifier.commands.require", return_value="/usr/bin/cosign"):
            with pytest.raises(SignatureVerificationError, match="signature file not found"):
                BundleVerifier(reporter, key="/keys/cosign.pub").verify(bundle)

    def test_valid_signature(self, reporter, tmp_path, output):
        """Test that cosign is called with key, signature and bundle."""
        bundle = tmp_path / "bundle.tar.gz"
        bundle.write_bytes(b"bundle")
        signature_path(bundle).write_bytes(b"sig")

        with (
            patch("k0rdentd.airgap.verifier.commands.require", return_value="/usr/bin/cosign"),
            patch("k0rdentd.airgap.verifier.commands.run") as mock_run,
        ):
            BundleVerifier(reporter, key="/keys/cosign.pub").verify(bundle)

        args = mock_run.call_args[0][0]
        assert args == [
            "/usr/bin/cosign",
            "verify-blob",
            "--key",
            "/keys/cosign.pub",
            "--signature",
            f"{bundle}.sig",
            str(bundle),
        ]
        assert "Bundle signature verified" in output.getvalue()

    def test_invalid_signature(self, reporter, tmp_path):
        """Test that a cosign failure is a verification error."""
        bundle = tmp_path / "bundle.tar.gz"
        bundle.write_bytes(b"bundle")
        signature_path(bundle).write_bytes(b"sig")
        failure = CommandError("Failed to verify bundle signature", command=["cosign"], returncode=1)

        with (
            patch("k0rdentd.airgap.verifier.commands.require", return_value="/usr/bin/cosign"),
            patch("k0rdentd.airgap.verifier.commands.run", side_effect=failure),
        ):
            with pytest.raises(SignatureVerificationError, match="cosign verification failed"):
                BundleVerifier(reporter, key="/keys/cosign.pub").verify(bundle)
