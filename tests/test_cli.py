"""Tests for cli.py module."""

from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from k0rdentd import __version__
from k0rdentd.cli import cli
from k0rdentd.exceptions import ClusterOperationError, InstallationError, WaitTimeoutError
from k0rdentd.models import BuildMetadata, Flavor

AIRGAP = BuildMetadata(
    flavor=Flavor.AIRGAP,
    version="1.0.0",
    k0s_version="v1.32.8+k0s.0",
    k0rdent_version="1.2.2",
    build_time="2025-01-01T00:00:00Z",
)
ONLINE = BuildMetadata(flavor=Flavor.ONLINE, version="1.0.0")


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "k0rdentd.yaml"
    path.write_text("k0rdent:\n  version: 1.3.0\n")
    return path


class TestCliHelp:
    """Tests for help output."""

    def test_help_flag(self, runner):
        """Test that --help lists the global options and commands."""
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        for text in ["--config-file", "--debug", "--dry-run", "install", "registry", "expose-ui"]:
            assert text in result.output


class TestVersion:
    """Tests for version and show-flavor commands."""

    def test_online_version(self, runner):
        """Test the version line of an online build."""
        with patch("k0rdentd.cli.get_metadata", return_value=ONLINE):
            result = runner.invoke(cli, ["version"])

        assert result.exit_code == 0
        assert f"k0rdentd version {__version__} (online)" in result.output

    def test_airgap_version(self, runner):
        """Test that air-gapped builds print embedded versions."""
        with patch("k0rdentd.cli.get_metadata", return_value=AIRGAP):
            result = runner.invoke(cli, ["version"])

        assert "(airgap)" in result.output
        assert "k0s version: v1.32.8+k0s.0" in result.output

    def test_show_flavor(self, runner):
        """Test the flavor report."""
        with patch("k0rdentd.cli.get_metadata", return_value=AIRGAP):
            result = runner.invoke(cli, ["show-flavor"])

        assert result.exit_code == 0
        assert "Build Flavor: airgap" in result.output
        assert "K0rdent Version: 1.2.2" in result.output
        assert "Build Time: 2025-01-01T00:00:00Z" in result.output


class TestConfigCommands:
    """Tests for the config command group."""

    def test_show(self, runner, config_file):
        """Test that the effective configuration is printed as YAML."""
        result = runner.invoke(cli, ["-c", str(config_file), "config", "show"])

        assert result.exit_code == 0
        assert "version: 1.3.0" in result.output

    def test_show_missing_explicit_file(self, runner, tmp_path):
        """Test that a missing explicit file fails."""
        result = runner.invoke(cli, ["-c", str(tmp_path / "missing.yaml"), "config", "show"])

        assert result.exit_code == 1
        assert "Failed to read config file" in result.output

    def test_validate_valid(self, runner, config_file):
        """Test a valid configuration."""
        result = runner.invoke(cli, ["-c", str(config_file), "config", "validate"])

        assert result.exit_code == 0
        assert "Configuration is valid" in result.output

    def test_validate_invalid(self, runner, tmp_path):
        """Test that problems are listed with a non-zero exit."""
        path = tmp_path / "bad.yaml"
        path.write_text("k0rdent:\n  credentials:\n    azure:\n      - name: az\n")

        result = runner.invoke(cli, ["-c", str(path), "config", "validate"])

        assert result.exit_code == 1
        assert "missing subscriptionID" in result.output

    def test_init(self, runner, tmp_path):
        """Test that a default configuration is written."""
        target = tmp_path / "out" / "k0rdentd.yaml"

        result = runner.invoke(cli, ["config", "init", "-o", str(target)])

        assert result.exit_code == 0
        assert "k0rdent:" in target.read_text()

    def test_init_dry_run(self, runner, tmp_path):
        """Test that a dry run writes nothing."""
        target = tmp_path / "k0rdentd.yaml"

        result = runner.invoke(cli, ["--dry-run", "config", "init", "-o", str(target)])

        assert result.exit_code == 0
        assert not target.exists()


class TestInstall:
    """Tests for install command."""

    def test_dry_run(self, runner, config_file):
        """Test that a dry run prints the plan and touches nothing."""
        with (
            patch("k0rdentd.cli.get_metadata", return_value=ONLINE),
            patch("k0rdentd.cli.Runtime") as mock_runtime,
        ):
            result = runner.invoke(cli, ["-c", str(config_file), "--dry-run", "install"])

        assert result.exit_code == 0
        assert "Dry run mode" in result.output
        mock_runtime.return_value.check.assert_not_called()
        mock_runtime.return_value.install_controller.assert_not_called()

    def test_invalid_configuration(self, runner, tmp_path):
        """Test that validation problems stop the installation."""
        path = tmp_path / "bad.yaml"
        path.write_text("k0rdent:\n  credentials:\n    aws:\n      - name: aws\n")

        with patch("k0rdentd.cli.Installer") as mock_installer:
            result = runner.invoke(cli, ["-c", str(path), "install"])

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output
        mock_installer.assert_not_called()

    def test_installs_missing_binary(self, runner, config_file):
        """Test that an online build installs k0s with the version override."""
        with (
            patch("k0rdentd.cli.get_metadata", return_value=ONLINE),
            patch("k0rdentd.cli.Runtime") as mock_runtime,
            patch("k0rdentd.cli.Installer") as mock_installer,
            patch("k0rdentd.cli.UIExposer"),
        ):
            mock_runtime.return_value.check.return_value = MagicMock(installed=False)
            mock_installer.return_value.install.return_value = []
            result = runner.invoke(cli, ["-c", str(config_file), "install", "-k", "v1.33.0+k0s.0"])

        assert result.exit_code == 0
        mock_runtime.return_value.install_binary.assert_called_once_with("v1.33.0+k0s.0")

    def test_ui_failure_is_a_warning(self, runner, config_file):
        """Test that failing to expose the UI does not fail the install."""
        with (
            patch("k0rdentd.cli.get_metadata", return_value=AIRGAP),
            patch("k0rdentd.cli.Runtime"),
            patch("k0rdentd.cli.Installer") as mock_installer,
            patch("k0rdentd.cli.UIExposer") as mock_exposer,
        ):
            mock_installer.return_value.install.return_value = []
            mock_exposer.return_value.expose.side_effect = ClusterOperationError("no service")
            result = runner.invoke(cli, ["-c", str(config_file), "install"])

        assert result.exit_code == 0
        assert "Failed to expose the k0rdent UI" in result.output

    def test_fatal_phase_exits_non_zero(self, runner, config_file):
        """Test that a fatal phase is reported with exit status 1."""
        with (
            patch("k0rdentd.cli.get_metadata", return_value=AIRGAP),
            patch("k0rdentd.cli.Runtime"),
            patch("k0rdentd.cli.Installer") as mock_installer,
        ):
            mock_installer.return_value.install.side_effect = InstallationError(
                "RuntimeReady", WaitTimeoutError("k0s to become ready", 300)
            )
            result = runner.invoke(cli, ["-c", str(config_file), "install"])

        assert result.exit_code == 1
        assert "RuntimeReady failed" in result.output


class TestUninstall:
    """Tests for uninstall command."""

    def test_dry_run(self, runner):
        """Test that a dry run only lists the steps."""
        with patch("k0rdentd.cli.Runtime") as mock_runtime:
            result = runner.invoke(cli, ["--dry-run", "uninstall"])

        assert result.exit_code == 0
        assert "k0s reset" in result.output
        mock_runtime.return_value.uninstall.assert_not_called()

    def test_declined(self, runner):
        """Test that declining the prompt aborts."""
        with (
            patch("k0rdentd.cli.questionary.confirm") as mock_confirm,
            patch("k0rdentd.cli.Runtime") as mock_runtime,
        ):
            mock_confirm.return_value.ask.return_value = False
            result = runner.invoke(cli, ["uninstall"])

        assert result.exit_code == 1
        mock_runtime.return_value.uninstall.assert_not_called()

    def test_force(self, runner):
        """Test that --force skips the prompt."""
        with (
            patch("k0rdentd.cli.questionary.confirm") as mock_confirm,
            patch("k0rdentd.cli.Runtime") as mock_runtime,
        ):
            result = runner.invoke(cli, ["uninstall", "--force"])

        assert result.exit_code == 0
        mock_confirm.assert_not_called()
        mock_runtime.return_value.uninstall.assert_called_once()


class TestRegistry:
    """Tests for registry command."""

    def test_bundle_path_required(self, runner):
        """Test that the bundle path is mandatory."""
        result = runner.invoke(cli, ["registry"], env={"K0RDENTD_AIRGAP_BUNDLE_PATH": None})

        assert result.exit_code == 2

    def test_dry_run(self, runner, tmp_path):
        """Test the dry-run plan."""
        result = runner.invoke(
            cli, ["--dry-run", "registry", "-b", str(tmp_path), "--no-verify", "--push-workers", "3"]
        )

        assert result.exit_code == 0
        assert "Skip signature verification" in result.output
        assert "3 workers" in result.output

    def test_port_in_use(self, runner, tmp_path):
        """Test that a busy port is reported before anything starts."""
        with patch("k0rdentd.cli.RegistryDaemon") as mock_daemon:
            mock_daemon.return_value.is_port_in_use.return_value = True
            result = runner.invoke(cli, ["registry", "-b", str(tmp_path), "-p", "5001"])

        assert result.exit_code == 1
        assert "port 5001 is already in use" in result.output
        mock_daemon.return_value.run.assert_not_called()

    def test_invalid_push_workers(self, runner, tmp_path):
        """Test that zero push workers is rejected by option parsing."""
        result = runner.invoke(cli, ["registry", "-b", str(tmp_path), "--push-workers", "0"])

        assert result.exit_code == 2


class TestExportWorkerArtifacts:
    """Tests for export-worker-artifacts command."""

    def test_online_build_fails(self, runner, tmp_path):
        """Test that online builds refuse to export."""
        with patch("k0rdentd.cli.is_airgap", return_value=False):
            result = runner.invoke(cli, ["export-worker-artifacts", "-o", str(tmp_path / "out")])

        assert result.exit_code == 1
        assert "only available in airgap builds" in result.output

    def test_airgap_build_exports(self, runner, tmp_path):
        """Test that the exporter runs with the given paths."""
        with (
            patch("k0rdentd.cli.is_airgap", return_value=True),
            patch("k0rdentd.cli.WorkerExporter") as mock_exporter,
        ):
            result = runner.invoke(
                cli, ["export-worker-artifacts", "-o", str(tmp_path / "out"), "-b", "/opt/bundle.tar.gz"]
            )

        assert result.exit_code == 0
        mock_exporter.return_value.export.assert_called_once_with(tmp_path / "out")
        assert mock_exporter.call_args[1]["bundle_path"] == "/opt/bundle.tar.gz"
