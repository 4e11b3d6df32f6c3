"""Installation orchestration for k0s and k0rdent.

An installation is a fixed sequence of phases. Each phase is idempotent:
it detects work that is already done and reports it as skipped, so an
interrupted installation can simply be run again. The sequence is a
declarative list of PhaseStep entries folded into PhaseResults; the
policy of a step decides whether its failure ends the run or is only
reported as a warning.
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from icecream import ic

from k0rdentd.airgap.prepare import prepare_airgap
from k0rdentd.build import get_metadata
from k0rdentd.cluster import Cluster
from k0rdentd.config import InstallationConfig
from k0rdentd.console import Reporter, highlight
from k0rdentd.credentials import CredentialManager, required_providers
from k0rdentd.exceptions import ClusterConnectionError, InstallationError, K0rdentdError
from k0rdentd.generator import generate_runtime_config, write_runtime_config
from k0rdentd.models import Flavor, Outcome, PhaseResult, ProviderKind, ReleaseStatus
from k0rdentd.runtime import K0S_CONFIG_PATH, Runtime
from k0rdentd.waiter import Waiter

K0RDENT_NAMESPACE = "kcm-system"

RUNTIME_READY_TIMEOUT = 5 * 60.0
APPLICATION_READY_TIMEOUT = 15 * 60.0
PROVIDERS_READY_TIMEOUT = 15 * 60.0

REQUIRED_DEPLOYMENTS = (
    "kcm-cert-manager",
    "kcm-cert-manager-cainjector",
    "kcm-cert-manager-webhook",
    "kcm-datasource-controller-manager",
    "kcm-k0rdent-enterprise-controller-manager",
    "kcm-k0rdent-ui",
    "kcm-rbac-manager",
)
# Disabled in air-gapped installations
TELEMETRY_DEPLOYMENT = "kcm-regional-telemetry"

PROVIDER_RELEASES = {
    ProviderKind.AWS: "cluster-api-provider-aws",
    ProviderKind.AZURE: "cluster-api-provider-azure",
}

ClusterFactory = Callable[[dict[str, Any]], Cluster]


class InstallPhase(str, Enum):
    """Phases of an installation, in execution order."""

    CONFIG_WRITTEN = "ConfigWritten"
    RUNTIME_INSTALLED = "RuntimeInstalled"
    RUNTIME_READY = "RuntimeReady"
    APPLICATION_READY = "ApplicationReady"
    PROVIDERS_READY = "DependentProvidersReady"
    CREDENTIALS_PROVISIONED = "CredentialsProvisioned"


class Policy(str, Enum):
    """What a failing phase means for the run."""

    FATAL = "fatal"
    BEST_EFFORT = "best-effort"


@dataclass(frozen=True, slots=True)
class PhaseStep:
    """One entry of the installation sequence.

    Attributes:
        phase: The phase this step completes.
        description: Human-readable summary, used by dry runs.
        run: Performs the phase and reports how it went.
        policy: Whether an exception ends the run or becomes a warning.
        enabled: Disabled steps are reported as skipped without running.

    """

    phase: InstallPhase
    description: str
    run: Callable[[], PhaseResult]
    policy: Policy = Policy.FATAL
    enabled: bool = True


def required_deployments(flavor: Flavor) -> list[str]:
    """Return the deployments that must be ready before k0rdent is usable."""
    deployments = list(REQUIRED_DEPLOYMENTS)
    if flavor is Flavor.ONLINE:
        deployments.append(TELEMETRY_DEPLOYMENT)
    return deployments


def dry_run_plan(flavor: Flavor, *, has_credentials: bool) -> list[str]:
    """Return the numbered description of what an installation would do."""
    if flavor is Flavor.AIRGAP:
        steps = [
            "Extract k0rdent version from bundle",
            "Extract k0s binary from embedded assets",
            "Configure containerd to pull from the local registry",
            f"Generate k0s configuration for airgap mode at {K0S_CONFIG_PATH}",
            "Install k0s with embedded binary",
            "k0s installs k0rdent from the local registry via its helm operator",
        ]
    else:
        steps = [
            f"Write k0s configuration to {K0S_CONFIG_PATH}",
            f"Execute: k0s install controller --config {K0S_CONFIG_PATH}",
            "Start k0s service",
            "Wait for k0rdent to be installed",
        ]
    if has_credentials:
        steps.append("Wait for cloud providers to be deployed")
        steps.append("Create cloud provider credentials")
    return [f"{number}. {step}" for number, step in enumerate(steps, start=1)]


class Installer:
    """Runs the installation phases against the local host.

    Attributes:
        config: The configuration of this run.
        flavor: Online or air-gapped installation.
        cluster: Client for the k0s API server, set once the runtime is ready.

    """

    def __init__(
        self,
        config: InstallationConfig,
        reporter: Reporter,
        *,
        runtime: Runtime | None = None,
        waiter: Waiter | None = None,
        cluster_factory: ClusterFactory | None = None,
        flavor: Flavor | None = None,
        config_path: Path = K0S_CONFIG_PATH,
        dry_run: bool = False,
    ) -> None:
        """Initialize the Installer.

        Args:
            config: The configuration of this run.
            reporter: Output channel.
            runtime: k0s lifecycle commands.
            waiter: Readiness waiter for every wait of the run.
            cluster_factory: Builds a Cluster from the admin kubeconfig.
            flavor: Overrides the flavor of the build.
            config_path: Where the k0s config is written.
            dry_run: Only describe the phases.

        """
        self.config = config
        self._reporter = reporter
        self._runtime = runtime if runtime is not None else Runtime(reporter, config_path=config_path)
        self._waiter = waiter if waiter is not None else Waiter(reporter)
        self._cluster_factory = cluster_factory or (lambda kubeconfig: Cluster.from_kubeconfig(kubeconfig, reporter))
        self.flavor = flavor if flavor is not None else get_metadata().flavor
        self._config_path = config_path
        self._dry_run = dry_run
        self.cluster: Cluster | None = None

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return f"Installer(flavor={self.flavor.value!r}, dry_run={self._dry_run})"

    def _require_cluster(self) -> Cluster:
        if self.cluster is None:
            raise ClusterConnectionError("Kubernetes client is not initialized")
        return self.cluster

    def write_config(self) -> PhaseResult:
        """Generate and write the k0s config, preparing the host first when air-gapped."""
        if self.flavor is Flavor.AIRGAP:
            document = prepare_airgap(self.config, self._reporter)
        else:
            document = generate_runtime_config(self.config)
        write_runtime_config(document, self._config_path)
        self._reporter.success(f"k0s configuration written to {highlight(str(self._config_path))}")
        return PhaseResult(InstallPhase.CONFIG_WRITTEN.value, Outcome.OK, str(self._config_path))

    def install_runtime(self) -> PhaseResult:
        """Install and start k0s unless it is already running."""
        phase = InstallPhase.RUNTIME_INSTALLED.value
        if self._runtime.is_running():
            self._reporter.success("k0s is already installed and running, skipping installation")
            return PhaseResult(phase, Outcome.SKIPPED, "already running")

        if self._runtime.is_installed():
            self._reporter.action("k0s is installed but not running, starting k0s")
            self._runtime.start()
            return PhaseResult(phase, Outcome.OK, "started")

        self._reporter.action("Installing k0s controller")
        self._runtime.install_controller()
        self._runtime.start()
        self._reporter.success("k0s installed and started")
        return PhaseResult(phase, Outcome.OK, "installed")

    def wait_runtime(self) -> PhaseResult:
        """Wait for the k0s API server and connect to it."""
        elapsed = self._waiter.wait_until("k0s to become ready", self._runtime.is_running, RUNTIME_READY_TIMEOUT)
        self._reporter.debug("Initializing Kubernetes client")
        self.cluster = self._cluster_factory(self._runtime.admin_kubeconfig())
        self._reporter.success("k0s is ready")
        return PhaseResult(InstallPhase.RUNTIME_READY.value, Outcome.OK, f"ready after {elapsed:.0f}s")

    def _application_ready(self, cluster: Cluster, deployments: list[str]) -> bool:
        return cluster.namespace_exists(K0RDENT_NAMESPACE) and cluster.are_deployments_ready(
            K0RDENT_NAMESPACE, deployments
        )

    def wait_application(self) -> PhaseResult:
        """Wait for the k0rdent namespace and all required deployments."""
        phase = InstallPhase.APPLICATION_READY.value
        cluster = self._require_cluster()
        deployments = required_deployments(self.flavor)
        ic(deployments)

        try:
            ready = self._application_ready(cluster, deployments)
        except K0rdentdError as e:
            self._reporter.debug(f"k0rdent readiness check failed: {e}")
            ready = False
        if ready:
            self._reporter.success("k0rdent is already installed and ready, skipping wait")
            return PhaseResult(phase, Outcome.SKIPPED, "already ready")

        elapsed = self._waiter.wait_until(
            f"namespace {K0RDENT_NAMESPACE}",
            lambda: cluster.namespace_exists(K0RDENT_NAMESPACE),
            APPLICATION_READY_TIMEOUT,
        )
        elapsed += self._waiter.wait_until(
            "k0rdent deployments to become ready",
            lambda: cluster.are_deployments_ready(K0RDENT_NAMESPACE, deployments),
            APPLICATION_READY_TIMEOUT - elapsed,
        )
        self._reporter.success("k0rdent is ready")
        return PhaseResult(phase, Outcome.OK, f"ready after {elapsed:.0f}s")

    def _providers_deployed(self, cluster: Cluster, releases: list[str]) -> bool:
        if not cluster.namespace_exists(K0RDENT_NAMESPACE):
            return False
        for release in releases:
            status = cluster.helm_release_status(K0RDENT_NAMESPACE, release)
            if status is not ReleaseStatus.DEPLOYED:
                self._reporter.debug(f"release {release} is {status.value}")
                return False
        return True

    def wait_providers(self) -> PhaseResult:
        """Wait for the cluster-api providers the configured credentials need."""
        phase = InstallPhase.PROVIDERS_READY.value
        cluster = self._require_cluster()
        releases = [PROVIDER_RELEASES[p] for p in required_providers(self.config.k0rdent.credentials)]
        if not releases:
            return PhaseResult(phase, Outcome.SKIPPED, "no providers needed")

        elapsed = self._waiter.wait_until(
            "cloud providers to be deployed",
            lambda: self._providers_deployed(cluster, releases),
            PROVIDERS_READY_TIMEOUT,
        )
        self._reporter.success(f"Cloud providers deployed: {', '.join(releases)}")
        return PhaseResult(phase, Outcome.OK, f"ready after {elapsed:.0f}s")

    def provision_credentials(self) -> PhaseResult:
        """Create the configured cloud credentials."""
        phase = InstallPhase.CREDENTIALS_PROVISIONED.value
        manager = CredentialManager(self._require_cluster(), self._reporter, namespace=K0RDENT_NAMESPACE)
        results = manager.create_all(self.config.k0rdent.credentials)

        failed = [r for r in results if r.outcome in (Outcome.WARNING, Outcome.FATAL)]
        if failed:
            names = ", ".join(r.name for r in failed)
            self._reporter.warning(
                f"Some credentials were not fully created ({names}); create them manually through the k0rdent UI"
            )
            return PhaseResult(phase, Outcome.WARNING, f"incomplete: {names}")
        if all(r.outcome is Outcome.SKIPPED for r in results):
            return PhaseResult(phase, Outcome.SKIPPED, "already present")
        return PhaseResult(phase, Outcome.OK, f"{len(results)} credential(s)")

    def steps(self) -> list[PhaseStep]:
        """Return the installation sequence for this configuration."""
        has_credentials = self.config.k0rdent.credentials.has_credentials
        return [
            PhaseStep(InstallPhase.CONFIG_WRITTEN, "Write k0s configuration", self.write_config),
            PhaseStep(InstallPhase.RUNTIME_INSTALLED, "Install and start k0s", self.install_runtime),
            PhaseStep(InstallPhase.RUNTIME_READY, "Wait for k0s", self.wait_runtime),
            PhaseStep(InstallPhase.APPLICATION_READY, "Wait for k0rdent", self.wait_application),
            PhaseStep(
                InstallPhase.PROVIDERS_READY,
                "Wait for cloud providers",
                self.wait_providers,
                policy=Policy.BEST_EFFORT,
                enabled=has_credentials,
            ),
            PhaseStep(
                InstallPhase.CREDENTIALS_PROVISIONED,
                "Create cloud credentials",
                self.provision_credentials,
                policy=Policy.BEST_EFFORT,
                enabled=has_credentials,
            ),
        ]

    def _run_step(self, step: PhaseStep) -> PhaseResult:
        if not step.enabled:
            return PhaseResult(step.phase.value, Outcome.SKIPPED, "no credentials configured")
        try:
            return step.run()
        except K0rdentdError as e:
            if step.policy is Policy.FATAL:
                raise InstallationError(step.phase.value, e) from e
            self._reporter.warning(f"{step.description}: {e}")
            return PhaseResult(step.phase.value, Outcome.WARNING, str(e))

    def install(self) -> list[PhaseResult]:
        """Run every phase in order.

        Returns:
            One result per phase; empty for a dry run.

        Raises:
            InstallationError: If a fatal phase fails; names the phase.

        """
        if self._dry_run:
            self._reporter.info("Dry run mode - showing what would be done:")
            for line in dry_run_plan(self.flavor, has_credentials=self.config.k0rdent.credentials.has_credentials):
                self._reporter.step(line)
            return []

        if self.flavor is Flavor.AIRGAP:
            self._reporter.info(f"Air-gapped installation (k0s {get_metadata().k0s_version or 'embedded'})")

        results: list[PhaseResult] = []
        for step in self.steps():
            result = self._run_step(step)
            ic(result)
            results.append(result)
        return results
