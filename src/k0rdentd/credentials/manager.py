"""Cloud credential provisioning for k0rdent.

Every configured credential becomes up to three cluster objects: a
Secret with the secret material, a provider identity object (none for
OpenStack) and a k0rdent Credential referencing the identity. The three
are ensured in that order by one shared algorithm; providers only differ
in how the object bodies are built.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import yaml
from icecream import ic
from kubernetes.client.exceptions import ApiException

from k0rdentd.cluster import Cluster
from k0rdentd.config import (
    AwsCredential,
    AzureCredential,
    CredentialDefinition,
    CredentialSettings,
    OpenStackCredential,
)
from k0rdentd.console import Reporter, highlight
from k0rdentd.credentials.provisioner import Provisioner
from k0rdentd.exceptions import K0rdentdError, ProvisioningError
from k0rdentd.models import CustomResource, Outcome, ProviderKind, ResourceKind, ResourceSpec

NAMESPACE = "kcm-system"
COMPONENT_LABELS = {"k0rdent.mirantis.com/component": "kcm"}

AWS_IDENTITY = CustomResource(
    "infrastructure.cluster.x-k8s.io",
    "v1beta2",
    "awsclusterstaticidentities",
    ResourceKind.AWS_IDENTITY.value,
    namespaced=False,
)
AZURE_IDENTITY = CustomResource(
    "infrastructure.cluster.x-k8s.io",
    "v1beta1",
    "azureclusteridentities",
    ResourceKind.AZURE_IDENTITY.value,
)
CREDENTIAL = CustomResource("k0rdent.mirantis.com", "v1beta1", "credentials", ResourceKind.CREDENTIAL.value)


def secret_name(credential: CredentialDefinition) -> str:
    return f"{credential.name}-secret"


def identity_name(credential: CredentialDefinition) -> str:
    return f"{credential.name}-identity"


@dataclass(frozen=True)
class ObjectStep:
    """One object of a credential: its identity and how to check and create it."""

    spec: ResourceSpec
    exists: Callable[[], bool]
    create: Callable[[], None]


@dataclass(frozen=True)
class CredentialPlan:
    """The ordered objects that make up one credential.

    Attributes:
        credential: The credential definition the plan was built from.
        secret: The Secret holding the secret material.
        identity: The provider identity object, None for OpenStack.
        record: The k0rdent Credential object.

    """

    credential: CredentialDefinition
    secret: ObjectStep
    identity: ObjectStep | None
    record: ObjectStep

    def steps(self) -> list[ObjectStep]:
        return [step for step in (self.secret, self.identity, self.record) if step is not None]


@dataclass(frozen=True, slots=True)
class CredentialResult:
    """Outcome of provisioning one credential.

    Attributes:
        name: The credential name.
        provider: The credential's provider.
        outcome: OK or SKIPPED on success, WARNING when only part of the
            objects exist, FATAL when the secret could not be created.
        message: Failure detail, empty on success.

    """

    name: str
    provider: ProviderKind
    outcome: Outcome
    message: str = ""


def build_clouds_yaml(credential: OpenStackCredential) -> str:
    """Render the clouds.yaml stored in an OpenStack credential secret."""
    cloud: dict[str, Any] = {}
    if credential.uses_application_credential:
        cloud["auth"] = {
            "auth_url": credential.auth_url,
            "application_credential_id": credential.application_credential_id,
            "application_credential_secret": credential.application_credential_secret,
        }
        cloud["auth_type"] = "v3applicationcredential"
    else:
        cloud["auth"] = {
            "auth_url": credential.auth_url,
            "username": credential.username,
            "password": credential.password,
            "project_name": credential.project_name,
            "domain_name": credential.domain_name,
        }
    cloud["region_name"] = credential.region
    cloud["interface"] = "public"
    cloud["identity_api_version"] = 3
    return yaml.safe_dump({"clouds": {"openstack": cloud}}, sort_keys=False)


def required_providers(credentials: CredentialSettings) -> list[ProviderKind]:
    """Return the providers whose cluster-api release must be deployed first.

    OpenStack credentials need no provider release.
    """
    providers: list[ProviderKind] = []
    if credentials.aws:
        providers.append(ProviderKind.AWS)
    if credentials.azure:
        providers.append(ProviderKind.AZURE)
    return providers


class CredentialManager:
    """Creates k0rdent credentials in the management cluster idempotently."""

    def __init__(self, cluster: Cluster, reporter: Reporter, *, namespace: str = NAMESPACE) -> None:
        self._cluster = cluster
        self._reporter = reporter
        self._provisioner = Provisioner(reporter)
        self.namespace = namespace

    def _secret_step(self, credential: CredentialDefinition, data: dict[str, str]) -> ObjectStep:
        name = secret_name(credential)
        return ObjectStep(
            spec=ResourceSpec(ResourceKind.SECRET, self.namespace, name),
            exists=lambda: self._cluster.secret_exists(self.namespace, name),
            create=lambda: self._cluster.create_secret(self.namespace, name, data, labels=COMPONENT_LABELS),
        )

    def _custom_step(self, resource: CustomResource, body: dict[str, Any]) -> ObjectStep:
        name = body["metadata"]["name"]
        namespace = self.namespace if resource.namespaced else ""
        return ObjectStep(
            spec=ResourceSpec(ResourceKind(resource.kind), namespace, name),
            exists=lambda: self._cluster.custom_object_exists(resource, self.namespace, name),
            create=lambda: self._cluster.create_custom_object(resource, self.namespace, body),
        )

    def _metadata(self, name: str, resource: CustomResource, extra_labels: dict[str, str] | None = None) -> dict:
        metadata: dict[str, Any] = {"name": name, "labels": {**COMPONENT_LABELS, **(extra_labels or {})}}
        if resource.namespaced:
            metadata["namespace"] = self.namespace
        return metadata

    def _record_step(self, credential: CredentialDefinition, description: str, identity_ref: dict) -> ObjectStep:
        body = {
            "apiVersion": CREDENTIAL.api_version,
            "kind": CREDENTIAL.kind,
            "metadata": self._metadata(credential.name, CREDENTIAL),
            "spec": {"description": description, "identityRef": identity_ref},
        }
        return self._custom_step(CREDENTIAL, body)

    def _identity_ref(self, resource: CustomResource, name: str) -> dict[str, str]:
        ref = {"apiVersion": resource.api_version, "kind": resource.kind, "name": name}
        if resource.namespaced:
            ref["namespace"] = self.namespace
        return ref

    def plan(self, credential: CredentialDefinition) -> CredentialPlan:
        """Build the object plan for one credential.

        Args:
            credential: The credential definition.

        Returns:
            The secret, identity and Credential steps in creation order.

        """
        match credential:
            case AwsCredential():
                data = {
                    "AccessKeyID": credential.access_key_id,
                    "SecretAccessKey": credential.secret_access_key,
                }
                if credential.session_token:
                    data["SessionToken"] = credential.session_token
                identity = {
                    "apiVersion": AWS_IDENTITY.api_version,
                    "kind": AWS_IDENTITY.kind,
                    "metadata": self._metadata(identity_name(credential), AWS_IDENTITY),
                    "spec": {
                        "secretRef": secret_name(credential),
                        "allowedNamespaces": {"selector": {"matchLabels": {}}},
                    },
                }
                return CredentialPlan(
                    credential=credential,
                    secret=self._secret_step(credential, data),
                    identity=self._custom_step(AWS_IDENTITY, identity),
                    record=self._record_step(
                        credential,
                        f"AWS credentials for {credential.name} in region {credential.region}",
                        self._identity_ref(AWS_IDENTITY, identity_name(credential)),
                    ),
                )
            case AzureCredential():
                identity = {
                    "apiVersion": AZURE_IDENTITY.api_version,
                    "kind": AZURE_IDENTITY.kind,
                    "metadata": self._metadata(
                        identity_name(credential),
                        AZURE_IDENTITY,
                        {"clusterctl.cluster.x-k8s.io/move-hierarchy": "true"},
                    ),
                    "spec": {
                        "type": "ServicePrincipal",
                        "clientID": credential.client_id,
                        "tenantID": credential.tenant_id,
                        "allowedNamespaces": {},
                        "clientSecret": {"name": secret_name(credential), "namespace": self.namespace},
                    },
                }
                return CredentialPlan(
                    credential=credential,
                    secret=self._secret_step(credential, {"clientSecret": credential.client_secret}),
                    identity=self._custom_step(AZURE_IDENTITY, identity),
                    record=self._record_step(
                        credential,
                        f"Azure credentials for {credential.name} (subscription: {credential.subscription_id})",
                        self._identity_ref(AZURE_IDENTITY, identity_name(credential)),
                    ),
                )
            case OpenStackCredential():
                return CredentialPlan(
                    credential=credential,
                    secret=self._secret_step(credential, {"clouds.yaml": build_clouds_yaml(credential)}),
                    identity=None,
                    record=self._record_step(
                        credential,
                        f"OpenStack credentials for {credential.name} (region: {credential.region})",
                        {
                            "apiVersion": "v1",
                            "kind": "Secret",
                            "name": secret_name(credential),
                            "namespace": self.namespace,
                        },
                    ),
                )
        raise TypeError(f"Unsupported credential type: {type(credential).__name__}")

    def _all_exist(self, plan: CredentialPlan) -> bool:
        """Pre-check whether every object of a credential already exists."""
        try:
            return all(step.exists() for step in plan.steps())
        except (ApiException, K0rdentdError) as e:
            self._reporter.debug(f"pre-check for {plan.credential.name} failed: {e}")
            return False

    def ensure_credential(self, credential: CredentialDefinition) -> CredentialResult:
        """Ensure the objects of one credential exist.

        The secret comes first and is required; identity and Credential
        failures are reported as warnings so a later run can finish them.

        Args:
            credential: The credential definition.

        Returns:
            The outcome for this credential.

        """
        plan = self.plan(credential)
        provider = credential.provider
        if self._all_exist(plan):
            self._reporter.step(f"{provider.value} credential {highlight(credential.name)} already exists, skipping")
            return CredentialResult(credential.name, provider, Outcome.SKIPPED)

        self._reporter.action(f"Creating {provider.value} credential {highlight(credential.name)}")
        try:
            self._provisioner.ensure(plan.secret.spec, plan.secret.exists, plan.secret.create)
        except ProvisioningError as e:
            self._reporter.error(f"Credential {credential.name}: {e}")
            return CredentialResult(credential.name, provider, Outcome.FATAL, str(e))

        problems: list[str] = []
        for step in (plan.identity, plan.record):
            if step is None:
                continue
            try:
                self._provisioner.ensure(step.spec, step.exists, step.create)
            except ProvisioningError as e:
                self._reporter.warning(f"Credential {credential.name}: {e}")
                problems.append(str(e))

        if problems:
            return CredentialResult(credential.name, provider, Outcome.WARNING, "; ".join(problems))
        return CredentialResult(credential.name, provider, Outcome.OK)

    def create_all(self, credentials: CredentialSettings) -> list[CredentialResult]:
        """Ensure every configured credential, AWS, Azure, then OpenStack.

        Args:
            credentials: The configured credentials.

        Returns:
            One result per credential, in processing order.

        """
        results = [self.ensure_credential(credential) for credential in credentials.all()]
        ic(results)
        return results
