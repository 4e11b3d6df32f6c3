"""Configuration loading and validation for k0rdentd.

The configuration file is YAML with camelCase keys. It is mapped onto
frozen dataclasses so a run works with one immutable InstallationConfig;
CLI overrides produce a new instance before any phase starts.
"""

import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, ClassVar

import yaml
from icecream import ic

from k0rdentd.exceptions import ConfigurationError
from k0rdentd.models import ProviderKind

DEFAULT_CONFIG_PATH = Path("/etc/k0rdentd/k0rdentd.yaml")
DEFAULT_K0RDENT_VERSION = "1.2.2"
DEFAULT_CHART = "oci://registry.mirantis.com/k0rdent-enterprise/charts/k0rdent-enterprise"
DEFAULT_NAMESPACE = "kcm-system"
DEFAULT_REGISTRY_ADDRESS = "localhost:5000"
DEFAULT_PUSH_WORKERS = 5

# Registry addresses that are always plain HTTP
_LOCAL_REGISTRY_ADDRESSES = frozenset({"", "localhost:5000", "127.0.0.1:5000"})

# Kubernetes DNS subdomain name validation (RFC 1123)
_DNS_SUBDOMAIN_MAX_LENGTH = 253
_DNS_SUBDOMAIN_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")
# Longest suffix appended when deriving object names from a credential name
_LONGEST_DERIVED_SUFFIX = len("-identity")

_BOOL_STRINGS = {"true": True, "yes": True, "1": True, "false": False, "no": False, "0": False}


def _default_helm_values() -> dict[str, Any]:
    return {"replicaCount": 1, "k0rdent-ui": {"enabled": True}}


@dataclass(frozen=True, slots=True)
class ApiSettings:
    address: str = ""
    port: int = 6443


@dataclass(frozen=True, slots=True)
class NetworkSettings:
    provider: str = "calico"
    pod_cidr: str = ""
    service_cidr: str = ""


@dataclass(frozen=True, slots=True)
class StorageSettings:
    type: str = "etcd"
    etcd_peer_address: str = ""


@dataclass(frozen=True, slots=True)
class K0sSettings:
    """Settings of the k0s cluster itself.

    Attributes:
        version: k0s version to install when the binary is missing.
        api: API server bind settings.
        network: CNI provider and CIDRs.
        storage: Storage backend settings.

    """

    version: str = ""
    api: ApiSettings = field(default_factory=ApiSettings)
    network: NetworkSettings = field(default_factory=NetworkSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)


@dataclass(frozen=True, slots=True)
class HelmSettings:
    chart: str = DEFAULT_CHART
    namespace: str = DEFAULT_NAMESPACE
    values: dict[str, Any] = field(default_factory=_default_helm_values)


@dataclass(frozen=True, slots=True)
class AwsCredential:
    """AWS static credentials.

    Attributes:
        name: Credential name, the base of every derived object name.
        region: AWS region.
        access_key_id: Access key ID.
        secret_access_key: Secret access key.
        session_token: Optional session token (MFA or SSO).

    """

    provider: ClassVar[ProviderKind] = ProviderKind.AWS

    name: str
    region: str = ""
    access_key_id: str = ""
    secret_access_key: str = ""
    session_token: str = ""


@dataclass(frozen=True, slots=True)
class AzureCredential:
    """Azure Service Principal credentials.

    Attributes:
        name: Credential name, the base of every derived object name.
        subscription_id: Azure subscription ID.
        client_id: Service Principal client ID.
        client_secret: Service Principal client secret.
        tenant_id: Azure tenant ID.

    """

    provider: ClassVar[ProviderKind] = ProviderKind.AZURE

    name: str
    subscription_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    tenant_id: str = ""


@dataclass(frozen=True, slots=True)
class OpenStackCredential:
    """OpenStack credentials, either application credentials or username/password.

    Attributes:
        name: Credential name, the base of every derived object name.
        auth_url: Keystone endpoint.
        region: OpenStack region.
        application_credential_id: Application credential ID.
        application_credential_secret: Application credential secret.
        username: User name for password authentication.
        password: Password for password authentication.
        project_name: Project for password authentication.
        domain_name: User and project domain for password authentication.

    """

    provider: ClassVar[ProviderKind] = ProviderKind.OPENSTACK

    name: str
    auth_url: str = ""
    region: str = ""
    application_credential_id: str = ""
    application_credential_secret: str = ""
    username: str = ""
    password: str = ""
    project_name: str = ""
    domain_name: str = ""

    @property
    def uses_application_credential(self) -> bool:
        """Whether application credentials are configured."""
        return bool(self.application_credential_id)


CredentialDefinition = AwsCredential | AzureCredential | OpenStackCredential


@dataclass(frozen=True, slots=True)
class CredentialSettings:
    aws: tuple[AwsCredential, ...] = ()
    azure: tuple[AzureCredential, ...] = ()
    openstack: tuple[OpenStackCredential, ...] = ()

    def all(self) -> list[CredentialDefinition]:
        """Return every credential, AWS first, then Azure, then OpenStack."""
        return [*self.aws, *self.azure, *self.openstack]

    @property
    def has_credentials(self) -> bool:
        """Whether any credential is configured."""
        return bool(self.aws or self.azure or self.openstack)


@dataclass(frozen=True, slots=True)
class K0rdentSettings:
    version: str = DEFAULT_K0RDENT_VERSION
    helm: HelmSettings = field(default_factory=HelmSettings)
    credentials: CredentialSettings = field(default_factory=CredentialSettings)


@dataclass(frozen=True, slots=True)
class RegistrySettings:
    """Local registry used by air-gapped installations.

    Attributes:
        address: host:port of the registry, ``localhost:5000`` when empty.
        insecure: Use plain HTTP for a non-local registry.

    """

    address: str = ""
    insecure: bool = False

    @property
    def effective_address(self) -> str:
        """The configured address, or the default local registry."""
        return self.address or DEFAULT_REGISTRY_ADDRESS

    @property
    def is_insecure(self) -> bool:
        """Whether image pulls use plain HTTP; always true for the local default."""
        if self.address in _LOCAL_REGISTRY_ADDRESSES:
            return True
        return self.insecure


@dataclass(frozen=True, slots=True)
class AirgapSettings:
    bundle_path: str = ""
    registry: RegistrySettings = field(default_factory=RegistrySettings)
    push_workers: int = DEFAULT_PUSH_WORKERS


@dataclass(frozen=True, slots=True)
class InstallationConfig:
    """Complete k0rdentd configuration for one run.

    Attributes:
        k0s: k0s cluster settings.
        k0rdent: k0rdent chart and credential settings.
        debug: Enable debug output.
        log_level: Log level name.
        airgap: Air-gapped installation settings.

    """

    k0s: K0sSettings = field(default_factory=K0sSettings)
    k0rdent: K0rdentSettings = field(default_factory=K0rdentSettings)
    debug: bool = False
    log_level: str = "info"
    airgap: AirgapSettings = field(default_factory=AirgapSettings)


def default_config() -> InstallationConfig:
    """Return the built-in default configuration."""
    return InstallationConfig()


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    """Return a nested mapping, or an empty one when the key is absent.

    Raises:
        ConfigurationError: If the key holds something other than a mapping.

    """
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"'{key}' must be a mapping, got {type(value).__name__}")
    return value


def _entries(data: dict[str, Any], key: str) -> list[dict[str, Any]]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
        raise ConfigurationError(f"'{key}' must be a list of mappings")
    return value


def _str(data: dict[str, Any], key: str, default: str = "") -> str:
    value = data.get(key)
    return default if value is None else str(value)


def _int(data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValueError(f"{key} must be an integer, got {value!r}")
    return int(value)


def _bool(data: dict[str, Any], key: str, default: bool = False) -> bool:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in _BOOL_STRINGS:
        return _BOOL_STRINGS[value.strip().lower()]
    raise ValueError(f"{key} must be true or false, got {value!r}")


def _parse_credentials(data: dict[str, Any]) -> CredentialSettings:
    aws = tuple(
        AwsCredential(
            name=_str(item, "name"),
            region=_str(item, "region"),
            access_key_id=_str(item, "accessKeyID"),
            secret_access_key=_str(item, "secretAccessKey"),
            session_token=_str(item, "sessionToken"),
        )
        for item in _entries(data, "aws")
    )
    azure = tuple(
        AzureCredential(
            name=_str(item, "name"),
            subscription_id=_str(item, "subscriptionID"),
            client_id=_str(item, "clientID"),
            client_secret=_str(item, "clientSecret"),
            tenant_id=_str(item, "tenantID"),
        )
        for item in _entries(data, "azure")
    )
    openstack = tuple(
        OpenStackCredential(
            name=_str(item, "name"),
            auth_url=_str(item, "authURL"),
            region=_str(item, "region"),
            application_credential_id=_str(item, "applicationCredentialID"),
            application_credential_secret=_str(item, "applicationCredentialSecret"),
            username=_str(item, "username"),
            password=_str(item, "password"),
            project_name=_str(item, "projectName"),
            domain_name=_str(item, "domainName"),
        )
        for item in _entries(data, "openstack")
    )
    return CredentialSettings(aws=aws, azure=azure, openstack=openstack)


def config_from_dict(data: dict[str, Any]) -> InstallationConfig:
    """Build an InstallationConfig from parsed YAML, filling in defaults.

    Args:
        data: The parsed YAML document.

    Returns:
        The configuration.

    Raises:
        ConfigurationError: If a section has the wrong shape.

    """
    k0s = _section(data, "k0s")
    api = _section(k0s, "api")
    network = _section(k0s, "network")
    storage = _section(k0s, "storage")
    k0rdent = _section(data, "k0rdent")
    helm = _section(k0rdent, "helm")
    airgap = _section(data, "airgap")
    registry = _section(airgap, "registry")

    defaults = InstallationConfig()
    try:
        return InstallationConfig(
            k0s=K0sSettings(
                version=_str(k0s, "version"),
                api=ApiSettings(
                    address=_str(api, "address"),
                    port=_int(api, "port", defaults.k0s.api.port),
                ),
                network=NetworkSettings(
                    provider=_str(network, "provider", defaults.k0s.network.provider),
                    pod_cidr=_str(network, "podCIDR"),
                    service_cidr=_str(network, "serviceCIDR"),
                ),
                storage=StorageSettings(
                    type=_str(storage, "type", defaults.k0s.storage.type),
                    etcd_peer_address=_str(_section(storage, "etcd"), "peerAddress"),
                ),
            ),
            k0rdent=K0rdentSettings(
                version=_str(k0rdent, "version", DEFAULT_K0RDENT_VERSION),
                helm=HelmSettings(
                    chart=_str(helm, "chart", DEFAULT_CHART),
                    namespace=_str(helm, "namespace", DEFAULT_NAMESPACE),
                    values=_section(helm, "values") if "values" in helm else _default_helm_values(),
                ),
                credentials=_parse_credentials(_section(k0rdent, "credentials")),
            ),
            debug=_bool(data, "debug"),
            log_level=_str(data, "logLevel", "info") or "info",
            airgap=AirgapSettings(
                bundle_path=_str(airgap, "bundlePath"),
                registry=RegistrySettings(
                    address=_str(registry, "address"),
                    insecure=_bool(registry, "insecure"),
                ),
                push_workers=_int(airgap, "pushWorkers", DEFAULT_PUSH_WORKERS),
            ),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration value: {e}") from e


def config_to_dict(cfg: InstallationConfig) -> dict[str, Any]:
    """Render a configuration back into its YAML document shape."""
    credentials = cfg.k0rdent.credentials
    doc: dict[str, Any] = {
        "k0s": {
            "version": cfg.k0s.version,
            "api": {"address": cfg.k0s.api.address, "port": cfg.k0s.api.port},
            "network": {
                "provider": cfg.k0s.network.provider,
                "podCIDR": cfg.k0s.network.pod_cidr,
                "serviceCIDR": cfg.k0s.network.service_cidr,
            },
            "storage": {
                "type": cfg.k0s.storage.type,
                "etcd": {"peerAddress": cfg.k0s.storage.etcd_peer_address},
            },
        },
        "k0rdent": {
            "version": cfg.k0rdent.version,
            "helm": {
                "chart": cfg.k0rdent.helm.chart,
                "namespace": cfg.k0rdent.helm.namespace,
                "values": cfg.k0rdent.helm.values,
            },
        },
        "debug": cfg.debug,
        "logLevel": cfg.log_level,
    }
    if credentials.has_credentials:
        doc["k0rdent"]["credentials"] = {
            "aws": [
                {
                    "name": c.name,
                    "region": c.region,
                    "accessKeyID": c.access_key_id,
                    "secretAccessKey": c.secret_access_key,
                    **({"sessionToken": c.session_token} if c.session_token else {}),
                }
                for c in credentials.aws
            ],
            "azure": [
                {
                    "name": c.name,
                    "subscriptionID": c.subscription_id,
                    "clientID": c.client_id,
                    "clientSecret": c.client_secret,
                    "tenantID": c.tenant_id,
                }
                for c in credentials.azure
            ],
            "openstack": [
                {
                    key: value
                    for key, value in {
                        "name": c.name,
                        "authURL": c.auth_url,
                        "region": c.region,
                        "applicationCredentialID": c.application_credential_id,
                        "applicationCredentialSecret": c.application_credential_secret,
                        "username": c.username,
                        "password": c.password,
                        "projectName": c.project_name,
                        "domainName": c.domain_name,
                    }.items()
                    if value
                }
                for c in credentials.openstack
            ],
        }
    if cfg.airgap != AirgapSettings():
        doc["airgap"] = {
            "bundlePath": cfg.airgap.bundle_path,
            "registry": {"address": cfg.airgap.registry.address, "insecure": cfg.airgap.registry.insecure},
            "pushWorkers": cfg.airgap.push_workers,
        }
    return doc


def dump_config(cfg: InstallationConfig) -> str:
    """Serialize a configuration to YAML."""
    return yaml.safe_dump(config_to_dict(cfg), sort_keys=False)


def load_config(path: str | Path) -> InstallationConfig:
    """Load a configuration file, failing on any problem.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        The configuration, with defaults for omitted keys.

    Raises:
        ConfigurationError: If the file cannot be read or parsed.

    """
    config_path = Path(path)
    try:
        text = config_path.read_text()
    except OSError as e:
        raise ConfigurationError(f"Failed to read config file {config_path}: {e.strerror}") from e

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse YAML in {config_path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a YAML mapping")

    ic(data.keys())
    return config_from_dict(data)


def load_config_with_fallback(
    path: str | Path | None,
    default_path: str | Path = DEFAULT_CONFIG_PATH,
    *,
    explicit: bool,
) -> InstallationConfig:
    """Load configuration with fallback to the default file and built-in defaults.

    Order:
    1. An explicitly requested path is used and must be valid.
    2. The default path is used if it exists and is non-empty.
    3. Otherwise the built-in defaults are returned.

    Args:
        path: Path passed on the command line, if any.
        default_path: Well-known config location.
        explicit: Whether the operator set the path explicitly.

    Returns:
        The configuration to use for this run.

    Raises:
        ConfigurationError: If an explicit or non-empty default file is invalid.

    """
    if explicit and path:
        return load_config(path)

    candidate = Path(default_path)
    if candidate.is_file() and candidate.stat().st_size > 0:
        return load_config(candidate)

    return default_config()


def with_overrides(
    cfg: InstallationConfig,
    *,
    k0s_version: str | None = None,
    k0rdent_version: str | None = None,
    bundle_path: str | None = None,
    push_workers: int | None = None,
) -> InstallationConfig:
    """Return a copy of the configuration with CLI overrides applied."""
    if k0s_version:
        cfg = replace(cfg, k0s=replace(cfg.k0s, version=k0s_version))
    if k0rdent_version:
        cfg = replace(cfg, k0rdent=replace(cfg.k0rdent, version=k0rdent_version))
    if bundle_path:
        cfg = replace(cfg, airgap=replace(cfg.airgap, bundle_path=bundle_path))
    if push_workers:
        cfg = replace(cfg, airgap=replace(cfg.airgap, push_workers=push_workers))
    return cfg


def write_config_file(path: str | Path, content: str) -> None:
    """Write a file readable only by its owner, creating parent directories.

    Raises:
        ConfigurationError: If the file cannot be written.

    """
    target = Path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)
        target.chmod(0o600)
    except OSError as e:
        raise ConfigurationError(f"Failed to write {target}: {e.strerror}") from e


def validate_k8s_name(name: str) -> bool | str:
    """Validate a credential name so every derived object name is valid.

    Args:
        name: The name to validate.

    Returns:
        True if valid, or an error message string if invalid.

    """
    if not name:
        return "Name cannot be empty"
    max_length = _DNS_SUBDOMAIN_MAX_LENGTH - _LONGEST_DERIVED_SUFFIX
    if len(name) > max_length:
        return f"Name must be {max_length} characters or less"
    if not _DNS_SUBDOMAIN_PATTERN.match(name):
        return "Name must consist of lowercase alphanumeric characters, '-' or '.', and must start and end with an alphanumeric character"
    return True


def _missing_fields(credential: CredentialDefinition) -> list[str]:
    match credential:
        case AwsCredential():
            required = {
                "region": credential.region,
                "accessKeyID": credential.access_key_id,
                "secretAccessKey": credential.secret_access_key,
            }
        case AzureCredential():
            required = {
                "subscriptionID": credential.subscription_id,
                "clientID": credential.client_id,
                "clientSecret": credential.client_secret,
                "tenantID": credential.tenant_id,
            }
        case OpenStackCredential():
            required = {"authURL": credential.auth_url, "region": credential.region}
            if credential.uses_application_credential:
                required["applicationCredentialSecret"] = credential.application_credential_secret
            else:
                required["username"] = credential.username
                required["password"] = credential.password
    return [key for key, value in required.items() if not value]


def validate_config(cfg: InstallationConfig) -> list[str]:
    """Check a configuration for problems that would break provisioning.

    Args:
        cfg: The configuration to check.

    Returns:
        A list of human-readable problems, empty when the config is valid.

    """
    problems: list[str] = []
    credentials = cfg.k0rdent.credentials
    for provider, entries in (
        (ProviderKind.AWS, credentials.aws),
        (ProviderKind.AZURE, credentials.azure),
        (ProviderKind.OPENSTACK, credentials.openstack),
    ):
        seen: set[str] = set()
        for credential in entries:
            label = f"{provider.value} credential '{credential.name}'"
            result = validate_k8s_name(credential.name)
            if result is not True:
                problems.append(f"{label}: {result}")
            if credential.name in seen:
                problems.append(f"{label}: duplicate name")
            seen.add(credential.name)
            missing = _missing_fields(credential)
            if missing:
                problems.append(f"{label}: missing {', '.join(missing)}")

    if cfg.k0s.api.port <= 0 or cfg.k0s.api.port > 65535:
        problems.append(f"k0s api port {cfg.k0s.api.port} is out of range")
    if cfg.airgap.push_workers < 1:
        problems.append("airgap pushWorkers must be at least 1")
    return problems
