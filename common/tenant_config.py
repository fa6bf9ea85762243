"""Typed view over a resolved (merged) configuration document.

YAML keys are camelCase; attributes are snake_case. Every ``from_*`` builder
raises ``InvalidConfigError`` naming the dotted key that failed validation.
"""
import re
from typing import Any, Mapping, Optional

from attrs import define, field

import common.constants as constants
from common.errors import InvalidConfigError

_NAMESPACE_COMPONENT = re.compile(constants.NAMESPACE_COMPONENT_PATTERN)
_ENVIRONMENT = re.compile(constants.ENVIRONMENT_PATTERN)
_ACCOUNT_ID = re.compile(r"^\d{12}$")


def _section(document: Mapping[str, Any], key: str, path: str) -> Mapping[str, Any]:
    value = document.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise InvalidConfigError(path, "expected a mapping", value)
    return value


def _optional_str(section: Mapping[str, Any], key: str, path: str) -> Optional[str]:
    value = section.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise InvalidConfigError(path, "expected a string", value)
    value = str(value).strip()
    return value or None


def _int(section: Mapping[str, Any], key: str, path: str, default: int, minimum: int = 0) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidConfigError(path, "expected an integer", value)
    if value < minimum:
        raise InvalidConfigError(path, f"must be >= {minimum}", value)
    return value


def _bool(section: Mapping[str, Any], key: str, path: str, default: bool = False) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        raise InvalidConfigError(path, "expected true or false", value)
    return value


def validate_namespace_component(value: Optional[str], path: str) -> str:
    """Reject values that cannot safely prefix resource and export names."""
    if not value:
        raise InvalidConfigError(path, "is required")
    if not _NAMESPACE_COMPONENT.match(value):
        raise InvalidConfigError(
            path, "must contain only lowercase letters, digits and inner hyphens", value
        )
    return value


def validate_environment(value: Optional[str], path: str = "environment") -> str:
    value = validate_namespace_component(value, path)
    if not _ENVIRONMENT.match(value):
        raise InvalidConfigError(path, "must contain only lowercase letters and digits", value)
    return value


@define(slots=True, frozen=True)
class AwsConfig:
    region: str
    account_id: str

    @classmethod
    def from_section(cls, section: Mapping[str, Any]) -> "AwsConfig":
        region = validate_namespace_component(
            _optional_str(section, "region", "aws.region"), "aws.region"
        )
        account_id = _optional_str(section, "accountId", "aws.accountId")
        if not account_id:
            raise InvalidConfigError("aws.accountId", "is required")
        if not _ACCOUNT_ID.match(account_id):
            raise InvalidConfigError("aws.accountId", "must be a 12 digit account id", account_id)
        return cls(region=region, account_id=account_id)


@define(slots=True, frozen=True)
class ImageConfig:
    tag: Optional[str] = None

    @classmethod
    def from_value(cls, value: Any, path: str) -> "ImageConfig":
        # A bare string is shorthand for the tag.
        if value is None:
            return cls()
        if isinstance(value, str):
            return cls(tag=value.strip() or None)
        if not isinstance(value, Mapping):
            raise InvalidConfigError(path, "expected a mapping or a tag string", value)
        return cls(tag=_optional_str(value, "tag", f"{path}.tag"))


@define(slots=True, frozen=True)
class ApiServiceConfig:
    image: ImageConfig = field(factory=ImageConfig)
    bedrock_model_id: Optional[str] = None
    cpu: int = constants.DEFAULT_TASK_CPU
    memory_mib: int = constants.DEFAULT_TASK_MEMORY_MIB
    desired_count: int = constants.DEFAULT_DESIRED_COUNT
    federated_credentials: bool = field(
        default=False,
        metadata={"description": "Allow the task role to issue federated tokens"},
    )
    public_base_url: Optional[str] = field(
        default=None,
        metadata={"description": "HTTPS origin fronting the load balancer, used for OAuth callbacks"},
    )

    @classmethod
    def from_section(cls, section: Mapping[str, Any]) -> "ApiServiceConfig":
        path = "services.api"
        return cls(
            image=ImageConfig.from_value(section.get("image"), f"{path}.image"),
            bedrock_model_id=_optional_str(section, "bedrockModelId", f"{path}.bedrockModelId"),
            cpu=_int(section, "cpu", f"{path}.cpu", constants.DEFAULT_TASK_CPU, minimum=1),
            memory_mib=_int(
                section, "memoryMiB", f"{path}.memoryMiB", constants.DEFAULT_TASK_MEMORY_MIB, minimum=1
            ),
            desired_count=_int(
                section, "desiredCount", f"{path}.desiredCount", constants.DEFAULT_DESIRED_COUNT
            ),
            federated_credentials=_bool(
                section, "federatedCredentials", f"{path}.federatedCredentials"
            ),
            public_base_url=_optional_str(section, "publicBaseUrl", f"{path}.publicBaseUrl"),
        )


@define(slots=True, frozen=True)
class BatchServiceConfig:
    image: ImageConfig = field(factory=ImageConfig)


@define(slots=True, frozen=True)
class ServicesConfig:
    api: ApiServiceConfig = field(factory=ApiServiceConfig)
    batch: Optional[BatchServiceConfig] = None

    @classmethod
    def from_section(cls, section: Mapping[str, Any]) -> "ServicesConfig":
        api = ApiServiceConfig.from_section(_section(section, "api", "services.api"))
        batch = None
        if "batch" in section:
            batch_section = _section(section, "batch", "services.batch")
            batch = BatchServiceConfig(
                image=ImageConfig.from_value(batch_section.get("image"), "services.batch.image")
            )
        return cls(api=api, batch=batch)


@define(slots=True, frozen=True)
class NetworkConfig:
    max_azs: int = constants.DEFAULT_MAX_AZS
    nat_gateways: int = constants.DEFAULT_NAT_GATEWAYS
    s3_prefix_list_id: Optional[str] = field(
        default=None,
        metadata={"description": "Skip the managed prefix list lookup when set"},
    )

    @classmethod
    def from_section(cls, section: Mapping[str, Any]) -> "NetworkConfig":
        return cls(
            max_azs=_int(section, "maxAzs", "network.maxAzs", constants.DEFAULT_MAX_AZS, minimum=1),
            nat_gateways=_int(
                section, "natGateways", "network.natGateways", constants.DEFAULT_NAT_GATEWAYS
            ),
            s3_prefix_list_id=_optional_str(section, "s3PrefixListId", "network.s3PrefixListId"),
        )


@define(slots=True, frozen=True)
class DatabaseConfig:
    name: str = constants.DEFAULT_DB_NAME
    username: str = constants.DEFAULT_DB_USERNAME
    readers: int = constants.DEFAULT_DB_READERS

    @classmethod
    def from_section(cls, section: Mapping[str, Any]) -> "DatabaseConfig":
        return cls(
            name=_optional_str(section, "name", "database.name") or constants.DEFAULT_DB_NAME,
            username=_optional_str(section, "username", "database.username")
            or constants.DEFAULT_DB_USERNAME,
            readers=_int(
                section, "readers", "database.readers", constants.DEFAULT_DB_READERS, minimum=1
            ),
        )


@define(slots=True, frozen=True)
class TenantConfig:
    tenant_id: str = field(
        metadata={"description": "Namespacing prefix for every resource name"}
    )
    environment: str = field(
        metadata={"description": "Deployment environment (dev, stage, prod)"}
    )
    aws: AwsConfig
    services: ServicesConfig = field(factory=ServicesConfig)
    network: NetworkConfig = field(factory=NetworkConfig)
    database: DatabaseConfig = field(factory=DatabaseConfig)
    frontend_enabled: bool = False
    destroy_on_delete: bool = field(
        default=False,
        metadata={"description": "Destroy data-bearing resources with the stack"},
    )

    @property
    def is_share_service(self) -> bool:
        return self.tenant_id == constants.SHARE_SERVICE_TARGET_ID

    @classmethod
    def from_document(cls, document: Mapping[str, Any], target_id: str) -> "TenantConfig":
        tenant_id = validate_namespace_component(
            _optional_str(document, "tenantId", "tenantId") or target_id.lower(), "tenantId"
        )
        environment = validate_environment(
            _optional_str(document, "environment", "environment") or constants.DEFAULT_ENV
        )
        services = ServicesConfig.from_section(_section(document, "services", "services"))
        destroy_on_delete = _bool(
            _section(document, "removal", "removal"), "destroyOnDelete", "removal.destroyOnDelete"
        )
        if destroy_on_delete and environment in constants.PROTECTED_ENVIRONMENTS:
            raise InvalidConfigError(
                "removal.destroyOnDelete",
                f"destructive removal is not allowed in environment '{environment}'",
            )

        config = cls(
            tenant_id=tenant_id,
            environment=environment,
            aws=AwsConfig.from_section(_section(document, "aws", "aws")),
            services=services,
            network=NetworkConfig.from_section(_section(document, "network", "network")),
            database=DatabaseConfig.from_section(_section(document, "database", "database")),
            frontend_enabled=_bool(
                _section(document, "frontend", "frontend"), "enabled", "frontend.enabled"
            ),
            destroy_on_delete=destroy_on_delete,
        )
        if target_id != constants.SHARE_SERVICE_TARGET_ID:
            if not services.api.image.tag:
                raise InvalidConfigError("services.api.image.tag", "is required for tenant stacks")
            if not services.api.bedrock_model_id:
                raise InvalidConfigError(
                    "services.api.bedrockModelId", "is required for tenant stacks"
                )
        return config
