from attrs import define, field
from aws_cdk import RemovalPolicy, Stack, aws_logs as logs
from typing import Optional

from common.tenant_config import TenantConfig


def _camel(value: str) -> str:
    return "".join(part.capitalize() for part in value.replace("_", "-").split("-") if part)


@define(slots=True, frozen=True)
class StackContext:
    scope: Stack
    tenant_id: str = field(
        metadata={"description": "Tenant identifier, prefix of every resource name"}
    )
    environment: str = field(
        metadata={"description": "Deployment environment (dev, stage, prod)"},
    )
    region: str
    destroy_on_delete: bool = field(
        default=False,
        metadata={"description": "Destroy data-bearing resources with the stack"},
    )

    @classmethod
    def from_config(cls, scope: Stack, config: TenantConfig) -> "StackContext":
        return cls(
            scope=scope,
            tenant_id=config.tenant_id,
            environment=config.environment,
            region=config.aws.region,
            destroy_on_delete=config.destroy_on_delete,
        )

    @property
    def aws_account_id(self) -> str:
        return Stack.of(self.scope).account

    # ---------- removal ----------
    @property
    def removal_policy(self) -> RemovalPolicy:
        if self.destroy_on_delete:
            return RemovalPolicy.DESTROY
        return RemovalPolicy.RETAIN

    @property
    def database_removal_policy(self) -> RemovalPolicy:
        if self.destroy_on_delete:
            return RemovalPolicy.DESTROY
        return RemovalPolicy.SNAPSHOT

    # ---------- naming ----------
    def build_resource_name(
        self, resource_type: str, qualifier: Optional[str] = None
    ) -> str:
        """Build an account-unique resource name.

        Examples:
            - Without qualifier: cust-001-prod-cluster
            - With qualifier: cust-001-prod-api-repository
        """
        if qualifier:
            return f"{self.tenant_id}-{self.environment}-{qualifier}-{resource_type}".lower()
        return f"{self.tenant_id}-{self.environment}-{resource_type}".lower()

    def build_global_resource_name(self, resource_type: str) -> str:
        """Build a globally unique name (S3 buckets).

        Example: cust-001-prod-us-east-1-data
        """
        return f"{self.tenant_id}-{self.environment}-{self.region}-{resource_type}".lower()

    def build_resource_id(self, resource_type: str, qualifier: Optional[str] = None) -> str:
        """Build construct ID with optional qualifier.

        Examples:
            - Without qualifier: Cust001DataBucket
            - With qualifier: Cust001ApiRepository
        """
        if qualifier:
            return f"{_camel(self.tenant_id)}{_camel(qualifier)}{_camel(resource_type)}"
        return f"{_camel(self.tenant_id)}{_camel(resource_type)}"

    def build_log_group(self, name: str) -> logs.LogGroup:
        return logs.LogGroup(
            self.scope,
            self.build_resource_id("log-group", qualifier=name),
            log_group_name=f"/ecs/{self.build_resource_name(name)}",
            removal_policy=self.removal_policy,
            retention=logs.RetentionDays.ONE_YEAR,
        )
