"""Name-keyed cross-stack exports published by the shared platform stack.

The shared platform and tenant stacks never run in the same synthesis, so
they bind through CloudFormation export names resolved at apply time. Both
sides compose the names through ``SharedExports.for_config`` so the producer
and consumer expressions cannot drift apart.

Operational precondition: the shared platform stack must be deployed before
any tenant stack imports from it, and cannot be destroyed while a tenant
stack still imports one of its exports. CloudFormation enforces both; nothing
here checks them.
"""
from enum import Enum

from attrs import define
from aws_cdk import CfnOutput, Fn, Stack

import common.constants as constants
from common.tenant_config import (
    TenantConfig,
    validate_environment,
    validate_namespace_component,
)


class ExportKey(str, Enum):
    KMS_KEY_ARN = "kmsKeyArn"
    API_REPOSITORY_ARN = "apiRepositoryArn"
    API_REPOSITORY_NAME = "apiRepositoryName"
    API_REPOSITORY_URI = "apiRepositoryUri"
    BATCH_REPOSITORY_ARN = "batchRepositoryArn"
    BATCH_REPOSITORY_NAME = "batchRepositoryName"
    BATCH_REPOSITORY_URI = "batchRepositoryUri"
    INGEST_BUCKET_ARN = "ingestBucketArn"
    INGEST_BUCKET_NAME = "ingestBucketName"


def build_export_name(namespace: str, environment: str, region: str, key: ExportKey) -> str:
    """Compose ``<namespace>:<environment>:<region>:<key>``.

    Components are restricted to lowercase letters, digits and hyphens, so the
    separator can never appear inside one and two distinct triples can never
    produce the same name.
    """
    components = [
        validate_namespace_component(namespace, "export.namespace"),
        validate_environment(environment, "export.environment"),
        validate_namespace_component(region, "export.region"),
        ExportKey(key).value,
    ]
    return constants.EXPORT_NAME_SEPARATOR.join(components)


@define(slots=True, frozen=True)
class SharedExports:
    environment: str
    region: str
    namespace: str = constants.SHARE_SERVICE_TARGET_ID

    @classmethod
    def for_config(cls, config: TenantConfig) -> "SharedExports":
        return cls(environment=config.environment, region=config.aws.region)

    def name(self, key: ExportKey) -> str:
        return build_export_name(self.namespace, self.environment, self.region, key)

    def export(self, scope: Stack, key: ExportKey, value: str) -> CfnOutput:
        return CfnOutput(
            scope,
            f"Export{key.value[0].upper()}{key.value[1:]}",
            value=value,
            export_name=self.name(key),
        )

    def import_value(self, key: ExportKey) -> str:
        return Fn.import_value(self.name(key))
