from typing import Optional

from attrs import define
from aws_cdk import (
    CfnResource,
    Stack,
    aws_ecr as ecr,
    aws_iam as iam,
    aws_kms as kms,
    aws_s3 as s3,
)

import common.constants as constants
from common.encryption import build_service_key
from common.exports import ExportKey, SharedExports
from common.stack_context import StackContext
from common.tenant_config import TenantConfig


@define(slots=True, frozen=True)
class ShareServiceResources:
    key: kms.Key
    api_repository: ecr.Repository
    batch_repository: Optional[ecr.Repository]
    ingest_bucket: s3.Bucket
    malware_scan_role: iam.Role
    malware_protection_plan: CfnResource


class ShareServiceBuilder:
    """Declares the tenant-independent platform resources into ``scope``.

    Built once per environment and region; every identifier a tenant stack
    needs is published through ``SharedExports``.
    """

    def __init__(self, scope: Stack, config: TenantConfig) -> None:
        self.scope = scope
        self.config = config
        self.context = StackContext.from_config(scope, config)
        self.exports = SharedExports.for_config(config)

    def build(self) -> ShareServiceResources:
        # KMS key shared by registries and the ingest bucket
        key = build_service_key(self.context)

        # ECR registries for service images
        api_repository = self._build_repository(key, "api")
        batch_repository = None
        if self.config.services.batch is not None:
            batch_repository = self._build_repository(key, "batch")

        # Ingest bucket scanned for malware before tenants consume objects
        ingest_bucket = self._build_ingest_bucket(key)
        malware_scan_role = self._build_malware_scan_role(ingest_bucket, key)
        malware_protection_plan = self._build_malware_protection_plan(
            ingest_bucket, malware_scan_role
        )

        self._publish_exports(key, api_repository, batch_repository, ingest_bucket)

        return ShareServiceResources(
            key=key,
            api_repository=api_repository,
            batch_repository=batch_repository,
            ingest_bucket=ingest_bucket,
            malware_scan_role=malware_scan_role,
            malware_protection_plan=malware_protection_plan,
        )

    # Resource creation

    def _build_repository(self, key: kms.IKey, service: str) -> ecr.Repository:
        return ecr.Repository(
            self.scope,
            self.context.build_resource_id("repository", qualifier=service),
            repository_name=self.context.build_resource_name("repository", qualifier=service),
            encryption=ecr.RepositoryEncryption.KMS,
            encryption_key=key,
            image_tag_mutability=ecr.TagMutability.MUTABLE,
            image_scan_on_push=True,
            removal_policy=self.context.removal_policy,
            empty_on_delete=self.context.destroy_on_delete,
        )

    def _build_ingest_bucket(self, key: kms.IKey) -> s3.Bucket:
        """Create the private ingest bucket shared by all tenants."""
        return s3.Bucket(
            self.scope,
            self.context.build_resource_id("ingest-bucket"),
            bucket_name=self.context.build_global_resource_name("ingest"),
            encryption=s3.BucketEncryption.KMS,
            encryption_key=key,
            bucket_key_enabled=True,
            enforce_ssl=True,
            public_read_access=False,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            object_ownership=s3.ObjectOwnership.BUCKET_OWNER_ENFORCED,
            removal_policy=self.context.removal_policy,
            auto_delete_objects=self.context.destroy_on_delete,
        )

    def _build_malware_scan_role(self, bucket: s3.IBucket, key: kms.IKey) -> iam.Role:
        """Role assumed by GuardDuty Malware Protection for S3."""
        role = iam.Role(
            self.scope,
            self.context.build_resource_id("role", qualifier="malware-scan"),
            role_name=self.context.build_resource_name("role", qualifier="malware-scan"),
            assumed_by=iam.ServicePrincipal(constants.MALWARE_PROTECTION_PRINCIPAL),
            description="Allows GuardDuty to scan and tag objects in the ingest bucket",
        )
        role.add_to_policy(
            iam.PolicyStatement(
                sid="AllowManagedRuleToSendS3EventsToGuardDuty",
                actions=[
                    "events:PutRule",
                    "events:DeleteRule",
                    "events:PutTargets",
                    "events:RemoveTargets",
                    "events:DescribeRule",
                    "events:ListTargetsByRule",
                ],
                resources=[
                    constants.MALWARE_PROTECTION_RULE_ARN.format(
                        region=self.context.region, account=self.config.aws.account_id
                    )
                ],
            )
        )
        role.add_to_policy(
            iam.PolicyStatement(
                sid="AllowBucketNotificationAndListing",
                actions=[
                    "s3:ListBucket",
                    "s3:GetBucketNotification",
                    "s3:PutBucketNotification",
                ],
                resources=[bucket.bucket_arn],
            )
        )
        role.add_to_policy(
            iam.PolicyStatement(
                sid="AllowObjectReadAndTagging",
                actions=[
                    "s3:GetObject",
                    "s3:GetObjectVersion",
                    "s3:GetObjectTagging",
                    "s3:GetObjectVersionTagging",
                    "s3:PutObjectTagging",
                    "s3:PutObjectVersionTagging",
                    "s3:PutObject",
                ],
                resources=[bucket.arn_for_objects("*")],
            )
        )
        role.add_to_policy(
            iam.PolicyStatement(
                sid="AllowDecryptForMalwareScan",
                actions=[
                    "kms:Decrypt",
                    "kms:GenerateDataKey",
                    "kms:CreateGrant",
                    "kms:DescribeKey",
                ],
                resources=[key.key_arn],
            )
        )
        return role

    def _build_malware_protection_plan(self, bucket: s3.IBucket, role: iam.Role) -> CfnResource:
        plan = CfnResource(
            self.scope,
            self.context.build_resource_id("malware-protection-plan"),
            type="AWS::GuardDuty::MalwareProtectionPlan",
            properties={
                "Role": role.role_arn,
                "ProtectedResource": {"S3Bucket": {"BucketName": bucket.bucket_name}},
                "Actions": {"Tagging": {"Status": "ENABLED"}},
            },
        )
        # The plan validates the role's permissions on creation.
        plan.node.add_dependency(role)
        return plan

    def _publish_exports(
        self,
        key: kms.IKey,
        api_repository: ecr.IRepository,
        batch_repository: Optional[ecr.IRepository],
        ingest_bucket: s3.IBucket,
    ) -> None:
        self.exports.export(self.scope, ExportKey.KMS_KEY_ARN, key.key_arn)
        self.exports.export(self.scope, ExportKey.API_REPOSITORY_ARN, api_repository.repository_arn)
        self.exports.export(
            self.scope, ExportKey.API_REPOSITORY_NAME, api_repository.repository_name
        )
        self.exports.export(self.scope, ExportKey.API_REPOSITORY_URI, api_repository.repository_uri)
        if batch_repository is not None:
            self.exports.export(
                self.scope, ExportKey.BATCH_REPOSITORY_ARN, batch_repository.repository_arn
            )
            self.exports.export(
                self.scope, ExportKey.BATCH_REPOSITORY_NAME, batch_repository.repository_name
            )
            self.exports.export(
                self.scope, ExportKey.BATCH_REPOSITORY_URI, batch_repository.repository_uri
            )
        self.exports.export(self.scope, ExportKey.INGEST_BUCKET_ARN, ingest_bucket.bucket_arn)
        self.exports.export(self.scope, ExportKey.INGEST_BUCKET_NAME, ingest_bucket.bucket_name)
