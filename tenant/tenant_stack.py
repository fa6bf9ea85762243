from typing import Dict, Optional

from attrs import define
from aws_cdk import (
    CfnOutput,
    Duration,
    SecretValue,
    Stack,
    aws_cloudfront as cloudfront,
    aws_cloudfront_origins as origins,
    aws_cognito as cognito,
    aws_ec2 as ec2,
    aws_ecr as ecr,
    aws_ecs as ecs,
    aws_elasticloadbalancingv2 as elbv2,
    aws_events as events,
    aws_events_targets as targets,
    aws_iam as iam,
    aws_kms as kms,
    aws_rds as rds,
    aws_s3 as s3,
    aws_secretsmanager as secretsmanager,
    aws_sqs as sqs,
    aws_wafv2 as wafv2,
)

import common.constants as constants
from common.encryption import build_service_key
from common.exports import ExportKey, SharedExports
from common.stack_context import StackContext
from common.tenant_config import TenantConfig
from networking.tenant_network import TenantNetwork


@define(slots=True, frozen=True)
class SharedResources:
    """Shared platform resources bound by export name, never by object."""

    key: kms.IKey
    api_repository: ecr.IRepository
    ingest_bucket: s3.IBucket


@define(slots=True, frozen=True)
class IdentityResources:
    user_pool: cognito.UserPool
    domain: cognito.UserPoolDomain
    client: cognito.UserPoolClient
    client_secret: secretsmanager.Secret
    callback_url: str


@define(slots=True, frozen=True)
class TenantResources:
    shared: SharedResources
    network: TenantNetwork
    key: kms.Key
    data_bucket: s3.Bucket
    scan_result_queue: sqs.Queue
    scan_result_rule: events.Rule
    identity: IdentityResources
    database: rds.DatabaseCluster
    service: ecs.FargateService
    load_balancer: elbv2.ApplicationLoadBalancer
    web_acl: wafv2.CfnWebACL
    distribution: Optional[cloudfront.Distribution] = None


class TenantBuilder:
    """Declares one tenant's infrastructure into ``scope``.

    Shared platform identifiers are imported by export name, so the shared
    platform stack for the same environment and region must already be
    deployed.
    """

    def __init__(self, scope: Stack, config: TenantConfig) -> None:
        self.scope = scope
        self.config = config
        self.context = StackContext.from_config(scope, config)
        self.exports = SharedExports.for_config(config)

    def build(self) -> TenantResources:
        shared = self._import_shared_resources()
        network = TenantNetwork(self.context, self.config.network)

        # Tenant KMS key, separate from the shared platform key
        key = build_service_key(self.context)

        # Tenant private storage and optional public frontend
        data_bucket = self._build_data_bucket(key)
        distribution = None
        if self.config.frontend_enabled:
            distribution = self._build_frontend(key, data_bucket)

        # Malware scan results for objects this tenant uploaded to the ingest bucket
        dlq = self._build_queue(key, "scan-result-dlq")
        scan_result_queue = self._build_queue(key, "scan-result", dead_letter_queue=dlq)
        scan_result_rule = self._build_scan_result_rule(shared.ingest_bucket, scan_result_queue)

        alb_security_group = network.create_security_group(
            "alb", "Security group for the public API load balancer"
        )
        load_balancer = self._build_load_balancer(network, alb_security_group)
        web_acl = self._build_web_acl(load_balancer)

        identity = self._build_identity(key, load_balancer)
        database_security_group = network.create_security_group(
            "database", "Security group for the tenant Aurora cluster"
        )
        database = self._build_database(network, database_security_group, key)

        service_security_group = network.create_security_group(
            "service", "Security group for the API Fargate service"
        )
        service = self._build_api_service(
            network=network,
            security_group=service_security_group,
            shared=shared,
            key=key,
            data_bucket=data_bucket,
            queue=scan_result_queue,
            identity=identity,
            database=database,
        )

        # Permissions
        self._grant_service_permissions(service.task_definition, shared, key, data_bucket)
        scan_result_queue.grant_consume_messages(service.task_definition.task_role)

        # Reachability
        self._attach_load_balancer(load_balancer, service)
        network.allow_service_egress(service, service_security_group)
        database.connections.allow_from(
            service,
            ec2.Port.tcp(constants.DB_PORT),
            "Allow the API service to reach the database",
        )

        self._add_outputs(load_balancer, identity, data_bucket, scan_result_queue, distribution)

        return TenantResources(
            shared=shared,
            network=network,
            key=key,
            data_bucket=data_bucket,
            scan_result_queue=scan_result_queue,
            scan_result_rule=scan_result_rule,
            identity=identity,
            database=database,
            service=service,
            load_balancer=load_balancer,
            web_acl=web_acl,
            distribution=distribution,
        )

    # Shared platform imports

    def _import_shared_resources(self) -> SharedResources:
        key = kms.Key.from_key_arn(
            self.scope,
            "SharedKey",
            self.exports.import_value(ExportKey.KMS_KEY_ARN),
        )
        # Imported registries need both ARN and name because neither can be
        # parsed out of the other while they are unresolved import tokens.
        api_repository = ecr.Repository.from_repository_attributes(
            self.scope,
            "SharedApiRepository",
            repository_arn=self.exports.import_value(ExportKey.API_REPOSITORY_ARN),
            repository_name=self.exports.import_value(ExportKey.API_REPOSITORY_NAME),
        )
        ingest_bucket = s3.Bucket.from_bucket_attributes(
            self.scope,
            "SharedIngestBucket",
            bucket_arn=self.exports.import_value(ExportKey.INGEST_BUCKET_ARN),
            bucket_name=self.exports.import_value(ExportKey.INGEST_BUCKET_NAME),
            encryption_key=key,
        )
        return SharedResources(key=key, api_repository=api_repository, ingest_bucket=ingest_bucket)

    # Resource creation

    def _build_data_bucket(self, key: kms.IKey) -> s3.Bucket:
        return self._build_private_bucket(key, "data")

    def _build_private_bucket(self, key: kms.IKey, name: str) -> s3.Bucket:
        return s3.Bucket(
            self.scope,
            self.context.build_resource_id("bucket", qualifier=name),
            bucket_name=self.context.build_global_resource_name(name),
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

    def _build_frontend(self, key: kms.IKey, data_bucket: s3.Bucket) -> cloudfront.Distribution:
        """CloudFront distribution serving the frontend bucket over HTTPS."""
        frontend_bucket = self._build_private_bucket(key, "frontend")
        distribution = cloudfront.Distribution(
            self.scope,
            self.context.build_resource_id("distribution", qualifier="frontend"),
            comment=f"Frontend for {self.config.tenant_id} ({self.config.environment})",
            default_behavior=cloudfront.BehaviorOptions(
                origin=origins.S3BucketOrigin.with_origin_access_control(frontend_bucket),
                viewer_protocol_policy=cloudfront.ViewerProtocolPolicy.REDIRECT_TO_HTTPS,
            ),
            default_root_object="index.html",
        )
        # Browser uploads and downloads against the data bucket come from the frontend origin
        data_bucket.add_cors_rule(
            allowed_methods=[
                s3.HttpMethods.GET,
                s3.HttpMethods.PUT,
                s3.HttpMethods.POST,
                s3.HttpMethods.DELETE,
            ],
            allowed_origins=[f"https://{distribution.distribution_domain_name}"],
            allowed_headers=["*"],
        )
        return distribution

    def _build_queue(
        self,
        key: kms.IKey,
        name: str,
        dead_letter_queue: Optional[sqs.IQueue] = None,
    ) -> sqs.Queue:
        return sqs.Queue(
            self.scope,
            self.context.build_resource_id("queue", qualifier=name),
            queue_name=self.context.build_resource_name("queue", qualifier=name),
            encryption=sqs.QueueEncryption.KMS,
            encryption_master_key=key,
            enforce_ssl=True,
            retention_period=Duration.days(constants.QUEUE_RETENTION_DAYS),
            visibility_timeout=Duration.seconds(constants.QUEUE_VISIBILITY_TIMEOUT_SECONDS),
            dead_letter_queue=(
                sqs.DeadLetterQueue(
                    max_receive_count=constants.QUEUE_MAX_RECEIVE_COUNT,
                    queue=dead_letter_queue,
                )
                if dead_letter_queue is not None
                else None
            ),
        )

    def _build_scan_result_rule(self, ingest_bucket: s3.IBucket, queue: sqs.IQueue) -> events.Rule:
        """Forward malware scan results for this tenant's ingest objects to its queue."""
        return events.Rule(
            self.scope,
            self.context.build_resource_id("rule", qualifier="scan-result"),
            rule_name=self.context.build_resource_name("rule", qualifier="scan-result"),
            description="GuardDuty malware scan results for tenant objects in the shared ingest bucket",
            event_pattern=events.EventPattern(
                source=[constants.MALWARE_SCAN_EVENT_SOURCE],
                detail_type=[constants.MALWARE_SCAN_EVENT_DETAIL_TYPE],
                detail={
                    "s3ObjectDetails": {
                        "bucketName": [ingest_bucket.bucket_name],
                        "objectKey": [{"prefix": f"{self.config.tenant_id}/"}],
                    }
                },
            ),
            targets=[targets.SqsQueue(queue)],
        )

    def _build_load_balancer(
        self, network: TenantNetwork, security_group: ec2.ISecurityGroup
    ) -> elbv2.ApplicationLoadBalancer:
        return elbv2.ApplicationLoadBalancer(
            self.scope,
            self.context.build_resource_id("alb"),
            vpc=network.vpc,
            internet_facing=True,
            security_group=security_group,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PUBLIC),
        )

    def _build_web_acl(self, load_balancer: elbv2.ApplicationLoadBalancer) -> wafv2.CfnWebACL:
        """Regional web ACL in front of the API load balancer."""
        web_acl = wafv2.CfnWebACL(
            self.scope,
            self.context.build_resource_id("web-acl"),
            name=self.context.build_resource_name("waf"),
            default_action=wafv2.CfnWebACL.DefaultActionProperty(allow={}),
            scope="REGIONAL",
            visibility_config=wafv2.CfnWebACL.VisibilityConfigProperty(
                cloud_watch_metrics_enabled=True,
                metric_name=self.context.build_resource_name("waf-metric"),
                sampled_requests_enabled=True,
            ),
            rules=[
                wafv2.CfnWebACL.RuleProperty(
                    name=f"AWS-{constants.WAF_MANAGED_RULE_GROUP}",
                    priority=1,
                    override_action=wafv2.CfnWebACL.OverrideActionProperty(none={}),
                    statement=wafv2.CfnWebACL.StatementProperty(
                        managed_rule_group_statement=wafv2.CfnWebACL.ManagedRuleGroupStatementProperty(
                            name=constants.WAF_MANAGED_RULE_GROUP,
                            vendor_name="AWS",
                        )
                    ),
                    visibility_config=wafv2.CfnWebACL.VisibilityConfigProperty(
                        cloud_watch_metrics_enabled=True,
                        metric_name="CommonRuleSetMetric",
                        sampled_requests_enabled=True,
                    ),
                )
            ],
        )
        wafv2.CfnWebACLAssociation(
            self.scope,
            self.context.build_resource_id("web-acl-association"),
            resource_arn=load_balancer.load_balancer_arn,
            web_acl_arn=web_acl.attr_arn,
        )
        return web_acl

    def _build_identity(
        self, key: kms.IKey, load_balancer: elbv2.ApplicationLoadBalancer
    ) -> IdentityResources:
        """Cognito hosted sign-up/sign-in with a server-side OAuth client."""
        user_pool = cognito.UserPool(
            self.scope,
            self.context.build_resource_id("user-pool"),
            user_pool_name=self.context.build_resource_name("user-pool"),
            self_sign_up_enabled=True,
            sign_in_aliases=cognito.SignInAliases(email=True),
            auto_verify=cognito.AutoVerifiedAttrs(email=True),
            standard_attributes=cognito.StandardAttributes(
                email=cognito.StandardAttribute(required=True, mutable=True)
            ),
            account_recovery=cognito.AccountRecovery.EMAIL_ONLY,
            removal_policy=self.context.removal_policy,
        )
        domain = user_pool.add_domain(
            self.context.build_resource_id("user-pool-domain"),
            cognito_domain=cognito.CognitoDomainOptions(
                domain_prefix=self.context.build_resource_name("auth"),
            ),
        )

        base_url = (
            self.config.services.api.public_base_url
            or f"http://{load_balancer.load_balancer_dns_name}"
        )
        callback_url = f"{base_url}{constants.OAUTH_CALLBACK_PATH}"
        client = user_pool.add_client(
            self.context.build_resource_id("user-pool-client"),
            user_pool_client_name=self.context.build_resource_name("api-client"),
            generate_secret=True,
            prevent_user_existence_errors=True,
            access_token_validity=Duration.minutes(constants.ACCESS_TOKEN_VALIDITY_MINUTES),
            o_auth=cognito.OAuthSettings(
                flows=cognito.OAuthFlows(authorization_code_grant=True),
                scopes=[
                    cognito.OAuthScope.OPENID,
                    cognito.OAuthScope.EMAIL,
                    cognito.OAuthScope.PROFILE,
                ],
                callback_urls=[callback_url],
                logout_urls=[base_url],
            ),
        )
        client_secret = secretsmanager.Secret(
            self.scope,
            self.context.build_resource_id("secret", qualifier="oauth-client"),
            secret_name=self.context.build_resource_name("secret", qualifier="oauth-client"),
            description="OAuth client credentials for the API service",
            encryption_key=key,
            secret_object_value={
                "clientId": SecretValue.unsafe_plain_text(client.user_pool_client_id),
                "clientSecret": client.user_pool_client_secret,
            },
            removal_policy=self.context.removal_policy,
        )
        return IdentityResources(
            user_pool=user_pool,
            domain=domain,
            client=client,
            client_secret=client_secret,
            callback_url=callback_url,
        )

    def _build_database(
        self, network: TenantNetwork, security_group: ec2.ISecurityGroup, key: kms.IKey
    ) -> rds.DatabaseCluster:
        instance_type = ec2.InstanceType.of(ec2.InstanceClass.T3, ec2.InstanceSize.MEDIUM)
        return rds.DatabaseCluster(
            self.scope,
            self.context.build_resource_id("database"),
            cluster_identifier=self.context.build_resource_name("database"),
            engine=rds.DatabaseClusterEngine.aurora_postgres(
                version=rds.AuroraPostgresEngineVersion.VER_15_4,
            ),
            writer=rds.ClusterInstance.provisioned("Writer", instance_type=instance_type),
            readers=[
                rds.ClusterInstance.provisioned(f"Reader{index}", instance_type=instance_type)
                for index in range(1, self.config.database.readers + 1)
            ],
            vpc=network.vpc,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS),
            port=constants.DB_PORT,
            security_groups=[security_group],
            credentials=rds.Credentials.from_generated_secret(
                self.config.database.username,
                secret_name=self.context.build_resource_name("secret", qualifier="database"),
                encryption_key=key,
            ),
            default_database_name=self.config.database.name,
            storage_encrypted=True,
            storage_encryption_key=key,
            copy_tags_to_snapshot=True,
            deletion_protection=not self.context.destroy_on_delete,
            removal_policy=self.context.database_removal_policy,
        )

    def _build_api_service(
        self,
        network: TenantNetwork,
        security_group: ec2.ISecurityGroup,
        shared: SharedResources,
        key: kms.IKey,
        data_bucket: s3.IBucket,
        queue: sqs.IQueue,
        identity: IdentityResources,
        database: rds.DatabaseCluster,
    ) -> ecs.FargateService:
        api = self.config.services.api
        cluster = ecs.Cluster(
            self.scope,
            self.context.build_resource_id("cluster"),
            cluster_name=self.context.build_resource_name("cluster"),
            vpc=network.vpc,
        )
        task_definition = ecs.FargateTaskDefinition(
            self.scope,
            self.context.build_resource_id("task", qualifier="api"),
            family=self.context.build_resource_name("task", qualifier="api"),
            cpu=api.cpu,
            memory_limit_mib=api.memory_mib,
        )
        task_definition.add_container(
            "ApiContainer",
            image=ecs.ContainerImage.from_ecr_repository(shared.api_repository, api.image.tag),
            logging=ecs.LogDrivers.aws_logs(
                stream_prefix=constants.API_LOG_STREAM_PREFIX,
                log_group=self.context.build_log_group("api"),
            ),
            port_mappings=[
                ecs.PortMapping(
                    container_port=constants.API_CONTAINER_PORT,
                    protocol=ecs.Protocol.TCP,
                )
            ],
            environment=self._build_service_environment(
                shared, key, data_bucket, queue, identity, database
            ),
            secrets=self._build_service_secrets(identity, database),
        )
        return ecs.FargateService(
            self.scope,
            self.context.build_resource_id("service", qualifier="api"),
            service_name=self.context.build_resource_name("service", qualifier="api"),
            cluster=cluster,
            task_definition=task_definition,
            desired_count=api.desired_count,
            security_groups=[security_group],
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS),
            assign_public_ip=False,
        )

    def _build_service_environment(
        self,
        shared: SharedResources,
        key: kms.IKey,
        data_bucket: s3.IBucket,
        queue: sqs.IQueue,
        identity: IdentityResources,
        database: rds.DatabaseCluster,
    ) -> Dict[str, str]:
        """Plain environment contract consumed by the API workload."""
        return {
            "AWS_REGION": self.config.aws.region,
            "TENANT_ID": self.config.tenant_id,
            "COGNITO_USER_POOL_ID": identity.user_pool.user_pool_id,
            "COGNITO_DOMAIN": identity.domain.base_url(),
            "COGNITO_REDIRECT_URL": identity.callback_url,
            "BEDROCK_MODEL_ID": self.config.services.api.bedrock_model_id,
            "S3_SHARE_SERVICE_INGEST_BUCKET_NAME": shared.ingest_bucket.bucket_name,
            "S3_TENANT_DATA_BUCKET_NAME": data_bucket.bucket_name,
            "SQS_TENANT_INGEST_S3_QUEUE_URL": queue.queue_url,
            "KMS_TENANT_KEY_ARN": key.key_arn,
            "DB_HOST": database.cluster_endpoint.hostname,
            "DB_PORT": str(constants.DB_PORT),
            "DB_NAME": self.config.database.name,
            "DB_USER": self.config.database.username,
        }

    def _build_service_secrets(
        self, identity: IdentityResources, database: rds.DatabaseCluster
    ) -> Dict[str, ecs.Secret]:
        """Secret-backed environment; values never appear in the task definition."""
        return {
            "DB_PASSWORD": ecs.Secret.from_secrets_manager(database.secret, "password"),
            "COGNITO_CLIENT_ID": ecs.Secret.from_secrets_manager(
                identity.client_secret, "clientId"
            ),
            "COGNITO_CLIENT_SECRET": ecs.Secret.from_secrets_manager(
                identity.client_secret, "clientSecret"
            ),
        }

    def _grant_service_permissions(
        self,
        task_definition: ecs.TaskDefinition,
        shared: SharedResources,
        key: kms.IKey,
        data_bucket: s3.IBucket,
    ) -> None:
        """Least-privilege policy for the API task role."""
        task_definition.add_to_task_role_policy(
            iam.PolicyStatement(
                sid="TenantObjectAccess",
                actions=["s3:GetObject", "s3:PutObject", "s3:DeleteObject"],
                resources=[
                    data_bucket.arn_for_objects("*"),
                    shared.ingest_bucket.arn_for_objects(f"{self.config.tenant_id}/*"),
                ],
            )
        )
        task_definition.add_to_task_role_policy(
            iam.PolicyStatement(
                sid="TenantKeyUsage",
                actions=[
                    "kms:Decrypt",
                    "kms:DescribeKey",
                    "kms:GenerateDataKey",
                    "kms:CreateGrant",
                ],
                resources=[key.key_arn, shared.key.key_arn],
            )
        )
        task_definition.add_to_task_role_policy(
            iam.PolicyStatement(
                sid="BedrockModelInvocation",
                actions=[
                    "bedrock:InvokeModel",
                    "bedrock:InvokeModelWithResponseStream",
                ],
                resources=[
                    constants.BEDROCK_MODEL_ARN.format(
                        region=self.config.aws.region,
                        model_id=self.config.services.api.bedrock_model_id,
                    )
                ],
            )
        )
        if self.config.services.api.federated_credentials:
            # Short-lived delegated credentials for direct browser uploads
            task_definition.add_to_task_role_policy(
                iam.PolicyStatement(
                    sid="FederatedUploadCredentials",
                    actions=["sts:GetFederationToken"],
                    resources=[
                        constants.FEDERATED_USER_ARN.format(
                            account=self.config.aws.account_id,
                            tenant_id=self.config.tenant_id,
                        )
                    ],
                )
            )

    def _attach_load_balancer(
        self, load_balancer: elbv2.ApplicationLoadBalancer, service: ecs.FargateService
    ) -> None:
        listener = load_balancer.add_listener(
            "HttpListener", port=constants.LISTENER_PORT, open=True
        )
        listener.add_targets(
            "ApiTarget",
            port=constants.API_CONTAINER_PORT,
            protocol=elbv2.ApplicationProtocol.HTTP,
            targets=[service],
            health_check=elbv2.HealthCheck(
                path=constants.HEALTH_CHECK_PATH,
                interval=Duration.seconds(constants.HEALTH_CHECK_INTERVAL_SECONDS),
            ),
        )
        service.connections.allow_from(
            load_balancer,
            ec2.Port.tcp(constants.API_CONTAINER_PORT),
            "ALB access on the API container port",
        )

    def _add_outputs(
        self,
        load_balancer: elbv2.ApplicationLoadBalancer,
        identity: IdentityResources,
        data_bucket: s3.IBucket,
        queue: sqs.IQueue,
        distribution: Optional[cloudfront.Distribution],
    ) -> None:
        CfnOutput(self.scope, "AlbDnsName", value=load_balancer.load_balancer_dns_name)
        CfnOutput(self.scope, "UserPoolId", value=identity.user_pool.user_pool_id)
        CfnOutput(self.scope, "AuthDomain", value=identity.domain.base_url())
        CfnOutput(self.scope, "DataBucketName", value=data_bucket.bucket_name)
        CfnOutput(self.scope, "ScanResultQueueUrl", value=queue.queue_url)
        if distribution is not None:
            CfnOutput(
                self.scope,
                "FrontendUrl",
                value=f"https://{distribution.distribution_domain_name}",
            )
