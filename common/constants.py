from aws_cdk import aws_ec2 as ec2

# Deployment targets
SHARE_SERVICE_TARGET_ID = "share-service"  # Well-known shared platform target
TARGET_CONTEXT_KEY = "tenantId"
CONFIG_DIR_CONTEXT_KEY = "configDir"

# Configuration documents
CONFIG_DIR = "config"
CONFIG_EXTENSION = ".yaml"
COMMON_CONFIG_NAME = "common"

DEFAULT_ENV = "dev"
PROTECTED_ENVIRONMENTS = ("prod", "production")

# Logging
SERVICE_NAME = "tenant-infra"
DEFAULT_LOG_LEVEL = "INFO"

# Cross-stack export names: <namespace>:<environment>:<region>:<key>
EXPORT_NAME_SEPARATOR = ":"
NAMESPACE_COMPONENT_PATTERN = r"^[a-z0-9](?:[a-z0-9-]*[a-z0-9])?$"
# Environments follow the tenant id in `<tenant>-<env>` name prefixes, so they
# carry no hyphen and the prefix splits back into exactly one pair.
ENVIRONMENT_PATTERN = r"^[a-z0-9]+$"

# Encryption
KEY_SERVICE_ACTIONS = [
    "kms:Encrypt",
    "kms:Decrypt",
    "kms:ReEncrypt*",
    "kms:GenerateDataKey*",
    "kms:DescribeKey",
]
KEY_SERVICE_PRINCIPALS = [
    "s3.amazonaws.com",
    "ecr.amazonaws.com",
    "ecs.amazonaws.com",
    "logs.{region}.amazonaws.com",
    "sqs.amazonaws.com",
    "events.amazonaws.com",
    "rds.amazonaws.com",
]

# Malware scanning
MALWARE_PROTECTION_PRINCIPAL = "malware-protection-plan.guardduty.amazonaws.com"
MALWARE_PROTECTION_RULE_ARN = "arn:aws:events:{region}:{account}:rule/DO-NOT-DELETE-AmazonGuardDutyMalwareProtectionS3*"
MALWARE_SCAN_EVENT_SOURCE = "aws.guardduty"
MALWARE_SCAN_EVENT_DETAIL_TYPE = "GuardDuty Malware Protection Object Scan Result"

# Networking
VPC_CIDR = "10.0.0.0/16"
SUBNET_CIDR_MASK = 20
DEFAULT_MAX_AZS = 2
DEFAULT_NAT_GATEWAYS = 0
S3_PREFIX_LIST_NAME = "com.amazonaws.{region}.s3"
HTTPS_PORT = 443
DNS_PORT = 53
INTERFACE_ENDPOINTS = {
    "BedrockRuntime": ec2.InterfaceVpcEndpointAwsService.BEDROCK_RUNTIME,
    "EventBridge": ec2.InterfaceVpcEndpointAwsService.EVENTBRIDGE,
    "CloudWatchLogs": ec2.InterfaceVpcEndpointAwsService.CLOUDWATCH_LOGS,
    "CognitoIdp": ec2.InterfaceVpcEndpointAwsService.COGNITO_IDP,
    "Kms": ec2.InterfaceVpcEndpointAwsService.KMS,
    "Ecr": ec2.InterfaceVpcEndpointAwsService.ECR,
    "EcrDocker": ec2.InterfaceVpcEndpointAwsService.ECR_DOCKER,
    "SecretsManager": ec2.InterfaceVpcEndpointAwsService.SECRETS_MANAGER,
    "Sqs": ec2.InterfaceVpcEndpointAwsService.SQS,
}

# Compute
API_CONTAINER_PORT = 8080
LISTENER_PORT = 80
WAF_MANAGED_RULE_GROUP = "AWSManagedRulesCommonRuleSet"
HEALTH_CHECK_PATH = "/api/v1/health"
HEALTH_CHECK_INTERVAL_SECONDS = 30
DEFAULT_TASK_CPU = 256
DEFAULT_TASK_MEMORY_MIB = 512
DEFAULT_DESIRED_COUNT = 1
API_LOG_STREAM_PREFIX = "api"
BEDROCK_MODEL_ARN = "arn:aws:bedrock:{region}::foundation-model/{model_id}"
FEDERATED_USER_ARN = "arn:aws:sts::{account}:federated-user/{tenant_id}-*"

# Identity
OAUTH_CALLBACK_PATH = "/callback"
ACCESS_TOKEN_VALIDITY_MINUTES = 60

# Database
DB_PORT = 5432
DEFAULT_DB_NAME = "app"
DEFAULT_DB_USERNAME = "postgres"
DEFAULT_DB_READERS = 1

# Messaging
QUEUE_RETENTION_DAYS = 14
QUEUE_VISIBILITY_TIMEOUT_SECONDS = 90
QUEUE_MAX_RECEIVE_COUNT = 3
