from aws_cdk import aws_iam as iam, aws_kms as kms

import common.constants as constants
from common.stack_context import StackContext


def build_key_policy(context: StackContext) -> iam.PolicyDocument:
    """Key policy shared by the platform key and every tenant key.

    The account root keeps full control so IAM policies can delegate use of
    the key; the listed AWS service principals may only encrypt, decrypt and
    describe.
    """
    service_principals = [
        iam.ServicePrincipal(principal.format(region=context.region))
        for principal in constants.KEY_SERVICE_PRINCIPALS
    ]
    return iam.PolicyDocument(
        statements=[
            iam.PolicyStatement(
                sid="EnableRootAccountPermissions",
                principals=[iam.AccountRootPrincipal()],
                actions=["kms:*"],
                resources=["*"],
            ),
            iam.PolicyStatement(
                sid="AllowAwsServicesUseOfKey",
                principals=service_principals,
                actions=constants.KEY_SERVICE_ACTIONS,
                resources=["*"],
            ),
        ]
    )


def build_service_key(context: StackContext) -> kms.Key:
    return kms.Key(
        context.scope,
        context.build_resource_id("key"),
        alias=f"alias/{context.build_resource_name('key')}",
        description=f"Encryption key for {context.tenant_id} ({context.environment})",
        enable_key_rotation=True,
        policy=build_key_policy(context),
        removal_policy=context.removal_policy,
    )
