from pathlib import Path
from typing import Any, Mapping

import pytest
from aws_cdk.assertions import Match, Template

from common.exports import ExportKey
from governance_checks import assert_kms_compliance, assert_s3_compliance
from stack_test_helpers import (
    COMMON_DOCUMENT,
    SHARE_SERVICE,
    SHARE_SERVICE_DOCUMENT,
    ExportTestCase,
    UpdateDeletePolicyTestCase,
    as_list,
    build_template,
    collect_export_names,
    config_dir,
    find_resources_by_type,
    find_statement,
    get_single_resource_id,
    share_service_template,
    with_overrides,
    write_config,
)


@pytest.fixture
def template(share_service_template: Template) -> Template:
    return share_service_template


@pytest.fixture
def json_template(template: Template) -> Mapping[str, Any]:
    return template.to_json()


@pytest.fixture
def destroy_template(tmp_path: Path) -> Template:
    common = with_overrides(COMMON_DOCUMENT, removal={"destroyOnDelete": True})
    return build_template(write_config(tmp_path, common=common), SHARE_SERVICE)


@pytest.fixture
def batch_template(tmp_path: Path) -> Template:
    share_service = with_overrides(
        SHARE_SERVICE_DOCUMENT, services={"api": {}, "batch": {"image": {"tag": "latest"}}}
    )
    return build_template(write_config(tmp_path, share_service=share_service), SHARE_SERVICE)


# ----------------------------- Resource count smoke test ------------------------

RESOURCES = [
    ("AWS::KMS::Key", 1),
    ("AWS::KMS::Alias", 1),
    ("AWS::ECR::Repository", 1),
    ("AWS::S3::Bucket", 1),
    ("AWS::S3::BucketPolicy", 1),
    ("AWS::IAM::Role", 1),
    ("AWS::IAM::Policy", 1),
    ("AWS::GuardDuty::MalwareProtectionPlan", 1),
    ("AWS::EC2::VPC", 0),
]


@pytest.mark.parametrize("resource_type,expected", RESOURCES)
def test_resource_count(template: Template, resource_type: str, expected: int):
    template.resource_count_is(resource_type, expected)


# ------------------- KMS key tests -------------------


def test_key_rotates_and_is_aliased(template: Template):
    template.has_resource_properties("AWS::KMS::Key", {"EnableKeyRotation": True})
    template.has_resource_properties(
        "AWS::KMS::Alias", {"AliasName": "alias/share-service-dev-key"}
    )
    assert_kms_compliance(template)


def test_key_policy_allows_service_principals(json_template: Mapping[str, Any]):
    key_id = get_single_resource_id(
        {k: v for k, v in json_template["Resources"].items() if v["Type"] == "AWS::KMS::Key"}
    )
    statements = json_template["Resources"][key_id]["Properties"]["KeyPolicy"]["Statement"]
    services = next(s for s in statements if s.get("Sid") == "AllowAwsServicesUseOfKey")

    principals = set(as_list(services["Principal"]["Service"]))
    assert {
        "s3.amazonaws.com",
        "ecr.amazonaws.com",
        "ecs.amazonaws.com",
        "logs.us-east-1.amazonaws.com",
        "sqs.amazonaws.com",
        "events.amazonaws.com",
        "rds.amazonaws.com",
    } <= principals
    assert "kms:*" not in as_list(services["Action"])
    assert {s.get("Sid") for s in statements} >= {
        "EnableRootAccountPermissions",
        "AllowAwsServicesUseOfKey",
    }


# ------------------- ECR tests -------------------


def test_api_repository_properties(template: Template):
    template.has_resource_properties(
        "AWS::ECR::Repository",
        {
            "RepositoryName": "share-service-dev-api-repository",
            "ImageScanningConfiguration": {"ScanOnPush": True},
            "ImageTagMutability": "MUTABLE",
            "EncryptionConfiguration": {
                "EncryptionType": "KMS",
                "KmsKey": {"Fn::GetAtt": [Match.string_like_regexp(r"ShareServiceKey.*"), "Arn"]},
            },
        },
    )


def test_batch_repository_only_when_configured(batch_template: Template):
    batch_template.resource_count_is("AWS::ECR::Repository", 2)
    batch_template.has_resource_properties(
        "AWS::ECR::Repository", {"RepositoryName": "share-service-dev-batch-repository"}
    )
    assert {
        "share-service:dev:us-east-1:batchRepositoryArn",
        "share-service:dev:us-east-1:batchRepositoryName",
        "share-service:dev:us-east-1:batchRepositoryUri",
    } <= set(collect_export_names(batch_template))


# ------------------- S3 Bucket tests -------------------


def test_ingest_bucket_enforces_strict_access(template: Template):
    template.has_resource_properties(
        "AWS::S3::Bucket",
        {
            "BucketName": "share-service-dev-us-east-1-ingest",
            "PublicAccessBlockConfiguration": {
                "BlockPublicAcls": True,
                "BlockPublicPolicy": True,
                "IgnorePublicAcls": True,
                "RestrictPublicBuckets": True,
            },
            "BucketEncryption": {
                "ServerSideEncryptionConfiguration": [
                    Match.object_like(
                        {
                            "BucketKeyEnabled": True,
                            "ServerSideEncryptionByDefault": Match.object_like(
                                {"SSEAlgorithm": "aws:kms"}
                            ),
                        }
                    )
                ]
            },
            "OwnershipControls": {"Rules": [{"ObjectOwnership": "BucketOwnerEnforced"}]},
        },
    )
    assert_s3_compliance(template)


def test_ingest_bucket_denies_insecure_transport(template: Template):
    template.has_resource_properties(
        "AWS::S3::BucketPolicy",
        {
            "PolicyDocument": {
                "Statement": Match.array_with(
                    [
                        Match.object_like(
                            {
                                "Effect": "Deny",
                                "Condition": {"Bool": {"aws:SecureTransport": "false"}},
                            }
                        )
                    ]
                )
            }
        },
    )


# ------------------- Malware protection tests -------------------


def test_malware_protection_plan(template: Template, json_template: Mapping[str, Any]):
    role_id = get_single_resource_id(find_resources_by_type(template, "AWS::IAM::Role"), "role")
    bucket_id = get_single_resource_id(find_resources_by_type(template, "AWS::S3::Bucket"), "bucket")
    plans = find_resources_by_type(template, "AWS::GuardDuty::MalwareProtectionPlan")
    plan = plans[get_single_resource_id(plans, "plan")]

    assert plan["Properties"] == {
        "Role": {"Fn::GetAtt": [role_id, "Arn"]},
        "ProtectedResource": {"S3Bucket": {"BucketName": {"Ref": bucket_id}}},
        "Actions": {"Tagging": {"Status": "ENABLED"}},
    }
    assert role_id in as_list(plan.get("DependsOn", []))


def test_malware_scan_role_trust(template: Template):
    template.has_resource_properties(
        "AWS::IAM::Role",
        {
            "RoleName": "share-service-dev-malware-scan-role",
            "AssumeRolePolicyDocument": {
                "Statement": [
                    Match.object_like(
                        {
                            "Action": "sts:AssumeRole",
                            "Effect": "Allow",
                            "Principal": {
                                "Service": "malware-protection-plan.guardduty.amazonaws.com"
                            },
                        }
                    )
                ]
            },
        },
    )


@pytest.mark.parametrize(
    "sid,actions",
    [
        ("AllowManagedRuleToSendS3EventsToGuardDuty", {"events:PutRule", "events:PutTargets"}),
        (
            "AllowBucketNotificationAndListing",
            {"s3:ListBucket", "s3:GetBucketNotification", "s3:PutBucketNotification"},
        ),
        ("AllowObjectReadAndTagging", {"s3:GetObject", "s3:PutObjectTagging"}),
        ("AllowDecryptForMalwareScan", {"kms:Decrypt", "kms:GenerateDataKey"}),
    ],
)
def test_malware_scan_role_permissions(template: Template, sid: str, actions: set):
    statement = find_statement(template, sid)

    assert statement is not None
    assert statement["Effect"] == "Allow"
    assert actions <= set(as_list(statement["Action"]))


# ------------------- Export tests -------------------

EXPORT_TEST_CASES = [
    ExportTestCase(id="ExportKmsKeyArn", export_name="share-service:dev:us-east-1:kmsKeyArn"),
    ExportTestCase(
        id="ExportApiRepositoryArn", export_name="share-service:dev:us-east-1:apiRepositoryArn"
    ),
    ExportTestCase(
        id="ExportApiRepositoryName", export_name="share-service:dev:us-east-1:apiRepositoryName"
    ),
    ExportTestCase(
        id="ExportApiRepositoryUri", export_name="share-service:dev:us-east-1:apiRepositoryUri"
    ),
    ExportTestCase(
        id="ExportIngestBucketArn", export_name="share-service:dev:us-east-1:ingestBucketArn"
    ),
    ExportTestCase(
        id="ExportIngestBucketName", export_name="share-service:dev:us-east-1:ingestBucketName"
    ),
]


@pytest.mark.parametrize("case", EXPORT_TEST_CASES, ids=lambda test: test.id)
def test_exports(template: Template, case: ExportTestCase):
    template.has_output(case.id, {"Export": {"Name": case.export_name}})


def test_no_batch_exports_without_batch_service(template: Template):
    names = collect_export_names(template)

    assert len(names) == len(EXPORT_TEST_CASES)
    assert not any(ExportKey.BATCH_REPOSITORY_ARN.value in name for name in names)


# ------------------- Update/Delete Policy tests -------------------
RETAINED_RESOURCES = [
    UpdateDeletePolicyTestCase(id="AWS::KMS::Key", update_policy="Retain", delete_policy="Retain"),
    UpdateDeletePolicyTestCase(
        id="AWS::ECR::Repository", update_policy="Retain", delete_policy="Retain"
    ),
    UpdateDeletePolicyTestCase(id="AWS::S3::Bucket", update_policy="Retain", delete_policy="Retain"),
]

DESTROYED_RESOURCES = [
    UpdateDeletePolicyTestCase(id="AWS::KMS::Key", update_policy="Delete", delete_policy="Delete"),
    UpdateDeletePolicyTestCase(
        id="AWS::ECR::Repository", update_policy="Delete", delete_policy="Delete"
    ),
    UpdateDeletePolicyTestCase(id="AWS::S3::Bucket", update_policy="Delete", delete_policy="Delete"),
]


@pytest.mark.parametrize("case", RETAINED_RESOURCES, ids=lambda test: test.id)
def test_data_resources_retained_by_default(
    template: Template,
    json_template: Mapping[str, Any],
    case: UpdateDeletePolicyTestCase,
):
    logical_id = get_single_resource_id(find_resources_by_type(template, case.id), case.id)

    assert json_template["Resources"][logical_id]["DeletionPolicy"] == case.delete_policy
    assert json_template["Resources"][logical_id]["UpdateReplacePolicy"] == case.update_policy


@pytest.mark.parametrize("case", DESTROYED_RESOURCES, ids=lambda test: test.id)
def test_data_resources_destroyed_when_requested(
    destroy_template: Template, case: UpdateDeletePolicyTestCase
):
    resources = find_resources_by_type(destroy_template, case.id)
    resource = resources[get_single_resource_id(resources, case.id)]

    assert resource["DeletionPolicy"] == case.delete_policy
    assert resource["UpdateReplacePolicy"] == case.update_policy


def test_destroy_mode_empties_bucket_and_repository(destroy_template: Template):
    destroy_template.resource_count_is("Custom::S3AutoDeleteObjects", 1)
    destroy_template.has_resource_properties("AWS::ECR::Repository", {"EmptyOnDelete": True})


def test_retain_mode_keeps_contents(template: Template):
    template.resource_count_is("Custom::S3AutoDeleteObjects", 0)
    repositories = find_resources_by_type(template, "AWS::ECR::Repository")
    repository = repositories[get_single_resource_id(repositories, "repository")]
    assert repository["Properties"].get("EmptyOnDelete") is not True
