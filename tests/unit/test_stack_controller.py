from pathlib import Path

import pytest
from aws_cdk import App
from aws_cdk.assertions import Template

import app as entrypoint
from common.config_loader import ConfigLoader
from common.errors import ConfigNotFoundError, MissingTargetError
from common.stack_controller import build_stack_id, create_stack, is_share_service_target
from stack_test_helpers import (
    SHARE_SERVICE,
    TENANT,
    config_dir,
    write_document,
)


@pytest.mark.parametrize(
    "target_id,expected",
    [
        (SHARE_SERVICE, True),
        ("Share-Service", False),
        ("share-service-2", False),
        (TENANT, False),
        (None, False),
    ],
)
def test_share_service_target_is_exact_match(target_id, expected):
    assert is_share_service_target(target_id) is expected


def test_share_service_target_builds_platform_stack(config_dir: Path):
    stack = create_stack(App(), SHARE_SERVICE, config_dir)
    template = Template.from_stack(stack)

    assert stack.stack_name == "share-service-dev-stack"
    template.resource_count_is("AWS::ECR::Repository", 1)
    template.resource_count_is("AWS::EC2::VPC", 0)


def test_tenant_target_builds_tenant_stack(config_dir: Path):
    stack = create_stack(App(), TENANT, config_dir)
    template = Template.from_stack(stack)

    assert stack.stack_name == "cust-001-dev-tenant-stack"
    template.resource_count_is("AWS::EC2::VPC", 1)
    template.resource_count_is("AWS::ECR::Repository", 0)


def test_stack_environment_comes_from_config(config_dir: Path):
    stack = create_stack(App(), TENANT, config_dir)

    assert stack.account == "111111111111"
    assert stack.region == "us-east-1"


def test_stack_is_tagged_with_tenant_and_environment(config_dir: Path):
    stack = create_stack(App(), TENANT, config_dir)

    assert stack.tags.tag_values() == {"TenantId": TENANT, "Environment": "dev"}


def test_tenant_stack_id_uses_configured_tenant_id(config_dir: Path):
    write_document(
        config_dir,
        "cust-002",
        {
            "tenantId": "acme",
            "services": {"api": {"image": "v1", "bedrockModelId": "model"}},
        },
    )

    stack = create_stack(App(), "cust-002", config_dir)

    assert stack.stack_name == "acme-dev-tenant-stack"


def test_build_stack_id_for_share_service(config_dir: Path):
    stack = create_stack(App(), SHARE_SERVICE, config_dir)
    config = ConfigLoader(config_dir).load(SHARE_SERVICE)

    assert stack.stack_name == build_stack_id(SHARE_SERVICE, config)


def test_missing_target_is_fatal(config_dir: Path):
    with pytest.raises(MissingTargetError):
        create_stack(App(), None, config_dir)


def test_unknown_target_is_fatal(config_dir: Path):
    with pytest.raises(ConfigNotFoundError):
        create_stack(App(), "cust-404", config_dir)


# ------------------- CLI entrypoint -------------------


def _patch_app(monkeypatch, tmp_path: Path, context: dict) -> None:
    monkeypatch.setattr(
        entrypoint.cdk, "App", lambda: App(context=context, outdir=str(tmp_path / "cdk.out"))
    )


def test_main_exits_non_zero_without_target(monkeypatch, tmp_path: Path, config_dir: Path):
    _patch_app(monkeypatch, tmp_path, {"configDir": str(config_dir)})

    with pytest.raises(SystemExit) as exc_info:
        entrypoint.main()

    assert exc_info.value.code == 1


def test_main_exits_non_zero_for_unknown_target(monkeypatch, tmp_path: Path, config_dir: Path):
    _patch_app(monkeypatch, tmp_path, {"tenantId": "cust-404", "configDir": str(config_dir)})

    with pytest.raises(SystemExit) as exc_info:
        entrypoint.main()

    assert exc_info.value.code == 1


def test_main_synthesizes_selected_target(monkeypatch, tmp_path: Path, config_dir: Path):
    _patch_app(monkeypatch, tmp_path, {"tenantId": SHARE_SERVICE, "configDir": str(config_dir)})

    entrypoint.main()

    assert (tmp_path / "cdk.out" / "share-service-dev-stack.template.json").is_file()