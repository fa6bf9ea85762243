"""Routes a deployment target to the shared platform or a tenant stack."""
from pathlib import Path
from typing import Optional, Union

from aws_cdk import App, Environment, Stack

import common.constants as constants
from common.config_loader import ConfigLoader
from common.logger import logger
from common.tenant_config import TenantConfig
from share_service.share_service_stack import ShareServiceBuilder
from tenant.tenant_stack import TenantBuilder


def is_share_service_target(target_id: Optional[str]) -> bool:
    """Exact match only: ``Share-Service`` is routed as a tenant."""
    return target_id == constants.SHARE_SERVICE_TARGET_ID


def build_stack_id(target_id: str, config: TenantConfig) -> str:
    if is_share_service_target(target_id):
        return f"{constants.SHARE_SERVICE_TARGET_ID}-{config.environment}-stack"
    return f"{config.tenant_id}-{config.environment}-tenant-stack"


def create_stack(
    app: App,
    target_id: Optional[str],
    config_dir: Union[str, Path, None] = None,
) -> Stack:
    """Resolve configuration for ``target_id`` and declare its stack into ``app``."""
    config = ConfigLoader(config_dir).load(target_id)
    env = Environment(account=config.aws.account_id, region=config.aws.region)
    stack = Stack(
        app,
        build_stack_id(target_id, config),
        env=env,
        tags={"TenantId": config.tenant_id, "Environment": config.environment},
    )

    if is_share_service_target(target_id):
        logger.info(
            "Building shared platform stack",
            extra={"stack": stack.stack_name, "environment": config.environment},
        )
        ShareServiceBuilder(stack, config).build()
    else:
        logger.info(
            "Building tenant stack",
            extra={"stack": stack.stack_name, "tenant_id": config.tenant_id},
        )
        TenantBuilder(stack, config).build()
    return stack
