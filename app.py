#!/usr/bin/env python3
"""AWS CDK entrypoint for the multi-tenant platform infrastructure.

Select the deployment target through CDK context:

    cdk deploy -c tenantId=share-service   # shared platform, deploy first
    cdk deploy -c tenantId=cust-001        # one tenant

Configuration is read from ``config/common.yaml`` and
``config/<tenantId>.yaml``; pass ``-c configDir=<path>`` to read it elsewhere.
"""
import sys

import aws_cdk as cdk

import common.constants as constants
from common.errors import InfraConfigError
from common.logger import logger
from common.stack_controller import create_stack


def main() -> None:
    app = cdk.App()
    target_id = app.node.try_get_context(constants.TARGET_CONTEXT_KEY)
    config_dir = app.node.try_get_context(constants.CONFIG_DIR_CONTEXT_KEY)

    try:
        create_stack(app, target_id, config_dir)
    except InfraConfigError as exc:
        logger.error(str(exc), extra={"error": type(exc).__name__})
        sys.exit(1)

    app.synth()


if __name__ == "__main__":
    main()
