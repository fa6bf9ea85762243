"""Shared powertools logger for synthesis-time diagnostics.

The level comes from the LOG_LEVEL environment variable.
"""
import os

from aws_lambda_powertools import Logger

import common.constants as constants

logger = Logger(
    service=constants.SERVICE_NAME,
    level=os.getenv("LOG_LEVEL", constants.DEFAULT_LOG_LEVEL).upper(),
)
