"""Layered YAML configuration for deployment targets.

Two documents are read from the config directory: ``common.yaml`` (optional
defaults shared by every target) and ``<target>.yaml`` (required, except for
the shared platform target). They are merged with a *shallow* override: any
top-level key present in the target document replaces the common value
wholesale. Nested mappings are never merged, so overriding
``services.api.bedrockModelId`` drops every sibling under ``services`` that
the target document does not repeat.
"""
import warnings
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

import common.constants as constants
from common.errors import (
    ConfigNotFoundError,
    ConfigParseError,
    ConfigWarning,
    MissingTargetError,
)
from common.logger import logger
from common.tenant_config import TenantConfig


def merge_layers(common: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Shallow merge: top-level keys of ``override`` win, nothing recurses."""
    return {**common, **override}


def read_document(path: Path) -> Dict[str, Any]:
    try:
        content = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigParseError(str(path), str(exc)) from exc
    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ConfigParseError(
            str(path), f"expected a mapping at the top level, got {type(content).__name__}"
        )
    return content


class ConfigLoader:
    def __init__(self, config_dir: Union[str, Path, None] = None) -> None:
        self.config_dir = Path(config_dir) if config_dir else Path(constants.CONFIG_DIR)

    def document_path(self, name: str) -> Path:
        return self.config_dir / f"{name}{constants.CONFIG_EXTENSION}"

    def resolve(self, target_id: Optional[str]) -> Dict[str, Any]:
        """Return the merged configuration document for ``target_id``."""
        if not target_id or not target_id.strip():
            raise MissingTargetError()

        lower_target_id = target_id.lower()
        common_path = self.document_path(constants.COMMON_CONFIG_NAME)
        target_path = self.document_path(lower_target_id)

        common: Dict[str, Any] = {}
        if common_path.is_file():
            common = read_document(common_path)
            logger.debug("Loaded common config", extra={"path": str(common_path)})
        else:
            message = f"{constants.COMMON_CONFIG_NAME}{constants.CONFIG_EXTENSION} not found at {common_path}"
            logger.warning(message)
            warnings.warn(message, ConfigWarning, stacklevel=2)

        if target_path.is_file():
            override = read_document(target_path)
            logger.debug("Loaded target config", extra={"path": str(target_path)})
        elif target_id == constants.SHARE_SERVICE_TARGET_ID:
            logger.info("No target config for shared platform, using common layer only")
            override = {}
        else:
            raise ConfigNotFoundError(lower_target_id, str(target_path))

        return merge_layers(common, override)

    def load(self, target_id: Optional[str]) -> TenantConfig:
        """Resolve and validate the configuration for ``target_id``."""
        document = self.resolve(target_id)
        return TenantConfig.from_document(document, target_id)
