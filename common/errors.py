"""Error taxonomy for configuration resolution and stack construction.

Every fatal condition derives from ``InfraConfigError`` so the CLI entrypoint
can turn it into a diagnostic and a non-zero exit status. Unresolved
cross-stack imports are not represented here: CloudFormation reports them at
apply time.
"""
from typing import Optional


class InfraConfigError(Exception):
    """Base class for fatal configuration and construction errors."""


class MissingTargetError(InfraConfigError):
    def __init__(self) -> None:
        super().__init__(
            "No deployment target provided. Use -c tenantId=<id> to target a specific stack."
        )


class ConfigNotFoundError(InfraConfigError):
    def __init__(self, target_id: str, path: str) -> None:
        self.target_id = target_id
        self.path = path
        super().__init__(f"Config file for target {target_id} not found at {path}")


class ConfigParseError(InfraConfigError):
    def __init__(self, path: str, diagnostic: str) -> None:
        self.path = path
        self.diagnostic = diagnostic
        super().__init__(f"Error parsing config YAML {path}: {diagnostic}")


class InvalidConfigError(InfraConfigError):
    def __init__(self, key: str, reason: str, value: Optional[object] = None) -> None:
        self.key = key
        self.reason = reason
        self.value = value
        message = f"Invalid config value for '{key}': {reason}"
        if value is not None:
            message += f" (got {value!r})"
        super().__init__(message)


class ConfigWarning(UserWarning):
    """Non-fatal configuration condition, e.g. a missing common layer."""
