"""
Configuration module for Paranoia Toolkit.

Provides centralized configuration for soft delete behaviour shared by all
paranoid models and services.
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional, Union, get_args, get_origin

from pydantic import BaseModel, Field, field_validator


class ParanoiaConfig(BaseModel):
    """Central configuration for soft delete behaviour.

    Per-model settings (marker column, sentinel value, flag column) live on
    each model's ``MarkerPolicy``. This class holds the process-wide defaults
    those policies and the ``SoftDeleteService`` fall back to.

    Configuration Sources (in order of precedence):
        1. Programmatic settings (highest priority)
        2. Environment variables (PARANOIA_ prefix)
        3. Configuration files (JSON or YAML)
        4. Default values (lowest priority)

    Example:
        >>> config = ParanoiaConfig(default_column="removed_at")
        >>> import os
        >>> os.environ['PARANOIA_AUTO_COMMIT'] = 'true'
        >>> config = ParanoiaConfig.from_env()
        >>> config = ParanoiaConfig.from_file('paranoia.yaml')

    Note:
        Policies resolve ``default_column`` when they are created, so change
        it before model classes are imported.
    """

    environment: str = Field(
        "production", description="Environment (development, staging, production)"
    )

    # Marker settings
    default_column: str = Field(
        "deleted_at", description="Marker column used when a policy names none"
    )
    timezone_aware_markers: bool = Field(
        False, description="Write timezone-aware UTC timestamps into marker columns"
    )

    # Lifecycle settings
    update_marker_before_hard_delete: bool = Field(
        True, description="Stamp the marker column before physically deleting"
    )
    warn_on_record_restore: bool = Field(
        True, description="Warn when restore_by_id receives loaded records"
    )
    auto_commit: bool = Field(
        False, description="Also commit the caller's open transaction on success"
    )

    # Logging settings
    log_transitions: bool = Field(
        False, description="Log lifecycle transitions at INFO instead of DEBUG"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is valid."""
        valid_environments = {"development", "staging", "production", "test"}
        if v.lower() not in valid_environments:
            raise ValueError(
                f"Environment must be one of: {', '.join(sorted(valid_environments))}"
            )
        return v.lower()

    @field_validator("default_column")
    @classmethod
    def validate_default_column(cls, v: str) -> str:
        """Ensure the marker column is a usable attribute name."""
        if not v.isidentifier():
            raise ValueError(f"'{v}' is not a valid column attribute name")
        return v

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return self.model_dump()

    @classmethod
    def from_env(cls, prefix: str = "PARANOIA_") -> "ParanoiaConfig":
        """
        Load configuration from environment variables.

        Args:
            prefix: Prefix for environment variables

        Returns:
            Configuration instance
        """
        import os

        config_dict: Dict[str, Any] = {}

        for field_name, field_info in cls.model_fields.items():
            env_var = f"{prefix}{field_name.upper()}"
            if env_var in os.environ:
                value = os.environ[env_var]

                field_type = field_info.annotation

                # Handle Optional types
                if get_origin(field_type) is Union:
                    args = get_args(field_type)
                    field_type = next(
                        (arg for arg in args if arg is not type(None)), str
                    )

                try:
                    if field_type == bool:
                        config_dict[field_name] = value.lower() in (
                            "true",
                            "1",
                            "yes",
                            "on",
                        )
                    elif field_type == int:
                        config_dict[field_name] = int(value)
                    else:
                        config_dict[field_name] = value
                except (ValueError, TypeError):
                    # Let pydantic report the bad value
                    config_dict[field_name] = value

        return cls.model_validate(config_dict)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ParanoiaConfig":
        """
        Load configuration from a JSON or YAML file.

        Args:
            path: Path to a ``.json``, ``.yaml`` or ``.yml`` file

        Returns:
            Configuration instance
        """
        path = Path(path)
        text = path.read_text(encoding="utf-8")

        if path.suffix.lower() in (".yaml", ".yml"):
            import yaml

            data = yaml.safe_load(text) or {}
        else:
            data = json.loads(text)

        return cls.model_validate(data)


# Global configuration instance
_config: Optional[ParanoiaConfig] = None


def get_config() -> ParanoiaConfig:
    """
    Get the global configuration instance.

    Returns:
        Global configuration
    """
    global _config

    if _config is None:
        _config = ParanoiaConfig.from_env()

    return _config


def set_config(config: Optional[ParanoiaConfig]) -> None:
    """
    Set the global configuration instance.

    Args:
        config: Configuration to set, or None to reload from the environment
    """
    global _config
    _config = config


def configure(**kwargs: Any) -> ParanoiaConfig:
    """
    Configure the toolkit with keyword arguments.

    Args:
        **kwargs: Configuration parameters

    Returns:
        Updated configuration
    """
    global _config

    if _config is None:
        _config = ParanoiaConfig(**kwargs)
    else:
        config_dict = _config.to_dict()
        config_dict.update(kwargs)
        _config = ParanoiaConfig(**config_dict)

    return _config
