"""Pipeline definitions and runtime settings."""

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .loader import load_pipeline, validate_pipeline_file
from .models import (
    CredentialBinding,
    EchoStep,
    LogFormat,
    LogLevel,
    MeterianScanStep,
    PipelineDefinition,
    PipelineOptions,
    PostConfig,
    ShStep,
    StageConfig,
    Step,
    TriggerConfig,
    WithCredentialsStep,
)

__all__ = [
    # Loader functions
    "load_pipeline",
    "validate_pipeline_file",
    "load_environment_config",
    # Definition models
    "PipelineDefinition",
    "PipelineOptions",
    "StageConfig",
    "Step",
    "EchoStep",
    "ShStep",
    "MeterianScanStep",
    "WithCredentialsStep",
    "CredentialBinding",
    "TriggerConfig",
    "PostConfig",
    "EnvironmentConfig",
    # Enums
    "LogLevel",
    "LogFormat",
    # Exceptions
    "ConfigurationError",
]
