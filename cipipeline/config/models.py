"""Pipeline definition schema using Pydantic."""

import re
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, Field, field_validator, model_validator

from .duration import DurationParseError, parse_duration, validate_duration_range

VARIABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Step types that may be written as a single-key mapping, e.g. ``- sh: make``
SHORTHAND_STEP_FIELDS = {"echo": "message", "sh": "script"}


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    KEY_VALUE = "key-value"


def _check_variable_name(name: str) -> str:
    if not VARIABLE_NAME_PATTERN.match(name):
        raise ValueError(
            f"'{name}' is not a valid environment variable name "
            "(letters, digits and underscores, not starting with a digit)"
        )
    return name


def _check_timeout(value: Optional[str], label: str) -> Optional[str]:
    if value is None:
        return None
    try:
        validate_duration_range(
            parse_duration(value), min_seconds=1, max_seconds=86400, label=label
        )
    except DurationParseError as e:
        raise ValueError(str(e)) from e
    return value


def _stringify_environment(value: Any) -> Any:
    """YAML turns ``PORT: 8080`` into an int; environment values are strings."""
    if not isinstance(value, dict):
        return value
    result = {}
    for key, item in value.items():
        if item is None:
            item = ""
        elif isinstance(item, bool):
            item = str(item).lower()
        elif isinstance(item, (int, float)):
            item = str(item)
        result[key] = item
    return result


def _check_environment_names(value: Dict[str, str]) -> Dict[str, str]:
    for name in value:
        _check_variable_name(name)
    return value


def expand_step_shorthand(steps: Any) -> Any:
    """Rewrite ``{"sh": "make"}`` into ``{"type": "sh", "script": "make"}``.

    Mappings that already carry ``type`` (and non-mappings) pass through for
    the discriminated union to judge.
    """
    if not isinstance(steps, list):
        return steps

    expanded = []
    for step in steps:
        if isinstance(step, dict) and "type" not in step and len(step) == 1:
            kind, value = next(iter(step.items()))
            if kind in SHORTHAND_STEP_FIELDS:
                step = {"type": kind, SHORTHAND_STEP_FIELDS[kind]: value}
        expanded.append(step)
    return expanded


class CredentialBinding(BaseModel):
    """Expose one secret-text credential as an environment variable."""

    credentials_id: str = Field(..., min_length=1, description="Credential id in the store")
    variable: str = Field(..., min_length=1, description="Variable receiving the secret")

    @field_validator("credentials_id")
    @classmethod
    def strip_credentials_id(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("credentials_id cannot be empty or whitespace-only")
        return stripped

    @field_validator("variable")
    @classmethod
    def validate_variable(cls, v: str) -> str:
        return _check_variable_name(v.strip())


class EchoStep(BaseModel):
    """Write a message to the build log."""

    type: Literal["echo"] = "echo"
    message: str

    @field_validator("message", mode="before")
    @classmethod
    def coerce_message(cls, v: Any) -> Any:
        if v is None:
            return ""
        if isinstance(v, (int, float)):
            return str(v)
        return v

    @property
    def label(self) -> str:
        return f"echo {self.message}"


class ShStep(BaseModel):
    """Run a shell command in the workspace."""

    type: Literal["sh"] = "sh"
    script: str = Field(..., min_length=1)
    unstable_exit_codes: List[int] = Field(
        default_factory=list,
        description="Exit codes reported as UNSTABLE instead of FAILURE",
    )
    timeout: Optional[str] = Field(None, description="Kill the command after this duration")

    @field_validator("script")
    @classmethod
    def validate_script(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("script cannot be empty or whitespace-only")
        return v

    @field_validator("unstable_exit_codes")
    @classmethod
    def validate_exit_codes(cls, v: List[int]) -> List[int]:
        if 0 in v:
            raise ValueError("exit code 0 always means success and cannot be unstable")
        return v

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: Optional[str]) -> Optional[str]:
        return _check_timeout(v, "Step timeout")

    @property
    def label(self) -> str:
        first_line = self.script.strip().splitlines()[0]
        return f"sh {first_line}"


class MeterianScanStep(BaseModel):
    """Run the Meterian scanner container against the workspace."""

    type: Literal["meterian_scan"] = "meterian_scan"
    image: str = Field("meterian/cli", min_length=1)
    tag: Optional[str] = None
    token_variable: str = Field(
        "METERIAN_API_TOKEN", description="Variable name passed into the container"
    )
    token_source_variable: Optional[str] = Field(
        None, description="Variable whose value is passed; defaults to token_variable"
    )
    workspace_mount: str = Field("/workspace", description="Mount point of the current directory")
    extra_args: List[str] = Field(default_factory=list, description="Arguments for the scanner")
    interactive: bool = Field(False, description="Pass -it to docker run")
    unstable_exit_codes: List[int] = Field(default_factory=list)
    timeout: Optional[str] = None

    @field_validator("token_variable", "token_source_variable")
    @classmethod
    def validate_variables(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return _check_variable_name(v.strip())

    @field_validator("workspace_mount")
    @classmethod
    def validate_mount(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("workspace_mount must be an absolute path inside the container")
        return v

    @field_validator("unstable_exit_codes")
    @classmethod
    def validate_exit_codes(cls, v: List[int]) -> List[int]:
        if 0 in v:
            raise ValueError("exit code 0 always means success and cannot be unstable")
        return v

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: Optional[str]) -> Optional[str]:
        return _check_timeout(v, "Step timeout")

    @model_validator(mode="after")
    def default_token_source(self):
        if self.token_source_variable is None:
            self.token_source_variable = self.token_variable
        return self

    @property
    def image_reference(self) -> str:
        return f"{self.image}:{self.tag}" if self.tag else self.image

    @property
    def label(self) -> str:
        return f"meterian_scan {self.image_reference}"


class WithCredentialsStep(BaseModel):
    """Run nested steps with credentials bound into their environment."""

    type: Literal["with_credentials"] = "with_credentials"
    bindings: List[CredentialBinding] = Field(..., min_length=1)
    steps: List["Step"] = Field(..., min_length=1)

    @field_validator("steps", mode="before")
    @classmethod
    def expand_shorthand(cls, v: Any) -> Any:
        return expand_step_shorthand(v)

    @model_validator(mode="after")
    def validate_unique_variables(self):
        variables = [binding.variable for binding in self.bindings]
        duplicates = sorted({name for name in variables if variables.count(name) > 1})
        if duplicates:
            raise ValueError(
                f"Variables bound more than once in the same block: {', '.join(duplicates)}"
            )
        return self

    @property
    def label(self) -> str:
        ids = ", ".join(binding.credentials_id for binding in self.bindings)
        return f"with_credentials [{ids}]"


Step = Annotated[
    Union[EchoStep, ShStep, MeterianScanStep, WithCredentialsStep],
    Field(discriminator="type"),
]

WithCredentialsStep.model_rebuild()


class StageConfig(BaseModel):
    """A named, ordered unit of work."""

    name: str = Field(..., min_length=1)
    environment: Dict[str, str] = Field(default_factory=dict)
    steps: List[Step] = Field(..., min_length=1)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Stage name cannot be empty or whitespace-only")
        return stripped

    @field_validator("environment", mode="before")
    @classmethod
    def coerce_environment(cls, v: Any) -> Any:
        return _stringify_environment(v)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: Dict[str, str]) -> Dict[str, str]:
        return _check_environment_names(v)

    @field_validator("steps", mode="before")
    @classmethod
    def expand_shorthand(cls, v: Any) -> Any:
        return expand_step_shorthand(v)


class PipelineOptions(BaseModel):
    """Run-wide behaviour switches."""

    skip_stages_after_unstable: bool = Field(
        False, description="Skip remaining stages once a stage reports UNSTABLE"
    )
    timeout: Optional[str] = Field(None, description="Maximum duration of the whole run")

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: Optional[str]) -> Optional[str]:
        return _check_timeout(v, "Pipeline timeout")

    @property
    def timeout_seconds(self) -> Optional[int]:
        return parse_duration(self.timeout) if self.timeout else None


class TriggerConfig(BaseModel):
    """Periodic re-run of the pipeline in daemon mode."""

    interval: str = Field(..., description="Interval between runs, e.g. 15m or PT15M")

    @field_validator("interval")
    @classmethod
    def validate_interval(cls, v: str) -> str:
        try:
            validate_duration_range(parse_duration(v), min_seconds=60, max_seconds=86400)
        except DurationParseError as e:
            raise ValueError(str(e)) from e
        return v

    @property
    def interval_seconds(self) -> int:
        return parse_duration(self.interval)


class PostConfig(BaseModel):
    """E-mail recipients notified when a run finishes with a given outcome."""

    always: List[str] = Field(default_factory=list)
    success: List[str] = Field(default_factory=list)
    unstable: List[str] = Field(default_factory=list)
    failure: List[str] = Field(default_factory=list)

    @field_validator("always", "success", "unstable", "failure")
    @classmethod
    def validate_recipients(cls, v: List[str]) -> List[str]:
        normalized = []
        for address in v:
            try:
                normalized.append(
                    validate_email(address.strip(), check_deliverability=False).normalized
                )
            except EmailNotValidError as e:
                raise ValueError(f"Invalid e-mail address '{address}': {e}") from e
        return normalized

    def recipients_for(self, status: str) -> List[str]:
        """Recipients for a run outcome (SUCCESS, UNSTABLE or FAILURE), deduplicated."""
        by_status = {
            "SUCCESS": self.success,
            "UNSTABLE": self.unstable,
            "FAILURE": self.failure,
        }
        recipients: List[str] = []
        for address in [*self.always, *by_status.get(str(status).upper(), [])]:
            if address not in recipients:
                recipients.append(address)
        return recipients

    def is_empty(self) -> bool:
        return not (self.always or self.success or self.unstable or self.failure)


class PipelineDefinition(BaseModel):
    """Root of a pipeline definition file."""

    name: str = Field(..., min_length=1, description="Pipeline name used for build history")
    description: Optional[str] = None
    environment: Dict[str, str] = Field(
        default_factory=dict,
        description="Variables exposed to every stage; ${VAR} expands from the process",
    )
    options: PipelineOptions = Field(default_factory=PipelineOptions)
    stages: List[StageConfig] = Field(..., min_length=1)
    triggers: Optional[TriggerConfig] = None
    post: PostConfig = Field(default_factory=PostConfig)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Pipeline name cannot be empty or whitespace-only")
        return stripped

    @field_validator("environment", mode="before")
    @classmethod
    def coerce_environment(cls, v: Any) -> Any:
        return _stringify_environment(v)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: Dict[str, str]) -> Dict[str, str]:
        return _check_environment_names(v)

    @model_validator(mode="after")
    def validate_unique_stage_names(self):
        seen = set()
        for stage in self.stages:
            if stage.name in seen:
                raise ValueError(f"Duplicate stage name: '{stage.name}'")
            seen.add(stage.name)
        return self

    def stage_names(self) -> List[str]:
        return [stage.name for stage in self.stages]

    def get_stage(self, name: str) -> Optional[StageConfig]:
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None
