"""Pipeline definition loader."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from .exceptions import ConfigurationError
from .models import PipelineDefinition
from .validators import check_for_warnings, emit_warnings

DEFAULT_DEFINITION_CANDIDATES = [
    Path("pipeline.yaml"),
    Path("pipelines") / "pipeline.yaml",
]


def load_pipeline(definition_path: Optional[Path] = None) -> PipelineDefinition:
    """
    Load and validate a pipeline definition from YAML.

    When no path is given, ``pipeline.yaml`` and ``pipelines/pipeline.yaml``
    are tried in that order.

    Args:
        definition_path: Optional path to the definition file

    Returns:
        Validated PipelineDefinition

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    definition_file = _find_definition_file(definition_path)
    definition_dict = _read_yaml(definition_file)

    warnings = check_for_warnings(definition_dict)
    if warnings:
        emit_warnings(warnings)

    try:
        return PipelineDefinition.model_validate(definition_dict)
    except ValidationError as e:
        raise ConfigurationError(
            "Pipeline definition is invalid",
            errors=format_validation_errors(e),
            suggestions=[
                "Compare with the bundled definitions under pipelines/",
                "Every stage needs a name and at least one step",
                "Steps need a type: echo, sh, meterian_scan or with_credentials",
            ],
            definition_path=definition_file,
        ) from e


def _read_yaml(definition_file: Path) -> Dict[str, Any]:
    try:
        with open(definition_file, "r", encoding="utf-8") as f:
            definition_dict = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationError(
            "Pipeline definition not found",
            suggestions=["Ensure the file exists and is readable"],
            definition_path=definition_file,
        )
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Failed to parse YAML pipeline definition: {e}",
            suggestions=[
                "Check YAML syntax in your definition",
                "Ensure proper indentation (use spaces, not tabs)",
            ],
            definition_path=definition_file,
        )
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read pipeline definition: {e}",
            suggestions=["Check the file permissions"],
            definition_path=definition_file,
        )

    if not definition_dict:
        raise ConfigurationError(
            "Pipeline definition is empty",
            suggestions=["Add a name and a list of stages"],
            definition_path=definition_file,
        )

    if not isinstance(definition_dict, dict):
        raise ConfigurationError(
            f"Pipeline definition must be a mapping, got {type(definition_dict).__name__}",
            suggestions=["Start the file with 'name:' and 'stages:' keys"],
            definition_path=definition_file,
        )

    return definition_dict


def format_validation_errors(error: ValidationError) -> list:
    """Turn a pydantic ValidationError into one readable line per problem."""
    errors = []
    for item in error.errors():
        field_path = " -> ".join(str(loc) for loc in item["loc"])
        error_type = item["type"]

        if error_type == "missing":
            errors.append(f"Missing required field: {field_path}")
        elif error_type in ("string_type", "int_type", "bool_type", "list_type", "dict_type"):
            expected_type = error_type.replace("_type", "")
            errors.append(
                f"Invalid type for '{field_path}': expected {expected_type}, got {item.get('input')!r}"
            )
        elif error_type in ("union_tag_invalid", "union_tag_not_found"):
            errors.append(f"Unknown step type at '{field_path}': {item['msg']}")
        else:
            errors.append(f"{field_path}: {item['msg']}" if field_path else item["msg"])
    return errors


def _find_definition_file(definition_path: Optional[Path] = None) -> Path:
    if definition_path:
        definition_path = Path(definition_path)
        if not definition_path.exists():
            raise ConfigurationError(
                "Specified pipeline definition not found",
                suggestions=["Check the path and try again"],
                definition_path=definition_path,
            )
        return definition_path

    for candidate in DEFAULT_DEFINITION_CANDIDATES:
        if candidate.exists():
            return candidate

    raise ConfigurationError(
        "Pipeline definition not found",
        errors=[f"Tried: {candidate}" for candidate in DEFAULT_DEFINITION_CANDIDATES],
        suggestions=[
            "Copy one of the bundled definitions from pipelines/",
            "Pass the definition path on the command line",
        ],
    )


def validate_pipeline_file(definition_path: Path) -> bool:
    """
    Check a definition without running it.

    Returns:
        True if valid, False otherwise (details printed)
    """
    try:
        load_pipeline(definition_path)
        print(f"✓ Pipeline definition {definition_path} is valid")
        return True
    except ConfigurationError as e:
        print(f"✗ Pipeline definition validation failed:\n{e}")
        return False
