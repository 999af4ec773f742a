"""Unit tests for pipeline definitions, the loader and environment settings."""

import warnings

import pytest
from pydantic import ValidationError

from cipipeline.config.environment import load_environment_config
from cipipeline.config.exceptions import ConfigurationError
from cipipeline.config.loader import load_pipeline, validate_pipeline_file
from cipipeline.config.models import (
    CredentialBinding,
    EchoStep,
    MeterianScanStep,
    PipelineDefinition,
    PostConfig,
    ShStep,
    StageConfig,
    TriggerConfig,
    WithCredentialsStep,
)
from cipipeline.config.validators import check_for_warnings


def _definition(**overrides):
    data = {
        "name": "demo",
        "stages": [{"name": "Build", "steps": [{"echo": "Building.."}]}],
    }
    data.update(overrides)
    return data


class TestStepModels:
    """Step parsing through the discriminated union."""

    def test_shorthand_steps_expand(self):
        stage = StageConfig(name="Build", steps=[{"echo": "hello"}, {"sh": "make"}])

        assert isinstance(stage.steps[0], EchoStep)
        assert stage.steps[0].message == "hello"
        assert isinstance(stage.steps[1], ShStep)
        assert stage.steps[1].script == "make"

    def test_echo_message_coerced_to_string(self):
        stage = StageConfig(name="Build", steps=[{"echo": 42}])
        assert stage.steps[0].message == "42"

    def test_unknown_step_type_rejected(self):
        with pytest.raises(ValidationError):
            StageConfig(name="Build", steps=[{"type": "parallel", "branches": []}])

    def test_sh_rejects_zero_as_unstable_code(self):
        with pytest.raises(ValidationError, match="exit code 0"):
            ShStep(script="make", unstable_exit_codes=[0, 1])

    def test_sh_rejects_blank_script(self):
        with pytest.raises(ValidationError):
            ShStep(script="   ")

    def test_sh_timeout_validated(self):
        assert ShStep(script="make", timeout="5m").timeout == "5m"
        with pytest.raises(ValidationError, match="too long"):
            ShStep(script="make", timeout="2d")

    def test_sh_label_uses_first_line(self):
        step = ShStep(script="make build\nmake test")
        assert step.label == "sh make build"

    def test_meterian_defaults(self):
        step = MeterianScanStep()

        assert step.image_reference == "meterian/cli"
        assert step.token_variable == "METERIAN_API_TOKEN"
        assert step.token_source_variable == "METERIAN_API_TOKEN"
        assert step.workspace_mount == "/workspace"
        assert step.interactive is False

    def test_meterian_tag_and_source_variable(self):
        step = MeterianScanStep(tag="latest", token_source_variable="METERIAN_API_TOKEN_MTA")

        assert step.image_reference == "meterian/cli:latest"
        assert step.token_source_variable == "METERIAN_API_TOKEN_MTA"
        assert step.label == "meterian_scan meterian/cli:latest"

    def test_meterian_mount_must_be_absolute(self):
        with pytest.raises(ValidationError, match="absolute"):
            MeterianScanStep(workspace_mount="workspace")

    def test_meterian_rejects_invalid_variable(self):
        with pytest.raises(ValidationError, match="not a valid environment variable"):
            MeterianScanStep(token_variable="METERIAN-TOKEN")

    def test_with_credentials_nested_steps(self):
        step = WithCredentialsStep(
            bindings=[{"credentials_id": "MeterianApiToken", "variable": "METERIAN_API_TOKEN"}],
            steps=[{"echo": "Scanning"}, {"type": "meterian_scan"}],
        )

        assert isinstance(step.steps[0], EchoStep)
        assert isinstance(step.steps[1], MeterianScanStep)
        assert step.label == "with_credentials [MeterianApiToken]"

    def test_with_credentials_requires_bindings_and_steps(self):
        with pytest.raises(ValidationError):
            WithCredentialsStep(bindings=[], steps=[{"echo": "x"}])
        with pytest.raises(ValidationError):
            WithCredentialsStep(
                bindings=[{"credentials_id": "a", "variable": "A"}], steps=[]
            )

    def test_with_credentials_rejects_duplicate_variables(self):
        with pytest.raises(ValidationError, match="bound more than once"):
            WithCredentialsStep(
                bindings=[
                    {"credentials_id": "one", "variable": "TOKEN"},
                    {"credentials_id": "two", "variable": "TOKEN"},
                ],
                steps=[{"echo": "x"}],
            )

    def test_binding_strips_whitespace(self):
        binding = CredentialBinding(credentials_id=" MeterianApiToken ", variable=" TOKEN ")
        assert binding.credentials_id == "MeterianApiToken"
        assert binding.variable == "TOKEN"


class TestPipelineDefinition:
    """Root model validation."""

    def test_minimal_definition(self):
        definition = PipelineDefinition.model_validate(_definition())

        assert definition.name == "demo"
        assert definition.stage_names() == ["Build"]
        assert definition.options.skip_stages_after_unstable is False
        assert definition.triggers is None
        assert definition.post.is_empty()

    def test_requires_a_stage(self):
        with pytest.raises(ValidationError):
            PipelineDefinition.model_validate(_definition(stages=[]))

    def test_duplicate_stage_names_rejected(self):
        stages = [
            {"name": "Build", "steps": [{"echo": "a"}]},
            {"name": "Build", "steps": [{"echo": "b"}]},
        ]
        with pytest.raises(ValidationError, match="Duplicate stage name"):
            PipelineDefinition.model_validate(_definition(stages=stages))

    def test_environment_values_stringified(self):
        definition = PipelineDefinition.model_validate(
            _definition(environment={"PORT": 8080, "DEBUG": True, "EMPTY": None})
        )
        assert definition.environment == {"PORT": "8080", "DEBUG": "true", "EMPTY": ""}

    def test_environment_names_validated(self):
        with pytest.raises(ValidationError):
            PipelineDefinition.model_validate(_definition(environment={"1BAD": "x"}))

    def test_get_stage(self):
        definition = PipelineDefinition.model_validate(_definition())
        assert definition.get_stage("Build").name == "Build"
        assert definition.get_stage("Deploy") is None

    def test_pipeline_timeout(self):
        definition = PipelineDefinition.model_validate(_definition(options={"timeout": "PT30M"}))
        assert definition.options.timeout_seconds == 1800

    def test_trigger_interval_bounds(self):
        assert TriggerConfig(interval="15m").interval_seconds == 900
        with pytest.raises(ValidationError, match="too short"):
            TriggerConfig(interval="30s")
        with pytest.raises(ValidationError, match="too long"):
            TriggerConfig(interval="2d")


class TestPostConfig:
    """Recipient selection for post-build notifications."""

    def test_recipients_for_outcome(self):
        post = PostConfig(
            always=["team@example.com"],
            failure=["oncall@example.com", "team@example.com"],
        )

        assert post.recipients_for("FAILURE") == ["team@example.com", "oncall@example.com"]
        assert post.recipients_for("SUCCESS") == ["team@example.com"]
        assert post.recipients_for("unstable") == ["team@example.com"]

    def test_invalid_address_rejected(self):
        with pytest.raises(ValidationError, match="Invalid e-mail address"):
            PostConfig(failure=["not-an-address"])


class TestLoader:
    """YAML loading and error translation."""

    def test_load_pipeline(self, tmp_path):
        path = tmp_path / "pipeline.yaml"
        path.write_text(
            """
name: demo
options:
  skip_stages_after_unstable: true
stages:
  - name: Build
    steps:
      - echo: Building..
  - name: Test
    steps:
      - sh: ./run-tests.sh
        unstable_exit_codes: [3]
"""
        )

        definition = load_pipeline(path)

        assert definition.stage_names() == ["Build", "Test"]
        assert definition.options.skip_stages_after_unstable is True

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_pipeline(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "pipeline.yaml"
        path.write_text("name: [unclosed\n")

        with pytest.raises(ConfigurationError, match="Failed to parse YAML"):
            load_pipeline(path)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "pipeline.yaml"
        path.write_text("")

        with pytest.raises(ConfigurationError, match="empty"):
            load_pipeline(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "pipeline.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigurationError, match="must be a mapping"):
            load_pipeline(path)

    def test_schema_errors_listed(self, tmp_path):
        path = tmp_path / "pipeline.yaml"
        path.write_text("name: demo\nstages:\n  - steps:\n      - echo: hi\n")

        with pytest.raises(ConfigurationError) as exc_info:
            load_pipeline(path)

        assert any("Missing required field" in error for error in exc_info.value.errors)
        assert "Validation Errors:" in str(exc_info.value)

    @pytest.mark.parametrize(
        "content",
        ["name: [unclosed\n", "", "- just\n- a list\n", "name: demo\n"],
        ids=["bad-yaml", "empty", "list", "no-stages"],
    )
    def test_errors_name_the_definition_file(self, tmp_path, content):
        path = tmp_path / "pipeline.yaml"
        path.write_text(content)

        with pytest.raises(ConfigurationError) as exc_info:
            load_pipeline(path)

        assert exc_info.value.definition_path == path
        assert f"Definition: {path}" in str(exc_info.value).splitlines()

    def test_missing_file_names_the_path(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            load_pipeline(tmp_path / "missing.yaml")

        assert exc_info.value.definition_path == tmp_path / "missing.yaml"

    def test_unknown_step_type_reported(self, tmp_path):
        path = tmp_path / "pipeline.yaml"
        path.write_text(
            "name: demo\nstages:\n  - name: Build\n    steps:\n      - type: parallel\n"
        )

        with pytest.raises(ConfigurationError) as exc_info:
            load_pipeline(path)

        assert any("Unknown step type" in error for error in exc_info.value.errors)

    def test_default_candidates(self, tmp_path, monkeypatch):
        (tmp_path / "pipelines").mkdir()
        (tmp_path / "pipelines" / "pipeline.yaml").write_text(
            "name: fallback\nstages:\n  - name: Build\n    steps:\n      - echo: hi\n"
        )
        monkeypatch.chdir(tmp_path)

        assert load_pipeline().name == "fallback"

    def test_no_default_candidate(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        with pytest.raises(ConfigurationError) as exc_info:
            load_pipeline()

        assert len(exc_info.value.errors) == 2

    def test_validate_pipeline_file(self, tmp_path, capsys):
        good = tmp_path / "good.yaml"
        good.write_text("name: demo\nstages:\n  - name: Build\n    steps:\n      - echo: hi\n")
        bad = tmp_path / "bad.yaml"
        bad.write_text("name: demo\n")

        assert validate_pipeline_file(good) is True
        assert validate_pipeline_file(bad) is False
        output = capsys.readouterr().out
        assert "✓" in output
        assert "✗" in output


class TestSoftWarnings:
    """check_for_warnings never rejects, only flags."""

    def test_inline_secret_flagged(self):
        messages = check_for_warnings(
            _definition(stages=[{"name": "Scan", "steps": [{"sh": "METERIAN_API_TOKEN=abc123 ./scan"}]}])
        )
        assert any("METERIAN_API_TOKEN" in message for message in messages)

    def test_variable_reference_not_flagged(self):
        messages = check_for_warnings(
            _definition(stages=[{"name": "Scan", "steps": [{"sh": 'METERIAN_API_TOKEN="$TOKEN" ./scan'}]}])
        )
        assert messages == []

    def test_nested_steps_inspected(self):
        messages = check_for_warnings(
            _definition(
                stages=[
                    {
                        "name": "Scan",
                        "steps": [
                            {
                                "type": "with_credentials",
                                "bindings": [{"credentials_id": "x", "variable": "X"}],
                                "steps": [{"sh": "API_KEY=hunter2 ./deploy"}],
                            }
                        ],
                    }
                ]
            )
        )
        assert len(messages) == 1

    def test_skip_after_unstable_without_unstable_codes(self):
        messages = check_for_warnings(_definition(options={"skip_stages_after_unstable": True}))
        assert any("no effect" in message for message in messages)

    def test_unknown_post_condition(self):
        messages = check_for_warnings(_definition(post={"fixed": ["a@example.com"]}))
        assert any("fixed" in message for message in messages)

    def test_loader_emits_user_warnings(self, tmp_path):
        path = tmp_path / "pipeline.yaml"
        path.write_text(
            "name: demo\nstages:\n  - name: Deploy\n    steps:\n      - sh: PASSWORD=letmein ./deploy\n"
        )

        with pytest.warns(UserWarning, match="PASSWORD"):
            load_pipeline(path)


class TestEnvironmentConfig:
    """Process environment settings."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in (
            "WORKSPACE", "CREDENTIALS_FILE", "LOG_LEVEL", "LOG_FORMAT", "DATABASE_URL",
            "SMTP_HOST", "SMTP_PORT", "SMTP_USER", "SMTP_PASS", "SMTP_SENDER_NAME", "SMTP_USE_TLS",
        ):
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self):
        env_config = load_environment_config()

        assert env_config.log_level is None
        assert env_config.log_format == "key-value"
        assert env_config.database_url == "sqlite:///./data/cipipeline.db"
        assert env_config.smtp_port == 587
        assert env_config.smtp_use_tls is True
        assert env_config.notifications_enabled is False

    def test_values_read(self, monkeypatch, tmp_path):
        monkeypatch.setenv("WORKSPACE", str(tmp_path))
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
        monkeypatch.setenv("SMTP_PORT", "465")
        monkeypatch.setenv("SMTP_USE_TLS", "false")

        env_config = load_environment_config()

        assert env_config.workspace == tmp_path
        assert env_config.log_level == "DEBUG"
        assert env_config.smtp_port == 465
        assert env_config.smtp_use_tls is False
        assert env_config.notifications_enabled is True

    def test_all_errors_reported_together(self, monkeypatch, tmp_path):
        monkeypatch.setenv("WORKSPACE", str(tmp_path / "missing"))
        monkeypatch.setenv("LOG_LEVEL", "LOUD")
        monkeypatch.setenv("SMTP_PORT", "http")
        monkeypatch.setenv("SMTP_USER", "ci")

        with pytest.raises(ConfigurationError) as exc_info:
            load_environment_config()

        assert len(exc_info.value.errors) == 4
        assert exc_info.value.definition_path is None
        assert "Definition:" not in str(exc_info.value)

    def test_missing_credentials_file(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CREDENTIALS_FILE", str(tmp_path / "credentials.yaml"))

        with pytest.raises(ConfigurationError, match="CREDENTIALS_FILE"):
            load_environment_config()
