"""Tests for settings resolution."""

from pathlib import Path

import pytest

from pairflow.config import Settings, load_settings
from pairflow.errors import ConfigError


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    return tmp_path / "config.toml"


def test_builtin_defaults(config_file):
    settings = load_settings(env={}, config_path=config_file)
    assert settings == Settings()
    assert settings.generator == "claude"
    assert settings.reviewer == "codex"
    assert settings.max_plan_iterations == 10
    assert settings.timeout == 1800


def test_precedence_cli_over_env_over_file(config_file):
    config_file.write_text(
        '[defaults]\nreviewer = "claude"\nmax_plan_iterations = 3\nclaude_model = "file-model"\n'
    )
    env = {"PAIRFLOW_MAX_PLAN_ITERATIONS": "5", "PAIRFLOW_CLAUDE_MODEL": "env-model"}
    settings = load_settings({"claude_model": "cli-model"}, env=env, config_path=config_file)
    assert settings.reviewer == "claude"
    assert settings.max_plan_iterations == 5
    assert settings.claude_model == "cli-model"


def test_none_overrides_are_ignored(config_file):
    settings = load_settings(
        {"generator": None, "dangerous": None}, env={"PAIRFLOW_GENERATOR": "codex"},
        config_path=config_file,
    )
    assert settings.generator == "codex"
    assert settings.dangerous is False


def test_debug_implies_verbose(config_file):
    settings = load_settings({"debug": True}, env={}, config_path=config_file)
    assert settings.verbose
    assert settings.streaming


@pytest.mark.parametrize(
    ("env", "message"),
    [
        ({"PAIRFLOW_GENERATOR": "gemini"}, "Unknown generator backend"),
        ({"PAIRFLOW_CODEX_SANDBOX": "yolo"}, "Invalid sandbox mode"),
        ({"PAIRFLOW_MAX_CODE_ITERATIONS": "0"}, "at least 1"),
        ({"PAIRFLOW_MAX_CODE_ITERATIONS": "many"}, "must be an integer"),
        ({"PAIRFLOW_TIMEOUT": "-1"}, "must be positive"),
    ],
)
def test_invalid_values(config_file, env, message):
    with pytest.raises(ConfigError, match=message):
        load_settings(env=env, config_path=config_file)


def test_backend_names_are_normalized(config_file):
    settings = load_settings(env={"PAIRFLOW_JUDGE": " Codex "}, config_path=config_file)
    assert settings.judge == "codex"


def test_unparsable_file_is_ignored(config_file, caplog):
    config_file.write_text("this is = not [valid toml")
    settings = load_settings(env={}, config_path=config_file)
    assert settings == Settings()
    assert "Ignoring unreadable config file" in caplog.text


def test_unknown_file_key_warns(config_file, caplog):
    config_file.write_text('[defaults]\ncolour = "blue"\n')
    load_settings(env={}, config_path=config_file)
    assert "Unknown setting 'colour'" in caplog.text


def test_unknown_override_rejected(config_file):
    with pytest.raises(ConfigError, match="Unknown setting"):
        load_settings({"colour": "blue"}, env={}, config_path=config_file)


def test_blank_env_values_are_ignored(config_file):
    settings = load_settings(env={"PAIRFLOW_REVIEWER": "  "}, config_path=config_file)
    assert settings.reviewer == "codex"


def test_non_default_summary():
    settings = Settings(dangerous=True, max_code_iterations=4, cwd="/elsewhere")
    assert settings.non_default_summary() == "max_code_iterations=4, dangerous"
    assert Settings().non_default_summary() == ""


def test_model_for():
    settings = Settings(claude_model="c", codex_model="x")
    assert settings.model_for("claude") == "c"
    assert settings.model_for("codex") == "x"


@pytest.mark.parametrize("raw", ['"false"', '"yes"', "0"])
def test_boolean_file_values_must_be_booleans(config_file, raw):
    config_file.write_text(f"[defaults]\ndangerous = {raw}\n")
    with pytest.raises(ConfigError, match="dangerous must be true or false"):
        load_settings(env={}, config_path=config_file)


def test_boolean_file_values(config_file):
    config_file.write_text("[defaults]\ndangerous = false\nplan_only = true\n")
    settings = load_settings(env={}, config_path=config_file)
    assert settings.dangerous is False
    assert settings.plan_only is True
