# tests/test_config.py
"""
Test suite for PipelineConfig and logging setup
"""

import logging
from dataclasses import FrozenInstanceError

import pytest

from autoship.config import (
    PipelineConfig,
    TriggerScope,
    ApprovalCeiling,
    DeployStrategy,
    DEFAULT_PROTECTED_PATHS,
)
from autoship.middleware import configure_logging, task_id_var, correlation_id_var
from autoship.middleware.correlation import TaskContextFilter

ENV_NAMES = (
    "AUTOSHIP_ALLOWED_TRIGGERS",
    "AUTOSHIP_OWNER_ID",
    "AUTOSHIP_AUTO_APPROVE_RISK",
    "AUTOSHIP_MAX_DEV_ITERATIONS",
    "AUTOSHIP_MAX_CI_RETRIES",
    "AUTOSHIP_STAGING_OBSERVE",
    "AUTOSHIP_PROD_OBSERVE",
    "AUTOSHIP_ERROR_THRESHOLD",
    "AUTOSHIP_DEPLOY_STRATEGY",
    "AUTOSHIP_ROLLBACK_MIGRATIONS",
    "AUTOSHIP_PROTECTED_PATHS",
    "AUTOSHIP_APPROVAL_TIMEOUT",
    "AUTOSHIP_API_KEY",
    "REDIS_URL",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("")
    return str(env_file)


class TestFromEnv:

    def test_defaults(self, clean_env):
        config = PipelineConfig.from_env(clean_env)

        assert config.allowed_triggers == TriggerScope.OWNER
        assert config.auto_approve_risk == ApprovalCeiling.LOW
        assert config.max_dev_iterations == 10
        assert config.max_ci_retries == 2
        assert config.observation_windows == {"staging": 300, "production": 900}
        assert config.error_rate_threshold == 5
        assert config.deploy_strategy == DeployStrategy.GIT_PULL
        assert config.rollback_migrations is True
        assert config.protected_paths == DEFAULT_PROTECTED_PATHS
        assert config.redis_url is None

    def test_values_from_environment(self, clean_env, monkeypatch):
        monkeypatch.setenv("AUTOSHIP_ALLOWED_TRIGGERS", "ALL")
        monkeypatch.setenv("AUTOSHIP_AUTO_APPROVE_RISK", "medium")
        monkeypatch.setenv("AUTOSHIP_MAX_DEV_ITERATIONS", "3")
        monkeypatch.setenv("AUTOSHIP_DEPLOY_STRATEGY", "docker")
        monkeypatch.setenv("AUTOSHIP_ROLLBACK_MIGRATIONS", "false")
        monkeypatch.setenv("AUTOSHIP_PROTECTED_PATHS", "infra/, secrets.env ,")

        config = PipelineConfig.from_env(clean_env)

        assert config.allowed_triggers == TriggerScope.ALL
        assert config.auto_approve_risk == ApprovalCeiling.MEDIUM
        assert config.max_dev_iterations == 3
        assert config.deploy_strategy == DeployStrategy.DOCKER
        assert config.rollback_migrations is False
        assert config.protected_paths == ("infra/", "secrets.env")

    def test_dotenv_file_is_loaded(self, clean_env, monkeypatch, tmp_path):
        env_file = tmp_path / "pipeline.env"
        env_file.write_text("AUTOSHIP_OWNER_ID=alice\nAUTOSHIP_STAGING_OBSERVE=2\n")
        config = PipelineConfig.from_env(str(env_file))

        assert config.owner_id == "alice"
        assert config.staging_observation_minutes == 2

    @pytest.mark.parametrize("name,value", [
        ("AUTOSHIP_MAX_DEV_ITERATIONS", "many"),
        ("AUTOSHIP_MAX_CI_RETRIES", "-1"),
        ("AUTOSHIP_ALLOWED_TRIGGERS", "everyone"),
        ("AUTOSHIP_AUTO_APPROVE_RISK", "high"),
        ("AUTOSHIP_ERROR_THRESHOLD", "150"),
    ])
    def test_invalid_values_rejected(self, clean_env, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(ValueError):
            PipelineConfig.from_env(clean_env)


class TestPipelineConfig:

    def test_is_immutable(self, config):
        with pytest.raises(FrozenInstanceError):
            config.max_ci_retries = 5

    def test_overrides_revalidate(self, config):
        assert config.with_overrides(max_ci_retries=0).max_ci_retries == 0
        with pytest.raises(ValueError):
            config.with_overrides(production_branch=config.develop_branch)
        with pytest.raises(ValueError):
            config.with_overrides(observation_poll_seconds=0)


class TestLogging:

    def test_log_config_uses_task_context_filter(self, config):
        log_config = config.get_log_config()

        assert log_config["filters"]["task_context"]["()"] == (
            "autoship.middleware.correlation.TaskContextFilter"
        )
        assert "[task:%(task_id)s]" in log_config["formatters"]["default"]["format"]
        assert log_config["handlers"]["file"]["filename"].endswith("autoship.log")

    def test_filter_stamps_context(self):
        record = logging.LogRecord("autoship.test", logging.INFO, __file__, 1, "hello", None, None)
        task_token = task_id_var.set("01TASK")
        corr_token = correlation_id_var.set("corr-abc")
        try:
            TaskContextFilter().filter(record)
        finally:
            task_id_var.reset(task_token)
            correlation_id_var.reset(corr_token)

        assert record.task_id == "01TASK"
        assert record.correlation_id == "corr-abc"

    def test_configure_logging_creates_log_dir(self, config, tmp_path):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_logging(config)
            logging.getLogger("autoship.test").info("configured")
            assert (tmp_path / "logs").is_dir()
            assert (tmp_path / "logs" / "autoship.log").exists()
        finally:
            for handler in root.handlers:
                if handler not in saved_handlers:
                    handler.close()
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
