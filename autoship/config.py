# autoship/config.py
"""
autoship Configuration Module - Pipeline policy snapshot

The whole policy is loaded once at process start into an immutable
PipelineConfig and handed to every component explicitly.
"""

import os
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Tuple, Dict, Any

from dotenv import load_dotenv


class TriggerScope(str, Enum):
    """Who may create a Task"""
    OWNER = "owner"
    ALL = "all"
    NONE = "none"


class ApprovalCeiling(str, Enum):
    """Highest risk level the RiskGate may auto-approve"""
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"


class DeployStrategy(str, Enum):
    """How code reaches an environment"""
    GIT_PULL = "git-pull"
    DOCKER = "docker"


DEFAULT_PROTECTED_PATHS: Tuple[str, ...] = (
    ".github/workflows/",
    "scripts/",
    "config/clarabot.php",
    "bootstrap/app.php",
    "app/Providers/",
)


def _get_env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _get_env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _get_env_enum(name: str, enum_cls, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return enum_cls(raw.strip().lower())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValueError(f"{name} must be one of [{allowed}], got {raw!r}")


def _get_env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable policy snapshot shared read-only by all Tasks"""

    # ==========================================================================
    # Trigger & approval policy
    # ==========================================================================
    allowed_triggers: TriggerScope = TriggerScope.OWNER
    owner_id: Optional[str] = None
    auto_approve_risk: ApprovalCeiling = ApprovalCeiling.LOW

    # ==========================================================================
    # Iteration budgets
    # ==========================================================================
    max_dev_iterations: int = 10
    max_ci_retries: int = 2

    # ==========================================================================
    # Deployment & observation
    # ==========================================================================
    staging_observation_minutes: int = 5
    production_observation_minutes: int = 15
    error_rate_threshold: int = 5
    deploy_strategy: DeployStrategy = DeployStrategy.GIT_PULL
    rollback_migrations: bool = True
    observation_poll_seconds: int = 30
    max_metric_failures: int = 3
    docker_image: str = "autoship-app"

    # ==========================================================================
    # Safety rails
    # ==========================================================================
    protected_paths: Tuple[str, ...] = field(default=DEFAULT_PROTECTED_PATHS)
    collaborator_timeout_seconds: int = 1800
    approval_timeout_minutes: int = 0

    # ==========================================================================
    # Version control naming
    # ==========================================================================
    develop_branch: str = "develop"
    production_branch: str = "main"
    feature_prefix: str = "feature/"
    hotfix_prefix: str = "hotfix/"

    # ==========================================================================
    # Infrastructure
    # ==========================================================================
    database_url: str = "sqlite:///./autoship.db"
    redis_url: Optional[str] = None
    api_key: Optional[str] = None
    log_level: str = "INFO"
    log_dir: str = "logs"

    def __post_init__(self):
        if self.max_dev_iterations < 0 or self.max_ci_retries < 0:
            raise ValueError("Iteration limits must be non-negative")
        if not 0 <= self.error_rate_threshold <= 100:
            raise ValueError("error_rate_threshold is a percentage (0-100)")
        if self.observation_poll_seconds < 1:
            raise ValueError("observation_poll_seconds must be >= 1")
        if not self.develop_branch.strip() or not self.production_branch.strip():
            raise ValueError("Branch names must be non-empty")
        if self.develop_branch == self.production_branch:
            raise ValueError("develop_branch and production_branch must differ")

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "PipelineConfig":
        """Build the snapshot from environment variables (and an optional .env)"""
        load_dotenv(env_file)
        return cls(
            allowed_triggers=_get_env_enum("AUTOSHIP_ALLOWED_TRIGGERS", TriggerScope, TriggerScope.OWNER),
            owner_id=os.getenv("AUTOSHIP_OWNER_ID") or None,
            auto_approve_risk=_get_env_enum("AUTOSHIP_AUTO_APPROVE_RISK", ApprovalCeiling, ApprovalCeiling.LOW),
            max_dev_iterations=_get_env_int("AUTOSHIP_MAX_DEV_ITERATIONS", 10),
            max_ci_retries=_get_env_int("AUTOSHIP_MAX_CI_RETRIES", 2),
            staging_observation_minutes=_get_env_int("AUTOSHIP_STAGING_OBSERVE", 5),
            production_observation_minutes=_get_env_int("AUTOSHIP_PROD_OBSERVE", 15),
            error_rate_threshold=_get_env_int("AUTOSHIP_ERROR_THRESHOLD", 5),
            deploy_strategy=_get_env_enum("AUTOSHIP_DEPLOY_STRATEGY", DeployStrategy, DeployStrategy.GIT_PULL),
            rollback_migrations=_get_env_bool("AUTOSHIP_ROLLBACK_MIGRATIONS", True),
            observation_poll_seconds=_get_env_int("AUTOSHIP_OBSERVATION_POLL_SECONDS", 30, minimum=1),
            max_metric_failures=_get_env_int("AUTOSHIP_MAX_METRIC_FAILURES", 3),
            docker_image=os.getenv("AUTOSHIP_DOCKER_IMAGE", "autoship-app"),
            protected_paths=_get_env_list("AUTOSHIP_PROTECTED_PATHS", DEFAULT_PROTECTED_PATHS),
            collaborator_timeout_seconds=_get_env_int("AUTOSHIP_COLLABORATOR_TIMEOUT", 1800, minimum=1),
            approval_timeout_minutes=_get_env_int("AUTOSHIP_APPROVAL_TIMEOUT", 0),
            develop_branch=os.getenv("AUTOSHIP_DEVELOP_BRANCH", "develop"),
            production_branch=os.getenv("AUTOSHIP_PRODUCTION_BRANCH", "main"),
            feature_prefix=os.getenv("AUTOSHIP_FEATURE_PREFIX", "feature/"),
            hotfix_prefix=os.getenv("AUTOSHIP_HOTFIX_PREFIX", "hotfix/"),
            database_url=os.getenv("DATABASE_URL", "sqlite:///./autoship.db"),
            redis_url=os.getenv("REDIS_URL") or None,
            api_key=os.getenv("AUTOSHIP_API_KEY") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_dir=os.getenv("LOG_DIR", "logs"),
        )

    def with_overrides(self, **changes) -> "PipelineConfig":
        """Return a copy with some fields replaced (validation re-runs)"""
        return replace(self, **changes)

    @property
    def observation_windows(self) -> Dict[str, int]:
        """Observation window length in seconds per environment"""
        return {
            "staging": self.staging_observation_minutes * 60,
            "production": self.production_observation_minutes * 60,
        }

    def get_log_config(self) -> Dict[str, Any]:
        """Get structured logging configuration"""
        return {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "task_context": {
                    "()": "autoship.middleware.correlation.TaskContextFilter",
                },
            },
            "formatters": {
                "default": {
                    "format": "%(asctime)s [%(levelname)s] %(name)s [task:%(task_id)s] "
                              "[corr-id:%(correlation_id)s] %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "filters": ["task_context"],
                    "stream": "ext://sys.stdout",
                },
                "file": {
                    "class": "logging.handlers.RotatingFileHandler",
                    "formatter": "default",
                    "filters": ["task_context"],
                    "filename": os.path.join(self.log_dir, "autoship.log"),
                    "maxBytes": 50 * 1024 * 1024,
                    "backupCount": 5,
                },
            },
            "root": {
                "level": self.log_level,
                "handlers": ["console", "file"],
            },
        }
