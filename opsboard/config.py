# Opsboard configuration
# Override values via config/opsboard.yaml (or $OPSBOARD_CONFIG) and environment.

import logging
import os
import sys
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from opsboard.kanban.errors import ConfigError
from opsboard.kanban.memory import InMemoryAssigneeDirectory, InMemoryTaskRepository
from opsboard.kanban.repository import (
    ApiClient,
    AssigneeDirectory,
    HttpAssigneeDirectory,
    HttpTaskRepository,
    TaskRepository,
)

CONFIG_PATH = Path(__file__).parent.parent / "config" / "opsboard.yaml"

BACKENDS = ("http", "memory")

logger = logging.getLogger(__name__)


def _known(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


@dataclass
class BotSettings:
    token_env: str = "OPSBOARD_BOT_TOKEN"
    allowed_users: List[str] = field(default_factory=list)

    def __post_init__(self):
        # Numeric Telegram user IDs as strings for comparison
        self.allowed_users = [str(uid) for uid in self.allowed_users or []]


@dataclass
class ServerSettings:
    host: str = "127.0.0.1"
    port: int = 3001


@dataclass
class Config:
    """Runtime configuration shared by the bot and the dashboard server."""

    # Task repository
    backend: str = "http"
    api_url: str = "http://localhost:3000"
    api_key_env: str = "OPSBOARD_API_KEY"
    request_timeout: float = 10.0

    # Board behaviour
    poll_interval: float = 30.0
    drag_activation_distance: float = 5.0

    bot: BotSettings = field(default_factory=BotSettings)
    server: ServerSettings = field(default_factory=ServerSettings)

    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        data = dict(data or {})
        bot = data.pop("bot", None) or {}
        server = data.pop("server", None) or {}
        if not isinstance(bot, dict) or not isinstance(server, dict):
            raise ConfigError("'bot' and 'server' must be mappings")
        cfg = cls(**_known(cls, data))
        cfg.bot = BotSettings(**_known(BotSettings, bot))
        cfg.server = ServerSettings(**_known(ServerSettings, server))
        return cfg

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load config from YAML file, falling back to defaults, then apply env overrides."""
        cfg_path = Path(path or os.environ.get("OPSBOARD_CONFIG") or CONFIG_PATH)
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Cannot parse {cfg_path}: {e}")
            if not isinstance(data, dict):
                raise ConfigError(f"{cfg_path} must contain a mapping")
            cfg = cls.from_dict(data)
        else:
            cfg = cls()
        cfg.apply_env()
        cfg.validate()
        return cfg

    def apply_env(self, environ: Optional[Dict[str, str]] = None) -> None:
        env = os.environ if environ is None else environ
        if env.get("OPSBOARD_API_URL"):
            self.api_url = env["OPSBOARD_API_URL"]
        if env.get("OPSBOARD_BACKEND"):
            self.backend = env["OPSBOARD_BACKEND"]
        if env.get("OPSBOARD_LOG_LEVEL"):
            self.log_level = env["OPSBOARD_LOG_LEVEL"]

    def validate(self) -> None:
        if self.backend not in BACKENDS:
            raise ConfigError(
                f"Unknown backend '{self.backend}'. Available: {', '.join(BACKENDS)}"
            )
        if self.poll_interval <= 0:
            raise ConfigError("poll_interval must be positive")

    # ──────────────────────────────────────────

    def api_key(self) -> Optional[str]:
        return os.environ.get(self.api_key_env) or None

    def bot_token(self) -> str:
        token = os.environ.get(self.bot.token_env)
        if not token:
            raise ConfigError(
                f"Environment variable {self.bot.token_env} is not set.\n"
                f"Set it:  export {self.bot.token_env}=your_bot_token\n"
                f"Get a token from @BotFather on Telegram."
            )
        return token

    def is_authorized(self, user_id: int) -> bool:
        """Check if a Telegram user ID is in the allowlist."""
        return str(user_id) in self.bot.allowed_users

    def build_backend(self) -> Tuple[TaskRepository, AssigneeDirectory]:
        """Repository + assignee directory for the configured backend."""
        if self.backend == "memory":
            logger.info("Using in-memory task repository (demo data)")
            return InMemoryTaskRepository.with_demo_tasks(), InMemoryAssigneeDirectory()

        client = ApiClient(self.api_url, timeout=self.request_timeout, api_key=self.api_key())
        logger.info(f"Using task API at {self.api_url}")
        return HttpTaskRepository(client), HttpAssigneeDirectory(client)


def setup_logging(name: str, level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=f"%(asctime)s [{name}] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
