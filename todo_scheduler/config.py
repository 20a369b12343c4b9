"""Runtime configuration for the task scheduler.

Values are read from environment variables so the server can be pointed at a
different database, port or password without code changes. ``load_settings``
re-reads the environment; tests build their own Settings directly.

Optional local overrides: define upper-case names such as ``TODO_PASSWORD``
or ``TASKS_LIMIT`` in todo_scheduler/local_config.py (kept out of version
control). They take precedence over the environment and are applied before
the module-level ``settings`` is built.
"""
import os
import secrets
from dataclasses import dataclass
from typing import Mapping, Optional

try:
    from . import local_config  # type: ignore
except ImportError:
    local_config = None


def _local_overrides() -> dict:
    if local_config is None:
        return {}
    return {name: str(val) for name, val in vars(local_config).items() if name.isupper()}


def _int_value(env: Mapping[str, str], name: str, default: int) -> int:
    try:
        return int(env.get(name, str(default)))
    except ValueError:
        return default


@dataclass
class Settings:
    port: int = 7540
    database_url: str = 'sqlite+aiosqlite:///./scheduler.db'
    # Empty password disables authentication for /api/task* routes.
    password: str = ''
    secret_key: str = ''
    token_expire_hours: int = 8
    tasks_limit: int = 50
    web_dir: str = 'web'
    log_level: str = 'INFO'

    def __post_init__(self):
        if not self.secret_key:
            # Tokens signed with a per-process key stop working on restart.
            self.secret_key = secrets.token_urlsafe(32)

    @property
    def auth_enabled(self) -> bool:
        return bool(self.password)


def load_settings(overrides: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from the environment, with ``local_config`` names (or
    explicit ``overrides``) layered on top."""
    env = dict(os.environ)
    env.update(_local_overrides() if overrides is None else overrides)
    db_file = env.get('TODO_DBFILE', 'scheduler.db')
    return Settings(
        port=_int_value(env, 'TODO_PORT', 7540),
        database_url=env.get('DATABASE_URL', f'sqlite+aiosqlite:///{db_file}'),
        password=env.get('TODO_PASSWORD', ''),
        secret_key=env.get('SECRET_KEY', ''),
        token_expire_hours=_int_value(env, 'TOKEN_EXPIRE_HOURS', 8),
        tasks_limit=_int_value(env, 'TASKS_LIMIT', 50),
        web_dir=env.get('TODO_WEB_DIR', 'web'),
        log_level=env.get('LOG_LEVEL', 'INFO').upper(),
    )


settings = load_settings()
