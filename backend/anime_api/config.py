import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

BACKEND_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_DB_PATH = BACKEND_ROOT / "data" / "anime.db"
DEFAULT_ALLOWED_ORIGINS = ["http://localhost:3000"]
DEFAULT_API_HOST = "0.0.0.0"
DEFAULT_API_PORT = 8000
DEFAULT_API_RELOAD = True
DEFAULT_LOG_LEVEL = "info"
DEFAULT_RECORD_AUTHOR = "anime-api"
DEFAULT_PAGE_SIZE = 50
LOG_LEVELS = ("critical", "error", "warning", "info", "debug", "trace")


@dataclass(frozen=True)
class Settings:
    """環境変数と既定値から解決したアプリ設定."""

    db_path: Path
    allowed_origins: list[str]
    api_host: str
    api_port: int
    api_reload: bool
    log_level: str
    record_author: str
    default_page_size: int


def resolve_db_path(env_value: Optional[str]) -> Path:
    """DB_PATH を解決し、未設定時はデフォルトパスを返す."""
    if not env_value:
        return DEFAULT_DB_PATH

    candidate = Path(env_value).expanduser()
    if not candidate.is_absolute():
        candidate = BACKEND_ROOT / candidate

    return candidate


def _read_bool_env(env_value: Optional[str], default_value: bool) -> bool:
    """真偽値の環境変数文字列を解釈する."""
    if env_value is None:
        return default_value

    return env_value.strip().lower() in {"1", "true", "yes", "on"}


def _read_int_env(
    env_value: Optional[str], default_value: int, minimum: Optional[int] = None
) -> int:
    """整数の環境変数文字列を解釈し、不正値は既定値へ戻す."""
    if env_value is None:
        return default_value

    try:
        parsed = int(env_value)
    except ValueError:
        return default_value

    if minimum is not None and parsed < minimum:
        return default_value

    return parsed


def _resolve_allowed_origins(env_value: Optional[str]) -> list[str]:
    """ALLOWED_ORIGINS をカンマ区切りで解決する."""
    if env_value is None:
        return list(DEFAULT_ALLOWED_ORIGINS)

    origins = [origin.strip() for origin in env_value.split(",") if origin.strip()]
    if len(origins) == 0:
        return list(DEFAULT_ALLOWED_ORIGINS)

    return origins


def _resolve_log_level(env_value: Optional[str]) -> str:
    """LOG_LEVEL を uvicorn が受け付ける小文字表記へ揃える."""
    if env_value is None:
        return DEFAULT_LOG_LEVEL

    normalized = env_value.strip().lower()
    if normalized not in LOG_LEVELS:
        return DEFAULT_LOG_LEVEL

    return normalized


def _resolve_record_author(env_value: Optional[str]) -> str:
    """監査列に記録する作成者名を解決する."""
    if env_value is None or env_value.strip() == "":
        return DEFAULT_RECORD_AUTHOR

    return env_value.strip()


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """環境変数を優先して設定を読み込み、未設定値は既定値で補完する."""
    source = env if env is not None else os.environ

    return Settings(
        db_path=resolve_db_path(source.get("DB_PATH")),
        allowed_origins=_resolve_allowed_origins(source.get("ALLOWED_ORIGINS")),
        api_host=source.get("API_HOST", DEFAULT_API_HOST),
        api_port=_read_int_env(source.get("API_PORT"), DEFAULT_API_PORT),
        api_reload=_read_bool_env(source.get("API_RELOAD"), DEFAULT_API_RELOAD),
        log_level=_resolve_log_level(source.get("LOG_LEVEL")),
        record_author=_resolve_record_author(source.get("RECORD_AUTHOR")),
        default_page_size=_read_int_env(
            source.get("DEFAULT_PAGE_SIZE"), DEFAULT_PAGE_SIZE, minimum=1
        ),
    )
