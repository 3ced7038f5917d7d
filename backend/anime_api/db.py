import logging
import sqlite3
from collections.abc import Generator
from pathlib import Path

from anime_api.config import load_settings

logger = logging.getLogger(__name__)


def get_db_path() -> Path:
    """解決済みの SQLite ファイルパスを返す."""
    return load_settings().db_path


def connect() -> sqlite3.Connection:
    """外部キーを有効化した SQLite 接続を作成する."""
    connection = sqlite3.connect(get_db_path(), check_same_thread=False)
    connection.execute("PRAGMA foreign_keys = ON;")
    return connection


def get_db_connection() -> Generator[sqlite3.Connection, None, None]:
    """FastAPI の依存関係で使う DB 接続を提供する."""
    connection = connect()

    try:
        yield connection
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def _has_column(connection: sqlite3.Connection, table_name: str, column_name: str) -> bool:
    """テーブルに指定列が定義済みか確認する."""
    columns = connection.execute(f"PRAGMA table_info('{table_name}');").fetchall()
    return any(row[1] == column_name for row in columns)


def name_key(name: str) -> str:
    """名前照合用のキー（Unicode 全体で小文字化した値）を返す."""
    return name.lower()


def _add_anime_soft_delete_column(connection: sqlite3.Connection) -> None:
    """論理削除列の無い旧 anime テーブルへ deleted_at を追加する."""
    connection.execute("ALTER TABLE anime ADD COLUMN deleted_at TEXT;")
    logger.warning("anime テーブルへ deleted_at 列を追加しました。")


def _add_name_key_column(connection: sqlite3.Connection, table_name: str) -> None:
    """照合キー列の無い旧テーブルへ name_key を追加し、既存行を埋める."""
    connection.execute(f"ALTER TABLE {table_name} ADD COLUMN name_key TEXT NOT NULL DEFAULT '';")
    rows = connection.execute(f"SELECT id, name FROM {table_name};").fetchall()
    connection.executemany(
        f"UPDATE {table_name} SET name_key = ? WHERE id = ?;",
        [(name_key(row[1]), row[0]) for row in rows],
    )
    logger.warning("%s テーブルへ name_key 列を追加しました。rows=%s", table_name, len(rows))


def initialize_database() -> None:
    """DBファイルと最小スキーマを作成する."""
    db_path = get_db_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)

    with connect() as connection:
        connection.executescript("""
            CREATE TABLE IF NOT EXISTS studio (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                name_key TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            );

            CREATE TABLE IF NOT EXISTS anime (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                name_key TEXT NOT NULL,
                status TEXT NOT NULL,
                studio_id INTEGER NOT NULL,
                release_date TEXT,
                episode_count INTEGER NOT NULL,
                genres TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                created_by TEXT,
                updated_at TEXT,
                updated_by TEXT,
                deleted_at TEXT,
                FOREIGN KEY(studio_id) REFERENCES studio(id)
            );
            """)

        if not _has_column(connection, "anime", "deleted_at"):
            _add_anime_soft_delete_column(connection)

        for table_name in ("studio", "anime"):
            if not _has_column(connection, table_name, "name_key"):
                _add_name_key_column(connection, table_name)

        # 旧スキーマの name 列（ASCII のみの NOCASE 照合）に張った索引は name_key へ置き換える。
        connection.executescript("""
            DROP INDEX IF EXISTS idx_studio_name;
            DROP INDEX IF EXISTS idx_anime_live_name;
            CREATE UNIQUE INDEX IF NOT EXISTS idx_studio_name_key ON studio(name_key);
            CREATE UNIQUE INDEX IF NOT EXISTS idx_anime_live_name_key
            ON anime(name_key) WHERE deleted_at IS NULL;
            CREATE INDEX IF NOT EXISTS idx_anime_studio_id ON anime(studio_id);
            """)


def check_database_connection() -> None:
    """軽量クエリで DB 接続性を確認する."""
    with connect() as connection:
        connection.execute("SELECT 1;").fetchone()
