import logging
import sqlite3
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Optional

from anime_api.anime_models import AnimeCreateRequest, AnimeUpdateRequest
from anime_api.db import name_key

logger = logging.getLogger(__name__)

ANIME_COLUMNS = """
    a.id, a.name, a.status, a.studio_id, s.name, a.release_date, a.episode_count, a.genres
"""

# 名前付きステートメント。呼び出し側は名前とパラメータだけを渡す。
ANIME_PROCEDURES: dict[str, str] = {
    "get_anime_by_name": f"""
        SELECT {ANIME_COLUMNS}
        FROM anime a
        LEFT JOIN studio s ON s.id = a.studio_id
        WHERE a.name_key = :anime_key
          AND a.deleted_at IS NULL;
    """,
    "get_anime_by_id": f"""
        SELECT {ANIME_COLUMNS}
        FROM anime a
        LEFT JOIN studio s ON s.id = a.studio_id
        WHERE a.id = :anime_id
          AND a.deleted_at IS NULL;
    """,
    "get_all_anime": f"""
        SELECT {ANIME_COLUMNS}
        FROM anime a
        LEFT JOIN studio s ON s.id = a.studio_id
        WHERE a.deleted_at IS NULL
        ORDER BY a.id ASC;
    """,
    "add_anime": """
        INSERT INTO anime (
            name, name_key, status, studio_id, release_date, episode_count, genres, created_by
        )
        VALUES (
            :anime_name, :anime_key, :anime_status, :studio_id, :release_date,
            :episode_count, :genres, :record_author
        );
    """,
    "update_anime": """
        UPDATE anime
        SET name = :anime_name,
            name_key = :anime_key,
            status = :anime_status,
            studio_id = :studio_id,
            release_date = :release_date,
            episode_count = :episode_count,
            genres = :genres,
            updated_at = datetime('now'),
            updated_by = :record_author
        WHERE id = :anime_id
          AND deleted_at IS NULL;
    """,
    "delete_anime_by_name": """
        UPDATE anime
        SET deleted_at = datetime('now'),
            updated_by = :record_author
        WHERE name_key = :anime_key
          AND deleted_at IS NULL;
    """,
    "add_studio": """
        INSERT INTO studio (name, name_key)
        VALUES (:studio_name, :studio_key);
    """,
    "get_studio_by_name": """
        SELECT id, name
        FROM studio
        WHERE name_key = :studio_key;
    """,
    "get_all_studios": """
        SELECT id, name
        FROM studio
        ORDER BY id ASC;
    """,
}


@dataclass(frozen=True)
class AnimeRecord:
    """anime テーブルから取得した1件分の作品情報."""

    anime_id: int
    anime_name: str
    anime_status: str
    studio_id: int
    studio_name: Optional[str]
    release_date: Optional[str]
    episode_count: int
    genres: str


@dataclass(frozen=True)
class StudioRecord:
    """studio テーブルから取得した制作会社情報."""

    studio_id: int
    studio_name: str


def _to_anime_record(row: Sequence[Any]) -> AnimeRecord:
    return AnimeRecord(
        anime_id=row[0],
        anime_name=row[1],
        anime_status=row[2],
        studio_id=row[3],
        studio_name=row[4],
        release_date=row[5],
        episode_count=row[6],
        genres=row[7],
    )


def _anime_write_parameters(
    anime: AnimeCreateRequest, record_author: str
) -> dict[str, Any]:
    """作成・更新で共通の書き込みパラメータを組み立てる."""
    return {
        "anime_name": anime.anime_name,
        "anime_key": name_key(anime.anime_name),
        "anime_status": anime.anime_status.value,
        "studio_id": anime.studio_id,
        "release_date": anime.release_date.isoformat() if anime.release_date else None,
        "episode_count": anime.episode_count,
        "genres": anime.genres,
        "record_author": record_author,
    }


class AnimeRepository:
    """名前付きステートメント経由で anime/studio を読み書きするストア.

    名前の照合は name_key 列（Python 側で小文字化した値）で行う。
    失敗時は操作名と対象（作品名・ID・制作会社名）をログへ残し、元の例外をそのまま再送出する。
    """

    def __init__(
        self,
        connection: sqlite3.Connection,
        record_author: str,
        store_logger: Optional[logging.Logger] = None,
    ):
        self._connection = connection
        self._record_author = record_author
        self._logger = store_logger or logger

    def _call(
        self,
        procedure_name: str,
        parameters: Mapping[str, Any],
        context: Optional[Mapping[str, Any]] = None,
    ) -> sqlite3.Cursor:
        """名前付きステートメントを実行し、失敗はログ出力して再送出する."""
        try:
            return self._connection.execute(ANIME_PROCEDURES[procedure_name], parameters)
        except sqlite3.Error:
            self._logger.exception(
                "重要イベント: ストア操作失敗 operation=%s %s",
                procedure_name,
                " ".join(f"{key}={value}" for key, value in (context or {}).items()),
            )
            raise

    def get_anime(self, anime_name: str) -> Optional[AnimeRecord]:
        """作品名（大文字小文字を区別しない）で1件取得する."""
        row = self._call(
            "get_anime_by_name",
            {"anime_key": name_key(anime_name)},
            context={"animeName": anime_name},
        ).fetchone()
        if row is None:
            return None

        return _to_anime_record(row)

    def get_anime_by_id(self, anime_id: int) -> Optional[AnimeRecord]:
        row = self._call(
            "get_anime_by_id", {"anime_id": anime_id}, context={"animeId": anime_id}
        ).fetchone()
        if row is None:
            return None

        return _to_anime_record(row)

    def get_all_anime(self) -> list[AnimeRecord]:
        """論理削除されていない全作品を ID 順で返す."""
        rows = self._call("get_all_anime", {}).fetchall()
        return [_to_anime_record(row) for row in rows]

    def add_anime(self, anime: AnimeCreateRequest) -> int:
        """作品を1件登録し、採番された ID を返す."""
        cursor = self._call(
            "add_anime",
            _anime_write_parameters(anime, self._record_author),
            context={"animeName": anime.anime_name},
        )
        return int(cursor.lastrowid)

    def update_anime(self, anime: AnimeUpdateRequest) -> bool:
        """ID 指定で作品を更新し、対象行があったかを返す."""
        parameters = _anime_write_parameters(anime, self._record_author)
        parameters["anime_id"] = anime.anime_id
        cursor = self._call(
            "update_anime",
            parameters,
            context={"animeName": anime.anime_name, "animeId": anime.anime_id},
        )
        return cursor.rowcount > 0

    def delete_anime(self, anime_name: str) -> bool:
        """作品名指定で論理削除し、対象行があったかを返す."""
        cursor = self._call(
            "delete_anime_by_name",
            {"anime_key": name_key(anime_name), "record_author": self._record_author},
            context={"animeName": anime_name},
        )
        return cursor.rowcount > 0

    def add_studio(self, studio_name: str) -> StudioRecord:
        cursor = self._call(
            "add_studio",
            {"studio_name": studio_name, "studio_key": name_key(studio_name)},
            context={"studioName": studio_name},
        )
        return StudioRecord(studio_id=int(cursor.lastrowid), studio_name=studio_name)

    def get_studio(self, studio_name: str) -> Optional[StudioRecord]:
        row = self._call(
            "get_studio_by_name",
            {"studio_key": name_key(studio_name)},
            context={"studioName": studio_name},
        ).fetchone()
        if row is None:
            return None

        return StudioRecord(studio_id=row[0], studio_name=row[1])

    def get_all_studios(self) -> list[StudioRecord]:
        rows = self._call("get_all_studios", {}).fetchall()
        return [StudioRecord(studio_id=row[0], studio_name=row[1]) for row in rows]
