import sys
from pathlib import Path
from typing import Any, Optional

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]

if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))


class RecordingAnimeStore:
    """呼び出し履歴を残すインメモリの作品ストア（テスト用）."""

    def __init__(self):
        from anime_api.anime_repository import AnimeRecord

        self._record_class = AnimeRecord
        self.calls: list[tuple[str, Any]] = []
        self._records_by_id: dict[int, Any] = {}
        self._next_id = 1
        self._failures: dict[str, Exception] = {}

    def seed(self, anime_name: str, studio_id: int = 1) -> int:
        """既存レコードを1件追加する（呼び出し履歴には残さない）."""
        anime_id = self._next_id
        self._next_id += 1
        self._records_by_id[anime_id] = self._record_class(
            anime_id=anime_id,
            anime_name=anime_name,
            anime_status="Ongoing",
            studio_id=studio_id,
            studio_name=None,
            release_date=None,
            episode_count=12,
            genres="action",
        )
        return anime_id

    def fail_on(self, operation: str, error: Exception) -> None:
        """指定操作の呼び出し時に例外を送出させる."""
        self._failures[operation] = error

    def calls_of(self, operation: str) -> list[Any]:
        return [argument for name, argument in self.calls if name == operation]

    def _record(self, operation: str, argument: Any) -> None:
        self.calls.append((operation, argument))
        if operation in self._failures:
            raise self._failures[operation]

    def _find_by_name(self, anime_name: str) -> Optional[Any]:
        for record in self._records_by_id.values():
            if record.anime_name.lower() == anime_name.lower():
                return record

        return None

    def get_anime(self, anime_name: str):
        self._record("get_anime", anime_name)
        return self._find_by_name(anime_name)

    def get_anime_by_id(self, anime_id: int):
        self._record("get_anime_by_id", anime_id)
        return self._records_by_id.get(anime_id)

    def get_all_anime(self):
        self._record("get_all_anime", None)
        return [self._records_by_id[anime_id] for anime_id in sorted(self._records_by_id)]

    def add_anime(self, anime) -> int:
        self._record("add_anime", anime.anime_name)
        return self.seed(anime.anime_name, anime.studio_id)

    def update_anime(self, anime) -> bool:
        self._record("update_anime", anime.anime_name)
        if anime.anime_id not in self._records_by_id:
            return False

        self._records_by_id[anime.anime_id] = self._record_class(
            anime_id=anime.anime_id,
            anime_name=anime.anime_name,
            anime_status=anime.anime_status.value,
            studio_id=anime.studio_id,
            studio_name=None,
            release_date=None,
            episode_count=anime.episode_count,
            genres=anime.genres,
        )
        return True

    def delete_anime(self, anime_name: str) -> bool:
        self._record("delete_anime", anime_name)
        record = self._find_by_name(anime_name)
        if record is None:
            return False

        del self._records_by_id[record.anime_id]
        return True


@pytest.fixture
def recording_store() -> RecordingAnimeStore:
    """呼び出し履歴付きのインメモリ作品ストアを返す."""
    return RecordingAnimeStore()
