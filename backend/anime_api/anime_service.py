import logging
from collections.abc import Mapping, Sequence
from typing import Any, Optional, Protocol, TypeVar

from anime_api.anime_models import (
    AggregateResult,
    AnimeCreateRequest,
    AnimeUpdateRequest,
    ResponseStatus,
)
from anime_api.anime_repository import AnimeRecord, StudioRecord

logger = logging.getLogger(__name__)

CREATED_MESSAGE = "successfully created the record: {anime_name}"
UPDATED_MESSAGE = "successfully updated the record: {anime_name}"
DELETED_MESSAGE = "successfully deleted the record: {anime_name}"
DUPLICATE_NOT_CREATED_MESSAGE = "duplicate record detected, not created for: {anime_name}"
DUPLICATE_NOT_UPDATED_MESSAGE = "duplicate record detected, not updated for: {anime_name}"
NOT_FOUND_NOT_UPDATED_MESSAGE = "record not found, not updated for: {anime_name}"
NOT_FOUND_NOT_DELETED_MESSAGE = "record not found, not deleted for: {anime_name}"

AnimeRequestT = TypeVar("AnimeRequestT", bound=AnimeCreateRequest)


class AnimeStore(Protocol):
    """バッチ処理が利用する作品ストアの境界."""

    def get_anime(self, anime_name: str) -> Optional[AnimeRecord]: ...

    def get_anime_by_id(self, anime_id: int) -> Optional[AnimeRecord]: ...

    def get_all_anime(self) -> list[AnimeRecord]: ...

    def add_anime(self, anime: AnimeCreateRequest) -> int: ...

    def update_anime(self, anime: AnimeUpdateRequest) -> bool: ...

    def delete_anime(self, anime_name: str) -> bool: ...


class AnimeServiceError(Exception):
    """HTTP ステータスとエラーコードを持つ業務エラー."""

    status_code = 400
    default_code = "BAD_REQUEST"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_http_exception_detail(self) -> dict[str, Any]:
        """HTTPException の detail 形式へ変換する."""
        return {"code": self.code, "message": self.message, "details": dict(self.details)}


class AnimeValidationError(AnimeServiceError):
    status_code = 400
    default_code = "INVALID_ANIME_REQUEST"


class AnimeNotFoundError(AnimeServiceError):
    status_code = 404
    default_code = "ANIME_NOT_FOUND"


class AnimeConflictError(AnimeServiceError):
    status_code = 409
    default_code = "ANIME_ALREADY_EXISTS"


def build_result_label(status: ResponseStatus, anime_name: str) -> str:
    """成否マーカーと作品名から結果ラベルを組み立てる."""
    return f"{status.value}: {anime_name}"


def tally(results: Mapping[str, str]) -> tuple[int, int]:
    """結果ラベルを走査して成功件数と失敗件数を数える.

    ラベルは必ずどちらか一方のマーカーで始まる。どちらでもないラベルは
    集計漏れになるため ValueError とする。
    """
    success_prefix = build_result_label(ResponseStatus.SUCCESS, "")
    failure_prefix = build_result_label(ResponseStatus.FAILURE, "")
    success_count = 0
    failure_count = 0

    for label in results:
        if label.startswith(success_prefix):
            success_count += 1
        elif label.startswith(failure_prefix):
            failure_count += 1
        else:
            raise ValueError(f"result label has no status marker: {label}")

    return success_count, failure_count


def aggregate(results: Mapping[str, str]) -> AggregateResult:
    """結果マッピングから集計結果を作る."""
    success_count, failure_count = tally(results)
    return AggregateResult(
        success_count=success_count,
        failure_count=failure_count,
        results=dict(results),
    )


def normalize_anime_name(raw_name: str) -> str:
    """前後空白を除いた作品名を返し、空なら検証エラーにする."""
    normalized_name = raw_name.strip()
    if normalized_name == "":
        raise AnimeValidationError(
            "anime_name is required",
            code="INVALID_ANIME_NAME",
            details={"animeName": raw_name},
        )

    return normalized_name


def _ensure_not_empty(batch: Sequence[Any]) -> None:
    if len(batch) == 0:
        raise AnimeValidationError("batch must contain at least one record", code="EMPTY_BATCH")


def _normalize_batch(animes: Sequence[AnimeRequestT]) -> list[AnimeRequestT]:
    """一括リクエストの作品名を正規化し、空バッチとバッチ内重複を拒否する."""
    _ensure_not_empty(animes)

    normalized = [
        anime.model_copy(update={"anime_name": normalize_anime_name(anime.anime_name)})
        for anime in animes
    ]
    _ensure_unique_names([anime.anime_name for anime in normalized])
    return normalized


def _ensure_unique_names(anime_names: Sequence[str]) -> None:
    seen_names: set[str] = set()
    for anime_name in anime_names:
        lookup_name = anime_name.lower()
        if lookup_name in seen_names:
            raise AnimeValidationError(
                "anime names must be unique within a batch",
                code="DUPLICATE_NAME_IN_BATCH",
                details={"animeName": anime_name},
            )

        seen_names.add(lookup_name)


class DuplicateChecker:
    """作品名が既にストアへ登録済みか判定する."""

    def __init__(self, store: AnimeStore):
        self._store = store

    def exists(self, anime_name: str) -> bool:
        record = self._store.get_anime(anime_name.lower())
        return record is not None and record.anime_name != ""


class AnimeBatchProcessor:
    """作品の一括作成・更新・削除を入力順に1件ずつ処理して集計する.

    作成と削除は該当しない項目だけを失敗として記録し残りを続行する。
    更新はバッチのどこかに登録済みの名前があれば書き込み前に全体を中止する。
    ストア例外は捕捉せず、その時点までの結果ごと呼び出し元へ伝播させる。
    """

    def __init__(
        self,
        store: AnimeStore,
        duplicate_checker: Optional[DuplicateChecker] = None,
        batch_logger: Optional[logging.Logger] = None,
    ):
        self._store = store
        self._duplicate_checker = duplicate_checker or DuplicateChecker(store)
        self._logger = batch_logger or logger

    def create_many(self, animes: Sequence[AnimeCreateRequest]) -> AggregateResult:
        results: dict[str, str] = {}

        for anime in animes:
            if self._duplicate_checker.exists(anime.anime_name):
                self._logger.info("重複のため作成をスキップしました。animeName=%s", anime.anime_name)
                results[build_result_label(ResponseStatus.FAILURE, anime.anime_name)] = (
                    DUPLICATE_NOT_CREATED_MESSAGE.format(anime_name=anime.anime_name)
                )
                continue

            self._store.add_anime(anime)
            results[build_result_label(ResponseStatus.SUCCESS, anime.anime_name)] = (
                CREATED_MESSAGE.format(anime_name=anime.anime_name)
            )

        return aggregate(results)

    def update_many(self, animes: Sequence[AnimeUpdateRequest]) -> AggregateResult:
        for anime in animes:
            if self._duplicate_checker.exists(anime.anime_name):
                self._logger.warning(
                    "重複を検出したため一括更新を中止しました。animeName=%s batchSize=%s",
                    anime.anime_name,
                    len(animes),
                )
                return aggregate(
                    {
                        build_result_label(ResponseStatus.FAILURE, anime.anime_name): (
                            DUPLICATE_NOT_UPDATED_MESSAGE.format(anime_name=anime.anime_name)
                        )
                    }
                )

        results: dict[str, str] = {}
        for anime in animes:
            if self._store.update_anime(anime):
                results[build_result_label(ResponseStatus.SUCCESS, anime.anime_name)] = (
                    UPDATED_MESSAGE.format(anime_name=anime.anime_name)
                )
                continue

            results[build_result_label(ResponseStatus.FAILURE, anime.anime_name)] = (
                NOT_FOUND_NOT_UPDATED_MESSAGE.format(anime_name=anime.anime_name)
            )

        return aggregate(results)

    def delete_many(self, anime_names: Sequence[str]) -> AggregateResult:
        results: dict[str, str] = {}

        for anime_name in anime_names:
            if self._duplicate_checker.exists(anime_name) and self._store.delete_anime(
                anime_name.lower()
            ):
                results[build_result_label(ResponseStatus.SUCCESS, anime_name)] = (
                    DELETED_MESSAGE.format(anime_name=anime_name)
                )
                continue

            results[build_result_label(ResponseStatus.FAILURE, anime_name)] = (
                NOT_FOUND_NOT_DELETED_MESSAGE.format(anime_name=anime_name)
            )

        return aggregate(results)


class StudioStore(Protocol):
    def add_studio(self, studio_name: str) -> StudioRecord: ...

    def get_studio(self, studio_name: str) -> Optional[StudioRecord]: ...

    def get_all_studios(self) -> list[StudioRecord]: ...


class AnimeService:
    """作品 API の業務処理（単体操作と一括操作の入口）."""

    def __init__(self, store: AnimeStore, batch_logger: Optional[logging.Logger] = None):
        self._store = store
        self._duplicate_checker = DuplicateChecker(store)
        self._batch_processor = AnimeBatchProcessor(
            store, duplicate_checker=self._duplicate_checker, batch_logger=batch_logger
        )

    def get_anime(self, anime_name: str) -> AnimeRecord:
        """作品名で1件取得し、無ければ not-found とする."""
        normalized_name = normalize_anime_name(anime_name)
        record = self._store.get_anime(normalized_name.lower())
        if record is None or record.anime_name == "":
            raise AnimeNotFoundError(
                f"{normalized_name} doesn't exist in the database. Please validate and try again.",
                details={"animeName": normalized_name},
            )

        return record

    def list_anime(self, start_index: int, page_size: int) -> list[AnimeRecord]:
        """全件取得後に start_index から page_size 件を切り出す."""
        records = self._store.get_all_anime()
        if len(records) == 0:
            raise AnimeNotFoundError("No data found.")

        return records[start_index : start_index + page_size]

    def create_anime(self, anime: AnimeCreateRequest) -> AggregateResult:
        anime = anime.model_copy(update={"anime_name": normalize_anime_name(anime.anime_name)})
        if self._duplicate_checker.exists(anime.anime_name):
            raise AnimeConflictError(
                f"{anime.anime_name} already exists. Please validate and try again.",
                details={"animeName": anime.anime_name},
            )

        return self._batch_processor.create_many([anime])

    def create_anime_bulk(self, animes: Sequence[AnimeCreateRequest]) -> AggregateResult:
        return self._batch_processor.create_many(_normalize_batch(animes))

    def update_anime(self, anime: AnimeUpdateRequest) -> AggregateResult:
        """ID 指定で1件更新する（同名の別レコードがあれば競合）."""
        anime = anime.model_copy(update={"anime_name": normalize_anime_name(anime.anime_name)})
        if self._store.get_anime_by_id(anime.anime_id) is None:
            raise AnimeNotFoundError(
                f"{anime.anime_name} doesn't exist. Please validate and try again.",
                details={"animeId": anime.anime_id},
            )

        name_holder = self._store.get_anime(anime.anime_name.lower())
        if name_holder is not None and name_holder.anime_id != anime.anime_id:
            raise AnimeConflictError(
                f"{anime.anime_name} already exists. Please validate and try again.",
                details={"animeName": anime.anime_name, "animeId": name_holder.anime_id},
            )

        self._store.update_anime(anime)
        return aggregate(
            {
                build_result_label(ResponseStatus.SUCCESS, anime.anime_name): (
                    UPDATED_MESSAGE.format(anime_name=anime.anime_name)
                )
            }
        )

    def update_anime_bulk(self, animes: Sequence[AnimeUpdateRequest]) -> AggregateResult:
        return self._batch_processor.update_many(_normalize_batch(animes))

    def delete_anime(self, anime_name: str) -> AggregateResult:
        normalized_name = normalize_anime_name(anime_name)
        if not self._duplicate_checker.exists(normalized_name):
            raise AnimeNotFoundError(
                f"{normalized_name} doesn't exist in the database. Please validate and try again.",
                details={"animeName": normalized_name},
            )

        return self._batch_processor.delete_many([normalized_name])

    def delete_anime_bulk(self, anime_names: Sequence[str]) -> AggregateResult:
        _ensure_not_empty(anime_names)
        normalized_names = [normalize_anime_name(anime_name) for anime_name in anime_names]
        _ensure_unique_names(normalized_names)
        return self._batch_processor.delete_many(normalized_names)


def create_studio(store: StudioStore, studio_name: str) -> StudioRecord:
    """制作会社を1件登録する（同名があれば競合）."""
    normalized_name = studio_name.strip()
    if normalized_name == "":
        raise AnimeValidationError("studio_name is required", code="INVALID_STUDIO_NAME")

    if store.get_studio(normalized_name) is not None:
        raise AnimeConflictError(
            "Studio already exists",
            code="STUDIO_ALREADY_EXISTS",
            details={"studioName": normalized_name},
        )

    return store.add_studio(normalized_name)
