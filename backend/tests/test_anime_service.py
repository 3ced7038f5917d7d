import logging
import sqlite3

import pytest

from anime_api.anime_models import AnimeCreateRequest, AnimeStatus, AnimeUpdateRequest
from anime_api.anime_service import (
    AnimeBatchProcessor,
    AnimeConflictError,
    AnimeNotFoundError,
    AnimeService,
    AnimeValidationError,
    DuplicateChecker,
    tally,
)


def _create_request(anime_name: str, studio_id: int = 1) -> AnimeCreateRequest:
    return AnimeCreateRequest(
        anime_name=anime_name,
        anime_status=AnimeStatus.ONGOING,
        studio_id=studio_id,
        episode_count=24,
        genres="action,adventure",
    )


def _update_request(anime_id: int, anime_name: str) -> AnimeUpdateRequest:
    return AnimeUpdateRequest(
        anime_id=anime_id,
        anime_name=anime_name,
        anime_status=AnimeStatus.COMPLETE,
        studio_id=1,
        episode_count=26,
        genres="drama",
    )


def test_tally_counts_each_label_into_exactly_one_bucket():
    """成功・失敗ラベルをそれぞれ1回ずつ数える."""
    results = {
        "Success: Naruto": "ok",
        "Failure: Bleach": "ng",
        "Success: Failure Frame": "ok",
    }

    assert tally(results) == (2, 1)


def test_tally_rejects_label_without_status_marker():
    """マーカーの無いラベルは集計漏れとして ValueError にする."""
    with pytest.raises(ValueError):
        tally({"Naruto": "unlabeled"})


def test_duplicate_checker_treats_empty_named_record_as_absent(recording_store):
    """名前が空のレコードは未登録とみなす."""
    recording_store.seed("")
    recording_store.seed("Naruto")
    checker = DuplicateChecker(recording_store)

    assert checker.exists("NARUTO") is True
    assert checker.exists("") is False
    assert checker.exists("Bleach") is False
    assert recording_store.calls_of("get_anime") == ["naruto", "", "bleach"]


def test_create_many_creates_every_item_when_no_name_exists(recording_store):
    """登録済みの名前が無ければ全件成功する."""
    processor = AnimeBatchProcessor(recording_store)

    result = processor.create_many(
        [_create_request("Naruto"), _create_request("Bleach"), _create_request("One Piece")]
    )

    assert result.success_count == 3
    assert result.failure_count == 0
    assert recording_store.calls_of("add_anime") == ["Naruto", "Bleach", "One Piece"]


def test_create_many_skips_existing_names_without_store_create(recording_store):
    """登録済みの名前は失敗として記録し、ストアの作成は呼ばない."""
    recording_store.seed("naruto")
    recording_store.seed("Bleach")
    processor = AnimeBatchProcessor(recording_store)

    result = processor.create_many(
        [
            _create_request("Naruto"),
            _create_request("One Piece"),
            _create_request("BLEACH"),
            _create_request("Mushishi"),
        ]
    )

    assert result.success_count == 2
    assert result.failure_count == 2
    assert recording_store.calls_of("add_anime") == ["One Piece", "Mushishi"]


def test_create_many_reports_mixed_result_for_concrete_batch(recording_store):
    """Naruto が登録済みの場合、One Piece のみ作成される."""
    recording_store.seed("Naruto")
    processor = AnimeBatchProcessor(recording_store)

    result = processor.create_many([_create_request("Naruto"), _create_request("One Piece")])

    assert result.model_dump(by_alias=True) == {
        "successCount": 1,
        "failureCount": 1,
        "results": {
            "Failure: Naruto": "duplicate record detected, not created for: Naruto",
            "Success: One Piece": "successfully created the record: One Piece",
        },
    }


def test_create_many_attempts_no_create_when_every_item_is_duplicate(recording_store):
    """全件重複なら作成は0回で失敗件数のみが残る."""
    recording_store.seed("Naruto")
    recording_store.seed("Bleach")
    processor = AnimeBatchProcessor(recording_store)

    result = processor.create_many([_create_request("Naruto"), _create_request("Bleach")])

    assert result.success_count == 0
    assert result.failure_count == 2
    assert recording_store.calls_of("add_anime") == []


def test_create_many_uses_injected_logger_for_duplicate_skip(recording_store, caplog):
    """重複スキップは注入したロガーへ記録される."""
    recording_store.seed("Naruto")
    batch_logger = logging.getLogger("tests.batch")
    processor = AnimeBatchProcessor(recording_store, batch_logger=batch_logger)

    with caplog.at_level(logging.INFO, logger="tests.batch"):
        processor.create_many([_create_request("Naruto")])

    assert any(
        record.name == "tests.batch" and "animeName=Naruto" in record.getMessage()
        for record in caplog.records
    )


def test_create_many_propagates_store_failure(recording_store):
    """ストア例外は捕捉せず呼び出し元へ伝播し、残りの項目は処理しない."""
    recording_store.fail_on("add_anime", sqlite3.OperationalError("disk I/O error"))
    processor = AnimeBatchProcessor(recording_store)

    with pytest.raises(sqlite3.OperationalError):
        processor.create_many([_create_request("Naruto"), _create_request("Bleach")])

    assert recording_store.calls_of("add_anime") == ["Naruto"]


def test_update_many_aborts_whole_batch_when_any_name_exists(recording_store):
    """1件でも登録済みの名前があれば更新は1回も行わない."""
    naruto_id = recording_store.seed("Naruto")
    bleach_id = recording_store.seed("Bleach")
    recording_store.seed("One Piece")
    processor = AnimeBatchProcessor(recording_store)

    result = processor.update_many(
        [_update_request(naruto_id, "Naruto Shippuden"), _update_request(bleach_id, "One Piece")]
    )

    assert result.success_count == 0
    assert result.failure_count == 1
    assert result.results == {
        "Failure: One Piece": "duplicate record detected, not updated for: One Piece"
    }
    assert recording_store.calls_of("update_anime") == []


def test_update_many_updates_in_input_order_when_no_name_exists(recording_store):
    """重複が無ければ入力順に全件更新する."""
    naruto_id = recording_store.seed("Naruto")
    bleach_id = recording_store.seed("Bleach")
    processor = AnimeBatchProcessor(recording_store)

    result = processor.update_many(
        [
            _update_request(bleach_id, "Bleach TYBW"),
            _update_request(naruto_id, "Naruto Shippuden"),
        ]
    )

    assert result.success_count == 2
    assert result.failure_count == 0
    assert recording_store.calls_of("update_anime") == ["Bleach TYBW", "Naruto Shippuden"]
    assert result.results["Success: Bleach TYBW"] == "successfully updated the record: Bleach TYBW"


def test_update_many_records_failure_for_unknown_id(recording_store):
    """存在しない ID の更新は失敗として集計する."""
    naruto_id = recording_store.seed("Naruto")
    processor = AnimeBatchProcessor(recording_store)

    result = processor.update_many(
        [_update_request(naruto_id, "Naruto Shippuden"), _update_request(999, "Mushishi")]
    )

    assert result.success_count == 1
    assert result.failure_count == 1
    assert result.results["Failure: Mushishi"] == "record not found, not updated for: Mushishi"


def test_delete_many_skips_unknown_names(recording_store):
    """未登録の名前は削除を呼ばず失敗として記録する."""
    recording_store.seed("Naruto")
    processor = AnimeBatchProcessor(recording_store)

    result = processor.delete_many(["Naruto", "Bleach"])

    assert result.success_count == 1
    assert result.failure_count == 1
    assert recording_store.calls_of("delete_anime") == ["naruto"]
    assert result.results == {
        "Success: Naruto": "successfully deleted the record: Naruto",
        "Failure: Bleach": "record not found, not deleted for: Bleach",
    }


def test_service_create_twice_raises_conflict_without_second_write(recording_store):
    """同名の2回目の作成は競合となり、ストアへの作成は1回だけ."""
    service = AnimeService(recording_store)

    first = service.create_anime(_create_request("Naruto"))
    with pytest.raises(AnimeConflictError) as error_info:
        service.create_anime(_create_request("naruto"))

    assert first.success_count == 1
    assert error_info.value.status_code == 409
    assert error_info.value.code == "ANIME_ALREADY_EXISTS"
    assert recording_store.calls_of("add_anime") == ["Naruto"]


def test_service_create_bulk_rejects_duplicate_names_within_batch(recording_store):
    """バッチ内の重複名（大文字小文字違い含む）は書き込み前に拒否する."""
    service = AnimeService(recording_store)

    with pytest.raises(AnimeValidationError) as error_info:
        service.create_anime_bulk([_create_request("Naruto"), _create_request("NARUTO")])

    assert error_info.value.code == "DUPLICATE_NAME_IN_BATCH"
    assert recording_store.calls == []


def test_service_create_bulk_rejects_empty_batch(recording_store):
    """空のバッチは検証エラーにする."""
    service = AnimeService(recording_store)

    with pytest.raises(AnimeValidationError) as error_info:
        service.create_anime_bulk([])

    assert error_info.value.code == "EMPTY_BATCH"


def test_service_delete_bulk_rejects_empty_batch_like_other_bulk_paths(recording_store):
    """一括削除の空リストも作成・更新と同じ EMPTY_BATCH で拒否する."""
    service = AnimeService(recording_store)

    with pytest.raises(AnimeValidationError) as error_info:
        service.delete_anime_bulk([])

    assert error_info.value.status_code == 400
    assert error_info.value.code == "EMPTY_BATCH"
    assert recording_store.calls == []


def test_service_create_strips_surrounding_whitespace_from_name(recording_store):
    """作品名の前後空白は除去して登録する."""
    service = AnimeService(recording_store)

    result = service.create_anime(_create_request("  Mushishi  "))

    assert result.results == {"Success: Mushishi": "successfully created the record: Mushishi"}
    assert recording_store.calls_of("add_anime") == ["Mushishi"]


def test_service_delete_missing_name_raises_not_found_without_store_delete(recording_store):
    """未登録名の削除は not-found とし、ストアの削除は呼ばない."""
    service = AnimeService(recording_store)

    with pytest.raises(AnimeNotFoundError):
        service.delete_anime("bleach")

    assert recording_store.calls_of("delete_anime") == []


def test_service_update_rejects_name_owned_by_another_record(recording_store):
    """別レコードが保持する名前への更新は競合になる."""
    naruto_id = recording_store.seed("Naruto")
    recording_store.seed("Bleach")
    service = AnimeService(recording_store)

    with pytest.raises(AnimeConflictError):
        service.update_anime(_update_request(naruto_id, "Bleach"))

    assert recording_store.calls_of("update_anime") == []


def test_service_update_allows_keeping_own_name(recording_store):
    """自分自身の名前のままの更新は許可する."""
    naruto_id = recording_store.seed("Naruto")
    service = AnimeService(recording_store)

    result = service.update_anime(_update_request(naruto_id, "Naruto"))

    assert result.success_count == 1
    assert recording_store.calls_of("update_anime") == ["Naruto"]


def test_service_update_unknown_id_raises_not_found(recording_store):
    """存在しない ID の単体更新は not-found になる."""
    service = AnimeService(recording_store)

    with pytest.raises(AnimeNotFoundError):
        service.update_anime(_update_request(42, "Naruto"))


def test_service_list_anime_slices_page_and_raises_when_catalog_is_empty(recording_store):
    """一覧は開始位置と件数で切り出し、空カタログは not-found."""
    service = AnimeService(recording_store)

    with pytest.raises(AnimeNotFoundError):
        service.list_anime(start_index=0, page_size=10)

    for anime_name in ["A", "B", "C", "D"]:
        recording_store.seed(anime_name)

    page = service.list_anime(start_index=1, page_size=2)

    assert [record.anime_name for record in page] == ["B", "C"]


def test_service_get_anime_rejects_blank_name(recording_store):
    """空白のみの作品名は検証エラーにする."""
    service = AnimeService(recording_store)

    with pytest.raises(AnimeValidationError) as error_info:
        service.get_anime("   ")

    assert error_info.value.code == "INVALID_ANIME_NAME"
    assert recording_store.calls == []
