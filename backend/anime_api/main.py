import logging
import sqlite3
from collections.abc import Mapping, Sequence
from contextlib import asynccontextmanager
from typing import Annotated, Any, Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Path, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from anime_api.anime_models import (
    AggregateResult,
    AnimeBulkDeleteRequest,
    AnimeCreateRequest,
    AnimeResponse,
    AnimeUpdateRequest,
    CreateStudioRequest,
    StudioResponse,
)
from anime_api.anime_repository import AnimeRecord, AnimeRepository
from anime_api.anime_service import AnimeService, AnimeServiceError, create_studio
from anime_api.config import Settings, load_settings
from anime_api.db import check_database_connection, get_db_connection, initialize_database

load_dotenv()
settings = load_settings()
logger = logging.getLogger(__name__)

DEFAULT_ERROR_CODE_BY_STATUS = {
    status.HTTP_400_BAD_REQUEST: "BAD_REQUEST",
    status.HTTP_401_UNAUTHORIZED: "UNAUTHORIZED",
    status.HTTP_403_FORBIDDEN: "FORBIDDEN",
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
    status.HTTP_409_CONFLICT: "CONFLICT",
    422: "VALIDATION_ERROR",
    status.HTTP_500_INTERNAL_SERVER_ERROR: "INTERNAL_SERVER_ERROR",
    status.HTTP_503_SERVICE_UNAVAILABLE: "SERVICE_UNAVAILABLE",
}
MAX_PAGE_SIZE = 500


def _build_error_response(
    status_code: int,
    code: str,
    message: str,
    details: Optional[dict[str, Any]] = None,
) -> JSONResponse:
    """統一フォーマットのエラーレスポンスを構築する."""
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": code,
                "message": message,
                "details": details or {},
            }
        },
    )


def _extract_error_code(status_code: int, detail: Any) -> str:
    """HTTP例外detailから code を抽出し、なければHTTPステータスで補完する."""
    if isinstance(detail, Mapping):
        code_value = detail.get("code")
        if isinstance(code_value, str) and code_value.strip():
            return code_value

    return DEFAULT_ERROR_CODE_BY_STATUS.get(status_code, "HTTP_ERROR")


def _extract_error_message(detail: Any) -> str:
    """HTTP例外detailから message を抽出し、なければ文字列化する."""
    if isinstance(detail, Mapping):
        message_value = detail.get("message")
        if isinstance(message_value, str) and message_value.strip():
            return message_value

    if isinstance(detail, str):
        stripped = detail.strip()
        if stripped != "":
            return stripped

    return "Request failed."


def _extract_error_details(detail: Any) -> dict[str, Any]:
    """HTTP例外detailから details を抽出する."""
    if isinstance(detail, Mapping):
        detail_value = detail.get("details")
        if isinstance(detail_value, dict):
            return dict(detail_value)

    return {}


def _build_validation_details(errors: Sequence[Any]) -> dict[str, Any]:
    """FastAPIのバリデーションエラーを統一フォーマット向けに変換する."""
    field_errors = []
    for item in errors:
        locations = item.get("loc", [])
        if isinstance(locations, (list, tuple)):
            field_parts = [str(location) for location in locations if location != "body"]
        else:
            field_parts = [str(locations)]

        field_errors.append(
            {
                "field": ".".join(field_parts) if field_parts else "request",
                "reason": str(item.get("msg", "invalid")),
            }
        )

    return {"fieldErrors": field_errors}


def _log_db_constraint_violation(code: str, details: dict[str, Any], reason: str) -> None:
    """DB制約違反を重要イベントとして記録する."""
    logger.warning(
        "重要イベント: DB制約違反 code=%s details=%s reason=%s",
        code,
        details,
        reason,
    )


def _build_integrity_error_response(exception: sqlite3.IntegrityError) -> JSONResponse:
    """SQLite制約違反を統一エラーレスポンスへ変換する."""
    error_message = str(exception)

    if "UNIQUE constraint failed: anime.name_key" in error_message:
        _log_db_constraint_violation(
            code="ANIME_ALREADY_EXISTS",
            details={},
            reason=error_message,
        )
        return _build_error_response(
            status_code=409,
            code="ANIME_ALREADY_EXISTS",
            message="Anime already exists",
            details={},
        )

    if "FOREIGN KEY constraint failed" in error_message:
        _log_db_constraint_violation(
            code="DB_CONSTRAINT_VIOLATION",
            details={"constraint": "FOREIGN_KEY"},
            reason=error_message,
        )
        return _build_error_response(
            status_code=409,
            code="DB_CONSTRAINT_VIOLATION",
            message="Foreign key constraint failed",
            details={"constraint": "FOREIGN_KEY"},
        )

    details = {"reason": error_message}
    _log_db_constraint_violation(
        code="DB_CONSTRAINT_VIOLATION",
        details=details,
        reason=error_message,
    )
    return _build_error_response(
        status_code=409,
        code="DB_CONSTRAINT_VIOLATION",
        message="Database constraint violated",
        details=details,
    )


def _to_anime_response(record: AnimeRecord) -> AnimeResponse:
    return AnimeResponse(
        anime_id=record.anime_id,
        anime_name=record.anime_name,
        anime_status=record.anime_status,
        studio_id=record.studio_id,
        studio_name=record.studio_name,
        release_date=record.release_date,
        episode_count=record.episode_count,
        genres=record.genres,
    )


def _to_batch_response(result: AggregateResult) -> Any:
    """成功0件の集計結果は 400、それ以外はそのまま返す."""
    if result.success_count > 0:
        return result

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=result.model_dump(by_alias=True),
    )


def get_settings() -> Settings:
    """リクエスト時点の環境変数から設定を解決する."""
    return load_settings()


def get_anime_repository(
    connection: Annotated[sqlite3.Connection, Depends(get_db_connection)],
    runtime_settings: Annotated[Settings, Depends(get_settings)],
) -> AnimeRepository:
    """リクエスト単位の接続に紐づくストアを提供する."""
    return AnimeRepository(connection=connection, record_author=runtime_settings.record_author)


def get_anime_service(
    repository: Annotated[AnimeRepository, Depends(get_anime_repository)],
) -> AnimeService:
    return AnimeService(repository)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """アプリ起動時に一度だけ DB を初期化する."""
    initialize_database()
    yield


app = FastAPI(
    title="Anime API",
    description="アニメ作品カタログの CRUD API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def handle_http_exception(
    _request: Request, exception: StarletteHTTPException
) -> JSONResponse:
    """HTTPExceptionを統一フォーマットへ変換する."""
    return _build_error_response(
        status_code=exception.status_code,
        code=_extract_error_code(exception.status_code, exception.detail),
        message=_extract_error_message(exception.detail),
        details=_extract_error_details(exception.detail),
    )


@app.exception_handler(AnimeServiceError)
async def handle_service_exception(_request: Request, exception: AnimeServiceError) -> JSONResponse:
    """業務エラーを統一フォーマットへ変換する."""
    if exception.status_code == status.HTTP_409_CONFLICT:
        logger.warning(
            "重要イベント: 重複登録を拒否 code=%s details=%s", exception.code, exception.details
        )

    detail = exception.to_http_exception_detail()
    return _build_error_response(
        status_code=exception.status_code,
        code=detail["code"],
        message=detail["message"],
        details=detail["details"],
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_exception(
    _request: Request, exception: RequestValidationError
) -> JSONResponse:
    """リクエストバリデーション例外を統一フォーマットへ変換する."""
    return _build_error_response(
        status_code=422,
        code="VALIDATION_ERROR",
        message="Request parameters are invalid.",
        details=_build_validation_details(exception.errors()),
    )


@app.exception_handler(sqlite3.IntegrityError)
async def handle_integrity_exception(
    _request: Request, exception: sqlite3.IntegrityError
) -> JSONResponse:
    """DB制約違反を統一フォーマットへ変換する."""
    return _build_integrity_error_response(exception)


@app.exception_handler(Exception)
async def handle_unexpected_exception(_request: Request, _exception: Exception) -> JSONResponse:
    """想定外例外を統一フォーマットへ変換する."""
    logger.exception("想定外の例外が発生しました。")
    return _build_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        code="INTERNAL_SERVER_ERROR",
        message="An unexpected error occurred.",
        details={},
    )


@app.get("/")
async def root():
    """API の疎通確認用メッセージを返す."""
    return {"message": "Anime API"}


@app.get("/health")
async def health_check():
    """DB疎通を含むヘルスステータスを返す."""
    try:
        check_database_connection()
    except Exception as error:
        raise HTTPException(status_code=503, detail="Database connection failed") from error

    return {"status": "ok", "message": "API is running"}


@app.get("/api/v1/anime", response_model=list[AnimeResponse])
async def list_anime(
    service: Annotated[AnimeService, Depends(get_anime_service)],
    runtime_settings: Annotated[Settings, Depends(get_settings)],
    start_index: Annotated[int, Query(ge=0)] = 0,
    page_size: Annotated[Optional[int], Query(ge=1, le=MAX_PAGE_SIZE)] = None,
):
    """作品一覧をページ単位で返す."""
    resolved_page_size = page_size
    if resolved_page_size is None:
        resolved_page_size = runtime_settings.default_page_size

    records = service.list_anime(start_index=start_index, page_size=resolved_page_size)
    return [_to_anime_response(record) for record in records]


@app.get("/api/v1/anime/{start_index}/{page_size}", response_model=list[AnimeResponse])
async def list_anime_page(
    start_index: Annotated[int, Path(ge=0)],
    page_size: Annotated[int, Path(ge=1, le=MAX_PAGE_SIZE)],
    service: Annotated[AnimeService, Depends(get_anime_service)],
):
    """パス指定の開始位置と件数で作品一覧を返す."""
    records = service.list_anime(start_index=start_index, page_size=page_size)
    return [_to_anime_response(record) for record in records]


@app.get("/api/v1/anime/{anime_name}", response_model=AnimeResponse)
async def get_anime(
    anime_name: str,
    service: Annotated[AnimeService, Depends(get_anime_service)],
):
    """作品名（大文字小文字を区別しない）で1件取得する."""
    return _to_anime_response(service.get_anime(anime_name.lower()))


@app.post(
    "/api/v1/anime", response_model=AggregateResult, status_code=status.HTTP_201_CREATED
)
async def create_anime(
    request_body: AnimeCreateRequest,
    service: Annotated[AnimeService, Depends(get_anime_service)],
):
    """作品を1件登録する."""
    return service.create_anime(request_body)


@app.post("/api/v1/anime/bulk", response_model=AggregateResult)
async def create_anime_bulk(
    request_body: list[AnimeCreateRequest],
    service: Annotated[AnimeService, Depends(get_anime_service)],
):
    """作品を一括登録する（登録済みの名前は失敗として記録し残りを続行）."""
    return _to_batch_response(service.create_anime_bulk(request_body))


@app.put("/api/v1/anime", response_model=AggregateResult)
async def update_anime(
    request_body: AnimeUpdateRequest,
    service: Annotated[AnimeService, Depends(get_anime_service)],
):
    """作品を ID 指定で1件更新する."""
    return service.update_anime(request_body)


@app.put("/api/v1/anime/bulk", response_model=AggregateResult)
async def update_anime_bulk(
    request_body: list[AnimeUpdateRequest],
    service: Annotated[AnimeService, Depends(get_anime_service)],
):
    """作品を一括更新する（登録済みの名前が1件でもあれば全体を中止）."""
    return _to_batch_response(service.update_anime_bulk(request_body))


@app.delete("/api/v1/anime/{anime_name}", response_model=AggregateResult)
async def delete_anime(
    anime_name: str,
    service: Annotated[AnimeService, Depends(get_anime_service)],
):
    """作品名指定で1件論理削除する."""
    return _to_batch_response(service.delete_anime(anime_name.lower()))


@app.post("/api/v1/anime/bulk-delete", response_model=AggregateResult)
async def delete_anime_bulk(
    request_body: AnimeBulkDeleteRequest,
    service: Annotated[AnimeService, Depends(get_anime_service)],
):
    """作品名リストで一括論理削除する（未登録の名前は失敗として記録）."""
    return _to_batch_response(service.delete_anime_bulk(request_body.anime_names))


@app.post(
    "/api/v1/studios", response_model=StudioResponse, status_code=status.HTTP_201_CREATED
)
async def create_studio_endpoint(
    request_body: CreateStudioRequest,
    repository: Annotated[AnimeRepository, Depends(get_anime_repository)],
):
    """制作会社を1件登録する."""
    studio = create_studio(repository, request_body.studio_name)
    return StudioResponse(studio_id=studio.studio_id, studio_name=studio.studio_name)


@app.get("/api/v1/studios", response_model=list[StudioResponse])
async def list_studios(
    repository: Annotated[AnimeRepository, Depends(get_anime_repository)],
):
    """登録済み制作会社の一覧を返す."""
    return [
        StudioResponse(studio_id=studio.studio_id, studio_name=studio.studio_name)
        for studio in repository.get_all_studios()
    ]


def run() -> None:
    """開発用の API サーバーを起動する."""
    runtime_settings = load_settings()

    uvicorn.run(
        "anime_api.main:app",
        host=runtime_settings.api_host,
        port=runtime_settings.api_port,
        reload=runtime_settings.api_reload,
        log_level=runtime_settings.log_level,
    )


if __name__ == "__main__":
    run()
