from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

ANIME_NAME_MAX_LENGTH = 100


class AnimeStatus(str, Enum):
    """作品の放送ステータス."""

    COMPLETE = "Complete"
    ONGOING = "Ongoing"
    PLANNED = "Planned"
    CANCELLED = "Cancelled"


class ResponseStatus(str, Enum):
    """結果ラベルの先頭に付ける成否マーカー."""

    SUCCESS = "Success"
    FAILURE = "Failure"


class AnimeCreateRequest(BaseModel):
    """作品登録リクエスト."""

    anime_name: str = Field(min_length=1, max_length=ANIME_NAME_MAX_LENGTH)
    anime_status: AnimeStatus
    studio_id: int = Field(gt=0)
    release_date: Optional[date] = None
    episode_count: int = Field(gt=0)
    genres: str = Field(min_length=1)

    @field_validator("release_date")
    @classmethod
    def _reject_future_release_date(cls, value: Optional[date]) -> Optional[date]:
        if value is not None and value > date.today():
            raise ValueError("release_date cannot be in the future")

        return value

    @field_validator("genres")
    @classmethod
    def _reject_blank_genres(cls, value: str) -> str:
        normalized_value = value.strip()
        if normalized_value == "":
            raise ValueError("genres are required")

        return normalized_value


class AnimeUpdateRequest(AnimeCreateRequest):
    """作品更新リクエスト（更新対象の ID を含む）."""

    anime_id: int = Field(gt=0)


class AnimeBulkDeleteRequest(BaseModel):
    """作品一括削除リクエスト."""

    anime_names: list[str]


class AnimeResponse(BaseModel):
    """作品レスポンス."""

    anime_id: int
    anime_name: str
    anime_status: str
    studio_id: int
    studio_name: Optional[str]
    release_date: Optional[str]
    episode_count: int
    genres: str


class AggregateResult(BaseModel):
    """一括・単体操作の集計結果レスポンス."""

    model_config = ConfigDict(populate_by_name=True)

    success_count: int = Field(alias="successCount")
    failure_count: int = Field(alias="failureCount")
    results: dict[str, str]


class CreateStudioRequest(BaseModel):
    """制作会社登録リクエスト."""

    studio_name: str = Field(min_length=1, max_length=ANIME_NAME_MAX_LENGTH)


class StudioResponse(BaseModel):
    """制作会社レスポンス."""

    studio_id: int
    studio_name: str
