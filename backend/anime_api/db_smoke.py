import argparse
import json
import time
from datetime import date
from pathlib import Path
from typing import Any, Optional

from anime_api.anime_models import AnimeCreateRequest, AnimeStatus
from anime_api.anime_repository import AnimeRepository
from anime_api.config import load_settings
from anime_api.db import connect, initialize_database


def generate_sample_suffix() -> str:
    """重複しづらいサンプル名用の接尾辞を生成する."""
    return str(int(time.time() * 1000))[-8:]


def run_register_and_fetch_smoke(log_path: Optional[Path] = None) -> dict[str, Any]:
    """Studio/Anime の登録と名前での取得を最小構成で確認する."""
    initialize_database()

    sample_suffix = generate_sample_suffix()
    sample_name = f"Smoke Anime {sample_suffix}"

    with connect() as connection:
        repository = AnimeRepository(
            connection=connection, record_author=load_settings().record_author
        )
        studio = repository.add_studio(f"Smoke Studio {sample_suffix}")
        repository.add_anime(
            AnimeCreateRequest(
                anime_name=sample_name,
                anime_status=AnimeStatus.ONGOING,
                studio_id=studio.studio_id,
                release_date=date(2024, 1, 1),
                episode_count=12,
                genres="action,comedy",
            )
        )
        record = repository.get_anime(sample_name.lower())

    if record is None:
        raise RuntimeError("登録した作品を取得できませんでした。")

    result = {
        "status": "ok",
        "studio": {"id": studio.studio_id, "name": studio.studio_name},
        "anime": {
            "id": record.anime_id,
            "name": record.anime_name,
            "studioName": record.studio_name,
        },
    }

    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_path.write_text(
            json.dumps(result, ensure_ascii=False, indent=2) + "\n", encoding="utf-8"
        )

    return result


def parse_args() -> argparse.Namespace:
    """CLI引数を読み取る."""
    parser = argparse.ArgumentParser(description="Studio/Anime の登録→取得を確認するスモークコマンド")
    parser.add_argument(
        "--log-path", type=Path, default=None, help="結果JSONを書き出すファイルパス"
    )
    return parser.parse_args()


def main() -> None:
    """スモーク処理を実行して結果を出力する."""
    args = parse_args()
    result = run_register_and_fetch_smoke(log_path=args.log_path)

    print(json.dumps(result, ensure_ascii=False, indent=2))
    if args.log_path is not None:
        print(f"log saved: {args.log_path}")


if __name__ == "__main__":
    main()
