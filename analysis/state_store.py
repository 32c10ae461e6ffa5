"""稼働記録の保存・バックアップ

data/jugglog_state.json に全データを1ファイルで保存する。
壊れたファイル・バージョン違いは空の状態から始める。
"""

import json
import logging
import os
from datetime import datetime
from pathlib import Path

from analysis.play_log import STATE_VERSION, StateFormatError, new_state, normalize_state
from config.settings import BACKUP_DIR, JST, STATE_PATH

logger = logging.getLogger(__name__)


class BackupFormatError(ValueError):
    """バックアップファイルの形式エラー"""


def _is_valid_state(obj) -> bool:
    return (
        isinstance(obj, dict)
        and obj.get('version') == STATE_VERSION
        and isinstance(obj.get('sessions'), dict)
    )


def load_state(path: Path = None) -> dict:
    """保存データを読み込む（なければ空の状態）"""
    path = Path(path or STATE_PATH)
    if not path.exists():
        return new_state()

    try:
        with open(path, 'r', encoding='utf-8') as f:
            obj = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning('state file unreadable (%s): %s', path, e)
        return new_state()

    if not _is_valid_state(obj):
        logger.warning('state file has unexpected format: %s', path)
        return new_state()
    try:
        return normalize_state(obj)
    except StateFormatError as e:
        logger.warning('state file has unexpected format (%s): %s', path, e)
        return new_state()


def save_state(state: dict, path: Path = None):
    """保存（一時ファイルに書いてから置き換え）"""
    path = Path(path or STATE_PATH)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + '.tmp')
    with open(tmp, 'w', encoding='utf-8') as f:
        json.dump(state, f, ensure_ascii=False, indent=2)
    os.replace(tmp, path)


def backup_filename(now: datetime = None) -> str:
    now = now or datetime.now(JST)
    return f'jugglog_backup_{now.strftime("%Y-%m-%d")}.json'


def export_backup(state: dict, out_dir: Path = None) -> Path:
    """バックアップファイルを書き出す"""
    out_dir = Path(out_dir or BACKUP_DIR)
    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = out_dir / backup_filename()
    with open(out_path, 'w', encoding='utf-8') as f:
        json.dump(state, f, ensure_ascii=False, indent=2)
    logger.info('backup written: %s', out_path)
    return out_path


def import_backup(source) -> dict:
    """バックアップを読み込む（パス or JSON文字列）

    Raises:
        BackupFormatError: 形式が違う
    """
    if isinstance(source, Path):
        text = source.read_text(encoding='utf-8')
    else:
        text = source

    try:
        obj = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise BackupFormatError('バックアップ形式が違います') from e

    if not _is_valid_state(obj):
        raise BackupFormatError('バックアップ形式が違います')
    try:
        return normalize_state(obj)
    except StateFormatError as e:
        raise BackupFormatError('バックアップ形式が違います') from e
