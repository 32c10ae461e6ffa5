"""実行時設定（パス・サーバー既定値）"""

import os
from pathlib import Path

import pytz

PROJECT_ROOT = Path(__file__).parent.parent

# データ保存先（JUGGLOG_DATA_DIR で上書き可）
DATA_DIR = Path(os.environ.get('JUGGLOG_DATA_DIR', PROJECT_ROOT / 'data'))
STATE_PATH = DATA_DIR / 'jugglog_state.json'
BACKUP_DIR = DATA_DIR / 'backup'

# 日本時間（日付キーの基準）
JST = pytz.timezone('Asia/Tokyo')

# Webサーバー既定値
DEFAULT_HOST = '0.0.0.0'
DEFAULT_PORT = 5000
