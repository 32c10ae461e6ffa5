"""
ジャグラー稼働ログ WSGIエントリーポイント

gunicorn等から `web.wsgi:application` で起動する。
"""
import sys
from pathlib import Path

# プロジェクトパスを追加
PROJECT_HOME = str(Path(__file__).resolve().parent.parent)
if PROJECT_HOME not in sys.path:
    sys.path.insert(0, PROJECT_HOME)

from web.app import app as application
