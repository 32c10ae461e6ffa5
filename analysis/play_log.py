#!/usr/bin/env python3
"""稼働記録: 日付ごとのセッションと台ごとのカウント

データ構造（そのままJSONに保存する）:
  state = {'version': 1, 'sessions': {date_key: session}}
  session = {'date_key', 'hall', 'note', 'plays': [play], 'updated_at'}
  play = {
      'id', 'machine', 'table',
      # 前任者（開始時点）の表示器累計
      'base_games_total', 'base_big_total', 'base_reg_total', 'base_diff_total',
      # やめ時の表示器累計差枚
      'final_diff_total',
      # 表示器の現在の累計G（手入力）
      'current_games_total',
      # 自分の区間のカウント
      'big_single_count', 'big_cherry_count', 'reg_single_count', 'reg_cherry_count',
      'grapes_count', 'cherries_count', 'mid_cherry_big_count',
      'checkpoints', 'created_at',
      # 判別結果（表示用キャッシュ、当時の判定を履歴として残す）
      'infer_cache',
  }
"""

import math
import secrets
import time
from datetime import datetime

from analysis.setting_estimator import infer
from config.settings import JST

STATE_VERSION = 1
DEFAULT_MACHINE = 'MYJUG'

COUNT_FIELDS = (
    'big_single_count', 'big_cherry_count', 'reg_single_count', 'reg_cherry_count',
    'grapes_count', 'cherries_count', 'mid_cherry_big_count',
)

# bump_counts() のキー → playのフィールド
BUMP_FIELDS = {
    'big_single': 'big_single_count',
    'big_cherry': 'big_cherry_count',
    'reg_single': 'reg_single_count',
    'reg_cherry': 'reg_cherry_count',
    'grape': 'grapes_count',
    'cherry': 'cherries_count',
    'mid_cherry_big': 'mid_cherry_big_count',
}

# update_play() で変更できるフィールド
INT_FIELDS = ('base_games_total', 'base_big_total', 'base_reg_total', 'current_games_total')
SIGNED_FIELDS = ('base_diff_total', 'final_diff_total')
TEXT_FIELDS = ('machine', 'table')

MAX_GAMES = 9999999
MAX_BONUS = 999999

CACHE_TOLERANCE = 1e-6

DATE_FORMAT = '%Y-%m-%d'


class PlayNotFoundError(KeyError):
    """指定IDの台が見つからない"""


class StateFormatError(ValueError):
    """保存データの中身（セッション・台）の形式エラー"""


def uid(prefix: str = 'id') -> str:
    return f'{prefix}_{secrets.token_hex(4)}_{int(time.time() * 1000):x}'


def now_ms() -> int:
    return int(time.time() * 1000)


def today_key(now: datetime = None) -> str:
    """今日の日付キー（YYYY-MM-DD, 日本時間）"""
    now = now or datetime.now(JST)
    return now.strftime(DATE_FORMAT)


def is_date_key(key: str) -> bool:
    """ゼロ埋めの YYYY-MM-DD だけ受け付ける（2026-1-5 は不可）"""
    try:
        d = datetime.strptime(key, DATE_FORMAT)
    except (TypeError, ValueError):
        return False
    return d.strftime(DATE_FORMAT) == key


def clamp_int(x, lo: int = 0, hi: int = 1_000_000_000) -> int:
    try:
        v = float(x)
    except (TypeError, ValueError):
        v = 0
    if not math.isfinite(v):
        v = 0
    return min(hi, max(lo, int(v)))


def parse_signed_int(s) -> int:
    """入力文字列を符号付き整数に（空・不正は0）"""
    t = str(s if s is not None else '').strip()
    if not t:
        return 0
    try:
        v = float(t)
    except ValueError:
        return 0
    if not math.isfinite(v):
        return 0
    return int(v)


def new_state() -> dict:
    return {'version': STATE_VERSION, 'sessions': {}}


def new_play(machine: str = DEFAULT_MACHINE, table: str = None) -> dict:
    play = {
        'id': uid('play'),
        'machine': machine,
        'table': table,
        'base_games_total': 0,
        'base_big_total': 0,
        'base_reg_total': 0,
        'base_diff_total': None,
        'final_diff_total': None,
        'current_games_total': 0,
        'checkpoints': [],
        'created_at': now_ms(),
        'infer_cache': None,
    }
    for f in COUNT_FIELDS:
        play[f] = 0
    return play


def _signed_or_none(v):
    """差枚入力: 空・'-' は未入力（None）"""
    if v is None or str(v).strip() in ('', '-'):
        return None
    return parse_signed_int(v)


def _normalize_play(p: dict, now: int):
    p.setdefault('id', uid('play'))
    p.setdefault('created_at', now)
    p.setdefault('table', None)
    if not isinstance(p.get('machine'), str) or not p['machine']:
        p['machine'] = DEFAULT_MACHINE

    p['base_games_total'] = clamp_int(p.get('base_games_total'), 0, MAX_GAMES)
    p['base_big_total'] = clamp_int(p.get('base_big_total'), 0, MAX_BONUS)
    p['base_reg_total'] = clamp_int(p.get('base_reg_total'), 0, MAX_BONUS)
    p['current_games_total'] = clamp_int(p.get('current_games_total', p['base_games_total']), 0, MAX_GAMES)
    for f in SIGNED_FIELDS:
        p[f] = _signed_or_none(p.get(f))
    for f in COUNT_FIELDS:
        p[f] = clamp_int(p.get(f))

    if not isinstance(p.get('checkpoints'), list):
        p['checkpoints'] = []
    if not isinstance(p.get('infer_cache'), dict):
        p['infer_cache'] = None


def normalize_state(state) -> dict:
    """古い/欠けたデータにデフォルト値を補う

    数値フィールドは整数に揃える。セッション・台がdictでなければ
    StateFormatError。
    """
    now = now_ms()
    if not isinstance(state, dict):
        state = new_state()
    state['version'] = STATE_VERSION
    sessions = state.setdefault('sessions', {})

    for key, s in sessions.items():
        if not s:
            continue
        if not isinstance(s, dict):
            raise StateFormatError(f'session {key} is not an object')
        s.setdefault('date_key', key)
        s.setdefault('hall', None)
        s.setdefault('note', None)
        s.setdefault('plays', [])
        s.setdefault('updated_at', now)
        if not isinstance(s['plays'], list):
            raise StateFormatError(f'session {key}: plays is not a list')

        for p in s['plays']:
            if not isinstance(p, dict):
                raise StateFormatError(f'session {key}: play is not an object')
            _normalize_play(p, now)

    return state


def ensure_session(state: dict, date_key: str) -> dict:
    sessions = state.setdefault('sessions', {})
    if not sessions.get(date_key):
        sessions[date_key] = {
            'date_key': date_key,
            'hall': None,
            'note': None,
            'plays': [],
            'updated_at': now_ms(),
        }
    return sessions[date_key]


def find_play(session: dict, play_id: str) -> dict:
    for p in session.get('plays', []):
        if p.get('id') == play_id:
            return p
    raise PlayNotFoundError(play_id)


def touch(session: dict):
    session['updated_at'] = now_ms()


def add_play(state: dict, date_key: str, machine: str = DEFAULT_MACHINE, table: str = None) -> dict:
    session = ensure_session(state, date_key)
    play = new_play(machine, table)
    session['plays'].append(play)
    touch(session)
    return play


def remove_play(state: dict, date_key: str, play_id: str):
    session = ensure_session(state, date_key)
    find_play(session, play_id)
    session['plays'] = [p for p in session['plays'] if p.get('id') != play_id]
    touch(session)


def update_play(session: dict, play_id: str, changes: dict) -> dict:
    """台の設定値を更新（許可したフィールドのみ）"""
    play = find_play(session, play_id)

    for f in TEXT_FIELDS:
        if f in changes:
            play[f] = changes[f]

    for f in INT_FIELDS:
        if f in changes:
            hi = MAX_GAMES if 'games' in f else MAX_BONUS
            play[f] = clamp_int(parse_signed_int(changes[f]), 0, hi)

    # 前任者G数を上げたら現在G数も追従
    if 'base_games_total' in changes and play['current_games_total'] < play['base_games_total']:
        play['current_games_total'] = play['base_games_total']

    for f in SIGNED_FIELDS:
        if f in changes:
            play[f] = _signed_or_none(changes[f])

    touch(session)
    return play


def bump_counts(session: dict, play_id: str, deltas: dict) -> dict:
    """カウンターを加減算（0未満にはしない）"""
    play = find_play(session, play_id)
    for key, delta in deltas.items():
        field = BUMP_FIELDS.get(key)
        if field is None or not delta:
            continue
        play[field] = max(0, (play.get(field) or 0) + parse_signed_int(delta))
    touch(session)
    return play


def bonus_totals(play: dict) -> dict:
    bb = (play.get('big_single_count') or 0) + (play.get('big_cherry_count') or 0)
    rb = (play.get('reg_single_count') or 0) + (play.get('reg_cherry_count') or 0)
    return {'bb': bb, 'rb': rb}


def session_stats(play: dict) -> dict:
    """区間（自分が打ち始めてから）のG数とボーナス回数"""
    games = max(0, (play.get('current_games_total') or 0) - (play.get('base_games_total') or 0))
    t = bonus_totals(play)
    return {'games': games, 'big': t['bb'], 'reg': t['rb']}


def add_checkpoint(session: dict, play_id: str) -> dict:
    """現在の表示器累計を記録"""
    play = find_play(session, play_id)
    t = bonus_totals(play)
    cp = {
        'id': uid('cp'),
        'ts': now_ms(),
        'games_total': play.get('current_games_total') or 0,
        'big_total': (play.get('base_big_total') or 0) + t['bb'],
        'reg_total': (play.get('base_reg_total') or 0) + t['rb'],
    }
    play.setdefault('checkpoints', []).append(cp)
    touch(session)
    return cp


def adjusted_stats(play: dict) -> dict:
    """推測エンジンに渡す観測値を組み立てる"""
    st = session_stats(play)
    t = bonus_totals(play)

    base_diff = play.get('base_diff_total')
    final_diff = play.get('final_diff_total')
    diff = final_diff - base_diff if base_diff is not None and final_diff is not None else None

    return {
        'seg_games': st['games'],
        'big_single': play.get('big_single_count') or 0,
        'big_cherry': play.get('big_cherry_count') or 0,
        'reg_single': play.get('reg_single_count') or 0,
        'reg_cherry': play.get('reg_cherry_count') or 0,
        'grapes': play.get('grapes_count') or 0,
        'non_overlap_cherries': play.get('cherries_count') or 0,
        'mid_cherry_big': play.get('mid_cherry_big_count') or 0,
        # 前任者込み（表示器累計）
        'total_games': play.get('current_games_total') or 0,
        'total_big': (play.get('base_big_total') or 0) + t['bb'],
        'total_reg': (play.get('base_reg_total') or 0) + t['rb'],
        'diff': diff,
    }


def make_infer_cache(result: dict) -> dict:
    return {
        'map_setting': result['map_setting'],
        'expected_setting': result['expected_setting'],
        'p4plus': result['p4plus'],
        'p56': result['p56'],
        'updated_at': now_ms(),
    }


def _same_cache(prev, cache) -> bool:
    if not prev:
        return False
    try:
        return (
            prev.get('map_setting') == cache['map_setting']
            and abs(prev.get('expected_setting', 0) - cache['expected_setting']) < CACHE_TOLERANCE
            and abs(prev.get('p4plus', 0) - cache['p4plus']) < CACHE_TOLERANCE
            and abs(prev.get('p56', 0) - cache['p56']) < CACHE_TOLERANCE
        )
    except TypeError:
        # 手で書き換えられたキャッシュは作り直す
        return False


def judge_play(session: dict, play_id: str, catalog=None):
    """設定判別して結果を返す（区間G数0ならNone）

    判別結果が前回と変わったときだけ infer_cache を更新する。
    """
    play = find_play(session, play_id)
    if session_stats(play)['games'] <= 0:
        return None

    result = infer(play['machine'], adjusted_stats(play), catalog=catalog)
    cache = make_infer_cache(result)
    if not _same_cache(play.get('infer_cache'), cache):
        play['infer_cache'] = cache
        touch(session)
    return result
