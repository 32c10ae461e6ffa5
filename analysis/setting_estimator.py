#!/usr/bin/env python3
"""
設定推測エンジン

区間カウント（BIG/REG単独・重複、ぶどう、チェリー等）と機種の設定別分母テーブルから、
設定1..6の事後確率を計算する。

計算の流れ:
1. 指標ごとの重みを作る（設定差 × サンプル効率）
2. 設定ごとに 重み × 二項対数尤度 を全指標で合算
   - 前任者込みの累計G数があれば BIG/REG合算も使う（重みは0.40倍で控えめ）
3. 最大値を引いてからsoftmax → 事後確率
4. 差枚があれば、ぶどう逆算を並べて返す（事後確率とは独立）

事前分布は毎回一様。状態は持たない（同じ入力なら必ず同じ結果）。
"""

import logging
import math

from analysis.grape_reverse import estimate_grape_from_diff
from config.machines import METRIC_IDS, SETTINGS, TOTAL_METRICS, get_machine

logger = logging.getLogger(__name__)

PROB_EPS = 1e-12

# 重みパラメータ（固定）
W_MAX = 3.0
W_MIN = 0.05
W_MIN_GRAPE = 0.60      # ぶどうは最低重みを保証（0禁止）
TOTAL_DAMPING = 0.40    # 合算は単独/重複と情報が被るので控えめに
EFF_FACTOR_FLOOR = 0.6  # サンプル効率係数の下限（0.6..1.0）

# 区間指標 → 観測値キー
SEGMENT_COUNT_KEYS = (
    ('single_reg', 'reg_single'),
    ('cherry_reg', 'reg_cherry'),
    ('single_big', 'big_single'),
    ('cherry_big', 'big_cherry'),
    ('grape', 'grapes'),
    ('non_overlap_cherry', 'non_overlap_cherries'),
    ('mid_cherry_big', 'mid_cherry_big'),
)

# 前任者込み指標 → 観測値キー（n は total_games）
TOTAL_COUNT_KEYS = (
    ('total_big', 'total_big'),
    ('total_reg', 'total_reg'),
)

COUNT_KEYS = (
    'seg_games', 'big_single', 'big_cherry', 'reg_single', 'reg_cherry',
    'grapes', 'non_overlap_cherries', 'mid_cherry_big',
    'total_games', 'total_big', 'total_reg',
)


def _to_count(x) -> int:
    """回数を非負整数に丸める（負・非数・不正値は0）"""
    try:
        v = float(x)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(v) or v < 0:
        return 0
    return int(v)


def _to_diff(x):
    """差枚（符号付き）。None・不正値はデータなし扱い"""
    if x is None:
        return None
    try:
        v = float(x)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(v):
        return None
    return int(v)


def normalize_stats(stats: dict) -> dict:
    """観測値を安全な値に揃える"""
    stats = stats or {}
    st = {k: _to_count(stats.get(k, 0)) for k in COUNT_KEYS}
    st['diff'] = _to_diff(stats.get('diff'))
    return st


def safe_prob(denom) -> float:
    """分母 → 確率（対数が有限になるようクランプ）"""
    try:
        d = float(denom)
    except (TypeError, ValueError):
        return PROB_EPS
    if not math.isfinite(d) or d <= 0:
        return PROB_EPS
    return min(1 - PROB_EPS, max(PROB_EPS, 1 / d))


def binom_loglik(n: int, k: int, p: float) -> float:
    """二項分布の対数尤度

    組合せ項は設定に依存しないので省略（softmaxで打ち消される）
    """
    nn = _to_count(n)
    kk = min(_to_count(k), nn)
    pp = min(1 - PROB_EPS, max(PROB_EPS, p))
    return kk * math.log(pp) + (nn - kk) * math.log(1 - pp)


def delta_score(denoms) -> float:
    """設定差スコア: log(p6/p1) = log(D1/D6)"""
    try:
        d1 = float(denoms[0])
        d6 = float(denoms[5])
    except (TypeError, ValueError, IndexError):
        return 0.0
    if not (d1 > 0) or not (d6 > 0):
        return 0.0
    r = d1 / d6
    if not math.isfinite(r) or r <= 0:
        return 0.0
    return math.log(r)


def avg_prob(denoms) -> float:
    """代表確率: 設定1..6の平均確率"""
    ps = [safe_prob(d) for d in denoms]
    m = sum(ps) / len(ps)
    return min(1 - PROB_EPS, max(PROB_EPS, m))


def _has_table(odds, metric: str) -> bool:
    den = odds.get(metric)
    return den is not None and len(den) == len(SETTINGS)


def build_weights(odds, seg_games: int) -> dict:
    """「設定差 × サンプル効率」で指標ごとの重みを作る

    - 効率 E = sqrt(G × p_avg) を最大値で正規化して 0.6..1.0 の係数にする
    - 合算(total_big/total_reg)は0.40倍
    - ぶどうだけは最低重み0.60を保証、他は0.05
    """
    g = max(0, seg_games)
    metrics = [m for m in METRIC_IDS if _has_table(odds, m)]

    eff = {}
    e_max = 1e-9
    for m in metrics:
        e = math.sqrt(g * avg_prob(odds[m]))
        eff[m] = e
        if e > e_max:
            e_max = e

    weights = {}
    for m in metrics:
        d = delta_score(odds[m])
        factor = EFF_FACTOR_FLOOR + (1 - EFF_FACTOR_FLOOR) * (eff[m] / e_max)
        w = d * factor

        if m in TOTAL_METRICS:
            w *= TOTAL_DAMPING

        if not math.isfinite(w):
            w = 0.0
        w_min = W_MIN_GRAPE if m == 'grape' else W_MIN
        weights[m] = max(w_min, min(W_MAX, w))

    return weights


def score_settings(odds, weights: dict, st: dict) -> list:
    """設定1..6ごとに 重み×対数尤度 を合算"""
    seg_games = st['seg_games']
    total_games = st['total_games']

    logw = []
    for i in range(len(SETTINGS)):
        ll = 0.0

        # 区間指標（自分のカウント）
        for metric, key in SEGMENT_COUNT_KEYS:
            if metric not in weights:
                continue
            ll += weights[metric] * binom_loglik(seg_games, st[key], safe_prob(odds[metric][i]))

        # 前任者込み（表示器累計）: 累計G数があるときだけ
        if total_games > 0:
            for metric, key in TOTAL_COUNT_KEYS:
                if metric not in weights:
                    continue
                ll += weights[metric] * binom_loglik(total_games, st[key], safe_prob(odds[metric][i]))

        logw.append(ll)
    return logw


def softmax_log_weights(logw: list) -> list:
    """最大値を引いてからsoftmax（合計0以下なら一様分布）"""
    n = len(logw)
    m = max(logw)
    if not math.isfinite(m):
        return [1 / n] * n
    w = [math.exp(x - m) for x in logw]
    z = sum(w)
    if not (z > 0) or not math.isfinite(z):
        return [1 / n] * n
    return [x / z for x in w]


def infer(machine_id: str, stats: dict, catalog=None, payout: dict = None) -> dict:
    """設定推測を実行する

    Args:
        machine_id: 機種ID（カタログに無ければ UnknownMachineError）
        stats: 観測値 {seg_games, big_single, big_cherry, reg_single, reg_cherry,
               grapes, non_overlap_cherries, mid_cherry_big,
               total_games, total_big, total_reg, diff}
        catalog: 機種カタログ（None=config.machines.MACHINES）
        payout: 差枚逆算の払い出し定数（None=ジャグラー系の既定値）

    Returns:
        {posterior, expected_setting, p4plus, p56, map_setting, weights_used,
         grape_odds_from_diff?, grape_coins_from_diff?}
    """
    machine = get_machine(machine_id, catalog)
    odds = machine['odds']
    st = normalize_stats(stats)

    weights = build_weights(odds, st['seg_games'])
    logw = score_settings(odds, weights, st)
    post = softmax_log_weights(logw)

    expected = sum(s * p for s, p in zip(SETTINGS, post))
    expected = min(float(SETTINGS[-1]), max(float(SETTINGS[0]), expected))
    p4plus = post[3] + post[4] + post[5]
    p56 = post[4] + post[5]
    map_setting = max(SETTINGS, key=lambda s: (post[s - 1], -s))

    result = {
        'posterior': post,
        'expected_setting': expected,
        'p4plus': p4plus,
        'p56': p56,
        'map_setting': map_setting,
        # 表示用（参考）
        'weights_used': {k: round(v, 3) for k, v in weights.items()},
    }

    reverse = estimate_grape_from_diff(
        games=st['seg_games'],
        big=st['big_single'] + st['big_cherry'],
        reg=st['reg_single'] + st['reg_cherry'],
        diff=st['diff'],
        payout=payout,
    )
    if 'grape_odds' in reverse:
        result['grape_odds_from_diff'] = reverse['grape_odds']
    if 'grape_coins' in reverse:
        result['grape_coins_from_diff'] = reverse['grape_coins']

    logger.debug('infer %s %dG: expected=%.2f p4+=%.3f p56=%.3f',
                 machine_id, st['seg_games'], expected, p4plus, p56)
    return result
