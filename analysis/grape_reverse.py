"""差枚からのぶどう逆算モジュール

区間差枚・区間G数・BB/RB回数から、ぶどうの獲得枚数と確率を逆算する。
  ぶどう獲得枚数 = 差枚 + G×3 - (BB×239.25 + RB×95.25 + G×(3×(1/7.3) + 2×(1/35)))
  ぶどう確率 = 8G / ぶどう獲得枚数

設定別分母テーブルは使わない（純粋な収支の恒等式）。
事後確率とは独立した裏付け用の指標。
"""

import math

from config.payout import COIN_IN_PER_GAME, GRAPE_PAYOUT, get_payout


def estimate_grape_from_diff(games: int, big: int, reg: int, diff=None, payout: dict = None) -> dict:
    """差枚からぶどう確率を逆算する

    Args:
        games: 区間G数
        big: 区間BB回数（単独+重複）
        reg: 区間RB回数（単独+重複）
        diff: 区間差枚（None=データなし）
        payout: 払い出し定数（None=ジャグラー系の既定値）

    Returns:
        {'grape_odds': 1/X のX, 'grape_coins': ぶどう獲得枚数}
        獲得枚数が0以下なら grape_odds は省略、差枚なし・G数0なら空dict
    """
    if diff is None:
        return {}
    if not (games > 0):
        return {}

    p = payout or get_payout()
    grape_coins = (
        diff + games * COIN_IN_PER_GAME
        - (big * p['big_payout'] + reg * p['reg_payout'] + games * p['small_coins_per_game'])
    )

    if not math.isfinite(grape_coins):
        return {}
    if grape_coins <= 0:
        # 確率は出せないが枚数自体は参考になる
        return {'grape_coins': grape_coins}

    odds = (GRAPE_PAYOUT * games) / grape_coins
    if not math.isfinite(odds) or odds <= 0:
        return {'grape_coins': grape_coins}
    return {'grape_odds': odds, 'grape_coins': grape_coins}


def expected_diff(games: int, big: int, reg: int, grape_odds: float, payout: dict = None) -> float:
    """ぶどう確率1/grape_oddsのときの想定差枚（逆算の順方向）"""
    p = payout or get_payout()
    grape_coins = GRAPE_PAYOUT * games / grape_odds
    return (
        grape_coins
        + big * p['big_payout'] + reg * p['reg_payout'] + games * p['small_coins_per_game']
        - games * COIN_IN_PER_GAME
    )
