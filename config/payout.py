"""差枚逆算用の払い出し定数

ぶどう逆算:
  ぶどう獲得枚数 = 差枚 + G×3 - (BB×BIG純増 + RB×REG純増 + G×その他小役の期待払出)
  ぶどう確率 = 8G / ぶどう獲得枚数

数値は機種系統ごとの実測ベースの校正値。計算で導出する値ではないので、ここで管理する。
"""

COIN_IN_PER_GAME = 3  # 1Gあたりの投入枚数
GRAPE_PAYOUT = 8      # ぶどう1回の払い出し枚数

# 機種系統別の払い出し定数
PAYOUT_CONSTANTS = {
    'juggler': {
        'big_payout': 239.25,  # BIG1回あたりの獲得枚数
        'reg_payout': 95.25,   # REG1回あたりの獲得枚数
        # リプレイ(3枚 1/7.3) + チェリー(2枚 1/35)
        'small_coins_per_game': 3 * (1 / 7.3) + 2 * (1 / 35),
    },
}

DEFAULT_PAYOUT_FAMILY = 'juggler'


def get_payout(family: str = DEFAULT_PAYOUT_FAMILY) -> dict:
    """機種系統の払い出し定数を取得"""
    return PAYOUT_CONSTANTS[family]
