#!/usr/bin/env python3
"""
設定判別（コマンドライン）

区間カウントを引数で渡して、設定1..6の事後確率を表示する。

使い方:
  python scripts/judge.py MYJUG --games 3000 --big-single 8 --big-cherry 3 \
      --reg-single 7 --reg-cherry 3 --grapes 520 --cherries 80 --diff 800
  python scripts/judge.py --list
"""
import argparse
import json
import logging
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from analysis.grape_reverse import expected_diff
from analysis.setting_estimator import infer
from config.machines import METRIC_LABELS, UnknownMachineError, get_machine, list_machines


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='ジャグラー設定判別')
    parser.add_argument('machine', nargs='?', help='機種ID (例: MYJUG)')
    parser.add_argument('--list', action='store_true', help='機種一覧を表示')
    parser.add_argument('--games', '-g', type=int, default=0, help='区間G数')
    parser.add_argument('--big-single', type=int, default=0, help='BIG単独')
    parser.add_argument('--big-cherry', type=int, default=0, help='BIGチェリー重複')
    parser.add_argument('--reg-single', type=int, default=0, help='REG単独')
    parser.add_argument('--reg-cherry', type=int, default=0, help='REGチェリー重複')
    parser.add_argument('--grapes', type=int, default=0, help='ぶどう')
    parser.add_argument('--cherries', type=int, default=0, help='非重複チェリー')
    parser.add_argument('--mid-cherry-big', type=int, default=0, help='中段チェリーBIG')
    parser.add_argument('--total-games', type=int, default=0, help='表示器の累計G数（前任者込み）')
    parser.add_argument('--total-big', type=int, default=0, help='表示器の累計BIG')
    parser.add_argument('--total-reg', type=int, default=0, help='表示器の累計REG')
    parser.add_argument('--diff', type=int, default=None, help='区間差枚')
    parser.add_argument('--json', action='store_true', help='JSONで出力')
    parser.add_argument('--verbose', '-v', action='store_true', help='デバッグログ')
    return parser


def stats_from_args(args) -> dict:
    return {
        'seg_games': args.games,
        'big_single': args.big_single,
        'big_cherry': args.big_cherry,
        'reg_single': args.reg_single,
        'reg_cherry': args.reg_cherry,
        'grapes': args.grapes,
        'non_overlap_cherries': args.cherries,
        'mid_cherry_big': args.mid_cherry_big,
        'total_games': args.total_games,
        'total_big': args.total_big,
        'total_reg': args.total_reg,
        'diff': args.diff,
    }


def grape_diff_table(machine_id: str, stats: dict) -> list:
    """設定別のぶどう確率どおりだった場合の想定差枚（区間G数0・ぶどう表なしは空）"""
    grape = get_machine(machine_id)['odds'].get('grape')
    games = stats['seg_games']
    if not grape or games <= 0:
        return []
    big = stats['big_single'] + stats['big_cherry']
    reg = stats['reg_single'] + stats['reg_cherry']
    return [expected_diff(games, big, reg, odds) for odds in grape]


def print_result(machine_id: str, stats: dict, result: dict):
    big = stats['big_single'] + stats['big_cherry']
    reg = stats['reg_single'] + stats['reg_cherry']
    print(f"\n=== {machine_id} 区間 {stats['seg_games']}G / BB{big} / RB{reg} ===")
    print(f"  期待設定:     {result['expected_setting']:.2f}")
    print(f"  P(設定4以上): {result['p4plus'] * 100:.1f}%")
    print(f"  P(設定5/6):   {result['p56'] * 100:.1f}%")
    if 'grape_odds_from_diff' in result:
        print(f"  差枚逆算ぶどう: 1/{result['grape_odds_from_diff']:.2f}")
    elif 'grape_coins_from_diff' in result:
        print(f"  差枚逆算ぶどう枚数: {result['grape_coins_from_diff']:.0f}枚（確率算出不可）")

    table = grape_diff_table(machine_id, stats)
    if table:
        actual = '' if stats['diff'] is None else f" （実際 {stats['diff']:+d}枚）"
        print(f'\n  ぶどう設定別の想定差枚{actual}:')
        for i, d in enumerate(table):
            print(f"    設定{i + 1}: {d:+.0f}枚")

    print('\n  事後確率:')
    for i, p in enumerate(result['posterior']):
        bar = '█' * int(round(p * 40))
        mark = ' ◀' if i + 1 == result['map_setting'] else ''
        print(f"    設定{i + 1}: {p * 100:5.1f}% {bar}{mark}")

    print('\n  重み（参考）:')
    print('    ' + ' / '.join(f"{METRIC_LABELS.get(k, k)}:{v}" for k, v in result['weights_used'].items()))
    print()


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(levelname)s %(name)s: %(message)s')

    if args.list or not args.machine:
        for m in list_machines():
            print(f"  {m['id']:<8} {m['name']}")
        return 0

    stats = stats_from_args(args)
    try:
        result = infer(args.machine, stats)
    except UnknownMachineError as e:
        print(f'エラー: {e}', file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(result, ensure_ascii=False, indent=2))
    else:
        print_result(args.machine, stats, result)
    return 0


if __name__ == '__main__':
    sys.exit(main())
