#!/usr/bin/env python3
"""
機種カタログ（設定別分母テーブル）

config/machine_defs/*.json を起動時に1回だけ読み込み、読み取り専用のマップとして公開する。
新機種追加時は machine_defs/ に JSON を1つ置くだけでよい。

分母テーブル:
  値は「1/○○」の○○（分母）。設定1..6の順に必ず6個。
  推測側では p = 1/denom を使う。
  機種によっては存在しない指標がある（存在しない指標は推測でスキップされる）。
"""

import json
import logging
import math
from pathlib import Path
from types import MappingProxyType

logger = logging.getLogger(__name__)

MACHINE_DEFS_DIR = Path(__file__).parent / 'machine_defs'

# 指標ID（固定集合）
METRIC_IDS = (
    'single_big',          # BIG単独
    'cherry_big',          # BIGチェリー重複
    'single_reg',          # REG単独
    'cherry_reg',          # REGチェリー重複
    'grape',               # ぶどう
    'non_overlap_cherry',  # 非重複チェリー
    'mid_cherry_big',      # 中段チェリーBIG（ファンキー等）
    'total_big',           # BIG合算（前任者込み）
    'total_reg',           # REG合算（前任者込み）
)

# 前任者込み累計で使う指標
TOTAL_METRICS = ('total_big', 'total_reg')

SETTINGS = (1, 2, 3, 4, 5, 6)

# 指標の表示名
METRIC_LABELS = {
    'single_big': 'BIG単独',
    'cherry_big': 'BIGチェリー重複',
    'single_reg': 'REG単独',
    'cherry_reg': 'REGチェリー重複',
    'grape': 'ぶどう',
    'non_overlap_cherry': '非重複チェリー',
    'mid_cherry_big': '中段チェリーBIG',
    'total_big': 'BIG合算',
    'total_reg': 'REG合算',
}


class UnknownMachineError(KeyError):
    """カタログに存在しない機種ID"""

    def __init__(self, machine_id):
        super().__init__(machine_id)
        self.machine_id = machine_id

    def __str__(self):
        return f'Unknown machine id: {self.machine_id}'


class MachineDefError(ValueError):
    """機種定義ファイルの形式エラー"""


def _normalize_odds(machine_id: str, raw_odds) -> dict:
    if not isinstance(raw_odds, dict):
        raise MachineDefError(f'{machine_id}: odds must be an object')

    odds = {}
    for metric, denoms in raw_odds.items():
        if metric not in METRIC_IDS:
            raise MachineDefError(f'{machine_id}: unknown metric {metric!r}')
        if not isinstance(denoms, (list, tuple)) or len(denoms) != len(SETTINGS):
            raise MachineDefError(f'{machine_id}: {metric} must have exactly 6 denominators')
        values = []
        for d in denoms:
            if isinstance(d, bool) or not isinstance(d, (int, float)):
                raise MachineDefError(f'{machine_id}: {metric} has non-numeric denominator {d!r}')
            if not math.isfinite(d) or d <= 0:
                raise MachineDefError(f'{machine_id}: {metric} has non-positive denominator {d!r}')
            values.append(float(d))
        odds[metric] = tuple(values)
    return odds


def _normalize_def(raw: dict, source: str = '<dict>') -> MappingProxyType:
    """機種定義1件を検証して読み取り専用に変換"""
    if not isinstance(raw, dict):
        raise MachineDefError(f'{source}: machine definition must be an object')

    machine_id = raw.get('id')
    if not machine_id or not isinstance(machine_id, str):
        raise MachineDefError(f'{source}: missing machine id')

    odds = _normalize_odds(machine_id, raw.get('odds', {}))

    visible = raw.get('visible_metrics', [])
    for metric in visible:
        if metric not in METRIC_IDS:
            raise MachineDefError(f'{machine_id}: unknown visible metric {metric!r}')

    return MappingProxyType({
        'id': machine_id,
        'name': raw.get('name') or machine_id,
        'visible_metrics': tuple(visible),
        'odds': MappingProxyType(odds),
    })


def build_catalog(defs, source: str = '<dict>') -> MappingProxyType:
    """機種定義のリストからカタログを作る（ID順・読み取り専用）"""
    machines = {}
    for raw in defs:
        m = _normalize_def(raw, source)
        if m['id'] in machines:
            raise MachineDefError(f'duplicate machine id: {m["id"]}')
        machines[m['id']] = m

    return MappingProxyType({k: machines[k] for k in sorted(machines)})


def load_catalog(defs_dir: Path = MACHINE_DEFS_DIR) -> MappingProxyType:
    """machine_defs/ の JSON を全部読み込んでカタログを作る"""
    defs = []
    for path in sorted(Path(defs_dir).glob('*.json')):
        with open(path, 'r', encoding='utf-8') as f:
            raw = json.load(f)
        if isinstance(raw, dict):
            raw.setdefault('id', path.stem)
        defs.append(raw)

    catalog = build_catalog(defs, source=str(defs_dir))
    logger.info('loaded %d machine definitions from %s', len(catalog), defs_dir)
    return catalog


# 起動時に1回だけ構築（以後変更しない）
MACHINES = load_catalog()


def get_machine(machine_id: str, catalog=None):
    """機種定義を取得（未登録なら UnknownMachineError）"""
    catalog = MACHINES if catalog is None else catalog
    m = catalog.get(machine_id)
    if m is None:
        raise UnknownMachineError(machine_id)
    return m


def list_machines(catalog=None) -> list:
    """表示用の機種一覧"""
    catalog = MACHINES if catalog is None else catalog
    return [
        {
            'id': m['id'],
            'name': m['name'],
            'visible_metrics': list(m['visible_metrics']),
            'metrics': [k for k in METRIC_IDS if k in m['odds']],
        }
        for m in catalog.values()
    ]
