#!/usr/bin/env python3
"""
ジャグラー稼働ログ - Webアプリ

iPhoneから店舗でアクセスして、カウント入力・設定判別・履歴確認をするためのAPI
"""

import logging
import sys
import threading
from pathlib import Path

from flask import Flask, jsonify, request, send_file

# プロジェクトルートをパスに追加
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from analysis import play_log
from analysis.play_log import PlayNotFoundError
from analysis.setting_estimator import infer
from analysis.state_store import BackupFormatError, export_backup, import_backup, load_state, save_state
from config.machines import MACHINES, UnknownMachineError, list_machines
from config.settings import BACKUP_DIR, DEFAULT_HOST, DEFAULT_PORT, STATE_PATH

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config['STATE_PATH'] = STATE_PATH
app.config['BACKUP_DIR'] = BACKUP_DIR

# バージョン確認用
APP_VERSION = '2026-10-18-v1'

# 状態ファイルの読み書きは1プロセス内で直列化
STATE_LOCK = threading.Lock()


# キャッシュ無効化 + CORS対応
@app.after_request
def add_header(response):
    response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'
    response.headers['Pragma'] = 'no-cache'
    response.headers['Expires'] = '0'
    response.headers['Access-Control-Allow-Origin'] = '*'
    response.headers['Access-Control-Allow-Methods'] = 'GET, POST, PATCH, DELETE, OPTIONS'
    response.headers['Access-Control-Allow-Headers'] = 'Content-Type'
    return response


@app.errorhandler(PlayNotFoundError)
def handle_play_not_found(e):
    return jsonify({'error': 'Play not found'}), 404


@app.errorhandler(UnknownMachineError)
def handle_unknown_machine(e):
    return jsonify({'error': str(e)}), 404


def _read_state() -> dict:
    with STATE_LOCK:
        return load_state(app.config['STATE_PATH'])


def _commit(mutator):
    """読み込み → 変更 → 保存（mutatorの戻り値を返す）"""
    with STATE_LOCK:
        state = load_state(app.config['STATE_PATH'])
        out = mutator(state)
        save_state(state, app.config['STATE_PATH'])
        return out


def _check_date_key(date_key: str):
    if not play_log.is_date_key(date_key):
        return jsonify({'error': f'Invalid date: {date_key}'}), 400
    return None


def _json_body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


@app.route('/version')
def version():
    return jsonify({'version': APP_VERSION, 'machines': len(MACHINES)})


@app.route('/api/machines')
def api_machines():
    """API: 機種一覧"""
    return jsonify({'machines': list_machines()})


@app.route('/api/infer', methods=['POST'])
def api_infer():
    """API: 観測値から設定推測（保存しない）"""
    body = _json_body()
    machine_id = body.get('machine')
    if not machine_id:
        return jsonify({'error': 'machine is required'}), 400
    stats = body.get('stats') if isinstance(body.get('stats'), dict) else {}
    return jsonify(infer(machine_id, stats))


@app.route('/api/sessions/<date_key>', methods=['GET', 'PATCH'])
def api_session(date_key: str):
    """API: 日別セッション（PATCHでホール名・メモを更新）"""
    bad = _check_date_key(date_key)
    if bad:
        return bad

    if request.method == 'GET':
        state = _read_state()
        session = state['sessions'].get(date_key) or {
            'date_key': date_key, 'hall': None, 'note': None, 'plays': [], 'updated_at': None,
        }
        plays = [dict(p, stats=play_log.session_stats(p)) for p in session['plays']]
        return jsonify(dict(session, plays=plays))

    body = _json_body()

    def mutate(state):
        session = play_log.ensure_session(state, date_key)
        for f in ('hall', 'note'):
            if f in body:
                session[f] = body[f]
        play_log.touch(session)
        return session

    return jsonify(_commit(mutate))


@app.route('/api/sessions/<date_key>/plays', methods=['POST'])
def api_add_play(date_key: str):
    """API: 台追加"""
    bad = _check_date_key(date_key)
    if bad:
        return bad

    body = _json_body()
    machine_id = body.get('machine', play_log.DEFAULT_MACHINE)
    if machine_id not in MACHINES:
        raise UnknownMachineError(machine_id)

    play = _commit(lambda state: play_log.add_play(state, date_key, machine_id, body.get('table')))
    return jsonify(play), 201


@app.route('/api/sessions/<date_key>/plays/<play_id>', methods=['PATCH', 'DELETE'])
def api_play(date_key: str, play_id: str):
    """API: 台詳細の更新・削除"""
    bad = _check_date_key(date_key)
    if bad:
        return bad

    if request.method == 'DELETE':
        _commit(lambda state: play_log.remove_play(state, date_key, play_id))
        return jsonify({'deleted': play_id})

    body = _json_body()
    if 'machine' in body and body['machine'] not in MACHINES:
        raise UnknownMachineError(body['machine'])

    def mutate(state):
        session = play_log.ensure_session(state, date_key)
        return play_log.update_play(session, play_id, body)

    return jsonify(_commit(mutate))


@app.route('/api/sessions/<date_key>/plays/<play_id>/bump', methods=['POST'])
def api_bump(date_key: str, play_id: str):
    """API: カウンター加減算 {grape: 1, big_single: -1, ...}"""
    bad = _check_date_key(date_key)
    if bad:
        return bad

    body = _json_body()

    def mutate(state):
        session = play_log.ensure_session(state, date_key)
        return play_log.bump_counts(session, play_id, body)

    play = _commit(mutate)
    return jsonify(dict(play, stats=play_log.session_stats(play)))


@app.route('/api/sessions/<date_key>/plays/<play_id>/checkpoints', methods=['POST'])
def api_checkpoint(date_key: str, play_id: str):
    """API: 表示器累計のチェックポイント記録"""
    bad = _check_date_key(date_key)
    if bad:
        return bad

    def mutate(state):
        session = play_log.ensure_session(state, date_key)
        return play_log.add_checkpoint(session, play_id)

    return jsonify(_commit(mutate)), 201


@app.route('/api/sessions/<date_key>/plays/<play_id>/judge')
def api_judge(date_key: str, play_id: str):
    """API: 設定判別（判別結果が変わったときだけ履歴用に保存）"""
    bad = _check_date_key(date_key)
    if bad:
        return bad

    with STATE_LOCK:
        state = load_state(app.config['STATE_PATH'])
        session = play_log.ensure_session(state, date_key)
        before = play_log.find_play(session, play_id).get('infer_cache')
        result = play_log.judge_play(session, play_id)
        play = play_log.find_play(session, play_id)
        # judge_play は変化したときだけ infer_cache を差し替える
        if play.get('infer_cache') is not before:
            save_state(state, app.config['STATE_PATH'])

    return jsonify({
        'stats': play_log.session_stats(play),
        'inference': result,
        'infer_cache': play.get('infer_cache'),
    })


@app.route('/api/backup', methods=['GET', 'POST'])
def api_backup():
    """API: バックアップのダウンロード / 取り込み"""
    if request.method == 'GET':
        state = _read_state()
        path = export_backup(state, app.config['BACKUP_DIR'])
        return send_file(path, mimetype='application/json', as_attachment=True, download_name=path.name)

    try:
        state = import_backup(request.get_data(as_text=True))
    except BackupFormatError as e:
        return jsonify({'error': str(e)}), 400

    with STATE_LOCK:
        save_state(state, app.config['STATE_PATH'])
    logger.info('backup imported: %d sessions', len(state['sessions']))
    return jsonify({'imported': len(state['sessions'])})


if __name__ == '__main__':
    import argparse

    parser = argparse.ArgumentParser(description='ジャグラー稼働ログ')
    parser.add_argument('--host', default=DEFAULT_HOST, help=f'ホスト (default: {DEFAULT_HOST})')
    parser.add_argument('--port', '-p', type=int, default=DEFAULT_PORT, help=f'ポート (default: {DEFAULT_PORT})')
    parser.add_argument('--debug', '-d', action='store_true', help='デバッグモード')
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO,
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    print(f"""
====================================
  ジャグラー稼働ログ
====================================
  URL: http://localhost:{args.port}

  登録機種:
""")
    for m in MACHINES.values():
        print(f"    - {m['name']} ({m['id']})")
    print()

    app.run(host=args.host, port=args.port, debug=args.debug)
