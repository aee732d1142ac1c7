from flask import Blueprint, jsonify, request, current_app
import time

from roundsync.errors import ValidationError
from roundsync.services.rounds import state_machine
from roundsync.services.rounds.clock import round_remaining
from roundsync.services.rounds.flavors import get_sequence, round_cursor
from roundsync.services.rounds.queue import round_summary
from roundsync.services.rounds.rejector import (
    auto_reject_round,
    evaluation_window,
    schedule_auto_reject,
)

rounds = Blueprint('rounds', __name__)

_last_controller_action: dict[str, float] = {}


def _debounced(action: str, round_id, controller_id) -> bool:
    try:
        debounce_ms = int(current_app.config.get('CONTROLLER_DEBOUNCE_MS', 0))
    except (TypeError, ValueError):
        debounce_ms = 0
    if debounce_ms <= 0 or controller_id is None:
        return False
    key = f"{action}:{round_id}:{controller_id}"
    now = time.time() * 1000.0
    last = _last_controller_action.get(key, 0)
    if now - last < debounce_ms:
        return True
    _last_controller_action[key] = now
    return False


def _int_arg(data, name, required=False):
    value = data.get(name)
    if value is None:
        if required:
            raise ValidationError(f"{name} is required")
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")


def _round_payload(rnd):
    payload = rnd.to_dict()
    payload['remaining_seconds'] = round_remaining(rnd)
    payload['server_time'] = time.time()
    return payload


@rounds.route('', methods=['GET'])
def list_rounds():
    status = request.args.get('status')
    return jsonify([r.to_dict() for r in state_machine.list_rounds(status)])


@rounds.route('', methods=['POST'])
def create_round():
    data = request.get_json(silent=True) or {}
    rnd = state_machine.create_round(
        number=_int_arg(data, 'number'),
        time_limit_seconds=_int_arg(data, 'time_limit_seconds'),
        planned_items=_int_arg(data, 'planned_items'),
        item_quota=_int_arg(data, 'item_quota'),
    )
    return jsonify(_round_payload(rnd)), 201


@rounds.route('/current', methods=['GET'])
def get_current_round():
    rnd = state_machine.current_round()
    return jsonify({'round': _round_payload(rnd) if rnd else None})


@rounds.route('/next-number', methods=['GET'])
def get_next_number():
    return jsonify({'number': state_machine.next_round_number()})


@rounds.route('/<int:round_id>', methods=['GET'])
def get_round(round_id):
    return jsonify(_round_payload(state_machine.get_round(round_id)))


@rounds.route('/<int:round_id>/start', methods=['POST'])
def start_round(round_id):
    data = request.get_json(silent=True) or {}
    if _debounced('start', round_id, data.get('controller_id')):
        return jsonify({'message': 'debounced'}), 202
    return jsonify(_round_payload(state_machine.start_round(round_id)))


@rounds.route('/<int:round_id>/pause', methods=['POST'])
def pause_round(round_id):
    data = request.get_json(silent=True) or {}
    if _debounced('pause', round_id, data.get('controller_id')):
        return jsonify({'message': 'debounced'}), 202
    return jsonify(_round_payload(state_machine.pause_round(round_id)))


@rounds.route('/<int:round_id>/finish', methods=['POST'])
def finish_round(round_id):
    rnd, changed = state_machine.finish_round(round_id)
    if changed:
        schedule_auto_reject(current_app._get_current_object(), rnd.id)
    payload = _round_payload(rnd)
    payload['changed'] = changed
    return jsonify(payload)


@rounds.route('/<int:round_id>/extend', methods=['POST'])
def extend_round(round_id):
    data = request.get_json(silent=True) or {}
    if data.get('delta_minutes') is None:
        raise ValidationError('delta_minutes is required')
    if _debounced('extend', round_id, data.get('controller_id')):
        return jsonify({'message': 'debounced'}), 202
    return jsonify(_round_payload(state_machine.extend_round(round_id, data.get('delta_minutes'))))


@rounds.route('/<int:round_id>/sequence', methods=['GET'])
def get_round_sequence(round_id):
    state_machine.get_round(round_id)
    return jsonify([e.to_dict() for e in get_sequence(round_id)])


@rounds.route('/<int:round_id>/cursor', methods=['GET'])
def get_round_cursor(round_id):
    return jsonify(round_cursor(state_machine.get_round(round_id)))


@rounds.route('/<int:round_id>/summary', methods=['GET'])
def get_round_summary(round_id):
    return jsonify(round_summary(round_id))


@rounds.route('/<int:round_id>/evaluation-window', methods=['GET'])
def get_evaluation_window(round_id):
    grace = int(current_app.config.get('EVALUATION_GRACE_SEC', 60))
    return jsonify(evaluation_window(state_machine.get_round(round_id), grace))


@rounds.route('/<int:round_id>/auto-reject', methods=['POST'])
def auto_reject(round_id):
    state_machine.get_round(round_id)
    return jsonify(auto_reject_round(current_app._get_current_object(), round_id))


@rounds.route('/reset', methods=['POST'])
def reset_rounds():
    deleted = state_machine.reset_all()
    return jsonify({'deleted_rounds': deleted})


@rounds.route('/settings', methods=['GET'])
def get_settings():
    cfg = current_app.config
    thresholds = [int(s) for s in str(cfg.get('WARNING_THRESHOLDS_SEC', '30,10')).split(',') if s.strip()]
    return jsonify({
        'warning_thresholds': sorted(thresholds, reverse=True),
        'grace_seconds': int(cfg.get('EVALUATION_GRACE_SEC', 60)),
        'default_time_limit_seconds': int(cfg.get('DEFAULT_TIME_LIMIT_SEC', 300)),
        'default_planned_items': int(cfg.get('DEFAULT_PLANNED_ITEMS', 10)),
        'flavor_policy': cfg.get('FLAVOR_POLICY', 'round_robin'),
    })
