from flask import Blueprint, jsonify, request

from roundsync.errors import ValidationError
from roundsync.services.rounds import queue

items = Blueprint('items', __name__)


def _optional_int(value, name):
    if value in (None, ''):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")


@items.route('', methods=['POST'])
def submit_item():
    data = request.get_json(silent=True) or {}
    team_id = _optional_int(data.get('team_id'), 'team_id')
    round_id = _optional_int(data.get('round_id'), 'round_id')
    if team_id is None or round_id is None:
        raise ValidationError('team_id and round_id are required')
    item = queue.submit_item(team_id, round_id, _optional_int(data.get('flavor_id'), 'flavor_id'))
    return jsonify(item.to_dict()), 201


@items.route('', methods=['GET'])
def list_team_items():
    team_id = _optional_int(request.args.get('team_id'), 'team_id')
    if team_id is None:
        raise ValidationError('team_id is required')
    round_id = _optional_int(request.args.get('round_id'), 'round_id')
    return jsonify([i.to_dict() for i in queue.team_items(team_id, round_id)])


@items.route('/pending', methods=['GET'])
def list_pending_items():
    round_id = _optional_int(request.args.get('round_id'), 'round_id')
    return jsonify([i.to_dict() for i in queue.pending_items(round_id)])


@items.route('/<int:item_id>', methods=['GET'])
def get_item(item_id):
    return jsonify(queue.get_item(item_id).to_dict())


@items.route('/<int:item_id>/evaluate', methods=['POST'])
def evaluate_item(item_id):
    data = request.get_json(silent=True) or {}
    item = queue.evaluate_item(
        item_id,
        data.get('verdict'),
        reason=data.get('reason'),
        evaluator=data.get('evaluator'),
    )
    return jsonify(item.to_dict())
