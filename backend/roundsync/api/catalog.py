from flask import Blueprint, jsonify, request

from roundsync import db
from roundsync.errors import ConflictError, ValidationError
from roundsync.models import Flavor, Team

catalog = Blueprint('catalog', __name__)


@catalog.route('/teams', methods=['GET'])
def list_teams():
    return jsonify([t.to_dict() for t in Team.query.order_by(Team.id).all()])


@catalog.route('/teams', methods=['POST'])
def create_team():
    data = request.get_json(silent=True) or {}
    name = (data.get('name') or '').strip()
    if not name:
        raise ValidationError('Team name is required')
    if Team.query.filter_by(name=name).first():
        raise ConflictError(f"Team {name} already exists")
    team = Team(name=name, color=data.get('color'), emblem=data.get('emblem'))
    db.session.add(team)
    db.session.commit()
    return jsonify(team.to_dict()), 201


@catalog.route('/flavors', methods=['GET'])
def list_flavors():
    return jsonify([f.to_dict() for f in Flavor.query.order_by(Flavor.id).all()])


@catalog.route('/flavors', methods=['POST'])
def create_flavor():
    data = request.get_json(silent=True) or {}
    name = (data.get('name') or '').strip()
    if not name:
        raise ValidationError('Flavor name is required')
    if Flavor.query.filter_by(name=name).first():
        raise ConflictError(f"Flavor {name} already exists")
    flavor = Flavor(name=name, description=data.get('description'),
                    available=bool(data.get('available', True)))
    db.session.add(flavor)
    db.session.commit()
    return jsonify(flavor.to_dict()), 201
