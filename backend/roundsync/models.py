from roundsync import db
import time


class RoundStatus:
    AWAITING = 'awaiting'
    ACTIVE = 'active'
    PAUSED = 'paused'
    FINISHED = 'finished'

    OPEN = (AWAITING, ACTIVE, PAUSED)


class ItemStatus:
    PRODUCING = 'producing'
    READY = 'ready'
    EVALUATED = 'evaluated'


class Verdict:
    APPROVED = 'approved'
    REJECTED = 'rejected'

    ALL = (APPROVED, REJECTED)


class Team(db.Model):
    __tablename__ = 'team'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), unique=True, nullable=False, index=True)
    color = db.Column(db.String(16), nullable=True)
    emblem = db.Column(db.String(16), nullable=True)
    created_at = db.Column(db.Float, default=time.time, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'color': self.color,
            'emblem': self.emblem,
        }


class Flavor(db.Model):
    __tablename__ = 'flavor'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), unique=True, nullable=False)
    description = db.Column(db.Text, nullable=True)
    available = db.Column(db.Boolean, default=True, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'available': self.available,
        }


class Round(db.Model):
    __tablename__ = 'round'
    __table_args__ = (
        db.CheckConstraint('time_limit_seconds > 0', name='ck_round_time_limit_positive'),
    )
    id = db.Column(db.Integer, primary_key=True)
    number = db.Column(db.Integer, unique=True, nullable=False, index=True)
    status = db.Column(db.String(16), default=RoundStatus.AWAITING, nullable=False, index=True)
    # True while the round is open, NULL once finished; unique, so at most one round is open
    open_slot = db.Column(db.Boolean, unique=True, nullable=True, default=True)
    time_limit_seconds = db.Column(db.Integer, nullable=False)
    planned_items = db.Column(db.Integer, nullable=False)
    item_quota = db.Column(db.Integer, nullable=False)
    # Epoch seconds. started_at is shifted forward on resume so elapsed time excludes pauses.
    started_at = db.Column(db.Float, nullable=True)
    finished_at = db.Column(db.Float, nullable=True)
    paused_at = db.Column(db.Float, nullable=True)
    paused_total = db.Column(db.Float, default=0.0, nullable=False)
    created_at = db.Column(db.Float, default=time.time, nullable=False)
    updated_at = db.Column(db.Float, default=time.time, onupdate=time.time, nullable=False)

    sequence = db.relationship(
        'FlavorSequenceEntry', backref='round', lazy='dynamic',
        order_by='FlavorSequenceEntry.position',
    )
    items = db.relationship('ProductionItem', backref='round', lazy='dynamic')

    def to_dict(self):
        return {
            'id': self.id,
            'number': self.number,
            'status': self.status,
            'time_limit_seconds': self.time_limit_seconds,
            'planned_items': self.planned_items,
            'item_quota': self.item_quota,
            'started_at': self.started_at,
            'finished_at': self.finished_at,
            'paused_at': self.paused_at,
            'paused_total': self.paused_total,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }


class FlavorSequenceEntry(db.Model):
    __tablename__ = 'flavor_sequence_entry'
    __table_args__ = (
        db.UniqueConstraint('round_id', 'position', name='uq_sequence_round_position'),
    )
    id = db.Column(db.Integer, primary_key=True)
    round_id = db.Column(db.Integer, db.ForeignKey('round.id'), nullable=False, index=True)
    flavor_id = db.Column(db.Integer, db.ForeignKey('flavor.id'), nullable=False)
    position = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.Float, default=time.time, nullable=False)
    updated_at = db.Column(db.Float, default=time.time, nullable=False)

    flavor = db.relationship('Flavor')

    def to_dict(self):
        return {
            'id': self.id,
            'round_id': self.round_id,
            'flavor_id': self.flavor_id,
            'flavor_name': self.flavor.name if self.flavor else None,
            'position': self.position,
            'updated_at': self.updated_at,
        }


class ProductionItem(db.Model):
    __tablename__ = 'production_item'
    __table_args__ = (
        db.Index('ix_production_item_round_status', 'round_id', 'status'),
    )
    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False, index=True)
    round_id = db.Column(db.Integer, db.ForeignKey('round.id'), nullable=False)
    flavor_id = db.Column(db.Integer, db.ForeignKey('flavor.id'), nullable=True)
    status = db.Column(db.String(16), default=ItemStatus.READY, nullable=False)
    result = db.Column(db.String(16), nullable=True)  # approved, rejected
    rejection_reason = db.Column(db.Text, nullable=True)
    evaluated_by = db.Column(db.String(64), nullable=True)
    evaluated_at = db.Column(db.Float, nullable=True)
    created_at = db.Column(db.Float, default=time.time, nullable=False)
    updated_at = db.Column(db.Float, default=time.time, onupdate=time.time, nullable=False)

    team = db.relationship('Team')
    flavor = db.relationship('Flavor')

    def to_dict(self):
        return {
            'id': self.id,
            'team_id': self.team_id,
            'round_id': self.round_id,
            'flavor_id': self.flavor_id,
            'status': self.status,
            'result': self.result,
            'rejection_reason': self.rejection_reason,
            'evaluated_by': self.evaluated_by,
            'evaluated_at': self.evaluated_at,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }
