import math
import random
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple

from flask import current_app
from sqlalchemy.exc import IntegrityError

from roundsync import db
from roundsync.errors import ValidationError
from roundsync.models import Flavor, FlavorSequenceEntry, Round
from .broadcast import INSERT, publish_change
from .clock import round_elapsed

ROUND_ROBIN = 'round_robin'
RANDOM = 'random'
POLICIES = (ROUND_ROBIN, RANDOM)


@dataclass
class FlavorCursor:
    """Position in a round's flavor sequence derived from elapsed time."""
    index: Optional[int]
    current: Any = None
    next: Any = None
    after_next: Any = None
    past: List[Any] = field(default_factory=list)
    interval_seconds: Optional[float] = None
    seconds_to_next: Optional[int] = None


def select_flavors(flavor_ids: Sequence[int], count: int, policy: str = ROUND_ROBIN,
                   seed=None) -> List[int]:
    """Pick ``count`` flavors from the catalog.

    round_robin cycles through the catalog in order; random draws with a
    generator seeded by ``seed`` so the same round always gets the same
    draw.
    """
    if not flavor_ids:
        raise ValidationError('No flavors available')
    if policy == ROUND_ROBIN:
        return [flavor_ids[i % len(flavor_ids)] for i in range(count)]
    if policy == RANDOM:
        rng = random.Random(seed)
        return [rng.choice(list(flavor_ids)) for _ in range(count)]
    raise ValidationError(f"Unknown flavor policy {policy!r}")


def get_sequence(round_id: int) -> List[FlavorSequenceEntry]:
    return (FlavorSequenceEntry.query
            .filter_by(round_id=round_id)
            .order_by(FlavorSequenceEntry.position.asc())
            .all())


def create_sequence(rnd: Round, count: Optional[int] = None,
                    policy: Optional[str] = None) -> Tuple[List[FlavorSequenceEntry], bool]:
    """Persist positions 0..count-1 for the round unless they already exist.

    Returns ``(entries, created)``. A second caller (another screen racing
    to set up the same round) gets the existing rows and ``created=False``.
    """
    count = int(count or rnd.planned_items)
    policy = policy or current_app.config.get('FLAVOR_POLICY', ROUND_ROBIN)

    if FlavorSequenceEntry.query.filter_by(round_id=rnd.id).first() is not None:
        current_app.logger.info(f"[sequence-skip] round={rnd.id} already has a sequence")
        return get_sequence(rnd.id), False

    catalog = [f.id for f in Flavor.query.filter_by(available=True).order_by(Flavor.id).all()]
    if not catalog:
        current_app.logger.warning(f"[sequence-empty] round={rnd.id} no flavors available")
        return [], False

    chosen = select_flavors(catalog, count, policy, seed=rnd.number)
    entries = [
        FlavorSequenceEntry(round_id=rnd.id, flavor_id=flavor_id, position=position)
        for position, flavor_id in enumerate(chosen)
    ]
    db.session.add_all(entries)
    try:
        db.session.commit()
    except IntegrityError:
        # Unique (round_id, position) lost the race to another writer
        db.session.rollback()
        current_app.logger.info(f"[sequence-skip] round={rnd.id} created concurrently")
        return get_sequence(rnd.id), False

    current_app.logger.info(f"[sequence-set] round={rnd.id} count={count} policy={policy}")
    for entry in entries:
        publish_change('flavor_sequence_entry', INSERT, entry.to_dict())
    return entries, True


def rotation_interval(time_limit_seconds: float, count: int) -> Optional[float]:
    if not count:
        return None
    return time_limit_seconds / count


def flavor_cursor(entries: Sequence[Any], elapsed: float,
                  interval_seconds: Optional[float]) -> FlavorCursor:
    """Index the ordered sequence at floor(elapsed / interval), clamped."""
    n = len(entries)
    if n == 0 or not interval_seconds:
        return FlavorCursor(index=None, interval_seconds=interval_seconds)
    index = min(max(int(math.floor(elapsed / interval_seconds)), 0), n - 1)
    seconds_to_next = None
    if index < n - 1:
        seconds_to_next = max(0, math.ceil((index + 1) * interval_seconds - elapsed))
    return FlavorCursor(
        index=index,
        current=entries[index],
        next=entries[index + 1] if index + 1 < n else None,
        after_next=entries[index + 2] if index + 2 < n else None,
        past=list(entries[:index]),
        interval_seconds=interval_seconds,
        seconds_to_next=seconds_to_next,
    )


def round_cursor(rnd: Round, now: Optional[float] = None) -> dict:
    entries = [e.to_dict() for e in get_sequence(rnd.id)]
    cursor = flavor_cursor(entries, round_elapsed(rnd, now),
                           rotation_interval(rnd.time_limit_seconds, len(entries)))
    return {
        'round_id': rnd.id,
        'index': cursor.index,
        'current': cursor.current,
        'next': cursor.next,
        'after_next': cursor.after_next,
        'past': cursor.past,
        'interval_seconds': cursor.interval_seconds,
        'seconds_to_next': cursor.seconds_to_next,
    }
