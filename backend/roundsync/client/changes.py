"""Typed snapshots and change events received from the feed."""
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, Optional, Type, Union

from roundsync.errors import SyncError


class ChangeKind(str, Enum):
    INSERTED = 'INSERT'
    UPDATED = 'UPDATE'
    DELETED = 'DELETE'


def _build(cls, data: Optional[dict]):
    if data is None:
        return None
    if not isinstance(data, dict) or data.get('id') is None:
        raise SyncError(f"Malformed {cls.__name__} payload: {data!r}")
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class RoundSnapshot:
    id: int
    number: Optional[int] = None
    status: Optional[str] = None
    time_limit_seconds: int = 0
    planned_items: int = 0
    item_quota: int = 0
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    paused_at: Optional[float] = None
    updated_at: float = 0.0

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional['RoundSnapshot']:
        return _build(cls, data)

    @property
    def anchor(self):
        """Fields whose change invalidates a running timer."""
        return (self.id, self.status, self.started_at, self.finished_at,
                self.paused_at, self.time_limit_seconds)


@dataclass(frozen=True)
class ItemSnapshot:
    id: int
    team_id: Optional[int] = None
    round_id: Optional[int] = None
    flavor_id: Optional[int] = None
    status: Optional[str] = None
    result: Optional[str] = None
    rejection_reason: Optional[str] = None
    evaluated_by: Optional[str] = None
    evaluated_at: Optional[float] = None
    created_at: float = 0.0
    updated_at: float = 0.0

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional['ItemSnapshot']:
        return _build(cls, data)

    @property
    def pending(self) -> bool:
        return self.status == 'ready' and self.result is None


@dataclass(frozen=True)
class SequenceEntrySnapshot:
    id: int
    round_id: Optional[int] = None
    flavor_id: Optional[int] = None
    flavor_name: Optional[str] = None
    position: int = 0
    updated_at: float = 0.0

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional['SequenceEntrySnapshot']:
        return _build(cls, data)


Snapshot = Union[RoundSnapshot, ItemSnapshot, SequenceEntrySnapshot]

SNAPSHOT_TYPES: Dict[str, Type] = {
    'round': RoundSnapshot,
    'production_item': ItemSnapshot,
    'flavor_sequence_entry': SequenceEntrySnapshot,
}


@dataclass(frozen=True)
class Change:
    table: str
    kind: ChangeKind
    new: Optional[Any] = None
    old: Optional[Any] = None
    commit_timestamp: Optional[float] = None
    topic: Optional[str] = None

    @property
    def record(self):
        return self.new if self.new is not None else self.old

    @property
    def record_id(self) -> int:
        return self.record.id

    @property
    def version(self) -> float:
        return self.record.updated_at

    @property
    def key(self):
        return (self.table, self.kind, self.record_id, self.version)


def parse_change(payload: Any) -> Change:
    """Turn a raw ``change`` event into a typed Change; raises SyncError."""
    if not isinstance(payload, dict):
        raise SyncError(f"Malformed change event: {payload!r}")
    table = payload.get('table')
    cls = SNAPSHOT_TYPES.get(table)
    if cls is None:
        raise SyncError(f"Unknown table in change event: {table!r}")
    try:
        kind = ChangeKind(payload.get('type'))
    except ValueError:
        raise SyncError(f"Unknown change type: {payload.get('type')!r}")

    new = cls.from_dict(payload.get('new'))
    old = cls.from_dict(payload.get('old'))
    if kind == ChangeKind.DELETED and old is None:
        raise SyncError('DELETE event without old record')
    if kind != ChangeKind.DELETED and new is None:
        raise SyncError(f"{kind.value} event without new record")
    return Change(
        table=table,
        kind=kind,
        new=new,
        old=old,
        commit_timestamp=payload.get('commit_timestamp'),
        topic=payload.get('topic'),
    )
