from .changes import Change, ChangeKind, ItemSnapshot, RoundSnapshot, SequenceEntrySnapshot, parse_change
from .components import (
    ControlPanel,
    EvaluationQueue,
    EvaluationTimeoutWatcher,
    RoundMonitor,
    TeamQueue,
)
from .events import EventBus
from .feed import ChangeFeed, SocketIOFeed, Subscription, SubscriptionStatus
from .live import LiveTable
from .screens import ControlScreen, EvaluatorScreen, Screen, TeamScreen
from .store import HttpStore
from .timer import SynchronizedTimer, ThreadTicker, TimerState

__all__ = [
    'Change', 'ChangeKind', 'ItemSnapshot', 'RoundSnapshot', 'SequenceEntrySnapshot', 'parse_change',
    'ControlPanel', 'EvaluationQueue', 'EvaluationTimeoutWatcher', 'RoundMonitor', 'TeamQueue',
    'EventBus', 'ChangeFeed', 'SocketIOFeed', 'Subscription', 'SubscriptionStatus',
    'LiveTable', 'ControlScreen', 'EvaluatorScreen', 'Screen', 'TeamScreen',
    'HttpStore', 'SynchronizedTimer', 'ThreadTicker', 'TimerState',
]
