"""Screens compose components and mount/unmount them as one unit."""
import logging
import time
from typing import List, Optional

from .components import (
    ControlPanel,
    EvaluationQueue,
    EvaluationTimeoutWatcher,
    RoundMonitor,
    TeamQueue,
)
from .events import EventBus
from .feed import ChangeFeed, SocketIOFeed
from .store import HttpStore

logger = logging.getLogger(__name__)


class Screen:
    def __init__(self, store: HttpStore, feed: ChangeFeed, bus: Optional[EventBus] = None,
                 ticker=None, clock=time.time, warning_thresholds=(30, 10)):
        self.store = store
        self.feed = feed
        self.bus = bus or feed.bus or EventBus()
        self.ticker = ticker
        self.clock = clock
        self.monitor = RoundMonitor(store, feed, self.bus, ticker=ticker, clock=clock,
                                    warning_thresholds=warning_thresholds)
        self.components: List = []
        self.mounted = False

    # constructor argument -> key of GET /api/rounds/settings
    server_settings = {'warning_thresholds': 'warning_thresholds'}

    @classmethod
    def connect(cls, base_url: str, **kwargs):
        """Build a screen talking to a running server over HTTP and Socket.IO.

        Arguments not passed explicitly are taken from the server's settings.
        """
        store = HttpStore(base_url)
        settings = store.settings()
        for arg, key in cls.server_settings.items():
            if arg not in kwargs and key in settings:
                kwargs[arg] = settings[key]
        bus = EventBus()
        feed = SocketIOFeed(base_url, bus)
        feed.connect()
        return cls(store, feed, bus, **kwargs)

    def mount(self):
        if self.mounted:
            return self
        self.monitor.mount()
        for component in self.components:
            component.mount()
        self.mounted = True
        logger.info("%s mounted", type(self).__name__)
        return self

    def unmount(self) -> None:
        if not self.mounted:
            return
        self.mounted = False
        for component in reversed(self.components):
            component.unmount()
        self.monitor.unmount()
        logger.info("%s unmounted", type(self).__name__)

    def __enter__(self):
        return self.mount()

    def __exit__(self, exc_type, exc, tb):
        self.unmount()
        return False


class TeamScreen(Screen):
    def __init__(self, store, feed, bus=None, team_id: int = None, **kwargs):
        super().__init__(store, feed, bus, **kwargs)
        self.queue = TeamQueue(store, feed, self.bus, self.monitor, team_id)
        self.components = [self.queue]


class EvaluatorScreen(Screen):
    server_settings = dict(Screen.server_settings, grace_seconds='grace_seconds')

    def __init__(self, store, feed, bus=None, evaluator: str = 'evaluator',
                 grace_seconds: int = 60, **kwargs):
        super().__init__(store, feed, bus, **kwargs)
        self.queue = EvaluationQueue(store, feed, self.bus, self.monitor, evaluator)
        self.watcher = EvaluationTimeoutWatcher(store, self.bus, self.monitor, grace_seconds,
                                                ticker=self.ticker, clock=self.clock)
        self.components = [self.queue, self.watcher]


class ControlScreen(Screen):
    def __init__(self, store, feed, bus=None, auto_finish: bool = True, **kwargs):
        super().__init__(store, feed, bus, **kwargs)
        self.panel = ControlPanel(store, self.bus, self.monitor, auto_finish)
        self.components = [self.panel]
