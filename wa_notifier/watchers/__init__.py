"""Watcher modules for the notifier perception layer."""

from wa_notifier.watchers.base_watcher import BaseWatcher, WatcherState

__all__ = ["BaseWatcher", "WatcherState"]
