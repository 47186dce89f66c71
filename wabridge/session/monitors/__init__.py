"""Watchdogs, следящие за браузером и соединением WhatsApp."""

from wabridge.session.monitors.watchdogs import ConnectionWatchdog, LocalBrowserWatchdog

__all__ = ['ConnectionWatchdog', 'LocalBrowserWatchdog']
