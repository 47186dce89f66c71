from wabridge.session.monitors.watchdogs.connection_watchdog import ConnectionWatchdog
from wabridge.session.monitors.watchdogs.local_browser_watchdog import LocalBrowserWatchdog

__all__ = ['ConnectionWatchdog', 'LocalBrowserWatchdog']
