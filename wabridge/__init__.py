"""Клиент WhatsApp Web поверх Chromium и Chrome DevTools Protocol"""

import os
from typing import TYPE_CHECKING

from wabridge.logging_config import setup_logging

# Setup logging
if os.environ.get('WABRIDGE_SETUP_LOGGING', 'true').lower() != 'false':
	from wabridge.config import CONFIG

	debug_log_file = getattr(CONFIG, 'WABRIDGE_DEBUG_LOG_FILE', None)
	info_log_file = getattr(CONFIG, 'WABRIDGE_INFO_LOG_FILE', None)
	logger = setup_logging(debug_log_file=debug_log_file, info_log_file=info_log_file)
else:
	import logging

	logger = logging.getLogger('wabridge')

# Типы для lazy imports
if TYPE_CHECKING:
	from wabridge.auth import LegacySessionAuth, LinkingMethod, LocalAuth, NoAuth, PhoneLinking, QrLinking
	from wabridge.client import Client
	from wabridge.commands import SendMessageOptions, StickerMetadata, set_default_sticker_metadata
	from wabridge.options import ClientOptions
	from wabridge.session import BrowserProfile, PageSession, ProxySettings
	from wabridge.structures import Location, MessageMedia, WAState
	from wabridge.webcache import LocalWebCache

# Lazy imports mapping
_LAZY_IMPORTS = {
	'Client': ('wabridge.client', 'Client'),
	'ClientOptions': ('wabridge.options', 'ClientOptions'),
	'PageSession': ('wabridge.session', 'PageSession'),
	'BrowserProfile': ('wabridge.session', 'BrowserProfile'),
	'ProxySettings': ('wabridge.session', 'ProxySettings'),
	'NoAuth': ('wabridge.auth', 'NoAuth'),
	'LocalAuth': ('wabridge.auth', 'LocalAuth'),
	'LegacySessionAuth': ('wabridge.auth', 'LegacySessionAuth'),
	'LinkingMethod': ('wabridge.auth', 'LinkingMethod'),
	'QrLinking': ('wabridge.auth', 'QrLinking'),
	'PhoneLinking': ('wabridge.auth', 'PhoneLinking'),
	'SendMessageOptions': ('wabridge.commands', 'SendMessageOptions'),
	'StickerMetadata': ('wabridge.commands', 'StickerMetadata'),
	'set_default_sticker_metadata': ('wabridge.commands', 'set_default_sticker_metadata'),
	'MessageMedia': ('wabridge.structures', 'MessageMedia'),
	'Location': ('wabridge.structures', 'Location'),
	'WAState': ('wabridge.structures', 'WAState'),
	'LocalWebCache': ('wabridge.webcache', 'LocalWebCache'),
}


def __getattr__(name: str):
	"""Lazy import mechanism."""
	if name in _LAZY_IMPORTS:
		module_path, attr_name = _LAZY_IMPORTS[name]
		try:
			from importlib import import_module

			module = import_module(module_path)
			attr = getattr(module, attr_name)
			globals()[name] = attr
			return attr
		except ImportError as e:
			raise ImportError(f'Failed to import {name} from {module_path}: {e}') from e
	raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
	'Client',
	'ClientOptions',
	'PageSession',
	'BrowserProfile',
	'ProxySettings',
	'NoAuth',
	'LocalAuth',
	'LegacySessionAuth',
	'LinkingMethod',
	'QrLinking',
	'PhoneLinking',
	'SendMessageOptions',
	'StickerMetadata',
	'set_default_sticker_metadata',
	'MessageMedia',
	'Location',
	'WAState',
	'LocalWebCache',
]
