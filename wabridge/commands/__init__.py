from wabridge.commands.dispatcher import MAX_PIN_COUNT, CommandDispatcher
from wabridge.commands.models import SearchOptions, SendMessageOptions
from wabridge.commands.sticker import StickerMetadata, get_default_sticker_metadata, set_default_sticker_metadata

__all__ = [
	'MAX_PIN_COUNT',
	'CommandDispatcher',
	'SearchOptions',
	'SendMessageOptions',
	'StickerMetadata',
	'get_default_sticker_metadata',
	'set_default_sticker_metadata',
]
