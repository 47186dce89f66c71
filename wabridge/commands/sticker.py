"""Метаданные стикеров и конвертер вложения в стикер."""

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:
	from wabridge.session.session import PageSession

STICKER_FIELDS = (
	'pack_id',
	'pack_name',
	'pack_publish',
	'pack_email',
	'pack_website',
	'android_app',
	'ios_app',
	'categories',
	'is_avatar',
)


class StickerMetadata(BaseModel):
	"""Exif-метаданные стикера. Запись exif выполняет конвертер."""

	model_config = ConfigDict(frozen=True)

	pack_id: str | None = None
	pack_name: str | None = None
	pack_publish: str | None = None
	pack_email: str | None = None
	pack_website: str | None = None
	android_app: str | None = None
	ios_app: str | None = None
	categories: list[str] | None = None
	is_avatar: bool | None = None

	def to_page_payload(self) -> dict[str, Any]:
		return {
			'packId': self.pack_id,
			'packName': self.pack_name,
			'packPublish': self.pack_publish,
			'packEmail': self.pack_email,
			'packWebsite': self.pack_website,
			'androidApp': self.android_app,
			'iOSApp': self.ios_app,
			'categories': self.categories,
			'isAvatar': self.is_avatar,
		}


_default_sticker_metadata = StickerMetadata()


def set_default_sticker_metadata(metadata: StickerMetadata | None = None, **fields: Any) -> StickerMetadata:
	"""Задать метаданные по умолчанию для всех клиентов процесса."""
	global _default_sticker_metadata
	if metadata is None:
		metadata = StickerMetadata(**fields)
	elif fields:
		metadata = metadata.model_copy(update=fields)
	_default_sticker_metadata = metadata
	return metadata


def get_default_sticker_metadata() -> StickerMetadata:
	return _default_sticker_metadata


def resolve_sticker_metadata(options: Any) -> StickerMetadata:
	"""Каждое поле берётся из options, а если там пусто, из значений по умолчанию процесса."""
	defaults = get_default_sticker_metadata()
	resolved = {field: getattr(options, field, None) or getattr(defaults, field) for field in STICKER_FIELDS}
	return StickerMetadata(**resolved)


async def page_sticker_converter(attachment: dict[str, Any], metadata: StickerMetadata, session: 'PageSession') -> dict[str, Any]:
	"""Конвертация на стороне страницы через window.WWebJS.toStickerData."""
	return await session.evaluate(
		"""async (media, metadata) => await window.WWebJS.toStickerData(media, metadata)""",
		attachment,
		metadata.to_page_payload(),
	)

