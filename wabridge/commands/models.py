from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from wabridge.structures.models import Contact, Message, MessageKey, MessageMedia


class SendMessageOptions(BaseModel):
	"""Параметры send_message. Поля стикера по отдельности перекрывают set_default_sticker_metadata()."""

	model_config = ConfigDict(arbitrary_types_allowed=True, extra='forbid')

	link_preview: bool | None = Field(default=None, description='Показывать превью ссылки')
	ptt: bool = Field(default=False, description='Отправить аудио как голосовое сообщение')
	gif_playback: bool = Field(default=False, description='Отправить видео как GIF')
	as_sticker: bool = False
	as_document: bool = False
	caption: str | None = None
	quoted: str | Message | MessageKey | None = Field(default=None, description='Сообщение, на которое отвечаем')
	mentions: list[str | Contact] = Field(default_factory=list)
	parse_vcards: bool = True
	send_seen: bool = True
	media: MessageMedia | None = Field(default=None, description='Вложение; текст сообщения становится подписью')
	mimetype: str | None = None
	file_name: str | None = None
	file_size: int | None = None
	extra: dict[str, Any] | None = None

	pack_id: str | None = None
	pack_name: str | None = None
	pack_publish: str | None = None
	pack_email: str | None = None
	pack_website: str | None = None
	android_app: str | None = None
	ios_app: str | None = None
	categories: list[str] | None = None
	is_avatar: bool | None = None

	def quoted_message_id(self) -> str | None:
		if self.quoted is None:
			return None
		if isinstance(self.quoted, Message):
			return str(self.quoted.id) if self.quoted.id else None
		return str(self.quoted)

	def mentioned_ids(self) -> list[str]:
		return [mention.id if isinstance(mention, Contact) else mention for mention in self.mentions]


class SearchOptions(BaseModel):
	page: int = 1
	count: int = 10
	remote: str | None = Field(default=None, description='id чата, в котором искать')
