"""Настройки клиента WhatsApp Web."""

from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from wabridge.auth.linking import LinkingMethod, QrLinking
from wabridge.auth.strategies import AuthStrategy, LegacySessionAuth, NoAuth
from wabridge.bridge import scripts
from wabridge.config import CONFIG
from wabridge.session.profile import BrowserProfile
from wabridge.webcache.local import WebCache

WA_JS_RELEASE_URL = 'https://github.com/wppconnect-team/wa-js/releases/latest/download/wppconnect-wa.js'


class ClientOptions(BaseModel):
	"""Параметры Client: браузер, аутентификация, внедряемые скрипты и кеш версий."""

	model_config = ConfigDict(arbitrary_types_allowed=True, extra='forbid', validate_assignment=True)

	browser_profile: BrowserProfile = Field(default_factory=BrowserProfile.from_env)

	# Аутентификация
	auth_strategy: AuthStrategy | None = Field(default=None, description='NoAuth, LocalAuth или LegacySessionAuth; по умолчанию NoAuth')
	linking_method: LinkingMethod | None = Field(default=None, description='QR или код по номеру; по умолчанию QR')
	qr_max_retries: int = Field(default=0, ge=0, description='Используется, если linking_method не задан')
	auth_timeout_ms: int = Field(default_factory=lambda: CONFIG.WABRIDGE_AUTH_TIMEOUT_MS, gt=0)
	selector: int | None = Field(default=None, ge=1, le=6, description='Вариант селектора главного экрана 1-6')
	restart_on_auth_fail: bool = False
	session: dict[str, str] | None = Field(default=None, description='Токены LegacySessionAuth')

	# Соединение
	takeover_on_conflict: bool = False
	takeover_timeout_ms: int = Field(default=0, ge=0)
	mark_online_available: bool = True

	# Страница
	bypass_csp: bool = False
	user_agent: str | None = Field(default=None, description='По умолчанию user agent профиля или WABRIDGE_USER_AGENT')
	page_scripts: list[str | Path] = Field(default_factory=lambda: [WA_JS_RELEASE_URL])
	page_ready_expression: str = scripts.WPP_READY_EXPRESSION
	store_scripts: list[str | Path] = Field(
		default_factory=list, description='Скрипты, открывающие window.Store и window.WWebJS; без них initialize() падает с BridgeNotReadyError'
	)

	# Кеш версий WhatsApp Web
	web_version: str | None = None
	web_version_cache: WebCache | dict[str, Any] | None = Field(
		default=None, description="WebCache или {'type': 'local', 'path': ..., 'strict': ...}"
	)

	sticker_converter: Callable[..., Awaitable[dict[str, Any]]] | None = Field(default=None, description='По умолчанию конвертация в странице')

	@model_validator(mode='after')
	def fill_defaults(self) -> 'ClientOptions':
		if self.linking_method is None:
			object.__setattr__(self, 'linking_method', LinkingMethod(qr=QrLinking(max_retries=self.qr_max_retries)))
		if self.auth_strategy is None:
			if self.session is not None:
				strategy: AuthStrategy = LegacySessionAuth(self.session, restart_on_auth_fail=self.restart_on_auth_fail)
			else:
				strategy = NoAuth()
			object.__setattr__(self, 'auth_strategy', strategy)
		return self

	@property
	def resolved_user_agent(self) -> str:
		return self.user_agent or self.browser_profile.user_agent or CONFIG.WABRIDGE_USER_AGENT
