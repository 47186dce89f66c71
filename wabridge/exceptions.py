"""Исключения для всех компонентов клиента."""


class WhatsAppClientError(Exception):
	"""Базовое исключение клиента."""

	def __init__(self, message: str = ''):
		super().__init__(message)
		self.message = message


# Браузер и страница
class BrowserLaunchError(WhatsAppClientError):
	"""Не удалось запустить браузер или подключиться к нему."""

	def __init__(self, message: str, cdp_url: str | None = None):
		super().__init__(message)
		self.cdp_url = cdp_url


class NavigationError(WhatsAppClientError):
	"""Навигация страницы завершилась ошибкой."""

	def __init__(self, message: str, url: str | None = None, error_text: str | None = None):
		super().__init__(message)
		self.url = url
		self.error_text = error_text


class PageClosedDuringOperation(WhatsAppClientError):
	"""Страница закрылась, пока операция ждала ответа."""

	def __init__(self, message: str = 'Target closed', during_teardown: bool = False):
		super().__init__(message)
		self.during_teardown = during_teardown


# Аутентификация
class AuthDetectionTimeout(WhatsAppClientError):
	"""Ни главный экран, ни экран сопряжения не появились вовремя."""

	def __init__(self, message: str, selector: str | None = None, timeout_ms: int | None = None):
		super().__init__(message)
		self.selector = selector
		self.timeout_ms = timeout_ms


class AuthenticationFailure(WhatsAppClientError):
	"""Стратегия аутентификации не смогла восстановить сессию."""

	def __init__(self, message: str, payload: object = None, restart: bool = False):
		super().__init__(message)
		self.payload = payload
		self.restart = restart


class MaxPairingRetriesExceeded(WhatsAppClientError):
	"""QR-код обновился больше раз, чем разрешено."""

	def __init__(self, max_retries: int, message: str = 'Max qrcode retries reached'):
		super().__init__(message)
		self.max_retries = max_retries


# Мост между процессом и страницей
class BridgeError(WhatsAppClientError):
	"""Базовая ошибка моста."""


class BridgeNotReadyError(BridgeError):
	"""Команда вызвана до того, как мост был подключён."""


class BridgeSealedError(BridgeError):
	"""Попытка зарегистрировать функцию после подключения моста."""


class RemoteOperationError(WhatsAppClientError):
	"""Операция на странице завершилась ошибкой.

	category сохраняет различимую причину, если её можно вывести из ошибки страницы:
	'not_found', 'privacy_restricted', 'rate_limited', 'not_allowed', 'invalid' или 'unknown'.
	"""

	def __init__(self, message: str, category: str = 'unknown', remote_name: str | None = None):
		super().__init__(message)
		self.category = category
		self.remote_name = remote_name

	def __str__(self) -> str:
		return f'[{self.category}] {self.message}'


class InvalidArgument(WhatsAppClientError, ValueError):
	"""Неверный аргумент команды."""


# Кеш версий WhatsApp Web
class VersionResolveError(WhatsAppClientError):
	"""Запрошенная версия WhatsApp Web недоступна в кеше."""
