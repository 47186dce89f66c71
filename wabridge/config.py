"""Конфигурация клиента: переменные окружения, .env и значения по умолчанию."""

import logging
import os
from functools import cache
from pathlib import Path
from typing import Any

import psutil
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Рекомендуемый user agent по умолчанию: WhatsApp Web отказывается работать с headless-подписью
DEFAULT_USER_AGENT = (
	'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36'
)
DEFAULT_AUTH_TIMEOUT_MS = 60_000


@cache
def is_running_in_docker() -> bool:
	"""Определить, запущены ли мы в контейнере Docker, чтобы добавить нужные флаги запуска Chrome."""
	try:
		if Path('/.dockerenv').exists() or 'docker' in Path('/proc/1/cgroup').read_text().lower():
			return True
	except Exception:
		pass

	try:
		# если init процесс (PID 1) выглядит как python/uv/app, то мы почти наверняка в контейнере
		init_command = ' '.join(psutil.Process(1).cmdline())
		if ('py' in init_command) or ('uv' in init_command) or ('app' in init_command):
			return True
	except Exception:
		pass

	try:
		if len(psutil.pids()) < 10:
			return True
	except Exception:
		pass

	return False


class OldConfig:
	"""Конфигурация с ленивым чтением переменных окружения при каждом доступе."""

	_directories_created = False

	@property
	def WABRIDGE_LOGGING_LEVEL(self) -> str:
		return os.getenv('WABRIDGE_LOGGING_LEVEL', 'info').lower()

	@property
	def WABRIDGE_SETUP_LOGGING(self) -> bool:
		return os.getenv('WABRIDGE_SETUP_LOGGING', 'true').lower()[:1] in 'ty1'

	# Конфигурация путей
	@property
	def XDG_CACHE_HOME(self) -> Path:
		return Path(os.getenv('XDG_CACHE_HOME', '~/.cache')).expanduser().resolve()

	@property
	def XDG_CONFIG_HOME(self) -> Path:
		return Path(os.getenv('XDG_CONFIG_HOME', '~/.config')).expanduser().resolve()

	@property
	def WABRIDGE_DATA_DIR(self) -> Path:
		data_directory = Path(os.getenv('WABRIDGE_DATA_DIR', './.wabridge_auth')).expanduser().resolve()
		return data_directory

	@property
	def WABRIDGE_CACHE_DIR(self) -> Path:
		return Path(os.getenv('WABRIDGE_CACHE_DIR', './.wabridge_cache')).expanduser().resolve()

	@property
	def WABRIDGE_PROFILES_DIR(self) -> Path:
		profiles_directory = Path(
			os.getenv('WABRIDGE_PROFILES_DIR', str(self.XDG_CONFIG_HOME / 'wabridge' / 'profiles'))
		).expanduser().resolve()
		self._ensure_dirs(profiles_directory)
		return profiles_directory

	@property
	def WABRIDGE_DEFAULT_USER_DATA_DIR(self) -> Path:
		return self.WABRIDGE_PROFILES_DIR / 'default'

	def _ensure_dirs(self, profiles_directory: Path) -> None:
		"""Создать директорию профилей, если её ещё нет (один раз на процесс)"""
		if not OldConfig._directories_created:
			profiles_directory.mkdir(parents=True, exist_ok=True)
			OldConfig._directories_created = True

	# Параметры клиента по умолчанию
	@property
	def WABRIDGE_USER_AGENT(self) -> str:
		return os.getenv('WABRIDGE_USER_AGENT', DEFAULT_USER_AGENT)

	@property
	def WABRIDGE_AUTH_TIMEOUT_MS(self) -> int:
		raw_value = os.getenv('WABRIDGE_AUTH_TIMEOUT_MS', '')
		try:
			return int(raw_value) if raw_value else DEFAULT_AUTH_TIMEOUT_MS
		except ValueError:
			logger.warning(f'WABRIDGE_AUTH_TIMEOUT_MS={raw_value!r} is not an integer, using {DEFAULT_AUTH_TIMEOUT_MS}')
			return DEFAULT_AUTH_TIMEOUT_MS

	# Подсказки времени выполнения
	@property
	def IN_DOCKER(self) -> bool:
		return os.getenv('IN_DOCKER', 'false').lower()[:1] in 'ty1' or is_running_in_docker()


class FlatEnvConfig(BaseSettings):
	"""Все переменные окружения в плоском пространстве имен."""

	model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', case_sensitive=True, extra='allow')

	# Логирование
	WABRIDGE_LOGGING_LEVEL: str = Field(default='info')
	CDP_LOGGING_LEVEL: str = Field(default='WARNING')
	WABRIDGE_DEBUG_LOG_FILE: str | None = Field(default=None)
	WABRIDGE_INFO_LOG_FILE: str | None = Field(default=None)

	# Браузер
	WABRIDGE_HEADLESS: bool | None = Field(default=None)
	WABRIDGE_EXECUTABLE_PATH: str | None = Field(default=None)
	WABRIDGE_CDP_URL: str | None = Field(default=None)

	# Переменные окружения прокси
	WABRIDGE_PROXY_URL: str | None = Field(default=None)
	WABRIDGE_NO_PROXY: str | None = Field(default=None)
	WABRIDGE_PROXY_USERNAME: str | None = Field(default=None)
	WABRIDGE_PROXY_PASSWORD: str | None = Field(default=None)


class Config:
	"""Объединяет все источники конфигурации.

	Перечитывает переменные окружения при каждом доступе.
	"""

	def __getattr__(self, attribute_name: str) -> Any:
		if attribute_name.startswith('_'):
			raise AttributeError(f"'{self.__class__.__name__}' object has no attribute '{attribute_name}'")

		legacy_config = OldConfig()
		if hasattr(legacy_config, attribute_name):
			return getattr(legacy_config, attribute_name)

		env_config_instance = FlatEnvConfig()
		if hasattr(env_config_instance, attribute_name):
			return getattr(env_config_instance, attribute_name)

		if attribute_name == 'load_browser_profile_overrides':
			return lambda: self._load_browser_profile_overrides()

		raise AttributeError(f"'{self.__class__.__name__}' object has no attribute '{attribute_name}'")

	def _load_browser_profile_overrides(self) -> dict[str, Any]:
		"""Собрать параметры BrowserProfile из переменных окружения."""
		env_config_instance = FlatEnvConfig()
		overrides: dict[str, Any] = {}

		if env_config_instance.WABRIDGE_HEADLESS is not None:
			overrides['headless'] = env_config_instance.WABRIDGE_HEADLESS
		if env_config_instance.WABRIDGE_EXECUTABLE_PATH:
			overrides['executable_path'] = env_config_instance.WABRIDGE_EXECUTABLE_PATH
		if env_config_instance.WABRIDGE_CDP_URL:
			overrides['cdp_url'] = env_config_instance.WABRIDGE_CDP_URL

		# Настройки прокси (Chromium) -> объединенный словарь `proxy`
		proxy_settings: dict[str, Any] = {}
		if env_config_instance.WABRIDGE_PROXY_URL:
			proxy_settings['server'] = env_config_instance.WABRIDGE_PROXY_URL
		if env_config_instance.WABRIDGE_NO_PROXY:
			# bypass храним строкой через запятую, как ожидает флаг Chrome
			proxy_settings['bypass'] = ','.join(
				[domain.strip() for domain in env_config_instance.WABRIDGE_NO_PROXY.split(',') if domain.strip()]
			)
		if env_config_instance.WABRIDGE_PROXY_USERNAME:
			proxy_settings['username'] = env_config_instance.WABRIDGE_PROXY_USERNAME
		if env_config_instance.WABRIDGE_PROXY_PASSWORD:
			proxy_settings['password'] = env_config_instance.WABRIDGE_PROXY_PASSWORD
		if proxy_settings:
			overrides['proxy'] = proxy_settings

		return overrides


CONFIG = Config()

# Адрес WhatsApp Web и referer, с которым его открывает обычный браузер
WHATSAPP_WEB_URL = 'https://web.whatsapp.com/'
WHATSAPP_REFERER = 'https://whatsapp.com/'
