import tempfile
from pathlib import Path
from typing import Annotated, Any, Self

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from wabridge.config import CONFIG, DEFAULT_USER_AGENT
from wabridge.helpers import logger

CHROME_DISABLED_COMPONENTS = [
	# Фичи Chromium, которые мешают стабильной работе долгоживущей вкладки WhatsApp Web
	'AcceptCHFrame',
	'AutoExpandDetailsElement',
	'AvoidUnnecessaryBeforeUnloadCheckSync',
	'CertificateTransparencyComponentUpdater',
	'DestroyProfileOnBrowserClose',
	'DialMediaRouteProvider',
	'GlobalMediaControls',
	'HttpsUpgrades',
	'ImprovedCookieControls',
	'LazyFrameLoading',
	'LensOverlay',
	'MediaRouter',
	'PaintHolding',
	'Translate',
	'AutomationControlled',
	'BackForwardCache',
	'OptimizationHints',
	'CalculateNativeWinOcclusion',  # Chrome обычно останавливает рендеринг вкладок, если они не видны
	'InfiniteSessionRestore',
]

CHROME_HEADLESS_ARGS = [
	'--headless=new',
]

CHROME_DOCKER_ARGS = [
	'--no-sandbox',
	'--disable-gpu-sandbox',
	'--disable-setuid-sandbox',
	'--disable-dev-shm-usage',
	'--no-xshm',
	'--no-zygote',
]

CHROME_DEFAULT_ARGS = [
	'--disable-field-trial-config',
	'--disable-background-networking',
	'--disable-background-timer-throttling',  # вкладка живёт в фоне часами, таймеры страницы не должны засыпать
	'--disable-backgrounding-occluded-windows',
	'--disable-back-forward-cache',
	'--disable-breakpad',
	'--disable-client-side-phishing-detection',
	'--disable-component-update',
	'--no-default-browser-check',
	'--disable-dev-shm-usage',
	'--disable-hang-monitor',
	'--disable-ipc-flooding-protection',
	'--disable-popup-blocking',
	'--disable-prompt-on-repost',
	'--disable-renderer-backgrounding',
	'--metrics-recording-only',
	'--no-first-run',
	'--no-service-autorun',
	'--disable-search-engine-choice-screen',
	'--disable-sync',
	'--disable-blink-features=AutomationControlled',  # WhatsApp Web не должен видеть navigator.webdriver
	'--log-level=2',
	'--disable-infobars',
	'--hide-crash-restore-bubble',
	'--noerrdialogs',
	'--disable-default-apps',
	f'--disable-features={",".join(CHROME_DISABLED_COMPONENTS)}',
]

# Размер окна, под который свёрстан WhatsApp Web в узком режиме
DEFAULT_VIEWPORT_WIDTH = 501
DEFAULT_VIEWPORT_HEIGHT = 700


class ViewportSize(BaseModel):
	width: int = Field(ge=0)
	height: int = Field(ge=0)

	def __getitem__(self, key: str) -> int:
		return dict(self)[key]


def validate_cli_arg(arg: str) -> str:
	"""Проверить, что аргумент командной строки имеет корректный формат (начинается с --)."""
	if not arg.startswith('--'):
		raise ValueError(f'Invalid CLI argument: {arg} (should start with --, e.g. --some-key="some value here")')
	return arg


CliArgStr = Annotated[str, AfterValidator(validate_cli_arg)]


def args_as_dict(cli_args: list[str]) -> dict[str, str]:
	"""Convert list of CLI launch arguments to dictionary."""
	result_dict = {}
	for cli_arg in cli_args:
		arg_parts = cli_arg.split('=', 1)
		arg_key = arg_parts[0].strip().lstrip('-')
		arg_value = arg_parts[1].strip() if len(arg_parts) > 1 else ''
		result_dict[arg_key] = arg_value
	return result_dict


def args_as_list(cli_args_dict: dict[str, str]) -> list[str]:
	"""Convert dictionary of CLI launch arguments to list of strings."""
	arg_list = []
	for dict_key, dict_value in cli_args_dict.items():
		clean_key = dict_key.lstrip('-')
		if dict_value:
			arg_list.append(f'--{clean_key}={dict_value}')
		else:
			arg_list.append(f'--{clean_key}')
	return arg_list


class ProxySettings(BaseModel):
	"""Настройки прокси для трафика Chromium.

	- server: полный URL прокси (например, "http://host:8080" или "socks5://host:1080")
	- bypass: список хостов через запятую, которые нужно обходить
	- username/password: учётные данные, которые страница получит через CDP Fetch.authRequired
	"""

	server: str | None = Field(default=None, description='Proxy URL, e.g. http://host:8080 or socks5://host:1080')
	bypass: str | None = Field(default=None, description='Comma-separated hosts to bypass, e.g. localhost,127.0.0.1,*.internal')
	username: str | None = Field(default=None, description='Proxy auth username')
	password: str | None = Field(default=None, description='Proxy auth password')

	def __getitem__(self, key: str) -> str | None:
		return getattr(self, key)


class BrowserProfile(BaseModel):
	"""Параметры запуска локального Chromium или подключения к уже запущенному через CDP."""

	model_config = ConfigDict(
		extra='ignore',
		validate_assignment=True,
		revalidate_instances='always',
		from_attributes=True,
		validate_by_name=True,
		validate_by_alias=True,
	)

	# Подключение
	cdp_url: str | None = Field(default=None, description='CDP URL for connecting to existing browser instance')
	headers: dict[str, str] | None = Field(default=None, description='Additional HTTP headers to be sent with connect request')
	is_local: bool = Field(default=False, description='Whether this is a local browser instance')

	# Запуск
	executable_path: str | Path | None = Field(
		default=None,
		validation_alias=AliasChoices('browser_binary_path', 'chrome_binary_path', 'executable_path'),
		description='Path to the chromium-based browser executable to use.',
	)
	headless: bool | None = Field(default=None, description='Whether to run the browser in headless or windowed mode.')
	args: list[CliArgStr] = Field(default_factory=list, description='List of *extra* CLI args to pass to the browser when launching.')
	ignore_default_args: list[CliArgStr] | bool = Field(
		default_factory=list, description='Default CLI args to drop, or True to drop all of them.'
	)
	env: dict[str, str | float | bool] | None = Field(
		default=None,
		description='Extra environment variables to set when launching the browser. If None, inherits from the current process.',
	)
	chromium_sandbox: bool = Field(
		default_factory=lambda: not CONFIG.IN_DOCKER,
		description='Whether to enable Chromium sandboxing (recommended unless inside Docker).',
	)
	user_data_dir: str | Path | None = Field(
		default=None, description='Persistent profile directory. None launches with a fresh temporary profile.'
	)
	profile_directory: str = 'Default'

	# Страница
	user_agent: str | None = Field(default=None, description='User agent passed both as --user-agent and via CDP override.')
	viewport: ViewportSize = Field(
		default_factory=lambda: ViewportSize(width=DEFAULT_VIEWPORT_WIDTH, height=DEFAULT_VIEWPORT_HEIGHT),
		description='Page viewport set through Emulation.setDeviceMetricsOverride.',
	)
	window_size: ViewportSize | None = Field(default=None, description='Browser window size to use when headless=False.')
	proxy: ProxySettings | None = Field(
		default=None,
		description='Proxy settings. Use wabridge.session.profile.ProxySettings(server, bypass, username, password)',
	)

	def __repr__(self) -> str:
		return f'BrowserProfile(user_data_dir={self.user_data_dir or "<temp>"}, headless={self.headless}, cdp_url={self.cdp_url})'

	def __str__(self) -> str:
		return 'BrowserProfile'

	@field_validator('user_data_dir', mode='after')
	@classmethod
	def validate_user_data_dir(cls, user_data_path: str | Path | None) -> str | Path | None:
		if user_data_path is None:
			return None
		return Path(user_data_path).expanduser().resolve()

	@model_validator(mode='after')
	def validate_proxy_settings(self) -> Self:
		if self.proxy and (self.proxy.bypass and not self.proxy.server):
			logger.warning('BrowserProfile.proxy.bypass provided but proxy has no server; bypass will be ignored.')
		return self

	@classmethod
	def from_env(cls, **overrides: Any) -> 'BrowserProfile':
		"""Собрать профиль из переменных окружения (CONFIG) и явных параметров, явные важнее."""
		return cls(**{**CONFIG.load_browser_profile_overrides(), **overrides})

	def ensure_user_data_dir(self) -> Path:
		"""Вернуть каталог профиля, создав временный, если он не задан."""
		if self.user_data_dir is None:
			self.user_data_dir = Path(tempfile.mkdtemp(prefix='wabridge-user-data-dir-'))
		user_data_path = Path(self.user_data_dir)
		user_data_path.mkdir(parents=True, exist_ok=True)
		return user_data_path

	def get_args(self) -> list[str]:
		"""Получить список всех аргументов командной строки Chrome для этого профиля (значения по умолчанию, пользовательские и системные)."""

		if self.ignore_default_args is True:
			default_args = []
		elif self.ignore_default_args:
			default_args = [arg for arg in CHROME_DEFAULT_ARGS if arg not in set(self.ignore_default_args)]
		else:
			default_args = CHROME_DEFAULT_ARGS

		assert self.user_data_dir is not None, 'user_data_dir must be set before building launch args'

		pre_conversion_args = [
			*default_args,
			*self.args,
			f'--user-data-dir={self.user_data_dir}',
			f'--profile-directory={self.profile_directory}',
			*(CHROME_DOCKER_ARGS if (CONFIG.IN_DOCKER or not self.chromium_sandbox) else []),
			*(CHROME_HEADLESS_ARGS if self.headless else []),
			*([f'--window-size={self.window_size["width"]},{self.window_size["height"]}'] if self.window_size else []),
		]

		# Флаги прокси
		proxy_server = self.proxy.server if self.proxy else None
		proxy_bypass = self.proxy.bypass if self.proxy else None

		if proxy_server:
			pre_conversion_args.append(f'--proxy-server={proxy_server}')
			if proxy_bypass:
				pre_conversion_args.append(f'--proxy-bypass-list={proxy_bypass}')

		# Флаг User-Agent добавляем, только если пользователь не передал свой
		if not any(arg.startswith('--user-agent') for arg in self.args):
			pre_conversion_args.append(f'--user-agent={self.user_agent or DEFAULT_USER_AGENT}')

		# --disable-features объединяем, а не перезаписываем
		disable_features_values = []
		non_disable_features_args = []

		for arg in pre_conversion_args:
			if arg.startswith('--disable-features='):
				features = arg.split('=', 1)[1]
				disable_features_values.extend(features.split(','))
			else:
				non_disable_features_args.append(arg)

		if disable_features_values:
			unique_features = []
			seen = set()
			for feature in disable_features_values:
				feature = feature.strip()
				if feature and feature not in seen:
					unique_features.append(feature)
					seen.add(feature)
			non_disable_features_args.append(f'--disable-features={",".join(unique_features)}')

		# dict и обратно, чтобы убрать дубликаты остальных аргументов
		return args_as_list(args_as_dict(non_disable_features_args))
