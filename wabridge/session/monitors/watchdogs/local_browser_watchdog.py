"""Watchdog локального Chromium: запуск подпроцесса под WhatsApp Web и его завершение."""

import asyncio
import os
import shutil
from pathlib import Path
from typing import Any, ClassVar

import psutil
from bubus import BaseEvent
from pydantic import PrivateAttr

from wabridge.exceptions import BrowserLaunchError
from wabridge.session.events import (
	BrowserKillEvent,
	BrowserLaunchEvent,
	BrowserLaunchResult,
	BrowserStopEvent,
)
from wabridge.session.watchdog_base import BaseWatchdog

TEMP_PROFILE_PREFIX = 'wabridge-tmp-'

# Ошибки Chromium, которые означают занятый или испорченный каталог профиля
_PROFILE_LOCK_ERRORS = ('singletonlock', 'user data directory', 'cannot create', 'already in use')


class LocalBrowserWatchdog(BaseWatchdog):
	"""Управляет подпроцессом локального браузера, в котором живёт вкладка WhatsApp Web."""

	LISTENS_TO: ClassVar[list[type[BaseEvent[Any]]]] = [
		BrowserLaunchEvent,
		BrowserKillEvent,
		BrowserStopEvent,
	]

	EMITS: ClassVar[list[type[BaseEvent[Any]]]] = []

	_subprocess: psutil.Process | None = PrivateAttr(default=None)
	_temp_dirs_to_cleanup: list[Path] = PrivateAttr(default_factory=list)

	async def on_BrowserLaunchEvent(self, event: BrowserLaunchEvent) -> BrowserLaunchResult:
		"""Запустить локальный браузер и вернуть адрес его CDP."""
		self.logger.debug('[LocalBrowserWatchdog] Received BrowserLaunchEvent, launching local browser...')
		try:
			browser_process, cdp_endpoint = await self._launch_browser()
		except BrowserLaunchError:
			raise
		except Exception as e:
			self.logger.error(f'[LocalBrowserWatchdog] ❌ Failed to launch local browser: {type(e).__name__}: {e}')
			raise BrowserLaunchError(f'Failed to launch local browser: {e}') from e

		self._subprocess = browser_process
		return BrowserLaunchResult(cdp_url=cdp_endpoint)

	async def on_BrowserKillEvent(self, event: BrowserKillEvent) -> None:
		"""Завершить подпроцесс браузера и удалить временные профили."""
		self.logger.debug('[LocalBrowserWatchdog] Killing local browser process')

		if self._subprocess:
			await self._cleanup_process(self._subprocess)
			self._subprocess = None

		for temp_directory in self._temp_dirs_to_cleanup:
			self._cleanup_temp_dir(temp_directory)
		self._temp_dirs_to_cleanup.clear()

		self.logger.debug('[LocalBrowserWatchdog] Browser cleanup completed')

	async def on_BrowserStopEvent(self, event: BrowserStopEvent) -> None:
		"""Отправить BrowserKillEvent без ожидания, чтобы он обработался после остальных обработчиков остановки."""
		if self.browser_session.is_local and self._subprocess:
			self.logger.debug('[LocalBrowserWatchdog] BrowserStopEvent received, dispatching BrowserKillEvent')
			self.event_bus.dispatch(BrowserKillEvent())

	async def _launch_browser(self, max_retries: int = 3) -> tuple[psutil.Process, str]:
		"""Запустить процесс браузера и вернуть (process, cdp_url).

		Каталог профиля не подменяется временным: для LocalAuth это означало бы
		молча потерять сохранённую сессию WhatsApp. Вместо этого при ошибке блокировки
		снимается устаревший SingletonLock, если профилем не владеет живой процесс.
		"""
		browser_profile = self.browser_session.browser_profile
		profile_was_temporary = browser_profile.user_data_dir is None
		user_data_dir = browser_profile.ensure_user_data_dir()
		if profile_was_temporary:
			self._temp_dirs_to_cleanup.append(user_data_dir)

		executable = browser_profile.executable_path or self._find_installed_browser_path()
		if not executable:
			raise BrowserLaunchError(
				'No local Chrome/Chromium install found. Install Chrome or set executable_path / WABRIDGE_EXECUTABLE_PATH'
			)
		self.logger.debug(f'[LocalBrowserWatchdog] 📦 Using local browser executable_path= {executable}')

		last_error: Exception | None = None
		for retry_attempt in range(max_retries):
			chrome_args = browser_profile.get_args()
			cdp_port = self._find_free_port()
			chrome_args.append(f'--remote-debugging-port={cdp_port}')

			self.logger.debug(f'[LocalBrowserWatchdog] 🚀 Launching browser subprocess with {len(chrome_args)} args...')
			self.logger.debug(f'[LocalBrowserWatchdog] 📂 user_data_dir={user_data_dir}')
			# Вывод браузера не читаем: за часы работы заполненный PIPE заблокировал бы Chromium
			browser_subprocess = await asyncio.create_subprocess_exec(
				str(executable),
				*chrome_args,
				stdout=asyncio.subprocess.DEVNULL,
				stderr=asyncio.subprocess.DEVNULL,
				env={**os.environ, **{key: str(value) for key, value in (browser_profile.env or {}).items()}},
			)
			self.logger.debug(
				f'[LocalBrowserWatchdog] 🎭 Browser running with browser_pid= {browser_subprocess.pid} 🔗 listening on CDP port :{cdp_port}'
			)
			browser_process = psutil.Process(browser_subprocess.pid)

			try:
				cdp_endpoint = await self._wait_for_cdp_url(cdp_port, browser_subprocess)
				return browser_process, cdp_endpoint
			except Exception as launch_error:
				last_error = launch_error
				await self._cleanup_process(browser_process)
				error_message = str(launch_error).lower()
				is_lock_error = any(keyword in error_message for keyword in _PROFILE_LOCK_ERRORS)
				self.logger.warning(f'Browser launch failed (attempt {retry_attempt + 1}/{max_retries}): {launch_error}')
				if is_lock_error and retry_attempt < max_retries - 1 and self._remove_stale_profile_lock(user_data_dir):
					await asyncio.sleep(0.5)
					continue
				if not isinstance(launch_error, TimeoutError) or retry_attempt == max_retries - 1:
					break

		raise BrowserLaunchError(f'Failed to launch browser after {max_retries} attempts: {last_error}')

	def _remove_stale_profile_lock(self, user_data_dir: Path) -> bool:
		"""Удалить SingletonLock, если ни один живой процесс не использует этот профиль."""
		profile_flag = f'--user-data-dir={user_data_dir}'
		for running_process in psutil.process_iter(['cmdline']):
			try:
				if profile_flag in (running_process.info.get('cmdline') or []):
					self.logger.warning(f'⚠️ Profile {user_data_dir} is in use by pid {running_process.pid}, not touching its lock')
					return False
			except (psutil.NoSuchProcess, psutil.AccessDenied):
				continue

		removed_any = False
		for lock_name in ('SingletonLock', 'SingletonSocket', 'SingletonCookie'):
			lock_path = user_data_dir / lock_name
			if lock_path.exists() or lock_path.is_symlink():
				lock_path.unlink(missing_ok=True)
				removed_any = True
		if removed_any:
			self.logger.info(f'🔓 Removed stale profile lock in {user_data_dir}')
		return removed_any

	@staticmethod
	def _find_installed_browser_path() -> str | None:
		"""Найти исполняемый файл Chrome/Chromium в обычных местах установки.

		Returns:
			Путь к исполняемому файлу браузера или None, если не найден
		"""
		import glob
		import platform

		platform_type = platform.system()
		playwright_base_path = os.environ.get('PLAYWRIGHT_BROWSERS_PATH')

		if platform_type == 'Darwin':
			playwright_base_path = playwright_base_path or '~/Library/Caches/ms-playwright'
			path_patterns = [
				'/Applications/Google Chrome.app/Contents/MacOS/Google Chrome',
				'/Applications/Chromium.app/Contents/MacOS/Chromium',
				f'{playwright_base_path}/chromium-*/chrome-mac/Chromium.app/Contents/MacOS/Chromium',
				'/Applications/Google Chrome Canary.app/Contents/MacOS/Google Chrome Canary',
				'/Applications/Brave Browser.app/Contents/MacOS/Brave Browser',
			]
		elif platform_type == 'Linux':
			playwright_base_path = playwright_base_path or '~/.cache/ms-playwright'
			path_patterns = [
				'/usr/bin/google-chrome-stable',
				'/usr/bin/google-chrome',
				'/usr/local/bin/google-chrome',
				'/usr/bin/chromium',
				'/usr/bin/chromium-browser',
				'/usr/local/bin/chromium',
				'/snap/bin/chromium',
				f'{playwright_base_path}/chromium-*/chrome-linux/chrome',
				'/usr/bin/brave-browser',
			]
		elif platform_type == 'Windows':
			playwright_base_path = playwright_base_path or r'%LOCALAPPDATA%\ms-playwright'
			path_patterns = [
				r'C:\Program Files\Google\Chrome\Application\chrome.exe',
				r'C:\Program Files (x86)\Google\Chrome\Application\chrome.exe',
				r'%LOCALAPPDATA%\Google\Chrome\Application\chrome.exe',
				f'{playwright_base_path}\\chromium-*\\chrome-win\\chrome.exe',
				r'C:\Program Files\Chromium\Application\chrome.exe',
				r'C:\Program Files (x86)\Microsoft\Edge\Application\msedge.exe',
				r'C:\Program Files\Microsoft\Edge\Application\msedge.exe',
			]
		else:
			path_patterns = []

		for path_pattern in path_patterns:
			pattern_string = str(Path(path_pattern).expanduser())
			if platform_type == 'Windows' and '%LOCALAPPDATA%' in pattern_string:
				pattern_string = pattern_string.replace('%LOCALAPPDATA%', os.environ.get('LOCALAPPDATA', ''))

			if '*' in pattern_string:
				matched_paths = sorted(glob.glob(pattern_string))
				# Последнее совпадение - наивысшая версия
				if matched_paths and Path(matched_paths[-1]).is_file():
					return matched_paths[-1]
			elif Path(pattern_string).is_file():
				return pattern_string

		return None

	@staticmethod
	def _find_free_port() -> int:
		"""Найти свободный порт для интерфейса отладки."""
		import socket

		with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as socket_handle:
			socket_handle.bind(('127.0.0.1', 0))
			socket_handle.listen(1)
			return socket_handle.getsockname()[1]

	@staticmethod
	async def _wait_for_cdp_url(cdp_port: int, browser_subprocess: Any = None, timeout: float = 30) -> str:
		"""Подождать, пока браузер откроет /json/version, и вернуть CDP URL."""
		import aiohttp

		loop = asyncio.get_running_loop()
		begin_time = loop.time()

		while loop.time() - begin_time < timeout:
			if browser_subprocess is not None and browser_subprocess.returncode is not None:
				raise BrowserLaunchError(
					f'Browser exited with code {browser_subprocess.returncode} before opening CDP port (user data directory may be locked)'
				)
			try:
				async with aiohttp.ClientSession() as http_session:
					async with http_session.get(f'http://127.0.0.1:{cdp_port}/json/version') as http_response:
						if http_response.status == 200:
							return f'http://127.0.0.1:{cdp_port}/'
			except aiohttp.ClientError:
				pass
			# Chrome ещё стартует
			await asyncio.sleep(0.1)

		raise TimeoutError(f'Browser did not start within {timeout} seconds')

	@staticmethod
	async def _cleanup_process(browser_process: psutil.Process) -> None:
		"""Завершить процесс браузера: terminate, до 5 секунд ожидания, затем kill."""
		if not browser_process:
			return

		try:
			browser_process.terminate()

			for _ in range(50):
				if not browser_process.is_running():
					return
				await asyncio.sleep(0.1)

			if browser_process.is_running():
				browser_process.kill()
				await asyncio.sleep(0.1)
		except psutil.NoSuchProcess:
			pass

	def _cleanup_temp_dir(self, temp_directory: Path | str) -> None:
		"""Удалить временный профиль, созданный этим watchdog."""
		directory_path = Path(temp_directory)
		if directory_path.name.startswith((TEMP_PROFILE_PREFIX, 'wabridge-user-data-dir-')):
			shutil.rmtree(directory_path, ignore_errors=True)

	@property
	def browser_pid(self) -> int | None:
		"""ID процесса браузера."""
		if self._subprocess:
			return self._subprocess.pid
		return None

