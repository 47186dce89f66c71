import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from wabridge.config import CONFIG


def addLoggingLevel(name: str, level_value: int, method_name: str | None = None):
	"""
	Добавляет новый уровень логирования в модуль `logging` и в текущий класс логгера.

	`name` становится атрибутом модуля `logging` со значением `level_value`,
	`method_name` становится удобным методом и у `logging`, и у класса из
	`logging.getLoggerClass()`. Если `method_name` не указан, используется `name.lower()`.

	Выбрасывает `AttributeError`, если уровень или метод уже определены.

	Пример
	-------
	>>> addLoggingLevel('TRACE', logging.DEBUG - 5)
	>>> logging.getLogger(__name__).setLevel('TRACE')
	>>> logging.getLogger(__name__).trace('that worked')
	"""
	if not method_name:
		method_name = name.lower()

	if hasattr(logging, name):
		raise AttributeError(f'{name} already defined in logging module')
	if hasattr(logging, method_name):
		raise AttributeError(f'{method_name} already defined in logging module')
	if hasattr(logging.getLoggerClass(), method_name):
		raise AttributeError(f'{method_name} already defined in logger class')

	def log_at_level(self, message, *args, **kwargs):
		if self.isEnabledFor(level_value):
			self._log(level_value, message, args, **kwargs)

	def log_to_root(message, *args, **kwargs):
		logging.log(level_value, message, *args, **kwargs)

	logging.addLevelName(level_value, name)
	setattr(logging, name, level_value)
	setattr(logging.getLoggerClass(), method_name, log_at_level)
	setattr(logging, method_name, log_to_root)


def setup_logging(stream=None, log_level=None, force_setup=False, debug_log_file=None, info_log_file=None):
	"""Настроить логирование для клиента.

	Args:
		stream: Output stream for logs (default: sys.stdout)
		log_level: Уровень логирования (по умолчанию CONFIG.WABRIDGE_LOGGING_LEVEL)
		force_setup: Force reconfiguration even if handlers already exist
		debug_log_file: Path to log file for debug level logs only
		info_log_file: Path to log file for info level logs only
	"""
	try:
		addLoggingLevel('RESULT', 35)
	except AttributeError:
		pass  # уровень уже добавлен

	level_type = log_level or CONFIG.WABRIDGE_LOGGING_LEVEL

	if logging.getLogger().hasHandlers() and not force_setup:
		return logging.getLogger('wabridge')

	root_logger = logging.getLogger()
	root_logger.handlers = []

	class WABridgeFormatter(logging.Formatter):
		def __init__(self, format_string, level_value):
			super().__init__(format_string)
			self.level_value = level_value

		def format(self, log_record):
			# Короткие имена компонентов только вне режима DEBUG
			if self.level_value > logging.DEBUG and isinstance(log_record.name, str) and log_record.name.startswith('wabridge.'):
				if 'PageSession' in log_record.name:
					log_record.name = 'PageSession'
				elif 'Client' in log_record.name:
					log_record.name = 'Client'
				else:
					name_parts = log_record.name.split('.')
					if len(name_parts) >= 2:
						log_record.name = name_parts[-1]
			return super().format(log_record)

	console_handler = logging.StreamHandler(stream or sys.stdout)

	if level_type == 'result':
		effective_level = 35
	elif level_type == 'debug':
		effective_level = logging.DEBUG
	else:
		effective_level = logging.INFO

	if level_type == 'result':
		console_handler.setLevel('RESULT')
		console_handler.setFormatter(WABridgeFormatter('%(message)s', effective_level))
	else:
		console_handler.setLevel(effective_level)
		console_handler.setFormatter(WABridgeFormatter('%(levelname)-8s [%(name)s] %(message)s', effective_level))

	root_logger.addHandler(console_handler)

	file_handler_list = []

	if debug_log_file:
		debug_file_handler = logging.FileHandler(debug_log_file, encoding='utf-8')
		debug_file_handler.setLevel(logging.DEBUG)
		debug_file_handler.setFormatter(
			WABridgeFormatter('%(asctime)s - %(levelname)-8s [%(name)s] %(message)s', logging.DEBUG)
		)
		file_handler_list.append(debug_file_handler)
		root_logger.addHandler(debug_file_handler)

	if info_log_file:
		info_file_handler = logging.FileHandler(info_log_file, encoding='utf-8')
		info_file_handler.setLevel(logging.INFO)
		info_file_handler.setFormatter(WABridgeFormatter('%(asctime)s - %(levelname)-8s [%(name)s] %(message)s', logging.INFO))
		file_handler_list.append(info_file_handler)
		root_logger.addHandler(info_file_handler)

	final_log_level = logging.DEBUG if debug_log_file else effective_level
	root_logger.setLevel(final_log_level)

	main_logger = logging.getLogger('wabridge')
	main_logger.propagate = False
	main_logger.addHandler(console_handler)
	for file_handler in file_handler_list:
		main_logger.addHandler(file_handler)
	main_logger.setLevel(final_log_level)

	# Логгер bubus: события шины видны на уровне INFO
	bubus_main_logger = logging.getLogger('bubus')
	bubus_main_logger.propagate = False
	bubus_main_logger.addHandler(console_handler)
	for file_handler in file_handler_list:
		bubus_main_logger.addHandler(file_handler)
	bubus_main_logger.setLevel(logging.INFO if level_type == 'result' else final_log_level)

	# Логи CDP управляются отдельной переменной CDP_LOGGING_LEVEL
	cdp_level_string = CONFIG.CDP_LOGGING_LEVEL.upper()
	cdp_logging_level = getattr(logging, cdp_level_string, logging.WARNING)
	for cdp_logger_name in ['websockets.client', 'cdp_use', 'cdp_use.client', 'cdp_use.cdp', 'cdp_use.cdp.registry']:
		cdp_logger_instance = logging.getLogger(cdp_logger_name)
		cdp_logger_instance.setLevel(cdp_logging_level)
		cdp_logger_instance.addHandler(console_handler)
		cdp_logger_instance.propagate = False

	# Заглушить логгеры сторонних библиотек
	for external_logger_name in ['httpx', 'httpcore', 'aiohttp', 'urllib3', 'asyncio', 'charset_normalizer', 'websockets']:
		external_logger = logging.getLogger(external_logger_name)
		external_logger.setLevel(logging.ERROR)
		external_logger.propagate = False

	return main_logger
