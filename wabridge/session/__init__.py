from typing import TYPE_CHECKING

# Заглушки типов для ленивых импортов
if TYPE_CHECKING:
	from .profile import BrowserProfile, ProxySettings, ViewportSize
	from .session import PageSession


# Словарь для ленивой загрузки компонентов сессии
_LAZY_IMPORTS = {
	'PageSession': ('.session', 'PageSession'),
	'BrowserProfile': ('.profile', 'BrowserProfile'),
	'ProxySettings': ('.profile', 'ProxySettings'),
	'ViewportSize': ('.profile', 'ViewportSize'),
}


def __getattr__(name: str):
	"""Механизм ленивой загрузки: cdp_use и bubus импортируются только при первом обращении."""
	if name not in _LAZY_IMPORTS:
		raise AttributeError(f"module '{__name__}' has no attribute '{name}'")

	module_path, attr_name = _LAZY_IMPORTS[name]
	full_module_path = f'wabridge.session{module_path}'
	try:
		from importlib import import_module

		module = import_module(full_module_path)
		attr = getattr(module, attr_name)
		globals()[name] = attr
		return attr
	except ImportError as e:
		raise ImportError(f'Failed to import {name} from {full_module_path}: {e}') from e


__all__ = [
	'BrowserProfile',
	'PageSession',
	'ProxySettings',
	'ViewportSize',
]
