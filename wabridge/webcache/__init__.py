from wabridge.webcache.local import LocalWebCache, NoWebCache, WebCache, create_web_cache

__all__ = ['LocalWebCache', 'NoWebCache', 'WebCache', 'create_web_cache']
