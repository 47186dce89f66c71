import pytest

from wabridge.exceptions import VersionResolveError
from wabridge.webcache import LocalWebCache, NoWebCache, create_web_cache
from wabridge.webcache import local as local_module

INDEX_HTML = '<html><link rel="manifest" href="/data/manifest-2.2412.54.json"></html>'


async def test_persist_then_resolve(tmp_path):
	cache = LocalWebCache(path=tmp_path / 'wwebjs')

	version = await cache.persist(INDEX_HTML)

	assert version == '2.2412.54'
	assert (tmp_path / 'wwebjs' / '2.2412.54.html').read_text(encoding='utf-8') == INDEX_HTML
	assert await cache.resolve('2.2412.54') == INDEX_HTML


async def test_persist_without_manifest_skips(tmp_path):
	cache = LocalWebCache(path=tmp_path)

	assert await cache.persist('<html></html>') is None
	assert list(tmp_path.iterdir()) == []


async def test_missing_version_returns_none(tmp_path, mocker):
	logger = mocker.patch.object(local_module, 'logger')

	assert await LocalWebCache(path=tmp_path).resolve('2.3000.1') is None
	logger.debug.assert_called_once()


async def test_strict_cache_raises_on_missing_version(tmp_path):
	cache = LocalWebCache(path=tmp_path, strict=True)

	with pytest.raises(VersionResolveError, match='2.3000.1'):
		await cache.resolve('2.3000.1')


async def test_no_web_cache():
	cache = NoWebCache()

	assert await cache.resolve('2.2412.54') is None
	assert await cache.persist(INDEX_HTML) is None


def test_create_web_cache(tmp_path):
	assert isinstance(create_web_cache(), NoWebCache)
	local = create_web_cache('local', path=tmp_path, strict=True)
	assert isinstance(local, LocalWebCache)
	assert local.strict is True
	with pytest.raises(ValueError):
		create_web_cache('remote')
