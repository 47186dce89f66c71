import base64

import pytest

from wabridge.commands.content import guess_type, load_content, random_file_name, sniff_kind

PNG_BYTES = b'\x89PNG\r\n\x1a\n' + b'\x00' * 32
PNG_BASE64 = base64.b64encode(PNG_BYTES).decode('ascii')


@pytest.mark.parametrize(
	'content, kind',
	[
		(PNG_BYTES, 'bytes'),
		(bytearray(PNG_BYTES), 'bytes'),
		(PNG_BASE64, 'base64'),
		(f'data:image/png;base64,{PNG_BASE64}', 'data_uri'),
		('https://example.com/cat.png', 'url'),
		('http://example.com/cat.png', 'url'),
		('hello world', None),
		('see https://example.com', None),
		(42, None),
	],
)
def test_sniff_kind(content, kind):
	assert sniff_kind(content) == kind


def test_sniff_existing_file(tmp_path):
	path = tmp_path / 'photo.png'
	path.write_bytes(PNG_BYTES)

	assert sniff_kind(str(path)) == 'file'
	assert sniff_kind(str(tmp_path / 'missing file.png')) is None


def test_guess_type_by_signature_then_name():
	assert guess_type(PNG_BYTES) == ('image/png', '.png')
	assert guess_type(b'name,age\n', 'people.csv')[0] == 'text/csv'
	assert guess_type(b'\x01\x02\x03') == ('application/octet-stream', '.bin')


async def test_load_base64():
	loaded = await load_content(PNG_BASE64, 'base64')

	assert loaded.data == PNG_BYTES
	assert loaded.mimetype == 'image/png'
	assert loaded.size == len(PNG_BYTES)
	assert loaded.as_base64() == PNG_BASE64


async def test_load_data_uri_uses_declared_type_for_unknown_payload():
	payload = base64.b64encode(b'{"a": 1}').decode('ascii')

	loaded = await load_content(f'data:application/json;base64,{payload}', 'data_uri')

	assert loaded.mimetype == 'application/json'
	assert loaded.ext == '.json'
	assert not loaded.is_unknown


async def test_load_file(tmp_path):
	path = tmp_path / 'photo.png'
	path.write_bytes(PNG_BYTES)

	loaded = await load_content(str(path), 'file')

	assert loaded.source_name == 'photo.png'
	assert loaded.ext == '.png'


async def test_load_unknown_kind():
	with pytest.raises(ValueError):
		await load_content('x', 'ftp')


def test_random_file_name():
	name = random_file_name('.png')

	assert name.endswith('.png')
	assert name[: -len('.png')].isdigit()
