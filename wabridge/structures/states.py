from enum import Enum, IntEnum


class WAState(str, Enum):
	"""Состояния подключения WhatsApp Web (Store.AppState.state)."""

	CONFLICT = 'CONFLICT'
	CONNECTED = 'CONNECTED'
	DEPRECATED_VERSION = 'DEPRECATED_VERSION'
	OPENING = 'OPENING'
	PAIRING = 'PAIRING'
	PROXYBLOCK = 'PROXYBLOCK'
	SMB_TOS_BLOCK = 'SMB_TOS_BLOCK'
	TIMEOUT = 'TIMEOUT'
	TOS_BLOCK = 'TOS_BLOCK'
	UNLAUNCHED = 'UNLAUNCHED'
	UNPAIRED = 'UNPAIRED'
	UNPAIRED_IDLE = 'UNPAIRED_IDLE'


class MessageAck(IntEnum):
	ACK_ERROR = -1
	ACK_PENDING = 0
	ACK_SERVER = 1
	ACK_DEVICE = 2
	ACK_READ = 3
	ACK_PLAYED = 4


class SessionState(str, Enum):
	"""Жизненный цикл сессии клиента."""

	LAUNCHING = 'launching'
	AWAITING_AUTH = 'awaiting-auth'
	AUTHENTICATING = 'authenticating'
	READY = 'ready'
	DISCONNECTED = 'disconnected'
	DESTROYED = 'destroyed'
