from wabridge.structures.models import (
	BatteryInfo,
	Call,
	Chat,
	ClientInfo,
	Contact,
	CreateGroupResult,
	GroupNotification,
	InviteV4,
	Label,
	Location,
	Message,
	MessageKey,
	MessageMedia,
	Reaction,
)
from wabridge.structures.states import MessageAck, SessionState, WAState

__all__ = [
	'BatteryInfo',
	'Call',
	'Chat',
	'ClientInfo',
	'Contact',
	'CreateGroupResult',
	'GroupNotification',
	'InviteV4',
	'Label',
	'Location',
	'Message',
	'MessageAck',
	'MessageKey',
	'MessageMedia',
	'Reaction',
	'SessionState',
	'WAState',
]
