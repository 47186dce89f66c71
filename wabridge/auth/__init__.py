from wabridge.auth.linking import LinkingMethod, PhoneLinking, QrLinking
from wabridge.auth.state_machine import AuthResult, AuthState, AuthStateMachine
from wabridge.auth.strategies import AuthNeededResult, AuthStrategy, LegacySessionAuth, LocalAuth, NoAuth

__all__ = [
	'AuthNeededResult',
	'AuthResult',
	'AuthState',
	'AuthStateMachine',
	'AuthStrategy',
	'LegacySessionAuth',
	'LinkingMethod',
	'LocalAuth',
	'NoAuth',
	'PhoneLinking',
	'QrLinking',
]
