from wabridge.bridge.relay import BridgeRelay

__all__ = ['BridgeRelay']
