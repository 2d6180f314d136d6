"""Wire protocol, transports, clock sync, pose history and video sharding for streaming VR to a headset."""

__version__ = "0.1.0"