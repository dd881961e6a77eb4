"""rtchat - multi-channel chat core with broadcast sync between replicas."""

__version__ = "0.4.0"
__logo__ = "#"
