"""Sync target implementations."""
from .adb import AdbSyncTarget, resolve_device_serial
from .factory import SyncTargetFactory, parse_target_uri
from .physical import PhysicalSyncTarget

__all__ = [
    "AdbSyncTarget",
    "PhysicalSyncTarget",
    "SyncTargetFactory",
    "parse_target_uri",
    "resolve_device_serial",
]
