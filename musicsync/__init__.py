"""Music library synchronization to file system and Android (adb) targets.

Scans a source library, remuxes or transcodes what the device can't
play, writes it to the target and removes files that no longer have a
source.
"""

__version__ = "1.0.0"

# Core exports
from .core.cancellation import CancellationToken
from .core.config import SyncConfig, TargetDeviceConfig, CharacterLimitations, load_config
from .core.errors import MusicSyncError, ConfigError, AdbError, ConversionError, OperationCancelled
from .core.models import SourceFileInfo, SyncTargetFileInfo, SyncStats
from .core.protocols import SyncTarget, MediaConverter, ProgressReporter

# Text exports
from .text.sanitizer import TextSanitizer
from .text.path_transformer import PathTransformer, PathTransformKind

# Target exports
from .targets.adb import AdbSyncTarget
from .targets.physical import PhysicalSyncTarget
from .targets.factory import SyncTargetFactory

# Service exports
from .services.pipeline import SyncPipeline
from .services.sync import SyncService

# Logging exports
from .logging.rich_logger import RichProgressReporter

__all__ = [
    # Core
    "CancellationToken",
    "SyncConfig",
    "TargetDeviceConfig",
    "CharacterLimitations",
    "load_config",
    "MusicSyncError",
    "ConfigError",
    "AdbError",
    "ConversionError",
    "OperationCancelled",
    "SourceFileInfo",
    "SyncTargetFileInfo",
    "SyncStats",
    "SyncTarget",
    "MediaConverter",
    "ProgressReporter",
    # Text
    "TextSanitizer",
    "PathTransformer",
    "PathTransformKind",
    # Targets
    "AdbSyncTarget",
    "PhysicalSyncTarget",
    "SyncTargetFactory",
    # Services
    "SyncPipeline",
    "SyncService",
    # Logging
    "RichProgressReporter",
]
