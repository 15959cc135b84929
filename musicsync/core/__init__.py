"""Core domain models, configuration and protocols."""
from .protocols import (
    SyncTarget,
    MediaConverter,
    ProgressReporter,
)
from .models import (
    ActionKind,
    SourceFileInfo,
    SyncTargetFileInfo,
    CompareResult,
    ConvertWorkItem,
    ConversionResult,
    OutputFile,
    SyncStats,
)
from .config import (
    SyncConfig,
    TargetDeviceConfig,
    CharacterLimitations,
    NormalizationMode,
    load_config,
)
from .cancellation import CancellationToken

__all__ = [
    # Protocols
    "SyncTarget",
    "MediaConverter",
    "ProgressReporter",
    # Models
    "ActionKind",
    "SourceFileInfo",
    "SyncTargetFileInfo",
    "CompareResult",
    "ConvertWorkItem",
    "ConversionResult",
    "OutputFile",
    "SyncStats",
    # Config
    "SyncConfig",
    "TargetDeviceConfig",
    "CharacterLimitations",
    "NormalizationMode",
    "load_config",
    # Cancellation
    "CancellationToken",
]
