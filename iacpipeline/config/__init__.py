"""Configuration management components."""

from .manager import ConfigManager
from .schema import PipelineConfig, ValidationError
from .presets import build_stage_definitions, build_standard_pipeline, enable_flags

__all__ = [
    "ConfigManager",
    "PipelineConfig",
    "ValidationError",
    "build_stage_definitions",
    "build_standard_pipeline",
    "enable_flags",
]
