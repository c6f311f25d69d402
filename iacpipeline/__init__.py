"""
IaC Pipeline - plan, scan, estimate and apply infrastructure changes as an ordered stage pipeline.
"""

__version__ = "0.1.0"
__author__ = "IaC Pipeline Team"

from .core import PipelineOrchestrator
from .config import ConfigManager
from . import adapters  # noqa: F401  registers the built-in adapters

__all__ = ["PipelineOrchestrator", "ConfigManager"]
