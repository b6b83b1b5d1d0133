"""Configuration for the HCC pipeline."""

from hcc.config.settings import PROJECT_ROOT, Settings, settings
from hcc.config.policy import PipelinePolicy

__all__ = [
    "PROJECT_ROOT",
    "Settings",
    "settings",
    "PipelinePolicy",
]
