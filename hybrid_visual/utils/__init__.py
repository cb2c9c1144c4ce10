"""Cross-cutting utilities (lowest dependency layer).

This package provides shared primitives for:
    - Settings validation (validators)
    - Unified logging (logging_config)
    - Stage timing (profiler)
    - Artifact fingerprints (hashing)
    - One-time initialization of process-wide resources (once)

No module in utils/ may import from upper layers (pixel_engine, perceptual, hybrid).

Convenience imports:
    from hybrid_visual.utils import validators, profiler
    from hybrid_visual.utils.logging_config import setup_logging, get_logger
"""

from . import hashing
from . import logging_config
from . import once
from . import profiler
from . import validators

from .logging_config import get_logger, log_context, push_context, setup_logging

__all__ = [
    # Modules
    'hashing',
    'logging_config',
    'once',
    'profiler',
    'validators',
    # Direct exports
    'setup_logging',
    'get_logger',
    'push_context',
    'log_context',
]
