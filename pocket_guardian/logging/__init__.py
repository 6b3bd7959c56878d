"""
Structured logging for the pocket guardian service
"""

from pocket_guardian.logging.setup import get_logger, setup_logging

__all__ = ["setup_logging", "get_logger"]
