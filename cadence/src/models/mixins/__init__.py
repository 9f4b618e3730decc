"""
Model mixins for shared functionality across entities.
"""

from cadence.src.models.mixins.guid import GuidMixin

__all__ = ["GuidMixin"]
