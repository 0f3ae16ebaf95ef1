"""
Tracking module.

The tracker debounces per-frame detections into stable, confirmed tracks.
"""

from .tracker import SignTracker

__all__ = ["SignTracker"]
