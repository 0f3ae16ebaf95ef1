"""
Postprocessing: raw model outputs to labelled, suppressed Detections.
"""

from .decoder import DetectionDecoder
from .labels import LabelTable
from .nms import batched_nms, box_iou, nms

__all__ = ["DetectionDecoder", "LabelTable", "batched_nms", "box_iou", "nms"]
