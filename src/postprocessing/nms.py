"""
IoU and non-maximum suppression over (N, 4) xyxy box arrays.

Ordering is deterministic: candidates are ranked by score descending with
ties broken by original index (stable sort).
"""

from __future__ import annotations

from typing import List

import numpy as np


def box_iou(box: np.ndarray, boxes: np.ndarray) -> np.ndarray:
    """
    IoU between one xyxy box and an (N, 4) array of boxes.

    Matches BoundingBox.iou term for term so both give identical values.
    """
    ix1 = np.maximum(box[0], boxes[:, 0])
    iy1 = np.maximum(box[1], boxes[:, 1])
    ix2 = np.minimum(box[2], boxes[:, 2])
    iy2 = np.minimum(box[3], boxes[:, 3])

    overlap = (ix2 > ix1) & (iy2 > iy1)
    intersection = np.where(overlap, (ix2 - ix1) * (iy2 - iy1), 0.0)

    area = max(0.0, box[2] - box[0]) * max(0.0, box[3] - box[1])
    areas = np.maximum(boxes[:, 2] - boxes[:, 0], 0.0) * np.maximum(boxes[:, 3] - boxes[:, 1], 0.0)
    union = area + areas - intersection

    iou = np.zeros(len(boxes), dtype=np.float64)
    valid = overlap & (union > 0)
    iou[valid] = intersection[valid] / union[valid]
    return iou


def rank(scores: np.ndarray) -> np.ndarray:
    """Indices sorted by score descending, ties by index ascending."""
    return np.argsort(-scores, kind="stable")


def nms(boxes: np.ndarray, scores: np.ndarray, iou_threshold: float) -> List[int]:
    """
    Greedy NMS for a single class.

    A box is suppressed when its IoU with an already kept box is greater than
    or equal to `iou_threshold`, so kept boxes always overlap strictly less.

    Returns:
        Kept indices into `boxes`, best first.
    """
    if len(boxes) == 0:
        return []

    order = rank(scores)
    suppressed = np.zeros(len(boxes), dtype=bool)
    keep: List[int] = []

    for pos, i in enumerate(order):
        if suppressed[i]:
            continue
        keep.append(int(i))

        rest = order[pos + 1:]
        rest = rest[~suppressed[rest]]
        if rest.size == 0:
            continue
        ious = box_iou(boxes[i], boxes[rest])
        suppressed[rest[ious >= iou_threshold]] = True

    return keep


def batched_nms(
    boxes: np.ndarray,
    scores: np.ndarray,
    class_ids: np.ndarray,
    iou_threshold: float,
) -> List[int]:
    """
    Per-class NMS. Boxes of different classes never suppress each other.

    Returns:
        Kept indices ordered by score descending, ties by index ascending.
    """
    keep: List[int] = []
    for class_id in np.unique(class_ids):
        members = np.nonzero(class_ids == class_id)[0]
        kept = nms(boxes[members], scores[members], iou_threshold)
        keep.extend(int(members[k]) for k in kept)

    if not keep:
        return []
    keep_arr = np.array(sorted(keep))
    return [int(i) for i in keep_arr[rank(scores[keep_arr])]]
