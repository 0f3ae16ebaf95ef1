"""
Decoding of raw model outputs into Detections.

Steps, in order:
1. Layout decoding into candidate boxes and per-class scores.
2. Confidence thresholding on each candidate's best class score.
3. Per-class greedy NMS on the final normalized boxes.
4. Label lookup; unknown class ids are dropped with a one-time warning.

Supported layouts:
- "yolov8": rows of [box(4), class scores(C)], optionally channel-first (1, 4+C, N).
  When output_transposed is unset the candidate axis is the one whose size
  matches the label table's class count.
- "yolov5": rows of [box(4), objectness, class scores(C)].
- "classifier": a single score vector (C); the box covers the whole frame.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Set, Tuple

import numpy as np

from inference.backend import RawOutput
from models.config import PostprocessConfig
from models.detection import BoundingBox, Detection
from models.errors import InferenceError
from preprocessing.tensor import LetterboxTransform
from .labels import LabelTable
from .nms import batched_nms


def _sigmoid(x: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-x))


def _softmax(x: np.ndarray) -> np.ndarray:
    shifted = x - np.max(x, axis=-1, keepdims=True)
    e = np.exp(shifted)
    return e / np.sum(e, axis=-1, keepdims=True)


class DetectionDecoder:
    """
    Postprocessor turning RawOutput into an ordered list of Detections.

    Output order is confidence descending, ties by original candidate index,
    so identical inputs always produce identical sequences.
    """

    def __init__(self, cfg: PostprocessConfig, labels: LabelTable, input_size: Tuple[int, int]):
        """
        Args:
            cfg: Postprocessing configuration.
            labels: Class id to label table.
            input_size: Model input (width, height), used for normalized box coordinates.
        """
        self.cfg = cfg
        self.labels = labels
        self.input_width, self.input_height = int(input_size[0]), int(input_size[1])
        self._warned_unknown: Set[int] = set()

    def decode(
        self,
        raw: RawOutput,
        transform: Optional[LetterboxTransform] = None,
        timestamp: float = 0.0,
    ) -> List[Detection]:
        """
        Decode one forward pass.

        Args:
            raw: Model outputs for the frame.
            transform: Geometry used by the preprocessor; identity if omitted.
            timestamp: Capture timestamp stamped on each Detection.

        Raises:
            InferenceError: If the output tensor does not fit the configured layout.
        """
        if not raw.outputs:
            raise InferenceError("Model produced no outputs")
        if transform is None:
            transform = LetterboxTransform.identity(self.input_width, self.input_height)

        arr = np.asarray(raw.primary, dtype=np.float64)
        if self.cfg.output_layout == "classifier":
            return self._decode_classifier(arr, timestamp)

        rows = self._candidate_rows(arr)
        boxes, scores = self._split_rows(rows)

        class_ids = np.argmax(scores, axis=1)
        confidences = scores[np.arange(len(scores)), class_ids]

        mask = np.isfinite(confidences) & (confidences >= self.cfg.confidence_threshold)
        candidates = np.nonzero(mask)[0]
        if candidates.size == 0:
            return []

        xyxy = self._to_xyxy(boxes[candidates])
        norm = np.clip(transform.to_normalized(xyxy), 0.0, 1.0)
        visible = (norm[:, 2] > norm[:, 0]) & (norm[:, 3] > norm[:, 1])
        candidates, norm = candidates[visible], norm[visible]
        if candidates.size == 0:
            return []

        confs = confidences[candidates]
        cls = class_ids[candidates]
        groups = np.zeros_like(cls) if self.cfg.class_agnostic_nms else cls
        keep = batched_nms(norm, confs, groups, self.cfg.nms_iou_threshold)

        detections: List[Detection] = []
        for k in keep:
            det = self._make_detection(int(cls[k]), float(confs[k]), norm[k], timestamp)
            if det is None:
                continue
            detections.append(det)
            if len(detections) >= self.cfg.max_detections:
                break

        logging.debug(
            f"Decoded {len(detections)} detections from {len(rows)} candidates "
            f"({candidates.size} above threshold)"
        )
        return detections

    def _candidate_rows(self, arr: np.ndarray) -> np.ndarray:
        while arr.ndim > 2 and arr.shape[0] == 1:
            arr = arr[0]
        if arr.ndim != 2:
            raise InferenceError(f"Unexpected detector output shape {arr.shape}")

        transposed = self.cfg.output_transposed
        if transposed is None:
            transposed = self._guess_transposed(arr)
        if transposed:
            arr = arr.T

        min_cols = 6 if self.cfg.output_layout == "yolov5" else 5
        if arr.shape[1] < min_cols:
            raise InferenceError(
                f"{self.cfg.output_layout} output needs at least {min_cols} values per candidate, "
                f"got shape {arr.shape}"
            )
        return arr

    def _guess_transposed(self, arr: np.ndarray) -> bool:
        """
        Find the candidate axis from the per-candidate width implied by the label table.

        A channel-last (N, 4+C) output wins when both axes match.
        """
        width = (5 if self.cfg.output_layout == "yolov5" else 4) + self.labels.num_classes
        if arr.shape[1] == width:
            return False
        if arr.shape[0] == width:
            return True
        raise InferenceError(
            f"Cannot tell the candidate axis of output shape {arr.shape}: expected {width} "
            f"values per candidate for {self.labels.num_classes} classes; "
            f"set postprocess.output_transposed"
        )

    def _split_rows(self, rows: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        boxes = rows[:, :4]
        if self.cfg.output_layout == "yolov5":
            objectness = self._activate(rows[:, 4:5], per_class=False)
            scores = self._activate(rows[:, 5:], per_class=True) * objectness
        else:
            scores = self._activate(rows[:, 4:], per_class=True)
        return boxes, scores

    def _activate(self, x: np.ndarray, per_class: bool) -> np.ndarray:
        activation = self.cfg.score_activation
        if activation == "sigmoid":
            return _sigmoid(x)
        if activation == "softmax" and per_class:
            return _softmax(x)
        return x

    def _to_xyxy(self, boxes: np.ndarray) -> np.ndarray:
        """Convert boxes to xyxy in model input pixels."""
        boxes = boxes.astype(np.float64, copy=True)
        if self.cfg.box_coordinates == "normalized":
            boxes[:, [0, 2]] *= self.input_width
            boxes[:, [1, 3]] *= self.input_height
        if self.cfg.box_format == "xyxy":
            return boxes

        cx, cy, w, h = boxes[:, 0], boxes[:, 1], boxes[:, 2], boxes[:, 3]
        return np.stack([cx - w / 2, cy - h / 2, cx + w / 2, cy + h / 2], axis=1)

    def _decode_classifier(self, arr: np.ndarray, timestamp: float) -> List[Detection]:
        scores = arr.reshape(-1)
        if scores.size == 0:
            raise InferenceError("Classifier output is empty")
        if self.cfg.score_activation == "softmax":
            scores = _softmax(scores)
        elif self.cfg.score_activation == "sigmoid":
            scores = _sigmoid(scores)

        class_id = int(np.argmax(scores))
        confidence = float(scores[class_id])
        if not np.isfinite(confidence) or confidence < self.cfg.confidence_threshold:
            return []

        det = self._make_detection(class_id, confidence, np.array([0.0, 0.0, 1.0, 1.0]), timestamp)
        return [det] if det is not None else []

    def _make_detection(
        self,
        class_id: int,
        confidence: float,
        box: np.ndarray,
        timestamp: float,
    ) -> Optional[Detection]:
        label = self.labels.get(class_id)
        if label is None:
            if class_id not in self._warned_unknown:
                self._warned_unknown.add(class_id)
                logging.warning(f"Dropping detection with unknown class id {class_id}")
            return None

        return Detection(
            class_id=class_id,
            label=label,
            confidence=min(max(confidence, 0.0), 1.0),
            bbox=BoundingBox.from_tuple(tuple(float(v) for v in box)),
            timestamp=timestamp,
        )
