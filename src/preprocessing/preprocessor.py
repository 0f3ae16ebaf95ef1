"""
Frame preprocessing: canonicalize, resize (letterbox or stretch) and
normalize frames into the fixed-shape float32 tensor the model expects.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import cv2
import numpy as np

from models.config import ModelConfig, PreprocessConfig
from models.errors import PreprocessError
from models.frame import Frame
from observation.adapter import FrameSourceAdapter
from .buffer_pool import TensorPool
from .tensor import LetterboxTransform, Tensor


class Preprocessor:
    """
    Converts Frames into model input tensors.

    Output tensors are written into pooled buffers; a returned Tensor is only
    valid until the pool wraps around to its slot again.
    """

    def __init__(
        self,
        model_cfg: ModelConfig,
        cfg: PreprocessConfig,
        adapter: Optional[FrameSourceAdapter] = None,
    ):
        self.model_cfg = model_cfg
        self.cfg = cfg
        self._adapter = adapter or FrameSourceAdapter()
        self.input_shape: Tuple[int, int, int] = model_cfg.input_shape
        self._pool = TensorPool(self.input_shape, slots=cfg.pool_size)

        channels = self.input_shape[0]
        self._mean = np.asarray(cfg.mean, dtype=np.float32).reshape(channels, 1, 1)
        self._std = np.asarray(cfg.std, dtype=np.float32).reshape(channels, 1, 1)

        logging.info(
            f"Preprocessor initialized: input={self.input_shape}, mode={cfg.resize_mode}, "
            f"order={model_cfg.channel_order}, pool={cfg.pool_size}"
        )

    @property
    def pool(self) -> TensorPool:
        return self._pool

    def prepare(self, frame: Frame) -> Tensor:
        """
        Build the model input tensor for a frame.

        Raises:
            PreprocessError: If the frame is empty, has an unsupported format,
                or the buffer pool has been released.
        """
        if self._pool.released:
            raise PreprocessError("Preprocessor has been closed")

        image = self._adapter.to_canonical(frame)
        try:
            image = self._convert_channels(image)
            slot = self._pool.acquire()
            canvas = self._pool.canvas(slot)
            transform = self._resize_into(image, canvas)
        except cv2.error as e:
            raise PreprocessError(f"Resize failed for frame {frame.frame_index}: {e}") from e

        tensor = self._pool.tensor(slot)
        np.multiply(canvas.transpose(2, 0, 1), np.float32(self.cfg.scale), out=tensor)
        tensor -= self._mean
        tensor /= self._std

        return Tensor(
            data=tensor,
            slot=slot,
            transform=transform,
            timestamp=frame.timestamp,
            frame_index=frame.frame_index,
        )

    def _convert_channels(self, image: np.ndarray) -> np.ndarray:
        """Canonical images are RGB; convert to the model's channel order."""
        if self.input_shape[0] == 1:
            return cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
        if self.model_cfg.channel_order == "BGR":
            return cv2.cvtColor(image, cv2.COLOR_RGB2BGR)
        return image

    def _resize_into(self, image: np.ndarray, canvas: np.ndarray) -> LetterboxTransform:
        src_h, src_w = image.shape[:2]
        in_h, in_w = canvas.shape[:2]

        if self.cfg.resize_mode == "stretch":
            new_w, new_h = in_w, in_h
            pad_x = pad_y = 0
        else:
            ratio = min(in_w / src_w, in_h / src_h)
            new_w = max(1, min(in_w, int(round(src_w * ratio))))
            new_h = max(1, min(in_h, int(round(src_h * ratio))))
            pad_x = (in_w - new_w) // 2
            pad_y = (in_h - new_h) // 2
            canvas.fill(self.cfg.pad_value)

        resized = cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_LINEAR)
        if resized.ndim == 2:
            resized = resized[:, :, np.newaxis]
        canvas[pad_y:pad_y + new_h, pad_x:pad_x + new_w] = resized

        return LetterboxTransform(
            src_width=src_w,
            src_height=src_h,
            input_width=in_w,
            input_height=in_h,
            scale_x=new_w / src_w,
            scale_y=new_h / src_h,
            pad_x=float(pad_x),
            pad_y=float(pad_y),
        )

    def reset(self) -> None:
        self._pool.reset()

    def close(self) -> None:
        """Release pooled buffers. Safe to call multiple times."""
        self._pool.release()
