"""
Tests for frame preprocessing into model tensors.
"""

import numpy as np
import pytest

from models.config import ModelConfig, PreprocessConfig
from models.errors import PreprocessError
from models.frame import Frame, PixelFormat
from preprocessing import LetterboxTransform, Preprocessor, TensorPool


def make_preprocessor(width=64, height=64, channels=3, channel_order="RGB", **preprocess):
    model_cfg = ModelConfig(input_size=[width, height], channels=channels, channel_order=channel_order)
    if channels == 1:
        preprocess.setdefault("mean", [0.0])
        preprocess.setdefault("std", [1.0])
    return Preprocessor(model_cfg, PreprocessConfig(**preprocess))


class TestTensorShape:
    """Every valid frame produces exactly the configured tensor shape."""

    @pytest.mark.parametrize("fmt,shape", [
        (PixelFormat.BGR888, (50, 100, 3)),
        (PixelFormat.RGB888, (120, 40, 3)),
        (PixelFormat.RGBA8888, (64, 64, 4)),
        (PixelFormat.GRAY8, (33, 17)),
        (PixelFormat.NV21, (90, 80)),
        (PixelFormat.I420, (30, 200)),
    ])
    def test_shape_for_formats(self, fmt, shape):
        pre = make_preprocessor(width=48, height=32)
        frame = Frame.from_numpy(np.zeros(shape, dtype=np.uint8), timestamp=1.0, pixel_format=fmt)

        tensor = pre.prepare(frame)

        assert tensor.shape == (3, 32, 48)
        assert tensor.data.dtype == np.float32

    @pytest.mark.parametrize("orientation", [0, 90, 180, 270])
    @pytest.mark.parametrize("mode", ["letterbox", "stretch"])
    def test_shape_for_orientations(self, orientation, mode):
        pre = make_preprocessor(resize_mode=mode)
        frame = Frame.from_numpy(
            np.zeros((30, 70, 3), dtype=np.uint8), timestamp=0.0, orientation=orientation
        )

        assert pre.prepare(frame).shape == (3, 64, 64)

    def test_single_channel_model(self):
        pre = make_preprocessor(channels=1)
        frame = Frame.from_numpy(np.full((64, 64, 3), 255, dtype=np.uint8), timestamp=0.0)

        tensor = pre.prepare(frame)

        assert tensor.shape == (1, 64, 64)
        assert tensor.data.max() == pytest.approx(1.0)

    def test_tensor_carries_frame_metadata(self, make_frame):
        pre = make_preprocessor()
        frame = make_frame(timestamp=42.0)

        tensor = pre.prepare(frame)

        assert tensor.timestamp == 42.0
        assert tensor.frame_index == frame.frame_index


class TestLetterbox:
    def test_padding_and_transform(self):
        pre = make_preprocessor()
        frame = Frame.from_numpy(np.zeros((64, 128, 3), dtype=np.uint8), timestamp=0.0)

        tensor = pre.prepare(frame)

        t = tensor.transform
        assert (t.src_width, t.src_height) == (128, 64)
        assert t.scale_x == pytest.approx(0.5)
        assert t.scale_y == pytest.approx(0.5)
        assert (t.pad_x, t.pad_y) == (0, 16)

        pad = 114 / 255.0
        assert tensor.data[:, 0, 0] == pytest.approx([pad, pad, pad], abs=1e-6)
        assert tensor.data[:, 63, 63] == pytest.approx([pad, pad, pad], abs=1e-6)
        assert tensor.data[:, 32, 32] == pytest.approx([0.0, 0.0, 0.0])

    def test_custom_pad_value(self):
        pre = make_preprocessor(pad_value=0)
        frame = Frame.from_numpy(np.full((64, 128, 3), 255, dtype=np.uint8), timestamp=0.0)

        tensor = pre.prepare(frame)

        assert tensor.data[0, 0, 0] == 0.0
        assert tensor.data[0, 32, 32] == pytest.approx(1.0)

    def test_transform_maps_input_box_back_to_frame(self):
        pre = make_preprocessor()
        frame = Frame.from_numpy(np.zeros((64, 128, 3), dtype=np.uint8), timestamp=0.0)
        transform = pre.prepare(frame).transform

        norm = transform.to_normalized(np.array([[0.0, 16.0, 64.0, 48.0]]))

        assert norm[0] == pytest.approx([0.0, 0.0, 1.0, 1.0])

    def test_rotated_frame_uses_upright_size(self):
        pre = make_preprocessor()
        frame = Frame.from_numpy(np.zeros((32, 64, 3), dtype=np.uint8), timestamp=0.0, orientation=90)

        t = pre.prepare(frame).transform

        assert (t.src_width, t.src_height) == (32, 64)
        assert (t.pad_x, t.pad_y) == (16, 0)

    def test_stretch_has_no_padding(self):
        pre = make_preprocessor(resize_mode="stretch", pad_value=0)
        frame = Frame.from_numpy(np.full((64, 128, 3), 255, dtype=np.uint8), timestamp=0.0)

        tensor = pre.prepare(frame)

        assert tensor.transform.scale_x == pytest.approx(0.5)
        assert tensor.transform.scale_y == pytest.approx(1.0)
        assert (tensor.transform.pad_x, tensor.transform.pad_y) == (0, 0)
        assert tensor.data.min() == pytest.approx(1.0)


class TestNormalization:
    def test_rgb_channel_order(self):
        pre = make_preprocessor()
        image = np.zeros((64, 64, 3), dtype=np.uint8)
        image[:, :] = (255, 0, 0)  # blue in BGR
        frame = Frame.from_numpy(image, timestamp=0.0, pixel_format=PixelFormat.BGR888)

        tensor = pre.prepare(frame)

        assert tensor.data[2].min() == pytest.approx(1.0)
        assert tensor.data[0].max() == 0.0

    def test_bgr_channel_order(self):
        pre = make_preprocessor(channel_order="BGR")
        image = np.zeros((64, 64, 3), dtype=np.uint8)
        image[:, :] = (255, 0, 0)
        frame = Frame.from_numpy(image, timestamp=0.0, pixel_format=PixelFormat.BGR888)

        tensor = pre.prepare(frame)

        assert tensor.data[0].min() == pytest.approx(1.0)
        assert tensor.data[2].max() == 0.0

    def test_mean_std(self):
        pre = make_preprocessor(mean=[0.5, 0.5, 0.5], std=[0.25, 0.25, 0.25])
        frame = Frame.from_numpy(np.full((64, 64, 3), 255, dtype=np.uint8), timestamp=0.0)

        tensor = pre.prepare(frame)

        assert tensor.data.min() == pytest.approx(2.0)
        assert tensor.data.max() == pytest.approx(2.0)


class TestBufferReuse:
    def test_slots_round_robin(self, make_frame):
        pre = make_preprocessor(pool_size=2)

        t1 = pre.prepare(make_frame())
        t2 = pre.prepare(make_frame())
        t3 = pre.prepare(make_frame())

        assert (t1.slot, t2.slot, t3.slot) == (0, 1, 0)
        assert t1.data is t3.data
        assert not np.shares_memory(t1.data, t2.data)

    def test_pool_release_is_idempotent(self):
        pool = TensorPool((3, 8, 8), slots=2)
        pool.release()
        pool.release()

        assert pool.released
        with pytest.raises(RuntimeError):
            pool.acquire()

    def test_pool_reset_rewinds(self):
        pool = TensorPool((3, 8, 8), slots=3)
        pool.acquire()
        pool.tensor(0).fill(1.0)

        pool.reset()

        assert pool.acquire() == 0
        assert pool.tensor(0).max() == 0.0

    def test_closed_preprocessor_raises(self, make_frame):
        pre = make_preprocessor()
        pre.close()
        pre.close()

        with pytest.raises(PreprocessError):
            pre.prepare(make_frame())


class TestErrors:
    def test_empty_frame(self):
        pre = make_preprocessor()
        frame = Frame.from_numpy(np.zeros((0, 0, 3), dtype=np.uint8), timestamp=0.0)

        with pytest.raises(PreprocessError):
            pre.prepare(frame)

    def test_unknown_pixel_format(self):
        pre = make_preprocessor()
        frame = Frame(
            data=np.zeros((4, 4, 2), dtype=np.uint8),
            width=4,
            height=4,
            pixel_format="YUYV",
            timestamp=0.0,
        )

        with pytest.raises(PreprocessError):
            pre.prepare(frame)


class TestLetterboxTransform:
    def test_identity(self):
        t = LetterboxTransform.identity(64, 32)
        norm = t.to_normalized(np.array([[16.0, 8.0, 48.0, 24.0]]))
        assert norm[0] == pytest.approx([0.25, 0.25, 0.75, 0.75])
