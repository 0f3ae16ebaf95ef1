"""
Tests for typed models (frames, detections, tracks).
"""

import numpy as np
import pytest

from models.detection import BoundingBox, Detection
from models.frame import Frame, PixelFormat
from models.track import Track, TrackState, TrackStatus


class TestBoundingBox:
    def test_properties(self):
        box = BoundingBox(0.1, 0.2, 0.5, 0.6)
        assert box.width == pytest.approx(0.4)
        assert box.height == pytest.approx(0.4)
        assert box.center == pytest.approx((0.3, 0.4))
        assert box.area == pytest.approx(0.16)

    def test_conversions(self):
        box = BoundingBox.from_xywh(0.1, 0.2, 0.3, 0.4)
        assert box.as_tuple() == pytest.approx((0.1, 0.2, 0.4, 0.6))
        assert box.as_xywh() == pytest.approx((0.1, 0.2, 0.3, 0.4))
        assert BoundingBox.from_tuple((0, 0, 1, 1)) == BoundingBox(0.0, 0.0, 1.0, 1.0)

    def test_to_pixels(self):
        box = BoundingBox(0.25, 0.5, 0.75, 1.0)
        assert box.to_pixels(640, 480) == (160, 240, 480, 480)

    def test_clipped(self):
        box = BoundingBox(-0.2, 0.5, 1.3, 0.9).clipped()
        assert box.as_tuple() == (0.0, 0.5, 1.0, 0.9)

    def test_iou_identical(self):
        box = BoundingBox(0.1, 0.1, 0.3, 0.3)
        assert box.iou(box) == pytest.approx(1.0)

    def test_iou_disjoint(self):
        a = BoundingBox(0.0, 0.0, 0.1, 0.1)
        b = BoundingBox(0.5, 0.5, 0.6, 0.6)
        assert a.iou(b) == 0.0

    def test_iou_touching_edges_is_zero(self):
        a = BoundingBox(0.0, 0.0, 0.5, 0.5)
        b = BoundingBox(0.5, 0.0, 1.0, 0.5)
        assert a.iou(b) == 0.0

    def test_iou_partial(self):
        a = BoundingBox(0.0, 0.0, 0.2, 0.2)
        b = BoundingBox(0.0, 0.0, 0.2, 0.12)
        assert a.iou(b) == pytest.approx(0.6)
        assert b.iou(a) == pytest.approx(0.6)


class TestDetection:
    def test_to_dict(self):
        det = Detection(1, "yield", 0.9, BoundingBox(0.1, 0.2, 0.3, 0.5), timestamp=12.5)
        d = det.to_dict()
        assert d["label"] == "yield"
        assert d["class_id"] == 1
        assert d["bbox"]["w"] == pytest.approx(0.2)
        assert d["bbox"]["h"] == pytest.approx(0.3)
        assert d["timestamp"] == 12.5

    def test_frozen(self):
        det = Detection(0, "stop", 0.8, BoundingBox(0, 0, 1, 1))
        with pytest.raises(Exception):
            det.confidence = 0.1


class TestPixelFormat:
    def test_buffer_shapes(self):
        assert PixelFormat.BGR888.buffer_shape(4, 2) == (2, 4, 3)
        assert PixelFormat.RGBA8888.buffer_shape(4, 2) == (2, 4, 4)
        assert PixelFormat.GRAY8.buffer_shape(4, 2) == (2, 4)
        assert PixelFormat.NV21.buffer_shape(4, 2) == (3, 4)
        assert PixelFormat.I420.buffer_shape(4, 2) == (3, 4)

    def test_is_yuv(self):
        assert PixelFormat.NV21.is_yuv
        assert not PixelFormat.RGB888.is_yuv


class TestFrame:
    def test_from_numpy_is_read_only_copy(self):
        image = np.zeros((4, 6, 3), dtype=np.uint8)
        frame = Frame.from_numpy(image, timestamp=1.0)

        image[0, 0] = 255
        assert frame.data[0, 0, 0] == 0
        assert not frame.data.flags.writeable
        with pytest.raises(ValueError):
            frame.data[0, 0, 0] = 1

    def test_sizes(self):
        frame = Frame.from_numpy(np.zeros((4, 6, 3), dtype=np.uint8), timestamp=0.0, orientation=90)
        assert frame.size == (6, 4)
        assert frame.upright_size == (4, 6)

    def test_yuv_height(self):
        frame = Frame.from_numpy(
            np.zeros((6, 4), dtype=np.uint8), timestamp=0.0, pixel_format=PixelFormat.NV21
        )
        assert (frame.width, frame.height) == (4, 4)

    def test_is_empty(self):
        frame = Frame.from_numpy(np.zeros((0, 0, 3), dtype=np.uint8), timestamp=0.0)
        assert frame.is_empty


class TestTrackState:
    def test_from_track(self):
        det = Detection(2, "speed_limit_50", 0.7, BoundingBox(0.1, 0.1, 0.2, 0.2), timestamp=3.0)
        track = Track(
            track_id=7,
            detection=det,
            first_seen=1.0,
            last_seen=3.0,
            hit_count=3,
            miss_count=1,
            status=TrackStatus.CONFIRMED,
        )

        state = TrackState.from_track(track)

        assert state.track_id == 7
        assert state.label == "speed_limit_50"
        assert state.confidence == 0.7
        assert state.hit_count == 3
        assert state.miss_count == 1
        assert state.first_seen == 1.0
        assert state.last_seen == 3.0
        assert state.xywh == pytest.approx((0.1, 0.1, 0.1, 0.1))

    def test_track_defaults(self):
        det = Detection(0, "stop", 0.9, BoundingBox(0, 0, 0.1, 0.1))
        track = Track(track_id=0, detection=det, first_seen=0.0, last_seen=0.0)
        assert track.status == TrackStatus.TENTATIVE
        assert track.hit_count == 1
        assert not track.is_confirmed
        assert track.label == "stop"
