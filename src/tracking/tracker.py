"""
Sign tracking and debouncing across video frames.

Tracks move through Tentative -> Confirmed -> Expired. Only Confirmed tracks
are reported, so single-frame false positives never reach the caller.
Tracks are kept in a table keyed by track id; matching works on indices
into that table and into the current frame's detection list.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Set, Tuple

from models.config import TrackingConfig
from models.detection import Detection
from models.track import Track, TrackState, TrackStatus


class SignTracker:
    """
    Greedy IoU tracker with hit/miss debouncing.

    Responsibilities:
    - Match detections to live tracks (greedy, highest IoU first)
    - Confirm tracks after N consecutive matched frames
    - Expire confirmed tracks after M consecutive unmatched frames
    """

    def __init__(
        self,
        match_iou_threshold: float = 0.3,
        confirm_hits: int = 3,
        expire_misses: int = 5,
        class_aware: bool = True,
    ):
        """
        Args:
            match_iou_threshold: IoU a detection must exceed to continue a track.
            confirm_hits: Consecutive matched frames needed to confirm a track.
            expire_misses: Consecutive unmatched frames that expire a confirmed track.
            class_aware: Only match detections of the same class as the track.
        """
        self.match_iou_threshold = match_iou_threshold
        self.confirm_hits = confirm_hits
        self.expire_misses = expire_misses
        self.class_aware = class_aware

        self.tracks: Dict[int, Track] = {}
        self.next_track_id = 0

        logging.info(
            f"Sign tracker initialized (iou>{match_iou_threshold}, "
            f"confirm={confirm_hits}, expire={expire_misses})"
        )

    @classmethod
    def from_config(cls, cfg: TrackingConfig) -> "SignTracker":
        return cls(
            match_iou_threshold=cfg.match_iou_threshold,
            confirm_hits=cfg.confirm_hits,
            expire_misses=cfg.expire_misses,
            class_aware=cfg.class_aware,
        )

    def update(self, detections: Sequence[Detection], timestamp: Optional[float] = None) -> List[TrackState]:
        """
        Advance the tracker by one frame.

        Args:
            detections: Detections of the current frame.
            timestamp: Frame timestamp; defaults to the detections' timestamp.

        Returns:
            Snapshots of Confirmed tracks, ordered by track id.
        """
        if timestamp is None:
            timestamp = detections[0].timestamp if detections else 0.0

        matches = self._match(detections)
        matched_tracks: Set[int] = set()
        matched_detections: Set[int] = set()

        for track_id, det_idx in matches:
            self._apply_hit(self.tracks[track_id], detections[det_idx], timestamp)
            matched_tracks.add(track_id)
            matched_detections.add(det_idx)

        for track_id in sorted(self.tracks):
            if track_id not in matched_tracks:
                self._apply_miss(self.tracks[track_id])

        for det_idx, det in enumerate(detections):
            if det_idx not in matched_detections:
                self._spawn(det, timestamp)

        self._remove_expired()
        return self.get_confirmed_states()

    def _match(self, detections: Sequence[Detection]) -> List[Tuple[int, int]]:
        """Greedy assignment over (track, detection) pairs sorted by IoU descending."""
        pairs: List[Tuple[float, int, int]] = []
        for track_id in sorted(self.tracks):
            track = self.tracks[track_id]
            for det_idx, det in enumerate(detections):
                if self.class_aware and det.class_id != track.class_id:
                    continue
                iou = track.bbox.iou(det.bbox)
                if iou > self.match_iou_threshold:
                    pairs.append((iou, track_id, det_idx))

        pairs.sort(key=lambda p: (-p[0], p[1], p[2]))

        used_tracks: Set[int] = set()
        used_detections: Set[int] = set()
        matches: List[Tuple[int, int]] = []
        for _, track_id, det_idx in pairs:
            if track_id in used_tracks or det_idx in used_detections:
                continue
            used_tracks.add(track_id)
            used_detections.add(det_idx)
            matches.append((track_id, det_idx))
        return matches

    def _apply_hit(self, track: Track, det: Detection, timestamp: float) -> None:
        track.detection = det
        track.last_seen = timestamp
        track.hit_count += 1
        track.miss_count = 0
        if track.status == TrackStatus.TENTATIVE and track.hit_count >= self.confirm_hits:
            self._confirm(track)

    def _apply_miss(self, track: Track) -> None:
        if track.status == TrackStatus.TENTATIVE:
            # streak broken before confirmation
            track.status = TrackStatus.EXPIRED
            logging.debug(f"Tentative track {track.track_id} dropped after a miss")
            return

        track.miss_count += 1
        if track.miss_count >= self.expire_misses:
            track.status = TrackStatus.EXPIRED
            logging.info(
                f"Track {track.track_id} expired: label={track.label}, misses={track.miss_count}"
            )

    def _spawn(self, det: Detection, timestamp: float) -> None:
        track = Track(
            track_id=self.next_track_id,
            detection=det,
            first_seen=timestamp,
            last_seen=timestamp,
        )
        self.tracks[track.track_id] = track
        self.next_track_id += 1
        if track.hit_count >= self.confirm_hits:
            self._confirm(track)

    def _confirm(self, track: Track) -> None:
        track.status = TrackStatus.CONFIRMED
        logging.info(
            f"Track {track.track_id} confirmed: label={track.label}, "
            f"confidence={track.detection.confidence:.2f}"
        )

    def _remove_expired(self) -> None:
        expired = [tid for tid, t in self.tracks.items() if t.status == TrackStatus.EXPIRED]
        for track_id in expired:
            del self.tracks[track_id]

    def get_confirmed_tracks(self) -> List[Track]:
        return [self.tracks[tid] for tid in sorted(self.tracks) if self.tracks[tid].is_confirmed]

    def get_confirmed_states(self) -> List[TrackState]:
        return [TrackState.from_track(t) for t in self.get_confirmed_tracks()]

    def get_all_tracks(self) -> List[Track]:
        """All live tracks, tentative included."""
        return [self.tracks[tid] for tid in sorted(self.tracks)]

    def reset(self) -> None:
        """Drop all tracks. Track ids keep increasing."""
        self.tracks.clear()
