"""Webcam hand pointer for stirring the fire, built on MediaPipe."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import time

import cv2
import numpy as np


@dataclass
class PointerSample:
    position: tuple[float, float]
    pinch_strength: float
    velocity: tuple[float, float]
    handedness: str


class PointerFilter:
    """Low-pass filter for a jittery normalized pointer."""

    def __init__(self, cutoff_hz: float = 10.0, pinch_gain: float = 0.35) -> None:
        self._cutoff = cutoff_hz
        self._pinch_gain = pinch_gain
        self._smoothed: Optional[np.ndarray] = None
        self._last: Optional[np.ndarray] = None
        self._pinch_lp: float = 0.0

    def reset(self) -> None:
        self._smoothed = None
        self._last = None
        self._pinch_lp = 0.0

    def update(self, position: tuple[float, float], pinch: float, dt: float) -> tuple[np.ndarray, np.ndarray, float]:
        current = np.asarray(position, dtype=np.float32)
        dt = max(1e-3, dt)
        if self._smoothed is None:
            self._smoothed = current.copy()
        else:
            alpha = 1 - np.exp(-dt * self._cutoff)
            self._smoothed = (1 - alpha) * self._smoothed + alpha * current

        if self._last is None:
            velocity = np.zeros(2, dtype=np.float32)
        else:
            velocity = (self._smoothed - self._last) / dt
        self._last = self._smoothed.copy()

        self._pinch_lp += (pinch - self._pinch_lp) * self._pinch_gain
        return self._smoothed.copy(), velocity, self._pinch_lp


class HandPointer:
    def __init__(self, max_hands: int = 1, cutoff_hz: float = 10.0) -> None:
        import mediapipe as mp

        self._hands = mp.solutions.hands.Hands(
            static_image_mode=False,
            max_num_hands=max_hands,
            min_detection_confidence=0.5,
            min_tracking_confidence=0.5,
        )
        self._landmarks = mp.solutions.hands.HandLandmark
        self._filter = PointerFilter(cutoff_hz)
        self._last_time: Optional[float] = None

    def detect(self, frame: np.ndarray) -> Optional[PointerSample]:
        """Locate the index fingertip; positions are normalized with y pointing up."""
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        results = self._hands.process(rgb)
        if not results.multi_hand_landmarks:
            self._filter.reset()
            self._last_time = None
            return None
        hand_landmarks = results.multi_hand_landmarks[0]
        handedness = (
            results.multi_handedness[0].classification[0].label
            if results.multi_handedness
            else "unknown"
        )
        index_tip = hand_landmarks.landmark[self._landmarks.INDEX_FINGER_TIP]
        thumb_tip = hand_landmarks.landmark[self._landmarks.THUMB_TIP]
        h, w, _ = frame.shape
        pinch_dist = float(np.hypot((index_tip.x - thumb_tip.x) * w, (index_tip.y - thumb_tip.y) * h))
        pinch_strength = float(max(0.0, min(1.0, 1 - pinch_dist / 160)))

        now = time.perf_counter()
        dt = 1 / 30 if self._last_time is None else now - self._last_time
        self._last_time = now

        position = (float(np.clip(index_tip.x, 0.0, 1.0)), float(np.clip(1.0 - index_tip.y, 0.0, 1.0)))
        smoothed, velocity, pinch = self._filter.update(position, pinch_strength, dt)
        return PointerSample(
            position=(float(smoothed[0]), float(smoothed[1])),
            pinch_strength=float(pinch),
            velocity=(float(velocity[0]), float(velocity[1])),
            handedness=handedness,
        )

    def close(self) -> None:
        self._hands.close()
