from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from disturbance import WanderingEmitter
from fire_palette import DEFAULT_BLUE_TINT, fire_colors
from fluid_sim import FieldSnapshot, FluidParams, MIN_GRID_SIZE, clamp_grid_size, warmup
from sim_loop import SimulationRunner

logger = logging.getLogger(__name__)

WINDOW_TITLE = "Fluid Fire"
CONTROLS_TITLE = "Fluid Fire Controls"
DISPLAY_SIZE = 720
MAX_GRID_SIZE = 256


@dataclass(frozen=True)
class Slider:
    label: str
    field: str
    maximum: int
    scale: float
    minimum: int = 0

    def to_position(self, value: float) -> int:
        return int(np.clip(round(value / self.scale), self.minimum, self.maximum))

    def to_value(self, position: int) -> float:
        return position * self.scale


SLIDERS = (
    Slider("grid N", "n", MAX_GRID_SIZE, 1.0, MIN_GRID_SIZE),
    Slider("dt x1000", "dt", 200, 1e-3, 1),
    Slider("viscosity x1000", "viscosity", 100, 1e-3),
    Slider("diffusion x1e5", "diffusion", 100, 1e-5),
    Slider("buoyancy x10", "buoyancy", 50, 0.1),
    Slider("inject", "inject_strength", 1000, 1.0),
    Slider("decay x100", "temperature_decay", 100, 1e-2),
)
TINT_SLIDER = "blue tint"

cv2.setUseOptimized(True)


def params_from_sliders(params: FluidParams, positions: dict[str, int]) -> dict[str, float]:
    """Parameter changes implied by slider positions, excluding unchanged ones."""
    changes: dict[str, float] = {}
    for slider in SLIDERS:
        if slider.label not in positions:
            continue
        position = positions[slider.label]
        if slider.field == "n":
            value: float = clamp_grid_size(position)
        else:
            value = slider.to_value(position)
        if slider.to_position(getattr(params, slider.field)) != slider.to_position(value):
            changes[slider.field] = value
    return changes


def pointer_to_normalized(x: int, y: int, width: int, height: int) -> Optional[tuple[float, float]]:
    """Window pixel to normalized grid space; the grid's j axis points up."""
    if width <= 0 or height <= 0:
        return None
    sx = float(np.clip(x / width, 0.0, 1.0))
    sy = float(np.clip(1.0 - y / height, 0.0, 1.0))
    return sx, sy


def compose_frame(frame: FieldSnapshot, blue_tint: int, size: int = DISPLAY_SIZE) -> np.ndarray:
    bgra = fire_colors(frame.temperature, frame.density, blue_tint=blue_tint)
    alpha = bgra[:, :, 3:].astype(np.float32) / 255.0
    bgr = (bgra[:, :, :3].astype(np.float32) * alpha).astype(np.uint8)
    return cv2.resize(bgr, (size, size), interpolation=cv2.INTER_CUBIC)


def draw_text_block(canvas: np.ndarray, origin: tuple[int, int], lines: list[str], scale: float = 0.5) -> None:
    x, y = origin
    for line in lines:
        cv2.putText(
            canvas,
            line,
            (x, y),
            cv2.FONT_HERSHEY_SIMPLEX,
            scale,
            (255, 255, 255),
            1,
            cv2.LINE_AA,
        )
        y += int(34 * scale)


def format_status_lines(runner: SimulationRunner, top_to_bottom: bool) -> list[str]:
    p = runner.params
    status = "Paused" if runner.paused else f"Running at {runner.fps:4.1f} fps"
    return [
        status,
        f"N {p.n}  dt {p.dt:.3f}  visc {p.viscosity:.3f}",
        f"buoyancy {p.buoyancy:.2f}  decay {p.temperature_decay:.2f}",
        "Top to bottom" if top_to_bottom else "Bottom to top",
    ]


class FireViewer:
    """OpenCV window, trackbars and input plumbing around a runner."""

    def __init__(self, args: argparse.Namespace) -> None:
        self.args = args
        self.top_to_bottom = args.falling
        self.blue_tint = DEFAULT_BLUE_TINT
        self.show_controls = not args.fullscreen
        self.show_status = True
        self.dragging = False
        params = build_params(args)
        emitter = None if args.no_wander else WanderingEmitter(top=self.top_to_bottom)
        self.runner = SimulationRunner(
            params,
            steady_source=args.steady_source,
            source_edge=self._source_edge(),
            emitter=emitter,
            debug=args.debug,
        )
        self.hand = None
        self.camera = None

    def _source_edge(self) -> str:
        return "top" if self.top_to_bottom else "bottom"

    # Window setup -------------------------------------------------
    def open(self) -> None:
        cv2.namedWindow(WINDOW_TITLE, cv2.WINDOW_NORMAL)
        if self.args.fullscreen:
            cv2.setWindowProperty(WINDOW_TITLE, cv2.WND_PROP_FULLSCREEN, cv2.WINDOW_FULLSCREEN)
        else:
            cv2.resizeWindow(WINDOW_TITLE, DISPLAY_SIZE, DISPLAY_SIZE)
        cv2.setMouseCallback(WINDOW_TITLE, self._on_mouse)
        if self.show_controls:
            self._open_controls()
        if self.args.hand:
            from hand_tracking import HandPointer

            self.camera = cv2.VideoCapture(self.args.camera)
            if not self.camera.isOpened():
                raise RuntimeError("Unable to access webcam")
            self.hand = HandPointer()

    def _open_controls(self) -> None:
        cv2.namedWindow(CONTROLS_TITLE, cv2.WINDOW_NORMAL)
        params = self.runner.params
        for slider in SLIDERS:
            cv2.createTrackbar(
                slider.label,
                CONTROLS_TITLE,
                slider.to_position(getattr(params, slider.field)),
                slider.maximum,
                lambda _pos: None,
            )
            if slider.minimum:
                cv2.setTrackbarMin(slider.label, CONTROLS_TITLE, slider.minimum)
        cv2.createTrackbar(TINT_SLIDER, CONTROLS_TITLE, self.blue_tint, 255, lambda _pos: None)

    def _close_controls(self) -> None:
        cv2.destroyWindow(CONTROLS_TITLE)

    def _sync_sliders(self) -> None:
        params = self.runner.params
        for slider in SLIDERS:
            cv2.setTrackbarPos(slider.label, CONTROLS_TITLE, slider.to_position(getattr(params, slider.field)))

    def _poll_sliders(self) -> None:
        positions = {s.label: cv2.getTrackbarPos(s.label, CONTROLS_TITLE) for s in SLIDERS}
        self.blue_tint = cv2.getTrackbarPos(TINT_SLIDER, CONTROLS_TITLE)
        changes = params_from_sliders(self.runner.params, positions)
        if not changes:
            return
        try:
            self.runner.update_params(**changes)
        except ValueError as exc:
            logger.warning("Ignoring slider change %s: %s", changes, exc)

    # Input --------------------------------------------------------
    def _on_mouse(self, event: int, x: int, y: int, flags: int, _param) -> None:
        if event == cv2.EVENT_LBUTTONDOWN:
            self.dragging = True
        elif event == cv2.EVENT_LBUTTONUP:
            self.dragging = False
        elif event == cv2.EVENT_RBUTTONUP:
            self.show_controls = not self.show_controls
            if self.show_controls:
                self._open_controls()
            else:
                self._close_controls()
            return
        if self.dragging and event in (cv2.EVENT_LBUTTONDOWN, cv2.EVENT_MOUSEMOVE):
            _, _, w, h = cv2.getWindowImageRect(WINDOW_TITLE)
            point = pointer_to_normalized(x, y, w, h)
            if point is not None:
                self.runner.inject(*point)

    def _poll_hand(self) -> None:
        ret, frame = self.camera.read()
        if not ret:
            return
        sample = self.hand.detect(cv2.flip(frame, 1))
        if sample is not None:
            strength = self.runner.params.inject_strength * (0.5 + sample.pinch_strength)
            self.runner.inject(*sample.position, strength=strength)

    def toggle_orientation(self) -> None:
        self.top_to_bottom = not self.top_to_bottom
        self.runner.source_edge = self._source_edge()
        if self.runner.emitter is not None:
            self.runner.emitter.top = self.top_to_bottom
        preset = FluidParams.preset(self.top_to_bottom, self.args.fullscreen)
        self.runner.replace_params(preset.with_changes(n=self.runner.params.n))
        if self.show_controls:
            self._sync_sliders()
        logger.info("Orientation: %s", "top to bottom" if self.top_to_bottom else "bottom to top")

    def handle_key(self, key: int) -> bool:
        if key in (27, ord("q")):
            return False
        if key == ord(" "):
            self.runner.toggle_pause()
        elif key == ord("r"):
            self.runner.reset()
        elif key == ord("t"):
            self.toggle_orientation()
        elif key == ord("s"):
            self.runner.steady_source = not self.runner.steady_source
        elif key == ord("h"):
            self.show_status = not self.show_status
        return True

    # Main loop ----------------------------------------------------
    def run(self) -> None:
        self.open()
        self.runner.start()
        try:
            while True:
                if self.show_controls:
                    self._poll_sliders()
                if self.hand is not None:
                    self._poll_hand()
                frame = self.runner.latest_frame()
                if frame is not None:
                    canvas = compose_frame(frame, self.blue_tint)
                    if self.show_status:
                        draw_text_block(canvas, (16, 28), format_status_lines(self.runner, self.top_to_bottom))
                    cv2.imshow(WINDOW_TITLE, canvas)
                key = cv2.waitKey(15) & 0xFF
                if not self.handle_key(key):
                    break
                if cv2.getWindowProperty(WINDOW_TITLE, cv2.WND_PROP_VISIBLE) < 1:
                    break
        finally:
            self.runner.stop(timeout=2.0)
            if self.hand is not None:
                self.hand.close()
            if self.camera is not None:
                self.camera.release()
            cv2.destroyAllWindows()


def build_params(args: argparse.Namespace) -> FluidParams:
    params = FluidParams.preset(top_to_bottom=args.falling, fullscreen=args.fullscreen)
    if args.size is not None:
        params = params.with_changes(n=clamp_grid_size(args.size))
    return params


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Interactive fire and smoke simulation")
    parser.add_argument("--size", type=int, default=None, help=f"Interior grid resolution (>= {MIN_GRID_SIZE})")
    parser.add_argument("--falling", action="store_true", help="Smoke falls from the top edge")
    parser.add_argument("--fullscreen", action="store_true", help="Fullscreen window without controls")
    parser.add_argument("--steady-source", action="store_true", help="Run the steady burner on the edge")
    parser.add_argument("--no-wander", action="store_true", help="Disable the wandering emitter")
    parser.add_argument("--hand", action="store_true", help="Stir the fire with a tracked hand")
    parser.add_argument("--camera", type=int, default=0, help="Webcam index (default: 0)")
    parser.add_argument("--debug", action="store_true", help="Check fields for non-finite values every tick")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    warmup(2)
    FireViewer(args).run()


if __name__ == "__main__":
    main()
