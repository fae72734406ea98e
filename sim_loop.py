"""Background simulation loop.

The runner owns the grid and its parameters. A dedicated worker thread
advances the solver, and every other caller (pointer input, sliders, the
renderer) goes through the runner so that:

- ticks, injections and resizes are serialized by one lock, so nothing
  ever writes into a grid that a resize has already replaced;
- cancellation is checked only between ticks, so a tick always runs all
  of its stages;
- the renderer only sees detached copies of a completed tick.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from disturbance import WanderingEmitter, add_steady_source, inject
from fluid_sim import FieldSnapshot, FluidParams, GridState, check_fields, initialize, snapshot, step

logger = logging.getLogger(__name__)

FrameHook = Callable[[FieldSnapshot], None]


class SimulationRunner:
    def __init__(
        self,
        params: Optional[FluidParams] = None,
        *,
        frame_interval: float = 0.015,
        on_frame: Optional[FrameHook] = None,
        steady_source: bool = False,
        source_edge: str = "bottom",
        emitter: Optional[WanderingEmitter] = None,
        debug: bool = False,
    ) -> None:
        self._params = params or FluidParams()
        self._state = initialize(self._params.n)
        self._lock = threading.RLock()
        self._frame_interval = max(0.0, float(frame_interval))
        self._on_frame = on_frame
        self._frame: Optional[FieldSnapshot] = None
        self._thread: Optional[threading.Thread] = None
        self._stop: Optional[threading.Event] = None
        self._paused = False
        self.steady_source = steady_source
        self.source_edge = source_edge
        self.emitter = emitter
        self.debug = debug
        self.ticks = 0
        self.error_count = 0
        self.fps = 0.0

    # Parameters ---------------------------------------------------
    @property
    def params(self) -> FluidParams:
        return self._params

    @property
    def state(self) -> GridState:
        return self._state

    def update_params(self, **changes) -> FluidParams:
        """Apply live parameter changes; they take effect on the next tick.

        Changing ``n`` reallocates the grid through :meth:`resize`.
        """
        new_params = self._params.with_changes(**changes)
        if new_params.n != self._params.n:
            self._resize_to(new_params)
        else:
            with self._lock:
                self._params = new_params
        logger.debug("Parameters updated: %s", changes)
        return new_params

    def replace_params(self, params: FluidParams) -> None:
        if params.n != self._params.n:
            self._resize_to(params)
        else:
            with self._lock:
                self._params = params

    def resize(self, n: int) -> None:
        self._resize_to(self._params.with_changes(n=n))

    def reset(self) -> None:
        """Discard all field contents and restart at the current size."""
        self._resize_to(self._params)

    def _resize_to(self, params: FluidParams) -> None:
        was_running = self.is_running
        self.stop()
        with self._lock:
            self._params = params
            self._state = initialize(params.n)
            self._frame = None
        if was_running:
            self.start()

    # Input --------------------------------------------------------
    def inject(self, sx: float, sy: float, strength: Optional[float] = None) -> tuple[int, int]:
        with self._lock:
            if strength is None:
                strength = self._params.inject_strength
            return inject(self._state, sx, sy, strength)

    # Lifecycle ----------------------------------------------------
    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def paused(self) -> bool:
        return self._paused

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def toggle_pause(self) -> bool:
        self._paused = not self._paused
        return self._paused

    def start(self) -> None:
        if self.is_running:
            raise RuntimeError("simulation loop already running")
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._run, args=(self._stop,), name="fluid-sim", daemon=True
        )
        self._thread.start()
        logger.info("Simulation loop started (n=%d)", self._params.n)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal the worker to exit after its current tick and wait for it."""
        if self._stop is not None:
            self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Simulation loop did not stop within %.1fs", timeout)
                return
            logger.info("Simulation loop stopped after %d ticks", self.ticks)
        self._thread = None

    # Ticking ------------------------------------------------------
    def tick(self) -> FieldSnapshot:
        """Run one complete tick synchronously and publish its frame."""
        with self._lock:
            params = self._params
            state = self._state
            if self.emitter is not None:
                self.emitter.emit(state, params.inject_strength)
            if self.steady_source:
                add_steady_source(state, params.inject_strength, self.source_edge)
            started = time.perf_counter()
            step(state, params)
            if self.debug:
                check_fields(state)
                logger.debug("Step took %.2f ms", (time.perf_counter() - started) * 1e3)
            frame = snapshot(state, copy=True)
            self._frame = frame
            self.ticks += 1
        if self._on_frame is not None:
            self._on_frame(frame)
        return frame

    def run_ticks(self, count: int) -> Optional[FieldSnapshot]:
        frame = None
        for _ in range(count):
            frame = self.tick()
        return frame

    def latest_frame(self) -> Optional[FieldSnapshot]:
        with self._lock:
            return self._frame

    def _run(self, stop: threading.Event) -> None:
        window_start = time.perf_counter()
        frames = 0
        while not stop.is_set():
            if not self._paused:
                try:
                    self.tick()
                except Exception:
                    logger.exception("Simulation loop failed after %d ticks", self.ticks)
                    self.error_count += 1
                    return
                frames += 1
                elapsed = time.perf_counter() - window_start
                if elapsed >= 1.0:
                    self.fps = frames / elapsed
                    logger.debug("Running at %.1f frames per second", self.fps)
                    window_start = time.perf_counter()
                    frames = 0
            stop.wait(self._frame_interval)
