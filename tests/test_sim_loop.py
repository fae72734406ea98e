import logging
import threading
import time

import numpy as np
import pytest

from disturbance import WanderingEmitter
from fluid_sim import FluidParams, warmup
from sim_loop import SimulationRunner


@pytest.fixture(scope="module", autouse=True)
def compiled_kernels():
    warmup(1)


def wait_for(predicate, timeout=30.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture()
def runner():
    r = SimulationRunner(FluidParams(n=32), frame_interval=0.001)
    yield r
    r.stop(timeout=5.0)


def test_headless_ticks_publish_frames(runner):
    assert runner.latest_frame() is None
    runner.inject(0.5, 0.2)
    frame = runner.run_ticks(3)
    assert runner.ticks == 3
    assert frame is runner.latest_frame()
    assert frame.density.shape == (32, 32)
    assert frame.density.sum() > 0
    assert not frame.density.flags.writeable


def test_inject_uses_current_strength(runner):
    runner.update_params(inject_strength=100.0)
    i, j = runner.inject(0.5, 0.5)
    assert runner.state.density[j, i] == pytest.approx(80.0)


def test_loop_runs_and_stops():
    seen = threading.Event()
    runner = SimulationRunner(FluidParams(n=32), frame_interval=0.001, on_frame=lambda frame: seen.set())
    runner.start()
    assert runner.is_running
    assert seen.wait(30.0)
    runner.stop(timeout=5.0)
    assert not runner.is_running
    ticks = runner.ticks
    time.sleep(0.05)
    assert runner.ticks == ticks


def test_start_twice_is_an_error(runner):
    runner.start()
    with pytest.raises(RuntimeError):
        runner.start()


def test_failing_frame_hook_is_logged_and_stops_loop(caplog):
    def broken_hook(frame):
        raise RuntimeError("renderer exploded")

    runner = SimulationRunner(FluidParams(n=32), frame_interval=0.001, on_frame=broken_hook)
    with caplog.at_level(logging.ERROR, logger="sim_loop"):
        runner.start()
        assert wait_for(lambda: not runner.is_running)
    runner.stop(timeout=5.0)
    assert runner.error_count == 1
    assert runner.ticks == 1
    assert any(
        "Simulation loop failed" in r.getMessage() and r.exc_info for r in caplog.records
    )


def test_stop_is_idempotent(runner):
    runner.stop()
    runner.start()
    runner.stop(timeout=5.0)
    runner.stop(timeout=5.0)
    assert not runner.is_running


def test_paused_loop_does_not_tick(runner):
    runner.pause()
    runner.start()
    time.sleep(0.1)
    assert runner.ticks == 0
    runner.resume()
    assert wait_for(lambda: runner.ticks > 0)


def test_toggle_pause(runner):
    assert runner.toggle_pause() is True
    assert runner.paused
    assert runner.toggle_pause() is False


def test_resize_while_running_restarts_on_fresh_grid(runner):
    runner.start()
    runner.inject(0.5, 0.5)
    assert wait_for(lambda: runner.ticks > 2)
    old_state = runner.state
    runner.resize(40)
    assert runner.is_running
    assert runner.params.n == 40
    assert runner.state is not old_state
    assert runner.state.density.shape == (42, 42)
    ticks = runner.ticks
    assert wait_for(lambda: runner.ticks > ticks)
    runner.stop(timeout=5.0)
    for field in runner.state.arrays():
        assert not field.any()
    assert runner.latest_frame().density.shape == (40, 40)


def test_update_params_changing_n_reallocates(runner):
    runner.inject(0.5, 0.5)
    runner.update_params(n=48, dt=0.05)
    assert runner.state.n == 48
    assert runner.params.dt == 0.05
    assert not runner.state.density.any()


def test_invalid_update_leaves_params_untouched(runner):
    before = runner.params
    with pytest.raises(ValueError):
        runner.update_params(dt=float("nan"))
    with pytest.raises(ValueError):
        runner.resize(8)
    assert runner.params is before


def test_reset_clears_fields(runner):
    runner.inject(0.5, 0.5)
    runner.run_ticks(2)
    runner.reset()
    assert runner.params.n == 32
    assert not runner.state.density.any()
    assert runner.latest_frame() is None


def test_sources_feed_each_tick():
    runner = SimulationRunner(
        FluidParams(n=32),
        steady_source=True,
        source_edge="bottom",
        emitter=WanderingEmitter(rng=np.random.default_rng(0)),
        debug=True,
    )
    frame = runner.run_ticks(4)
    assert frame.temperature[:8].sum() > 0
    assert frame.density.min() >= 0
    assert np.isfinite(frame.vel_y).all()


def test_injection_from_another_thread_while_running(runner):
    runner.start()
    done = threading.Event()

    def pointer():
        for k in range(50):
            runner.inject(0.3 + 0.005 * k, 0.3)
        done.set()

    threading.Thread(target=pointer).start()
    assert done.wait(30.0)
    assert wait_for(lambda: runner.latest_frame() is not None and runner.latest_frame().density.sum() > 0)
