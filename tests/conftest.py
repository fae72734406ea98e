import numpy as np
import pytest

from fluid_sim import FluidParams, initialize


@pytest.fixture()
def rng():
    return np.random.default_rng(1234)


@pytest.fixture()
def grid():
    return initialize(32)


@pytest.fixture()
def params():
    return FluidParams(n=32)
