import numpy as np
import pytest

from tensornet import config


@pytest.fixture
def rng():
    return np.random.default_rng(0)


@pytest.fixture
def seeded():
    with config.fork_rng(1234) as gen:
        yield gen
