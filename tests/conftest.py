import logging

import pytest


@pytest.fixture(autouse=True)
def debug_logging():
    logging.getLogger("jobrow").setLevel(logging.DEBUG)
