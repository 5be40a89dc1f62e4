import logging

import pytest

from matterbuild.shared.logging_config import LOGGER_NAME


@pytest.fixture(autouse=True)
def _restore_matterbuild_logger():
    # configure_logging() (e.g. via the server lifespan) mutates the shared
    # logger; restore it so state does not leak between tests
    logger = logging.getLogger(LOGGER_NAME)
    handlers = list(logger.handlers)
    level = logger.level
    propagate = logger.propagate
    yield
    for handler in list(logger.handlers):
        if handler not in handlers:
            logger.removeHandler(handler)
    logger.setLevel(level)
    logger.propagate = propagate
