import pytest
from loguru import logger
from src.utils.logger import get_logger


@pytest.fixture
def captured():
    records = []
    sink_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(sink_id)


def test_get_logger_binds_namespaced_module(captured):
    get_logger("FeatureFlags").info("hello")
    assert captured[-1]["extra"]["module"] == "tool_router.FeatureFlags"


def test_get_logger_keeps_already_namespaced_names(captured):
    get_logger("tool_router.MCPClient").info("hello")
    assert captured[-1]["extra"]["module"] == "tool_router.MCPClient"
