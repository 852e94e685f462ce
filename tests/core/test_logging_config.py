"""日志配置单元测试

验证 setup_logging 只接管 "llmgate" 包 logger、重复调用不叠加 handler，
以及 call_context 的上下文绑定与恢复。
"""

import logging

import pytest
import structlog
from llmgate.core.logging_config import PACKAGE_LOGGER, call_context, setup_logging


@pytest.fixture(autouse=True)
def restore_logging():
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    handlers = list(package_logger.handlers)
    level = package_logger.level
    propagate = package_logger.propagate
    structlog.contextvars.clear_contextvars()
    yield
    package_logger.handlers = handlers
    package_logger.setLevel(level)
    package_logger.propagate = propagate
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


class TestSetupLogging:
    def test_level_from_argument(self):
        package_logger = setup_logging(level="debug", fmt="json")
        assert package_logger.name == "llmgate"
        assert package_logger.level == logging.DEBUG

    def test_level_from_environment(self, monkeypatch):
        monkeypatch.setenv("LLMGATE_LOG_LEVEL", "WARNING")
        assert setup_logging().level == logging.WARNING

    def test_unknown_level_falls_back_to_info(self):
        assert setup_logging(level="chatty").level == logging.INFO

    def test_repeated_calls_keep_single_handler(self):
        setup_logging()
        package_logger = setup_logging(fmt="json")

        named = [handler for handler in package_logger.handlers if handler.get_name() == "llmgate"]
        assert len(named) == 1

    def test_root_logger_untouched(self):
        root_handlers = list(logging.getLogger().handlers)

        package_logger = setup_logging()

        assert package_logger.propagate is False
        assert logging.getLogger().handlers == root_handlers


class TestCallContext:
    def test_binds_and_restores(self):
        with call_context(operation="chat", provider="openai", configuration_id=None):
            bound = structlog.contextvars.get_contextvars()
            assert bound == {"operation": "chat", "provider": "openai"}

        assert structlog.contextvars.get_contextvars() == {}

    def test_restores_after_error(self):
        with pytest.raises(RuntimeError):
            with call_context(operation="embed"):
                raise RuntimeError("boom")

        assert "operation" not in structlog.contextvars.get_contextvars()
