import logging

from localtune.logger import LOGGER_NAME, setup_logger


def test_setup_logger_writes_rotating_file_once(tmp_path, monkeypatch) -> None:
    logger = logging.getLogger(LOGGER_NAME)
    monkeypatch.setattr(logger, "handlers", [])
    setup_logger(level=logging.DEBUG, home=tmp_path)
    setup_logger(level=logging.INFO, home=tmp_path)
    try:
        assert len(logger.handlers) == 2
        assert logger.level == logging.INFO
        logger.info("hello log")
        for handler in logger.handlers:
            handler.flush()
        assert "hello log" in (tmp_path / "logs" / "localtune.log").read_text(encoding="utf-8")
    finally:
        for handler in logger.handlers:
            handler.close()
