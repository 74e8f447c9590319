from __future__ import annotations

import io
import json
import logging

import allure

from devloop.config import LoggingSettings
from devloop.logging_setup import setup_logging

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Progress logging"),
]

_METADATA = {
    "type": "build",
    "key": "build.api.v-1",
    "baseKey": "build.api",
    "status": "success",
    "durationMs": 12,
}


def test_json_logger_emits_task_metadata() -> None:
    stream = io.StringIO()
    setup_logging(LoggingSettings(level="INFO", logger_type="json"), stream=stream)

    logging.getLogger("devloop.scheduler.graph").info(
        "build.api success in 12ms",
        extra={"section": "api", "task_metadata": _METADATA},
    )

    entry = json.loads(stream.getvalue().strip())
    assert entry == {
        "msg": "build.api success in 12ms",
        "level": "info",
        "section": "api",
        "taskMetadata": _METADATA,
        "durationMs": 12,
    }


def test_basic_logger_prefixes_section_and_honours_level() -> None:
    stream = io.StringIO()
    setup_logging(LoggingSettings(level="WARNING", logger_type="basic"), stream=stream)
    logger = logging.getLogger("devloop.watch.loop")

    logger.info("hidden")
    logger.warning("dropped change", extra={"section": "lib"})
    logger.error("plain")

    assert stream.getvalue().splitlines() == ["[lib] dropped change", "plain"]


def test_quiet_logger_writes_nothing() -> None:
    stream = io.StringIO()
    root = setup_logging(LoggingSettings(logger_type="quiet"), stream=stream)

    logging.getLogger("devloop").error("nobody hears this")

    assert stream.getvalue() == ""
    assert not root.propagate
