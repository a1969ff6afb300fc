from __future__ import annotations

import logging

from mediaoffload.core.logging import configure_logging


def test_configure_logging_installs_one_handler_and_quiets_boto() -> None:
    root = logging.getLogger()
    previous_level = root.level
    try:
        configure_logging("debug")
        configure_logging("DEBUG")

        ours = [handler for handler in root.handlers if getattr(handler, "_mediaoffload", False)]
        assert len(ours) == 1
        assert root.level == logging.DEBUG
        assert logging.getLogger("botocore").level == logging.WARNING

        configure_logging("not-a-level")
        assert root.level == logging.INFO
    finally:
        for handler in [h for h in root.handlers if getattr(h, "_mediaoffload", False)]:
            root.removeHandler(handler)
        root.setLevel(previous_level)
