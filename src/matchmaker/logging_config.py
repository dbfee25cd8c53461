"""Logging configuration for the matchmaker.

Console output is kept short (INFO for ``matchmaker run``, WARNING for
one-shot commands); everything at DEBUG goes to a daily log file so the
many short CLI invocations of a lobby evening end up in one place.
"""

import logging
from datetime import date
from pathlib import Path

CONSOLE_FORMAT = "%(asctime)s %(levelname)-5s %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)-5s [%(name)s] %(message)s"


def setup_logging(
    data_dir: str = "data", console_level: int = logging.INFO
) -> Path:
    """Attach a console handler and a DEBUG file handler to the root logger.

    The file is ``{data_dir}/logs/matchmaker-YYYY-MM-DD.log``, opened in
    append mode. Existing root handlers are removed first so repeated
    calls (tests, several commands in one process) do not duplicate output.

    Returns:
        Path to the log file.
    """
    log_dir = Path(data_dir) / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"matchmaker-{date.today().isoformat()}.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.handlers.clear()

    console = logging.StreamHandler()
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
    root.addHandler(console)

    file_handler = logging.FileHandler(str(log_file), mode="a", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
    root.addHandler(file_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return log_file
