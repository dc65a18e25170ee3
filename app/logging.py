"""
Logging do serviço: stdout, formato único para uvicorn e loggers "checkout.*".
Nível vem de LOG_LEVEL; o SQL do SQLAlchemy só aparece em DEBUG.
"""
import logging
import sys

APP_LOGGERS = ("checkout", "app")
FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: int | str = logging.INFO, format_string: str = FORMAT) -> None:
    if isinstance(level, str):
        level = logging.getLevelName(level.strip().upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format=format_string, stream=sys.stdout, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", *APP_LOGGERS):
        logging.getLogger(name).setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if level <= logging.DEBUG else logging.WARNING)
