import os
import logging
import logging.config


logger = logging.getLogger(__name__)


LOG_FORMAT_STRICT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_FORMAT_SCREEN = "%(log_color)s%(asctime)s [%(levelname)s]%(reset)s: %(message)s"


class Logs:
    def __init__(self, filename, screen=True, debug=False):

        op_mode = "DEBUG" if debug else "INFO"

        dirname = os.path.dirname(filename)
        if dirname:
            os.makedirs(dirname, exist_ok=True)

        handlers = {
            "info_file_handler": {
                "class": "logging.handlers.RotatingFileHandler",
                "level": "DEBUG",
                "formatter": "strict",
                "filename": filename,
                "maxBytes": 10485760,
                "backupCount": 20,
                "encoding": "utf8",
            },
        }

        if screen:
            handlers["default"] = {
                "level": op_mode,
                "class": "logging.StreamHandler",
                "formatter": "standard",
            }

        log_config = {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "strict": {"format": LOG_FORMAT_STRICT},
                "standard": {
                    "()": "colorlog.ColoredFormatter",
                    "format": LOG_FORMAT_SCREEN,
                },
            },
            "handlers": handlers,
            "loggers": {
                "": {
                    "handlers": list(handlers.keys()),
                    "level": "DEBUG",
                    "propagate": True,
                },
                "aiohttp": {"level": "WARNING"},
            },
        }

        logging.config.dictConfig(log_config)
