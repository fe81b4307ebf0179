import logging
import sys
from colorama import Fore, Style, init

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

LEVEL_TAGS = {
    logging.DEBUG: ("DEBUG", Style.DIM),
    logging.INFO: ("INFO", Fore.BLUE),
    SUCCESS: ("SUCCESS", Fore.GREEN),
    logging.WARNING: ("WARN", Fore.YELLOW),
    logging.ERROR: ("ERROR", Fore.RED),
    logging.CRITICAL: ("FATAL", Fore.RED + Style.BRIGHT),
}


class ConsoleFormatter(logging.Formatter):
    """[LEVEL] [YYYY-mm-dd HH:MM:SS] message, with the tag colored when the stream is a tty."""

    def __init__(self, use_color: bool = True):
        super().__init__(datefmt="%Y-%m-%d %H:%M:%S")
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        tag, color = LEVEL_TAGS.get(record.levelno, (record.levelname, ""))
        if self.use_color:
            tag = f"{color}[{tag}]{Style.RESET_ALL}"
        else:
            tag = f"[{tag}]"
        line = f"{tag} [{self.formatTime(record, self.datefmt)}] {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(verbose: bool = False, stream=None) -> logging.Logger:
    stream = stream or sys.stderr
    use_color = hasattr(stream, "isatty") and stream.isatty()
    if use_color:
        init()

    handler = logging.StreamHandler(stream)
    handler.setFormatter(ConsoleFormatter(use_color=use_color))

    root = logging.getLogger("uasf")
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.propagate = False
    return root


def log_success(logger: logging.Logger, message: str):
    logger.log(SUCCESS, message)
