# --- Standard library imports ---
import sys
import logging


# --- Custom log levels ---
TIMING = 25   # Between INFO (20) and WARNING (30)
logging.addLevelName(TIMING, "TIME")

def timing(self, message, *args, **kwargs):
    """Probe latency lines; shown only with LOG_TIMING=true."""
    if self.isEnabledFor(TIMING):
        self._log(TIMING, message, args, stacklevel=2, **kwargs)

logging.Logger.timing = timing

# --- Filters ---
class TimingFilter(logging.Filter):
    def __init__(self, enabled: bool):
        super().__init__()
        self.enabled = enabled

    def filter(self, record: logging.LogRecord) -> bool:
        return self.enabled or record.levelno != TIMING

# --- Format configuration constants ---
LOG_LEVEL_EMOJIS = {
    logging.DEBUG: "🧱",
    logging.INFO: "🟢",
    TIMING: "⚡️",
    logging.WARNING: "⚠️ ",
    logging.ERROR: "❌",
    logging.CRITICAL: "🔥",
}

# Short display names; also accepted as LOG_LEVEL values
LEVEL_ALIASES = {
    "WARN": logging.WARNING,
    "FATAL": logging.CRITICAL,
    "TIME": TIMING,
    "TIMING": TIMING,
}
DISPLAY_NAMES = {
    logging.WARNING: "WARN",
    logging.CRITICAL: "FATAL",
}

ROOT_NAMESPACE = "worker_watchdog"

# One connection line per health probe otherwise
QUIET_LOGGERS = ("urllib3",)

# --- Formatters ---
class EmojiFormatter(logging.Formatter):
    """
    `HH:MM:SS 🟢 poller:_schedule → message`

    The package prefix is dropped from logger names; loggers outside the
    package keep their full name.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.levelemoji = LOG_LEVEL_EMOJIS.get(record.levelno, "")
        record.levelname = DISPLAY_NAMES.get(record.levelno, record.levelname)
        record.shortname = record.name.removeprefix(f"{ROOT_NAMESPACE}.")
        return super().format(record)

# --- Public logging setup API ---
def resolve_level(name: str | int, default: int = logging.INFO) -> int:
    """
    Map a LOG_LEVEL value ("debug", "WARN", "25", ...) to a level number.

    Unknown names fall back to `default` instead of failing startup.
    """
    if isinstance(name, int):
        return name

    text = str(name).strip().upper()
    if text.isdigit():
        return int(text)
    if text in LEVEL_ALIASES:
        return LEVEL_ALIASES[text]

    level = logging.getLevelName(text)
    return level if isinstance(level, int) else default

def setup_logging(level=logging.INFO, log_timing: bool = False, stream=None) -> logging.Handler:
    """
    Install the supervisor's console handler on the root logger.

    Calling it again replaces the handler it installed before and leaves
    any other root handlers alone.
    """
    level = resolve_level(level)
    root = logging.getLogger()
    root.setLevel(level)

    for existing in list(root.handlers):
        if getattr(existing, "_worker_watchdog", False):
            root.removeHandler(existing)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler._worker_watchdog = True
    handler.setFormatter(EmojiFormatter(
        fmt="%(asctime)s %(levelemoji)s %(shortname)s:%(funcName)s → %(message)s",
        datefmt="%H:%M:%S",
    ))
    handler.addFilter(TimingFilter(enabled=log_timing))
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return handler

def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_NAMESPACE}.{name}")
