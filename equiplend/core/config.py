# equiplend/core/config.py
import os
import sys
import logging
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

# --- Load .env from the project root IF it exists ---
project_root = Path(__file__).resolve().parent.parent.parent
dotenv_path = project_root / ".env"
if dotenv_path.is_file():
    logger.debug(f"Loading environment variables from: {dotenv_path}")
    load_dotenv(dotenv_path=dotenv_path)
else:
    logger.debug(f".env file not found at {dotenv_path}. Relying on system environment variables.")


# --- Intercept handler (stdlib logging -> loguru) ---
class InterceptHandler(logging.Handler):
    """Routes standard logging records into loguru."""
    def emit(self, record: logging.LogRecord) -> None:
        try: level = logger.level(record.levelname).name
        except ValueError: level = record.levelno
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1
        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None: return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw!r}. Using default: {default}.")
        return default


def setup_logging():
    """Configure loguru sinks and intercept standard logging."""
    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    log_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
    )
    log_file_path = Path(os.getenv("LOG_FILE_PATH", "logs/equiplend_{time:YYYY-MM-DD}.log"))
    log_rotation = os.getenv("LOG_ROTATION", "1 day")
    log_retention = os.getenv("LOG_RETENTION", "7 days")
    log_serialize = _env_bool("LOG_SERIALIZE", "false")

    logger.remove()
    logger.add(sys.stderr, level=log_level_name, format=log_format, colorize=True)

    try:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file_path,
            level=log_level_name,
            format=log_format,
            rotation=log_rotation,
            retention=log_retention,
            serialize=log_serialize,
            enqueue=True,
            backtrace=True,
            diagnose=False,
            encoding="utf-8",
        )
        logger.info(f"File logging enabled at: {log_file_path}")
    except OSError as e:
        logger.error(f"Failed to setup file logging at {log_file_path}: {e}")

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in list(logging.root.manager.loggerDict):
        if name.startswith(("uvicorn", "fastapi", "starlette", "apscheduler")):
            existing = logging.getLogger(name)
            existing.handlers = [InterceptHandler()]
            existing.propagate = False

    logger.info(f"Loguru logging setup complete. Level: {log_level_name}")


# --- JWT Configuration ---
SECRET_KEY: str = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    logger.critical("FATAL: SECRET_KEY environment variable is not set.")
    raise ValueError("SECRET_KEY environment variable is not set.")

ALGORITHM: str = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES: int = _env_int("ACCESS_TOKEN_EXPIRE_MINUTES", 30)

# --- Store Configuration ---
STORE_BACKEND: str = os.getenv("STORE_BACKEND", "mongo").lower()
if STORE_BACKEND not in ("mongo", "memory"):
    logger.critical(f"FATAL: Unknown STORE_BACKEND '{STORE_BACKEND}'.")
    raise ValueError(f"STORE_BACKEND must be 'mongo' or 'memory', got '{STORE_BACKEND}'.")

MONGODB_URL: str = os.getenv("MONGODB_URL", "")
if STORE_BACKEND == "mongo" and not MONGODB_URL:
    logger.critical("FATAL: MONGODB_URL environment variable is not set.")
    raise ValueError("MONGODB_URL environment variable is not set.")

_default_db_name = "equiplend"
path_part = MONGODB_URL.rsplit("/", 1)[-1].split("?")[0] if MONGODB_URL.count("/") > 2 else ""
if path_part: _default_db_name = path_part
DATABASE_NAME: str = os.getenv("DATABASE_NAME", _default_db_name)

# --- Lending Policy ---
CANCEL_POLICY: str = os.getenv("CANCEL_POLICY", "retain").lower()
ADMIN_EMAIL: str = os.getenv("ADMIN_EMAIL", "admin@localhost")

# --- Notifications ---
NOTIFICATION_SENDER: str = os.getenv("NOTIFICATION_SENDER", "log").lower()
NOTIFICATION_AUTO_DISPATCH: bool = _env_bool("NOTIFICATION_AUTO_DISPATCH", "true")
NOTIFICATION_MAX_ATTEMPTS: int = _env_int("NOTIFICATION_MAX_ATTEMPTS", 5)
NOTIFICATION_RETRY_MINUTES: int = _env_int("NOTIFICATION_RETRY_MINUTES", 5)

# --- Scheduler ---
SCHEDULER_ENABLED: bool = _env_bool("SCHEDULER_ENABLED", "true")
SCHEDULER_TIMEZONE: str = os.getenv("SCHEDULER_TIMEZONE", "UTC")

logger.info(f"JWT Algorithm: {ALGORITHM}")
logger.info(f"Store backend: {STORE_BACKEND} (database: {DATABASE_NAME})")
logger.info(f"Cancel policy: {CANCEL_POLICY}")

# --- Rate Limiting ---
RATE_LIMIT_ENABLED: bool = _env_bool("RATE_LIMIT_ENABLED", "true")
RATE_LIMIT_STORAGE_URI: str = os.getenv("RATE_LIMIT_STORAGE_URI", "memory://")
