# library_app/core/config.py
import os
import sys
import logging
from pathlib import Path
from dotenv import load_dotenv
from loguru import logger

try:
    project_root = Path(__file__).resolve().parent.parent.parent
    dotenv_path = project_root / '.env'
    logger.debug(f"Calculated .env path using pathlib: {dotenv_path}")
except Exception as e:
    logger.error(f"Error calculating project root/dotenv path: {e}")
    dotenv_path = Path(".env")
    logger.warning(f"Using fallback .env path: {dotenv_path.resolve()}")

# Environment variables already set win over the .env file
if dotenv_path.is_file():
    logger.info(f"Loading environment variables from: {dotenv_path}")
    load_dotenv(dotenv_path=dotenv_path, override=False)
else:
    logger.warning(f".env file not found at {dotenv_path}. Relying on system environment variables.")


class InterceptHandler(logging.Handler):
    """Routes standard library log records into Loguru."""
    def emit(self, record: logging.LogRecord) -> None:
        try: level = logger.level(record.levelname).name
        except ValueError: level = record.levelno
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1
        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging():
    """Configure Loguru sinks and intercept standard logging."""
    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()

    log_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
    )
    log_file_path = Path(os.getenv("LOG_FILE_PATH", "logs/app_{time:YYYY-MM-DD}.log"))
    log_rotation = os.getenv("LOG_ROTATION", "1 day")
    log_retention = os.getenv("LOG_RETENTION", "7 days")
    log_serialize = os.getenv("LOG_SERIALIZE", "False").lower() == 'true'

    logger.remove()

    logger.add(
        sys.stderr,
        level=log_level_name,
        format=log_format,
        colorize=True,
    )

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
            diagnose=ENVIRONMENT != "production",
            encoding="utf-8"
        )
        logger.info(f"File logging enabled at: {log_file_path}")
    except Exception as e:
        logger.error(f"Failed to setup file logging at {log_file_path}: {e}")

    try:
        logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
        uvicorn_access = logging.getLogger("uvicorn.access")
        uvicorn_access.handlers = [InterceptHandler()]
        uvicorn_access.propagate = False
        for name in logging.root.manager.loggerDict:
            if name.startswith("uvicorn.") or name.startswith("fastapi.") or name.startswith("starlette."):
                existing_logger = logging.getLogger(name)
                existing_logger.handlers = [InterceptHandler()]
                existing_logger.propagate = False
        logger.info("Standard library logging intercepted.")
    except Exception as e:
        logger.error(f"Failed to intercept standard logging: {e}")

    logger.info(f"Loguru logging setup complete. Level: {log_level_name}")


def _env_number(name: str, default, cast=float):
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw!r}. Using default: {default}.")
        return default
    if value < 0:
        logger.warning(f"Negative {name}={raw!r}. Using default: {default}.")
        return default
    return value


# --- Runtime ---
ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development").lower()
RATE_LIMIT_ENABLED: bool = os.getenv("RATE_LIMIT_ENABLED", "True").lower() == "true"

# --- Database Configuration ---
MONGODB_URL: str = os.getenv("MONGODB_URL")
if not MONGODB_URL:
    logger.critical("FATAL: MONGODB_URL environment variable is not set.")
    raise ValueError("MONGODB_URL environment variable is not set.")

_default_db_name = "library_db"
path_part = MONGODB_URL.rsplit('/', 1)[-1].split('?')[0]
if path_part and '://' not in path_part and ':' not in path_part:
    _default_db_name = path_part
DATABASE_NAME: str = os.getenv("DATABASE_NAME", _default_db_name)

# --- Loan policy ---
DEFAULT_LOAN_DAYS: int = _env_number("DEFAULT_LOAN_DAYS", 14, int)
DEFAULT_RENEWAL_DAYS: int = _env_number("DEFAULT_RENEWAL_DAYS", 7, int)
MAX_RENEWAL_DAYS: int = _env_number("MAX_RENEWAL_DAYS", 30, int)
MEMBERSHIP_DAYS: int = _env_number("MEMBERSHIP_DAYS", 365, int)

# --- Fine policy ---
FINE_POLICY: str = os.getenv("FINE_POLICY", "flat").lower()
if FINE_POLICY not in ("flat", "progressive"):
    logger.warning(f"Unknown FINE_POLICY '{FINE_POLICY}'. Using default: flat.")
    FINE_POLICY = "flat"
FINE_RATE_PER_DAY: float = _env_number("FINE_RATE_PER_DAY", 1.0)
LOST_BOOK_FEE: float = _env_number("LOST_BOOK_FEE", 50.0)
DAMAGED_BOOK_FEE: float = _env_number("DAMAGED_BOOK_FEE", 20.0)


logger.info(f"Environment: {ENVIRONMENT}")
logger.info(f"Database Name: {DATABASE_NAME}")
logger.info(f"Fine policy: {FINE_POLICY} @ {FINE_RATE_PER_DAY}/day, lost fee {LOST_BOOK_FEE}")
