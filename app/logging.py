"""stdout logging for the API process. Call setup_logging once, before the app handles traffic."""
import logging
import sys

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
# Third-party loggers that flood INFO with credential lookups and connection pool chatter
QUIET_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3", "httpx", "PIL")


def setup_logging(
    level: int | str = logging.INFO,
    format_string: str | None = None,
) -> None:
    if isinstance(level, str):
        level = level.strip().upper() or "INFO"
    logging.basicConfig(level=level, format=format_string or DEFAULT_FORMAT, stream=sys.stdout, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "tummy", "app"):
        logging.getLogger(name).setLevel(level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
