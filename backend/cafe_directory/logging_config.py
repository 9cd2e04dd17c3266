"""Root logging setup shared by the API and the backfill job."""
import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if not any(getattr(h, "_cafe_directory", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._cafe_directory = True
        root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    # boto/urllib3 are chatty at DEBUG and may log signed URLs
    for name in ("botocore", "boto3", "urllib3", "s3transfer"):
        logging.getLogger(name).setLevel(max(root.level, logging.WARNING))
