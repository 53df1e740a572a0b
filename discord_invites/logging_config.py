import logging
import sys


class ContextDefaultsFilter(logging.Filter):
    """Ensure contextual fields exist to avoid KeyError in formatters."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        for field, default in (
            ("uuid", "-"),
            ("operation", "-"),
        ):
            if not hasattr(record, field):
                setattr(record, field, default)
        return True


def setup_logging(level: str = "INFO") -> None:
    """Send all service logs to stdout, tagged with the request uuid and operation name."""
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.addFilter(ContextDefaultsFilter())
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(name)s | op=%(operation)s | uuid=%(uuid)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
