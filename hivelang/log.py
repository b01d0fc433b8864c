import sys

from loguru import logger
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor

LOG_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan> | {extra[run_id]} | {message}"
)

_tracing_enabled = False


def configure_logging(level: str = "INFO", sink=sys.stderr) -> int:
    """Replace loguru's default handler; returns the new handler id."""
    logger.remove()
    logger.configure(extra={"run_id": "-"})
    return logger.add(sink, level=level.upper(), format=LOG_FORMAT, backtrace=False, diagnose=False)


def enable_console_tracing() -> None:
    """Export engine spans to stdout."""
    global _tracing_enabled
    if _tracing_enabled:
        return
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    _tracing_enabled = True
