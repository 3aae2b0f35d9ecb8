import inspect
import logging
from opentelemetry import trace


class CustomLogger:
    """override the python logger to include the chart being rendered with every record"""

    def __init__(self, name, level=logging.INFO):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)

    def get_chart_id(self):
        """retrieve the chart_id from the nearest calling frame which has one"""
        try:
            stack = inspect.stack()
            for frame_info in stack:
                frame = frame_info.frame
                chart_id = frame.f_locals.get("chart_id")
                if chart_id is not None:
                    return chart_id
                owner = frame.f_locals.get("self")
                chart_id = getattr(owner, "chart_id", None)
                if isinstance(chart_id, (int, str)):
                    return chart_id
        except Exception as error:
            self.logger.error("An error occurred while getting chart_id: %s", str(error))
        return ""

    def get_trace_context(self):
        """Get current trace and span context for log correlation"""
        try:
            current_span = trace.get_current_span()
            if current_span and current_span.is_recording():
                span_context = current_span.get_span_context()
                return {
                    "trace_id": f"{span_context.trace_id:032x}",
                    "span_id": f"{span_context.span_id:016x}",
                    "trace_flags": span_context.trace_flags,
                }
        except Exception:
            # Don't log this error to avoid infinite recursion
            pass
        return {}

    def _extra(self):
        caller_name = inspect.stack()[2].function
        return {
            "caller_name": caller_name,
            "chart_id": self.get_chart_id(),
            **self.get_trace_context(),
        }

    def info(self, *args):
        """call logger.info with the caller_name and the chart_id"""
        self.logger.info(*args, extra=self._extra())

    def error(self, *args):
        """call logger.error with the caller_name and the chart_id"""
        self.logger.error(*args, extra=self._extra())

    def debug(self, *args):
        """call logger.debug with the caller_name and the chart_id"""
        self.logger.debug(*args, extra=self._extra())

    def exception(self, *args):
        """call logger.exception with the caller_name and the chart_id"""
        self.logger.exception(*args, extra=self._extra())

    def warning(self, *args):
        """call logger.warning with the caller_name and the chart_id"""
        self.logger.warning(*args, extra=self._extra())
