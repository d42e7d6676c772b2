"""
Structured logging for ExamStar
Event-style log lines: logger.info("event_name", key=value, ...)
"""
import json
import logging
import sys
from datetime import datetime, timezone


class StructuredLogger:
    """Thin wrapper over the standard logging module that renders keyword fields"""

    def __init__(self, name='examstar', level='INFO', json_output=False):
        self._logger = logging.getLogger(name)
        self.json_output = json_output
        if not self._logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)-5s [%(name)s] %(message)s'))
            self._logger.addHandler(handler)
            self._logger.propagate = False
        self.set_level(level)

    def configure(self, level='INFO', json_output=False):
        """Apply app configuration (called once the Flask config is loaded)"""
        self.json_output = json_output
        self.set_level(level)

    def set_level(self, level):
        self._logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    def _render(self, event, fields):
        if self.json_output:
            payload = {'event': event, 'timestamp': datetime.now(timezone.utc).isoformat()}
            for key, value in fields.items():
                try:
                    json.dumps(value)
                    payload[key] = value
                except (TypeError, ValueError):
                    payload[key] = str(value)
            return json.dumps(payload)
        if not fields:
            return event
        pairs = ' '.join(f'{key}={value}' for key, value in fields.items())
        return f'{event} {pairs}'

    def _log(self, level, event, exc_info=False, **fields):
        if self._logger.isEnabledFor(level):
            self._logger.log(level, self._render(event, fields), exc_info=exc_info)

    def debug(self, event, **fields):
        self._log(logging.DEBUG, event, **fields)

    def info(self, event, **fields):
        self._log(logging.INFO, event, **fields)

    def warning(self, event, exc_info=False, **fields):
        self._log(logging.WARNING, event, exc_info=exc_info, **fields)

    def error(self, event, exc_info=False, **fields):
        self._log(logging.ERROR, event, exc_info=exc_info, **fields)

    def security_event(self, event, user_id=None, ip_address=None, **fields):
        """Auth / access events, always logged at WARNING with a marker"""
        self._log(logging.WARNING, event, security=True, user_id=user_id, ip_address=ip_address, **fields)


logger = StructuredLogger()
