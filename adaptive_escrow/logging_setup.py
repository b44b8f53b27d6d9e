import logging
import json
import time
from flask import has_request_context, request


class SkipHealthChecks(logging.Filter):
    """Probes hit /healthz every few seconds; keep them out of the log."""

    def filter(self, record):
        return not (has_request_context() and request.path == "/healthz")


class JsonRequestFormatter(logging.Formatter):
    def format(self, record):
        data = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        if has_request_context():
            data.update({
                "method": request.method,
                "path": request.path,
                "remote_addr": request.headers.get("X-Forwarded-For", request.remote_addr),
                "request_id": request.headers.get("X-Request-ID"),
            })

        # Structured context passed through `extra={"context": {...}}`
        context = getattr(record, "context", None)
        if context:
            data["context"] = context

        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(data, ensure_ascii=False, default=str)


def _level(app) -> int:
    if app is None:
        return logging.INFO
    if app.config.get("LOG_LEVEL"):
        return logging.getLevelName(app.config["LOG_LEVEL"].upper())
    return logging.DEBUG if app.config.get("DEBUG") else logging.INFO


def setup_logging(app=None):
    root = logging.getLogger()
    level = _level(app)
    root.setLevel(level)

    # drop duplicated handlers on reload
    for h in list(root.handlers):
        root.removeHandler(h)

    h = logging.StreamHandler()
    h.setFormatter(JsonRequestFormatter())
    h.addFilter(SkipHealthChecks())
    root.addHandler(h)

    if app:
        app.logger.handlers = [h]
        app.logger.setLevel(level)
