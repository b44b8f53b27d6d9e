"""
Domain errors for the escrow backend.

Every caller-visible failure is an ``EscrowError`` subclass carrying the HTTP
status it maps to and a ``details`` dict naming the violated constraint.
``ProviderUnavailable`` is internal to the suggestion engine and never reaches
the API.
"""
import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class EscrowError(Exception):
    """Base class for failures surfaced to API callers."""

    status_code = 400

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self):
        return {
            "ok": False,
            "error": self.message,
            "code": self.__class__.__name__,
            "details": self.details,
        }


class InvalidInput(EscrowError):
    """Caller-supplied value violates a range/format/required-field constraint."""

    status_code = 400


class NotFound(EscrowError):
    """Referenced escrow, user or suggestion does not exist."""

    status_code = 404


class Forbidden(EscrowError):
    """Acting wallet is not the party allowed to perform the transition."""

    status_code = 403


class InvalidState(EscrowError):
    """Entity exists but is not in a state where the transition is legal."""

    status_code = 400


class ProviderUnavailable(Exception):
    """Reasoning provider failed, timed out or returned unparseable output."""


def register_error_handlers(app):
    @app.errorhandler(EscrowError)
    def _handle_escrow_error(err):
        logger.info(
            "request rejected: %s", err.message,
            extra={"context": {"code": err.__class__.__name__, **err.details}},
        )
        return jsonify(err.to_dict()), err.status_code

    @app.errorhandler(HTTPException)
    def _handle_http_error(err):
        return jsonify({"ok": False, "error": err.description, "code": err.name}), err.code

    @app.errorhandler(Exception)
    def _handle_unexpected(err):
        logger.exception("unhandled error: %s", err)
        return jsonify({"ok": False, "error": "Internal server error"}), 500
