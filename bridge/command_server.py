"""Flask front end that forwards bus commands to the engine runtime."""

from __future__ import annotations

import atexit
import logging
import uuid
from typing import Any, Dict

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from orchestrator.config import load_config
from orchestrator.errors import CommandResponse, ValidationFailure

from .runtime import EngineRuntime

app = Flask(__name__)
logging.basicConfig(level=logging.INFO)
log = logging.getLogger("replay")

_runtime: EngineRuntime | None = None

# Envelope error codes mapped onto HTTP statuses.
_STATUS_BY_CODE = {
    "validation_error": 400,
    "state_conflict": 409,
    "transport_error": 504,
    "persistence_error": 500,
    "internal_error": 500,
}


def _get_runtime() -> EngineRuntime:
    global _runtime
    if _runtime is None:
        _runtime = EngineRuntime(load_config())
    return _runtime


@atexit.register
def _shutdown_runtime() -> None:  # pragma: no cover - shutdown path
    runtime = _runtime
    if runtime is None:
        return
    try:
        runtime.shutdown()
    except Exception as exc:
        log.debug("Engine runtime shutdown failed: %s", exc)


@app.errorhandler(Exception)
def handle_exception(error):
    if isinstance(error, HTTPException):
        return error
    correlation_id = str(uuid.uuid4())[:8]
    log.exception("[%s] Uncaught exception: %s", correlation_id, error)
    return (
        jsonify(
            {
                "success": False,
                "error": f"[{correlation_id}] Internal failure - {error}",
                "code": "internal_error",
                "correlation_id": correlation_id,
            }
        ),
        500,
    )


def _respond(envelope: Dict[str, Any]):
    status = 200 if envelope.get("success") else _STATUS_BY_CODE.get(envelope.get("code", ""), 400)
    return jsonify(envelope), status


@app.post("/commands")
def post_command():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return _respond(CommandResponse.fail(ValidationFailure("request body must be a JSON object")).as_dict())
    envelope = _get_runtime().submit(payload)
    return _respond(envelope)


@app.get("/status")
def get_status():
    envelope = _get_runtime().submit({"type": "get_status"})
    return _respond(envelope)


@app.get("/healthz")
def healthz():
    runtime = _get_runtime()
    return jsonify({"status": "ok" if runtime.running else "stopped"})


def main() -> None:  # pragma: no cover - manual entry point
    config = load_config()
    app.run(host=config.host, port=config.port, threaded=True)


if __name__ == "__main__":  # pragma: no cover
    main()
