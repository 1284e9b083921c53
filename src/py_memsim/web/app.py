"""Flask application factory for the py-memsim JSON API.

The ``create_app`` function wraps a memory engine and returns a Flask
app with these endpoints:

- ``GET /api/snapshot`` — the full engine snapshot.
- ``POST /api/initialize`` — switch technique and configuration.
- ``GET /api/templates`` — the template catalogue.
- ``POST /api/processes`` — launch a template or an ad-hoc program.
- ``DELETE /api/processes/<id>`` — terminate an instance.
- ``POST /api/compact`` — compact dynamic memory.
- ``GET /api/log`` — the engine log, optionally by level or instance.
- ``POST /api/execute`` — run one shell command and return its output.

Every engine failure becomes a JSON ``{"error": ...}`` body with a 4xx
status; the engine itself is never left half-updated.
"""

from __future__ import annotations

from flask import Flask, Response, jsonify, request

from py_memsim.config import MemoryConfig
from py_memsim.engine import AddResult, AddStatus, MemoryEngine
from py_memsim.errors import AllocationError, InvalidRequestError
from py_memsim.logging import LogLevel
from py_memsim.process.templates import ProcessTemplate
from py_memsim.shell import Shell
from py_memsim.units import KIB

_HTTP_CREATED = 201
_HTTP_ACCEPTED = 202
_HTTP_BAD_REQUEST = 400
_HTTP_NOT_FOUND = 404
_HTTP_CONFLICT = 409

_ADD_STATUS_CODES = {
    AddStatus.ALLOCATED: _HTTP_CREATED,
    AddStatus.QUEUED: _HTTP_ACCEPTED,
    AddStatus.REJECTED: _HTTP_CONFLICT,
}


def _error(message: str, status: int = _HTTP_BAD_REQUEST) -> tuple[Response, int]:
    return jsonify({"error": message}), status


def _template_from_request(data: dict[str, object]) -> ProcessTemplate | str:
    """Turn a launch request body into a template or a catalogue name.

    Accepted bodies::

        {"template": "P2 (Word)"}
        {"name": "Editor", "sizeKiB": 1200}
        {"name": "Tool", "sectionsKiB": {"text": 64, "heap": 128}}

    Raises:
        InvalidRequestError: If the body matches none of these shapes.

    """
    if "template" in data:
        return str(data["template"])
    name = data.get("name")
    if not isinstance(name, str) or not name:
        msg = "Expected 'template', or 'name' with 'sizeKiB' or 'sectionsKiB'"
        raise InvalidRequestError(msg)
    try:
        if "sizeKiB" in data:
            return ProcessTemplate.single(name, int(float(data["sizeKiB"]) * KIB))  # type: ignore[arg-type]
        sections = data.get("sectionsKiB")
        if isinstance(sections, dict):
            sizes = {key: int(float(value) * KIB) for key, value in sections.items()}
            return ProcessTemplate.custom(name, **sizes)
    except (TypeError, ValueError) as e:
        msg = f"Invalid process sizes: {e}"
        raise InvalidRequestError(msg) from e
    msg = f"Process '{name}' needs 'sizeKiB' or 'sectionsKiB'"
    raise InvalidRequestError(msg)


def _add_result_body(result: AddResult) -> dict[str, object]:
    return {
        "status": str(result.status),
        "instance_id": result.instance_id,
        "reason": result.reason,
    }


def create_app(engine: MemoryEngine | None = None) -> Flask:
    """Create and configure the Flask application.

    Args:
        engine: The engine to serve; a default dynamic engine if omitted.

    Returns:
        A configured Flask application ready to serve.

    """
    engine = engine if engine is not None else MemoryEngine()
    shell = Shell(engine=engine)

    app = Flask(__name__)

    @app.route("/api/snapshot")
    def snapshot() -> Response:  # pyright: ignore[reportUnusedFunction]
        """Return the full engine snapshot."""
        return jsonify(engine.snapshot().to_dict())

    @app.route("/api/initialize", methods=["POST"])
    def initialize() -> tuple[Response, int] | Response:  # pyright: ignore[reportUnusedFunction]
        """Rebuild memory.

        Expects JSON body: ``{"technique": "...", "config": {...}}``.
        Options in ``config`` use the external names
        (``pageSizeKiB``, ``fitPolicy``...) or field names.
        """
        data = request.get_json(silent=True)
        if not isinstance(data, dict) or "technique" not in data:
            return _error("Missing 'technique' field")
        options = data.get("config") or {}
        if not isinstance(options, dict):
            return _error("'config' must be an object")
        try:
            engine.initialize(data["technique"], MemoryConfig.from_dict(options))
        except AllocationError as e:
            return _error(str(e))
        return jsonify(engine.snapshot().to_dict())

    @app.route("/api/templates")
    def templates() -> Response:  # pyright: ignore[reportUnusedFunction]
        """Return the template catalogue."""
        return jsonify([t.to_dict() for t in engine.templates])

    @app.route("/api/processes", methods=["POST"])
    def add_process() -> tuple[Response, int]:  # pyright: ignore[reportUnusedFunction]
        """Launch a process.

        Returns:
            201 when allocated, 202 when queued, 409 when rejected.

        """
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return _error("Expected a JSON object")
        try:
            process = _template_from_request(data)
        except AllocationError as e:
            return _error(str(e))
        result = engine.add_process(process)
        return jsonify(_add_result_body(result)), _ADD_STATUS_CODES[result.status]

    @app.route("/api/processes/<int:instance_id>", methods=["DELETE"])
    def remove_process(instance_id: int) -> tuple[Response, int] | Response:  # pyright: ignore[reportUnusedFunction]
        """Terminate an instance and retry the waiting queue."""
        try:
            result = engine.remove_process(instance_id)
        except InvalidRequestError as e:
            return _error(str(e), _HTTP_NOT_FOUND)
        return jsonify(
            {
                "instance_id": result.instance_id,
                "released": result.released,
                "admitted": list(result.admitted),
                "compacted": result.compacted,
            }
        )

    @app.route("/api/compact", methods=["POST"])
    def compact() -> tuple[Response, int] | Response:  # pyright: ignore[reportUnusedFunction]
        """Compact dynamic memory."""
        try:
            result = engine.compact()
        except InvalidRequestError as e:
            return _error(str(e), _HTTP_CONFLICT)
        return jsonify({"moved": result.moved, "admitted": list(result.admitted)})

    @app.route("/api/log")
    def log() -> tuple[Response, int] | Response:  # pyright: ignore[reportUnusedFunction]
        """Return log entries, filtered by ``?level=`` and ``?instance=``."""
        level_name = request.args.get("level")
        instance = request.args.get("instance", type=int)
        try:
            min_level = LogLevel[level_name.upper()] if level_name else None
        except KeyError:
            return _error(f"Unknown log level '{level_name}'")
        entries = engine.logger.filter(min_level=min_level, instance_id=instance)
        return jsonify([entry.to_dict() for entry in entries])

    @app.route("/api/execute", methods=["POST"])
    def execute() -> tuple[Response, int] | Response:  # pyright: ignore[reportUnusedFunction]
        """Execute a shell command and return its output.

        Expects JSON body: ``{"command": "..."}``

        """
        data = request.get_json(silent=True)
        if data is None or "command" not in data:
            return _error("Missing 'command' field")
        result = shell.execute(str(data["command"]))
        if result == Shell.EXIT_SENTINEL:
            result = ""
        return jsonify({"output": result})

    return app


def main() -> None:
    """Run the web API development server.

    This is the ``py-memsim-web`` console entry point.
    """
    app = create_app()
    app.run(debug=True, port=8080)
