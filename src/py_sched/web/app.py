"""Flask application factory for the PySched web API.

The ``create_app`` function returns a Flask app with two endpoints:

- ``GET /api/policies``: list the policies that can be selected.
- ``POST /api/simulate``: run a script under a policy and return the
  trace, the exit order and the final state as JSON.

Every request runs a fresh ``Simulation``; nothing is kept between
requests.
"""

from __future__ import annotations

from flask import Flask, Response, jsonify, request

from py_sched.engine import Simulation
from py_sched.errors import InvariantError
from py_sched.process.scheduler import POLICIES, PolicyKind, create_policy
from py_sched.script import ScriptError, parse_script
from py_sched.trace import format_event

_HTTP_BAD_REQUEST = 400


def create_app() -> Flask:
    """Create and configure the Flask application.

    Returns:
        A configured Flask application ready to serve.

    """
    app = Flask(__name__)

    @app.route("/api/policies")
    def policies() -> Response:  # pyright: ignore[reportUnusedFunction]
        """Return the selectable policies.

        Returns:
            JSON with a ``policies`` list of ``kind``/``name`` pairs.

        """
        listing = [{"kind": kind.value, "name": cls.name} for kind, cls in POLICIES.items()]
        return jsonify({"policies": listing})

    @app.route("/api/simulate", methods=["POST"])
    def simulate() -> tuple[Response, int] | Response:  # pyright: ignore[reportUnusedFunction]
        """Run a simulation and return its outcome.

        Expects JSON body: ``{"script": "...", "policy": "rr"}``.  The
        policy defaults to FIFO.

        Returns:
            JSON with ``policy``, ``ticks``, ``trace``, ``events``,
            ``exited``, ``stranded`` and ``status`` fields, or an
            ``error`` field with status 400.

        """
        data = request.get_json(silent=True)
        if not isinstance(data, dict) or "script" not in data:
            return jsonify({"error": "Missing 'script' field"}), _HTTP_BAD_REQUEST

        try:
            policy = create_policy(data.get("policy", PolicyKind.FIFO))
            descriptors = parse_script(str(data["script"]))
        except ValueError as e:
            return jsonify({"error": str(e)}), _HTTP_BAD_REQUEST

        try:
            sim = Simulation(descriptors=descriptors, policy=policy)
        except InvariantError as e:
            return jsonify({"error": str(e)}), _HTTP_BAD_REQUEST

        try:
            result = sim.run()
        except InvariantError as e:
            return jsonify({"error": str(e)}), _HTTP_BAD_REQUEST
        return jsonify(
            {
                "policy": result.policy,
                "ticks": result.ticks,
                "trace": [format_event(e) for e in result.events],
                "events": [e.to_dict() for e in result.events],
                "exited": list(result.exited),
                "stranded": list(result.stranded),
                "status": sim.snapshot(),
            }
        )

    return app


def main() -> None:
    """Run the web API development server.

    This is the ``py-sched-web`` console entry point.
    """
    app = create_app()
    app.run(debug=True, port=8080)
