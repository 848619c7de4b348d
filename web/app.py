"""
web.app – HTTP surface polled by the display device.

  GET /health        -> {"status": "ok"}
  GET /apps/<name>   -> frames payload rendered from the cached snapshot
  GET /test/<name>   -> run <name>'s refresh now, no throttles (loopback only)

The dispatcher knows nothing about individual providers; query parameters
go through each provider's ``parse_request``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from flask import Flask, jsonify, request

from db.store import KeyValueStore
from display.frames import message_response
from jobs.refresh import refresh_provider
from providers.base import BaseProvider, InvalidRequest, NoDataYet, enabled_providers, get_provider

log = logging.getLogger(__name__)

LOOPBACK = {"127.0.0.1", "::1", "localhost"}


def create_app(
    registry: Sequence[BaseProvider],
    store: KeyValueStore,
    enabled: Sequence[str] | None = None,
) -> Flask:
    app = Flask(__name__)
    served = tuple(enabled_providers(registry, enabled))

    def _find(name: str) -> BaseProvider | None:
        return get_provider(served, name)

    @app.get("/health")
    def health():
        return jsonify(status="ok")

    @app.get("/apps/<name>")
    def render_app(name: str):
        provider = _find(name)
        if provider is None:
            return jsonify(error="App not found"), 404
        try:
            payload = provider.handle_request(store, request.args)
        except InvalidRequest as exc:
            return jsonify(message_response(str(exc))), 400
        except NoDataYet:
            return jsonify(error="No data available yet"), 503
        except Exception:
            log.exception("Error serving app %s", name)
            return jsonify(error="Internal server error"), 500
        return jsonify(payload)

    @app.get("/test/<name>")
    def test_refresh(name: str):
        if request.remote_addr not in LOOPBACK:
            return jsonify(error="Not found"), 404
        provider = _find(name)
        if provider is None:
            return jsonify(error="App not found"), 404
        try:
            outcome = refresh_provider(provider, store, None)
        except Exception as exc:
            log.exception("Manual refresh of %s failed", name)
            return jsonify(app=name, success=False, error=str(exc)), 500
        return jsonify(app=name, success=True, outcome=outcome)

    @app.errorhandler(404)
    def not_found(_exc):
        return jsonify(error="Not found"), 404

    return app
