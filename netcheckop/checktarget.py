"""A small HTTP target that answers connectivity checks with a greeting."""

from __future__ import annotations

import argparse
import logging
import os
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

log = logging.getLogger(__name__)

PORT = "8080"
NODE_NAME_ENV = "K8S_NODE_NAME"


def greeting(client: str, server: str, node_name: str) -> str:
    """The text returned to a client that reached this target."""
    return f"Hello, {client}. You have reached {server} on {node_name}"


class CheckTargetHandler(BaseHTTPRequestHandler):
    """Answers every path with who asked, the address reached and the node."""

    def do_GET(self) -> None:
        client = str(self.client_address[0]) if self.client_address else ""
        try:
            server = str(self.connection.getsockname()[0])
        except (OSError, IndexError, TypeError):
            server = "unknown IP"
        body = greeting(client, server, os.environ.get(NODE_NAME_ENV, "")).encode()
        self.send_response(200)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        log.debug("%s - %s", self.address_string(), format % args)


def serve(port: str | int) -> None:
    """Serve the check target on all interfaces until the process ends."""
    print(f"serving on {port}", flush=True)
    with ThreadingHTTPServer(("", int(port)), CheckTargetHandler) as server:
        server.serve_forever()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="network-check-target",
        description=f"Answer connectivity checks over HTTP on port {PORT}.",
    )
    parser.parse_args(argv)
    serve(PORT)