"""Local development server mimicking AWS Lambda runtime."""

import json
import os
from http.server import BaseHTTPRequestHandler, HTTPServer
from importlib import import_module
from typing import Any, Callable, Dict

from shared.logger import StructuredLogger

INGESTION_FUNCTION = "invalidation_api"


class LocalLambdaContext:
    """Mock Lambda context object."""

    def __init__(self, function_name: str, request_id: str):
        self.function_name = function_name
        self.aws_request_id = request_id
        self.log_group_name = f"/aws/lambda/{function_name}"
        self.log_stream_name = "local-dev"
        self.memory_limit_in_mb = 512
        self.invoked_function_arn = f"arn:aws:lambda:us-east-1:000000000000:function:{function_name}"


def load_lambda_handler(function_name: str) -> Callable[[Dict[str, Any], Any], Dict[str, Any]]:
    """Dynamically load Lambda handler from module."""
    try:
        handler_module = import_module(f"src.{function_name}.handler")
        return handler_module.lambda_handler
    except Exception as e:
        StructuredLogger.error("Failed to load Lambda handler", exception=e, function_name=function_name)
        raise


def invoke_function(function_name: str, event: Dict[str, Any]) -> Dict[str, Any]:
    """Invoke Lambda function locally."""
    try:
        StructuredLogger.info("Invoking Lambda function", function_name=function_name)

        handler = load_lambda_handler(function_name)
        context = LocalLambdaContext(
            function_name=function_name,
            request_id=f"local-{os.urandom(8).hex()}",
        )

        return handler(event, context)

    except Exception as e:
        StructuredLogger.error(
            "Function invocation failed",
            function_name=function_name,
            exception=e,
        )
        return {
            "statusCode": 500,
            "body": json.dumps({"error": str(e)}),
        }


def http_api_event(method: str, path: str, body: str) -> Dict[str, Any]:
    """Build an API Gateway HTTP API (payload v2) event."""
    return {
        "version": "2.0",
        "rawPath": path,
        "requestContext": {"http": {"method": method, "path": path}},
        "body": body,
        "isBase64Encoded": False,
    }


class LambdaRequestHandler(BaseHTTPRequestHandler):
    """
    POST /invalidate is forwarded to the ingestion function as an HTTP API
    event. POST /invoke runs any function: {"function_name": ..., "event": {...}}.
    """

    def do_POST(self):
        content_length = int(self.headers.get("Content-Length", 0))
        body = self.rfile.read(content_length).decode("utf-8")

        try:
            if self.path.rstrip("/") == "/invoke":
                request_data = json.loads(body)
                function_name = request_data.get("function_name")

                if not function_name:
                    self._send_json(400, {"error": "Missing function_name"})
                    return

                self._send_json(200, invoke_function(function_name, request_data.get("event", {})))
                return

            result = invoke_function(INGESTION_FUNCTION, http_api_event("POST", self.path, body))
            self.send_response(result.get("statusCode", 200))
            for name, value in result.get("headers", {}).items():
                self.send_header(name, value)
            self.end_headers()
            self.wfile.write(result.get("body", "").encode())

        except Exception as e:
            self._send_json(500, {"error": str(e)})

    def _send_json(self, status: int, payload: Dict[str, Any]) -> None:
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.end_headers()
        self.wfile.write(json.dumps(payload).encode())

    def log_message(self, format, *args):
        """Suppress default logging."""
        pass


def main():
    """Start local development server."""
    port = int(os.environ.get("PORT", "8000"))
    server = HTTPServer(("0.0.0.0", port), LambdaRequestHandler)
    StructuredLogger.info("Local Lambda development server started", port=port)

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        StructuredLogger.info("Server shutting down")
        server.shutdown()


if __name__ == "__main__":
    main()
