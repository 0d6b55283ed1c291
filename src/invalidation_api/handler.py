"""Lambda handler for the invalidation ingestion API."""

import base64
import json
import time
from typing import Any, Dict

from shared.config import Config
from shared.errors import InvalidationPipelineError, PathValidationError, QueueUnavailableError
from shared.logger import StructuredLogger
from shared.paths import validate_path
from shared.queue import InvalidationQueue

INVALIDATE_ROUTE = "/invalidate"


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Accept one path for invalidation and enqueue it.

    Expected HTTP API request:
        POST /invalidate
        {"path": "/storage/v1/object/public/*"}

    Responds 202 as soon as the request is queued; the invalidation itself
    happens later, in a batch.
    """
    request_id = getattr(context, "aws_request_id", None) or getattr(context, "request_id", None)

    try:
        method, route = _route(event)
        if not route.rstrip("/").endswith(INVALIDATE_ROUTE):
            return _response(404, {"error": "Not found"})
        if method != "POST":
            return _response(405, {"error": "Method not allowed"})

        path = validate_path(_parse_body(event).get("path"))

        Config.validate(["SQS_CACHE_INVALIDATION_QUEUE_URL"])

        queue = InvalidationQueue()
        delivery_id = queue.enqueue({"path": path, "received_at": time.time(), "request_id": request_id})

        StructuredLogger.info(
            "Invalidation request accepted",
            path=path,
            delivery_id=delivery_id,
            request_id=request_id,
        )

        return _response(202, {"accepted": True, "deliveryId": delivery_id})

    except PathValidationError as e:
        StructuredLogger.warning("Invalidation request rejected", exception=e, request_id=request_id)
        return _response(400, {"error": str(e)})
    except QueueUnavailableError as e:
        StructuredLogger.error("Invalidation queue unavailable", exception=e, request_id=request_id)
        return _response(503, {"error": "Invalidation queue unavailable"})
    except InvalidationPipelineError as e:
        StructuredLogger.error("Invalidation API error", exception=e, request_id=request_id)
        return _response(500, {"error": "Internal server error"})
    except Exception as e:
        StructuredLogger.error("Unexpected error in invalidation API", exception=e, request_id=request_id)
        return _response(500, {"error": "Internal server error"})


def _route(event: Dict[str, Any]):
    """Method and path for both HTTP API (v2) and REST API (v1) payloads."""
    http = event.get("requestContext", {}).get("http")
    if http:
        return http.get("method", "").upper(), event.get("rawPath") or http.get("path", "")
    return event.get("httpMethod", "").upper(), event.get("path", "")


def _parse_body(event: Dict[str, Any]) -> Dict[str, Any]:
    body = event.get("body") or ""

    try:
        if event.get("isBase64Encoded"):
            body = base64.b64decode(body).decode("utf-8")
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise PathValidationError("Request body must be JSON") from e

    if not isinstance(payload, dict):
        raise PathValidationError('Request body must be an object like {"path": "/..."}')
    return payload


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body),
    }
