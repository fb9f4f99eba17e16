import json
import logging
import os
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import boto3

logger = logging.getLogger()
logger.setLevel(logging.INFO)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
REQUIRED_FIELDS = ("name", "email", "message")
DEFAULT_SUBJECT = "General Inquiry"


def allowed_origins() -> List[str]:
    return [origin.strip() for origin in os.environ.get("ALLOWED_ORIGINS", "").split(",") if origin.strip()]


def cors_headers(origin: Optional[str]) -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if origin and origin in allowed_origins():
        headers.update(
            {
                "Access-Control-Allow-Origin": origin,
                "Access-Control-Allow-Credentials": "true",
                "Access-Control-Allow-Headers": "Content-Type,X-Amz-Date,Authorization,X-Api-Key,X-Amz-Security-Token",
                "Access-Control-Allow-Methods": "OPTIONS,POST",
            }
        )
    return headers


def response(status_code: int, body: Dict[str, Any], origin: Optional[str]) -> Dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": cors_headers(origin),
        "body": json.dumps(body),
    }


def validate_submission(body: Dict[str, Any]) -> Optional[str]:
    """Return an error message for an unusable submission, or None."""
    missing = [field for field in REQUIRED_FIELDS if not str(body.get(field) or "").strip()]
    if missing:
        return f"Missing required fields: {', '.join(missing)}"
    if not EMAIL_PATTERN.match(body["email"].strip()):
        return "Invalid email address"
    return None


def count_items(table) -> int:
    """Count stored submissions. Scans page by page since COUNT results are paginated too."""
    total = 0
    kwargs = {"Select": "COUNT"}
    while True:
        page = table.scan(**kwargs)
        total += page.get("Count", 0)
        if "LastEvaluatedKey" not in page:
            return total
        kwargs["ExclusiveStartKey"] = page["LastEvaluatedKey"]


def build_item(body: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    item = {
        "email": body["email"].strip().lower(),
        "timestamp": now.isoformat(),
        "date": now.strftime("%Y-%m-%d"),
        "name": body["name"].strip(),
        "message": body["message"].strip(),
        "subject": (body.get("subject") or DEFAULT_SUBJECT).strip(),
        "stage": os.environ.get("STAGE", ""),
    }
    if body.get("phone"):
        item["phone"] = str(body["phone"]).strip()
    return item


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Lambda handler for contact form submissions"""
    headers = event.get("headers") or {}
    origin = headers.get("origin") or headers.get("Origin")

    try:
        body = json.loads(event.get("body") or "{}")
        if not isinstance(body, dict):
            return response(400, {"error": "Request body must be a JSON object"}, origin)

        error = validate_submission(body)
        if error:
            return response(400, {"error": error}, origin)

        table = boto3.resource("dynamodb").Table(os.environ["TABLE_NAME"])
        max_items = int(os.environ.get("MAX_ITEMS", "10000"))
        if count_items(table) >= max_items:
            logger.warning("Contact table is full (%s items), rejecting submission", max_items)
            return response(503, {"error": "We are not accepting new messages right now"}, origin)

        item = build_item(body, datetime.now(timezone.utc))
        table.put_item(Item=item)
        logger.info("Stored contact submission from %s", item["email"])

        return response(200, {"message": "Thank you for your message", "timestamp": item["timestamp"]}, origin)

    except json.JSONDecodeError:
        return response(400, {"error": "Invalid JSON"}, origin)
    except Exception:
        logger.exception("Error processing contact submission")
        return response(500, {"error": "Internal server error"}, origin)
