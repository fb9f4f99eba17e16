import json
import os
from typing import Dict, Any


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Lambda handler for the backend service API"""
    path = event.get("path", "/")
    stage = os.environ.get("STAGE", "unknown")

    if path.rstrip("/") == "/health":
        return {
            "statusCode": 200,
            "body": json.dumps({"status": "ok", "stage": stage}),
        }

    return {
        "statusCode": 404,
        "body": json.dumps({"error": f"No route for {event.get('httpMethod', 'GET')} {path}"}),
    }
