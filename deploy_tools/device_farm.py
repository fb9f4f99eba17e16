"""
Results check for the Device Farm run scheduled by the frontend pipeline.

The trigger Lambda records every run it schedules under
``runs/<run id>/run.json`` in the results bucket. This module picks the most
recent record, waits for the run to finish and writes ``summary.json`` next
to it.
"""

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from deploy_tools.errors import DeployToolsError

logger = logging.getLogger(__name__)

RUNS_PREFIX = "runs/"
PASSED = "PASSED"


def latest_run_record(s3, bucket: str) -> Optional[Dict[str, Any]]:
    """The newest run.json record in the bucket, or None if no run was recorded."""
    latest = None
    paginator = s3.get_paginator("list_objects_v2")
    for page in paginator.paginate(Bucket=bucket, Prefix=RUNS_PREFIX):
        for obj in page.get("Contents", []):
            if not obj["Key"].endswith("/run.json"):
                continue
            if latest is None or obj["LastModified"] > latest["LastModified"]:
                latest = obj

    if latest is None:
        return None

    body = s3.get_object(Bucket=bucket, Key=latest["Key"])["Body"].read()
    record = json.loads(body)
    record["key"] = latest["Key"]
    return record


def wait_for_run(
    devicefarm,
    run_arn: str,
    poll_seconds: int = 30,
    timeout_seconds: int = 3600,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """Poll ``get_run`` until the run completes."""
    waited = 0
    while True:
        run = devicefarm.get_run(arn=run_arn)["run"]
        if run["status"] == "COMPLETED":
            return run
        if waited >= timeout_seconds:
            raise DeployToolsError(f"Device Farm run {run_arn} still {run['status']} after {timeout_seconds}s")
        logger.info("Run %s is %s, waiting", run_arn, run["status"])
        sleep(poll_seconds)
        waited += poll_seconds


def check_latest_run(s3, devicefarm, bucket: str, **wait_options) -> Dict[str, Any]:
    """
    Wait for the latest recorded run and store its summary.

    Returns:
        The summary written to ``summary.json``; ``summary["result"]`` is the
        Device Farm result (PASSED, FAILED, ERRORED, ...)
    """
    record = latest_run_record(s3, bucket)
    if record is None:
        raise DeployToolsError(f"No Device Farm runs recorded in s3://{bucket}/{RUNS_PREFIX}")

    run = wait_for_run(devicefarm, record["runArn"], **wait_options)
    summary = {
        "runArn": run["arn"],
        "appKey": record.get("appKey"),
        "result": run.get("result"),
        "counters": run.get("counters", {}),
        "checkedAt": datetime.now(timezone.utc).isoformat(),
    }

    summary_key = record["key"].rsplit("/", 1)[0] + "/summary.json"
    s3.put_object(
        Bucket=bucket,
        Key=summary_key,
        Body=json.dumps(summary, indent=2).encode("utf-8"),
        ContentType="application/json",
    )
    logger.info("Run %s finished with %s", run["arn"], summary["result"])
    return summary
