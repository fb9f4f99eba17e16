"""
Schedules a Device Farm run for the newest APK in the app bucket.

Invoked by the frontend pipeline (LambdaInvokeAction) or by hand. When
invoked by CodePipeline the job result is reported back so the pipeline
action completes.
"""

import json
import logging
import os
import time
import urllib.request
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import boto3

logger = logging.getLogger()
logger.setLevel(logging.INFO)

UPLOAD_POLL_SECONDS = 5
UPLOAD_POLL_ATTEMPTS = 24


def find_latest_app(s3, bucket: str, prefix: str) -> Optional[Dict[str, Any]]:
    """Return the most recently modified .apk object under the prefix, if any."""
    latest = None
    paginator = s3.get_paginator("list_objects_v2")
    for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
        for obj in page.get("Contents", []):
            if not obj["Key"].endswith(".apk"):
                continue
            if latest is None or obj["LastModified"] > latest["LastModified"]:
                latest = obj
    return latest


def upload_app(devicefarm, s3, project_arn: str, bucket: str, key: str) -> str:
    """Copy the APK from S3 into a Device Farm upload and wait until it is processed."""
    upload = devicefarm.create_upload(
        projectArn=project_arn,
        name=os.path.basename(key),
        type="ANDROID_APP",
    )["upload"]

    body = s3.get_object(Bucket=bucket, Key=key)["Body"].read()
    request = urllib.request.Request(upload["url"], data=body, method="PUT")
    with urllib.request.urlopen(request) as response:
        logger.info("Uploaded %s to Device Farm (HTTP %s)", key, response.status)

    for _ in range(UPLOAD_POLL_ATTEMPTS):
        status = devicefarm.get_upload(arn=upload["arn"])["upload"]["status"]
        if status == "SUCCEEDED":
            return upload["arn"]
        if status == "FAILED":
            raise RuntimeError(f"Device Farm rejected upload {upload['arn']}")
        time.sleep(UPLOAD_POLL_SECONDS)

    raise RuntimeError(f"Timed out waiting for upload {upload['arn']}")


def schedule_test_run() -> Dict[str, Any]:
    s3 = boto3.client("s3")
    devicefarm = boto3.client("devicefarm", region_name="us-west-2")

    app_bucket = os.environ["APP_BUCKET"]
    latest = find_latest_app(s3, app_bucket, os.environ.get("APP_KEY_PREFIX", ""))
    if latest is None:
        raise RuntimeError(f"No APK found in s3://{app_bucket}")

    app_arn = upload_app(devicefarm, s3, os.environ["PROJECT_ARN"], app_bucket, latest["Key"])
    run = devicefarm.schedule_run(
        projectArn=os.environ["PROJECT_ARN"],
        appArn=app_arn,
        devicePoolArn=os.environ["DEVICE_POOL_ARN"],
        name=f"pipeline-{datetime.now(timezone.utc):%Y%m%d%H%M%S}",
        test={"type": "BUILTIN_FUZZ"},
    )["run"]

    run_id = run["arn"].rsplit("/", 1)[-1]
    record = {
        "runArn": run["arn"],
        "appKey": latest["Key"],
        "scheduledAt": datetime.now(timezone.utc).isoformat(),
    }
    s3.put_object(
        Bucket=os.environ["RESULTS_BUCKET"],
        Key=f"runs/{run_id}/run.json",
        Body=json.dumps(record).encode("utf-8"),
        ContentType="application/json",
    )
    logger.info("Scheduled Device Farm run %s", run["arn"])
    return record


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Lambda handler for scheduling Device Farm runs"""
    job_id = event.get("CodePipeline.job", {}).get("id")
    codepipeline = boto3.client("codepipeline") if job_id else None

    try:
        record = schedule_test_run()
    except Exception as e:
        logger.exception("Failed to schedule Device Farm run: %s", e)
        if codepipeline:
            codepipeline.put_job_failure_result(
                jobId=job_id,
                failureDetails={"type": "JobFailed", "message": str(e)[:500]},
            )
        return {"statusCode": 500, "message": str(e)}

    if codepipeline:
        codepipeline.put_job_success_result(jobId=job_id)
    return {"statusCode": 200, "message": "Test run scheduled", **record}
