"""Tear down everything the bootstrap and the pipelines created."""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Dict, List, Mapping, Optional

from botocore.exceptions import ClientError

from infrastructure.config import Stage
from infrastructure.constants import DOMAIN_NAME, FRONT_END
from infrastructure.naming import (
    create_bucket_name,
    create_contact_form_stack_name,
    create_deployment_bucket_stack_name,
    create_device_farm_stack_name,
    create_domain_stack_name,
    create_service_stack_name,
    create_vpc_stack_name,
    create_website_bucket_stack_name,
)

from deploy_tools.errors import DeployToolsError
from deploy_tools.settings import DEFAULT_REGION, PIPELINES, ROLE_STACKS, Accounts
from deploy_tools.stacks import delete_stack

logger = logging.getLogger(__name__)

# Buckets the application stacks create; CloudFormation only deletes them once empty
STAGE_BUCKET_PURPOSES = ("frontend-app", "devicefarm-results", "website", "cloudfront-logs")


def application_stack_waves(stage: str, region: str = DEFAULT_REGION) -> List[List[str]]:
    """Application stacks of a stage, grouped so that consumers go before the stacks they import from."""
    stage = Stage(stage)
    return [
        [
            create_service_stack_name(stage, region),
            create_device_farm_stack_name(stage, region, FRONT_END),
            create_domain_stack_name(stage, region, DOMAIN_NAME),
            create_contact_form_stack_name(stage, region),
        ],
        [
            create_vpc_stack_name(stage, region),
            create_deployment_bucket_stack_name(stage, region, FRONT_END),
            create_website_bucket_stack_name(stage, region),
        ],
    ]


def stage_bucket_names(stage: str, account_id: str, region: str = DEFAULT_REGION) -> List[str]:
    return [create_bucket_name(purpose, Stage(stage), account_id, region) for purpose in STAGE_BUCKET_PURPOSES]


def _delete_in_parallel(jobs: List, max_workers: int) -> None:
    """Delete (client, stack name) pairs concurrently and join them all before reporting."""
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {executor.submit(delete_stack, cfn, name): name for cfn, name in jobs}
        done, _ = wait(futures)

    failures = [f"{futures[f]}: {f.exception()}" for f in done if f.exception() is not None]
    if failures:
        raise DeployToolsError("Stack deletion failed for " + "; ".join(sorted(failures)))


def empty_bucket(s3, bucket_name: str) -> None:
    """Remove every object version so the bucket (and its stack) can be deleted."""
    try:
        s3.Bucket(bucket_name).object_versions.delete()
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") == "NoSuchBucket":
            logger.info("Bucket %s does not exist", bucket_name)
            return
        raise
    logger.info("Emptied %s", bucket_name)


def cleanup(
    accounts: Accounts,
    target_clients: Mapping[str, object],
    pipeline_client,
    pipeline_s3,
    target_s3: Optional[Mapping[str, object]] = None,
    region: str = DEFAULT_REGION,
    max_workers: int = 4,
) -> None:
    """
    Delete application stacks, then pipelines, then the cross-account roles.

    ``target_s3`` maps a stage label to an S3 resource in that account; when
    given, the stage buckets are emptied first so their stacks can be deleted.
    """
    targets: Dict[str, str] = accounts.targets()

    if target_s3:
        for stage, account_id in targets.items():
            for bucket_name in stage_bucket_names(stage, account_id, region):
                empty_bucket(target_s3[stage], bucket_name)

    logger.info("Deleting application stacks in %s", ", ".join(targets))
    for wave in range(2):
        _delete_in_parallel(
            [
                (target_clients[stage], name)
                for stage in targets
                for name in application_stack_waves(stage, region)[wave]
            ],
            max_workers,
        )

    for target in PIPELINES.values():
        empty_bucket(pipeline_s3, target.artifact_bucket(accounts.pipeline))
        delete_stack(pipeline_client, target.stack_name)

    logger.info("Deleting cross-account roles")
    _delete_in_parallel(
        [(target_clients[stage], stack_name) for stage in targets for stack_name, _ in ROLE_STACKS],
        max_workers,
    )
