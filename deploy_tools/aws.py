"""boto3 session helpers: named profiles for operators, assumed roles inside CodeBuild."""

import logging
from typing import Optional

import boto3

logger = logging.getLogger(__name__)


def profile_session(profile: Optional[str], region: str) -> boto3.session.Session:
    """Session for a named profile, or the default credential chain when profile is None."""
    return boto3.session.Session(profile_name=profile, region_name=region)


def assume_role_session(
    role_arn: str,
    region: str,
    session_name: str = "deploy-tools",
    base_session: Optional[boto3.session.Session] = None,
) -> boto3.session.Session:
    """Session acting as ``role_arn``, assumed with the caller's credentials."""
    sts = (base_session or boto3.session.Session(region_name=region)).client("sts")
    credentials = sts.assume_role(RoleArn=role_arn, RoleSessionName=session_name)["Credentials"]
    logger.info("Assumed %s", role_arn)
    return boto3.session.Session(
        aws_access_key_id=credentials["AccessKeyId"],
        aws_secret_access_key=credentials["SecretAccessKey"],
        aws_session_token=credentials["SessionToken"],
        region_name=region,
    )
