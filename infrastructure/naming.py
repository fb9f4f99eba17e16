"""
Naming helpers for stacks, buckets and exports.

Stack names:   {prefix}{Stage}{region without separators}{Kind}
               e.g. Betauswest2ServiceStack, FrontEndBetauswest2DeviceFarmStack
Bucket names:  {purpose}-{stage}-{account}-{region}, lowercase
               e.g. website-beta-123456789012-us-west-2
Export names:  {Stage}-{Key}
"""

import re

from infrastructure.constants import (
    BACK_END,
    CONTACT_FORM_STACK,
    DEPLOYMENT_BUCKET_STACK,
    DEVICE_FARM_STACK,
    DOMAIN_STACK_SUFFIX,
    SERVICE_STACK,
    TEMPLATE_ENDING,
    VPC_STACK,
    WEBSITE,
    WEBSITE_BUCKET_STACK,
)

_NON_ALPHANUMERIC = re.compile(r"[^A-Za-z0-9]")
_BUCKET_NAME = re.compile(r"^[a-z0-9][a-z0-9-]{1,61}[a-z0-9]$")


def _label(stage) -> str:
    return str(getattr(stage, "value", stage))


def compact(value: str) -> str:
    """Strip every character CloudFormation stack names would reject or we don't want."""
    return _NON_ALPHANUMERIC.sub("", value)


def create_stack_name(stage, region: str, kind: str, prefix: str = "") -> str:
    return f"{prefix}{_label(stage)}{compact(region)}{kind}"


def create_service_stack_name(stage, region: str) -> str:
    return create_stack_name(stage, region, SERVICE_STACK)


def create_vpc_stack_name(stage, region: str, account_prefix: str = BACK_END) -> str:
    return create_stack_name(stage, region, VPC_STACK, account_prefix)


def create_device_farm_stack_name(stage, region: str, account_prefix: str) -> str:
    return create_stack_name(stage, region, DEVICE_FARM_STACK, account_prefix)


def create_deployment_bucket_stack_name(stage, region: str, account_prefix: str) -> str:
    return create_stack_name(stage, region, DEPLOYMENT_BUCKET_STACK, account_prefix)


def create_website_bucket_stack_name(stage, region: str) -> str:
    return create_stack_name(stage, region, WEBSITE_BUCKET_STACK, WEBSITE)


def create_domain_stack_name(stage, region: str, domain_name: str) -> str:
    kind = f"Domain{compact(domain_name)}{DOMAIN_STACK_SUFFIX}"
    return create_stack_name(stage, region, kind, WEBSITE)


def create_contact_form_stack_name(stage, region: str) -> str:
    return create_stack_name(stage, region, CONTACT_FORM_STACK)


def template_file_name(stack_name: str) -> str:
    return f"{stack_name}{TEMPLATE_ENDING}"


def create_bucket_name(purpose: str, stage, account_id: str, region: str) -> str:
    """
    Build a globally unique S3 bucket name.

    Raises:
        ValueError: if the result breaks S3 bucket naming rules
    """
    name = "-".join([purpose, _label(stage), account_id, region]).lower()
    if not _BUCKET_NAME.match(name) or "--" in name:
        raise ValueError(f"Invalid S3 bucket name: {name!r}")
    return name


def create_export_name(stage, key: str) -> str:
    return f"{_label(stage)}-{key}"


def stage_subdomain(stage, domain_name: str, is_prod: bool) -> str:
    """Prod serves the apex domain, every other stage a subdomain named after it."""
    if is_prod:
        return domain_name
    return f"{_label(stage).lower()}.{domain_name}"


def create_device_farm_trigger_function_name(stage) -> str:
    return f"FrontEnd{_label(stage)}TriggerDeviceFarmTest"
