"""
CloudFormation helpers built on describe/create/update/delete calls.

Outputs are read with ``describe_stacks`` and returned as a plain dict keyed
by ``OutputKey``. Deploys are create-or-update and treat "nothing to update"
as success, so running them twice is harmless.
"""

import logging
from typing import Dict, Iterable, Mapping, Optional

from botocore.exceptions import ClientError

from deploy_tools.errors import StackOutputError

logger = logging.getLogger(__name__)

NO_UPDATES_MESSAGE = "No updates are to be performed"
# A stack that failed its first create can only be deleted
UNRECOVERABLE_STATUSES = ("ROLLBACK_COMPLETE",)


def _is_missing_stack(error: ClientError) -> bool:
    error_info = error.response.get("Error", {})
    return error_info.get("Code") == "ValidationError" and "does not exist" in error_info.get("Message", "")


def describe_stack(cfn, stack_name: str) -> Optional[Dict]:
    """The stack description, or None when the stack does not exist."""
    try:
        stacks = cfn.describe_stacks(StackName=stack_name)["Stacks"]
    except ClientError as e:
        if _is_missing_stack(e):
            return None
        raise
    return stacks[0] if stacks else None


def get_stack_outputs(cfn, stack_name: str) -> Dict[str, str]:
    """
    Outputs of a deployed stack as {OutputKey: OutputValue}.

    Raises:
        StackOutputError: if the stack does not exist
    """
    stack = describe_stack(cfn, stack_name)
    if stack is None:
        raise StackOutputError(f"Stack {stack_name} does not exist")
    return {output["OutputKey"]: output["OutputValue"] for output in stack.get("Outputs", [])}


def require_output(outputs: Mapping[str, str], key: str, stack_name: str) -> str:
    value = outputs.get(key)
    if not value:
        raise StackOutputError(f"Stack {stack_name} has no {key} output")
    return value


def _parameters(parameters: Mapping[str, str]):
    return [{"ParameterKey": key, "ParameterValue": value} for key, value in parameters.items()]


def deploy_stack(
    cfn,
    stack_name: str,
    template_body: str,
    parameters: Mapping[str, str],
    capabilities: Iterable[str] = ("CAPABILITY_NAMED_IAM",),
) -> bool:
    """
    Create the stack, or update it when it already exists, and wait for the result.

    Returns:
        True if CloudFormation changed the stack, False if it was already up to date
    """
    request = {
        "StackName": stack_name,
        "TemplateBody": template_body,
        "Parameters": _parameters(parameters),
        "Capabilities": list(capabilities),
    }

    stack = describe_stack(cfn, stack_name)
    if stack is not None and stack["StackStatus"] in UNRECOVERABLE_STATUSES:
        logger.warning("%s is in %s, deleting it before recreating", stack_name, stack["StackStatus"])
        delete_stack(cfn, stack_name)
        stack = None

    if stack is None:
        logger.info("Creating stack %s", stack_name)
        cfn.create_stack(**request)
        waiter = cfn.get_waiter("stack_create_complete")
    else:
        logger.info("Updating stack %s", stack_name)
        try:
            cfn.update_stack(**request)
        except ClientError as e:
            if NO_UPDATES_MESSAGE in e.response.get("Error", {}).get("Message", ""):
                logger.info("Stack %s is already up to date", stack_name)
                return False
            raise
        waiter = cfn.get_waiter("stack_update_complete")

    waiter.wait(StackName=stack_name)
    logger.info("Stack %s deployed", stack_name)
    return True


def delete_stack(cfn, stack_name: str, wait: bool = True) -> bool:
    """Delete the stack if it exists. Returns False when there was nothing to delete."""
    if describe_stack(cfn, stack_name) is None:
        logger.info("Stack %s does not exist, skipping delete", stack_name)
        return False

    logger.info("Deleting stack %s", stack_name)
    cfn.delete_stack(StackName=stack_name)
    if wait:
        cfn.get_waiter("stack_delete_complete").wait(StackName=stack_name)
    return True
