"""
First deploy of the Prod custom-domain stack.

The website pipeline only redeploys what is committed. Turning on the Prod
distribution (``DEPLOY_PROD_DISTRIBUTION`` and ``PROD_CERTIFICATE_ARN`` in
``infrastructure/constants.py``) is done once from a workstation with the
Prod profile, after which the registrar is pointed at the new name servers.
"""

import logging
import subprocess
from pathlib import Path
from typing import Callable, Dict, Optional

from infrastructure.config import Stage
from infrastructure.constants import DOMAIN_NAME
from infrastructure.naming import create_domain_stack_name

from deploy_tools.bootstrap import cdk_deploy_command
from deploy_tools.errors import DeployToolsError
from deploy_tools.settings import DEFAULT_REGION, PROJECT_ROOT, Accounts
from deploy_tools.stacks import get_stack_outputs

logger = logging.getLogger(__name__)

DOMAIN_OUTPUTS = ("DomainName", "NameServers", "DistributionId")


def prod_domain_stack_name(region: str = DEFAULT_REGION) -> str:
    return create_domain_stack_name(Stage.PROD, region, DOMAIN_NAME)


def deploy_prod_domain(
    accounts: Accounts,
    cfn,
    region: str = DEFAULT_REGION,
    profile: Optional[str] = None,
    project_root: Path = PROJECT_ROOT,
    run: Callable = subprocess.run,
) -> Dict[str, str]:
    """
    ``cdk deploy`` the Prod domain stack on its own and return its outputs.

    Raises:
        DeployToolsError: if cdk fails or the stack is missing afterwards
    """
    stack_name = prod_domain_stack_name(region)
    # The bucket stack it depends on belongs to the website pipeline
    command = cdk_deploy_command(stack_name, accounts, profile, "cdk.out/prod-domain") + ["--exclusively"]
    logger.info("Deploying %s: %s", stack_name, " ".join(command))
    try:
        run(command, cwd=str(project_root), check=True)
    except subprocess.CalledProcessError as e:
        raise DeployToolsError(f"cdk deploy {stack_name} failed with exit code {e.returncode}") from e

    outputs = get_stack_outputs(cfn, stack_name)
    if "DistributionId" not in outputs:
        logger.warning(
            "%s has no distribution; enable DEPLOY_PROD_DISTRIBUTION with a PROD_CERTIFICATE_ARN first",
            stack_name,
        )
    return outputs
