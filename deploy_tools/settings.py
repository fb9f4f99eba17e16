"""
Accounts, profiles and the pipelines the tooling knows about.

Accounts come from the same environment variables app.py falls back to, so a
shell prepared for ``cdk synth`` is also ready for ``deploy-tools``.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from infrastructure.config import ACCOUNT_ID_PATTERN, Region
from infrastructure.constants import (
    BACKEND_ARTIFACT_BUCKET_PREFIX,
    BACKEND_KEY_OUTPUT,
    BACKEND_PIPELINE_STACK_NAME,
    CLOUDFORMATION_DEPLOYMENT_ROLE,
    CODE_PIPELINE_CROSS_ACCOUNT_ROLE,
    FRONTEND_ARTIFACT_BUCKET_PREFIX,
    FRONTEND_KEY_OUTPUT,
    FRONTEND_PIPELINE_STACK_NAME,
    WEBSITE_ARTIFACT_BUCKET_PREFIX,
    WEBSITE_KEY_OUTPUT,
    WEBSITE_PIPELINE_STACK_NAME,
)

from deploy_tools.errors import MissingEnvironmentError

PROJECT_ROOT = Path(__file__).resolve().parents[1]
CFN_ROLES_DIR = PROJECT_ROOT / "cfn_roles"

REQUIRED_ACCOUNT_VARIABLES = ("PIPELINE_ACCOUNT_ID", "BETA_ACCOUNT_ID", "PROD_ACCOUNT_ID")

DEFAULT_REGION = Region.US_WEST_2

# Named profiles from ~/.aws/credentials, one per account
DEFAULT_PROFILES = {"pipeline": "pipeline", "beta": "beta", "prod": "prod"}

# Role stacks deployed into every target account: (stack name, template file)
ROLE_STACKS: Tuple[Tuple[str, str], ...] = (
    (CODE_PIPELINE_CROSS_ACCOUNT_ROLE, f"{CODE_PIPELINE_CROSS_ACCOUNT_ROLE}.yml"),
    (CLOUDFORMATION_DEPLOYMENT_ROLE, f"{CLOUDFORMATION_DEPLOYMENT_ROLE}.yml"),
)


@dataclass(frozen=True)
class PipelineTarget:
    name: str
    stack_name: str
    key_output: str
    # Role template parameter that receives the key ARN
    key_parameter: str
    bucket_prefix: str

    def artifact_bucket(self, pipeline_account_id: str) -> str:
        return f"{self.bucket_prefix}artifact-bucket-{pipeline_account_id}"


PIPELINES: Dict[str, PipelineTarget] = {
    "backend": PipelineTarget(
        "backend", BACKEND_PIPELINE_STACK_NAME, BACKEND_KEY_OUTPUT, "KeyArn",
        BACKEND_ARTIFACT_BUCKET_PREFIX,
    ),
    "frontend": PipelineTarget(
        "frontend", FRONTEND_PIPELINE_STACK_NAME, FRONTEND_KEY_OUTPUT, "FrontEndKeyArn",
        FRONTEND_ARTIFACT_BUCKET_PREFIX,
    ),
    "website": PipelineTarget(
        "website", WEBSITE_PIPELINE_STACK_NAME, WEBSITE_KEY_OUTPUT, "WebsiteKeyArn",
        WEBSITE_ARTIFACT_BUCKET_PREFIX,
    ),
}


@dataclass(frozen=True)
class Accounts:
    pipeline: str
    beta: str
    prod: str

    def targets(self) -> Dict[str, str]:
        """Target accounts keyed by stage label, Beta first."""
        return {"Beta": self.beta, "Prod": self.prod}


def load_accounts(environ: Optional[Mapping[str, str]] = None) -> Accounts:
    """
    Read the three account ids from the environment.

    Raises:
        MissingEnvironmentError: if any of them is unset, empty or malformed
    """
    environ = os.environ if environ is None else environ
    values = {name: (environ.get(name) or "").strip() for name in REQUIRED_ACCOUNT_VARIABLES}

    invalid = [name for name, value in values.items() if not ACCOUNT_ID_PATTERN.match(value)]
    if invalid:
        listing = "\n".join(f"{name} = {values[name]}" for name in REQUIRED_ACCOUNT_VARIABLES)
        raise MissingEnvironmentError(
            f"Please set {', '.join(REQUIRED_ACCOUNT_VARIABLES[:-1])} and "
            f"{REQUIRED_ACCOUNT_VARIABLES[-1]} to 12 digit account ids\n{listing}"
        )

    return Accounts(
        pipeline=values["PIPELINE_ACCOUNT_ID"],
        beta=values["BETA_ACCOUNT_ID"],
        prod=values["PROD_ACCOUNT_ID"],
    )
