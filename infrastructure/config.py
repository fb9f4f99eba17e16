"""Deployment targets for the cross-account pipelines.

The stage table is built once at synth time and handed to every stack. Stacks
look records up by stage label; the order of the table only matters for
display and for the order stacks are synthesized in.
"""

import os
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, Optional, Sequence

from infrastructure.constants import DOMAIN_NAME


class Stage(str, Enum):
    BETA = "Beta"
    PROD = "Prod"


class Region:
    US_WEST_2 = "us-west-2"
    US_EAST_1 = "us-east-1"


ACCOUNT_ID_PATTERN = re.compile(r"^\d{12}$")

# CDK context key -> environment variable fallback
ACCOUNT_SOURCES = {
    "pipeline-account": "PIPELINE_ACCOUNT_ID",
    "beta-account": "BETA_ACCOUNT_ID",
    "prod-account": "PROD_ACCOUNT_ID",
}


class ConfigurationError(ValueError):
    """Raised when the stage table does not describe exactly one Beta and one Prod target."""


@dataclass(frozen=True)
class StageConfig:
    account_id: str
    stage: Stage
    region: str
    is_prod: bool
    domain_name: Optional[str] = None

    @property
    def label(self) -> str:
        return self.stage.value


class StageConfigurations:
    """Validated, read-only view over the stage table with lookup by label."""

    def __init__(self, records: Sequence[StageConfig]) -> None:
        self._records = tuple(records)
        self._by_stage: Dict[Stage, StageConfig] = {}

        for record in self._records:
            if record.stage in self._by_stage:
                raise ConfigurationError(f"Duplicate stage configuration for {record.label}")
            if record.is_prod != (record.stage is Stage.PROD):
                raise ConfigurationError(
                    f"Stage {record.label} has is_prod={record.is_prod}; only Prod may be production"
                )
            if not ACCOUNT_ID_PATTERN.match(record.account_id or ""):
                raise ConfigurationError(
                    f"Stage {record.label} has an invalid account id: {record.account_id!r}"
                )
            self._by_stage[record.stage] = record

        missing = set(Stage) - set(self._by_stage)
        if missing:
            names = ", ".join(sorted(stage.value for stage in missing))
            raise ConfigurationError(f"Missing stage configuration for: {names}")

    def get(self, stage) -> StageConfig:
        return self._by_stage[Stage(stage)]

    @property
    def beta(self) -> StageConfig:
        return self._by_stage[Stage.BETA]

    @property
    def prod(self) -> StageConfig:
        return self._by_stage[Stage.PROD]

    def __iter__(self) -> Iterator[StageConfig]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __getitem__(self, index: int) -> StageConfig:
        return self._records[index]


def build_stage_configurations(
    beta_account_id: str,
    prod_account_id: str,
    region: str = Region.US_WEST_2,
    domain_name: Optional[str] = DOMAIN_NAME,
) -> StageConfigurations:
    """Build the Beta/Prod stage table for the given target accounts."""
    return StageConfigurations(
        [
            StageConfig(
                account_id=beta_account_id,
                stage=Stage.BETA,
                region=region,
                is_prod=False,
                domain_name=domain_name,
            ),
            StageConfig(
                account_id=prod_account_id,
                stage=Stage.PROD,
                region=region,
                is_prod=True,
                domain_name=domain_name,
            ),
        ]
    )


def resolve_account_id(app, context_key: str) -> str:
    """Read an account id from CDK context, falling back to its environment variable."""
    value = app.node.try_get_context(context_key)
    if not value:
        value = os.getenv(ACCOUNT_SOURCES[context_key], "")
    if not value:
        raise ConfigurationError(
            f"Account id not configured: pass --context {context_key}=<id> "
            f"or set {ACCOUNT_SOURCES[context_key]}"
        )
    return str(value)
