#!/usr/bin/env python3
import aws_cdk as cdk

from infrastructure.application import build_application
from infrastructure.config import build_stage_configurations, resolve_account_id

app = cdk.App()

# Accounts: --context pipeline-account=... or PIPELINE_ACCOUNT_ID, same for beta/prod
stage_configs = build_stage_configurations(
    beta_account_id=resolve_account_id(app, "beta-account"),
    prod_account_id=resolve_account_id(app, "prod-account"),
)

build_application(
    app,
    pipeline_account_id=resolve_account_id(app, "pipeline-account"),
    stage_configs=stage_configs,
)

app.synth()
