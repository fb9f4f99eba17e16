"""
Stack graph for every stage plus the three pipelines.

Application stacks are synthesized into their stage's account so the pipelines
can pick up their templates from ``cdk synth`` output; the pipelines live in
the pipeline account.
"""

from typing import Dict

import aws_cdk as cdk

from infrastructure.config import StageConfig, StageConfigurations
from infrastructure.constants import (
    BACKEND_PIPELINE_STACK_NAME,
    FRONT_END,
    FRONTEND_PIPELINE_STACK_NAME,
    WEBSITE_PIPELINE_STACK_NAME,
)
from infrastructure.lib.contact_form_stack import ContactFormStack
from infrastructure.lib.deployment_bucket_stack import DeploymentBucketStack
from infrastructure.lib.device_farm_stack import DeviceFarmStack
from infrastructure.lib.domain_configuration_stack import (
    DomainConfigurationStack,
    certificate_arn_for,
    serves_custom_domain,
)
from infrastructure.lib.pipelines.backend_pipeline_stack import BackendPipelineStack
from infrastructure.lib.pipelines.frontend_pipeline_stack import FrontendPipelineStack
from infrastructure.lib.pipelines.website_pipeline_stack import WebsitePipelineStack
from infrastructure.lib.service_stack import ServiceStack
from infrastructure.lib.vpc_stack import VpcStack
from infrastructure.lib.website_bucket_stack import WebsiteBucketStack
from infrastructure.naming import (
    create_contact_form_stack_name,
    create_deployment_bucket_stack_name,
    create_device_farm_stack_name,
    create_domain_stack_name,
    create_service_stack_name,
    create_vpc_stack_name,
    create_website_bucket_stack_name,
)

PROJECT_TAG = "GIDating"


def build_stage_stacks(app: cdk.App, config: StageConfig) -> Dict[str, cdk.Stack]:
    env = cdk.Environment(account=config.account_id, region=config.region)
    stage, region = config.stage, config.region

    vpc_stack = VpcStack(
        app, create_vpc_stack_name(stage, region),
        stage_name=config.label,
        env=env,
    )
    service_stack = ServiceStack(
        app, create_service_stack_name(stage, region),
        stage_name=config.label,
        vpc=vpc_stack.vpc,
        env=env,
    )
    service_stack.add_dependency(vpc_stack)

    deployment_bucket_stack = DeploymentBucketStack(
        app, create_deployment_bucket_stack_name(stage, region, FRONT_END),
        stage_name=config.label,
        account_id=config.account_id,
        region=region,
        env=env,
    )
    device_farm_stack = DeviceFarmStack(
        app, create_device_farm_stack_name(stage, region, FRONT_END),
        stage_name=config.label,
        account_id=config.account_id,
        region=region,
        app_bucket_name=deployment_bucket_stack.bucket_name,
        env=env,
    )
    device_farm_stack.add_dependency(deployment_bucket_stack)

    website_bucket_stack = WebsiteBucketStack(
        app, create_website_bucket_stack_name(stage, region),
        stage_name=config.label,
        account_id=config.account_id,
        region=region,
        env=env,
    )
    custom_domain = serves_custom_domain(config)
    domain_stack = DomainConfigurationStack(
        app, create_domain_stack_name(stage, region, config.domain_name),
        stage_config=config,
        bucket_name=website_bucket_stack.bucket_name,
        origin_access_identity_id=(
            website_bucket_stack.origin_access_identity.origin_access_identity_id if custom_domain else None
        ),
        certificate_arn=certificate_arn_for(config) or None,
        deploy_distribution=custom_domain,
        env=env,
    )
    domain_stack.add_dependency(website_bucket_stack)

    contact_form_stack = ContactFormStack(
        app, create_contact_form_stack_name(stage, region),
        stage_config=config,
        env=env,
    )

    stacks = {
        "vpc": vpc_stack,
        "service": service_stack,
        "deployment_bucket": deployment_bucket_stack,
        "device_farm": device_farm_stack,
        "website_bucket": website_bucket_stack,
        "domain": domain_stack,
        "contact_form": contact_form_stack,
    }
    for stack in stacks.values():
        cdk.Tags.of(stack).add("Project", PROJECT_TAG)
        cdk.Tags.of(stack).add("Stage", config.label)
    return stacks


def build_application(
    app: cdk.App,
    pipeline_account_id: str,
    stage_configs: StageConfigurations,
) -> Dict[str, object]:
    """Create every stage's stacks and the pipelines that deploy them."""
    stage_stacks = {config.stage: build_stage_stacks(app, config) for config in stage_configs}

    pipeline_env = cdk.Environment(account=pipeline_account_id, region=stage_configs.beta.region)
    pipelines = {
        "backend": BackendPipelineStack(
            app, BACKEND_PIPELINE_STACK_NAME,
            stage_configs=stage_configs,
            service_stacks={stage: stacks["service"] for stage, stacks in stage_stacks.items()},
            env=pipeline_env,
            description="Cross-account pipeline for the backend service",
        ),
        "frontend": FrontendPipelineStack(
            app, FRONTEND_PIPELINE_STACK_NAME,
            stage_configs=stage_configs,
            device_farm_stacks={stage: stacks["device_farm"] for stage, stacks in stage_stacks.items()},
            env=pipeline_env,
            description="Cross-account pipeline for the mobile app",
        ),
        "website": WebsitePipelineStack(
            app, WEBSITE_PIPELINE_STACK_NAME,
            stage_configs=stage_configs,
            contact_form_stacks={stage: stacks["contact_form"] for stage, stacks in stage_stacks.items()},
            env=pipeline_env,
            description="Cross-account pipeline for the website",
        ),
    }
    for pipeline in pipelines.values():
        cdk.Tags.of(pipeline).add("Project", PROJECT_TAG)

    return {"stages": stage_stacks, "pipelines": pipelines}
