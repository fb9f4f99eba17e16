from typing import Dict

from aws_cdk import (
    aws_codebuild as codebuild,
    aws_codepipeline as codepipeline,
    aws_codepipeline_actions as pipeline_actions,
    aws_s3 as s3,
    Duration,
)
from constructs import Construct

from infrastructure.config import Stage, StageConfig, StageConfigurations
from infrastructure.constants import (
    WEBSITE_ARTIFACT_BUCKET_PREFIX,
    WEBSITE_KEY_OUTPUT,
    WEBSITE_REPO,
)
from infrastructure.lib.contact_form_stack import ContactFormStack
from infrastructure.lib.domain_configuration_stack import serves_custom_domain
from infrastructure.lib.pipelines.base_pipeline import CrossAccountPipelineStack
from infrastructure.naming import (
    create_bucket_name,
    create_contact_form_stack_name,
    create_domain_stack_name,
    create_website_bucket_stack_name,
    stage_subdomain,
)

# Browser and CDN cache lifetime for deployed site content
CACHE_MAX_AGE = {
    False: Duration.days(7),
    True: Duration.days(30),
}


def invalidation_target(config: StageConfig):
    """(stack name, output key) holding the distribution that serves the stage."""
    if serves_custom_domain(config):
        return create_domain_stack_name(config.stage, config.region, config.domain_name), "DistributionId"
    return create_website_bucket_stack_name(config.stage, config.region), "WebsiteDistributionIdOutput"


class WebsitePipelineStack(CrossAccountPipelineStack):
    """Deploys the static website, its domain and the contact form API to Beta, then Prod."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        stage_configs: StageConfigurations,
        contact_form_stacks: Dict[Stage, ContactFormStack],
        **kwargs,
    ) -> None:
        super().__init__(
            scope,
            construct_id,
            stage_configs=stage_configs,
            pipeline_name="WebsiteCrossAccountPipeline",
            key_alias="alias/website-pipeline-artifact-key",
            key_output_name=WEBSITE_KEY_OUTPUT,
            bucket_prefix=WEBSITE_ARTIFACT_BUCKET_PREFIX,
            **kwargs,
        )
        self.contact_form_stacks = contact_form_stacks

        cdk_build = self.create_cdk_build_project(["**/*.template.json"])

        website_build = codebuild.PipelineProject(
            self,
            "WebsiteBuild",
            build_spec=codebuild.BuildSpec.from_object(
                {
                    "version": "0.2",
                    "phases": {
                        "install": {
                            "runtime-versions": {"nodejs": "20"},
                            "commands": ["npm install"],
                        },
                        "build": {"commands": ["npm run build"]},
                    },
                    "artifacts": {"base-directory": "dist", "files": ["**/*"]},
                }
            ),
            environment=codebuild.BuildEnvironment(
                build_image=codebuild.LinuxBuildImage.STANDARD_7_0
            ),
            encryption_key=self.key,
        )

        self.website_source = codepipeline.Artifact("websiteSource")
        self.website_build_output = codepipeline.Artifact("websiteBuildOutput")

        contact_form_build = self.create_function_build_project("ContactFormBuild", "contact_form")
        self.contact_form_build_output = codepipeline.Artifact("contactFormBuildOutput")

        beta = stage_configs.beta
        self.create_pipeline(
            source_actions=[
                self.github_source_action(WEBSITE_REPO, WEBSITE_REPO, self.website_source),
                self.cdk_source_action(),
            ],
            build_actions=[
                self.cdk_synth_action(cdk_build),
                pipeline_actions.CodeBuildAction(
                    action_name="Website_Build",
                    project=website_build,
                    input=self.website_source,
                    outputs=[self.website_build_output],
                ),
                pipeline_actions.CodeBuildAction(
                    action_name="ContactForm_Build",
                    project=contact_form_build,
                    input=self.cdk_source,
                    outputs=[self.contact_form_build_output],
                ),
            ],
            beta_actions=self._deploy_actions(beta),
            prod_actions=self._deploy_actions(stage_configs.prod),
            approval_link=f"https://{stage_subdomain(beta.stage, beta.domain_name, beta.is_prod)}",
        )

    def _deploy_actions(self, config: StageConfig):
        roles = self.roles[config.stage]
        website_bucket = s3.Bucket.from_bucket_name(
            self,
            f"{config.label}WebsiteS3Bucket",
            create_bucket_name("website", config.stage, config.account_id, config.region),
        )
        max_age = CACHE_MAX_AGE[config.is_prod]
        location = self.contact_form_build_output.s3_location
        overrides = self.contact_form_stacks[config.stage].lambda_code.assign(
            bucket_name=location.bucket_name,
            object_key=location.object_key,
        )

        stack_name, output_key = invalidation_target(config)
        invalidation = self.create_target_account_project(
            f"{config.label}CloudFrontInvalidation",
            config,
            commands=[
                f'echo "Starting CloudFront invalidation for {config.label} environment"',
                "deploy-tools invalidate-cache "
                f"--stack-name {stack_name} --output-key {output_key} "
                '--role-arn "$TARGET_ROLE_ARN"',
            ],
            description=f"Invalidates the CloudFront cache for the {config.label} website",
        )

        return [
            self.deploy_stack_action(
                config,
                "DeployWebsiteBucket",
                create_website_bucket_stack_name(config.stage, config.region),
                run_order=1,
            ),
            self.deploy_stack_action(
                config,
                f"Deploy{config.label}DomainConfig",
                create_domain_stack_name(config.stage, config.region, config.domain_name),
                run_order=2,
            ),
            self.deploy_stack_action(
                config,
                "DeployContactForm",
                create_contact_form_stack_name(config.stage, config.region),
                run_order=3,
                parameter_overrides=overrides,
                extra_inputs=[self.contact_form_build_output],
            ),
            pipeline_actions.S3DeployAction(
                action_name="DeployWebsiteContent",
                input=self.website_build_output,
                bucket=website_bucket,
                extract=True,
                role=roles.code_pipeline,
                run_order=4,
                cache_control=[
                    pipeline_actions.CacheControl.set_public(),
                    pipeline_actions.CacheControl.max_age(max_age),
                    pipeline_actions.CacheControl.s_max_age(max_age),
                ],
            ),
            pipeline_actions.CodeBuildAction(
                action_name="InvalidateCloudFrontCache",
                project=invalidation,
                input=self.cdk_source,
                run_order=5,
            ),
            pipeline_actions.ManualApprovalAction(
                action_name="ConfirmCacheInvalidation",
                additional_information=(
                    f"Confirm the {config.label} site serves the new content after the cache invalidation"
                ),
                run_order=6,
            ),
        ]
