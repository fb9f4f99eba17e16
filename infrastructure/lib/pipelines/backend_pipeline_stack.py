from typing import Dict

from aws_cdk import (
    aws_codepipeline as codepipeline,
    aws_codepipeline_actions as pipeline_actions,
)
from constructs import Construct

from infrastructure.config import Stage, StageConfig, StageConfigurations
from infrastructure.constants import (
    BACKEND_ARTIFACT_BUCKET_PREFIX,
    BACKEND_KEY_OUTPUT,
    BACKEND_PIPELINE_STACK_NAME,
    SERVICE_STACK,
    TEMPLATE_ENDING,
    VPC_STACK,
)
from infrastructure.lib.pipelines.base_pipeline import CrossAccountPipelineStack
from infrastructure.lib.service_stack import ServiceStack
from infrastructure.naming import create_service_stack_name, create_vpc_stack_name


class BackendPipelineStack(CrossAccountPipelineStack):
    """Builds the service Lambda and deploys VPC + service stacks to Beta, then Prod."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        stage_configs: StageConfigurations,
        service_stacks: Dict[Stage, ServiceStack],
        **kwargs,
    ) -> None:
        super().__init__(
            scope,
            construct_id,
            stage_configs=stage_configs,
            pipeline_name="BackendCrossAccountPipeline",
            key_alias="alias/pipeline-artifact-key",
            key_output_name=BACKEND_KEY_OUTPUT,
            bucket_prefix=BACKEND_ARTIFACT_BUCKET_PREFIX,
            **kwargs,
        )
        self.service_stacks = service_stacks

        cdk_build = self.create_cdk_build_project(
            [
                f"{BACKEND_PIPELINE_STACK_NAME}{TEMPLATE_ENDING}",
                f"*{SERVICE_STACK}{TEMPLATE_ENDING}",
                f"*{VPC_STACK}{TEMPLATE_ENDING}",
            ]
        )

        lambda_build = self.create_function_build_project("LambdaBuild", "service")
        self.lambda_build_output = codepipeline.Artifact("backendLambdaBuildOutput")

        self.create_pipeline(
            source_actions=[self.cdk_source_action()],
            build_actions=[
                pipeline_actions.CodeBuildAction(
                    action_name="Application_Build",
                    project=lambda_build,
                    input=self.cdk_source,
                    outputs=[self.lambda_build_output],
                ),
                self.cdk_synth_action(cdk_build),
            ],
            beta_actions=self._deploy_actions(stage_configs.beta),
            prod_actions=self._deploy_actions(stage_configs.prod),
        )

    def _deploy_actions(self, config: StageConfig):
        location = self.lambda_build_output.s3_location
        overrides = self.service_stacks[config.stage].lambda_code.assign(
            bucket_name=location.bucket_name,
            object_key=location.object_key,
        )
        return [
            self.deploy_stack_action(
                config,
                "DeployVpcStack",
                create_vpc_stack_name(config.stage, config.region),
                run_order=1,
            ),
            self.deploy_stack_action(
                config,
                "DeployServiceStack",
                create_service_stack_name(config.stage, config.region),
                run_order=2,
                parameter_overrides=overrides,
                extra_inputs=[self.lambda_build_output],
            ),
        ]
