from typing import Dict

from aws_cdk import (
    aws_codebuild as codebuild,
    aws_codepipeline as codepipeline,
    aws_codepipeline_actions as pipeline_actions,
    aws_lambda as lambda_,
    aws_s3 as s3,
)
from constructs import Construct

from infrastructure.config import Stage, StageConfig, StageConfigurations
from infrastructure.constants import (
    DEPLOYMENT_BUCKET_STACK,
    DEVICE_FARM_STACK,
    FRONT_END,
    FRONTEND_ARTIFACT_BUCKET_PREFIX,
    FRONTEND_KEY_OUTPUT,
    FRONTEND_PIPELINE_STACK_NAME,
    FRONTEND_REPO,
    TEMPLATE_ENDING,
)
from infrastructure.lib.device_farm_stack import DeviceFarmStack
from infrastructure.lib.pipelines.base_pipeline import CrossAccountPipelineStack
from infrastructure.naming import (
    create_bucket_name,
    create_deployment_bucket_stack_name,
    create_device_farm_stack_name,
    create_device_farm_trigger_function_name,
)

ANDROID_SDK_URL = "https://dl.google.com/android/repository/commandlinetools-linux-7583922_latest.zip"


class FrontendPipelineStack(CrossAccountPipelineStack):
    """Builds the mobile app and CDK, ships the APK to each stage and runs Device Farm tests in Beta."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        stage_configs: StageConfigurations,
        device_farm_stacks: Dict[Stage, DeviceFarmStack],
        **kwargs,
    ) -> None:
        super().__init__(
            scope,
            construct_id,
            stage_configs=stage_configs,
            pipeline_name="FrontEndCrossAccountPipeline",
            key_alias="alias/frontend-pipeline-artifact-key",
            key_output_name=FRONTEND_KEY_OUTPUT,
            bucket_prefix=FRONTEND_ARTIFACT_BUCKET_PREFIX,
            **kwargs,
        )
        self.device_farm_stacks = device_farm_stacks

        cdk_build = self.create_cdk_build_project(
            [
                f"{FRONTEND_PIPELINE_STACK_NAME}{TEMPLATE_ENDING}",
                f"*{DEVICE_FARM_STACK}{TEMPLATE_ENDING}",
                f"*{DEPLOYMENT_BUCKET_STACK}{TEMPLATE_ENDING}",
            ]
        )

        app_build = codebuild.PipelineProject(
            self,
            "FrontEndBuild",
            build_spec=codebuild.BuildSpec.from_object(
                {
                    "version": "0.2",
                    "phases": {
                        "install": {
                            "runtime-versions": {"nodejs": "20", "java": "corretto17"},
                            "commands": [
                                "npm install",
                                f"wget {ANDROID_SDK_URL}",
                                "unzip commandlinetools-linux-*.zip",
                                "mkdir -p $HOME/Android/Sdk",
                                "mv cmdline-tools/ $HOME/Android/Sdk/",
                                "yes | $HOME/Android/Sdk/cmdline-tools/bin/sdkmanager --sdk_root=$HOME/Android/Sdk --update",
                                'yes | $HOME/Android/Sdk/cmdline-tools/bin/sdkmanager --sdk_root=$HOME/Android/Sdk "platform-tools" "platforms;android-30" "build-tools;30.0.3"',
                                "export ANDROID_HOME=$HOME/Android/Sdk",
                            ],
                        },
                        "pre_build": {"commands": ["npx expo prebuild"]},
                        "build": {
                            "commands": [
                                "cd android",
                                "./gradlew assembleDebug",
                                "cd ..",
                                "mkdir -p apk",
                                "mv android/app/build/outputs/apk/debug/* apk/",
                            ]
                        },
                    },
                    "artifacts": {"files": ["apk/**/*"]},
                }
            ),
            environment=codebuild.BuildEnvironment(
                build_image=codebuild.LinuxBuildImage.STANDARD_7_0,
                compute_type=codebuild.ComputeType.LARGE,
            ),
            encryption_key=self.key,
        )

        self.app_source = codepipeline.Artifact("frontEndSourceUX")
        self.app_build_output = codepipeline.Artifact("frontEndUXCodeBuild")

        trigger_build = self.create_function_build_project("TriggerFunctionBuild", "device_farm")
        self.trigger_build_output = codepipeline.Artifact("frontEndTriggerFunctionBuild")

        beta = stage_configs.beta
        results_check = self.create_target_account_project(
            "DeviceFarmResultsProcessor",
            beta,
            commands=[
                'echo "Checking Device Farm test results..."',
                "deploy-tools check-device-farm-results "
                f"--stack-name {create_device_farm_stack_name(beta.stage, beta.region, FRONT_END)} "
                '--role-arn "$TARGET_ROLE_ARN"',
            ],
            description="Fails the build unless the latest Beta Device Farm run passed",
        )

        self.create_pipeline(
            source_actions=[
                self.github_source_action(FRONTEND_REPO, FRONTEND_REPO, self.app_source),
                self.cdk_source_action(),
            ],
            build_actions=[
                self.cdk_synth_action(cdk_build),
                pipeline_actions.CodeBuildAction(
                    action_name="FrontEnd_Build",
                    project=app_build,
                    input=self.app_source,
                    outputs=[self.app_build_output],
                ),
                pipeline_actions.CodeBuildAction(
                    action_name="TriggerFunction_Build",
                    project=trigger_build,
                    input=self.cdk_source,
                    outputs=[self.trigger_build_output],
                ),
            ],
            beta_actions=self._deployment_actions(beta) + self._test_actions(beta, results_check),
            prod_actions=self._deployment_actions(stage_configs.prod),
        )

    def _deployment_actions(self, config: StageConfig):
        """Bucket stack, APK upload and Device Farm stack: the part both stages share."""
        roles = self.roles[config.stage]
        location = self.trigger_build_output.s3_location
        overrides = self.device_farm_stacks[config.stage].trigger_code.assign(
            bucket_name=location.bucket_name,
            object_key=location.object_key,
        )
        app_bucket = s3.Bucket.from_bucket_name(
            self,
            f"{config.label}AppImportedBucket",
            create_bucket_name("frontend-app", config.stage, config.account_id, config.region),
        )
        return [
            self.deploy_stack_action(
                config,
                "DeployS3Bucket",
                create_deployment_bucket_stack_name(config.stage, config.region, FRONT_END),
                run_order=1,
            ),
            pipeline_actions.S3DeployAction(
                action_name="apkFileDeploy",
                input=self.app_build_output,
                bucket=app_bucket,
                extract=True,
                role=roles.code_pipeline,
                run_order=2,
            ),
            self.deploy_stack_action(
                config,
                "DeployDeviceFarmStack",
                create_device_farm_stack_name(config.stage, config.region, FRONT_END),
                run_order=3,
                parameter_overrides=overrides,
                extra_inputs=[self.trigger_build_output],
            ),
        ]

    def _test_actions(self, config: StageConfig, results_check: codebuild.PipelineProject):
        roles = self.roles[config.stage]
        function_name = create_device_farm_trigger_function_name(config.stage)
        trigger_fn = lambda_.Function.from_function_attributes(
            self,
            f"{config.label}TriggerDeviceFarmTestFunction",
            function_arn=f"arn:aws:lambda:{config.region}:{config.account_id}:function:{function_name}",
            same_environment=False,
        )
        return [
            pipeline_actions.LambdaInvokeAction(
                action_name="RunDeviceFarmTest",
                lambda_=trigger_fn,
                role=roles.code_pipeline,
                run_order=4,
            ),
            pipeline_actions.CodeBuildAction(
                action_name="CheckDeviceFarmResults",
                project=results_check,
                input=self.cdk_source,
                run_order=5,
            ),
        ]
