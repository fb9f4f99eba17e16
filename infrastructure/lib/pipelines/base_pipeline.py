"""
Shared wiring for the cross-account CodePipelines.

Every pipeline lives in the pipeline account and deploys into the Beta and
Prod accounts through two roles created there by ``cfn_roles/``:

- CodePipelineCrossAccountRole: assumed by the pipeline to run actions
- CloudFormationDeploymentRole: passed to CloudFormation to create resources

Artifacts are encrypted with a pipeline-owned KMS key. Its ARN is published
as a stack output so the bootstrap can patch the roles with decrypt access.

Stage order is fixed:
    Source -> Build -> Pipeline_Update -> Deploy_Beta -> Manual_Approval -> Deploy_Prod
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from aws_cdk import (
    Stack,
    aws_codebuild as codebuild,
    aws_codepipeline as codepipeline,
    aws_codepipeline_actions as pipeline_actions,
    aws_iam as iam,
    aws_kms as kms,
    aws_s3 as s3,
    CfnCapabilities,
    SecretValue,
    RemovalPolicy,
    Duration,
    CfnOutput,
)
from constructs import Construct

from infrastructure.config import Stage, StageConfig, StageConfigurations
from infrastructure.constants import (
    CDK_REPO,
    CLOUDFORMATION_DEPLOYMENT_ROLE,
    CODE_PIPELINE_CROSS_ACCOUNT_ROLE,
    GITHUB_OWNER,
    SECRET_NAME,
    SOURCE_BRANCH,
)
from infrastructure.naming import template_file_name

PIPELINE_STAGE_ORDER = (
    "Source",
    "Build",
    "Pipeline_Update",
    "Deploy_Beta",
    "Manual_Approval",
    "Deploy_Prod",
)

KMS_ACTIONS = [
    "kms:Decrypt",
    "kms:DescribeKey",
    "kms:Encrypt",
    "kms:ReEncrypt*",
    "kms:GenerateDataKey*",
]


def role_arn(account_id: str, role_name: str) -> str:
    return f"arn:aws:iam::{account_id}:role/{role_name}"


@dataclass(frozen=True)
class StageRoles:
    code_pipeline: iam.IRole
    cloud_formation: iam.IRole
    code_pipeline_arn: str


class CrossAccountPipelineStack(Stack):
    """Base class for the backend, frontend and website pipelines.

    Subclasses build their projects and actions with the helpers below and
    finish by calling :meth:`create_pipeline` with the stage actions.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        stage_configs: StageConfigurations,
        pipeline_name: str,
        key_alias: str,
        key_output_name: str,
        bucket_prefix: str = "",
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.stage_configs = stage_configs
        self.pipeline_name = pipeline_name
        self.key_output_name = key_output_name

        self.roles: Dict[Stage, StageRoles] = {
            config.stage: self._import_stage_roles(config) for config in stage_configs
        }

        # Shared artifact key, readable by every target account
        self.key = kms.Key(
            self,
            "ArtifactKey",
            alias=key_alias,
            enable_key_rotation=True,
            removal_policy=RemovalPolicy.DESTROY,
        )
        for config in stage_configs:
            self.key.grant_decrypt(iam.AccountPrincipal(config.account_id))
            self.key.grant_decrypt(self.roles[config.stage].code_pipeline)

        self.artifact_bucket = s3.Bucket(
            self,
            "ArtifactBucket",
            bucket_name=f"{bucket_prefix}artifact-bucket-{self.account}",
            encryption=s3.BucketEncryption.KMS,
            encryption_key=self.key,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            removal_policy=RemovalPolicy.DESTROY,
            lifecycle_rules=[
                s3.LifecycleRule(
                    expiration=Duration.days(30),
                    noncurrent_version_expiration=Duration.days(30),
                    abort_incomplete_multipart_upload_after=Duration.days(1),
                )
            ],
        )
        for config in stage_configs:
            target = iam.AccountPrincipal(config.account_id)
            self.artifact_bucket.grant_put(target)
            self.artifact_bucket.grant_read(target)

        self.cdk_source = codepipeline.Artifact(f"{pipeline_name}CDKSource")
        self.cdk_build_output = codepipeline.Artifact(f"{pipeline_name}CDKBuildOutput")

    def _import_stage_roles(self, config: StageConfig) -> StageRoles:
        code_pipeline_arn = role_arn(config.account_id, CODE_PIPELINE_CROSS_ACCOUNT_ROLE)
        return StageRoles(
            code_pipeline=iam.Role.from_role_arn(
                self,
                f"{config.label}CrossAccountRole",
                code_pipeline_arn,
                mutable=False,
            ),
            cloud_formation=iam.Role.from_role_arn(
                self,
                f"{config.label}DeploymentRole",
                role_arn(config.account_id, CLOUDFORMATION_DEPLOYMENT_ROLE),
                mutable=False,
            ),
            code_pipeline_arn=code_pipeline_arn,
        )

    def create_cdk_build_project(self, template_patterns: Sequence[str]) -> codebuild.PipelineProject:
        """CodeBuild project that synthesizes the CDK app into the given templates."""
        return codebuild.PipelineProject(
            self,
            "CdkBuild",
            build_spec=codebuild.BuildSpec.from_object(
                {
                    "version": "0.2",
                    "phases": {
                        "install": {
                            "runtime-versions": {"python": "3.12", "nodejs": "20"},
                            "commands": [
                                "npm install -g aws-cdk",
                                "pip install -e .",
                            ],
                        },
                        "build": {
                            "commands": [
                                "echo Synthesizing CDK app...",
                                "cdk synth --app 'python app.py' --output dist",
                                'find dist -name "*.template.json" | sort',
                            ]
                        },
                    },
                    "artifacts": {
                        "base-directory": "dist",
                        "files": list(template_patterns),
                    },
                }
            ),
            environment=codebuild.BuildEnvironment(
                build_image=codebuild.LinuxBuildImage.STANDARD_7_0
            ),
            # app.py resolves the accounts from these when no context is given
            environment_variables={
                "PIPELINE_ACCOUNT_ID": codebuild.BuildEnvironmentVariable(value=self.account),
                "BETA_ACCOUNT_ID": codebuild.BuildEnvironmentVariable(
                    value=self.stage_configs.beta.account_id
                ),
                "PROD_ACCOUNT_ID": codebuild.BuildEnvironmentVariable(
                    value=self.stage_configs.prod.account_id
                ),
            },
            encryption_key=self.key,
        )

    def create_function_build_project(self, construct_id: str, function_dir: str) -> codebuild.PipelineProject:
        """CodeBuild project that packages ``src/functions/<function_dir>`` as Lambda code.

        The output artifact is handed to CloudFormation through the stack's
        ``Code.from_cfn_parameters`` parameters, so no CDK assets are published.
        """
        source_dir = f"src/functions/{function_dir}"
        return codebuild.PipelineProject(
            self,
            construct_id,
            build_spec=codebuild.BuildSpec.from_object(
                {
                    "version": "0.2",
                    "phases": {
                        "install": {
                            "runtime-versions": {"python": "3.12"},
                            "commands": [
                                f"cd {source_dir}",
                                "if [ -f requirements.txt ]; then pip install -r requirements.txt -t .; fi",
                            ],
                        },
                        "build": {
                            "commands": ["python -m compileall -q ."],
                        },
                    },
                    "artifacts": {
                        "base-directory": source_dir,
                        "files": ["**/*"],
                    },
                }
            ),
            environment=codebuild.BuildEnvironment(
                build_image=codebuild.LinuxBuildImage.STANDARD_7_0
            ),
            encryption_key=self.key,
        )

    def create_target_account_project(
        self,
        construct_id: str,
        config: StageConfig,
        commands: List[str],
        description: str,
    ) -> codebuild.PipelineProject:
        """CodeBuild project that runs deploy-tools commands against a target account.

        The commands receive the stage's CodePipelineCrossAccountRole ARN as
        ``$TARGET_ROLE_ARN`` and assume it themselves.
        """
        project = codebuild.PipelineProject(
            self,
            construct_id,
            build_spec=codebuild.BuildSpec.from_object(
                {
                    "version": "0.2",
                    "phases": {
                        "install": {
                            "runtime-versions": {"python": "3.12"},
                            "commands": ["pip install -e ."],
                        },
                        "build": {"commands": commands},
                    },
                }
            ),
            environment=codebuild.BuildEnvironment(
                build_image=codebuild.LinuxBuildImage.STANDARD_7_0
            ),
            environment_variables={
                "TARGET_ROLE_ARN": codebuild.BuildEnvironmentVariable(
                    value=self.roles[config.stage].code_pipeline_arn
                ),
                "AWS_DEFAULT_REGION": codebuild.BuildEnvironmentVariable(value=config.region),
                "STAGE": codebuild.BuildEnvironmentVariable(value=config.label),
            },
            # Device Farm runs can outlast the 60 minute default
            timeout=Duration.minutes(90),
            description=description,
            encryption_key=self.key,
        )
        project.add_to_role_policy(
            iam.PolicyStatement(
                actions=["sts:AssumeRole"],
                resources=[self.roles[config.stage].code_pipeline_arn],
            )
        )
        return project

    def github_source_action(
        self, action_name: str, repo: str, output: codepipeline.Artifact
    ) -> pipeline_actions.GitHubSourceAction:
        return pipeline_actions.GitHubSourceAction(
            action_name=action_name,
            owner=GITHUB_OWNER,
            repo=repo,
            branch=SOURCE_BRANCH,
            oauth_token=SecretValue.secrets_manager(SECRET_NAME),
            output=output,
            trigger=pipeline_actions.GitHubTrigger.WEBHOOK,
        )

    def cdk_source_action(self) -> pipeline_actions.GitHubSourceAction:
        return self.github_source_action(CDK_REPO, CDK_REPO, self.cdk_source)

    def cdk_synth_action(self, project: codebuild.PipelineProject) -> pipeline_actions.CodeBuildAction:
        return pipeline_actions.CodeBuildAction(
            action_name="CDK_Synth",
            project=project,
            input=self.cdk_source,
            outputs=[self.cdk_build_output],
        )

    def deploy_stack_action(
        self,
        config: StageConfig,
        action_name: str,
        stack_name: str,
        run_order: int,
        parameter_overrides: Optional[Dict[str, str]] = None,
        extra_inputs: Optional[List[codepipeline.Artifact]] = None,
    ) -> pipeline_actions.CloudFormationCreateUpdateStackAction:
        """Deploy one synthesized stack into the stage's account as the cross-account roles."""
        roles = self.roles[config.stage]
        return pipeline_actions.CloudFormationCreateUpdateStackAction(
            action_name=action_name,
            template_path=self.cdk_build_output.at_path(template_file_name(stack_name)),
            stack_name=stack_name,
            admin_permissions=False,
            parameter_overrides=parameter_overrides,
            extra_inputs=extra_inputs,
            cfn_capabilities=[CfnCapabilities.ANONYMOUS_IAM, CfnCapabilities.NAMED_IAM],
            role=roles.code_pipeline,
            deployment_role=roles.cloud_formation,
            run_order=run_order,
        )

    def _self_mutate_stage(self) -> codepipeline.StageProps:
        return codepipeline.StageProps(
            stage_name="Pipeline_Update",
            actions=[
                pipeline_actions.CloudFormationCreateUpdateStackAction(
                    action_name="SelfMutate",
                    template_path=self.cdk_build_output.at_path(template_file_name(self.stack_name)),
                    stack_name=self.stack_name,
                    admin_permissions=True,
                    cfn_capabilities=[CfnCapabilities.ANONYMOUS_IAM],
                )
            ],
        )

    def _approval_stage(self, external_entity_link: Optional[str]) -> codepipeline.StageProps:
        return codepipeline.StageProps(
            stage_name="Manual_Approval",
            actions=[
                pipeline_actions.ManualApprovalAction(
                    action_name="Approve",
                    additional_information="Approve deployment to production environment",
                    external_entity_link=external_entity_link,
                )
            ],
        )

    def create_pipeline(
        self,
        source_actions: List[codepipeline.IAction],
        build_actions: List[codepipeline.IAction],
        beta_actions: List[codepipeline.IAction],
        prod_actions: List[codepipeline.IAction],
        approval_link: Optional[str] = None,
    ) -> codepipeline.Pipeline:
        """Assemble the pipeline in the fixed stage order and publish the key ARN."""
        self.pipeline = codepipeline.Pipeline(
            self,
            "Pipeline",
            pipeline_name=self.pipeline_name,
            artifact_bucket=self.artifact_bucket,
            restart_execution_on_update=True,
            stages=[
                codepipeline.StageProps(stage_name="Source", actions=source_actions),
                codepipeline.StageProps(stage_name="Build", actions=build_actions),
                self._self_mutate_stage(),
                codepipeline.StageProps(stage_name="Deploy_Beta", actions=beta_actions),
                self._approval_stage(approval_link),
                codepipeline.StageProps(stage_name="Deploy_Prod", actions=prod_actions),
            ],
        )
        self._add_pipeline_policies()

        CfnOutput(
            self,
            self.key_output_name,
            value=self.key.key_arn,
            description="KMS key encrypting the pipeline artifacts",
            export_name=f"{self.stack_name}-{self.key_output_name}",
        )

        CfnOutput(
            self,
            "PipelineArn",
            value=self.pipeline.pipeline_arn,
            description="CodePipeline ARN",
            export_name=f"{self.stack_name}-PipelineArn",
        )

        CfnOutput(
            self,
            "ArtifactBucketName",
            value=self.artifact_bucket.bucket_name,
            description="Pipeline Artifact Bucket",
            export_name=f"{self.stack_name}-ArtifactBucket",
        )
        return self.pipeline

    def _add_pipeline_policies(self) -> None:
        self.pipeline.add_to_role_policy(
            iam.PolicyStatement(
                actions=["sts:AssumeRole"],
                resources=[f"arn:aws:iam::{config.account_id}:role/*" for config in self.stage_configs],
            )
        )

        self.pipeline.add_to_role_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=["secretsmanager:GetSecretValue"],
                resources=[
                    f"arn:aws:secretsmanager:{self.region}:{self.account}:secret:{SECRET_NAME}-*"
                ],
            )
        )

        # Required by the self-mutate stage
        self.pipeline.add_to_role_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=["ssm:GetParameters"],
                resources=[f"arn:aws:ssm:{self.region}:{self.account}:parameter/*"],
            )
        )

        self.pipeline.add_to_role_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=KMS_ACTIONS,
                resources=[self.key.key_arn],
            )
        )
