import json
from pathlib import Path

import pytest
from aws_cdk import App
from aws_cdk.assertions import Match, Template

from infrastructure.application import build_application
from infrastructure.config import Stage, build_stage_configurations
from infrastructure.lib.pipelines.base_pipeline import PIPELINE_STAGE_ORDER
from infrastructure.lib.pipelines.website_pipeline_stack import invalidation_target

PIPELINE_ACCOUNT = "111111111111"
BETA_ACCOUNT = "222222222222"
PROD_ACCOUNT = "333333333333"


@pytest.fixture(scope="module")
def app():
    return App()


@pytest.fixture(scope="module")
def application(app):
    stage_configs = build_stage_configurations(BETA_ACCOUNT, PROD_ACCOUNT)
    return build_application(app, PIPELINE_ACCOUNT, stage_configs)


@pytest.fixture(scope="module")
def templates(application):
    return {name: Template.from_stack(stack) for name, stack in application["pipelines"].items()}


def pipeline_stages(template):
    pipelines = template.find_resources("AWS::CodePipeline::Pipeline")
    assert len(pipelines) == 1
    return next(iter(pipelines.values()))["Properties"]["Stages"]


def run_orders(template, stage_name):
    stage = next(s for s in pipeline_stages(template) if s["Name"] == stage_name)
    return {action["Name"]: action.get("RunOrder", 1) for action in stage["Actions"]}


def all_stacks(application):
    stacks = list(application["pipelines"].values())
    for stage_stacks in application["stages"].values():
        stacks.extend(stage_stacks.values())
    return stacks


def file_assets(assembly_dir, stack):
    """File assets other than the stack's own template."""
    manifest = json.loads((Path(assembly_dir) / f"{stack.artifact_id}.assets.json").read_text())
    return [
        asset_id
        for asset_id, asset in manifest.get("files", {}).items()
        if not asset["source"]["path"].endswith(".template.json")
    ]


class TestPipelineLayout:
    """Stage order and artifact handling shared by every pipeline"""

    @pytest.mark.parametrize("name", ["backend", "frontend", "website"])
    def test_stage_order(self, templates, name):
        # When
        names = [stage["Name"] for stage in pipeline_stages(templates[name])]

        # Then
        assert tuple(names) == PIPELINE_STAGE_ORDER

    @pytest.mark.parametrize(
        "name, bucket, output",
        [
            ("backend", "artifact-bucket-111111111111", "ArtifactBucketEncryptionKeyArn"),
            ("frontend", "frontend-artifact-bucket-111111111111", "FrontEndArtifactBucketEncryptionKeyArn"),
            ("website", "website-artifact-bucket-111111111111", "WebsiteArtifactBucketEncryptionKeyArn"),
        ],
    )
    def test_artifacts_are_kms_encrypted_and_key_is_published(self, templates, name, bucket, output):
        template = templates[name]

        template.has_resource_properties("AWS::S3::Bucket", {"BucketName": bucket})
        template.has_resource_properties("AWS::KMS::Key", {"EnableKeyRotation": True})
        template.has_output(output, Match.object_like({"Value": Match.any_value()}))

    def test_stacks_publish_no_file_assets(self, app, application):
        # CloudFormation actions receive templates only, so nothing may depend on an uploaded asset
        assembly = app.synth()

        with_assets = {
            stack.stack_name: file_assets(assembly.directory, stack)
            for stack in all_stacks(application)
            if file_assets(assembly.directory, stack)
        }

        assert with_assets == {}

    def test_self_mutate_deploys_the_pipeline_stack(self, templates):
        stage = next(s for s in pipeline_stages(templates["backend"]) if s["Name"] == "Pipeline_Update")

        action = stage["Actions"][0]
        assert action["Name"] == "SelfMutate"
        assert action["Configuration"]["StackName"] == "PipelineDeploymentStack"

    def test_deploy_actions_use_the_cross_account_roles(self, templates):
        stage = next(s for s in pipeline_stages(templates["backend"]) if s["Name"] == "Deploy_Prod")

        for action in stage["Actions"]:
            assert action["RoleArn"] == "arn:aws:iam::333333333333:role/CodePipelineCrossAccountRole"
            assert action["Configuration"]["RoleArn"] == (
                "arn:aws:iam::333333333333:role/CloudFormationDeploymentRole"
            )

    def test_pipeline_may_assume_target_roles(self, templates):
        templates["website"].has_resource_properties(
            "AWS::IAM::Policy",
            {
                "PolicyDocument": {
                    "Statement": Match.array_with(
                        [
                            Match.object_like(
                                {
                                    "Action": "sts:AssumeRole",
                                    "Resource": [
                                        "arn:aws:iam::222222222222:role/*",
                                        "arn:aws:iam::333333333333:role/*",
                                    ],
                                }
                            )
                        ]
                    )
                }
            },
        )


class TestBackendPipeline:
    def test_vpc_before_service(self, templates):
        for stage_name in ("Deploy_Beta", "Deploy_Prod"):
            assert run_orders(templates["backend"], stage_name) == {
                "DeployVpcStack": 1,
                "DeployServiceStack": 2,
            }

    def test_service_receives_the_lambda_build(self, templates):
        stage = next(s for s in pipeline_stages(templates["backend"]) if s["Name"] == "Deploy_Beta")
        deploy_service = next(a for a in stage["Actions"] if a["Name"] == "DeployServiceStack")

        assert deploy_service["Configuration"]["StackName"] == "Betauswest2ServiceStack"
        assert "ParameterOverrides" in deploy_service["Configuration"]
        assert {"Name": "backendLambdaBuildOutput"} in deploy_service["InputArtifacts"]


class TestFrontendPipeline:
    def test_beta_runs_device_farm_tests(self, templates):
        assert run_orders(templates["frontend"], "Deploy_Beta") == {
            "DeployS3Bucket": 1,
            "apkFileDeploy": 2,
            "DeployDeviceFarmStack": 3,
            "RunDeviceFarmTest": 4,
            "CheckDeviceFarmResults": 5,
        }

    def test_prod_mirrors_the_deployment_steps(self, templates):
        assert run_orders(templates["frontend"], "Deploy_Prod") == {
            "DeployS3Bucket": 1,
            "apkFileDeploy": 2,
            "DeployDeviceFarmStack": 3,
        }

    def test_trigger_function_is_invoked_by_name(self, templates):
        stage = next(s for s in pipeline_stages(templates["frontend"]) if s["Name"] == "Deploy_Beta")
        invoke = next(a for a in stage["Actions"] if a["Name"] == "RunDeviceFarmTest")

        assert invoke["Configuration"]["FunctionName"] == "FrontEndBetaTriggerDeviceFarmTest"

    def test_results_check_assumes_the_beta_role(self, templates):
        templates["frontend"].has_resource_properties(
            "AWS::CodeBuild::Project",
            {
                "Source": Match.object_like(
                    {
                        "BuildSpec": Match.string_like_regexp(
                            "check-device-farm-results --stack-name FrontEndBetauswest2DeviceFarmStack"
                        )
                    }
                ),
                "Environment": Match.object_like(
                    {
                        "EnvironmentVariables": Match.array_with(
                            [
                                {
                                    "Name": "TARGET_ROLE_ARN",
                                    "Type": "PLAINTEXT",
                                    "Value": "arn:aws:iam::222222222222:role/CodePipelineCrossAccountRole",
                                }
                            ]
                        )
                    }
                ),
            },
        )


    def test_device_farm_stack_receives_the_trigger_build(self, templates):
        for stage_name in ("Deploy_Beta", "Deploy_Prod"):
            stage = next(s for s in pipeline_stages(templates["frontend"]) if s["Name"] == stage_name)
            deploy = next(a for a in stage["Actions"] if a["Name"] == "DeployDeviceFarmStack")

            assert "ParameterOverrides" in deploy["Configuration"]
            assert {"Name": "frontEndTriggerFunctionBuild"} in deploy["InputArtifacts"]

    def test_results_check_outlasts_the_device_farm_poll(self, templates):
        templates["frontend"].has_resource_properties(
            "AWS::CodeBuild::Project",
            {
                "Source": Match.object_like(
                    {"BuildSpec": Match.string_like_regexp("check-device-farm-results")}
                ),
                "TimeoutInMinutes": 90,
            },
        )


class TestWebsitePipeline:
    @pytest.mark.parametrize("stage_name, label", [("Deploy_Beta", "Beta"), ("Deploy_Prod", "Prod")])
    def test_run_orders(self, templates, stage_name, label):
        assert run_orders(templates["website"], stage_name) == {
            "DeployWebsiteBucket": 1,
            f"Deploy{label}DomainConfig": 2,
            "DeployContactForm": 3,
            "DeployWebsiteContent": 4,
            "InvalidateCloudFrontCache": 5,
            "ConfirmCacheInvalidation": 6,
        }

    def test_contact_form_receives_the_function_build(self, templates):
        stage = next(s for s in pipeline_stages(templates["website"]) if s["Name"] == "Deploy_Prod")
        deploy = next(a for a in stage["Actions"] if a["Name"] == "DeployContactForm")

        assert deploy["Configuration"]["StackName"] == "Produswest2ContactFormStack"
        assert {"Name": "contactFormBuildOutput"} in deploy["InputArtifacts"]

    def test_beta_invalidates_the_custom_domain_distribution(self, templates):
        templates["website"].has_resource_properties(
            "AWS::CodeBuild::Project",
            {
                "Source": Match.object_like(
                    {
                        "BuildSpec": Match.string_like_regexp(
                            "--stack-name WebsiteBetauswest2DomainqandmedatingcomStack --output-key DistributionId"
                        )
                    }
                )
            },
        )

    def test_prod_invalidates_the_bucket_distribution_until_the_domain_is_live(self, application):
        prod = application["stages"][Stage.PROD]["domain"].stage_config

        assert invalidation_target(prod) == ("WebsiteProduswest2BucketStack", "WebsiteDistributionIdOutput")

    def test_approval_links_to_beta_site(self, templates):
        stage = next(s for s in pipeline_stages(templates["website"]) if s["Name"] == "Manual_Approval")

        assert stage["Actions"][0]["Configuration"]["ExternalEntityLink"] == "https://beta.qandmedating.com"
