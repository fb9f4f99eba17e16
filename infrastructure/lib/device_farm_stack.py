from aws_cdk import (
    Stack,
    aws_devicefarm as devicefarm,
    aws_iam as iam,
    aws_lambda as lambda_,
    aws_s3 as s3,
    RemovalPolicy,
    Duration,
    CfnOutput,
)
from constructs import Construct

from infrastructure.naming import (
    create_bucket_name,
    create_device_farm_trigger_function_name,
    create_export_name,
)


class DeviceFarmStack(Stack):
    """Device Farm project, results bucket and the Lambda that schedules test runs."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        stage_name: str,
        account_id: str,
        region: str,
        app_bucket_name: str,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.project = devicefarm.CfnProject(
            self,
            "DeviceFarmProject",
            name=f"FrontEnd-{stage_name}",
            default_job_timeout_minutes=30,
        )

        self.device_pool = devicefarm.CfnDevicePool(
            self,
            "AndroidDevicePool",
            name=f"FrontEnd-{stage_name}-Android",
            project_arn=self.project.attr_arn,
            max_devices=2,
            rules=[
                devicefarm.CfnDevicePool.RuleProperty(
                    attribute="PLATFORM",
                    operator="EQUALS",
                    value='"ANDROID"',
                ),
                devicefarm.CfnDevicePool.RuleProperty(
                    attribute="AVAILABILITY",
                    operator="EQUALS",
                    value='"HIGHLY_AVAILABLE"',
                ),
            ],
        )

        self.results_bucket = s3.Bucket(
            self,
            "DeviceFarmResultsBucket",
            bucket_name=create_bucket_name("devicefarm-results", stage_name, account_id, region),
            encryption=s3.BucketEncryption.S3_MANAGED,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            removal_policy=RemovalPolicy.DESTROY,
            lifecycle_rules=[s3.LifecycleRule(expiration=Duration.days(30))],
        )

        app_bucket = s3.Bucket.from_bucket_name(self, "AppBucket", app_bucket_name)

        # Packaged by the frontend pipeline and supplied as template parameters
        self.trigger_code = lambda_.Code.from_cfn_parameters()

        self.trigger_fn = lambda_.Function(
            self,
            "TriggerDeviceFarmTest",
            function_name=create_device_farm_trigger_function_name(stage_name),
            runtime=lambda_.Runtime.PYTHON_3_12,
            handler="trigger_test.handler",
            code=self.trigger_code,
            timeout=Duration.minutes(5),
            memory_size=512,
            environment={
                "PROJECT_ARN": self.project.attr_arn,
                "DEVICE_POOL_ARN": self.device_pool.attr_arn,
                "APP_BUCKET": app_bucket_name,
                "APP_KEY_PREFIX": "apk/",
                "RESULTS_BUCKET": self.results_bucket.bucket_name,
            },
            description="Uploads the latest APK to Device Farm and schedules a test run",
        )

        app_bucket.grant_read(self.trigger_fn)
        self.results_bucket.grant_read_write(self.trigger_fn)
        self.trigger_fn.add_to_role_policy(
            iam.PolicyStatement(
                actions=[
                    "devicefarm:CreateUpload",
                    "devicefarm:GetUpload",
                    "devicefarm:ScheduleRun",
                ],
                resources=["*"],
            )
        )
        self.trigger_fn.add_to_role_policy(
            iam.PolicyStatement(
                actions=[
                    "codepipeline:PutJobSuccessResult",
                    "codepipeline:PutJobFailureResult",
                ],
                resources=["*"],
            )
        )

        CfnOutput(
            self,
            "ResultsBucketName",
            value=self.results_bucket.bucket_name,
            description="Bucket where Device Farm run summaries are written",
            export_name=create_export_name(stage_name, "DeviceFarmResultsBucketName"),
        )

        CfnOutput(
            self,
            "TriggerTestFunctionName",
            value=self.trigger_fn.function_name,
            description="Lambda that schedules a Device Farm run",
        )

        CfnOutput(
            self,
            "DeviceFarmProjectArn",
            value=self.project.attr_arn,
            description="ARN of the Device Farm project",
        )
