from aws_cdk import (
    Stack,
    aws_s3 as s3,
    RemovalPolicy,
    Duration,
    CfnOutput
)
from constructs import Construct

from infrastructure.naming import create_bucket_name, create_export_name


class DeploymentBucketStack(Stack):
    """Holds the mobile app builds (APK/IPA) uploaded by the frontend pipeline."""

    def __init__(self, scope: Construct, construct_id: str,
                 stage_name: str, account_id: str, region: str,
                 **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.bucket_name = create_bucket_name("frontend-app", stage_name, account_id, region)

        self.app_bucket = s3.Bucket(
            self, "APKandIPADeploymentBucket",
            bucket_name=self.bucket_name,
            encryption=s3.BucketEncryption.S3_MANAGED,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            removal_policy=RemovalPolicy.DESTROY,
            lifecycle_rules=[
                s3.LifecycleRule(
                    expiration=Duration.days(90),
                    abort_incomplete_multipart_upload_after=Duration.days(1),
                )
            ],
        )
        self.bucket_arn = self.app_bucket.bucket_arn

        CfnOutput(
            self, "DeploymentBucketName",
            value=self.app_bucket.bucket_name,
            description="Bucket holding mobile app builds",
            export_name=create_export_name(stage_name, "FrontEndDeploymentBucketName")
        )

        CfnOutput(
            self, "DeploymentBucketArn",
            value=self.app_bucket.bucket_arn,
            description="ARN of the bucket holding mobile app builds",
            export_name=create_export_name(stage_name, "FrontEndDeploymentBucketArn")
        )
