from aws_cdk import (
    Stack,
    aws_cloudfront as cloudfront,
    aws_cloudfront_origins as origins,
    aws_s3 as s3,
    RemovalPolicy,
    CfnOutput,
)
from constructs import Construct

from infrastructure.naming import create_bucket_name, create_export_name


class WebsiteBucketStack(Stack):
    """Static website hosting: private bucket served through CloudFront."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        stage_name: str,
        account_id: str,
        region: str,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        # Predictable name so the pipeline can target the bucket without a cross-stack lookup
        self.bucket_name = create_bucket_name("website", stage_name, account_id, region)

        self.website_bucket = s3.Bucket(
            self,
            "WebsiteHostingBucket",
            bucket_name=self.bucket_name,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            encryption=s3.BucketEncryption.S3_MANAGED,
            removal_policy=RemovalPolicy.DESTROY,
            cors=[
                s3.CorsRule(
                    allowed_methods=[s3.HttpMethods.GET, s3.HttpMethods.HEAD],
                    allowed_origins=["*"],
                    allowed_headers=["*"],
                )
            ],
        )

        # One OAI per stage; the domain stack serves the same bucket through it
        self.origin_access_identity = cloudfront.OriginAccessIdentity(
            self,
            "WebsiteOAI",
            comment=f"OAI for {construct_id}",
        )
        self.website_bucket.grant_read(self.origin_access_identity)

        self.distribution = cloudfront.Distribution(
            self,
            "WebsiteDistribution",
            default_root_object="index.html",
            default_behavior=cloudfront.BehaviorOptions(
                origin=origins.S3BucketOrigin.with_origin_access_identity(
                    self.website_bucket,
                    origin_access_identity=self.origin_access_identity,
                ),
                compress=True,
                allowed_methods=cloudfront.AllowedMethods.ALLOW_GET_HEAD_OPTIONS,
                viewer_protocol_policy=cloudfront.ViewerProtocolPolicy.REDIRECT_TO_HTTPS,
            ),
            error_responses=[
                cloudfront.ErrorResponse(
                    http_status=404,
                    response_http_status=200,
                    response_page_path="/index.html",
                )
            ],
            price_class=cloudfront.PriceClass.PRICE_CLASS_100,
        )

        self.bucket_arn = self.website_bucket.bucket_arn
        self.distribution_id = self.distribution.distribution_id
        self.distribution_domain_name = self.distribution.distribution_domain_name

        CfnOutput(
            self,
            "WebsiteBucketNameOutput",
            value=self.website_bucket.bucket_name,
            description="The name of the S3 bucket hosting the website",
            export_name=create_export_name(stage_name, "WebsiteBucketName"),
        )

        CfnOutput(
            self,
            "WebsiteBucketArnOutput",
            value=self.website_bucket.bucket_arn,
            description="The ARN of the S3 bucket hosting the website",
            export_name=create_export_name(stage_name, "WebsiteBucketArn"),
        )

        CfnOutput(
            self,
            "WebsiteDistributionIdOutput",
            value=self.distribution.distribution_id,
            description="The ID of the CloudFront distribution",
            export_name=create_export_name(stage_name, "WebsiteDistributionId"),
        )

        CfnOutput(
            self,
            "WebsiteURLOutput",
            value=f"https://{self.distribution.distribution_domain_name}",
            description="The URL of the website",
            export_name=create_export_name(stage_name, "WebsiteURL"),
        )
