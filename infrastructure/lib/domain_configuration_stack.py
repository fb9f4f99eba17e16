import base64
from typing import Optional

from aws_cdk import (
    Stack,
    aws_certificatemanager as acm,
    aws_cloudfront as cloudfront,
    aws_cloudfront_origins as origins,
    aws_iam as iam,
    aws_logs as logs,
    aws_route53 as route53,
    aws_route53_targets as targets,
    aws_s3 as s3,
    Duration,
    Fn,
    RemovalPolicy,
    CfnOutput,
)
from constructs import Construct

from infrastructure.config import StageConfig
from infrastructure.constants import (
    BETA_BASIC_AUTH_PASSWORD,
    BETA_BASIC_AUTH_USER,
    BETA_CERTIFICATE_ARN,
    BETA_NAME_SERVERS,
    DEPLOY_PROD_DISTRIBUTION,
    MAIL_EXCHANGES,
    PROD_CERTIFICATE_ARN,
    SPF_RECORD,
)
from infrastructure.naming import create_bucket_name, stage_subdomain

SPA_REWRITE = """
  var uri = request.uri;
  if (uri.endsWith('/')) {
    request.uri += 'index.html';
  } else if (!uri.includes('.')) {
    request.uri = '/index.html';
  }
"""

BASIC_AUTH_CHECK = """
  var auth = request.headers.authorization;
  if (!auth || auth.value !== '%s') {
    return {
      statusCode: 401,
      statusDescription: 'Unauthorized',
      headers: { 'www-authenticate': { value: 'Basic realm="Beta Access"' } }
    };
  }
"""


def certificate_arn_for(stage_config: StageConfig) -> str:
    return PROD_CERTIFICATE_ARN if stage_config.is_prod else BETA_CERTIFICATE_ARN


def serves_custom_domain(stage_config: StageConfig) -> bool:
    """Whether the stage gets a distribution on its own domain.

    Prod waits for both the deploy flag and an issued certificate.
    """
    if not stage_config.is_prod:
        return True
    return DEPLOY_PROD_DISTRIBUTION and bool(PROD_CERTIFICATE_ARN)


class DomainConfigurationStack(Stack):
    """Hosted zone, custom-domain CloudFront distribution and DNS records for one stage.

    Beta always gets a distribution. Prod only gets one once
    ``deploy_distribution`` is switched on (its certificate has to be issued
    first); until then only the hosted zone and its name servers are created.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        stage_config: StageConfig,
        bucket_name: str,
        origin_access_identity_id: Optional[str] = None,
        certificate_arn: Optional[str] = None,
        deploy_distribution: bool = True,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        if not stage_config.domain_name:
            raise ValueError(f"Stage {stage_config.label} has no domain name configured")

        self.stage_config = stage_config
        self.stage_name = stage_config.label
        self.apex_domain = stage_config.domain_name
        self.full_domain_name = stage_subdomain(
            stage_config.stage, stage_config.domain_name, stage_config.is_prod
        )
        self.export_prefix = f"{self.stage_name}-{self.apex_domain.replace('.', '-')}"

        should_deploy_distribution = not stage_config.is_prod or deploy_distribution

        self.hosted_zone = route53.PublicHostedZone(
            self,
            "HostedZone",
            zone_name=self.full_domain_name,
            comment=f"Hosted zone for {self.full_domain_name}, managed via CDK",
        )
        self._create_subdomain_delegation()

        self.hosted_zone_id = self.hosted_zone.hosted_zone_id
        self.domain_name = self.full_domain_name
        self._create_hosted_zone_outputs()

        if not should_deploy_distribution:
            self.distribution_id = None
            CfnOutput(
                self,
                "DistributionStatus",
                value="CloudFront distribution deployment was skipped",
                description="Status of CloudFront distribution deployment",
            )
            return

        if not certificate_arn:
            raise ValueError(
                f"A certificate ARN is required to serve {self.full_domain_name} through CloudFront"
            )
        if not origin_access_identity_id:
            raise ValueError("An origin access identity is required to read the website bucket")

        website_bucket = s3.Bucket.from_bucket_name(self, "WebsiteBucket", bucket_name)
        origin_access_identity = cloudfront.OriginAccessIdentity.from_origin_access_identity_id(
            self, "WebsiteOAI", origin_access_identity_id
        )
        certificate = acm.Certificate.from_certificate_arn(self, "Certificate", certificate_arn)
        log_bucket, log_group = self._create_logging_resources()

        self.distribution = cloudfront.Distribution(
            self,
            "WebsiteDistribution",
            default_behavior=cloudfront.BehaviorOptions(
                origin=origins.S3BucketOrigin.with_origin_access_identity(
                    website_bucket,
                    origin_access_identity=origin_access_identity,
                ),
                compress=True,
                allowed_methods=cloudfront.AllowedMethods.ALLOW_GET_HEAD_OPTIONS,
                cached_methods=cloudfront.CachedMethods.CACHE_GET_HEAD_OPTIONS,
                viewer_protocol_policy=cloudfront.ViewerProtocolPolicy.REDIRECT_TO_HTTPS,
                cache_policy=cloudfront.CachePolicy.CACHING_OPTIMIZED,
                origin_request_policy=cloudfront.OriginRequestPolicy.CORS_S3_ORIGIN,
                response_headers_policy=cloudfront.ResponseHeadersPolicy.CORS_ALLOW_ALL_ORIGINS_WITH_PREFLIGHT,
                function_associations=[
                    cloudfront.FunctionAssociation(
                        function=self._create_viewer_request_function(),
                        event_type=cloudfront.FunctionEventType.VIEWER_REQUEST,
                    )
                ],
            ),
            error_responses=[
                cloudfront.ErrorResponse(
                    http_status=status,
                    response_http_status=200,
                    response_page_path="/index.html",
                    ttl=Duration.minutes(5),
                )
                for status in (403, 404)
            ],
            default_root_object="index.html",
            domain_names=self._served_domain_names(),
            certificate=certificate,
            enable_logging=True,
            log_bucket=log_bucket,
            log_file_prefix=f"{self.stage_name.lower()}/",
            log_includes_cookies=False,
            minimum_protocol_version=cloudfront.SecurityPolicyProtocol.TLS_V1_2_2021,
            http_version=cloudfront.HttpVersion.HTTP2,
            price_class=cloudfront.PriceClass.PRICE_CLASS_100,
        )
        self.distribution_id = self.distribution.distribution_id

        self._create_dns_records()
        self._create_distribution_outputs(log_bucket, log_group)

    def _served_domain_names(self):
        if self.full_domain_name == self.apex_domain:
            return [self.full_domain_name, f"www.{self.apex_domain}"]
        return [self.full_domain_name]

    def _create_subdomain_delegation(self) -> None:
        """Delegate beta.<domain> to the Beta account's zone. Prod only."""
        if not self.stage_config.is_prod:
            return

        route53.NsRecord(
            self,
            "BetaSubdomainDelegation",
            zone=self.hosted_zone,
            record_name="beta",
            values=BETA_NAME_SERVERS,
            ttl=Duration.minutes(5),
        )

    def _create_logging_resources(self):
        """Creates the CloudFront access log bucket and a CloudWatch log group."""
        log_bucket = s3.Bucket(
            self,
            "CloudFrontLogBucket",
            bucket_name=create_bucket_name(
                "cloudfront-logs", self.stage_name, self.stage_config.account_id, self.stage_config.region
            ),
            encryption=s3.BucketEncryption.S3_MANAGED,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            removal_policy=RemovalPolicy.DESTROY,
            # CloudFront standard logging writes with ACLs
            object_ownership=s3.ObjectOwnership.OBJECT_WRITER,
            lifecycle_rules=[
                s3.LifecycleRule(
                    id="DeleteOldLogs",
                    expiration=Duration.days(90),
                    noncurrent_version_expiration=Duration.days(30),
                )
            ],
        )

        log_bucket.add_to_resource_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                principals=[iam.ServicePrincipal("cloudfront.amazonaws.com")],
                actions=["s3:GetBucketAcl", "s3:PutObject"],
                resources=[log_bucket.bucket_arn, log_bucket.arn_for_objects("*")],
                conditions={
                    "StringEquals": {
                        "aws:SourceArn": f"arn:aws:cloudfront::{self.stage_config.account_id}:distribution/*"
                    }
                },
            )
        )

        log_group = logs.LogGroup(
            self,
            "CloudFrontLogGroup",
            log_group_name=f"/aws/cloudfront/{self.stage_name.lower()}-{self.apex_domain.replace('.', '-')}",
            retention=logs.RetentionDays.THREE_MONTHS,
            removal_policy=RemovalPolicy.DESTROY,
        )
        return log_bucket, log_group

    def _create_viewer_request_function(self) -> cloudfront.Function:
        """SPA rewrite, preceded by a basic auth gate outside Prod.

        CloudFront allows a single function per event type, so both concerns
        share one viewer-request function.
        """
        body = SPA_REWRITE
        comment = "Redirect all paths to index.html for SPA routing"
        if not self.stage_config.is_prod:
            credentials = f"{BETA_BASIC_AUTH_USER}:{BETA_BASIC_AUTH_PASSWORD}".encode("utf-8")
            encoded = "Basic " + base64.b64encode(credentials).decode("ascii")
            body = (BASIC_AUTH_CHECK % encoded) + body
            comment = f"Basic auth and SPA routing for {self.stage_name}"

        code = "function handler(event) {\n  var request = event.request;\n" + body + "  return request;\n}\n"
        return cloudfront.Function(
            self,
            "ViewerRequestFunction",
            code=cloudfront.FunctionCode.from_inline(code),
            comment=comment,
        )

    def _create_dns_records(self) -> None:
        target = route53.RecordTarget.from_alias(targets.CloudFrontTarget(self.distribution))

        route53.ARecord(
            self,
            "AliasRecord",
            zone=self.hosted_zone,
            record_name=self.full_domain_name,
            target=target,
        )

        if self.full_domain_name == self.apex_domain:
            route53.ARecord(
                self,
                "WwwAliasRecord",
                zone=self.hosted_zone,
                record_name=f"www.{self.apex_domain}",
                target=target,
            )

        if self.stage_config.is_prod:
            route53.MxRecord(
                self,
                "MxRecords",
                zone=self.hosted_zone,
                record_name=self.full_domain_name,
                values=[
                    route53.MxRecordValue(host_name=host, priority=priority)
                    for host, priority in MAIL_EXCHANGES
                ],
                ttl=Duration.minutes(5),
            )
            route53.TxtRecord(
                self,
                "SpfRecord",
                zone=self.hosted_zone,
                record_name=self.full_domain_name,
                values=[SPF_RECORD],
                ttl=Duration.minutes(5),
            )

    def _create_hosted_zone_outputs(self) -> None:
        CfnOutput(
            self,
            "HostedZoneId",
            value=self.hosted_zone.hosted_zone_id,
            description="The ID of the hosted zone",
            export_name=f"{self.export_prefix}-HostedZoneId",
        )

        CfnOutput(
            self,
            "DomainName",
            value=self.full_domain_name,
            description="The domain name for the website",
            export_name=f"{self.export_prefix}-DomainName",
        )

        CfnOutput(
            self,
            "NameServers",
            value=Fn.join(",", self.hosted_zone.hosted_zone_name_servers or []),
            description="Name servers for the hosted zone; point the registrar at these",
        )

    def _create_distribution_outputs(self, log_bucket: s3.Bucket, log_group: logs.LogGroup) -> None:
        CfnOutput(
            self,
            "DistributionId",
            value=self.distribution.distribution_id,
            description="The ID of the CloudFront distribution",
            export_name=f"{self.export_prefix}-DistributionId",
        )

        CfnOutput(
            self,
            "DistributionDomainName",
            value=self.distribution.distribution_domain_name,
            description="The domain name of the CloudFront distribution",
            export_name=f"{self.export_prefix}-DistributionDomainName",
        )

        CfnOutput(
            self,
            "LogBucketName",
            value=log_bucket.bucket_name,
            description="The S3 bucket for CloudFront logs",
            export_name=f"{self.export_prefix}-LogBucketName",
        )

        CfnOutput(
            self,
            "LogGroupName",
            value=log_group.log_group_name,
            description="The CloudWatch log group for CloudFront logs",
            export_name=f"{self.export_prefix}-LogGroupName",
        )

        CfnOutput(
            self,
            "InvalidationCommand",
            value=(
                f"aws cloudfront create-invalidation --distribution-id "
                f"{self.distribution.distribution_id} --paths \"/*\" --profile {self.stage_name.lower()}"
            ),
            description="Command to invalidate CloudFront cache after deployment",
        )
