from typing import Optional

from aws_cdk import (
    Stack,
    aws_apigateway as apigateway,
    aws_ec2 as ec2,
    aws_lambda as lambda_,
    aws_iam as iam,
    Duration,
    CfnOutput
)
from constructs import Construct

from infrastructure.naming import create_export_name


class ServiceStack(Stack):
    """Backend service: a Lambda behind a REST API.

    The function code is not bundled at synth time. It is supplied through
    CloudFormation parameters by the backend pipeline from the Lambda build
    artifact, see ``lambda_code.assign``.
    """

    def __init__(self, scope: Construct, construct_id: str,
                 stage_name: str, vpc: Optional[ec2.IVpc] = None,
                 **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.lambda_code = lambda_.Code.from_cfn_parameters()

        lambda_role = iam.Role(
            self, "ServiceExecutionRole",
            assumed_by=iam.ServicePrincipal("lambda.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name("service-role/AWSLambdaBasicExecutionRole"),
                iam.ManagedPolicy.from_aws_managed_policy_name("service-role/AWSLambdaVPCAccessExecutionRole")
            ]
        )

        vpc_options = {}
        if vpc is not None:
            vpc_options = {
                "vpc": vpc,
                "vpc_subnets": ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_ISOLATED),
            }

        self.service_fn = lambda_.Function(
            self, "ServiceFunction",
            runtime=lambda_.Runtime.PYTHON_3_12,
            handler="handler.handler",
            code=self.lambda_code,
            role=lambda_role,
            timeout=Duration.seconds(30),
            memory_size=256,
            environment={
                "STAGE": stage_name
            },
            **vpc_options
        )

        api = apigateway.RestApi(
            self, "ServiceApi",
            rest_api_name=f"Service-API-{stage_name}",
            description=f"Backend service API - {stage_name}",
            deploy_options=apigateway.StageOptions(
                stage_name="prod",
                throttling_rate_limit=100,
                throttling_burst_limit=200,
                metrics_enabled=True,
                tracing_enabled=True
            )
        )

        integration = apigateway.LambdaIntegration(self.service_fn, proxy=True)

        # GET /health
        health = api.root.add_resource("health")
        health.add_method("GET", integration)

        # ANY /{proxy+}
        api.root.add_proxy(default_integration=integration, any_method=True)

        self.api_url = api.url

        CfnOutput(
            self, "ApiEndpoint",
            value=api.url,
            description="Backend service API endpoint",
            export_name=create_export_name(stage_name, "ServiceApiEndpoint")
        )
