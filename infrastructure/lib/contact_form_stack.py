from typing import List

from aws_cdk import (
    Stack,
    aws_apigateway as apigateway,
    aws_dynamodb as dynamodb,
    aws_iam as iam,
    aws_lambda as lambda_,
    RemovalPolicy,
    Duration,
    CfnOutput
)
from constructs import Construct

from infrastructure.config import StageConfig
from infrastructure.constants import CONTACT_FORM_MAX_ITEMS
from infrastructure.naming import create_export_name, stage_subdomain


def allowed_origins(stage_config: StageConfig) -> List[str]:
    """Origins the contact form accepts requests from."""
    site = stage_subdomain(stage_config.stage, stage_config.domain_name, stage_config.is_prod)
    if stage_config.is_prod:
        return [f"https://{site}", f"https://www.{site}"]
    return [f"https://{site}", "http://localhost:3000"]


class ContactFormStack(Stack):
    def __init__(self, scope: Construct, construct_id: str,
                 stage_config: StageConfig, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        stage_name = stage_config.label
        is_prod = stage_config.is_prod
        origins = allowed_origins(stage_config)

        # Contact form submissions, keyed by sender
        self.contact_table = dynamodb.Table(
            self, "ContactFormTable",
            table_name=f"ContactForm-{stage_name}",
            partition_key=dynamodb.Attribute(
                name="email",
                type=dynamodb.AttributeType.STRING
            ),
            sort_key=dynamodb.Attribute(
                name="timestamp",
                type=dynamodb.AttributeType.STRING
            ),
            billing_mode=dynamodb.BillingMode.PAY_PER_REQUEST,
            removal_policy=RemovalPolicy.RETAIN if is_prod else RemovalPolicy.DESTROY,
            point_in_time_recovery=is_prod
        )

        self.contact_table.add_global_secondary_index(
            index_name="DateIndex",
            partition_key=dynamodb.Attribute(
                name="date",
                type=dynamodb.AttributeType.STRING
            ),
            sort_key=dynamodb.Attribute(
                name="timestamp",
                type=dynamodb.AttributeType.STRING
            )
        )

        # Waitlist signups are filtered by subject
        self.contact_table.add_global_secondary_index(
            index_name="SubjectIndex",
            partition_key=dynamodb.Attribute(
                name="subject",
                type=dynamodb.AttributeType.STRING
            ),
            sort_key=dynamodb.Attribute(
                name="timestamp",
                type=dynamodb.AttributeType.STRING
            )
        )

        # Packaged by the website pipeline
        self.lambda_code = lambda_.Code.from_cfn_parameters()

        self.contact_fn = lambda_.Function(
            self, "ContactFormFunction",
            function_name=f"ContactForm-{stage_name}",
            runtime=lambda_.Runtime.PYTHON_3_12,
            handler="contact_form.handler",
            code=self.lambda_code,
            timeout=Duration.seconds(30),
            memory_size=256,
            tracing=lambda_.Tracing.ACTIVE,
            environment={
                "TABLE_NAME": self.contact_table.table_name,
                "MAX_ITEMS": str(CONTACT_FORM_MAX_ITEMS),
                "ALLOWED_ORIGINS": ",".join(origins),
                "STAGE": stage_name
            }
        )

        self.contact_table.grant_read_write_data(self.contact_fn)

        # Item count check before accepting a submission
        self.contact_fn.add_to_role_policy(
            iam.PolicyStatement(
                actions=["dynamodb:Scan"],
                resources=[self.contact_table.table_arn]
            )
        )

        api = apigateway.RestApi(
            self, "ContactFormApi",
            rest_api_name=f"ContactForm-API-{stage_name}",
            description=f"API for contact form submissions - {stage_name}",
            default_cors_preflight_options=apigateway.CorsOptions(
                allow_origins=origins,
                allow_methods=apigateway.Cors.ALL_METHODS,
                allow_headers=["Content-Type", "X-Amz-Date", "Authorization", "X-Api-Key", "X-Amz-Security-Token"],
                allow_credentials=True,
                max_age=Duration.days(1)
            )
        )

        contact = api.root.add_resource("contact")
        contact.add_method("POST", apigateway.LambdaIntegration(self.contact_fn))

        self.api_endpoint = api.url

        CfnOutput(
            self, "ApiEndpointOutput",
            value=api.url,
            description="URL of the Contact Form API endpoint",
            export_name=create_export_name(stage_name, "ContactFormApiEndpoint")
        )

        CfnOutput(
            self, "ApiContactEndpointOutput",
            value=f"{api.url}contact",
            description="Complete URL for the contact resource endpoint",
            export_name=create_export_name(stage_name, "ContactFormSpecificEndpoint")
        )

        CfnOutput(
            self, "ContactFormTableNameOutput",
            value=self.contact_table.table_name,
            description="Name of the DynamoDB table storing contact form submissions",
            export_name=create_export_name(stage_name, "ContactFormTableName")
        )
