from aws_cdk import (
    Stack,
    aws_ec2 as ec2,
    CfnOutput,
    Tags
)
from constructs import Construct

from infrastructure.naming import create_export_name


class VpcStack(Stack):
    def __init__(self, scope: Construct, construct_id: str,
                 stage_name: str, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        # Backend VPC, one NAT-free isolated tier for the service
        self.vpc = ec2.Vpc(
            self, "BackendVPC",
            ip_addresses=ec2.IpAddresses.cidr("10.0.0.0/16"),
            max_azs=2,
            nat_gateways=0,
            subnet_configuration=[
                ec2.SubnetConfiguration(
                    name="Public",
                    subnet_type=ec2.SubnetType.PUBLIC,
                    cidr_mask=24
                ),
                ec2.SubnetConfiguration(
                    name="Private",
                    subnet_type=ec2.SubnetType.PRIVATE_ISOLATED,
                    cidr_mask=24
                )
            ]
        )

        self.vpc.add_flow_log("FlowLogs",
            destination=ec2.FlowLogDestination.to_cloud_watch_logs(),
            traffic_type=ec2.FlowLogTrafficType.REJECT
        )

        Tags.of(self).add("Stage", stage_name)

        CfnOutput(
            self, "VPCId",
            value=self.vpc.vpc_id,
            description="VPC ID",
            export_name=create_export_name(stage_name, "BackendVpcId")
        )
