from typing import Dict

from aws_cdk import aws_ec2 as ec2

from common import constants
from common.stack_context import StackContext
from common.tenant_config import NetworkConfig


class TenantNetwork:
    """Private tenant VPC reaching AWS services through VPC endpoints.

    Security groups are created with outbound traffic denied by default;
    every path the workload needs is allow-listed in ``allow_service_egress``.
    """

    def __init__(self, context: StackContext, config: NetworkConfig) -> None:
        self.context = context
        self.scope = context.scope
        self.config = config

        self.vpc = self.create_vpc()
        self.endpoint_security_group = self.create_security_group(
            "endpoint", "Security group for the interface VPC endpoints"
        )
        self.s3_endpoint = self.create_s3_gateway_endpoint()
        self.interface_endpoints = self.create_interface_endpoints()
        # ECR image layers are served from S3, so the Docker endpoint only
        # resolves once the gateway endpoint exists.
        self.interface_endpoints["EcrDocker"].node.add_dependency(self.s3_endpoint)
        self.s3_prefix_list = self.resolve_s3_prefix_list()

    def create_vpc(self) -> ec2.Vpc:
        return ec2.Vpc(
            self.scope,
            self.context.build_resource_id("vpc"),
            vpc_name=self.context.build_resource_name("vpc"),
            ip_addresses=ec2.IpAddresses.cidr(constants.VPC_CIDR),
            max_azs=self.config.max_azs,
            nat_gateways=self.config.nat_gateways,
            enable_dns_support=True,
            enable_dns_hostnames=True,
            subnet_configuration=[
                ec2.SubnetConfiguration(
                    name="public",
                    subnet_type=ec2.SubnetType.PUBLIC,
                    cidr_mask=constants.SUBNET_CIDR_MASK,
                ),
                ec2.SubnetConfiguration(
                    name="private",
                    subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS,
                    cidr_mask=constants.SUBNET_CIDR_MASK,
                ),
            ],
        )

    def create_s3_gateway_endpoint(self) -> ec2.GatewayVpcEndpoint:
        # Gateway VPC endpoint for S3 (uses route tables in selected subnets)
        return self.vpc.add_gateway_endpoint(
            "S3Endpoint",
            service=ec2.GatewayVpcEndpointAwsService.S3,
            subnets=[
                ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS),
            ],
        )

    def create_interface_endpoints(self) -> Dict[str, ec2.InterfaceVpcEndpoint]:
        """Interface endpoints (ENIs in private subnets), closed until allow-listed."""
        return {
            name: self.vpc.add_interface_endpoint(
                f"{name}Endpoint",
                service=service,
                open=False,
                private_dns_enabled=True,
                security_groups=[self.endpoint_security_group],
                subnets=ec2.SubnetSelection(
                    subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS,
                ),
            )
            for name, service in constants.INTERFACE_ENDPOINTS.items()
        }

    def resolve_s3_prefix_list(self) -> ec2.IPrefixList:
        """Return the AWS-managed S3 prefix list.

        A configured id is used as is; otherwise the list is looked up by
        name, which needs a concrete account and region. Lookup failures
        surface from the CDK context provider.
        """
        if self.config.s3_prefix_list_id:
            return ec2.PrefixList.from_prefix_list_id(
                self.scope, "S3PrefixList", self.config.s3_prefix_list_id
            )
        return ec2.PrefixList.from_lookup(
            self.scope,
            "S3PrefixList",
            prefix_list_name=constants.S3_PREFIX_LIST_NAME.format(region=self.context.region),
        )

    def create_security_group(self, name: str, description: str) -> ec2.SecurityGroup:
        return ec2.SecurityGroup(
            self.scope,
            self.context.build_resource_id("security-group", qualifier=name),
            vpc=self.vpc,
            security_group_name=self.context.build_resource_name("sg", qualifier=name),
            allow_all_outbound=False,
            description=description,
        )

    def allow_service_egress(
        self, service: ec2.IConnectable, security_group: ec2.SecurityGroup
    ) -> None:
        # Every interface endpoint shares one security group.
        service.connections.allow_to(
            self.endpoint_security_group,
            ec2.Port.tcp(constants.HTTPS_PORT),
            f"Allow outbound HTTPS (TCP/{constants.HTTPS_PORT}) to the interface endpoints",
        )
        security_group.add_egress_rule(
            peer=ec2.Peer.ipv4(constants.VPC_CIDR),
            connection=ec2.Port.udp(constants.DNS_PORT),
            description=f"Allow outbound DNS (UDP/{constants.DNS_PORT}) to the VPC resolver",
        )
        security_group.add_egress_rule(
            peer=ec2.Peer.prefix_list(self.s3_prefix_list.prefix_list_id),
            connection=ec2.Port.tcp(constants.HTTPS_PORT),
            description=f"Allow outbound HTTPS (TCP/{constants.HTTPS_PORT}) to S3 through the gateway endpoint",
        )
