"""
Data layer construct: shared VPC, RDS PostgreSQL popup catalog and the
DynamoDB session, email and event tables.
"""

from aws_cdk import (
    RemovalPolicy,
    Duration,
    aws_ec2 as ec2,
    aws_rds as rds,
    aws_secretsmanager as secretsmanager,
    aws_dynamodb as dynamodb,
)
from constructs import Construct


class DataLayerConstruct(Construct):
    """Provision network and storage resources."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        environment: str,
        db_instance_class: str,
        db_allocated_storage: int = 20,
    ) -> None:
        super().__init__(scope, construct_id)

        removal = RemovalPolicy.RETAIN if environment == "prod" else RemovalPolicy.DESTROY

        # Shared VPC: no NAT in dev to avoid $30-40/mo; add endpoints instead.
        private_subnet_type = (
            ec2.SubnetType.PRIVATE_WITH_EGRESS
            if environment == "prod"
            else ec2.SubnetType.PRIVATE_ISOLATED
        )
        self.vpc = ec2.Vpc(
            self,
            "Vpc",
            max_azs=2,
            nat_gateways=0 if environment != "prod" else 1,
            subnet_configuration=[
                ec2.SubnetConfiguration(
                    name="Public",
                    subnet_type=ec2.SubnetType.PUBLIC,
                    cidr_mask=24,
                ),
                ec2.SubnetConfiguration(
                    name="Private",
                    subnet_type=private_subnet_type,
                    cidr_mask=24,
                ),
            ],
        )

        # Gateway endpoint so private subnets reach the session tables without NAT.
        self.vpc.add_gateway_endpoint(
            "DynamoDbEndpoint",
            service=ec2.GatewayVpcEndpointAwsService.DYNAMODB,
        )
        # Catalog credentials are read from Secrets Manager at cold start.
        self.vpc.add_interface_endpoint(
            "SecretsManagerEndpoint",
            service=ec2.InterfaceVpcEndpointAwsService.SECRETS_MANAGER,
        )

        # Secret for DB credentials (username auto-generated).
        self.db_secret = secretsmanager.Secret(
            self,
            "DbCredentials",
            generate_secret_string=secretsmanager.SecretStringGenerator(
                secret_string_template='{"username": "popup_app"}',
                generate_string_key="password",
                exclude_punctuation=True,
            ),
        )

        # Popup catalog (single-AZ outside prod).
        self.db_instance = rds.DatabaseInstance(
            self,
            "Postgres",
            engine=rds.DatabaseInstanceEngine.postgres(
                version=rds.PostgresEngineVersion.VER_16_3
            ),
            vpc=self.vpc,
            vpc_subnets=ec2.SubnetSelection(subnet_type=private_subnet_type),
            instance_type=ec2.InstanceType(db_instance_class),
            credentials=rds.Credentials.from_secret(self.db_secret),
            database_name="popups",
            allocated_storage=db_allocated_storage,
            storage_encrypted=True,
            backup_retention=Duration.days(3 if environment == "prod" else 0),
            multi_az=environment == "prod",
            publicly_accessible=False,
            deletion_protection=environment == "prod",
            removal_policy=removal,
        )

        # Customer sessions keyed by token; DynamoDB TTL sweeps expired ones.
        self.sessions_table = dynamodb.Table(
            self,
            "CustomerSessions",
            partition_key=dynamodb.Attribute(
                name="session_token", type=dynamodb.AttributeType.STRING
            ),
            billing_mode=dynamodb.BillingMode.PAY_PER_REQUEST,
            point_in_time_recovery=environment == "prod",
            removal_policy=removal,
            time_to_live_attribute="ttl",
        )
        self.sessions_table.add_global_secondary_index(
            index_name="shop_discount_code-index",
            partition_key=dynamodb.Attribute(
                name="shop_discount_code", type=dynamodb.AttributeType.STRING
            ),
        )

        # Captured emails, append-only.
        self.emails_table = dynamodb.Table(
            self,
            "CollectedEmails",
            partition_key=dynamodb.Attribute(name="email_id", type=dynamodb.AttributeType.STRING),
            billing_mode=dynamodb.BillingMode.PAY_PER_REQUEST,
            point_in_time_recovery=environment == "prod",
            removal_policy=removal,
        )
        self.emails_table.add_global_secondary_index(
            index_name="session_id-index",
            partition_key=dynamodb.Attribute(name="session_id", type=dynamodb.AttributeType.STRING),
        )

        # Raw widget analytics events.
        self.events_table = dynamodb.Table(
            self,
            "AnalyticsEvents",
            partition_key=dynamodb.Attribute(name="event_id", type=dynamodb.AttributeType.STRING),
            billing_mode=dynamodb.BillingMode.PAY_PER_REQUEST,
            removal_policy=removal,
        )
