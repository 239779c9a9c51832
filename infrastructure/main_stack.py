"""
Main CDK Stack for the multi-step popup engine.
"""

from aws_cdk import (
    Stack,
    Tags,
    CfnOutput,
)
from constructs import Construct

from infrastructure.constructs.data_layer import DataLayerConstruct
from infrastructure.constructs.api_layer import ApiLayerConstruct
from infrastructure.config.settings import Settings


class PopupEngineStack(Stack):
    """Main stack wiring all constructs together."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        settings: Settings,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        # Global tags for cost/accounting.
        Tags.of(self).add("Project", "popup-conversation-engine")
        Tags.of(self).add("Environment", settings.environment)
        Tags.of(self).add("ManagedBy", "cdk")

        # 1) Network, catalog database and session tables.
        data_construct = DataLayerConstruct(
            self,
            "DataLayer",
            environment=settings.environment,
            db_instance_class=settings.db_instance_class,
            db_allocated_storage=settings.db_allocated_storage,
        )

        # 2) API layer (single Lambda).
        api_construct = ApiLayerConstruct(
            self,
            "ApiLayer",
            environment=settings.environment,
            vpc=data_construct.vpc,
            lambda_environment={
                "STORAGE_BACKEND": "aws",
                "ENABLE_MULTI_POPUP": "true" if settings.multi_step_enabled else "false",
                "SESSION_TTL_HOURS": str(settings.session_ttl_hours),
                "POPUP_CACHE_TTL_SECONDS": str(settings.popup_cache_ttl_seconds),
                "DB_SECRET_ARN": data_construct.db_secret.secret_arn,
                "SESSIONS_TABLE": data_construct.sessions_table.table_name,
                "EMAILS_TABLE": data_construct.emails_table.table_name,
                "EVENTS_TABLE": data_construct.events_table.table_name,
            },
            lambda_memory_mb=settings.lambda_memory_mb,
            lambda_timeout_seconds=settings.lambda_timeout_seconds,
        )

        # Permissions for the API Lambda.
        handler = api_construct.main_lambda
        data_construct.db_secret.grant_read(handler)
        data_construct.db_instance.connections.allow_default_port_from(handler)
        data_construct.sessions_table.grant_read_write_data(handler)
        data_construct.emails_table.grant_read_write_data(handler)
        data_construct.events_table.grant_write_data(handler)

        # Outputs to quickly find resources.
        CfnOutput(self, "ApiEndpoint", value=api_construct.api.api_endpoint)
        CfnOutput(self, "SessionsTable", value=data_construct.sessions_table.table_name)
        CfnOutput(self, "EmailsTable", value=data_construct.emails_table.table_name)
        CfnOutput(self, "CatalogSecretArn", value=data_construct.db_secret.secret_arn)
