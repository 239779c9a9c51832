"""
API layer construct: shared Lambda + HTTP API routes.

A single Lambda keeps the popup cache warm and reduces cold start costs.
Uses Docker bundling for dependencies (runs in CI/CD pipeline).
"""

from typing import Dict

from aws_cdk import (
    BundlingOptions,
    Duration,
    aws_ec2 as ec2,
    aws_lambda as _lambda,
    aws_apigatewayv2 as apigw,
    aws_apigatewayv2_integrations as integrations,
    aws_logs as logs,
)
from constructs import Construct

# Storefront-facing routes; OPTIONS preflight is answered by the HTTP API.
ROUTE_DEFS = [
    (apigw.HttpMethod.POST, "/api/session/create"),
    (apigw.HttpMethod.POST, "/api/session/validate"),
    (apigw.HttpMethod.POST, "/api/session/progress"),
    (apigw.HttpMethod.POST, "/api/discount/generate"),
    (apigw.HttpMethod.POST, "/api/discount/validate"),
    (apigw.HttpMethod.POST, "/api/collect-email"),
    (apigw.HttpMethod.POST, "/api/popup-check"),
    (apigw.HttpMethod.POST, "/api/analytics/events"),
    (apigw.HttpMethod.GET, "/health"),
]


class ApiLayerConstruct(Construct):
    """Expose the popup engine endpoints via HTTP API."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        environment: str,
        vpc: ec2.IVpc,
        lambda_environment: Dict[str, str],
        lambda_memory_mb: int = 512,
        lambda_timeout_seconds: int = 15,
    ) -> None:
        super().__init__(scope, construct_id)

        # Bundle Lambda code with dependencies using Docker (works in CI/CD)
        # Installs sqlalchemy, psycopg2-binary, python-json-logger
        bundled_code = _lambda.Code.from_asset(
            "src",
            bundling=BundlingOptions(
                image=_lambda.Runtime.PYTHON_3_12.bundling_image,
                command=[
                    "bash", "-c",
                    "pip install -r requirements-lambda.txt -t /asset-output && "
                    "cp -r . /asset-output"
                ],
            ),
        )

        self.main_lambda = _lambda.Function(
            self,
            "ApiHandler",
            runtime=_lambda.Runtime.PYTHON_3_12,
            handler="handlers.main.lambda_handler",
            code=bundled_code,
            memory_size=lambda_memory_mb,
            timeout=Duration.seconds(lambda_timeout_seconds),
            architecture=_lambda.Architecture.X86_64,
            vpc=vpc,
            environment={"ENVIRONMENT": environment, **lambda_environment},
            log_retention=logs.RetentionDays.ONE_WEEK,
        )

        # HTTP API with minimal latency and low cost.
        self.api = apigw.HttpApi(
            self,
            "HttpApi",
            api_name=f"popup-engine-api-{environment}",
            cors_preflight=apigw.CorsPreflightOptions(
                allow_origins=["*"],
                allow_methods=[apigw.CorsHttpMethod.POST, apigw.CorsHttpMethod.OPTIONS],
                allow_headers=["Content-Type"],
            ),
        )

        integration = integrations.HttpLambdaIntegration(
            "LambdaIntegration", self.main_lambda
        )

        for method, path in ROUTE_DEFS:
            self.api.add_routes(
                path=path,
                methods=[method],
                integration=integration,
            )
