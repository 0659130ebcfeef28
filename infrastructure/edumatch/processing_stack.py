"""
Processing Stack
================
The two processor Lambdas and their SQS event sources.

    Notifications Queue --(batch 10)--> NotificationProcessor --> Emails Queue
    Emails Queue --(batch 10, partial failures)--> EmailProcessor --> HTTP

Lambda configuration highlights:
- Timeout 300s, equal to the queue visibility timeout
- X-Ray active tracing on both functions
- Least privilege: each function consumes only its input queue (granted by
  the event source); only the NotificationProcessor may send to the Emails
  Queue
- Code asset is the whole services/ tree so `shared` is importable as a
  top-level package, with runtime dependencies installed at bundling time
"""
import os

import aws_cdk as cdk
from aws_cdk import aws_lambda as _lambda
from aws_cdk import aws_lambda_event_sources as event_sources
from aws_cdk import aws_logs as logs
from aws_cdk import aws_sqs as sqs
from constructs import Construct

LAMBDA_RUNTIME = _lambda.Runtime.PYTHON_3_11
LAMBDA_TIMEOUT = cdk.Duration.seconds(300)
LAMBDA_MEMORY_MB = 256
BATCH_SIZE = 10

SERVICES_DIR = os.path.normpath(os.path.join(os.path.dirname(__file__), "..", "..", "services"))


def services_code() -> _lambda.Code:
    return _lambda.Code.from_asset(
        SERVICES_DIR,
        exclude=["**/__pycache__", "*.pyc"],
        bundling=cdk.BundlingOptions(
            image=LAMBDA_RUNTIME.bundling_image,
            command=[
                "bash", "-c",
                "pip install -r requirements.txt -t /asset-output && cp -au . /asset-output",
            ],
        ),
    )


class ProcessingStack(cdk.Stack):
    def __init__(
        self,
        scope: Construct,
        id: str,
        *,
        queues: dict[str, sqs.Queue],
        email_fallback_endpoint: str,
        email_primary_endpoint: str | None = None,
        notification_store_endpoint: str | None = None,
        app_base_url: str = "https://edumatch.app",
        **kwargs,
    ):
        super().__init__(scope, id, **kwargs)

        self.lambdas: dict[str, _lambda.Function] = {}
        code = services_code()

        common_env = {
            "APP_BASE_URL": app_base_url,
            "LOG_LEVEL": "INFO",
        }

        # ----------------------------------------------------------------
        # Notification Processor
        # ----------------------------------------------------------------
        notification_env = {
            **common_env,
            "SERVICE_NAME": "notification_processor",
            "EMAILS_QUEUE_URL": queues["emails"].queue_url,
        }
        if notification_store_endpoint:
            notification_env["NOTIFICATION_STORE_ENDPOINT"] = notification_store_endpoint

        self.notification_fn = _lambda.Function(
            self, "NotificationProcessorFunction",
            function_name="edumatch-notification-processor",
            runtime=LAMBDA_RUNTIME,
            handler="notification_processor.handler.handler",
            code=code,
            environment=notification_env,
            tracing=_lambda.Tracing.ACTIVE,
            log_retention=logs.RetentionDays.ONE_WEEK,
            timeout=LAMBDA_TIMEOUT,
            memory_size=LAMBDA_MEMORY_MB,
        )
        self.lambdas["notification-processor"] = self.notification_fn
        queues["emails"].grant_send_messages(self.notification_fn)

        # Whole batch is retried on failure; forwarding is idempotent by id
        self.notification_fn.add_event_source(
            event_sources.SqsEventSource(queues["notifications"], batch_size=BATCH_SIZE)
        )

        # ----------------------------------------------------------------
        # Email Processor
        # ----------------------------------------------------------------
        email_env = {
            **common_env,
            "SERVICE_NAME": "email_processor",
            "EMAIL_FALLBACK_ENDPOINT": email_fallback_endpoint,
        }
        if email_primary_endpoint:
            email_env["EMAIL_PRIMARY_ENDPOINT"] = email_primary_endpoint

        self.email_fn = _lambda.Function(
            self, "EmailProcessorFunction",
            function_name="edumatch-email-processor",
            runtime=LAMBDA_RUNTIME,
            handler="email_processor.handler.handler",
            code=code,
            environment=email_env,
            tracing=_lambda.Tracing.ACTIVE,
            log_retention=logs.RetentionDays.ONE_WEEK,
            timeout=LAMBDA_TIMEOUT,
            memory_size=LAMBDA_MEMORY_MB,
        )
        self.lambdas["email-processor"] = self.email_fn

        self.email_fn.add_event_source(
            event_sources.SqsEventSource(
                queues["emails"],
                batch_size=BATCH_SIZE,
                report_batch_item_failures=True,  # Only retry failed jobs
            )
        )

        cdk.CfnOutput(self, "NotificationProcessorName", value=self.notification_fn.function_name)
        cdk.CfnOutput(self, "EmailProcessorName", value=self.email_fn.function_name)
