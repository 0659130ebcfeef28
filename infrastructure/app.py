#!/usr/bin/env python3
"""
EduMatch Notification Pipeline CDK App
======================================
Stack dependency order:
  MessagingStack -> ProcessingStack -> MonitoringStack

Delivery endpoints are CDK context, never inferred at runtime:

  cdk deploy --all \\
    -c emailFallbackEndpoint=https://edumatch.app/api/notifications/send-email \\
    -c emailPrimaryEndpoint=https://internal.edumatch.app/api/notifications/send-email

Defaults live in cdk.json.
"""
import aws_cdk as cdk

from edumatch.messaging_stack import MessagingStack
from edumatch.monitoring_stack import MonitoringStack
from edumatch.processing_stack import ProcessingStack

app = cdk.App()

env = cdk.Environment(
    account=app.node.try_get_context("account"),
    region=app.node.try_get_context("region") or "us-east-1",
)

fallback_endpoint = app.node.try_get_context("emailFallbackEndpoint")
if not fallback_endpoint:
    raise ValueError("CDK context 'emailFallbackEndpoint' is required")

messaging_stack = MessagingStack(app, "EduMatchMessaging", env=env)
processing_stack = ProcessingStack(
    app, "EduMatchProcessing",
    queues=messaging_stack.queues,
    email_fallback_endpoint=fallback_endpoint,
    email_primary_endpoint=app.node.try_get_context("emailPrimaryEndpoint"),
    notification_store_endpoint=app.node.try_get_context("notificationStoreEndpoint"),
    app_base_url=app.node.try_get_context("appBaseUrl") or "https://edumatch.app",
    env=env,
)
MonitoringStack(
    app, "EduMatchMonitoring",
    lambdas=processing_stack.lambdas,
    queues=messaging_stack.queues,
    env=env,
)

app.synth()
