"""
Monitoring Stack
================
CloudWatch dashboard + alarms for the notification pipeline.

What we watch:
  1. Errors      per processor (a failing Notification Processor stalls the
                 whole pipeline, a failing Email Processor only some recipients)
  2. Latency     P99 duration, against the 300s timeout
  3. Backlog     age of the oldest message on each primary queue
  4. DLQ depth   any message in a DLQ is an email that was never sent

DLQ alarms fire on the first message. Nothing drains a DLQ automatically;
an operator inspects it with scripts/check_queues.py.
"""
import aws_cdk as cdk
from aws_cdk import aws_cloudwatch as cw
from aws_cdk import aws_cloudwatch_actions as cw_actions
from aws_cdk import aws_sns as sns
from constructs import Construct


def _construct_name(name: str) -> str:
    return "".join(part.title() for part in name.split("-"))


class MonitoringStack(cdk.Stack):
    def __init__(self, scope: Construct, id: str, *, lambdas, queues, **kwargs):
        super().__init__(scope, id, **kwargs)

        self.alarm_topic = sns.Topic(self, "AlarmTopic", topic_name="edumatch-notification-alarms")
        alarm_action = cw_actions.SnsAction(self.alarm_topic)

        # ----------------------------------------------------------------
        # Per-processor Lambda metrics
        # ----------------------------------------------------------------
        processor_widgets = []
        for name, fn in lambdas.items():
            error_metric = fn.metric_errors(
                period=cdk.Duration.minutes(5),
                statistic="Sum",
            )
            duration_p99 = fn.metric_duration(
                period=cdk.Duration.minutes(5),
                statistic="p99",
            )

            # >5 errors in one 5 min window
            cw.Alarm(
                self, f"{_construct_name(name)}ErrorAlarm",
                alarm_name=f"edumatch-{name}-errors",
                metric=error_metric,
                threshold=5,
                evaluation_periods=1,
                comparison_operator=cw.ComparisonOperator.GREATER_THAN_THRESHOLD,
                treat_missing_data=cw.TreatMissingData.NOT_BREACHING,
            ).add_alarm_action(alarm_action)

            processor_widgets.append(
                cw.GraphWidget(
                    title=f"{_construct_name(name)} errors / p99 duration",
                    left=[error_metric],
                    right=[duration_p99],
                    width=12,
                )
            )

        # ----------------------------------------------------------------
        # Queue backlog and DLQ depth
        # ----------------------------------------------------------------
        backlog_widgets = []
        dlq_widgets = []
        for name, queue in queues.items():
            if name.endswith("-dlq"):
                dlq_metric = queue.metric_approximate_number_of_messages_visible(
                    period=cdk.Duration.minutes(1),
                    statistic="Maximum",
                )
                cw.Alarm(
                    self, f"{_construct_name(name)}DepthAlarm",
                    alarm_name=f"edumatch-{name}-depth",
                    metric=dlq_metric,
                    threshold=1,  # Any message in DLQ = alert
                    evaluation_periods=1,
                    comparison_operator=cw.ComparisonOperator.GREATER_THAN_OR_EQUAL_TO_THRESHOLD,
                    treat_missing_data=cw.TreatMissingData.NOT_BREACHING,
                ).add_alarm_action(alarm_action)
                dlq_widgets.append(cw.GraphWidget(title=f"{name} depth", left=[dlq_metric], width=12))
            else:
                backlog_widgets.append(
                    cw.GraphWidget(
                        title=f"{name} backlog",
                        left=[queue.metric_approximate_number_of_messages_visible(
                            period=cdk.Duration.minutes(1), statistic="Maximum",
                        )],
                        right=[queue.metric_approximate_age_of_oldest_message(
                            period=cdk.Duration.minutes(1), statistic="Maximum",
                        )],
                        width=12,
                    )
                )

        # ----------------------------------------------------------------
        # CloudWatch Dashboard
        # ----------------------------------------------------------------
        dashboard = cw.Dashboard(self, "NotificationPipelineDashboard", dashboard_name="EduMatch-Notifications")
        dashboard.add_widgets(
            cw.TextWidget(
                markdown="# EduMatch notification pipeline\n"
                         "Notifications Queue -> Notification Processor -> Emails Queue -> Email Processor",
                width=24,
            )
        )
        for row in (processor_widgets, backlog_widgets, dlq_widgets):
            if row:
                dashboard.add_widgets(*row)
