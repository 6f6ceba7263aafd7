"""
Prometheus metrics: delivery quotes (API), order transitions, notification dispatch (API + worker), queue depth.
"""
from prometheus_client import Counter, Gauge, generate_latest

# Quotes computed / rejected
delivery_quotes_total = Counter(
    "delivery_quotes_total",
    "Total delivery quotes computed",
    ["pricing_model"],
)
delivery_quotes_rejected_total = Counter(
    "delivery_quotes_rejected_total",
    "Total delivery quotes rejected (delivery disabled, out of range)",
    ["reason"],
)

# Order lifecycle
order_transitions_total = Counter(
    "order_transitions_total",
    "Total committed order status transitions",
    ["from_status", "to_status"],
)
order_transitions_rejected_total = Counter(
    "order_transitions_rejected_total",
    "Total transitions rejected due to invalid order lifecycle transition",
    ["current_status", "requested_status"],
)
checkout_sessions_created_total = Counter(
    "checkout_sessions_created_total",
    "Total checkout sessions created",
)
orders_created_total = Counter(
    "orders_created_total",
    "Total orders created at checkout completion",
    ["delivery_method"],
)

# Notifications: dispatch from the API, delivery in the worker
notifications_dispatched_total = Counter(
    "notifications_dispatched_total",
    "Total notification jobs handed to the dispatcher",
    ["template_type"],
)
notifications_failed_total = Counter(
    "notifications_failed_total",
    "Total notification jobs that could not be dispatched or sent",
    ["template_type"],
)
messages_processed_total = Counter(
    "messages_processed_total",
    "Total notification jobs successfully sent by the worker",
)
messages_failed_total = Counter(
    "messages_failed_total",
    "Total notification jobs that failed in the worker (retried or sent to DLQ)",
)
messages_dlq_total = Counter(
    "messages_dlq_total",
    "Total notification jobs moved to DLQ after max retries",
)

notification_queue_messages_waiting = Gauge(
    "notification_queue_messages_waiting",
    "Number of notification jobs waiting in the redis queue",
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
