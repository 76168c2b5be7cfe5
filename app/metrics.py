from prometheus_client import CONTENT_TYPE_LATEST, Counter, generate_latest

PROVIDER_REQUESTS = Counter(
    "simplhost_provider_requests_total",
    "Custom hostname API calls to the edge provider",
    ["operation", "outcome"],  # outcome: success/error
)

ORPHANED_HOSTNAMES = Counter(
    "simplhost_orphaned_hostnames_total",
    "Provider hostnames left without a local domain record",
    ["reason"],  # reason: delete_failed/insert_failed
)


def render_metrics() -> tuple[bytes, str]:
    """Return the exposition payload and its content type."""
    return generate_latest(), CONTENT_TYPE_LATEST
