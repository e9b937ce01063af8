# Purpose: Build the response and error bodies returned by the payments sandbox.
# Not for production use; intended only as a reference sandbox.

from ob_lifecycle import ResourceKind
from ob_utils import format_datetime, utc_now

RESOURCE_PATHS = {
    ResourceKind.CONSENT: "consents",
    ResourceKind.PAYMENT: "pix/payments",
    ResourceKind.ENROLLMENT: "enrollments",
}


def error_envelope(*errors):
    """{errors: [{code, title, detail}], meta: {requestDateTime}} for one or more ApiError."""
    return {
        "errors": [error.as_error() for error in errors],
        "meta": {
            "requestDateTime": format_datetime(utc_now()),
        },
    }


def resource_body(kind, record, base_url):
    """Fresh response body for a stored record. Nothing here is cached with the record."""
    return {
        "data": record.to_data(),
        "links": {
            "self": f"{base_url}/{RESOURCE_PATHS[kind]}/{record.resource_id}",
        },
        "meta": {
            "requestDateTime": format_datetime(utc_now()),
        },
    }
