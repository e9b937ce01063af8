# Purpose: Process configuration for the payments sandbox, read from the environment (.env supported).
# Not for production use; intended only as a reference sandbox.

import os
from collections import namedtuple

from dotenv import load_dotenv

from ob_errors import ConfigurationError

DEFAULT_PORT = 5020
DEFAULT_TIMEOUT = 10.0

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}

Settings = namedtuple("Settings", [
    "host",
    "port",
    "introspection_url",
    "introspection_user",
    "introspection_password",
    "expected_token_type",
    "organisation_id",
    "signing_kid",
    "signing_key_path",
    "audiences",
    "client_details_url",
    "consent_id_prefix",
    "enrollment_id_prefix",
    "resource_base_url",
    "client_cert_header",
    "upstream_timeout",
    "validate_token",
    "validate_signature",
])

# Operation name -> environment variable holding the audience expected in the signed body.
AUDIENCE_VARIABLES = {
    "createConsent": "CREATE_CONSENT_AUDIENCE",
    "createPayment": "CREATE_PAYMENT_AUDIENCE",
    "cancelPayment": "CANCEL_PAYMENT_AUDIENCE",
    "createEnrollment": "CREATE_ENROLLMENT_AUDIENCE",
    "revokeEnrollment": "REVOKE_ENROLLMENT_AUDIENCE",
}


def parse_bool(name, value, default):
    if value is None or value.strip() == "":
        return default
    lowered = value.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


def parse_number(name, value, default, cast):
    if value is None or value.strip() == "":
        return default
    try:
        return cast(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from None


def load_settings(environ=None, dotenv_path=None, check=True):
    """Builds the Settings from the environment.

    When no mapping is passed, a .env file (if any) is loaded into os.environ
    first. Missing values needed by an enabled validation switch are reported
    as a ConfigurationError so the server never starts half configured.
    Pass check=False to apply overrides (e.g. CLI flags) before check_settings.
    """
    if environ is None:
        load_dotenv(dotenv_path)
        environ = os.environ

    audiences = {operation: environ.get(variable, operation) for operation, variable in AUDIENCE_VARIABLES.items()}

    settings = Settings(
        host=environ.get("SERVER_HOST", "127.0.0.1"),
        port=parse_number("SERVER_PORT", environ.get("SERVER_PORT"), DEFAULT_PORT, int),
        introspection_url=environ.get("INTROSPECTION_ENDPOINT"),
        introspection_user=environ.get("INTROSPECTION_USER", ""),
        introspection_password=environ.get("INTROSPECTION_PASSWORD", ""),
        expected_token_type=environ.get("INTROSPECTION_TOKEN_TYPE", "Bearer"),
        organisation_id=environ.get("ORGANISATION_ID"),
        signing_kid=environ.get("SIGNING_CERT_KID"),
        signing_key_path=environ.get("SIGNING_KEY_PATH"),
        audiences=audiences,
        client_details_url=environ.get("CLIENT_DETAILS_ENDPOINT"),
        consent_id_prefix=environ.get("CONSENT_ID_PREFIX", "urn:bancoex:"),
        enrollment_id_prefix=environ.get("ENROLLMENT_ID_PREFIX", "urn:bancoex:enrollment:"),
        resource_base_url=environ.get("RESOURCE_BASE_URL", "https://api.banco.com.br/open-banking").rstrip("/"),
        client_cert_header=environ.get("CLIENT_CERT_HEADER", "ssl-client-cert"),
        upstream_timeout=parse_number("UPSTREAM_TIMEOUT_SECONDS", environ.get("UPSTREAM_TIMEOUT_SECONDS"), DEFAULT_TIMEOUT, float),
        validate_token=parse_bool("VALIDATE_TOKEN", environ.get("VALIDATE_TOKEN"), True),
        validate_signature=parse_bool("VALIDATE_SIGNATURE", environ.get("VALIDATE_SIGNATURE"), True),
    )
    if check:
        check_settings(settings)
    return settings


def check_settings(settings):
    missing = []
    for field, variable in (("organisation_id", "ORGANISATION_ID"),
                            ("signing_kid", "SIGNING_CERT_KID"),
                            ("signing_key_path", "SIGNING_KEY_PATH")):
        if not getattr(settings, field):
            missing.append(variable)
    if settings.validate_token and not settings.introspection_url:
        missing.append("INTROSPECTION_ENDPOINT")
    if settings.validate_signature and not settings.client_details_url:
        missing.append("CLIENT_DETAILS_ENDPOINT")
    if missing:
        raise ConfigurationError("Missing configuration: " + ", ".join(missing))
    return settings
