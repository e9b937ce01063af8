# Purpose: Validate client-credentials access tokens bound to the caller's mTLS certificate.
# Not for production use; intended only as a reference sandbox.

import secrets
from collections import namedtuple

import requests

from ob_errors import UpstreamUnavailable
from ob_utils import certificate_thumbprint

REQUIRED_SCOPE = "payments"
WILDCARD_SCOPE = "*"
CONSENT_SCOPE_PREFIX = "consent:"

MOCK_CLIENT_ID = "dummy_client"
MOCK_CONSENT_SCOPE = "consent:urn:sandbox:mock-consent"


class TokenDetails(namedtuple("TokenDetails", ["active", "token_type", "scope", "confirmation_thumbprint", "client_id"])):
    """Outcome of a successful introspection. Never persisted."""

    __slots__ = ()

    def has_scope(self, scope):
        return scope in self.scope or WILDCARD_SCOPE in self.scope

    def consent_id(self):
        """The consent this token was issued for, taken from a 'consent:urn:...' scope."""
        for scope in sorted(self.scope):
            if scope.startswith(CONSENT_SCOPE_PREFIX + "urn"):
                return scope[len(CONSENT_SCOPE_PREFIX):]
        return None


def parse_scope(scope):
    if isinstance(scope, str):
        return frozenset(s for s in scope.split(" ") if s)
    if isinstance(scope, (list, tuple, set, frozenset)):
        return frozenset(str(s) for s in scope)
    return frozenset()


def extract_bearer_token(authorization):
    """Returns the opaque token from an 'Authorization: Bearer <token>' header, or None."""
    if not authorization:
        return None
    parts = authorization.strip().split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1]:
        return None
    return parts[1]


def token_details_from_introspection(result):
    cnf = result.get("cnf")
    thumbprint = cnf.get("x5t#S256") if isinstance(cnf, dict) else None
    if not isinstance(thumbprint, str):
        thumbprint = None
    return TokenDetails(
        active=result.get("active") is True,
        token_type=result.get("token_type"),
        scope=parse_scope(result.get("scope")),
        confirmation_thumbprint=thumbprint,
        client_id=result.get("client_id"),
    )


def check_client_credentials_permissions(details, client_cert, expected_token_type):
    """Checks the four conditions a payments token must satisfy. Returns (ok, reason)."""
    if not details.active:
        return False, "token is not active"
    if details.token_type != expected_token_type:
        return False, f"unexpected token_type {details.token_type!r}"
    if REQUIRED_SCOPE not in details.scope:
        return False, f"scope '{REQUIRED_SCOPE}' not granted"
    if not details.confirmation_thumbprint:
        return False, "token carries no cnf.x5t#S256 claim"
    if not client_cert:
        return False, "no client certificate presented"

    try:
        presented = certificate_thumbprint(client_cert)
    except ValueError as e:
        return False, f"client certificate could not be parsed ({e})"

    if not secrets.compare_digest(presented.encode(), details.confirmation_thumbprint.encode()):
        return False, "certificate thumbprint does not match cnf.x5t#S256"
    return True, None


class IntrospectionTokenValidator:
    """Production strategy: RFC 7662 introspection plus certificate-bound token check."""

    def __init__(self, introspection_url, user, password, expected_token_type="Bearer", timeout=10.0, session=None):
        self.introspection_url = introspection_url
        self.auth = (user, password)
        self.expected_token_type = expected_token_type
        self.timeout = timeout
        self.session = session or requests

    def introspect(self, token):
        try:
            r = self.session.post(
                self.introspection_url,
                data={"token": token},
                auth=self.auth,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            print(f"OB_TOKENS: [!] Introspection request failed: {e}")
            raise UpstreamUnavailable("Token introspection failed") from e

        if r.status_code != 200:
            print(f"OB_TOKENS: [!] Introspection endpoint answered {r.status_code}")
            raise UpstreamUnavailable(f"Token introspection failed (HTTP {r.status_code})")
        try:
            result = r.json()
        except ValueError as e:
            raise UpstreamUnavailable("Malformed introspection response") from e
        if not isinstance(result, dict):
            raise UpstreamUnavailable("Malformed introspection response")
        return result

    def validate(self, authorization, client_cert):
        token = extract_bearer_token(authorization)
        if not token:
            print("OB_TOKENS: [!] Missing or malformed Bearer authorization header")
            return None

        try:
            details = token_details_from_introspection(self.introspect(token))
        except UpstreamUnavailable:
            return None

        ok, reason = check_client_credentials_permissions(details, client_cert, self.expected_token_type)
        if not ok:
            print(f"OB_TOKENS: [!] Token rejected for client {details.client_id}: {reason}")
            return None
        print(f"OB_TOKENS: [OK] Token accepted for client {details.client_id}")
        return details


class MockTokenValidator:
    """Reference-mode strategy: no introspection, a fixed synthetic token with a wildcard scope."""

    def __init__(self, expected_token_type="Bearer"):
        self.expected_token_type = expected_token_type

    def validate(self, authorization, client_cert):
        return TokenDetails(
            active=True,
            token_type=self.expected_token_type,
            scope=frozenset({WILDCARD_SCOPE, REQUIRED_SCOPE, MOCK_CONSENT_SCOPE}),
            confirmation_thumbprint=None,
            client_id=MOCK_CLIENT_ID,
        )


def build_token_validator(settings):
    if settings.validate_token:
        return IntrospectionTokenValidator(
            settings.introspection_url,
            settings.introspection_user,
            settings.introspection_password,
            expected_token_type=settings.expected_token_type,
            timeout=settings.upstream_timeout,
        )
    print("OB_TOKENS: [!] Token validation DISABLED; every request is accepted as 'dummy_client'.")
    return MockTokenValidator(settings.expected_token_type)
