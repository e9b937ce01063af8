# Purpose: Verify that inbound signed request bodies come from the claimed client organisation.
# Not for production use; intended only as a reference sandbox.

import time
from collections import namedtuple

from jose import jws, jwt
from jose.exceptions import JOSEError, JWTClaimsError, JWTError

from ob_errors import UpstreamUnavailable
from ob_trust import ClientTrustResolver

CLOCK_TOLERANCE = 5  # seconds
MAX_TOKEN_AGE = 300  # seconds since iat
ALLOWED_ALGORITHMS = ["RS256", "RS384", "RS512", "ES256"]

MOCK_ORGANISATION_ID = "mock_client_org_id"

VerifiedRequest = namedtuple("VerifiedRequest", ["payload", "organisation_id"])

KEY_TYPES = {"RS": "RSA", "ES": "EC"}


def select_keys(keyset, header):
    """Picks the signing keys of a JWKS that may have produced a token with this header."""
    kid = header.get("kid")
    kty = KEY_TYPES.get(header.get("alg", "")[:2])
    candidates = []
    for key in keyset.get("keys", []):
        if not isinstance(key, dict):
            continue
        if key.get("use", "sig") != "sig":
            continue
        if kty and key.get("kty") != kty:
            continue
        if kid and key.get("kid") != kid:
            continue
        candidates.append(key)
    return candidates


def verify_envelope(token, keyset, issuer, audience, clock_tolerance=CLOCK_TOLERANCE,
                    max_token_age=MAX_TOKEN_AGE, algorithms=ALLOWED_ALGORITHMS, now=None):
    """Verifies a compact JWT against a key set and returns its claims.

    Requires iss == issuer, aud == audience and an iat no older than
    max_token_age (and not in the future) within clock_tolerance.
    Raises JWTError on any failure.
    """
    header = jws.get_unverified_header(token)
    algorithm = header.get("alg")
    if algorithm not in algorithms:
        raise JWTError(f"Algorithm {algorithm!r} is not accepted")

    keys = select_keys(keyset, header)
    if not keys:
        raise JWTError(f"No signing key in the key set matches kid {header.get('kid')!r}")

    claims = jwt.decode(
        token,
        {"keys": keys},
        algorithms=[algorithm],
        audience=audience,
        issuer=issuer,
        options={"leeway": clock_tolerance, "require_iat": True, "require_aud": True, "require_iss": True},
    )

    now = int(time.time()) if now is None else now
    iat = claims.get("iat")
    if not isinstance(iat, (int, float)):
        raise JWTClaimsError("iat claim must be a number")
    if iat > now + clock_tolerance:
        raise JWTClaimsError("iat claim timestamp check failed (in the future)")
    if now - iat - clock_tolerance > max_token_age:
        raise JWTClaimsError(f"iat claim timestamp check failed (too far in the past, {now - iat} seconds)")
    return claims


class SignedRequestVerifier:
    """Production strategy: resolve the client key set and verify the body signature and claims."""

    def __init__(self, resolver, clock_tolerance=CLOCK_TOLERANCE, max_token_age=MAX_TOKEN_AGE):
        self.resolver = resolver
        self.clock_tolerance = clock_tolerance
        self.max_token_age = max_token_age

    def verify(self, client_id, signed_body, audience):
        try:
            client = self.resolver.resolve(client_id)
        except UpstreamUnavailable as e:
            print(f"OB_VERIFIER: [!] Could not resolve client {client_id}: {e}")
            return None

        try:
            payload = verify_envelope(
                signed_body,
                client.keyset,
                issuer=client.organisation_id,
                audience=audience,
                clock_tolerance=self.clock_tolerance,
                max_token_age=self.max_token_age,
            )
        except (JOSEError, ValueError) as e:
            print(f"OB_VERIFIER: [!] Error validating the request signature of client {client_id}: {e}")
            return None

        print(f"OB_VERIFIER: [OK] Signed body from organisation {client.organisation_id} verified for audience {audience}")
        return VerifiedRequest(payload, client.organisation_id)

    def organisation_for(self, client_id):
        return self.resolver.organisation_id(client_id)


class UnverifiedRequestDecoder:
    """Reference-mode strategy: decodes the body WITHOUT checking its signature."""

    def verify(self, client_id, signed_body, audience):
        try:
            payload = jwt.get_unverified_claims(signed_body)
        except (JOSEError, ValueError) as e:
            print(f"OB_VERIFIER: [!] Could not decode request body: {e}")
            return None
        return VerifiedRequest(payload, MOCK_ORGANISATION_ID)

    def organisation_for(self, client_id):
        return MOCK_ORGANISATION_ID


def build_request_verifier(settings):
    if settings.validate_signature:
        return SignedRequestVerifier(ClientTrustResolver(settings.client_details_url, settings.upstream_timeout))
    print("OB_VERIFIER: [!] Signature validation DISABLED; request bodies are decoded without verification.")
    return UnverifiedRequestDecoder()
