import json
import os
from unittest.mock import Mock

import pytest
from jose import jws, jwt

from conftest import CLIENT_ORG, SERVER_ORG, FakeResolver, http_response
from ob_client import build_signed_request, request_headers
from ob_errors import UpstreamUnavailable
from ob_server import create_app
from ob_signer import ResponseSigner
from ob_tokens import IntrospectionTokenValidator
from ob_verifier import MOCK_ORGANISATION_ID, SignedRequestVerifier, verify_envelope

SAMPLES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "samples")
CONSENT_SCOPE = "consent:urn:bancoex:C1DD33123"


def sample(name):
    with open(os.path.join(SAMPLES_DIR, f"{name}.json"), "r") as f:
        return json.load(f)


def introspection(thumbprint, scope=f"payments {CONSENT_SCOPE}"):
    return {
        "active": True,
        "token_type": "Bearer",
        "scope": scope,
        "cnf": {"x5t#S256": thumbprint},
        "client_id": "sandbox-client",
    }


@pytest.fixture
def introspection_session(client_identity):
    session = Mock()
    session.post.return_value = http_response(200, introspection(client_identity.thumbprint))
    return session


@pytest.fixture
def app(settings, server_identity, fake_resolver, introspection_session):
    app = create_app(
        settings,
        token_validator=IntrospectionTokenValidator(settings.introspection_url, "u", "p", session=introspection_session),
        request_verifier=SignedRequestVerifier(fake_resolver),
        signer=ResponseSigner(SERVER_ORG, server_identity.kid, server_identity.key_path),
    )
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def signed_body(identity, payload, audience):
    return build_signed_request(payload, identity.private_pem, identity.kid, CLIENT_ORG, audience)


def post(client, identity, path, payload, audience, **header_overrides):
    headers = request_headers("abc123", identity.cert_pem)
    headers.update(header_overrides)
    return client.post(path, data=signed_body(identity, payload, audience), headers=headers)


def patch(client, identity, path, payload, audience):
    headers = request_headers("abc123", identity.cert_pem)
    return client.patch(path, data=signed_body(identity, payload, audience), headers=headers)


def get(client, identity, path, **header_overrides):
    headers = request_headers("abc123", identity.cert_pem, write=False)
    headers.update(header_overrides)
    return client.get(path, headers=headers)


def body_of(response, server_identity, audience=CLIENT_ORG):
    assert response.headers["Content-Type"].startswith("application/jwt")
    return verify_envelope(response.get_data(as_text=True), server_identity.jwks, issuer=SERVER_ORG, audience=audience)


def error_of(response, server_identity):
    """Checks the signature of an error envelope whose audience may be unknown and returns its body."""
    token = response.get_data(as_text=True)
    jws.verify(token, server_identity.jwks, algorithms=["RS256"])
    return jwt.get_unverified_claims(token)


def test_create_then_get_consent(client, client_identity, server_identity):
    response = post(client, client_identity, "/consents", sample("consent"), "createConsent")

    assert response.status_code == 201
    created = body_of(response, server_identity)
    consent_id = created["data"]["consentId"]
    assert consent_id.startswith("urn:bancoex:")
    assert created["data"]["status"] == "AWAITING_AUTHORISATION"
    assert created["data"]["expirationDateTime"] == created["data"]["creationDateTime"]
    assert created["links"]["self"] == f"https://api.banco.com.br/open-banking/consents/{consent_id}"
    assert created["meta"]["requestDateTime"].endswith("Z")

    response = get(client, client_identity, f"/consents/{consent_id}")

    assert response.status_code == 200
    assert body_of(response, server_identity)["data"] == created["data"]


def test_payment_is_created_then_cancelled(client, client_identity, server_identity):
    response = post(client, client_identity, "/pix/payments", sample("payment"), "createPayment")

    assert response.status_code == 201
    payment = body_of(response, server_identity)["data"]
    assert payment["status"] == "RCVD"
    assert payment["consentId"] == "urn:bancoex:C1DD33123"
    path = f"/pix/payments/{payment['paymentId']}"

    response = patch(client, client_identity, path, sample("cancellation"), "cancelPayment")

    assert response.status_code == 200
    cancelled = body_of(response, server_identity)["data"]
    assert cancelled["status"] == "CANC"
    assert cancelled["cancellation"]["cancelledFrom"] == "INICIADORA"
    assert cancelled["cancellation"]["cancelledBy"] == sample("cancellation")["data"]["cancellation"]["cancelledBy"]
    assert body_of(get(client, client_identity, path), server_identity)["data"]["status"] == "CANC"


def test_enrollment_is_created_then_revoked(client, client_identity, server_identity):
    response = post(client, client_identity, "/enrollments", sample("enrollment"), "createEnrollment")

    assert response.status_code == 201
    enrollment = body_of(response, server_identity)["data"]
    assert enrollment["status"] == "AWAITING_RISK_SIGNALS"
    assert enrollment["enrollmentId"].startswith("urn:bancoex:enrollment:")

    revocation = {"data": {"cancellation": {"reason": "REVOGADO_MANUALMENTE", "cancelledBy": "ORGANISATION"}}}
    response = patch(client, client_identity, f"/enrollments/{enrollment['enrollmentId']}", revocation, "revokeEnrollment")

    assert response.status_code == 200
    assert body_of(response, server_identity)["data"]["status"] == "REVOKED"


def test_interaction_id_is_echoed(client, client_identity):
    response = get(client, client_identity, "/consents/urn:bancoex:unknown", **{"x-fapi-interaction-id": "abc-123"})

    assert response.headers["x-fapi-interaction-id"] == "abc-123"


def test_unknown_resource_is_signed_not_found(client, client_identity, server_identity):
    response = get(client, client_identity, "/pix/payments/unknown")

    assert response.status_code == 404
    body = body_of(response, server_identity)
    assert body["errors"][0]["code"] == "NOT_FOUND"
    assert body["meta"]["requestDateTime"]


def test_cancel_of_unknown_payment_is_not_found(client, client_identity, server_identity):
    response = patch(client, client_identity, "/pix/payments/unknown", sample("cancellation"), "cancelPayment")

    assert response.status_code == 404
    assert body_of(response, server_identity)["errors"][0]["code"] == "NOT_FOUND"


def test_missing_token_is_unauthorized(client, client_identity, server_identity, introspection_session):
    response = client.get("/consents/urn:bancoex:1", headers={"x-fapi-interaction-id": "1"})

    assert response.status_code == 401
    body = error_of(response, server_identity)
    assert body["errors"] == [{
        "code": "UNAUTHORIZED",
        "title": "Unauthorised",
        "detail": "The authorisation token was not sent or is invalid",
    }]
    assert "aud" not in body
    introspection_session.post.assert_not_called()


def test_token_presented_with_another_certificate_is_unauthorized(client, intruder_identity, server_identity):
    response = post(client, intruder_identity, "/consents", sample("consent"), "createConsent")

    assert response.status_code == 401
    assert error_of(response, server_identity)["errors"][0]["code"] == "UNAUTHORIZED"


def test_introspection_outage_is_unauthorized(client, client_identity, introspection_session):
    introspection_session.post.return_value = http_response(503, None)

    assert get(client, client_identity, "/consents/urn:bancoex:1").status_code == 401


def test_missing_idempotency_key_is_bad_request(client, client_identity, server_identity):
    response = post(client, client_identity, "/consents", sample("consent"), "createConsent",
                    **{"x-idempotency-key": ""})

    assert response.status_code == 400
    assert error_of(response, server_identity)["errors"][0]["code"] == "MISSING_MANDATORY_HEADERS"


def test_wrong_content_type_is_bad_request(client, client_identity):
    response = post(client, client_identity, "/consents", sample("consent"), "createConsent",
                    **{"Content-Type": "application/json"})

    assert response.status_code == 400


def test_read_without_interaction_id_is_bad_request(client, client_identity, server_identity):
    response = get(client, client_identity, "/consents/urn:bancoex:1", **{"x-fapi-interaction-id": ""})

    assert response.status_code == 400
    assert error_of(response, server_identity)["errors"][0]["code"] == "MISSING_MANDATORY_HEADERS"


def test_body_signed_for_another_operation_is_bad_signature(client, client_identity, server_identity):
    response = post(client, client_identity, "/consents", sample("consent"), "createPayment")

    assert response.status_code == 400
    assert error_of(response, server_identity)["errors"][0]["code"] == "BAD_SIGNATURE"


def test_body_signed_by_unknown_key_is_bad_signature(client, client_identity, intruder_identity, introspection_session):
    headers = request_headers("abc123", client_identity.cert_pem)
    token = build_signed_request(sample("consent"), intruder_identity.private_pem, client_identity.kid, CLIENT_ORG, "createConsent")

    assert client.post("/consents", data=token, headers=headers).status_code == 400


def test_body_failing_schema_is_invalid_parameter(client, client_identity, server_identity):
    payload = sample("consent")
    del payload["data"]["creditor"]

    response = post(client, client_identity, "/consents", payload, "createConsent")

    assert response.status_code == 400
    body = body_of(response, server_identity)
    assert body["errors"][0]["code"] == "PARAMETRO_INVALIDO"


def test_payment_token_without_consent_is_unauthorized(client, client_identity, introspection_session):
    introspection_session.post.return_value = http_response(200, introspection(client_identity.thumbprint, scope="payments"))

    response = post(client, client_identity, "/pix/payments", sample("payment"), "createPayment")

    assert response.status_code == 401


def test_unresolvable_client_on_read_is_unauthorized(settings, server_identity, client_identity, introspection_session):
    class BrokenResolver(FakeResolver):
        def organisation_id(self, client_id):
            raise UpstreamUnavailable("directory down")

    app = create_app(
        settings,
        token_validator=IntrospectionTokenValidator(settings.introspection_url, "u", "p", session=introspection_session),
        request_verifier=SignedRequestVerifier(BrokenResolver(client_identity.jwks)),
        signer=ResponseSigner(SERVER_ORG, server_identity.kid, server_identity.key_path),
    )

    assert get(app.test_client(), client_identity, "/consents/urn:bancoex:1").status_code == 401


def test_jwks_publishes_server_key(client, server_identity):
    response = client.get("/jwks")

    assert response.status_code == 200
    key = response.get_json()["keys"][0]
    assert key["kid"] == server_identity.kid
    assert key["n"] == server_identity.jwks["keys"][0]["n"]


def test_unsignable_error_falls_back_to_plain_json(settings, tmp_path, fake_resolver, introspection_session):
    app = create_app(
        settings,
        token_validator=IntrospectionTokenValidator(settings.introspection_url, "u", "p", session=introspection_session),
        request_verifier=SignedRequestVerifier(fake_resolver),
        signer=ResponseSigner(SERVER_ORG, "kid", str(tmp_path / "missing.pem")),
    )

    response = app.test_client().get("/consents/urn:bancoex:1")

    assert response.status_code == 500
    assert response.get_json()["errors"][0]["code"] == "INTERNAL_ERROR"


def test_reference_mode_skips_token_and_signature_checks(settings, server_identity, intruder_identity):
    settings = settings._replace(validate_token=False, validate_signature=False)
    client = create_app(settings).test_client()
    headers = request_headers("anything", "no certificate")
    token = build_signed_request(sample("consent"), intruder_identity.private_pem, "any-kid", "any-org", "any-audience")

    response = client.post("/consents", data=token, headers=headers)

    assert response.status_code == 201
    body = body_of(response, server_identity, audience=MOCK_ORGANISATION_ID)
    assert body["data"]["status"] == "AWAITING_AUTHORISATION"

    response = client.post("/pix/payments", data=build_signed_request(
        sample("payment"), intruder_identity.private_pem, "any-kid", "any-org", "any-audience"), headers=headers)

    assert response.status_code == 201
    payment = body_of(response, server_identity, audience=MOCK_ORGANISATION_ID)["data"]
    assert payment["consentId"] == "urn:sandbox:mock-consent"
