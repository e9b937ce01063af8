# Purpose: Open Finance payments sandbox server (consents, Pix payments and enrollments).
# Not for production use; intended only as a reference sandbox.

import argparse
import sys
import uuid

from flask import Flask, g, jsonify, request

from ob_config import check_settings, load_settings
from ob_errors import ApiError, BadRequest, BadSignature, ConfigurationError, InvalidBody, NotFound, SigningFailure, Unauthorized, UpstreamUnavailable
from ob_lifecycle import ResourceKind, build_lifecycle_engine
from ob_results import error_envelope, resource_body
from ob_signer import build_response_signer
from ob_store import InMemoryResourceStore
from ob_tokens import REQUIRED_SCOPE, build_token_validator
from ob_validation import INTERACTION_ID_HEADER, JWT_CONTENT_TYPE, validate_against_schema, validate_read_headers, validate_write_headers
from ob_verifier import build_request_verifier


def create_app(settings, token_validator=None, request_verifier=None, signer=None, engine=None):
    """Builds the Flask app. The validation strategies are chosen here, once, from the settings."""
    app = Flask(__name__)
    token_validator = token_validator or build_token_validator(settings)
    request_verifier = request_verifier or build_request_verifier(settings)
    signer = signer or build_response_signer(settings)
    engine = engine or build_lifecycle_engine(settings, InMemoryResourceStore())

    app.config["OB_SETTINGS"] = settings
    app.config["OB_ENGINE"] = engine
    app.config["OB_SIGNER"] = signer

    def interaction_id():
        return request.headers.get(INTERACTION_ID_HEADER) or str(uuid.uuid4())

    def signed_response(body, status):
        # Audience is the caller organisation once known; errors raised earlier go out without aud.
        token = signer.sign(body, g.get("organisation_id"))
        return token, status, {"Content-Type": JWT_CONTENT_TYPE, INTERACTION_ID_HEADER: interaction_id()}

    def authenticate():
        details = token_validator.validate(
            request.headers.get("Authorization"),
            request.headers.get(settings.client_cert_header),
        )
        if not details:
            raise Unauthorized()
        return details

    def verified_payload(details, operation, schema_name):
        if not validate_write_headers(request.headers):
            raise BadRequest()

        signed_body = request.get_data(as_text=True).strip()
        verified = request_verifier.verify(details.client_id, signed_body, settings.audiences[operation])
        if not verified:
            raise BadSignature()
        g.organisation_id = verified.organisation_id

        if not validate_against_schema(verified.payload, schema_name):
            raise InvalidBody()
        return verified.payload

    def caller_organisation(details):
        if not validate_read_headers(request.headers):
            raise BadRequest()
        try:
            g.organisation_id = request_verifier.organisation_for(details.client_id)
        except UpstreamUnavailable as e:
            print(f"OB_SERVER: [!] Could not resolve the organisation of client {details.client_id}: {e}")
            raise Unauthorized("The client could not be resolved") from e

    def create(kind, operation, schema_name):
        details = authenticate()
        payload = verified_payload(details, operation, schema_name)

        consent_id = None
        if kind is ResourceKind.PAYMENT:
            consent_id = details.consent_id()
            if not consent_id:
                print(f"OB_SERVER: [!] Token of client {details.client_id} carries no consent scope")
                raise Unauthorized("The access token is not bound to a consent")

        record = app.config["OB_ENGINE"].create(kind, payload, consent_id=consent_id)
        return signed_response(resource_body(kind, record, settings.resource_base_url), 201)

    def read(kind, resource_id):
        details = authenticate()
        caller_organisation(details)

        record = app.config["OB_ENGINE"].get(kind, resource_id)
        if record is None:
            raise NotFound(f"No {kind.value} with id {resource_id}")
        return signed_response(resource_body(kind, record, settings.resource_base_url), 200)

    def cancel(kind, resource_id, operation):
        details = authenticate()
        payload = verified_payload(details, operation, "CancellationRequest")

        record = app.config["OB_ENGINE"].patch_cancel(kind, resource_id, payload["data"]["cancellation"])
        return signed_response(resource_body(kind, record, settings.resource_base_url), 200)

    @app.errorhandler(ApiError)
    def handle_api_error(error):
        print(f"OB_SERVER: [!] {request.method} {request.path} -> {error.http_status} {error}")
        body = error_envelope(error)
        try:
            return signed_response(body, error.http_status)
        except SigningFailure as e:
            # Nothing can be signed: answer with the plain envelope.
            body = error_envelope(e)
            return jsonify(body), e.http_status, {INTERACTION_ID_HEADER: interaction_id()}

    @app.route('/consents', methods=['POST'])
    def create_consent():
        return create(ResourceKind.CONSENT, "createConsent", "ConsentRequest")

    @app.route('/consents/<consent_id>', methods=['GET'])
    def get_consent(consent_id):
        return read(ResourceKind.CONSENT, consent_id)

    @app.route('/pix/payments', methods=['POST'])
    def create_payment():
        return create(ResourceKind.PAYMENT, "createPayment", "PaymentRequest")

    @app.route('/pix/payments/<payment_id>', methods=['GET'])
    def get_payment(payment_id):
        return read(ResourceKind.PAYMENT, payment_id)

    @app.route('/pix/payments/<payment_id>', methods=['PATCH'])
    def cancel_payment(payment_id):
        return cancel(ResourceKind.PAYMENT, payment_id, "cancelPayment")

    @app.route('/enrollments', methods=['POST'])
    def create_enrollment():
        return create(ResourceKind.ENROLLMENT, "createEnrollment", "EnrollmentRequest")

    @app.route('/enrollments/<enrollment_id>', methods=['GET'])
    def get_enrollment(enrollment_id):
        return read(ResourceKind.ENROLLMENT, enrollment_id)

    @app.route('/enrollments/<enrollment_id>', methods=['PATCH'])
    def revoke_enrollment(enrollment_id):
        return cancel(ResourceKind.ENROLLMENT, enrollment_id, "revokeEnrollment")

    @app.route('/jwks', methods=['GET'])
    def server_jwks():
        """Public key set for verifying the responses of this server."""
        return jsonify(signer.public_jwks())

    return app


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Open Finance Payments Sandbox Server")
    parser.add_argument("--port", type=int, help="Port to listen on (overrides SERVER_PORT).")
    parser.add_argument("--env", help="Path to a .env file to load.")
    parser.add_argument("--skipTokenValidation", action="store_true", help=f"Do not introspect tokens; accept every caller with scope '{REQUIRED_SCOPE}'.")
    parser.add_argument("--skipSignatureValidation", action="store_true", help="Decode request bodies without verifying their signature.")
    args = parser.parse_args()

    try:
        settings = load_settings(dotenv_path=args.env, check=False)
        if args.port:
            settings = settings._replace(port=args.port)
        if args.skipTokenValidation:
            settings = settings._replace(validate_token=False)
        if args.skipSignatureValidation:
            settings = settings._replace(validate_signature=False)
        check_settings(settings)
    except ConfigurationError as e:
        print(f"OB_SERVER: [!] Error: {e}")
        sys.exit(1)

    app = create_app(settings)
    try:
        app.config["OB_SIGNER"].signing_key()
    except SigningFailure:
        print("OB_SERVER: [!] Error: signing key not available. Run keygen.py first.")
        sys.exit(1)

    print(f"OB_SERVER: [*] Organisation {settings.organisation_id}, token validation {'ON' if settings.validate_token else 'OFF'}, signature validation {'ON' if settings.validate_signature else 'OFF'}")
    print(f"OB_SERVER: [*] Starting Payments Sandbox at http://{settings.host}:{settings.port}...")
    app.run(host=settings.host, port=settings.port, debug=False, use_reloader=False)
