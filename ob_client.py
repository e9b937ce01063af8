# Purpose: Test utility acting as the payment initiator against ob_server.py.
# Not for production use; intended only as a reference sandbox.

import argparse
import json
import os
import time
import uuid
from urllib.parse import quote

import requests
from jose import jwt
from jose.exceptions import JOSEError

from ob_signer import SIGNING_ALGORITHM
from ob_verifier import verify_envelope

BASE_URL = "http://127.0.0.1:5020"
CERT_DIR = "client_db/certs"
REQUEST_LIFETIME = 60

RESOURCE_PATHS = {
    "consent": "/consents",
    "payment": "/pix/payments",
    "enrollment": "/enrollments",
}


def load_client_identity(cert_dir=CERT_DIR):
    """Loads the client key, certificate and kid written by keygen.py."""
    try:
        with open(os.path.join(cert_dir, "client_key.pem"), "rb") as f:
            private_pem = f.read()
        with open(os.path.join(cert_dir, "client_cert.pem"), "r") as f:
            cert_pem = f.read()
        with open(os.path.join(cert_dir, "client.jwks"), "r") as f:
            kid = json.load(f)["keys"][0]["kid"]
        return private_pem, cert_pem, kid
    except (FileNotFoundError, IndexError, KeyError):
        print("OB_CLIENT: [!] Error: client keys/certs not found. Run keygen.py first.")
        return None, None, None


def build_signed_request(payload, private_key_pem, kid, organisation_id, audience):
    """Signs a request body the way the server expects it: iss = our organisation, aud = the operation audience."""
    iat = int(time.time())
    claims = dict(payload)
    claims.update({
        "iss": organisation_id,
        "aud": audience,
        "iat": iat,
        "exp": iat + REQUEST_LIFETIME,
        "jti": str(uuid.uuid4()),
    })
    return jwt.encode(claims, private_key_pem, algorithm=SIGNING_ALGORITHM, headers={"kid": kid})


def request_headers(access_token, cert_pem, write=True):
    headers = {
        "Authorization": f"Bearer {access_token}",
        # What a TLS terminator forwards after the mutual TLS handshake.
        "ssl-client-cert": quote(cert_pem),
        "x-fapi-interaction-id": str(uuid.uuid4()),
    }
    if write:
        headers["Content-Type"] = "application/jwt"
        headers["x-idempotency-key"] = str(uuid.uuid4())
    return headers


def verify_signed_response(token, server_jwks, server_organisation_id, client_organisation_id):
    """Checks a response came from the server and was addressed to us; returns the body."""
    return verify_envelope(token, server_jwks, issuer=server_organisation_id, audience=client_organisation_id)


def print_response(response, server_jwks, server_org, client_org):
    print(f"OB_CLIENT: [*] Status Code: {response.status_code}")
    content_type = response.headers.get("Content-Type", "")
    if "application/jwt" not in content_type:
        print(f"OB_CLIENT: [*] Response Body (Text): {response.text}")
        return None
    try:
        if server_jwks:
            body = verify_signed_response(response.text, server_jwks, server_org, client_org)
            print("OB_CLIENT: [OK] Response signature verified.")
        else:
            body = jwt.get_unverified_claims(response.text)
            print("OB_CLIENT: [!] Response signature NOT verified (no server key set).")
    except JOSEError as e:
        print(f"OB_CLIENT: [!] Response signature rejected: {e}")
        return None
    print("OB_CLIENT: [*] Response Body:")
    print(json.dumps(body, indent=4))
    return body


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Test utility for the payments sandbox server")
    parser.add_argument("--create", choices=sorted(RESOURCE_PATHS), help="Create a resource from --body.")
    parser.add_argument("--get", nargs=2, metavar=("KIND", "ID"), help="Read a resource.")
    parser.add_argument("--cancel", nargs=2, metavar=("KIND", "ID"), help="Cancel a payment or revoke an enrollment using --body.")
    parser.add_argument("--body", help="Path to the JSON request body ({\"data\": {...}}).")
    parser.add_argument("--audience", help="Audience expected by the server for this operation.")
    parser.add_argument("--token", default="sandbox-token", help="Access token to present.")
    parser.add_argument("--clientOrg", default="74e929d9-33b6-4d85-8ba7-c146c867a817")
    parser.add_argument("--serverOrg", default="b961c4eb-509d-4edf-afeb-35642b38185d")
    parser.add_argument("--baseUrl", default=BASE_URL)
    args = parser.parse_args()

    private_pem, cert_pem, kid = load_client_identity()
    if not private_pem:
        raise SystemExit(1)

    try:
        server_jwks = requests.get(f"{args.baseUrl}/jwks", timeout=10).json()
    except (requests.RequestException, ValueError) as e:
        print(f"OB_CLIENT: [!] Could not fetch the server key set: {e}")
        server_jwks = None

    try:
        if args.create or args.cancel:
            if not args.body or not args.audience:
                parser.error("--body and --audience are required to create or cancel")
            with open(args.body, "r") as f:
                payload = json.load(f)
            token = build_signed_request(payload, private_pem, kid, args.clientOrg, args.audience)
            if args.create:
                url = f"{args.baseUrl}{RESOURCE_PATHS[args.create]}"
                response = requests.post(url, data=token, headers=request_headers(args.token, cert_pem), timeout=10)
            else:
                url = f"{args.baseUrl}{RESOURCE_PATHS[args.cancel[0]]}/{args.cancel[1]}"
                response = requests.patch(url, data=token, headers=request_headers(args.token, cert_pem), timeout=10)
        elif args.get:
            url = f"{args.baseUrl}{RESOURCE_PATHS[args.get[0]]}/{args.get[1]}"
            response = requests.get(url, headers=request_headers(args.token, cert_pem, write=False), timeout=10)
        else:
            parser.print_help()
            raise SystemExit(0)
    except requests.exceptions.ConnectionError:
        print(f"OB_CLIENT: [!] Error: Could not connect to {args.baseUrl}. Is ob_server.py running?")
        raise SystemExit(1)

    print_response(response, server_jwks, args.serverOrg, args.clientOrg)
