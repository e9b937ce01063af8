# Purpose: Generate the RSA signing keys, certificates and JWKS for the sandbox server and a test client.
# Not for production use; intended only as a reference sandbox.

import argparse
import hashlib
import json
import os
from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from ob_signer import SIGNING_ALGORITHM
from ob_utils import bytes_to_base64url

DIRECTORY_DIR = "directory"
KEYSET_FILENAME = "application.jwks"


def int_to_base64url(value):
    return bytes_to_base64url(value.to_bytes((value.bit_length() + 7) // 8, 'big'))


def generate_key_pair(name, out_dir, organisation_id, kid=None, x5u=None):
    """Creates {name}_key.pem, {name}_cert.pem and {name}.jwks under out_dir and returns the JWKS."""
    print(f"Generating keys for {name}...")
    os.makedirs(out_dir, exist_ok=True)
    kid = kid or f"{name}-key-id-001"

    # 1. RSA-2048 private key, used for RS256 signatures and as the mTLS client key.
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )
    with open(os.path.join(out_dir, f"{name}_key.pem"), "wb") as f:
        f.write(private_pem)

    # 2. Self-signed certificate. In the real ecosystem the directory CA issues it;
    # the OU carries the organisation id the way directory-issued certificates do.
    subject = issuer = x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, f"{name}.sandbox.local"),
        x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, organisation_id),
    ])
    cert = x509.CertificateBuilder().subject_name(
        subject
    ).issuer_name(
        issuer
    ).public_key(
        private_key.public_key()
    ).serial_number(
        x509.random_serial_number()
    ).not_valid_before(
        datetime.now(timezone.utc)
    ).not_valid_after(
        datetime.now(timezone.utc) + timedelta(days=365)
    ).sign(private_key, hashes.SHA256())

    with open(os.path.join(out_dir, f"{name}_cert.pem"), "wb") as f:
        f.write(cert.public_bytes(serialization.Encoding.PEM))

    # 3. x5t#S256: the thumbprint access tokens are bound to (cnf claim).
    cert_der = cert.public_bytes(serialization.Encoding.DER)
    x5t_s256 = bytes_to_base64url(hashlib.sha256(cert_der).digest())

    # 4. JWK for the RSA public key (modulus and exponent).
    public_numbers = private_key.public_key().public_numbers()
    jwk = {
        "kty": "RSA",
        "n": int_to_base64url(public_numbers.n),
        "e": int_to_base64url(public_numbers.e),
        "use": "sig",
        "kid": kid,
        "x5t#S256": x5t_s256,
        "alg": SIGNING_ALGORITHM,
    }
    if x5u:
        jwk["x5u"] = x5u

    jwks = {"keys": [jwk]}
    with open(os.path.join(out_dir, f"{name}.jwks"), "w") as f:
        json.dump(jwks, f, indent=4)

    print(f"Successfully created {name}_key.pem, {name}_cert.pem and {name}.jwks in {out_dir} (x5t#S256 {x5t_s256})")
    return jwks


def publish_keyset(directory, organisation_id, jwks):
    """Writes the key set where ob_directory.py serves it: /<organisation_id>/application.jwks."""
    org_dir = os.path.join(directory, organisation_id)
    os.makedirs(org_dir, exist_ok=True)
    with open(os.path.join(org_dir, KEYSET_FILENAME), "w") as f:
        json.dump(jwks, f, indent=4)


def register_client(directory, client_id, organisation_id, directory_url):
    """Adds the client to clients.json, pointing its jwksUri at the published key set."""
    registry_path = os.path.join(directory, "clients.json")
    clients = {}
    if os.path.exists(registry_path):
        with open(registry_path, "r") as f:
            clients = json.load(f)
    clients[client_id] = {
        "clientId": client_id,
        "jwksUri": f"{directory_url.rstrip('/')}/{organisation_id}/{KEYSET_FILENAME}",
    }
    os.makedirs(directory, exist_ok=True)
    with open(registry_path, "w") as f:
        json.dump(clients, f, indent=4)
    return clients[client_id]


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Generate sandbox keys and register the test client")
    parser.add_argument("--serverOrg", default="b961c4eb-509d-4edf-afeb-35642b38185d", help="Organisation id of the sandbox server.")
    parser.add_argument("--clientOrg", default="74e929d9-33b6-4d85-8ba7-c146c867a817", help="Organisation id of the test client.")
    parser.add_argument("--clientId", default="sandbox-client", help="OAuth client id of the test client.")
    parser.add_argument("--directoryUrl", default="http://localhost:5021", help="Base URL where ob_directory.py runs.")
    args = parser.parse_args()

    server_jwks = generate_key_pair("server", "server_db/certs", args.serverOrg,
                                    x5u=f"{args.directoryUrl}/{args.serverOrg}/{KEYSET_FILENAME}")
    client_jwks = generate_key_pair("client", "client_db/certs", args.clientOrg,
                                    x5u=f"{args.directoryUrl}/{args.clientOrg}/{KEYSET_FILENAME}")

    publish_keyset(DIRECTORY_DIR, args.serverOrg, server_jwks)
    publish_keyset(DIRECTORY_DIR, args.clientOrg, client_jwks)
    register_client(DIRECTORY_DIR, args.clientId, args.clientOrg, args.directoryUrl)
    print(f"Registered client {args.clientId} (organisation {args.clientOrg}) in {DIRECTORY_DIR}/clients.json")
