"""
Pytest configuration for the payments sandbox tests.
"""
import os
from collections import namedtuple
from unittest.mock import Mock

import pytest

from keygen import generate_key_pair
from ob_config import load_settings
from ob_trust import ClientOrganisation
from ob_utils import certificate_thumbprint

SERVER_ORG = "b961c4eb-509d-4edf-afeb-35642b38185d"
CLIENT_ORG = "74e929d9-33b6-4d85-8ba7-c146c867a817"
CLIENT_ID = "sandbox-client"
KEYSET_LOCATION = f"https://keystore.sandbox.local/{CLIENT_ORG}/application.jwks"

Identity = namedtuple("Identity", ["private_pem", "cert_pem", "jwks", "kid", "thumbprint", "key_path"])


def _identity(name, out_dir, organisation_id):
    jwks = generate_key_pair(name, str(out_dir), organisation_id)
    key_path = os.path.join(str(out_dir), f"{name}_key.pem")
    with open(key_path, "rb") as f:
        private_pem = f.read()
    with open(os.path.join(str(out_dir), f"{name}_cert.pem"), "r") as f:
        cert_pem = f.read()
    return Identity(private_pem, cert_pem, jwks, jwks["keys"][0]["kid"], certificate_thumbprint(cert_pem), key_path)


@pytest.fixture(scope="session")
def server_identity(tmp_path_factory):
    return _identity("server", tmp_path_factory.mktemp("server"), SERVER_ORG)


@pytest.fixture(scope="session")
def client_identity(tmp_path_factory):
    return _identity("client", tmp_path_factory.mktemp("client"), CLIENT_ORG)


@pytest.fixture(scope="session")
def intruder_identity(tmp_path_factory):
    """A second client whose key is not published for CLIENT_ORG."""
    return _identity("intruder", tmp_path_factory.mktemp("intruder"), CLIENT_ORG)


@pytest.fixture
def settings(server_identity):
    return load_settings({
        "ORGANISATION_ID": SERVER_ORG,
        "SIGNING_CERT_KID": server_identity.kid,
        "SIGNING_KEY_PATH": server_identity.key_path,
        "INTROSPECTION_ENDPOINT": "https://auth.sandbox.local/token/introspection",
        "INTROSPECTION_USER": "payments-sandbox",
        "INTROSPECTION_PASSWORD": "secret",
        "CLIENT_DETAILS_ENDPOINT": "https://directory.sandbox.local/clients",
        "CREATE_CONSENT_AUDIENCE": "createConsent",
        "CREATE_PAYMENT_AUDIENCE": "createPayment",
        "CONSENT_ID_PREFIX": "urn:bancoex:",
        "ENROLLMENT_ID_PREFIX": "urn:bancoex:enrollment:",
        "RESOURCE_BASE_URL": "https://api.banco.com.br/open-banking",
    })


class FakeResolver:
    """Resolves every client to CLIENT_ORG with the given key set."""

    def __init__(self, keyset):
        self.keyset = keyset
        self.resolved = []

    def resolve(self, client_id):
        self.resolved.append(client_id)
        return ClientOrganisation(client_id, CLIENT_ORG, KEYSET_LOCATION, self.keyset)

    def organisation_id(self, client_id):
        return CLIENT_ORG


@pytest.fixture
def fake_resolver(client_identity):
    return FakeResolver(client_identity.jwks)


def http_response(status_code=200, payload=None, json_error=None):
    response = Mock()
    response.status_code = status_code
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = payload
    return response
