# Purpose: Resolve a client's organisation and published key set from the client registry.
# Not for production use; intended only as a reference sandbox.

from collections import namedtuple
from urllib.parse import urlparse

import requests

from ob_errors import UpstreamUnavailable

ClientOrganisation = namedtuple("ClientOrganisation", ["client_id", "organisation_id", "keyset_location", "keyset"])


def organisation_id_from_keyset_location(url):
    """The organisation id is the first path segment of the JWKS URI.

    e.g. https://keystore.example.com/74e929d9-33b6-4d85-8ba7-c146c867a817/application.jwks
    """
    segments = [segment for segment in urlparse(url).path.split('/') if segment]
    if not segments:
        raise UpstreamUnavailable(f"Cannot derive an organisation id from key set location {url!r}")
    return segments[0]


class ClientTrustResolver:
    """Fetches client metadata and key sets. Every failure fails closed with UpstreamUnavailable."""

    def __init__(self, client_details_url, timeout=10.0, session=None):
        self.client_details_url = client_details_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests

    def _get_json(self, url, what):
        try:
            r = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            print(f"OB_TRUST: [!] Failed to fetch {what} from {url}: {e}")
            raise UpstreamUnavailable(f"Could not fetch {what}") from e

        if r.status_code != 200:
            print(f"OB_TRUST: [!] Failed to fetch {what} from {url}: {r.status_code}")
            raise UpstreamUnavailable(f"Could not fetch {what} (HTTP {r.status_code})")

        try:
            document = r.json()
        except ValueError as e:
            print(f"OB_TRUST: [!] {what} at {url} is not valid JSON")
            raise UpstreamUnavailable(f"Malformed {what}") from e
        if not isinstance(document, dict):
            raise UpstreamUnavailable(f"Malformed {what}")
        return document

    def client_details(self, client_id):
        return self._get_json(f"{self.client_details_url}/{client_id}", "client details")

    def keyset_location(self, client_id):
        details = self.client_details(client_id)
        jwks_uri = details.get("jwksUri")
        if not isinstance(jwks_uri, str) or not jwks_uri:
            print(f"OB_TRUST: [!] Client {client_id} has no jwksUri registered")
            raise UpstreamUnavailable("Client details do not carry a jwksUri")
        return jwks_uri

    def organisation_id(self, client_id):
        """Resolves only the organisation id (no key set fetch)."""
        return organisation_id_from_keyset_location(self.keyset_location(client_id))

    def resolve(self, client_id):
        jwks_uri = self.keyset_location(client_id)
        organisation_id = organisation_id_from_keyset_location(jwks_uri)

        keyset = self._get_json(jwks_uri, "client key set")
        if not isinstance(keyset.get("keys"), list):
            print(f"OB_TRUST: [!] Key set at {jwks_uri} has no 'keys' list")
            raise UpstreamUnavailable("Malformed client key set")

        print(f"OB_TRUST: [*] Resolved client {client_id} to organisation {organisation_id} ({len(keyset['keys'])} keys)")
        return ClientOrganisation(client_id, organisation_id, jwks_uri, keyset)
