# Purpose: Sign every outbound response body as a JWT issued by the server organisation.
# Not for production use; intended only as a reference sandbox.

import threading
import time
import uuid

from jose import jwk, jwt
from jose.exceptions import JOSEError

from ob_errors import SigningFailure

# RSASSA-PKCS1-v1_5 with SHA-256: the signature is deterministic for a given key and input.
SIGNING_ALGORITHM = "RS256"
RESPONSE_LIFETIME = 300  # 5 minutes


class ResponseSigner:
    """Signs payloads under the server key. The key is read once and cached for the process."""

    def __init__(self, organisation_id, key_id, key_path, lifetime=RESPONSE_LIFETIME):
        self.organisation_id = organisation_id
        self.key_id = key_id
        self.key_path = key_path
        self.lifetime = lifetime
        self._key = None
        self._lock = threading.Lock()

    def signing_key(self):
        with self._lock:
            if self._key is None:
                try:
                    with open(self.key_path, "rb") as f:
                        private_key_pem = f.read()
                    self._key = jwk.construct(private_key_pem, SIGNING_ALGORITHM)
                except (OSError, JOSEError, ValueError) as e:
                    print(f"OB_SIGNER: [!] Could not load signing key kid={self.key_id} from {self.key_path}: {e!r}")
                    raise SigningFailure("The server signing key could not be loaded") from e
                print(f"OB_SIGNER: [*] Signing key kid={self.key_id} loaded from {self.key_path}")
            return self._key

    def sign(self, payload, audience=None):
        """Wraps payload in a compact JWT: iss, aud, iat, exp (iat + 5 min) and a fresh jti."""
        key = self.signing_key()

        iat = int(time.time())
        claims = dict(payload)
        claims.update({
            "iss": self.organisation_id,
            "iat": iat,
            "exp": iat + self.lifetime,
            "jti": str(uuid.uuid4()),
        })
        if audience:
            claims["aud"] = audience

        headers = {"typ": "JWT", "kid": self.key_id}
        try:
            return jwt.encode(claims, key, algorithm=SIGNING_ALGORITHM, headers=headers)
        except (JOSEError, ValueError, TypeError) as e:
            print(f"OB_SIGNER: [!] Error when signing response body (kid={self.key_id}, key={self.key_path}, aud={audience}): {e!r}")
            raise SigningFailure() from e

    def public_jwks(self):
        """The public key set clients use to verify our responses."""
        public = self.signing_key().public_key().to_dict()
        public.update({"kid": self.key_id, "use": "sig", "alg": SIGNING_ALGORITHM})
        return {"keys": [public]}


def build_response_signer(settings):
    return ResponseSigner(settings.organisation_id, settings.signing_kid, settings.signing_key_path)
