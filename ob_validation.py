# Purpose: Mandatory header checks and JSON schema checks for decoded request bodies.
# Not for production use; intended only as a reference sandbox.

import functools
import os

import referencing
import yaml
from jsonschema import Draft7Validator
from referencing.jsonschema import DRAFT7

SCHEMA_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "schemas", "payments.yaml")
SCHEMA_URI = "http://payments.sandbox/payments.yaml"

JWT_CONTENT_TYPE = "application/jwt"
INTERACTION_ID_HEADER = "x-fapi-interaction-id"
IDEMPOTENCY_KEY_HEADER = "x-idempotency-key"


def validate_write_headers(headers):
    """POST/PATCH need a JWT content type, an interaction id and an idempotency key."""
    content_type = headers.get("Content-Type", "")
    media_types = [part.strip().lower() for part in content_type.split(";")]
    if JWT_CONTENT_TYPE not in media_types:
        return False
    if not headers.get(INTERACTION_ID_HEADER):
        return False
    if not headers.get(IDEMPOTENCY_KEY_HEADER):
        return False
    return True


def validate_read_headers(headers):
    return bool(headers.get(INTERACTION_ID_HEADER))


@functools.lru_cache(maxsize=1)
def load_registry(path=SCHEMA_PATH):
    with open(path, 'r') as f:
        document = yaml.safe_load(f)
    # Register the whole document under one URI so internal $refs resolve across schemas.
    resource = referencing.Resource.from_contents(document, default_specification=DRAFT7)
    return referencing.Registry().with_resource(uri=SCHEMA_URI, resource=resource)


def schema_errors(data, schema_name):
    """Returns the validation error messages for data against a named schema (empty when valid)."""
    registry = load_registry()
    target_schema = {"$ref": f"{SCHEMA_URI}#/components/schemas/{schema_name}"}
    validator = Draft7Validator(target_schema, registry=registry)
    return [error.message for error in validator.iter_errors(data)]


def validate_against_schema(data, schema_name):
    errors = schema_errors(data, schema_name)
    if errors:
        print(f"OB_VALIDATION: [!] Schema validation error ({schema_name}): {'; '.join(errors)}")
        return False
    print(f"OB_VALIDATION: [OK] JSON validated against {schema_name}")
    return True
