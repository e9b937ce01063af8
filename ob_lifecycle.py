# Purpose: Consent, payment and enrollment records and the transitions this server performs on them.
# Not for production use; intended only as a reference sandbox.

import copy
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional

from ob_utils import format_datetime, utc_now


class ResourceKind(Enum):
    CONSENT = "consent"
    PAYMENT = "payment"
    ENROLLMENT = "enrollment"


# Consent: AWAITING_AUTHORISATION -> (authorisation happens elsewhere).
CONSENT_AWAITING_AUTHORISATION = "AWAITING_AUTHORISATION"
# PaymentInitiation: RCVD -> CANC.
PAYMENT_RECEIVED = "RCVD"
PAYMENT_CANCELLED = "CANC"
# Enrollment: AWAITING_RISK_SIGNALS -> REVOKED.
ENROLLMENT_AWAITING_RISK_SIGNALS = "AWAITING_RISK_SIGNALS"
ENROLLMENT_REVOKED = "REVOKED"

CANCELLED_FROM_INITIATOR = "INICIADORA"
DEFAULT_CANCELLATION_REASON = {
    ResourceKind.PAYMENT: "CANCELADO_PENDENCIA",
    ResourceKind.ENROLLMENT: "REVOGADO_MANUALMENTE",
}

# Demonstration debtor account attached to every payment.
DEBTOR_ACCOUNT = {
    "ispb": "12345678",
    "issuer": "1774",
    "number": "1234567890",
    "accountType": "CACC",
}

MAX_ID_ATTEMPTS = 3


@dataclass(frozen=True)
class Cancellation:
    reason: Any
    cancelled_from: str
    cancelled_at: str
    cancelled_by: Any

    def to_dict(self):
        return {
            "reason": copy.deepcopy(self.reason),
            "cancelledFrom": self.cancelled_from,
            "cancelledAt": self.cancelled_at,
            "cancelledBy": copy.deepcopy(self.cancelled_by),
        }


@dataclass(frozen=True)
class Consent:
    consent_id: str
    status: str
    creation_date_time: str
    status_update_date_time: str
    expiration_date_time: str
    logged_user: Any
    creditor: Any
    payment: Any
    extras: Dict[str, Any]

    @property
    def resource_id(self):
        return self.consent_id

    def to_data(self):
        data = {
            "consentId": self.consent_id,
            "creationDateTime": self.creation_date_time,
            "expirationDateTime": self.expiration_date_time,
            "statusUpdateDateTime": self.status_update_date_time,
            "status": self.status,
            "loggedUser": copy.deepcopy(self.logged_user),
            "creditor": copy.deepcopy(self.creditor),
            "payment": copy.deepcopy(self.payment),
        }
        data.update(copy.deepcopy(self.extras))
        return data


@dataclass(frozen=True)
class PaymentInitiation:
    payment_id: str
    consent_id: str
    status: str
    creation_date_time: str
    status_update_date_time: str
    debtor_account: Dict[str, str]
    details: Dict[str, Any]
    cancellation: Optional[Cancellation] = None

    @property
    def resource_id(self):
        return self.payment_id

    def to_data(self):
        data = copy.deepcopy(self.details)
        data.update({
            "paymentId": self.payment_id,
            "consentId": self.consent_id,
            "creationDateTime": self.creation_date_time,
            "statusUpdateDateTime": self.status_update_date_time,
            "status": self.status,
            "debtorAccount": dict(self.debtor_account),
        })
        if self.cancellation is not None:
            data["cancellation"] = self.cancellation.to_dict()
        return data


@dataclass(frozen=True)
class Enrollment:
    enrollment_id: str
    status: str
    creation_date_time: str
    status_update_date_time: str
    details: Dict[str, Any]
    cancellation: Optional[Cancellation] = None

    @property
    def resource_id(self):
        return self.enrollment_id

    def to_data(self):
        data = copy.deepcopy(self.details)
        data.update({
            "enrollmentId": self.enrollment_id,
            "creationDateTime": self.creation_date_time,
            "statusUpdateDateTime": self.status_update_date_time,
            "status": self.status,
        })
        if self.cancellation is not None:
            data["cancellation"] = self.cancellation.to_dict()
        return data


def _without(data, *names):
    return {k: copy.deepcopy(v) for k, v in data.items() if k not in names}


def new_consent(data, consent_id, timestamp):
    # The sandbox does not model consent expiry: expiration equals creation.
    return Consent(
        consent_id=consent_id,
        status=CONSENT_AWAITING_AUTHORISATION,
        creation_date_time=timestamp,
        status_update_date_time=timestamp,
        expiration_date_time=timestamp,
        logged_user=copy.deepcopy(data.get("loggedUser")),
        creditor=copy.deepcopy(data.get("creditor")),
        payment=copy.deepcopy(data.get("payment")),
        extras={k: copy.deepcopy(data[k]) for k in ("businessEntity", "debtorAccount") if k in data},
    )


def new_payment(data, payment_id, consent_id, timestamp):
    return PaymentInitiation(
        payment_id=payment_id,
        consent_id=consent_id,
        status=PAYMENT_RECEIVED,
        creation_date_time=timestamp,
        status_update_date_time=timestamp,
        debtor_account=dict(DEBTOR_ACCOUNT),
        details=_without(data, "paymentId", "consentId", "status", "creationDateTime",
                         "statusUpdateDateTime", "debtorAccount", "cancellation"),
    )


def new_enrollment(data, enrollment_id, timestamp):
    return Enrollment(
        enrollment_id=enrollment_id,
        status=ENROLLMENT_AWAITING_RISK_SIGNALS,
        creation_date_time=timestamp,
        status_update_date_time=timestamp,
        details=_without(data, "enrollmentId", "status", "creationDateTime",
                         "statusUpdateDateTime", "cancellation"),
    )


TERMINAL_STATUS = {
    ResourceKind.PAYMENT: PAYMENT_CANCELLED,
    ResourceKind.ENROLLMENT: ENROLLMENT_REVOKED,
}


def cancelled(kind, record, cancellation_request, timestamp):
    """Returns the record moved to its terminal state.

    A record already in the terminal state comes back unchanged, so the first
    cancellation (and its timestamps) wins.
    """
    terminal = TERMINAL_STATUS[kind]
    if record.status == terminal:
        return record
    reason = cancellation_request.get("reason") or DEFAULT_CANCELLATION_REASON[kind]
    cancellation = Cancellation(
        reason=copy.deepcopy(reason),
        cancelled_from=CANCELLED_FROM_INITIATOR,
        cancelled_at=timestamp,
        cancelled_by=copy.deepcopy(cancellation_request.get("cancelledBy")),
    )
    return replace(record, status=terminal, status_update_date_time=timestamp, cancellation=cancellation)


class LifecycleEngine:
    """Creates, reads and cancels resources on top of a store with atomic per-key operations."""

    def __init__(self, store, consent_id_prefix="", enrollment_id_prefix="", clock=utc_now, id_factory=None):
        self.store = store
        self.prefixes = {
            ResourceKind.CONSENT: consent_id_prefix,
            ResourceKind.PAYMENT: "",
            ResourceKind.ENROLLMENT: enrollment_id_prefix,
        }
        self.clock = clock
        self.id_factory = id_factory or (lambda: str(uuid.uuid4()))

    def _timestamp(self):
        return format_datetime(self.clock())

    def _build(self, kind, data, resource_id, timestamp, consent_id):
        if kind is ResourceKind.CONSENT:
            return new_consent(data, resource_id, timestamp)
        if kind is ResourceKind.PAYMENT:
            return new_payment(data, resource_id, consent_id, timestamp)
        return new_enrollment(data, resource_id, timestamp)

    def create(self, kind, payload, consent_id=None):
        """Creates a resource from a request payload ({"data": {...}}).

        For payments consent_id comes from the caller's token scope; whether
        that consent exists or is authorised is not checked here.
        """
        if kind is ResourceKind.PAYMENT and not consent_id:
            raise ValueError("A payment initiation needs the consentId granted to the caller")
        data = payload.get("data")
        if not isinstance(data, dict):
            raise ValueError("payload must carry a 'data' object")

        timestamp = self._timestamp()
        for _ in range(MAX_ID_ATTEMPTS):
            resource_id = self.prefixes[kind] + self.id_factory()
            record = self._build(kind, data, resource_id, timestamp, consent_id)
            if self.store.create_if_absent(kind, resource_id, record):
                print(f"OB_LIFECYCLE: [*] Created {kind.value} {resource_id} ({record.status})")
                return record
        raise RuntimeError(f"Could not generate a unique {kind.value} id after {MAX_ID_ATTEMPTS} attempts")

    def get(self, kind, resource_id):
        """Returns the stored record or None."""
        return self.store.get(kind, resource_id)

    def patch_cancel(self, kind, resource_id, cancellation_request):
        """Cancels a payment or revokes an enrollment. Raises NotFound for unknown ids."""
        if kind not in TERMINAL_STATUS:
            raise ValueError(f"A {kind.value} cannot be cancelled through this API")
        timestamp = self._timestamp()
        record = self.store.update(
            kind, resource_id, lambda current: cancelled(kind, current, cancellation_request or {}, timestamp)
        )
        print(f"OB_LIFECYCLE: [*] {kind.value} {resource_id} is now {record.status}")
        return record


def build_lifecycle_engine(settings, store):
    return LifecycleEngine(store, settings.consent_id_prefix, settings.enrollment_id_prefix)
