"""CourierCredential aggregate: one provider's secret bundle.

Exactly one record per provider id. The bundle is stored as JSON because its
shape depends on the provider:

    pathao:    client_id, client_secret, username, password, [base_url, refresh_token]
    steadfast: api_key, secret_key, [base_url]

``secret_version`` increases on every rotation. Adapters (and the OAuth
tokens they cache) are keyed on it, so a rotation retires them.
"""

import json
from datetime import UTC, datetime

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Integer, String, Text
from protean.utils.globals import current_domain

from dispatch.courier import SUPPORTED_COURIERS
from dispatch.credentials.events import (
    CourierCredentialsActivated,
    CourierCredentialsDeactivated,
    CourierCredentialsRegistered,
    CourierCredentialsRotated,
)
from dispatch.domain import dispatch

REQUIRED_SECRETS = {
    "pathao": ("client_id", "client_secret", "username", "password"),
    "steadfast": ("api_key", "secret_key"),
}


@dispatch.aggregate
class CourierCredential:
    courier = String(required=True, max_length=50)
    secrets = Text(required=True)  # JSON object, provider specific
    is_active = Boolean(default=True)
    secret_version = Integer(default=1)
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def courier_must_be_supported(self):
        if self.courier and self.courier not in SUPPORTED_COURIERS:
            raise ValidationError({"courier": [f"Courier {self.courier} not supported"]})

    @invariant.post
    def required_secrets_must_be_present(self):
        if not self.courier or not self.secrets:
            return
        bundle = json.loads(self.secrets)
        missing = [key for key in REQUIRED_SECRETS.get(self.courier, ()) if not bundle.get(key)]
        if missing:
            raise ValidationError({"secrets": [f"Missing {', '.join(missing)} for {self.courier}"]})

    @classmethod
    def register(cls, courier: str, secrets: dict, is_active: bool = True):
        now = datetime.now(UTC)
        credential = cls(
            courier=courier,
            secrets=json.dumps(secrets),
            is_active=is_active,
            secret_version=1,
            created_at=now,
            updated_at=now,
        )
        credential.raise_(
            CourierCredentialsRegistered(
                credential_id=str(credential.id),
                courier=courier,
                registered_at=now,
            )
        )
        return credential

    def secret_bundle(self) -> dict:
        return json.loads(self.secrets) if self.secrets else {}

    def rotate(self, secrets: dict, merge: bool = True) -> None:
        """Replace the secret bundle, keeping unspecified keys when ``merge``."""
        bundle = {**self.secret_bundle(), **secrets} if merge else dict(secrets)
        now = datetime.now(UTC)
        with atomic_change(self):
            self.secrets = json.dumps(bundle)
            self.secret_version = (self.secret_version or 1) + 1
            self.updated_at = now

        self.raise_(
            CourierCredentialsRotated(
                credential_id=str(self.id),
                courier=self.courier,
                secret_version=self.secret_version,
                rotated_at=now,
            )
        )

    def activate(self) -> None:
        if self.is_active:
            return
        now = datetime.now(UTC)
        self.is_active = True
        self.updated_at = now
        self.raise_(CourierCredentialsActivated(credential_id=str(self.id), courier=self.courier, activated_at=now))

    def deactivate(self) -> None:
        if not self.is_active:
            return
        now = datetime.now(UTC)
        self.is_active = False
        self.updated_at = now
        self.raise_(
            CourierCredentialsDeactivated(credential_id=str(self.id), courier=self.courier, deactivated_at=now)
        )


def find_credentials(courier: str) -> CourierCredential | None:
    """Return the credential record for a provider, active or not."""
    repo = current_domain.repository_for(CourierCredential)
    return repo._dao.query.filter(courier=courier).all().first


def active_couriers() -> list[str]:
    """Provider ids with active credentials, in supported-list order."""
    repo = current_domain.repository_for(CourierCredential)
    active = {record.courier for record in repo._dao.query.filter(is_active=True).all().items}
    return [courier for courier in SUPPORTED_COURIERS if courier in active]
