"""Domain events for the CourierCredential aggregate.

Secrets never travel in events; only the provider and the secret version do.
"""

from protean.fields import DateTime, Identifier, Integer, String

from dispatch.domain import dispatch


@dispatch.event(part_of="CourierCredential")
class CourierCredentialsRegistered:
    """Credentials for a courier provider were stored."""

    __version__ = 1

    credential_id = Identifier(required=True)
    courier = String(required=True)
    registered_at = DateTime(required=True)


@dispatch.event(part_of="CourierCredential")
class CourierCredentialsRotated:
    """The secret bundle was replaced; cached tokens minted from the old one are void."""

    __version__ = 1

    credential_id = Identifier(required=True)
    courier = String(required=True)
    secret_version = Integer(required=True)
    rotated_at = DateTime(required=True)


@dispatch.event(part_of="CourierCredential")
class CourierCredentialsActivated:
    __version__ = 1

    credential_id = Identifier(required=True)
    courier = String(required=True)
    activated_at = DateTime(required=True)


@dispatch.event(part_of="CourierCredential")
class CourierCredentialsDeactivated:
    __version__ = 1

    credential_id = Identifier(required=True)
    courier = String(required=True)
    deactivated_at = DateTime(required=True)
