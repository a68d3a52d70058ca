"""Courier credential management: register, rotate, toggle and delete."""

import json

from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Boolean, Identifier, String, Text
from protean.utils.globals import current_domain

from dispatch.credentials.credential import CourierCredential, find_credentials
from dispatch.domain import dispatch


@dispatch.command(part_of="CourierCredential")
class RegisterCourierCredentials:
    courier = String(required=True, max_length=50)
    secrets = Text(required=True)  # JSON object
    is_active = Boolean(default=True)


@dispatch.command(part_of="CourierCredential")
class RotateCourierCredentials:
    courier = String(required=True, max_length=50)
    secrets = Text(required=True)  # JSON object; merged into the existing bundle


@dispatch.command(part_of="CourierCredential")
class ActivateCourierCredentials:
    courier = String(required=True, max_length=50)


@dispatch.command(part_of="CourierCredential")
class DeactivateCourierCredentials:
    courier = String(required=True, max_length=50)


@dispatch.command(part_of="CourierCredential")
class DeleteCourierCredentials:
    credential_id = Identifier(required=True)


def _load(courier: str) -> CourierCredential:
    credential = find_credentials(courier)
    if credential is None:
        raise ObjectNotFoundError(f"No credentials found for {courier}")
    return credential


@dispatch.command_handler(part_of=CourierCredential)
class CourierCredentialHandler:
    @handle(RegisterCourierCredentials)
    def register(self, command):
        if find_credentials(command.courier) is not None:
            raise ValidationError({"courier": [f"Credentials for {command.courier} already exist"]})

        credential = CourierCredential.register(
            courier=command.courier,
            secrets=json.loads(command.secrets),
            is_active=command.is_active if command.is_active is not None else True,
        )
        current_domain.repository_for(CourierCredential).add(credential)
        return str(credential.id)

    @handle(RotateCourierCredentials)
    def rotate(self, command):
        credential = _load(command.courier)
        credential.rotate(json.loads(command.secrets))
        current_domain.repository_for(CourierCredential).add(credential)
        return credential.secret_version

    @handle(ActivateCourierCredentials)
    def activate(self, command):
        credential = _load(command.courier)
        credential.activate()
        current_domain.repository_for(CourierCredential).add(credential)

    @handle(DeactivateCourierCredentials)
    def deactivate(self, command):
        credential = _load(command.courier)
        credential.deactivate()
        current_domain.repository_for(CourierCredential).add(credential)

    @handle(DeleteCourierCredentials)
    def delete(self, command):
        repo = current_domain.repository_for(CourierCredential)
        credential = repo.get(command.credential_id)
        repo._dao.delete(credential)
