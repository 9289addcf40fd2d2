"""A user's address book."""

import logging
from typing import List

from .database import UnitOfWork
from .payloads import AddressIn
from .repositories import AddressRepository, UserRepository
from .schemas import Address

log = logging.getLogger(__name__)


class AddressService:
    def create_address(self, uow: UnitOfWork, user_id: str, request: AddressIn) -> Address:
        UserRepository(uow).get(user_id)
        addresses = AddressRepository(uow)
        first = not addresses.for_user(user_id)
        address = addresses.insert(Address(user_id=user_id, **request.model_dump()))
        if request.is_default or first:
            address = self.set_default(uow, user_id, address.id)
        log.info("Address %s added for user ID: %s", address.id, user_id)
        return address

    def list_addresses(self, uow: UnitOfWork, user_id: str) -> List[Address]:
        return AddressRepository(uow).for_user(user_id)

    def get_address(self, uow: UnitOfWork, user_id: str, address_id: str) -> Address:
        return AddressRepository(uow).get_for_user(user_id, address_id)

    def update_address(self, uow: UnitOfWork, user_id: str, address_id: str, request: AddressIn) -> Address:
        addresses = AddressRepository(uow)
        addresses.get_for_user(user_id, address_id)
        changes = request.model_dump()
        make_default = changes.pop("is_default")
        address = addresses.update(address_id, changes)
        if make_default:
            address = self.set_default(uow, user_id, address_id)
        return address

    def set_default(self, uow: UnitOfWork, user_id: str, address_id: str) -> Address:
        addresses = AddressRepository(uow)
        addresses.get_for_user(user_id, address_id)
        addresses.clear_default(user_id, keep_id=address_id)
        return addresses.update(address_id, {"is_default": True})

    def delete_address(self, uow: UnitOfWork, user_id: str, address_id: str) -> None:
        """Soft delete; orders keep pointing at the address."""
        addresses = AddressRepository(uow)
        addresses.get_for_user(user_id, address_id)
        addresses.update(address_id, {"active": False, "is_default": False})
        log.info("Address %s removed for user ID: %s", address_id, user_id)
