# checkout/repos/address_repo.py
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from checkout.data.models.address import AddressModel


class AddressRepo:
    def __init__(self, db: Session):
        self.db = db

    def list_addresses(self, owner_id: int) -> list[AddressModel]:
        return list(
            self.db.execute(
                select(AddressModel)
                .where(AddressModel.owner_id == owner_id)
                .order_by(AddressModel.is_default.desc(), AddressModel.id.desc())
            ).scalars()
        )

    def count_addresses(self, owner_id: int) -> int:
        return self.db.execute(
            select(func.count(AddressModel.id)).where(AddressModel.owner_id == owner_id)
        ).scalar_one()

    def get_address(self, owner_id: int, address_id: int) -> AddressModel | None:
        return self.db.execute(
            select(AddressModel).where(
                AddressModel.id == address_id,
                AddressModel.owner_id == owner_id,
            )
        ).scalar_one_or_none()

    def add_address(self, address: AddressModel) -> AddressModel:
        self.db.add(address)
        self.db.flush()
        return address

    def unset_defaults(self, owner_id: int) -> int:
        return self.db.execute(
            update(AddressModel)
            .where(AddressModel.owner_id == owner_id, AddressModel.is_default.is_(True))
            .values(is_default=False)
            .execution_options(synchronize_session="fetch")
        ).rowcount

    def delete_address(self, address: AddressModel) -> None:
        self.db.delete(address)
        self.db.flush()

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
