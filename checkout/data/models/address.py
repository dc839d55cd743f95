from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String

from checkout.data.database import Base


class AddressModel(Base):
    __tablename__ = "addresses"

    id = Column(Integer, primary_key=True)
    owner_id = Column(Integer, nullable=False, index=True)

    full_name = Column(String, nullable=False)
    line1 = Column(String, nullable=False)
    city = Column(String, nullable=False)
    state = Column(String, nullable=False)
    zip_code = Column(String(6), nullable=False)
    phone = Column(String(10), nullable=False)
    is_default = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        #najwyzej jeden domyslny adres na uzytkownika, nawet przy rownoleglych zapisach
        Index(
            "u_owner_default_address",
            "owner_id",
            unique=True,
            postgresql_where=is_default.is_(True),
            sqlite_where=is_default.is_(True),
        ),
    )
