"""
System configuration entries.
"""
import enum
import json
from sqlalchemy import Boolean, String, Text, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


class ConfigType(str, enum.Enum):
    STRING = "string"
    INT = "int"
    BOOL = "bool"
    JSON = "json"


def parse_config_value(type: ConfigType, value: str):
    """
    Convert a stored string to the Python value of its declared type.

    Raises:
        ValueError: value does not match the type
    """
    if type == ConfigType.INT:
        return int(value)
    if type == ConfigType.BOOL:
        lowered = value.strip().lower()
        if lowered not in ("true", "false", "1", "0"):
            raise ValueError(f"{value!r} is not a boolean")
        return lowered in ("true", "1")
    if type == ConfigType.JSON:
        return json.loads(value)
    return value


class SystemConfig(Base, TimestampMixin):
    """
    Key/value setting managed by super admins.

    Values are stored as text and interpreted according to `type`.
    Public entries may be shown to clients without system:config.
    """
    __tablename__ = "system_configs"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    value: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[ConfigType] = mapped_column(
        SQLEnum(ConfigType),
        nullable=False,
        default=ConfigType.STRING
    )
    group: Mapped[str] = mapped_column(String(50), nullable=False, default="general", index=True)
    description: Mapped[str | None] = mapped_column(String(255))
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<SystemConfig(key={self.key!r}, type={self.type.value})>"
