from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON
from datetime import datetime
from rakhimart.utils.clock import UtcDateTime, utc_now


class AppSetting(SQLModel, table=True):
    __tablename__ = "app_setting"

    key: str = Field(primary_key=True)
    value: dict = Field(sa_column=Column(JSON, nullable=False))

    updated_at: datetime = Field(default_factory=utc_now, sa_type=UtcDateTime)
