from sqlalchemy import Column, Integer, String

from shiftdesk.database import Base


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, index=True)
    display_name = Column(String, nullable=False, default="")
    avatar_url = Column(String, nullable=True)
    role = Column(String, nullable=False, default="employee")
