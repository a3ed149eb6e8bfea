import json
import uuid
from typing import List
from sqlalchemy import Column, String, Text, Integer
from sqlalchemy.orm import relationship

from ..database import Base


class Room(Base):
    """
    A bookable resource with one exclusive timeline.

    Rows are provisioned by the room catalog; the booking core only reads
    them and locks them to serialize admissions.
    """
    __tablename__ = "rooms"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(200), nullable=False)
    min_capacity = Column(Integer, nullable=False, default=1)
    max_capacity = Column(Integer, nullable=False, default=1)
    description = Column(Text, nullable=True)
    features = Column(Text, nullable=True)  # JSON list of tags

    bookings = relationship("Booking", back_populates="room")

    @property
    def feature_list(self) -> List[str]:
        if not self.features:
            return []
        try:
            value = json.loads(self.features)
        except (json.JSONDecodeError, TypeError):
            return []
        return [str(tag) for tag in value] if isinstance(value, list) else []

    def __repr__(self):
        return f"<Room {self.name}>"
