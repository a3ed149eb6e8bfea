from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class Actor(BaseModel):
    """The authenticated caller, passed explicitly into every core operation"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str = ""
    email: Optional[str] = None
    is_admin: bool = False
