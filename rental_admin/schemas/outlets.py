from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class OutletSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    image: Optional[str] = Field(default=None, max_length=1000)
    user_id: str = Field(min_length=1)
