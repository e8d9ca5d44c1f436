from datetime import date

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RentalSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    rental_date: date
    return_date: date
    tool_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    outlet_id: str = Field(min_length=1)

    @model_validator(mode="after")
    def _return_not_before_rental(self):
        if self.return_date < self.rental_date:
            raise ValueError("return_date must be on or after rental_date.")
        return self
