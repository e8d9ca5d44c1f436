from pydantic import BaseModel, ConfigDict


class SessionExchangeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    sessionToken: str
