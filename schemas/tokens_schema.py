from __future__ import annotations

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, model_validator


class accessTokenOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    accesstoken: str = Field(alias="_id")
    userId: str
    role: str = "user"
    status: str = "active"
    dateCreated: int | None = None

    @model_validator(mode="before")
    @classmethod
    def convert_objectid(cls, values):
        if isinstance(values, dict) and isinstance(values.get("_id"), ObjectId):
            values = {**values, "_id": str(values["_id"])}
        return values
