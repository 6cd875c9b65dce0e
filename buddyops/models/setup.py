from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class SetupPayload(BaseModel):
    """Body of ``POST /setup/api/run``. Built once per orchestration attempt, never persisted."""

    model_config = ConfigDict(populate_by_name=True)

    flow: str = "quickstart"
    auth_choice: str = Field(default="gemini-api-key", alias="authChoice")
    auth_secret: str = Field(..., alias="authSecret")
    model: str
    telegram_token: str = Field(..., alias="telegramToken")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class SetupRunResponse(BaseModel):
    ok: bool = False
    output: Optional[str] = None


class ConfigPatchRequest(BaseModel):
    path: str
    value: Any
