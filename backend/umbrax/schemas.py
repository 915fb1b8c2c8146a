from __future__ import annotations

import re
import uuid
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

HABBO_NAME_RE = re.compile(r"^[a-zA-Z0-9._:-]+$")


class _CamelIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class LoginIn(_CamelIn):
    habbo_name: str = Field(alias="habboName", min_length=1, max_length=25)
    password: str = Field(min_length=1)
    remember_me: bool = Field(default=False, alias="rememberMe")


class RegisterIn(_CamelIn):
    habbo_name: str = Field(alias="habboName", min_length=3, max_length=25)
    password: str = Field(min_length=8, max_length=100)
    password_confirm: str = Field(alias="passwordConfirm")
    privacy_consent: bool = Field(alias="privacyConsent")
    remember_me: bool = Field(default=False, alias="rememberMe")

    @field_validator("habbo_name")
    @classmethod
    def _name_charset(cls, v: str) -> str:
        if not HABBO_NAME_RE.match(v):
            raise ValueError("only letters, digits, dots, dashes, underscores and colons are allowed")
        return v

    @field_validator("privacy_consent")
    @classmethod
    def _consent_given(cls, v: bool) -> bool:
        if not v:
            raise ValueError("the privacy policy must be accepted")
        return v

    @model_validator(mode="after")
    def _passwords_match(self) -> "RegisterIn":
        if self.password != self.password_confirm:
            raise ValueError("passwords do not match")
        return self


class TimeRequestIn(_CamelIn):
    subject_user_id: str = Field(alias="subjectUserId")
    notes: str | None = Field(default=None, max_length=500)

    @field_validator("subject_user_id")
    @classmethod
    def _is_uuid(cls, v: str) -> str:
        return str(uuid.UUID(v))


class TimeRequestAnswerIn(_CamelIn):
    action: Literal["approve", "reject"]
    response_notes: str | None = Field(default=None, alias="responseNotes", max_length=500)


class UserUpdateIn(_CamelIn):
    # exactly one of rank_id / is_sovereign is acted on, rank first
    rank_id: int | None = Field(default=None, alias="rankId", ge=1, le=10)
    is_sovereign: bool | None = Field(default=None, alias="isSovereign")
    reason: str = Field(min_length=10)


class UserDeleteIn(BaseModel):
    reason: str = Field(min_length=10)
