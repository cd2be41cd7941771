from pydantic import Field

from pbn_builder.models.base import CamelModel


class Credentials(CamelModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1, max_length=72)


class PasswordUpdate(CamelModel):
    current_password: str = Field(min_length=1, max_length=72)
    new_password: str = Field(min_length=1, max_length=72)


class Token(CamelModel):
    token: str
