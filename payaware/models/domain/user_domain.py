from pydantic import BaseModel


class User(BaseModel):
    """The slice of a user record the reminder pipeline reads."""

    id: int
    name: str = ""
    email: str = ""
    device_token: str | None = None

    def has_device_token(self) -> bool:
        return bool(self.device_token and self.device_token.strip())
