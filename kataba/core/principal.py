"""Who is sending a request: a verified user or an anonymous guest."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Authenticated:
    user_id: str
    email: str = ""
    name: str = ""
    image_url: str | None = None


@dataclass(frozen=True)
class Guest:
    # Messages already sent in this browser session, as reported by the client
    message_count: int = 0


Principal = Authenticated | Guest
