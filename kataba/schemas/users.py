from kataba.schemas.common import CamelModel


class UserResponse(CamelModel):
    id: str
    email: str
    name: str
    image_url: str | None = None
    created_at: float
    updated_at: float
