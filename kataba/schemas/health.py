from kataba.schemas.common import CamelModel


class HealthServices(CamelModel):
    chat: bool
    database: bool


class HealthResponse(CamelModel):
    status: str  # "ok" or "degraded"
    timestamp: str
    services: HealthServices
    version: str = "0.1.0"
