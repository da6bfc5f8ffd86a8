from pydantic import BaseModel


class RequestInfo(BaseModel):
    method: str
    path: str
    app_id: int
    ip_address: str | None = None
    user_agent: str | None = None


class Identity(BaseModel):
    id: int
    username: str
    role: int


class HealthStatus(BaseModel):
    status: str
    version: str


class ErrorResponse(BaseModel):
    message: str
