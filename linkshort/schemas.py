from pydantic import BaseModel, Field, HttpUrl, TypeAdapter, ValidationError, field_validator
from typing import List, Optional
from datetime import datetime, timezone
import string
import uuid

RESERVED_CODES = {"health", "metrics", "docs", "redoc", "openapi.json", "v1"}

_http_url = TypeAdapter(HttpUrl)

# Characters the redirect response puts in Location unescaped; anything else
# would be percent-encoded and no longer match the stored URL
LOCATION_SAFE = frozenset(string.ascii_letters + string.digits + "_.-~" + ":/%#?=@[]!$&'()*+,;")

class LinkCreate(BaseModel):
    original_url: str = Field(..., max_length=2048)
    custom_short_code: Optional[str] = Field(None, min_length=3, max_length=32, pattern="^[a-zA-Z0-9_-]+$")
    expired_at: Optional[datetime] = None

    @field_validator("original_url")
    @classmethod
    def check_url(cls, v: str) -> str:
        # Validate as a URL but keep the caller's spelling, redirects must return it verbatim
        try:
            _http_url.validate_python(v)
        except ValidationError:
            raise ValueError("original_url must be an absolute http(s) URL")
        unsafe = sorted(set(v) - LOCATION_SAFE)
        if unsafe:
            raise ValueError(f"original_url must be percent-encoded, found {''.join(unsafe)!r}")
        return v

    @field_validator("custom_short_code")
    @classmethod
    def check_not_reserved(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v.lower() in RESERVED_CODES:
            raise ValueError("custom_short_code is reserved")
        return v

    @field_validator("expired_at")
    @classmethod
    def check_future(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is None:
            return v
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        v = v.astimezone(timezone.utc)
        if v <= datetime.now(timezone.utc):
            raise ValueError("expired_at must be in the future")
        return v

class TypeValue(BaseModel):
    type: str
    value: int

class LinkResponse(BaseModel):
    id: uuid.UUID
    original_url: str
    short_code: str
    custom_short_code: Optional[str]
    short_url: str
    click_count: int
    expired_at: Optional[datetime]
    created_at: datetime

class LinkDetail(LinkResponse):
    device_breakdowns: List[TypeValue] = []
    top_countries: List[TypeValue] = []
