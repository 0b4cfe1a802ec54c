from pydantic import BaseModel, ConfigDict, Field


class TokenMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    redirect_url: str = Field(alias="redirectUrl")
    created_at: int = Field(alias="createdAt", description="ms since epoch")
    ttl_seconds: int = Field(alias="ttlSeconds")
    uses: int = Field(default=0, ge=0)
    last_used_at: int | None = Field(default=None, alias="lastUsedAt")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @property
    def expires_at_ms(self) -> int:
        return self.created_at + self.ttl_seconds * 1000


class MintRequest(BaseModel):
    url: str | None = None
    redirect: str | None = None
    ttl: int | str | None = None

    @property
    def redirect_url(self) -> str | None:
        return self.url or self.redirect


class MintResponse(BaseModel):
    token: str
    expires_in: int


class RedeemRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    t: str | None = None
    token: str | None = None
    cf_turnstile_response: str | None = Field(default=None, alias="cf-turnstile-response")
    turnstile_response: str | None = None

    @property
    def token_value(self) -> str | None:
        return self.t or self.token

    @property
    def challenge(self) -> str | None:
        return self.cf_turnstile_response or self.turnstile_response


class RedeemResponse(BaseModel):
    ok: bool = True
    url: str
