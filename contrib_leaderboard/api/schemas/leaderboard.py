from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

WindowParam = Literal["all", "30d", "365d"]
ProviderParam = Literal["combined", "github", "gitlab"]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class LeaderboardEntry(CamelModel):
    user_id: str
    score: int


class LeaderboardPageResponse(CamelModel):
    ok: bool = True
    window: WindowParam
    provider: ProviderParam
    limit: int
    cursor: int
    next_cursor: int | None
    source: Literal["redis", "db"]
    entries: list[LeaderboardEntry]


class UserIdsRequest(CamelModel):
    user_ids: list[str] = Field(..., min_length=1, max_length=200)


class DetailsRequest(UserIdsRequest):
    window: WindowParam = "30d"


class ProfileEntry(CamelModel):
    user_id: str
    username: str | None = None
    avatar_url: str | None = None
    github_login: str | None = None
    gitlab_username: str | None = None


class ProfilesResponse(CamelModel):
    ok: bool = True
    entries: list[ProfileEntry]


class DetailsEntry(CamelModel):
    user_id: str
    github: int
    gitlab: int
    total: int


class DetailsResponse(CamelModel):
    ok: bool = True
    window: WindowParam
    entries: list[DetailsEntry]


class _IdentityRequest(CamelModel):
    user_id: str = Field(..., min_length=1)
    github_login: str | None = Field(None, min_length=1)
    gitlab_username: str | None = Field(None, min_length=1)
    concurrency: int | None = Field(None, ge=1, le=8)

    @model_validator(mode="after")
    def require_identity(self) -> "_IdentityRequest":
        if not self.github_login and not self.gitlab_username:
            raise ValueError("At least one of githubLogin or gitlabUsername is required.")
        return self


class RefreshDayRequest(_IdentityRequest):
    from_day_utc: str | None = Field(None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    to_day_utc: str | None = Field(None, pattern=r"^\d{4}-\d{2}-\d{2}$")


class BackfillRequest(_IdentityRequest):
    days: int | None = Field(None, ge=1, le=365)


class DayWindow(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(..., alias="from")
    to: str


class RefreshResponse(CamelModel):
    ok: bool = True
    user_id: str
    providers: list[str]
    range: DayWindow
    days_refreshed: list[str]
    concurrency: int
