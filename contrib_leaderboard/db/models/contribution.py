from datetime import date, datetime
from enum import Enum

from sqlalchemy import Date, DateTime, Index, Uuid, func
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from contrib_leaderboard.db.models.base import Base, TimestampMixin


class ContribProvider(str, Enum):
    GITHUB = "github"
    GITLAB = "gitlab"


provider_enum = SAEnum(
    ContribProvider,
    name="contrib_provider",
    values_callable=lambda members: [m.value for m in members],
)


class ContribDaily(Base, TimestampMixin):
    """One row per (user, provider, UTC day). Counts are overwritten, never added."""

    __tablename__ = "contrib_daily"

    user_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True)
    provider: Mapped[ContribProvider] = mapped_column(provider_enum, primary_key=True)
    date_utc: Mapped[date] = mapped_column(Date, primary_key=True)

    commits: Mapped[int] = mapped_column(default=0, server_default="0", nullable=False)
    prs: Mapped[int] = mapped_column(default=0, server_default="0", nullable=False)
    issues: Mapped[int] = mapped_column(default=0, server_default="0", nullable=False)

    __table_args__ = (
        Index(
            "contrib_daily_user_prov_day_uidx",
            "user_id",
            "provider",
            "date_utc",
            unique=True,
        ),
        Index("contrib_daily_provider_day_idx", "provider", "date_utc"),
        Index("contrib_daily_user_day_idx", "user_id", "date_utc"),
    )

    def __repr__(self) -> str:
        return f"<ContribDaily {self.provider} user_id={self.user_id} {self.date_utc}>"


class ContribTotals(Base):
    """Pre-aggregated rolling-window totals, recomputed from ``contrib_daily``."""

    __tablename__ = "contrib_totals"

    user_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True)
    provider: Mapped[ContribProvider] = mapped_column(provider_enum, primary_key=True)

    all_time: Mapped[int] = mapped_column(default=0, server_default="0", nullable=False)
    last_30d: Mapped[int] = mapped_column(default=0, server_default="0", nullable=False)
    last_365d: Mapped[int] = mapped_column(default=0, server_default="0", nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("contrib_totals_user_prov_uidx", "user_id", "provider", unique=True),
        Index("contrib_totals_user_idx", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<ContribTotals {self.provider} user_id={self.user_id} all={self.all_time}>"
