"""
models.py

SQLAlchemy models for User, Movie, ReleaseDate, Follow and Notification.
"""
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Float, Text, UniqueConstraint, Index, JSON
from sqlalchemy.orm import declarative_base, relationship
from releasetracker.utils.timezone import utc_now

Base = declarative_base()


class User(Base):
    __tablename__ = "users"
    id = Column(String, primary_key=True)
    email = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    follows = relationship("Follow", back_populates="user", cascade="all, delete-orphan")


class Movie(Base):
    __tablename__ = "movies"
    id = Column(Integer, primary_key=True, autoincrement=False)  # TMDB movie id
    title = Column(String, nullable=False)
    poster_path = Column(String, nullable=True)
    release_date = Column(String, nullable=True)  # primary release date as reported by the catalog
    overview = Column(Text, nullable=True)
    popularity = Column(Float, nullable=True)
    vote_average = Column(Float, nullable=True)
    # Last date-discovery refresh attempt; NULL sorts first so overflow rotates between runs
    release_dates_checked_at = Column(DateTime(timezone=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    release_dates = relationship("ReleaseDate", back_populates="movie", cascade="all, delete-orphan")
    follows = relationship("Follow", back_populates="movie")


class ReleaseDate(Base):
    """One release-date fact; never holds negative information."""
    __tablename__ = "release_dates"
    id = Column(Integer, primary_key=True)
    movie_id = Column(Integer, ForeignKey("movies.id", ondelete="CASCADE"), nullable=False, index=True)
    country = Column(String(2), nullable=False)
    release_type = Column(Integer, nullable=False)  # 1..6, see schemas.ReleaseType
    release_date = Column(String(10), nullable=False)  # YYYY-MM-DD
    certification = Column(String, nullable=True)
    last_validated_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    movie = relationship("Movie", back_populates="release_dates")

    __table_args__ = (
        UniqueConstraint("movie_id", "country", "release_type", name="uq_release_dates_movie_country_type"),
    )


class Follow(Base):
    __tablename__ = "follows"
    id = Column(Integer, primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    movie_id = Column(Integer, ForeignKey("movies.id", ondelete="CASCADE"), nullable=False, index=True)
    follow_type = Column(String(16), nullable=False)  # THEATRICAL | STREAMING | BOTH
    created_at = Column(DateTime(timezone=True), default=utc_now)

    user = relationship("User", back_populates="follows")
    movie = relationship("Movie", back_populates="follows")

    __table_args__ = (
        UniqueConstraint("user_id", "movie_id", "follow_type", name="uq_follows_user_movie_type"),
    )


class Notification(Base):
    """Permanent notification log; rows are inserted once and never updated."""
    __tablename__ = "notifications"
    id = Column(Integer, primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    movie_id = Column(Integer, ForeignKey("movies.id", ondelete="CASCADE"), nullable=False)
    notification_type = Column(String(32), nullable=False)  # THEATRICAL_RELEASE | STREAMING_RELEASE | DATE_DISCOVERED
    email_status = Column(String(16), nullable=False, default="SENT")
    metadata_json = Column("metadata", JSON, nullable=True)
    sent_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        Index("ix_notifications_user_movie_type", "user_id", "movie_id", "notification_type"),
    )
