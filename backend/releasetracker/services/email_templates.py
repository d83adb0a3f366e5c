"""
email_templates.py

HTML bodies for release notifications, rendered with Jinja2 (autoescaped)
inside one shared layout.
"""
from typing import List, Optional

from jinja2 import DictLoader, Environment, select_autoescape

from releasetracker.schemas import MovieDateUpdate, MovieSummary, UserContact
from releasetracker.services.tmdb_client import poster_url
from releasetracker.utils.timezone import parse_date

GOLD = "#f3d96b"

_LAYOUT = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Movie Release Tracker</title>
</head>
<body style="margin: 0; padding: 0; background-color: #0a0a0a; font-family: system-ui, -apple-system, 'Segoe UI', Roboto, sans-serif;">
  <table role="presentation" width="100%" cellpadding="0" cellspacing="0" style="background-color: #0a0a0a;">
    <tr>
      <td align="center" style="padding: 40px 20px;">
        <table role="presentation" width="600" cellpadding="0" cellspacing="0" style="max-width: 600px; background-color: #1a1a1a; border-radius: 12px;">
          <tr>
            <td style="background: {{ gold }}; padding: 40px 32px; text-align: center;">
              <h1 style="margin: 0; font-size: 28px; color: #0a0a0a;">{{ header }}</h1>
              <p style="margin: 12px 0 0 0; font-size: 16px; color: #1a1a1a;">{{ subheader }}</p>
            </td>
          </tr>
          <tr>
            <td style="padding: 40px 32px; color: #ededed;">
              {% if user.name %}<p style="margin: 0 0 24px 0;">Hi {{ user.name }},</p>{% endif %}
              {% block body %}{% endblock %}
            </td>
          </tr>
          <tr>
            <td style="padding: 32px; text-align: center; background-color: #0a0a0a; border-top: 1px solid #262626;">
              <p style="margin: 0 0 12px 0; font-size: 14px; color: #a3a3a3;">Movie Release Tracker</p>
              <p style="margin: 0; font-size: 12px;"><a href="{% raw %}{{unsubscribe}}{% endraw %}" style="color: #a3a3a3;">Unsubscribe</a></p>
            </td>
          </tr>
        </table>
      </td>
    </tr>
  </table>
</body>
</html>
"""

_MOVIE_CARD = """
<table role="presentation" width="100%" cellpadding="0" cellspacing="0" style="margin-bottom: 24px; border: 1px solid #333; border-radius: 12px;">
  <tr>
    <td width="120" style="padding: 16px;">
      <img src="{{ poster(movie.poster_path, 'w342') }}" alt="{{ movie.title }}" width="120" height="180" style="border-radius: 8px; display: block;" />
    </td>
    <td style="padding: 16px; vertical-align: top;">
      <h3 style="margin: 0 0 12px 0; font-size: 20px; color: {{ gold }};">{{ movie.title }}</h3>
      {% for line in lines %}<p style="margin: 0 0 4px 0; font-size: 16px;">{{ line }}</p>{% endfor %}
      {% if movie.vote_average %}<p style="margin: 0 0 8px 0; font-size: 14px;">{{ '%.1f' % movie.vote_average }}/10</p>{% endif %}
      <a href="{{ movie_url(movie) }}" style="display: inline-block; padding: 10px 20px; background: {{ gold }}; color: #0a0a0a; text-decoration: none; border-radius: 6px;">{{ cta }}</a>
    </td>
  </tr>
</table>
"""

_TEMPLATES = {
    "layout.html": _LAYOUT,
    "movie_card.html": _MOVIE_CARD,
    "date_discovered.html": """{% extends "layout.html" %}{% block body %}
<div style="text-align: center;">
  <img src="{{ poster(update.movie.poster_path) }}" alt="{{ update.movie.title }}" width="200" height="300" style="border-radius: 8px; display: block; margin: 0 auto;" />
  <h2 style="font-size: 24px; color: {{ gold }}; margin: 24px 0 16px 0;">{{ update.movie.title }}</h2>
  <p style="margin: 0 0 4px 0; font-size: 20px; color: {{ gold }};">{{ release_date }}</p>
  <p style="margin: 0 0 24px 0; font-size: 14px; color: #a3a3a3;">{{ release_label }}</p>
  <a href="{{ movie_url(update.movie) }}" style="display: inline-block; padding: 16px 32px; background: {{ gold }}; color: #0a0a0a; text-decoration: none; border-radius: 8px;">View Movie Details</a>
  <p style="margin: 16px 0 0 0; font-size: 14px; color: #a3a3a3;">We'll notify you again when this movie is released!</p>
</div>
{% endblock %}""",
    "batch_date_discovered.html": """{% extends "layout.html" %}{% block body %}
<p style="margin: 0 0 24px 0; font-size: 16px;">We found release dates for <strong style="color: {{ gold }};">{{ cards|length }}</strong> {{ 'movie' if cards|length == 1 else 'movies' }} you're following.</p>
{% for card in cards %}{% with movie=card.movie, lines=card.lines, cta='View Details' %}{% include "movie_card.html" %}{% endwith %}{% endfor %}
{% endblock %}""",
    "release.html": """{% extends "layout.html" %}{% block body %}
<div style="text-align: center;">
  <img src="{{ poster(movie.poster_path) }}" alt="{{ movie.title }}" width="200" height="300" style="border-radius: 8px; display: block; margin: 0 auto;" />
  <h2 style="font-size: 28px; color: {{ gold }}; margin: 24px 0 8px 0;">{{ movie.title }}</h2>
  {% if movie.vote_average %}<p style="margin: 0 0 16px 0;">{{ '%.1f' % movie.vote_average }}/10</p>{% endif %}
  <p style="margin: 0 0 24px 0; font-size: 22px; color: {{ gold }};">{{ release_label }}</p>
  <a href="{{ movie_url(movie) }}" style="display: inline-block; padding: 18px 40px; background: {{ gold }}; color: #0a0a0a; text-decoration: none; border-radius: 8px;">{{ cta }}</a>
</div>
{% endblock %}""",
    "batch_release.html": """{% extends "layout.html" %}{% block body %}
<p style="margin: 0 0 24px 0; font-size: 16px;"><strong style="color: {{ gold }};">{{ total }}</strong> {{ 'movie' if total == 1 else 'movies' }} you're following {{ 'is' if total == 1 else 'are' }} available today!</p>
{% if theatrical %}<h2 style="font-size: 22px; color: {{ gold }};">Now in Theaters ({{ theatrical|length }})</h2>
{% for movie in theatrical %}{% with lines=[], cta='Find Showtimes' %}{% include "movie_card.html" %}{% endwith %}{% endfor %}{% endif %}
{% if streaming %}<h2 style="font-size: 22px; color: {{ gold }};">Available for Streaming ({{ streaming|length }})</h2>
{% for movie in streaming %}{% with lines=[], cta='Stream Now' %}{% include "movie_card.html" %}{% endwith %}{% endfor %}{% endif %}
{% endblock %}""",
    "test.html": """<h1>Test Email</h1>
<p>This is a test email from Movie Release Tracker.</p>
<p>If you're seeing this, your email configuration is working correctly!</p>""",
}


def format_date(value) -> str:
    """YYYY-MM-DD -> 'Month D, YYYY'; unparsable input is returned as-is."""
    parsed = parse_date(value)
    if parsed is None:
        return str(value) if value is not None else ""
    return f"{parsed.strftime('%B')} {parsed.day}, {parsed.year}"


def _plural(count: int, word: str) -> str:
    return f"{count} {word if count == 1 else word + 's'}"


class EmailTemplates:
    def __init__(self, app_url: str = "http://localhost:3000"):
        self.app_url = app_url.rstrip("/")
        self.env = Environment(loader=DictLoader(_TEMPLATES), autoescape=select_autoescape(default=True))
        self.env.globals.update(gold=GOLD, poster=self.poster, movie_url=self.movie_url)

    def poster(self, path: Optional[str], size: str = "w500") -> str:
        return poster_url(path, size) or f"{self.app_url}/placeholder-poster.png"

    def movie_url(self, movie: MovieSummary) -> str:
        return f"{self.app_url}/movie/{movie.id}"

    def _render(self, name: str, **context) -> str:
        return self.env.get_template(name).render(**context)

    def date_discovered(self, user: UserContact, update: MovieDateUpdate) -> str:
        if update.theatrical_date:
            release_date, label = update.theatrical_date, "In Theaters"
        else:
            release_date, label = update.streaming_date, "Available for Streaming"
        return self._render(
            "date_discovered.html",
            user=user,
            update=update,
            header="Release Date Added!",
            subheader=f"{update.movie.title} now has a release date",
            release_date=format_date(release_date),
            release_label=label,
        )

    def batch_date_discovered(self, user: UserContact, updates: List[MovieDateUpdate]) -> str:
        cards = []
        for update in updates:
            lines = []
            if update.theatrical_date:
                lines.append(f"In Theaters: {format_date(update.theatrical_date)}")
            if update.streaming_date:
                lines.append(f"Streaming: {format_date(update.streaming_date)}")
            cards.append({"movie": update.movie, "lines": lines})
        count = len(updates)
        return self._render(
            "batch_date_discovered.html",
            user=user,
            cards=cards,
            header="Release Dates Added!",
            subheader=f"{_plural(count, 'movie')} now {'has' if count == 1 else 'have'} release dates",
        )

    def release(self, user: UserContact, movie: MovieSummary, theatrical: bool) -> str:
        return self._render(
            "release.html",
            user=user,
            movie=movie,
            header="Now Available!",
            subheader=f"{movie.title} is out today",
            release_label="Now in Theaters" if theatrical else "Available for Streaming",
            cta="Find Showtimes" if theatrical else "Stream Now",
        )

    def batch_release(self, user: UserContact, theatrical: List[MovieSummary], streaming: List[MovieSummary]) -> str:
        total = len(theatrical) + len(streaming)
        return self._render(
            "batch_release.html",
            user=user,
            theatrical=theatrical,
            streaming=streaming,
            total=total,
            header="Available Today!",
            subheader=f"{total} {'movie is' if total == 1 else 'movies are'} now available",
        )

    def test(self) -> str:
        return self._render("test.html")


def release_subject(title: str, theatrical: bool) -> str:
    return f"Now Available: {title} ({'In Theaters' if theatrical else 'Streaming'})"


def batch_release_subject(count: int) -> str:
    return f"{_plural(count, 'Movie')} Available Today!"


def date_discovered_subject(title: str) -> str:
    return f"Release Date Added: {title}"


def batch_date_discovered_subject(count: int) -> str:
    return f"Release Dates Added: {_plural(count, 'Movie')}"
