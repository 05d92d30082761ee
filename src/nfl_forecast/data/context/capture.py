from __future__ import annotations

import re

import pandas as pd

GameKey = tuple[int, int, str, str]

KEY_COLUMNS = ("season", "week", "home_team", "away_team")

_GAMETIME = re.compile(r"^\s*(\d{1,2}):(\d{2})")


def index_by_game(frame: pd.DataFrame | None) -> dict[GameKey, list[pd.Series]]:
    """All rows per (season, week, home_team, away_team), oldest `fetched_at` first."""
    if frame is None or frame.empty or not set(KEY_COLUMNS).issubset(frame.columns):
        return {}
    ordered = frame
    if "fetched_at" in frame.columns:
        ordered = frame.sort_values("fetched_at", kind="stable", na_position="first")
    out: dict[GameKey, list[pd.Series]] = {}
    for _, row in ordered.iterrows():
        if row["home_team"] is None or row["away_team"] is None:
            continue
        key = (int(row["season"]), int(row["week"]), row["home_team"], row["away_team"])
        out.setdefault(key, []).append(row)
    return out


def game_key(game: pd.Series) -> GameKey:
    return (int(game["season"]), int(game["week"]), game["home_team"], game["away_team"])


def kickoff_time(game: pd.Series) -> tuple[pd.Timestamp | None, bool]:
    """
    Kickoff timestamp of `game` and whether it carries a time of day.

    ``gametime`` ("HH:MM", schedule wall clock) is added to ``game_date``
    when present; a ``game_date`` that already has a time of day is used
    as is.
    """
    date = game.get("game_date")
    if date is None or pd.isna(date):
        return None, False
    date = pd.Timestamp(date)
    if date.tzinfo is not None:
        date = date.tz_convert("UTC").tz_localize(None)

    match = _GAMETIME.match(str(game.get("gametime") or ""))
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
        if hours < 24 and minutes < 60:
            return date.normalize() + pd.Timedelta(hours=hours, minutes=minutes), True
    if date != date.normalize():
        return date, True
    return date, False


def captured_pre_game(row: pd.Series, game: pd.Series) -> bool:
    """
    True when the feed row was captured at or before kickoff.

    Full timestamps are compared when the kickoff time is known; otherwise
    only the calendar dates are.
    """
    fetched = row.get("fetched_at")
    if fetched is None or pd.isna(fetched):
        return False
    kickoff, timed = kickoff_time(game)
    if kickoff is None:
        return False
    fetched = pd.Timestamp(fetched)
    if fetched.tzinfo is not None:
        fetched = fetched.tz_convert("UTC").tz_localize(None)
    if timed:
        return fetched <= kickoff
    return fetched.normalize() <= kickoff.normalize()


def usable_feed_row(
    rows: dict[GameKey, list[pd.Series]], game: pd.Series, historical: bool
) -> pd.Series | None:
    """
    Feed row for `game`, or None.

    Upcoming games use the newest capture. For already-played games only
    captures taken before kickoff count, and the newest of those wins.
    """
    captures = rows.get(game_key(game))
    if not captures:
        return None
    if not historical:
        return captures[-1]
    for row in reversed(captures):
        if captured_pre_game(row, game):
            return row
    return None


def index_schedule_feed(feed: pd.DataFrame | None, base_games: pd.DataFrame) -> dict[GameKey, pd.Series]:
    """
    Newest row per game for feeds keyed by date and teams (e.g. Elo files).

    Season and week come from the schedule: a feed row is matched on its
    calendar day and home/away teams, so January playoff dates land in the
    season that started the previous autumn.
    """
    if feed is None or feed.empty or not {"home_team", "away_team"}.issubset(feed.columns):
        return {}
    if {"season", "week"}.issubset(feed.columns):
        keyed = feed
    elif "game_date" in feed.columns and "game_date" in base_games.columns:
        games = base_games[["season", "week", "home_team", "away_team"]].copy()
        games["_day"] = pd.to_datetime(base_games["game_date"], errors="coerce").dt.normalize()
        rows = feed.drop(columns=[c for c in ("season", "week") if c in feed.columns])
        rows = rows.assign(_day=pd.to_datetime(rows["game_date"], errors="coerce").dt.normalize())
        keyed = rows.merge(games, on=["_day", "home_team", "away_team"], how="inner").drop(columns="_day")
    else:
        return {}
    return {key: captures[-1] for key, captures in index_by_game(keyed).items()}
