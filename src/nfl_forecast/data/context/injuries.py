"""
Injury report index.

Reports are classified into severity buckets from free-text status and
practice participation, then aggregated per team into a snapshot "as of" a
given week: only the team's latest report at or before that week counts,
one entry per player.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

import pandas as pd

log = logging.getLogger(__name__)

SKILL_POSITIONS = frozenset({"QB", "RB", "WR", "TE"})
OL_POSITIONS = frozenset({"LT", "RT", "LG", "RG", "C", "OL", "T", "G", "OT", "OG"})

SNAPSHOT_FIELDS = (
    "total",
    "out",
    "doubtful",
    "questionable",
    "skill_out",
    "skill_questionable",
    "ol_out",
    "ol_questionable",
    "practice_dnp",
    "practice_limited",
)

_OUT_PATTERN = re.compile(r"\b(out|injured reserve|ir|susp\w*|pup|nfi|covid\w*|reserve)\b")
_DNP_PATTERN = re.compile(r"(did not|no practice|\bdnp\b|\bout\b)")


def classify_status(text: object) -> str | None:
    """Map a report status to "out", "doubtful" or "questionable" (None if healthy/unknown)."""
    if text is None or (isinstance(text, float) and pd.isna(text)):
        return None
    s = str(text).strip().lower()
    if not s:
        return None
    if _OUT_PATTERN.search(s):
        return "out"
    if "doubt" in s:
        return "doubtful"
    if "question" in s or "probable" in s or "game-time" in s or "game time" in s:
        return "questionable"
    return None


def classify_practice(text: object) -> str | None:
    """Map practice participation to "dnp" or "limited"."""
    if text is None or (isinstance(text, float) and pd.isna(text)):
        return None
    s = str(text).strip().lower()
    if not s:
        return None
    if _DNP_PATTERN.search(s):
        return "dnp"
    if "limited" in s:
        return "limited"
    return None


def empty_snapshot() -> dict[str, int]:
    return {name: 0 for name in SNAPSHOT_FIELDS}


@dataclass
class InjuryIndex:
    """
    Per-team injury snapshots keyed by ``(season, week, team)``.

    Build with :meth:`from_reports`; query with :meth:`snapshot`.
    """

    reports: pd.DataFrame = field(default_factory=pd.DataFrame)
    _cache: dict[tuple[int, int, str], dict[str, int]] = field(default_factory=dict, repr=False)

    @classmethod
    def from_reports(cls, reports: pd.DataFrame) -> "InjuryIndex":
        """Classify and deduplicate normalized injury rows."""
        if reports is None or reports.empty or not {"season", "week", "team"}.issubset(reports.columns):
            return cls(pd.DataFrame(columns=["season", "week", "team", "player", "position", "status", "practice"]))

        df = reports[reports["team"].notna()].copy()
        if "player" not in df.columns:
            df["player"] = df.index.astype(str)
        df["position"] = (
            df["position"].astype(str).str.upper().str.strip() if "position" in df.columns else ""
        )
        df["status"] = df["report_status"].map(classify_status) if "report_status" in df.columns else None
        df["practice"] = (
            df["practice_status"].map(classify_practice) if "practice_status" in df.columns else None
        )

        # practice downgrade with no game status still signals risk
        no_status = df["status"].isna() & df["practice"].notna()
        df.loc[no_status, "status"] = "questionable"

        sort_cols = ["season", "week"] + (["date_modified"] if "date_modified" in df.columns else [])
        df = df.sort_values(sort_cols)
        df = df.drop_duplicates(["season", "week", "team", "player"], keep="last")
        keep = ["season", "week", "team", "player", "position", "status", "practice"]
        return cls(df[keep].reset_index(drop=True))

    def snapshot(self, season: int, week: int, team: str) -> dict[str, int]:
        """Counts for `team` from its latest report with report week <= `week`."""
        key = (int(season), int(week), str(team))
        if key in self._cache:
            return dict(self._cache[key])

        df = self.reports
        snap = empty_snapshot()
        if not df.empty:
            rows = df[(df["season"] == key[0]) & (df["team"] == key[2]) & (df["week"] <= key[1])]
            if not rows.empty:
                # the team's most recent report supersedes older ones
                rows = rows[rows["week"] == rows["week"].max()]
                rows = rows[rows["status"].notna() | rows["practice"].notna()]
            for row in rows.itertuples(index=False):
                _accumulate(snap, row.status, row.practice, row.position)

        self._cache[key] = snap
        return dict(snap)


def _accumulate(snap: dict[str, int], status: str | None, practice: str | None, position: str) -> None:
    snap["total"] += 1
    is_skill = position in SKILL_POSITIONS
    is_ol = position in OL_POSITIONS

    if status == "out":
        snap["out"] += 1
        snap["skill_out"] += int(is_skill)
        snap["ol_out"] += int(is_ol)
    elif status == "doubtful":
        snap["doubtful"] += 1
    elif status == "questionable":
        snap["questionable"] += 1
        snap["skill_questionable"] += int(is_skill)
        snap["ol_questionable"] += int(is_ol)

    if practice == "dnp":
        snap["practice_dnp"] += 1
    elif practice == "limited":
        snap["practice_limited"] += 1
