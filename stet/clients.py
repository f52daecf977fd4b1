from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from stet.oauth import OuraAuth, PlantaAuth

logger = logging.getLogger('stet')


# -----------------------------
# Oura
# -----------------------------
CONTRIBUTOR_LABELS = [
    ("activity_balance", "Activity balance"),
    ("body_temperature", "Body temperature"),
    ("hrv_balance", "HRV balance"),
    ("previous_day_activity", "Previous day"),
    ("previous_night", "Previous night"),
    ("recovery_index", "Recovery index"),
    ("resting_heart_rate", "Resting HR"),
    ("sleep_balance", "Sleep balance"),
]


@dataclass
class Readiness:
    day: str
    score: int
    temperature_deviation: float = 0.0
    contributors: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_api(cls, raw: dict) -> "Readiness":
        contributors = {k: int(v) for k, v in (raw.get("contributors") or {}).items() if v is not None}
        return cls(
            day=str(raw.get("day") or ""),
            score=int(raw.get("score") or 0),
            temperature_deviation=float(raw.get("temperature_deviation") or 0.0),
            contributors=contributors,
        )


@dataclass
class HeartRateSample:
    bpm: int
    source: str
    timestamp: dt.datetime

    @classmethod
    def from_api(cls, raw: dict) -> "HeartRateSample":
        ts = dt.datetime.fromisoformat(str(raw["timestamp"]).replace("Z", "+00:00"))
        return cls(bpm=int(raw.get("bpm") or 0), source=str(raw.get("source") or ""), timestamp=ts)


class OuraClient:
    BASE_URL = "https://api.ouraring.com/v2"

    def __init__(self, auth: OuraAuth):
        self.auth = auth

    def daily_readiness(self, day: dt.date) -> Optional[Readiness]:
        """Most recent readiness record for `day`; None before the ring has synced."""
        resp = self.auth.authorized_request(
            "GET", f"{self.BASE_URL}/usercollection/daily_readiness",
            params={"start_date": day.isoformat(), "end_date": day.isoformat()},
        )
        items = (resp.json() or {}).get("data") or []
        if not items:
            return None
        return Readiness.from_api(items[-1])

    def heart_rate(self, start: dt.datetime, end: dt.datetime) -> List[HeartRateSample]:
        resp = self.auth.authorized_request(
            "GET", f"{self.BASE_URL}/usercollection/heartrate",
            params={"start_datetime": start.isoformat(timespec="seconds"),
                    "end_datetime": end.isoformat(timespec="seconds")},
        )
        return [HeartRateSample.from_api(item) for item in (resp.json() or {}).get("data") or []]


# -----------------------------
# Planta
# -----------------------------
ACTION_TYPES = ["watering", "fertilizing", "misting", "cleaning", "repotting", "progressUpdate"]
COMPLETABLE_ACTIONS = {"watering", "fertilizing", "misting", "cleaning"}
ACTION_LABELS = {
    "watering": "Water",
    "fertilizing": "Fertilize",
    "misting": "Mist",
    "cleaning": "Clean",
    "repotting": "Repot",
    "progressUpdate": "Progress photo",
}


@dataclass
class PlantTask:
    plant_id: str
    plant_name: str
    action_type: str
    due_date: dt.date
    overdue: bool = False
    is_today: bool = False

    @property
    def completable(self) -> bool:
        return self.action_type in COMPLETABLE_ACTIONS


def plant_display_name(raw: dict) -> str:
    names = raw.get("names") or {}
    return names.get("custom") or names.get("localizedName") or names.get("scientific") or "Unnamed plant"


def _parse_due(value: str) -> Optional[dt.date]:
    try:
        return dt.datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    try:
        return dt.date.fromisoformat(value[:10])
    except ValueError:
        logger.warning("planta: unparsable action date %r", value)
        return None


class PlantaClient:
    BASE_URL = "https://public.planta-api.com/v1"

    def __init__(self, auth: PlantaAuth):
        self.auth = auth

    def plants(self) -> List[dict]:
        """All added plants, following the `pagination.nextPage` cursor."""
        out: List[dict] = []
        cursor: Optional[str] = None
        while True:
            params = {"cursor": cursor} if cursor else None
            resp = self.auth.authorized_request("GET", f"{self.BASE_URL}/addedPlants", params=params)
            body = resp.json() or {}
            out.extend(body.get("data") or [])
            cursor = (body.get("pagination") or {}).get("nextPage")
            if not cursor:
                return out

    def due_tasks(self, today: dt.date, within_days: int = 3) -> List[PlantTask]:
        cutoff = today + dt.timedelta(days=within_days)
        tasks: List[PlantTask] = []
        for plant in self.plants():
            actions = plant.get("actions") or {}
            for action in ACTION_TYPES:
                schedule = actions.get(action) or {}
                nxt = (schedule.get("next") or {}).get("date")
                if not nxt:
                    continue
                due = _parse_due(str(nxt))
                if due is None or due > cutoff:
                    continue
                tasks.append(PlantTask(
                    plant_id=str(plant.get("id") or ""),
                    plant_name=plant_display_name(plant),
                    action_type=action,
                    due_date=due,
                    overdue=due < today,
                    is_today=due == today,
                ))
        tasks.sort(key=lambda t: (t.due_date, t.plant_name.lower()))
        return tasks

    def complete_action(self, plant_id: str, action_type: str) -> None:
        if action_type not in COMPLETABLE_ACTIONS:
            raise ValueError(f"{action_type} cannot be completed from stet")
        resp = self.auth.authorized_request(
            "POST", f"{self.BASE_URL}/addedPlants/{plant_id}/actions/complete",
            json={"actionType": action_type},
        )
        if resp.status_code not in (200, 204):
            raise RuntimeError(f"complete {action_type} returned {resp.status_code}")
