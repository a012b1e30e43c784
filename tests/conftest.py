# tests/conftest.py

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest
from loguru import logger

from gridlens.config import Settings
from gridlens.models import DemandRecord, GenerationRecord, SourceRecords, WeatherRecord


logger.remove()

TZ = ZoneInfo("America/Toronto")
NOON = datetime(2024, 6, 3, 12, 0, tzinfo=TZ)

DEMAND_CSV = (
    "timestamp,demand,forecast\n"
    "2024-06-03T11:00,14800,14900\n"
    "\n"
    "2024-06-03T12:00,15000,15100\n"
)

GENERATION_CSV = (
    "timestamp,nuclear,hydro,gas,wind,solar,biomass,coal\n"
    "2024-06-03T11:00,9000,4000,2400,2100,700,400,200\n"
    "2024-06-03T12:00,9000,4000,2500,2000,800,400,200\n"
)

WEATHER_JSON = {
    "type": "FeatureCollection",
    "features": [
        {
            "properties": {
                "temperature": 31.5,
                "wind_speed": 12.0,
                "solar_radiation": 900.0,
                "humidity": 55.0,
            }
        }
    ],
}

TEST_SETTINGS = Settings(
    demand_url="https://feeds.test/demand.csv",
    generation_url="https://feeds.test/generation.csv",
    weather_url="https://weather.test/observations",
    max_attempts=1,
    retry_backoff=0.0,
)


def make_generation(ts=NOON, **overrides) -> GenerationRecord:
    """18 900 MW mix; override any fuel by keyword."""
    values = dict(nuclear=9000.0, hydro=4000.0, gas=2500.0, wind=2000.0,
                  solar=800.0, biomass=400.0, coal=200.0)
    values.update(overrides)
    return GenerationRecord(timestamp=ts, **values)


def make_records(demand=15000.0, weather=None, hours=3) -> SourceRecords:
    generation = tuple(
        make_generation(NOON - timedelta(hours=h)) for h in reversed(range(hours))
    )
    return SourceRecords(
        demand=(DemandRecord(timestamp=NOON, demand=demand, forecast=demand),),
        generation=generation,
        weather=weather,
    )


@pytest.fixture
def settings() -> Settings:
    return TEST_SETTINGS


@pytest.fixture
def hot_weather() -> WeatherRecord:
    return WeatherRecord(temperature=32.0, wind_speed=15.0, solar_radiation=1000.0, humidity=50.0)
