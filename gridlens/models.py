"""
GridLens — Data model

Raw per-source records, the derived Snapshot published to consumers, and
the PublishedState envelope the refresh scheduler hands out.

Every class here is a frozen dataclass and every sequence is a tuple, so a
snapshot that has been published can be shared freely: a new refresh cycle
always builds a brand-new object instead of touching the old one.

``to_dict()`` emits the camelCase keys the dashboard front end reads.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

# ---------------------------------------------------------------------------
# Fuel vocabulary
# ---------------------------------------------------------------------------

FUELS: tuple[str, ...] = ("solar", "wind", "hydro", "nuclear", "gas", "coal", "biomass")


class Mode(str, Enum):
    LIVE      = "live"
    SYNTHETIC = "synthetic"


class GridHealth(str, Enum):
    ONLINE  = "online"
    WARNING = "warning"
    OFFLINE = "offline"


# ---------------------------------------------------------------------------
# Raw records  (one shape per upstream feed)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DemandRecord:
    timestamp: datetime
    demand:    float   # MW
    forecast:  float   # MW


@dataclass(frozen=True)
class GenerationRecord:
    """Output by fuel type for one interval, in MW."""

    timestamp: datetime
    nuclear:   float
    hydro:     float
    gas:       float
    wind:      float
    solar:     float
    biomass:   float
    coal:      float


@dataclass(frozen=True)
class WeatherRecord:
    temperature:     float   # °C
    wind_speed:      float   # km/h
    solar_radiation: float   # W/m²
    humidity:        float   # %


@dataclass(frozen=True)
class SourceRecords:
    """
    Everything one refresh cycle collected.

    An absent feed is an empty tuple (demand, generation) or ``None``
    (weather), never a placeholder row.
    """

    demand:     tuple[DemandRecord, ...] = ()
    generation: tuple[GenerationRecord, ...] = ()
    weather:    Optional[WeatherRecord] = None


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GridOverview:
    total_generation:     float
    total_demand:         float
    renewable_percentage: float
    carbon_intensity:     float   # gCO₂e/kWh
    grid_efficiency:      float

    def to_dict(self) -> dict:
        return {
            "totalGeneration":     self.total_generation,
            "totalDemand":         self.total_demand,
            "renewablePercentage": self.renewable_percentage,
            "carbonIntensity":     self.carbon_intensity,
            "gridEfficiency":      self.grid_efficiency,
        }


@dataclass(frozen=True)
class EnergyMixPoint:
    timestamp: datetime
    solar:     float
    wind:      float
    hydro:     float
    nuclear:   float
    gas:       float
    coal:      float
    biomass:   float

    def to_dict(self) -> dict:
        out = {"timestamp": self.timestamp.isoformat()}
        out.update({fuel: getattr(self, fuel) for fuel in FUELS})
        return out


@dataclass(frozen=True)
class CarbonEmissionsPoint:
    timestamp: datetime
    emissions: float
    target:    float
    reduction: float

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "emissions": self.emissions,
            "target":    self.target,
            "reduction": self.reduction,
        }


@dataclass(frozen=True)
class RenewableProgress:
    current:          float
    target:           float
    solar_capacity:   float
    wind_capacity:    float
    hydro_capacity:   float
    biomass_capacity: float

    def to_dict(self) -> dict:
        return {
            "current":         self.current,
            "target":          self.target,
            "solarCapacity":   self.solar_capacity,
            "windCapacity":    self.wind_capacity,
            "hydroCapacity":   self.hydro_capacity,
            "biomassCapacity": self.biomass_capacity,
        }


@dataclass(frozen=True)
class GridStatus:
    status:    GridHealth
    frequency: float   # Hz
    voltage:   float   # V
    stability: float   # 0–100
    alerts:    tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            "status":    self.status.value,
            "frequency": self.frequency,
            "voltage":   self.voltage,
            "stability": self.stability,
            "alerts":    list(self.alerts),
        }


@dataclass(frozen=True)
class Snapshot:
    """The complete set of derived grid metrics for one refresh cycle."""

    grid_overview:      GridOverview
    energy_mix:         tuple[EnergyMixPoint, ...]
    carbon_emissions:   tuple[CarbonEmissionsPoint, ...]
    renewable_progress: RenewableProgress
    grid_status:        GridStatus

    def to_dict(self) -> dict:
        return {
            "gridOverview":      self.grid_overview.to_dict(),
            "energyMix":         [p.to_dict() for p in self.energy_mix],
            "carbonEmissions":   [p.to_dict() for p in self.carbon_emissions],
            "renewableProgress": self.renewable_progress.to_dict(),
            "gridStatus":        self.grid_status.to_dict(),
        }


# ---------------------------------------------------------------------------
# Published state  (what downstream consumers read)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PublishedState:
    snapshot:      Optional[Snapshot]
    last_updated:  Optional[datetime]
    mode:          Mode
    error:         Optional[str]
    is_refreshing: bool

    def to_dict(self) -> dict:
        return {
            "snapshot":     self.snapshot.to_dict() if self.snapshot else None,
            "lastUpdated":  self.last_updated.isoformat() if self.last_updated else None,
            "mode":         self.mode.value,
            "error":        self.error,
            "isRefreshing": self.is_refreshing,
        }
