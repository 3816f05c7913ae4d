from __future__ import annotations

from dataclasses import dataclass
from math import asin, cos, isnan, radians, sin, sqrt

from fieldtasks.errors import ConfigError, OutOfRangeError, ValidationError
from fieldtasks.models import PDV

EARTH_RADIUS_M = 6371000.0


@dataclass(frozen=True, slots=True)
class GeofenceResult:
    in_range: bool
    distance_m: float | None = None
    radius_m: float | None = None


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_rad = radians(lat1)
    lon1_rad = radians(lon1)
    lat2_rad = radians(lat2)
    lon2_rad = radians(lon2)

    delta_lat = lat2_rad - lat1_rad
    delta_lon = lon2_rad - lon1_rad

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    # Rounding can push a marginally above 1 for antipodal points.
    c = 2 * asin(sqrt(min(1.0, a)))
    return EARTH_RADIUS_M * c


def within_radius(distance: float | None, radius: float | None) -> bool:
    if distance is None or radius is None:
        return False
    if isnan(distance) or isnan(radius):
        return False
    return distance <= radius


def effective_radius_m(pdv: PDV, default_radius_m: float) -> float:
    if pdv.radio_gps:
        return float(pdv.radio_gps)
    return float(default_radius_m)


def _pdv_has_location(pdv: PDV) -> bool:
    return pdv.latitud is not None and pdv.longitud is not None


def evaluate_geofence(
    *,
    lat: float | None,
    lng: float | None,
    pdv: PDV,
    mandatory: bool,
    default_radius_m: float,
) -> GeofenceResult:
    """Check a submitted position against the PDV acceptance circle.

    Mandatory routines reject missing coordinates, unconfigured PDVs and
    positions outside the radius. Optional routines only record whether the
    position happened to be in range.
    """
    has_position = lat is not None and lng is not None

    if not mandatory:
        if not has_position or not _pdv_has_location(pdv):
            return GeofenceResult(in_range=False)
        radius = effective_radius_m(pdv, default_radius_m)
        distance = distance_m(lat, lng, pdv.latitud, pdv.longitud)
        return GeofenceResult(in_range=within_radius(distance, radius), distance_m=distance, radius_m=radius)

    if not has_position:
        raise ValidationError("Se requieren coordenadas GPS para esta tarea.", code="GPS_REQUIRED")
    if not _pdv_has_location(pdv):
        raise ConfigError("La ubicación del PDV no está configurada.")

    radius = effective_radius_m(pdv, default_radius_m)
    distance = distance_m(lat, lng, pdv.latitud, pdv.longitud)
    if not within_radius(distance, radius):
        raise OutOfRangeError(distance_m=distance, limit_m=radius)
    return GeofenceResult(in_range=True, distance_m=distance, radius_m=radius)
