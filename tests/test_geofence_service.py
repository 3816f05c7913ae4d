from __future__ import annotations

import math
import unittest

from fieldtasks.errors import ConfigError, OutOfRangeError, ValidationError
from fieldtasks.models import PDV
from fieldtasks.services.geofence import distance_m, effective_radius_m, evaluate_geofence, within_radius

PDV_LAT = 4.6097
PDV_LNG = -74.0817
METERS_PER_DEGREE_LAT = math.pi * 6371000.0 / 180


def _pdv(*, lat: float | None = PDV_LAT, lng: float | None = PDV_LNG, radius: float | None = 100) -> PDV:
    return PDV(id="pdv-1", tenant_id="tenant-a", nombre="PDV Centro", latitud=lat, longitud=lng, radio_gps=radius)


def _north_of_pdv(meters: float) -> float:
    return PDV_LAT + meters / METERS_PER_DEGREE_LAT


class DistanceTests(unittest.TestCase):
    def test_distance_m_zero_for_same_point(self) -> None:
        self.assertAlmostEqual(distance_m(41.0, 29.0, 41.0, 29.0), 0.0, places=6)

    def test_distance_m_is_symmetric(self) -> None:
        pairs = [
            ((4.6097, -74.0817), (6.2442, -75.5812)),
            ((-33.45, -70.66), (40.4168, -3.7038)),
            ((0.0, 0.0), (0.0, 179.9)),
        ]
        for a, b in pairs:
            with self.subTest(a=a, b=b):
                self.assertAlmostEqual(distance_m(*a, *b), distance_m(*b, *a), places=6)

    def test_distance_m_known_reference(self) -> None:
        # One degree of longitude on the equator.
        self.assertAlmostEqual(distance_m(0.0, 0.0, 0.0, 1.0), 111_195, delta=300)

    def test_distance_m_antipodal_points_do_not_fail(self) -> None:
        value = distance_m(0.0, 0.0, 0.0, 180.0)
        self.assertAlmostEqual(value, math.pi * 6371000.0, delta=1)

    def test_within_radius_boundaries(self) -> None:
        self.assertTrue(within_radius(100.0, 100.0))
        self.assertTrue(within_radius(99.999, 100.0))
        self.assertFalse(within_radius(100.001, 100.0))
        self.assertFalse(within_radius(float("nan"), 100.0))
        self.assertFalse(within_radius(None, 100.0))

    def test_effective_radius_falls_back_to_default(self) -> None:
        self.assertEqual(effective_radius_m(_pdv(radius=None), 100), 100.0)
        self.assertEqual(effective_radius_m(_pdv(radius=0), 100), 100.0)
        self.assertEqual(effective_radius_m(_pdv(radius=250), 100), 250.0)


class EvaluateGeofenceTests(unittest.TestCase):
    def test_point_at_pdv_is_in_range_for_any_positive_radius(self) -> None:
        for radius in (0.5, 1, 50, 1000):
            with self.subTest(radius=radius):
                result = evaluate_geofence(
                    lat=PDV_LAT,
                    lng=PDV_LNG,
                    pdv=_pdv(radius=radius),
                    mandatory=True,
                    default_radius_m=100,
                )
                self.assertTrue(result.in_range)
                self.assertAlmostEqual(result.distance_m, 0.0, places=6)

    def test_point_just_inside_radius_is_accepted(self) -> None:
        result = evaluate_geofence(
            lat=_north_of_pdv(99.5),
            lng=PDV_LNG,
            pdv=_pdv(),
            mandatory=True,
            default_radius_m=100,
        )
        self.assertTrue(result.in_range)
        self.assertEqual(result.radius_m, 100.0)

    def test_point_just_outside_radius_is_rejected(self) -> None:
        with self.assertRaises(OutOfRangeError):
            evaluate_geofence(
                lat=_north_of_pdv(100.5),
                lng=PDV_LNG,
                pdv=_pdv(),
                mandatory=True,
                default_radius_m=100,
            )

    def test_out_of_range_error_carries_distance_and_limit(self) -> None:
        with self.assertRaises(OutOfRangeError) as ctx:
            evaluate_geofence(
                lat=_north_of_pdv(150),
                lng=PDV_LNG,
                pdv=_pdv(),
                mandatory=True,
                default_radius_m=100,
            )

        error = ctx.exception
        self.assertAlmostEqual(error.distance_m, 150, delta=0.5)
        self.assertEqual(error.limit_m, 100.0)
        self.assertEqual(error.code, "GPS_OUT_OF_RANGE")
        self.assertIn("Máximo permitido: 100m", error.message)
        self.assertEqual(error.extra_payload()["limit"], 100.0)

    def test_mandatory_without_coordinates_is_validation_error(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            evaluate_geofence(lat=None, lng=None, pdv=_pdv(), mandatory=True, default_radius_m=100)
        self.assertEqual(ctx.exception.code, "GPS_REQUIRED")

    def test_mandatory_with_unconfigured_pdv_is_config_error(self) -> None:
        with self.assertRaises(ConfigError):
            evaluate_geofence(
                lat=PDV_LAT,
                lng=PDV_LNG,
                pdv=_pdv(lat=None, lng=None),
                mandatory=True,
                default_radius_m=100,
            )

    def test_zero_coordinates_are_treated_as_present(self) -> None:
        result = evaluate_geofence(
            lat=0.0,
            lng=0.0,
            pdv=_pdv(lat=0.0, lng=0.0),
            mandatory=True,
            default_radius_m=100,
        )
        self.assertTrue(result.in_range)

    def test_optional_never_raises(self) -> None:
        far = evaluate_geofence(
            lat=_north_of_pdv(5000),
            lng=PDV_LNG,
            pdv=_pdv(),
            mandatory=False,
            default_radius_m=100,
        )
        self.assertFalse(far.in_range)
        self.assertAlmostEqual(far.distance_m, 5000, delta=2)

        missing = evaluate_geofence(lat=None, lng=None, pdv=_pdv(), mandatory=False, default_radius_m=100)
        self.assertFalse(missing.in_range)
        self.assertIsNone(missing.distance_m)

        unconfigured = evaluate_geofence(
            lat=PDV_LAT,
            lng=PDV_LNG,
            pdv=_pdv(lat=None, lng=None),
            mandatory=False,
            default_radius_m=100,
        )
        self.assertFalse(unconfigured.in_range)

    def test_optional_in_range_flag_is_recorded(self) -> None:
        result = evaluate_geofence(
            lat=_north_of_pdv(20),
            lng=PDV_LNG,
            pdv=_pdv(),
            mandatory=False,
            default_radius_m=100,
        )
        self.assertTrue(result.in_range)


if __name__ == "__main__":
    unittest.main()
