"""
test_trusted_locations.py — Add / update / delete / list trusted locations.
"""

from __future__ import annotations

import pytest

from guardian_backend.app.core.errors import NotFoundError, ValidationError

from conftest import FailingGeocoder, TOWER_BRIDGE, WESTMINSTER, make_services


class TestAddTrustedLocation:

    def test_defaults(self, services):
        loc = services.trusted_locations.add_trusted_location("U1", "  Home  ", WESTMINSTER)
        assert loc.location_id.startswith("TLC-")
        assert loc.name == "Home"
        assert loc.radius_m == 100.0
        assert loc.coordinate.to_lnglat() == WESTMINSTER
        assert loc.is_home is False

    def test_enriched_before_write(self, services):
        loc = services.trusted_locations.add_trusted_location("U1", "Home", WESTMINSTER)
        assert loc.address.endswith("London")
        assert loc.static_map_url.startswith("https://maps.test/static")
        stored = services.trusted_locations.list_trusted_locations("U1")[0]
        assert stored.address == loc.address
        assert stored.static_map_url == loc.static_map_url

    def test_geocoder_outage_does_not_block(self):
        services = make_services(geocoder=FailingGeocoder())
        try:
            loc = services.trusted_locations.add_trusted_location("U1", "Home", WESTMINSTER)
            assert loc.address is None
            assert loc.static_map_url is None
            assert len(services.trusted_locations.list_trusted_locations("U1")) == 1
        finally:
            services.close()

    @pytest.mark.parametrize("radius", [10, 1000, 250.5])
    def test_radius_bounds_inclusive(self, services, radius):
        loc = services.trusted_locations.add_trusted_location(
            "U1", "Spot", WESTMINSTER, radius_m=radius,
        )
        assert loc.radius_m == float(radius)

    @pytest.mark.parametrize("radius", [9.99, 1000.01, 0, -5, float("nan"), True])
    def test_radius_out_of_bounds(self, services, radius):
        with pytest.raises(ValidationError) as exc:
            services.trusted_locations.add_trusted_location(
                "U1", "Spot", WESTMINSTER, radius_m=radius,
            )
        assert exc.value.details["field"] == "radius_m"

    @pytest.mark.parametrize("name", ["", "   ", None, "x" * 101])
    def test_bad_name(self, services, name):
        with pytest.raises(ValidationError):
            services.trusted_locations.add_trusted_location("U1", name, WESTMINSTER)

    def test_bad_coordinates(self, services):
        with pytest.raises(ValidationError):
            services.trusted_locations.add_trusted_location("U1", "Home", [200.0, 0.0])
        assert services.trusted_locations.list_trusted_locations("U1") == []


class TestListTrustedLocations:

    def test_creation_order_and_isolation(self, services):
        svc = services.trusted_locations
        svc.add_trusted_location("U1", "Home", WESTMINSTER, is_home=True)
        svc.add_trusted_location("U2", "Other", WESTMINSTER)
        svc.add_trusted_location("U1", "Work", TOWER_BRIDGE, is_work=True)

        names = [loc.name for loc in svc.list_trusted_locations("U1")]
        assert names == ["Home", "Work"]
        assert svc.list_trusted_locations("nobody") == []


class TestUpdateTrustedLocation:

    def test_partial_update(self, services):
        svc = services.trusted_locations
        loc = svc.add_trusted_location("U1", "Home", WESTMINSTER)
        updated = svc.update_trusted_location(
            "U1", loc.location_id, {"name": "Flat", "radius_m": 300, "notes": "2nd floor"},
        )
        assert updated.name == "Flat"
        assert updated.radius_m == 300.0
        assert updated.notes == "2nd floor"
        assert updated.coordinate == loc.coordinate
        assert updated.updated_at >= loc.updated_at

        stored = svc.list_trusted_locations("U1")[0]
        assert (stored.name, stored.radius_m) == ("Flat", 300.0)

    def test_moving_refreshes_enrichment(self, services):
        svc = services.trusted_locations
        loc = svc.add_trusted_location("U1", "Home", WESTMINSTER)
        moved = svc.update_trusted_location("U1", loc.location_id, {"coordinates": TOWER_BRIDGE})
        assert moved.coordinate.to_lnglat() == TOWER_BRIDGE
        assert moved.address != loc.address
        assert "51.5055" in moved.address

    def test_unknown_field_rejected(self, services):
        svc = services.trusted_locations
        loc = svc.add_trusted_location("U1", "Home", WESTMINSTER)
        with pytest.raises(ValidationError):
            svc.update_trusted_location("U1", loc.location_id, {"user_id": "U2"})

    def test_invalid_radius_leaves_row_untouched(self, services):
        svc = services.trusted_locations
        loc = svc.add_trusted_location("U1", "Home", WESTMINSTER, radius_m=150)
        with pytest.raises(ValidationError):
            svc.update_trusted_location("U1", loc.location_id, {"radius_m": 5000})
        assert svc.list_trusted_locations("U1")[0].radius_m == 150.0

    def test_other_users_location_not_found(self, services):
        svc = services.trusted_locations
        loc = svc.add_trusted_location("U1", "Home", WESTMINSTER)
        with pytest.raises(NotFoundError):
            svc.update_trusted_location("U2", loc.location_id, {"name": "Mine now"})

    def test_missing_location(self, services):
        with pytest.raises(NotFoundError):
            services.trusted_locations.update_trusted_location("U1", "TLC-NOPE", {"name": "x"})


class TestDeleteTrustedLocation:

    def test_delete(self, services):
        svc = services.trusted_locations
        loc = svc.add_trusted_location("U1", "Home", WESTMINSTER)
        svc.delete_trusted_location("U1", loc.location_id)
        assert svc.list_trusted_locations("U1") == []

    def test_delete_twice(self, services):
        svc = services.trusted_locations
        loc = svc.add_trusted_location("U1", "Home", WESTMINSTER)
        svc.delete_trusted_location("U1", loc.location_id)
        with pytest.raises(NotFoundError):
            svc.delete_trusted_location("U1", loc.location_id)

    def test_other_user_cannot_delete(self, services):
        svc = services.trusted_locations
        loc = svc.add_trusted_location("U1", "Home", WESTMINSTER)
        with pytest.raises(NotFoundError):
            svc.delete_trusted_location("U2", loc.location_id)
        assert len(svc.list_trusted_locations("U1")) == 1
