import dataclasses

import pytest

from reservation_arbiter.types.resource import Resource, ResourceState, UserProfile


class TestResource:
    def test_defaults_to_active(self):
        resource = Resource("oven-1", "Bench Oven")
        assert resource.state is ResourceState.ACTIVE
        assert resource.is_active

    def test_maintenance_is_not_active(self):
        assert not Resource("furnace-1", "Tube Furnace", ResourceState.MAINTENANCE).is_active

    def test_dict_round_trip(self):
        resource = Resource("furnace-1", "Tube Furnace", ResourceState.MAINTENANCE)
        assert resource.to_dict() == {
            "id": "furnace-1",
            "name": "Tube Furnace",
            "state": "maintenance",
        }
        assert Resource.from_dict(resource.to_dict()) == resource

    def test_from_dict_defaults(self):
        resource = Resource.from_dict({"id": "oven-2"})
        assert resource.name == "oven-2"
        assert resource.state is ResourceState.ACTIVE

    def test_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            Resource("oven-1", "Bench Oven").state = ResourceState.MAINTENANCE  # type: ignore[misc]


class TestUserProfile:
    def test_dict_round_trip(self):
        profile = UserProfile("ada", "Ada Lovelace", privileged=True)
        assert profile.to_dict() == {
            "id": "ada",
            "display_name": "Ada Lovelace",
            "privileged": True,
        }
        assert UserProfile.from_dict(profile.to_dict()) == profile

    def test_privileged_defaults_false(self):
        assert UserProfile.from_dict({"id": "bob", "display_name": "Bob"}).privileged is False
