"""Unit tests for request DTOs and actors."""

from uuid import uuid4

import pytest

from fulfillment_kernel.domain.actor import Actor, ActorType
from fulfillment_kernel.domain.dtos import CancelOrder, LineItem, PlaceOrder


class TestRequests:

    def test_place_order_normalizes_line_items(self):
        product_id = uuid4()
        request = PlaceOrder(str(uuid4()), [(str(product_id), 2)])
        assert request.line_items == (LineItem(product_id, 2),)

    def test_requests_are_frozen(self):
        request = CancelOrder(uuid4(), "changed mind", Actor.system())
        with pytest.raises(AttributeError):
            request.reason = "other"

    def test_malformed_id_rejected(self):
        with pytest.raises(ValueError):
            CancelOrder("not-a-uuid", "x", Actor.system())


class TestActor:

    def test_user_actor(self):
        user_id = uuid4()
        actor = Actor.user(user_id)
        assert actor.actor_type == ActorType.USER
        assert actor.actor_id == str(user_id)
        assert str(actor) == f"user:{user_id}"

    def test_system_actor(self):
        assert str(Actor.system()) == "system"
        assert str(Actor.system("batch")) == "system:batch"
