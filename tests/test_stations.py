import pytest

from fulfillment.errors import RoleForbidden
from fulfillment.models import ActorRole, OrderStatus
from fulfillment.workflow.stations import BOH_CHANNEL, FOH_CHANNEL, channel_for


def test_channels_split_target_ownership():
    assert FOH_CHANNEL.owned_targets == {
        OrderStatus.CONFIRMED,
        OrderStatus.COMPLETED,
        OrderStatus.CANCELLED,
    }
    assert BOH_CHANNEL.owned_targets == {
        OrderStatus.ACKNOWLEDGED,
        OrderStatus.PREPARING,
        OrderStatus.READY,
    }
    assert not FOH_CHANNEL.owned_targets & BOH_CHANNEL.owned_targets


def test_kitchen_sees_only_released_unfinished_orders():
    assert BOH_CHANNEL.can_see(OrderStatus.CONFIRMED)
    assert BOH_CHANNEL.can_see(OrderStatus.READY)
    assert not BOH_CHANNEL.can_see(OrderStatus.PENDING)
    assert not BOH_CHANNEL.can_see(OrderStatus.COMPLETED)
    assert not BOH_CHANNEL.can_see(OrderStatus.CANCELLED)
    assert all(FOH_CHANNEL.can_see(status) for status in OrderStatus)


def test_authorize_rejects_foreign_targets():
    with pytest.raises(RoleForbidden):
        BOH_CHANNEL.authorize("completed")
    with pytest.raises(RoleForbidden):
        FOH_CHANNEL.authorize(OrderStatus.PREPARING)


def test_authorize_lets_unknown_statuses_through_to_the_validator():
    BOH_CHANNEL.authorize("delivered")
    FOH_CHANNEL.authorize("confirmed")


def test_channel_for_accepts_role_values():
    assert channel_for("boh") is BOH_CHANNEL
    assert channel_for(ActorRole.FOH) is FOH_CHANNEL
