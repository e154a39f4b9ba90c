"""
Station Channels

Front-of-house and kitchen stations reach the same orders through separate
channels. A channel knows which target statuses its role owns and which
orders its polling view shows, so a kitchen device asking to complete an
order is turned away before anything is read from the store.
"""

from dataclasses import dataclass
from typing import FrozenSet, Union

from fulfillment.errors import RoleForbidden
from fulfillment.models import ActorRole, OrderStatus
from fulfillment.workflow.transitions import BOH_WINDOW, OWNED_TARGETS


@dataclass(frozen=True)
class StationChannel:
    role: ActorRole
    owned_targets: FrozenSet[OrderStatus]
    visible_statuses: FrozenSet[OrderStatus]

    def authorize(self, requested_status: Union[OrderStatus, str]) -> None:
        """
        Reject targets this role never owns.

        Unknown status strings pass through; the transition table reports
        them as invalid transitions.
        """
        try:
            target = OrderStatus(requested_status)
        except ValueError:
            return
        if target not in self.owned_targets:
            raise RoleForbidden(
                f"{self.role.value} stations cannot mark orders {target.value}"
            )

    def can_see(self, status: OrderStatus) -> bool:
        return status in self.visible_statuses


FOH_CHANNEL = StationChannel(
    role=ActorRole.FOH,
    owned_targets=OWNED_TARGETS[ActorRole.FOH],
    visible_statuses=frozenset(OrderStatus),
)

BOH_CHANNEL = StationChannel(
    role=ActorRole.BOH,
    owned_targets=OWNED_TARGETS[ActorRole.BOH],
    visible_statuses=BOH_WINDOW,
)

_CHANNELS = {
    ActorRole.FOH: FOH_CHANNEL,
    ActorRole.BOH: BOH_CHANNEL,
}


def channel_for(role: ActorRole) -> StationChannel:
    return _CHANNELS[ActorRole(role)]
