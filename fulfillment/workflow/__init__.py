"""
Order fulfillment workflow: transition table, station channels, the order
store and the service that ties them together.
"""

from fulfillment.workflow.service import WorkflowService
from fulfillment.workflow.stations import BOH_CHANNEL, FOH_CHANNEL, StationChannel, channel_for
from fulfillment.workflow.store import OrderStore
from fulfillment.workflow.transitions import Rejection, TransitionDecision, evaluate_transition

__all__ = [
    "WorkflowService",
    "OrderStore",
    "StationChannel",
    "FOH_CHANNEL",
    "BOH_CHANNEL",
    "channel_for",
    "Rejection",
    "TransitionDecision",
    "evaluate_transition",
]
