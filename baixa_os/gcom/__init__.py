"""GCOM portal components: login, pending-order listing and order closure."""

from baixa_os.gcom.closure import ClosureWorkflow, RetryPolicy
from baixa_os.gcom.listing import OrderListingClient
from baixa_os.gcom.listing_parser import parse_order_ids
from baixa_os.gcom.models import (
    AuthenticationBundle,
    AuthFailure,
    ClosureOutcome,
    Credentials,
    GcomError,
    ProtocolFailure,
)
from baixa_os.gcom.session import SessionManager

__all__ = [
    "AuthFailure",
    "AuthenticationBundle",
    "ClosureOutcome",
    "ClosureWorkflow",
    "Credentials",
    "GcomError",
    "OrderListingClient",
    "ProtocolFailure",
    "RetryPolicy",
    "SessionManager",
    "parse_order_ids",
]
