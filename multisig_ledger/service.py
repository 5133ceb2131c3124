"""The node control service: the API surface over the operator functions."""

from __future__ import annotations

from typing import Any

from . import operator
from .operator import (
    CheckBalanceRequest,
    CheckBalanceResponse,
    ConfirmWithdrawalRequest,
    ConfirmWithdrawalResponse,
    CreateDepositIntentRequest,
    CreateDepositIntentResponse,
    GetPendingDepositIntentsResponse,
    Network,
    ProposeWithdrawalRequest,
    ProposeWithdrawalResponse,
    SpendFundsRequest,
    SpendFundsResponse,
    StartSigningRequest,
    StartSigningResponse,
)


class NodeControlService:
    """Answers control API calls by forwarding them to the node's network."""

    def __init__(self, network: Network) -> None:
        self.network = network

    async def spend_funds(self, request: SpendFundsRequest) -> SpendFundsResponse:
        return await operator.spend_funds(self.network, request)

    async def start_signing(self, request: StartSigningRequest) -> StartSigningResponse:
        return await operator.start_signing(self.network, request)

    async def create_deposit_intent(
        self, request: CreateDepositIntentRequest
    ) -> CreateDepositIntentResponse:
        return await operator.create_deposit_intent(self.network, request)

    async def get_pending_deposit_intents(
        self, request: Any = None
    ) -> GetPendingDepositIntentsResponse:
        """List pending deposit intents; the request carries no fields."""
        return await operator.get_pending_deposit_intents(self.network)

    async def propose_withdrawal(
        self, request: ProposeWithdrawalRequest
    ) -> ProposeWithdrawalResponse:
        return await operator.propose_withdrawal(self.network, request)

    async def confirm_withdrawal(
        self, request: ConfirmWithdrawalRequest
    ) -> ConfirmWithdrawalResponse:
        return await operator.confirm_withdrawal(self.network, request)

    async def check_balance(self, request: CheckBalanceRequest) -> CheckBalanceResponse:
        return await operator.check_balance(self.network, request)