"""Operations behind the node control API: validate, forward to the node, shape replies."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Optional, Union

from .protocol import DepositIntent

logger = logging.getLogger(__name__)

_SPEND_FEE_SAT = 200
_U16_MAX = 0xFFFF


class StatusCode(Enum):
    """Status codes of the control API, numbered as in gRPC."""

    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    NOT_FOUND = 5
    INTERNAL = 13
    UNAVAILABLE = 14


class RpcStatus(Exception):
    """A failed control API call: a status code and a message."""

    def __init__(self, code: StatusCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    @classmethod
    def internal(cls, message: str) -> RpcStatus:
        return cls(StatusCode.INTERNAL, message)

    @classmethod
    def invalid_argument(cls, message: str) -> RpcStatus:
        return cls(StatusCode.INVALID_ARGUMENT, message)

    def __str__(self) -> str:
        return self.message


# Requests the node sends to itself.


@dataclass(frozen=True)
class SpendRequest:
    amount_sat: int
    fee: int
    address_to: str
    user_pubkey: str


@dataclass(frozen=True)
class StartSigningSession:
    hex_message: str


@dataclass(frozen=True)
class CreateDeposit:
    user_pubkey: str
    amount_sat: int


@dataclass(frozen=True)
class GetPendingDepositIntents:
    pass


@dataclass(frozen=True)
class WithdrawalIntent:
    amount_sat: int
    address_to: str
    public_key: str
    blocks_to_confirm: Optional[int] = None


@dataclass(frozen=True)
class ProposeWithdrawal:
    withdrawal_intent: WithdrawalIntent


@dataclass(frozen=True)
class ConfirmWithdrawal:
    challenge: str
    signature: str


@dataclass(frozen=True)
class CheckBalance:
    address: str


SelfRequest = Union[
    SpendRequest,
    StartSigningSession,
    CreateDeposit,
    GetPendingDepositIntents,
    ProposeWithdrawal,
    ConfirmWithdrawal,
    CheckBalance,
]


# Answers the node gives to its own requests.


@dataclass(frozen=True)
class SpendRequestSent:
    sighash: str


@dataclass(frozen=True)
class StartSigningSessionResponse:
    sign_id: int


@dataclass(frozen=True)
class CreateDepositResponse:
    deposit_tracking_id: str
    deposit_address: str


@dataclass(frozen=True)
class PendingDepositIntentsResponse:
    intents: tuple[DepositIntent, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "intents", tuple(self.intents))


@dataclass(frozen=True)
class ProposeWithdrawalResult:
    quote_satoshis: int
    challenge: str


@dataclass(frozen=True)
class ConfirmWithdrawalResult:
    success: bool


@dataclass(frozen=True)
class CheckBalanceResult:
    balance_satoshis: int


SelfResponse = Union[
    SpendRequestSent,
    StartSigningSessionResponse,
    CreateDepositResponse,
    PendingDepositIntentsResponse,
    ProposeWithdrawalResult,
    ConfirmWithdrawalResult,
    CheckBalanceResult,
]


class Network(ABC):
    """The node's network layer, as far as the control API needs it."""

    @abstractmethod
    def send_self_request(
        self, request: SelfRequest, sync: bool
    ) -> Optional[Awaitable[SelfResponse]]:
        """Hand ``request`` to the node; with ``sync`` return an awaitable answer."""


# Messages of the control API.


@dataclass(frozen=True)
class SpendFundsRequest:
    amount_satoshis: int
    address_to: str


@dataclass(frozen=True)
class SpendFundsResponse:
    success: bool
    message: str
    sighash: str


@dataclass(frozen=True)
class StartSigningRequest:
    hex_message: str


@dataclass(frozen=True)
class StartSigningResponse:
    success: bool
    message: str
    sign_id: int


@dataclass(frozen=True)
class CreateDepositIntentRequest:
    amount_satoshis: int
    public_key: str


@dataclass(frozen=True)
class CreateDepositIntentResponse:
    success: bool
    message: str
    deposit_tracking_id: str
    deposit_address: str


@dataclass(frozen=True)
class DepositIntentInfo:
    amount_satoshis: int
    deposit_tracking_id: str
    deposit_address: str
    timestamp: int


@dataclass(frozen=True)
class GetPendingDepositIntentsResponse:
    intents: list[DepositIntentInfo] = field(default_factory=list)


@dataclass(frozen=True)
class ProposeWithdrawalRequest:
    amount_satoshis: int
    address_to: str
    public_key: str
    blocks_to_confirm: Optional[int] = None


@dataclass(frozen=True)
class ProposeWithdrawalResponse:
    quote_satoshis: int
    challenge: str


@dataclass(frozen=True)
class ConfirmWithdrawalRequest:
    challenge: str
    signature: str


@dataclass(frozen=True)
class ConfirmWithdrawalResponse:
    success: bool


@dataclass(frozen=True)
class CheckBalanceRequest:
    address: str


@dataclass(frozen=True)
class CheckBalanceResponse:
    balance_satoshis: int


async def _ask(network: Network, request: SelfRequest) -> SelfResponse:
    try:
        pending = network.send_self_request(request, True)
    except Exception as exc:
        raise RpcStatus.internal(f"Network error: {exc!r}") from exc
    if pending is None:
        raise RpcStatus.internal("No response from node")
    try:
        return await pending
    except Exception as exc:
        raise RpcStatus.internal(f"Network error: {exc!r}") from exc


def _invalid_response() -> RpcStatus:
    return RpcStatus.internal("Invalid response from node")


async def spend_funds(network: Network, request: SpendFundsRequest) -> SpendFundsResponse:
    """Ask the node to spend funds to ``request.address_to``."""
    amount_sat = request.amount_satoshis
    logger.debug("Received request to spend %s satoshis", amount_sat)
    response = await _ask(
        network,
        SpendRequest(
            amount_sat=amount_sat,
            fee=_SPEND_FEE_SAT,
            address_to=request.address_to,
            user_pubkey="",
        ),
    )
    if not isinstance(response, SpendRequestSent):
        raise _invalid_response()
    return SpendFundsResponse(
        success=True,
        message=f"Spending {amount_sat} satoshis",
        sighash=response.sighash,
    )


async def start_signing(network: Network, request: StartSigningRequest) -> StartSigningResponse:
    """Start a threshold signing session over a hex-encoded message."""
    response = await _ask(network, StartSigningSession(hex_message=request.hex_message))
    if not isinstance(response, StartSigningSessionResponse):
        raise RpcStatus.internal(f"Invalid response from node {response!r}")
    return StartSigningResponse(
        success=True, message="Signing session started", sign_id=response.sign_id
    )


async def create_deposit_intent(
    network: Network, request: CreateDepositIntentRequest
) -> CreateDepositIntentResponse:
    """Register a deposit intent and return where to deposit."""
    if request.amount_satoshis <= 0:
        raise RpcStatus.invalid_argument("Amount to deposit must be greater than 0")
    amount_sat = request.amount_satoshis
    response = await _ask(
        network, CreateDeposit(user_pubkey=request.public_key, amount_sat=amount_sat)
    )
    if not isinstance(response, CreateDepositResponse):
        raise _invalid_response()
    logger.info(
        "Received request to create deposit intent with amount %s. "
        "Tracking ID: %s. Deposit Address: %s",
        amount_sat,
        response.deposit_tracking_id,
        response.deposit_address,
    )
    return CreateDepositIntentResponse(
        success=True,
        message="Deposit intent created",
        deposit_tracking_id=response.deposit_tracking_id,
        deposit_address=response.deposit_address,
    )


async def get_pending_deposit_intents(network: Network) -> GetPendingDepositIntentsResponse:
    """List the deposit intents the node still waits on."""
    response = await _ask(network, GetPendingDepositIntents())
    if not isinstance(response, PendingDepositIntentsResponse):
        raise _invalid_response()
    return GetPendingDepositIntentsResponse(
        intents=[
            DepositIntentInfo(
                amount_satoshis=intent.amount_sat,
                deposit_tracking_id=intent.deposit_tracking_id,
                deposit_address=intent.deposit_address,
                timestamp=intent.timestamp,
            )
            for intent in response.intents
        ]
    )


async def propose_withdrawal(
    network: Network, request: ProposeWithdrawalRequest
) -> ProposeWithdrawalResponse:
    """Propose a withdrawal and return the node's quote and challenge."""
    if request.amount_satoshis <= 0:
        raise RpcStatus.invalid_argument("Amount to withdraw must be greater than 0")
    blocks = request.blocks_to_confirm
    if blocks is not None and not 0 <= blocks <= _U16_MAX:
        raise RpcStatus.invalid_argument(
            f"blocks_to_confirm must be between 0 and {_U16_MAX}"
        )
    intent = WithdrawalIntent(
        amount_sat=request.amount_satoshis,
        address_to=request.address_to,
        public_key=request.public_key,
        blocks_to_confirm=blocks,
    )
    response = await _ask(network, ProposeWithdrawal(withdrawal_intent=intent))
    if not isinstance(response, ProposeWithdrawalResult):
        raise _invalid_response()
    return ProposeWithdrawalResponse(
        quote_satoshis=response.quote_satoshis, challenge=response.challenge
    )


async def confirm_withdrawal(
    network: Network, request: ConfirmWithdrawalRequest
) -> ConfirmWithdrawalResponse:
    """Confirm a proposed withdrawal with the signed challenge."""
    response = await _ask(
        network,
        ConfirmWithdrawal(challenge=request.challenge, signature=request.signature),
    )
    if not isinstance(response, ConfirmWithdrawalResult):
        raise _invalid_response()
    return ConfirmWithdrawalResponse(success=response.success)


async def check_balance(network: Network, request: CheckBalanceRequest) -> CheckBalanceResponse:
    """Look up the ledger balance of an address."""
    response = await _ask(network, CheckBalance(address=request.address))
    if not isinstance(response, CheckBalanceResult):
        raise _invalid_response()
    return CheckBalanceResponse(balance_satoshis=response.balance_satoshis)