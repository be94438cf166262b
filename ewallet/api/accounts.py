"""
Account endpoints
"""

from fastapi import APIRouter, Depends, status

from .deps import get_wallet_system
from .schemas import AccountModel, CreateAccountRequest
from ..system import WalletSystem


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=AccountModel)
def create_account(
    request: CreateAccountRequest,
    system: WalletSystem = Depends(get_wallet_system)
):
    """Open an account for an already-registered user"""
    account = system.account_store.create_account(
        username=request.username,
        initial_balance=request.initial_balance
    )
    return AccountModel.from_account(account)


@router.get("/{account_id}", response_model=AccountModel)
def get_account(
    account_id: str,
    system: WalletSystem = Depends(get_wallet_system)
):
    """Get account details"""
    return AccountModel.from_account(system.queries.get_account(account_id))
