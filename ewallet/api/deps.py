"""
Request dependencies
"""

from fastapi import Request

from ..system import WalletSystem


def get_wallet_system(request: Request) -> WalletSystem:
    """The WalletSystem the app was created with"""
    return request.app.state.wallet_system
