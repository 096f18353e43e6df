# app/api/deps.py
from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt

from app.core.security import decode_access_token
from app.utils.ledger import LedgerEngine
from app.utils.group_ledger import GroupLedgerEngine
from app.utils.reconciler import Reconciler
from app.utils.vault_monitor import VaultMonitor

# Security schemes
optional_security = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security)
) -> str:
    """
    Resolve the caller's wallet address from the bearer token.

    The token may arrive in the Authorization header or, for clients that
    cannot set headers, as a ``token`` query parameter.
    """
    token = None
    if credentials and credentials.credentials:
        token = credentials.credentials
    if not token:
        token = request.query_params.get("token") or request.query_params.get("access_token")

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = decode_access_token(token)
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Get wallet address from token
    address = payload.get("sub")
    if not address or not isinstance(address, str):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing wallet address",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return address.lower()


def get_ledger(request: Request) -> LedgerEngine:
    return request.app.state.ledger


def get_group_ledger(request: Request) -> GroupLedgerEngine:
    return request.app.state.group_ledger


def get_reconciler(request: Request) -> Reconciler:
    return request.app.state.reconciler


def get_vault_monitor(request: Request) -> VaultMonitor:
    return request.app.state.vault_monitor
