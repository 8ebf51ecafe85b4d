"""FastAPI application exposing vault operations over HTTP."""

from __future__ import annotations

import os
from typing import Any, Dict, List, NoReturn

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from . import crypto_utils
from .confidential import ConfidentialShares, WithdrawProof
from .constants import MAX_DECIMALS, U64_MAX
from .errors import Unauthorized, VaultAlreadyExists, VaultError, VaultNotFound
from .events import EventLog, FanoutSink, LoggingSink
from .processor import OperationResult
from .utils.logger import configure_logging, get_logger
from .vault import Vault, VaultRegistry

API_HOST = os.getenv("SHAREVAULT_API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("SHAREVAULT_API_PORT", "8000"))
STATE_FILE = os.getenv("SHAREVAULT_STATE_FILE")
EVENT_LOG_SIZE = int(os.getenv("SHAREVAULT_EVENT_LOG_SIZE", "10000"))

logger = get_logger(__name__)

app = FastAPI(title="Share Vault", version="1.0.0")

_events = EventLog(maxlen=EVENT_LOG_SIZE)


def _new_registry() -> VaultRegistry:
    sink = FanoutSink([_events, LoggingSink()])
    if STATE_FILE:
        return VaultRegistry.load_from_file(STATE_FILE, events=sink)
    return VaultRegistry(events=sink)


_registry = _new_registry()

_STATUS_CODES = {
    Unauthorized: 403,
    VaultNotFound: 404,
    VaultAlreadyExists: 409,
}


class VaultCreateRequest(BaseModel):
    authority: str = Field(min_length=1, max_length=128)
    asset_identity: str = Field(min_length=1, max_length=128)
    asset_decimals: int = Field(ge=0, le=MAX_DECIMALS)
    vault_id: int = Field(ge=0, le=U64_MAX)
    name: str = Field(default="", max_length=64)
    symbol: str = Field(default="", max_length=16)
    uri: str = Field(default="", max_length=256)
    confidential: bool = False
    auditor_pubkey: str | None = None


class VaultResponse(BaseModel):
    key: str
    address: str
    authority: str
    asset_identity: str
    shares_identity: str
    pool_account: str
    asset_decimals: int
    decimals_offset: int
    vault_id: int
    total_assets: int
    total_shares: int
    pool_balance: int
    paused: bool
    name: str
    symbol: str
    uri: str
    confidential: bool
    auditor_pubkey: str | None = None


class FaucetRequest(BaseModel):
    asset_identity: str
    account: str = Field(min_length=1)
    amount: int = Field(gt=0, le=U64_MAX)


class DonateRequest(BaseModel):
    vault_key: str
    source: str = Field(min_length=1)
    amount: int = Field(gt=0, le=U64_MAX)


class BalanceResponse(BaseModel):
    asset_identity: str
    account: str
    balance: int


class DepositRequest(BaseModel):
    caller: str = Field(min_length=1)
    assets: int = Field(gt=0, le=U64_MAX)
    min_shares_out: int = Field(default=0, ge=0, le=U64_MAX)


class MintRequest(BaseModel):
    caller: str = Field(min_length=1)
    shares: int = Field(gt=0, le=U64_MAX)
    max_assets_in: int = Field(default=U64_MAX, ge=0, le=U64_MAX)


class WithdrawRequest(BaseModel):
    caller: str = Field(min_length=1)
    assets: int = Field(gt=0, le=U64_MAX)
    max_shares_in: int = Field(default=U64_MAX, ge=0, le=U64_MAX)
    proof: Dict[str, Any] | None = None


class RedeemRequest(BaseModel):
    caller: str = Field(min_length=1)
    shares: int = Field(gt=0, le=U64_MAX)
    min_assets_out: int = Field(default=0, ge=0, le=U64_MAX)
    proof: Dict[str, Any] | None = None


class OperationResponse(BaseModel):
    operation: str
    owner: str
    assets: int
    shares: int
    total_assets: int
    total_shares: int


class AdminRequest(BaseModel):
    caller: str = Field(min_length=1)


class AuthorityRequest(AdminRequest):
    new_authority: str = Field(min_length=1, max_length=128)


class SyncResponse(BaseModel):
    previous_total: int
    new_total: int


class PreviewResponse(BaseModel):
    operation: str
    amount: int
    result: int


class AccountResponse(BaseModel):
    owner: str
    assets: int
    shares: int | None
    max_withdraw: int
    max_redeem: int


class ConfigureAccountRequest(BaseModel):
    owner: str = Field(min_length=1)
    elgamal_pubkey: str
    decryptable_zero_balance: str
    validity_proof: Dict[str, str]


class ApplyPendingRequest(BaseModel):
    owner: str = Field(min_length=1)
    new_decryptable_available_balance: str
    expected_pending_balance_credit_counter: int = Field(ge=0)


class ConfidentialAccountResponse(BaseModel):
    owner: str
    elgamal_pubkey: str | None
    decryptable_available_balance: str
    available_commitment: str | None
    pending_commitment: str | None
    pending_balance_credit_counter: int
    maximum_pending_balance_credit_counter: int


def _raise_http(exc: ValueError) -> NoReturn:
    if isinstance(exc, VaultError):
        status = _STATUS_CODES.get(type(exc), 400)
        raise HTTPException(status_code=status, detail=exc.as_dict()) from exc
    raise HTTPException(status_code=400, detail={"error": "InvalidRequest", "message": str(exc)}) from exc


def _persist() -> None:
    if STATE_FILE:
        _registry.save_to_file(STATE_FILE)


def _vault(vault_key: str) -> Vault:
    try:
        return _registry.get_vault(vault_key)
    except VaultNotFound as exc:
        _raise_http(exc)


def _confidential_shares(vault: Vault) -> ConfidentialShares:
    if not isinstance(vault.shares, ConfidentialShares):
        raise HTTPException(
            status_code=400,
            detail={"error": "InvalidRequest", "message": "Vault does not hold confidential shares"},
        )
    return vault.shares


def _operation_response(vault: Vault, result: OperationResult) -> OperationResponse:
    _persist()
    return OperationResponse(
        **result.as_dict(),
        total_assets=vault.total_assets(),
        total_shares=vault.total_shares(),
    )


def _decode_proof(payload: Dict[str, Any] | None) -> WithdrawProof | None:
    if payload is None:
        return None
    return WithdrawProof.from_dict(payload)


def _decode_blob(value: str) -> bytes:
    try:
        return bytes.fromhex(value)
    except ValueError as exc:
        raise ValueError("Ciphertexts must be hex encoded") from exc


@app.post("/vaults", response_model=VaultResponse)
def create_vault(payload: VaultCreateRequest) -> VaultResponse:
    try:
        vault = _registry.create_vault(**payload.model_dump())
    except ValueError as exc:
        _raise_http(exc)
    _persist()
    return VaultResponse(**vault.as_dict())


@app.get("/vaults", response_model=List[VaultResponse])
def list_vaults() -> List[VaultResponse]:
    return [VaultResponse(**item) for item in _registry.list_vaults()]


@app.get("/vaults/{vault_key}", response_model=VaultResponse)
def get_vault(vault_key: str) -> VaultResponse:
    return VaultResponse(**_vault(vault_key).as_dict())


@app.post("/faucet", response_model=BalanceResponse)
def faucet(payload: FaucetRequest) -> BalanceResponse:
    """Mint test assets straight into *account*."""

    try:
        token = _registry.get_asset(payload.asset_identity)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail={"error": "AssetNotFound", "message": str(exc)}) from exc
    if not token.mint(payload.account, payload.amount):
        raise HTTPException(status_code=400, detail={"error": "MathOverflow", "message": "Faucet would overflow supply"})
    _persist()
    return BalanceResponse(
        asset_identity=token.identity,
        account=payload.account,
        balance=token.balance_of(payload.account),
    )


@app.post("/donate", response_model=VaultResponse)
def donate(payload: DonateRequest) -> VaultResponse:
    """Send assets to a vault's pool without going through deposit."""

    vault = _vault(payload.vault_key)
    if not vault.asset_token.transfer(payload.source, vault.ledger.pool_account, payload.amount):
        raise HTTPException(
            status_code=400,
            detail={"error": "TransferFailed", "message": "Insufficient balance for donation"},
        )
    vault.admin.asset_discrepancy()
    _persist()
    return VaultResponse(**vault.as_dict())


@app.post("/vaults/{vault_key}/deposit", response_model=OperationResponse)
def deposit(vault_key: str, payload: DepositRequest) -> OperationResponse:
    vault = _vault(vault_key)
    try:
        result = vault.deposit(payload.caller, payload.assets, payload.min_shares_out)
    except ValueError as exc:
        _raise_http(exc)
    return _operation_response(vault, result)


@app.post("/vaults/{vault_key}/mint", response_model=OperationResponse)
def mint(vault_key: str, payload: MintRequest) -> OperationResponse:
    vault = _vault(vault_key)
    try:
        result = vault.mint(payload.caller, payload.shares, payload.max_assets_in)
    except ValueError as exc:
        _raise_http(exc)
    return _operation_response(vault, result)


@app.post("/vaults/{vault_key}/withdraw", response_model=OperationResponse)
def withdraw(vault_key: str, payload: WithdrawRequest) -> OperationResponse:
    vault = _vault(vault_key)
    try:
        proof = _decode_proof(payload.proof)
        result = vault.withdraw(payload.caller, payload.assets, payload.max_shares_in, proof)
    except ValueError as exc:
        _raise_http(exc)
    return _operation_response(vault, result)


@app.post("/vaults/{vault_key}/redeem", response_model=OperationResponse)
def redeem(vault_key: str, payload: RedeemRequest) -> OperationResponse:
    vault = _vault(vault_key)
    try:
        proof = _decode_proof(payload.proof)
        result = vault.redeem(payload.caller, payload.shares, payload.min_assets_out, proof)
    except ValueError as exc:
        _raise_http(exc)
    return _operation_response(vault, result)


@app.post("/vaults/{vault_key}/pause", response_model=VaultResponse)
def pause(vault_key: str, payload: AdminRequest) -> VaultResponse:
    vault = _vault(vault_key)
    try:
        vault.pause(payload.caller)
    except ValueError as exc:
        _raise_http(exc)
    _persist()
    return VaultResponse(**vault.as_dict())


@app.post("/vaults/{vault_key}/unpause", response_model=VaultResponse)
def unpause(vault_key: str, payload: AdminRequest) -> VaultResponse:
    vault = _vault(vault_key)
    try:
        vault.unpause(payload.caller)
    except ValueError as exc:
        _raise_http(exc)
    _persist()
    return VaultResponse(**vault.as_dict())


@app.post("/vaults/{vault_key}/authority", response_model=VaultResponse)
def transfer_authority(vault_key: str, payload: AuthorityRequest) -> VaultResponse:
    vault = _vault(vault_key)
    try:
        vault.transfer_authority(payload.caller, payload.new_authority)
    except ValueError as exc:
        _raise_http(exc)
    _persist()
    return VaultResponse(**vault.as_dict())


@app.post("/vaults/{vault_key}/sync", response_model=SyncResponse)
def sync(vault_key: str, payload: AdminRequest) -> SyncResponse:
    vault = _vault(vault_key)
    try:
        previous, new = vault.sync(payload.caller)
    except ValueError as exc:
        _raise_http(exc)
    _persist()
    return SyncResponse(previous_total=previous, new_total=new)


@app.get("/vaults/{vault_key}/preview/{operation}", response_model=PreviewResponse)
def preview(vault_key: str, operation: str, amount: int) -> PreviewResponse:
    vault = _vault(vault_key)
    try:
        result = vault.preview(operation, amount)
    except ValueError as exc:
        _raise_http(exc)
    return PreviewResponse(operation=operation, amount=amount, result=result)


@app.get("/vaults/{vault_key}/accounts/{owner}", response_model=AccountResponse)
def account(vault_key: str, owner: str) -> AccountResponse:
    return AccountResponse(**_vault(vault_key).account_summary(owner))


@app.post("/vaults/{vault_key}/confidential/accounts", response_model=ConfidentialAccountResponse)
def configure_account(vault_key: str, payload: ConfigureAccountRequest) -> ConfidentialAccountResponse:
    shares = _confidential_shares(_vault(vault_key))
    try:
        pubkey = crypto_utils.decode_point(payload.elgamal_pubkey)
        validity_proof = crypto_utils.decode_schnorr_signature(payload.validity_proof)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail={"error": "InvalidProof", "message": str(exc)}) from exc
    try:
        created = shares.configure_account(
            payload.owner,
            pubkey,
            _decode_blob(payload.decryptable_zero_balance),
            validity_proof,
        )
    except ValueError as exc:
        _raise_http(exc)
    _persist()
    return ConfidentialAccountResponse(**created.to_dict())


@app.get("/vaults/{vault_key}/confidential/accounts/{owner}", response_model=ConfidentialAccountResponse)
def confidential_account(vault_key: str, owner: str) -> ConfidentialAccountResponse:
    shares = _confidential_shares(_vault(vault_key))
    try:
        return ConfidentialAccountResponse(**shares.account(owner).to_dict())
    except ValueError as exc:
        _raise_http(exc)


@app.post("/vaults/{vault_key}/confidential/apply-pending", response_model=ConfidentialAccountResponse)
def apply_pending(vault_key: str, payload: ApplyPendingRequest) -> ConfidentialAccountResponse:
    shares = _confidential_shares(_vault(vault_key))
    try:
        updated = shares.apply_pending(
            payload.owner,
            _decode_blob(payload.new_decryptable_available_balance),
            payload.expected_pending_balance_credit_counter,
        )
    except ValueError as exc:
        _raise_http(exc)
    _persist()
    return ConfidentialAccountResponse(**updated.to_dict())


@app.get("/vaults/{vault_key}/events")
def vault_events(vault_key: str, kind: str | None = None) -> List[Dict[str, Any]]:
    _vault(vault_key)
    events = _events.for_vault(vault_key)
    if kind is not None:
        events = [event for event in events if event.kind == kind]
    return [event.as_dict() for event in events]


def reset_state() -> None:
    """Reset the in-memory state. Intended for tests."""

    global _registry
    _events.clear()
    if STATE_FILE and os.path.exists(STATE_FILE):
        os.remove(STATE_FILE)
    _registry = _new_registry()


def main() -> None:
    import uvicorn

    configure_logging()
    logger.info("Serving share vault API on %s:%d", API_HOST, API_PORT)
    uvicorn.run(app, host=API_HOST, port=API_PORT)


if __name__ == "__main__":
    main()
