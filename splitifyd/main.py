"""
Splitifyd - FastAPI Web Backend

This module serves as the main entry point for the expense splitting API.

Features:
    - RESTful API for groups, members, expenses, settlements and comments
    - Integration with Firebase Firestore backend
    - Group permissions with security presets and role management
    - Live balances and suggested payments per currency
    - Cursor-based pagination on every list endpoint

Endpoints:
    POST   /groups                                    - Create a group
    GET    /groups/{group_id}                         - Group detail with balances
    GET    /groups/{group_id}/balances                - Balances and suggested payments
    GET    /groups/{group_id}/permission-history      - Permission change log
    GET    /groups/{group_id}/members                 - List members
    POST   /groups/{group_id}/members                 - Add a member
    DELETE /groups/{group_id}/members/{user_id}       - Remove a member / leave
    PUT    /groups/{group_id}/security-preset         - Apply a security preset
    PUT    /groups/{group_id}/permissions             - Override permissions
    PUT    /groups/{group_id}/members/{user_id}/role  - Change a member's role
    GET    /groups/{group_id}/permissions/me          - Caller's permissions
    POST   /expenses                                  - Add an expense
    GET    /expenses/{expense_id}                     - Get an expense
    PUT    /expenses/{expense_id}                     - Edit an expense
    DELETE /expenses/{expense_id}                     - Delete an expense
    GET    /groups/{group_id}/expenses                - List expenses
    POST   /settlements                               - Record a settlement
    GET    /settlements/{settlement_id}               - Get a settlement
    PUT    /settlements/{settlement_id}               - Edit a settlement
    DELETE /settlements/{settlement_id}               - Delete a settlement
    GET    /groups/{group_id}/settlements             - List settlements
    POST   /groups/{group_id}/comments                - Post a comment
    GET    /groups/{group_id}/comments                - List comments
    GET    /currencies                                - Supported currencies
    GET    /health                                    - Health check

Authentication:
    The caller's user ID is read from the X-User-Id header, set by the
    upstream authentication layer.

Usage:
    uvicorn main:app --reload
"""

import logging
from typing import Any, Optional, Union

from fastapi import Body, Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from comments import add_comment, list_comments
from config.settings import settings
from currencies import supported_currencies
from errors import ApiError, Unauthenticated, ValidationError
from expenses import create_expense, delete_expense, get_expense, list_expenses, update_expense
from firebase_store import FirestoreStore
from groups import (
    create_group,
    get_group_balances_view,
    get_group_detail,
    list_permission_history,
    serialize_group,
)
from members import add_member, list_members, remove_member
from permissions import PermissionCache, PermissionEngine
from settlements import (
    create_settlement,
    delete_settlement,
    get_settlement,
    list_settlements,
    update_settlement,
)

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

# Amounts are passed through untouched so validation can report precision errors
AmountInput = Union[str, int, float]


# =============================================================================
# Pydantic Models for Request/Response Validation
# =============================================================================

class CamelModel(BaseModel):
    """Base model exchanging camelCase JSON."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GroupCreate(CamelModel):
    """Request model for creating a group."""
    name: str = Field(..., description="Group name")
    description: Optional[str] = Field(None, description="Optional description")


class MemberAdd(CamelModel):
    """Request model for adding a member."""
    user_id: str = Field(..., description="User to add")


class SecurityPresetUpdate(CamelModel):
    preset: str = Field(..., description="open or managed")


class RoleUpdate(CamelModel):
    role: str = Field(..., description="admin or member")


class SplitInput(CamelModel):
    """A participant's share; amount may be omitted for equal/percentage splits."""
    user_id: str
    amount: Optional[AmountInput] = None
    percentage: Optional[AmountInput] = None


class ExpenseCreate(CamelModel):
    """Request model for adding an expense."""
    group_id: str
    paid_by: str
    amount: AmountInput
    currency: str
    description: str
    split_type: str
    participants: list[str]
    splits: Optional[list[SplitInput]] = None
    category: Optional[str] = None
    date: Optional[str] = None


class ExpenseUpdate(CamelModel):
    """Request model for editing an expense; omitted fields stay unchanged."""
    paid_by: Optional[str] = None
    amount: Optional[AmountInput] = None
    currency: Optional[str] = None
    description: Optional[str] = None
    split_type: Optional[str] = None
    participants: Optional[list[str]] = None
    splits: Optional[list[SplitInput]] = None
    category: Optional[str] = None
    date: Optional[str] = None
    updated_at: Optional[str] = Field(None, description="Version the client last read")


class SettlementCreate(CamelModel):
    """Request model for recording a settlement."""
    group_id: str
    payer_id: str
    payee_id: str
    amount: AmountInput
    currency: str
    note: Optional[str] = None
    date: Optional[str] = None


class SettlementUpdate(CamelModel):
    payer_id: Optional[str] = None
    payee_id: Optional[str] = None
    amount: Optional[AmountInput] = None
    currency: Optional[str] = None
    note: Optional[str] = None
    date: Optional[str] = None
    updated_at: Optional[str] = None


class CommentCreate(CamelModel):
    text: str
    expense_id: Optional[str] = None


class PermissionsResponse(CamelModel):
    """Response model for a member's effective permissions."""
    role: str
    can_edit_any_expense: bool
    can_delete_any_expense: bool
    can_invite_members: bool
    can_approve_members: bool
    can_manage_settings: bool


class PageResponse(CamelModel):
    """Response model for paginated lists."""
    items: list[dict]
    has_more: bool
    next_cursor: Optional[str]


class CurrencyResponse(CamelModel):
    code: str
    name: str
    decimal_digits: int


class MessageResponse(BaseModel):
    message: str


def _payload(model: BaseModel) -> dict:
    """Dump a request model to the camelCase dict the services expect."""
    return model.model_dump(by_alias=True, exclude_none=True)


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="Splitifyd",
    description="Group expense splitting with multi-currency balances",
    version="1.0.0"
)

_permission_cache = PermissionCache()


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %r", request.method, request.url.path, exc)
    else:
        logger.debug("%s %s rejected: %r", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request body"
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    error = ValidationError(message)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# =============================================================================
# Dependencies
# =============================================================================

def get_store():
    """Document store for the request; raises ServiceUnavailable without Firestore."""
    return FirestoreStore()


def get_engine(store=Depends(get_store)) -> PermissionEngine:
    return PermissionEngine(store, _permission_cache)


def get_current_user(x_user_id: Optional[str] = Header(None)) -> str:
    if x_user_id is None or not x_user_id.strip():
        raise Unauthenticated()
    return x_user_id.strip()


# =============================================================================
# Groups
# =============================================================================

@app.post("/groups", status_code=201)
def create_group_endpoint(
    group_data: GroupCreate,
    user_id: str = Depends(get_current_user),
    engine: PermissionEngine = Depends(get_engine)
):
    """Create a group; the caller becomes its admin."""
    group = create_group(engine, user_id, group_data.name, group_data.description)
    return serialize_group(group)


@app.get("/groups/{group_id}")
def get_group_endpoint(
    group_id: str,
    user_id: str = Depends(get_current_user),
    engine: PermissionEngine = Depends(get_engine)
):
    """
    Get a group.

    Response includes live balances, suggested payments and the caller's
    permissions.
    """
    return get_group_detail(engine, user_id, group_id)


@app.get("/groups/{group_id}/balances")
def get_balances_endpoint(
    group_id: str,
    user_id: str = Depends(get_current_user),
    engine: PermissionEngine = Depends(get_engine)
):
    return get_group_balances_view(engine, user_id, group_id)


@app.get("/groups/{group_id}/permission-history")
def get_permission_history_endpoint(
    group_id: str,
    user_id: str = Depends(get_current_user),
    engine: PermissionEngine = Depends(get_engine)
):
    return {"history": list_permission_history(engine, user_id, group_id)}


# =============================================================================
# Members and permissions
# =============================================================================

@app.get("/groups/{group_id}/members")
def list_members_endpoint(
    group_id: str,
    user_id: str = Depends(get_current_user),
    engine: PermissionEngine = Depends(get_engine)
):
    return {"members": list_members(engine, user_id, group_id)}


@app.post("/groups/{group_id}/members", status_code=201)
def add_member_endpoint(
    group_id: str,
    member_data: MemberAdd,
    user_id: str = Depends(get_current_user),
    engine: PermissionEngine = Depends(get_engine)
):
    group = add_member(engine, user_id, group_id, member_data.user_id)
    return serialize_group(group)


@app.delete("/groups/{group_id}/members/{member_id}")
def remove_member_endpoint(
    group_id: str,
    member_id: str,
    user_id: str = Depends(get_current_user),
    engine: PermissionEngine = Depends(get_engine)
):
    """Remove a member; members may remove themselves to leave the group."""
    group = remove_member(engine, user_id, group_id, member_id)
    return serialize_group(group)


@app.put("/groups/{group_id}/security-preset")
def apply_security_preset_endpoint(
    group_id: str,
    preset_data: SecurityPresetUpdate,
    user_id: str = Depends(get_current_user),
    engine: PermissionEngine = Depends(get_engine)
):
    group = engine.apply_security_preset(user_id, group_id, preset_data.preset)
    return serialize_group(group)


@app.put("/groups/{group_id}/permissions")
def update_permissions_endpoint(
    group_id: str,
    permissions: dict[str, Any] = Body(...),
    user_id: str = Depends(get_current_user),
    engine: PermissionEngine = Depends(get_engine)
):
    """Override individual permissions; the group's preset becomes custom."""
    group = engine.update_group_permissions(user_id, group_id, permissions)
    return serialize_group(group)


@app.put("/groups/{group_id}/members/{member_id}/role")
def set_member_role_endpoint(
    group_id: str,
    member_id: str,
    role_data: RoleUpdate,
    user_id: str = Depends(get_current_user),
    engine: PermissionEngine = Depends(get_engine)
):
    group = engine.set_member_role(user_id, group_id, member_id, role_data.role)
    return serialize_group(group)


@app.get("/groups/{group_id}/permissions/me", response_model=PermissionsResponse)
def get_my_permissions_endpoint(
    group_id: str,
    user_id: str = Depends(get_current_user),
    engine: PermissionEngine = Depends(get_engine)
):
    return PermissionsResponse(**engine.get_user_permissions(user_id, group_id))


# =============================================================================
# Expenses
# =============================================================================

@app.post("/expenses", status_code=201)
def create_expense_endpoint(
    expense_data: ExpenseCreate,
    user_id: str = Depends(get_current_user),
    engine: PermissionEngine = Depends(get_engine)
):
    """
    Add an expense.

    Request flow:
        1. Check the caller is a member of the group
        2. Validate amount, currency and splits
        3. Check payer and participants are members
        4. Store the expense
    """
    data = _payload(expense_data)
    group_id = data.pop("groupId")
    return create_expense(engine, user_id, group_id, data)


@app.get("/expenses/{expense_id}")
def get_expense_endpoint(
    expense_id: str,
    user_id: str = Depends(get_current_user),
    engine: PermissionEngine = Depends(get_engine)
):
    return get_expense(engine, user_id, expense_id)


@app.put("/expenses/{expense_id}")
def update_expense_endpoint(
    expense_id: str,
    expense_data: ExpenseUpdate,
    user_id: str = Depends(get_current_user),
    engine: PermissionEngine = Depends(get_engine)
):
    return update_expense(engine, user_id, expense_id, _payload(expense_data))


@app.delete("/expenses/{expense_id}", response_model=MessageResponse)
def delete_expense_endpoint(
    expense_id: str,
    user_id: str = Depends(get_current_user),
    engine: PermissionEngine = Depends(get_engine)
):
    delete_expense(engine, user_id, expense_id)
    return MessageResponse(message="Expense deleted")


@app.get("/groups/{group_id}/expenses", response_model=PageResponse)
def list_expenses_endpoint(
    group_id: str,
    cursor: Optional[str] = None,
    limit: Optional[str] = None,
    include_deleted: bool = Query(False, alias="includeDeleted"),
    user_id: str = Depends(get_current_user),
    engine: PermissionEngine = Depends(get_engine)
):
    page = list_expenses(engine, user_id, group_id, cursor=cursor, limit=limit, include_deleted=include_deleted)
    return PageResponse(**page)


# =============================================================================
# Settlements
# =============================================================================

@app.post("/settlements", status_code=201)
def create_settlement_endpoint(
    settlement_data: SettlementCreate,
    user_id: str = Depends(get_current_user),
    engine: PermissionEngine = Depends(get_engine)
):
    data = _payload(settlement_data)
    group_id = data.pop("groupId")
    return create_settlement(engine, user_id, group_id, data)


@app.get("/settlements/{settlement_id}")
def get_settlement_endpoint(
    settlement_id: str,
    user_id: str = Depends(get_current_user),
    engine: PermissionEngine = Depends(get_engine)
):
    return get_settlement(engine, user_id, settlement_id)


@app.put("/settlements/{settlement_id}")
def update_settlement_endpoint(
    settlement_id: str,
    settlement_data: SettlementUpdate,
    user_id: str = Depends(get_current_user),
    engine: PermissionEngine = Depends(get_engine)
):
    return update_settlement(engine, user_id, settlement_id, _payload(settlement_data))


@app.delete("/settlements/{settlement_id}", response_model=MessageResponse)
def delete_settlement_endpoint(
    settlement_id: str,
    user_id: str = Depends(get_current_user),
    engine: PermissionEngine = Depends(get_engine)
):
    delete_settlement(engine, user_id, settlement_id)
    return MessageResponse(message="Settlement deleted")


@app.get("/groups/{group_id}/settlements", response_model=PageResponse)
def list_settlements_endpoint(
    group_id: str,
    cursor: Optional[str] = None,
    limit: Optional[str] = None,
    include_deleted: bool = Query(False, alias="includeDeleted"),
    user_id: str = Depends(get_current_user),
    engine: PermissionEngine = Depends(get_engine)
):
    page = list_settlements(engine, user_id, group_id, cursor=cursor, limit=limit, include_deleted=include_deleted)
    return PageResponse(**page)


# =============================================================================
# Comments
# =============================================================================

@app.post("/groups/{group_id}/comments", status_code=201)
def add_comment_endpoint(
    group_id: str,
    comment_data: CommentCreate,
    user_id: str = Depends(get_current_user),
    engine: PermissionEngine = Depends(get_engine)
):
    return add_comment(engine, user_id, group_id, comment_data.text, expense_id=comment_data.expense_id)


@app.get("/groups/{group_id}/comments", response_model=PageResponse)
def list_comments_endpoint(
    group_id: str,
    cursor: Optional[str] = None,
    limit: Optional[str] = None,
    expense_id: Optional[str] = Query(None, alias="expenseId"),
    user_id: str = Depends(get_current_user),
    engine: PermissionEngine = Depends(get_engine)
):
    page = list_comments(engine, user_id, group_id, cursor=cursor, limit=limit, expense_id=expense_id)
    return PageResponse(**page)


# =============================================================================
# Reference data and health
# =============================================================================

@app.get("/currencies", response_model=list[CurrencyResponse])
async def list_currencies():
    """Supported currencies and their decimal digits."""
    return [
        CurrencyResponse(code=rule.code, name=rule.name, decimal_digits=rule.decimal_digits)
        for rule in supported_currencies()
    ]


@app.get("/health")
async def health_check():
    """Health check endpoint to verify API is running."""
    return {"status": "healthy", "service": "Splitifyd"}


# =============================================================================
# Run with: python main.py
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=True)
