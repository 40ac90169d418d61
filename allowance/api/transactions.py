from typing import Any

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from allowance.api.auth import get_current_user
from allowance.api.schemas import TransactionCreateRequest, TransactionResponse
from allowance.core.database import get_db
from allowance.models.activity import Transaction, TransactionType
from allowance.models.user import User

router = APIRouter(prefix="/transactions", tags=["transactions"])


def _transaction_payload(transaction: Transaction) -> dict[str, Any]:
    return {
        "id": transaction.id,
        "type": transaction.type,
        "amount": float(transaction.amount),
        "category": transaction.category,
        "description": transaction.description,
        "transaction_date": transaction.transaction_date,
    }


@router.get("", response_model=list[TransactionResponse])
async def list_transactions(
    type: TransactionType | None = Query(default=None, description="Only income or only expenses"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    query = select(Transaction).where(Transaction.user_id == current_user.id)
    if type is not None:
        query = query.where(Transaction.type == type.value)
    result = await db.execute(query.order_by(Transaction.transaction_date.desc()))
    return [_transaction_payload(t) for t in result.scalars().all()]


@router.post("", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    request: TransactionCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    transaction = Transaction(
        user_id=current_user.id,
        type=request.type.value,
        amount=request.amount,
        category=request.category,
        description=request.description,
        transaction_date=request.transaction_date,
    )
    db.add(transaction)
    await db.commit()
    await db.refresh(transaction)
    return _transaction_payload(transaction)
