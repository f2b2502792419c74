"""Balance and ledger endpoints."""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from genledger.api.deps import get_db, get_owner_id, require_admin
from genledger.models.transaction import TransactionKind
from genledger.schemas.balance import Balance, CreditCreate, Transaction, TransactionList
from genledger.services.ledger_service import LedgerService

router = APIRouter(prefix="/balance", tags=["Balance"])


@router.get("", response_model=Balance)
async def get_balance(
    db: AsyncSession = Depends(get_db),
    owner_id: str = Depends(get_owner_id),
) -> Balance:
    """Current balance of the caller (zero if they never had one)."""
    balance = await LedgerService(db).get_balance(owner_id)
    if balance is None:
        return Balance(owner_id=owner_id, balance_cents=0, unlimited_access=False)
    return Balance.model_validate(balance)


@router.get("/transactions", response_model=TransactionList)
async def list_transactions(
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    owner_id: str = Depends(get_owner_id),
) -> TransactionList:
    """The caller's ledger, newest first."""
    transactions = await LedgerService(db).list_transactions(owner_id, limit=limit)
    return TransactionList(
        items=[Transaction.model_validate(t) for t in transactions],
        total=len(transactions),
    )


@router.post("/topups", response_model=Transaction, status_code=status.HTTP_201_CREATED)
async def record_credit(
    credit_data: CreditCreate,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_admin),
) -> Transaction:
    """
    Record a top-up or manual adjustment (admin only).

    The entry is appended to the ledger and applied to the balance in the same
    database transaction.
    """
    service = LedgerService(db)
    try:
        transaction = await service.record_credit(
            owner_id=credit_data.owner_id,
            amount_cents=credit_data.amount_cents,
            kind=TransactionKind(credit_data.kind),
            description=credit_data.description or f"{credit_data.kind} by {current_user.get('sub')}",
        )
        await db.commit()
        return Transaction.model_validate(transaction)
    except ValueError as e:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        ) from e
