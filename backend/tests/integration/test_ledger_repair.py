"""Integration tests for the balance ledger and its repair pass."""
from datetime import datetime

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from genledger.models.balance import Balance
from genledger.models.job import BillingState, JobStatus
from genledger.models.transaction import Transaction, TransactionKind
from genledger.services.ledger_service import LedgerService
from genledger.services.reconciler import BillingReconciler, ReconcileOutcome
from genledger.services.repair_service import LedgerRepairService

OWNER = "user_ledger"


@pytest.mark.asyncio
async def test_topup_is_logged_and_applied(db_session: AsyncSession) -> None:
    """Test that a top-up appends a ledger entry and updates the balance."""
    ledger = LedgerService(db_session)

    transaction = await ledger.record_credit(OWNER, 500, description="card top-up")
    await db_session.commit()

    assert transaction.kind == TransactionKind.TOPUP
    assert transaction.balance_applied_at is not None
    assert (await ledger.get_balance(OWNER)).balance_cents == 500
    assert await ledger.ledger_sum(OWNER) == 500
    await db_session.commit()


@pytest.mark.asyncio
async def test_applying_twice_is_a_no_op(db_session: AsyncSession) -> None:
    """Test that replaying an applied entry does not double the balance."""
    ledger = LedgerService(db_session)
    transaction = await ledger.record_credit(OWNER, 500)

    assert await ledger.apply_transaction(transaction) is False
    await db_session.commit()

    assert (await ledger.get_balance(OWNER)).balance_cents == 500
    await db_session.commit()


@pytest.mark.asyncio
async def test_invalid_credits_are_rejected(db_session: AsyncSession) -> None:
    """Test that usage entries and non-positive top-ups cannot be recorded manually."""
    ledger = LedgerService(db_session)

    with pytest.raises(ValueError):
        await ledger.record_credit(OWNER, 0)
    with pytest.raises(ValueError):
        await ledger.record_credit(OWNER, -100, kind=TransactionKind.TOPUP)
    with pytest.raises(ValueError):
        await ledger.record_credit(OWNER, -100, kind=TransactionKind.USAGE)

    adjustment = await ledger.record_credit(OWNER, -100, kind=TransactionKind.ADJUSTMENT, description="refund reversal")
    await db_session.commit()
    assert adjustment.amount_cents == -100
    assert (await ledger.get_balance(OWNER)).balance_cents == -100
    await db_session.commit()


@pytest.mark.asyncio
async def test_failed_balance_update_is_replayed(
    session_factory, make_job, make_capability, fund, fetch, monkeypatch
) -> None:
    """Test that a charge whose balance update failed is applied by the repair pass."""
    await fund(OWNER, 500)
    capability = await make_capability({"cost_per_run_cents": 150})
    job = await make_job(
        {
            "owner_id": OWNER,
            "capability": capability.slug,
            "status": JobStatus.SUCCEEDED,
            "cost_basis_cents": 150,
            "output_refs": ["https://generated-images.s3.us-east-1.amazonaws.com/a.png"],
            "materialized_at": datetime.utcnow(),
        }
    )

    async def locked_balance(self, transaction):
        raise RuntimeError("balance row locked")

    monkeypatch.setattr(LedgerService, "apply_transaction", locked_balance)
    async with session_factory() as session:
        result = await BillingReconciler(session).reconcile(job.id, "webhook")
    monkeypatch.undo()

    # The job is billed and the charge is logged, but the balance was not touched
    assert result.outcome == ReconcileOutcome.CHARGED
    assert (await fetch.job(job.id)).billing_state == BillingState.COMPLETE
    transaction = (await fetch.job_transactions(job.id))[0]
    assert transaction.balance_applied_at is None
    assert (await fetch.balance(OWNER)).balance_cents == 500

    async with session_factory() as session:
        summary = await LedgerRepairService(session).run()

    assert summary.replayed == 1
    assert summary.errors == 0
    assert summary.drifts == []
    assert (await fetch.balance(OWNER)).balance_cents == 350

    async with session_factory() as session:
        again = await LedgerRepairService(session).run()
    assert again.replayed == 0
    assert (await fetch.balance(OWNER)).balance_cents == 350


@pytest.mark.asyncio
async def test_billing_flag_synced_from_existing_transaction(session_factory, make_job, fetch) -> None:
    """Test that a pending job whose usage entry exists is marked billed."""
    job = await make_job(
        {"owner_id": OWNER, "status": JobStatus.SUCCEEDED, "output_refs": ["https://x.test/a.png"]}
    )
    async with session_factory() as session:
        session.add(
            Transaction(
                owner_id=OWNER,
                job_id=job.id,
                amount_cents=-10,
                kind=TransactionKind.USAGE,
                trigger="poll",
                extra_metadata={"settled_cost_cents": 10},
            )
        )
        await session.commit()

    async with session_factory() as session:
        summary = await LedgerRepairService(session).run()

    assert summary.jobs_synced == 1
    assert summary.replayed == 1
    stored = await fetch.job(job.id)
    assert stored.billing_state == BillingState.COMPLETE
    assert stored.billed_via == "poll"
    assert stored.billed_amount_cents == 10
    assert stored.settled_cost_cents == 10
    assert (await fetch.balance(OWNER)).balance_cents == -10


@pytest.mark.asyncio
async def test_balance_drift_is_reported_not_corrected(session_factory, fund, fetch) -> None:
    """Test that a balance edited outside the ledger is detected and left as is."""
    await fund(OWNER, 500)
    await fund("user_consistent", 200)
    async with session_factory() as session:
        await session.execute(update(Balance).where(Balance.owner_id == OWNER).values(balance_cents=900))
        await session.commit()

    async with session_factory() as session:
        summary = await LedgerRepairService(session).run()

    assert [drift.owner_id for drift in summary.drifts] == [OWNER]
    assert summary.drifts[0].drift_cents == 400
    assert summary.as_dict()["drifted_balances"] == 1
    assert (await fetch.balance(OWNER)).balance_cents == 900
