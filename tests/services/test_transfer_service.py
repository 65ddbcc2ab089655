"""
Tests for the TransferService.

Tests cover:
- Eager reservation of external transfers and their verification flags
- The fee being recorded but not withheld
- Synchronous internal transfers
- Sender eligibility, PIN and daily limit checks
- Completion, rejection and expiry with exactly-once refunds
"""

import threading
from datetime import timedelta
from decimal import Decimal

import pytest

from banking_core.errors import (
    AccountNotEligible,
    AccountNotFound,
    DuplicateReference,
    InsufficientFunds,
    InvalidPin,
    InvalidRecipient,
    InvalidTransition,
    LimitExceeded,
    TransferNotFound,
)
from banking_core.models.enums import (
    AccountStatus,
    BalanceKind,
    TransactionStatus,
    TransactionType,
    TransferStatus,
    TransferType,
    VerificationStep,
)
from banking_core.models.transaction import Transaction
from banking_core.models.transfer import Transfer
from banking_core.repositories import TransactionRepository
from banking_core.services.ledger_service import LedgerService
from banking_core.services.notifications import RecordingNotifier
from banking_core.services.references import ReferenceGenerator
from banking_core.services.transfer_service import TransferService
from banking_core.services.verification_service import VerificationService

PIN = "1234"

WIRE_RECIPIENT = {
    "account_number": "DE89370400440532013000",
    "account_name": "Jordan Meyer",
    "bank_name": "Commerzbank",
    "country": "Germany",
    "swift_code": "COBADEFFXXX",
}

LOCAL_RECIPIENT = {
    "account_number": "0123456789",
    "account_name": "Sam Lee",
    "bank_name": "First Local Bank",
}


def cash_of(db, account_id):
    return LedgerService(db).get_balances(account_id)[BalanceKind.CASH]


class FixedReferences(ReferenceGenerator):
    """Hands out the given references in order without checking them."""

    def __init__(self, *references):
        super().__init__(max_attempts=len(references))
        self.queue = list(references)

    def unique(self, prefix, exists):
        return self.queue.pop(0)


@pytest.fixture
def service(db_session, notifier, clock):
    return TransferService(db_session, notifier=notifier, clock=clock)


class TestInitiateExternal:

    def test_international_reserves_amount_and_requires_codes(
        self, db_session, service, make_account
    ):
        sender = make_account(cash="2000.00")

        transfer = service.initiate(
            sender.id, TransferType.INTERNATIONAL, WIRE_RECIPIENT,
            "1000.00", fee="10.00", pin=PIN,
        )
        db_session.commit()

        assert cash_of(db_session, sender.id) == Decimal("1000.00")
        assert transfer.status == TransferStatus.PENDING
        assert transfer.requires_imf_code is True
        assert transfer.requires_cot_code is True
        assert transfer.requires_otp is True
        assert transfer.codes_verified is False
        assert transfer.reference.startswith("IWT")

        txn = TransactionRepository(db_session).get_by_reference(transfer.reference)
        assert txn.type == TransactionType.TRANSFER_OUT
        assert txn.status == TransactionStatus.PENDING
        assert txn.balance_before == Decimal("2000.00")
        assert txn.balance_after == Decimal("1000.00")

    def test_fee_is_recorded_but_not_withheld(
        self, db_session, service, make_account
    ):
        sender = make_account(cash="2000.00")

        transfer = service.initiate(
            sender.id, TransferType.INTERNATIONAL, WIRE_RECIPIENT,
            "1000.00", fee="10.00", pin=PIN,
        )
        db_session.commit()

        assert transfer.fee == Decimal("10.00")
        assert transfer.total_amount == Decimal("1010.00")
        # Only the amount leaves the balance
        assert cash_of(db_session, sender.id) == Decimal("1000.00")

    def test_default_fee_policy_for_local(self, db_session, service, make_account):
        sender = make_account(cash="500.00")

        transfer = service.initiate(
            sender.id, TransferType.LOCAL, LOCAL_RECIPIENT, "200.00", pin=PIN
        )
        db_session.commit()

        assert transfer.fee == Decimal("2.00")
        assert transfer.total_amount == Decimal("202.00")
        assert transfer.requires_otp is True
        assert transfer.requires_imf_code is False
        assert transfer.requires_cot_code is False
        assert cash_of(db_session, sender.id) == Decimal("300.00")

    def test_crypto_debits_bitcoin_balance(self, db_session, service, make_account):
        sender = make_account(cash="100.00", bitcoin="0.5")

        transfer = service.initiate(
            sender.id, TransferType.CRYPTO,
            {"wallet_address": "bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq"},
            "0.125", pin=PIN,
        )
        db_session.commit()

        balances = LedgerService(db_session).get_balances(sender.id)
        assert balances[BalanceKind.BITCOIN] == Decimal("0.375")
        assert balances[BalanceKind.CASH] == Decimal("100.00")
        assert transfer.currency == "BTC"
        assert transfer.balance_kind == BalanceKind.BITCOIN
        assert transfer.fee == Decimal("0")

    def test_insufficient_funds_writes_nothing(
        self, db_session, service, make_account
    ):
        sender = make_account(cash="50.00")

        with pytest.raises(InsufficientFunds):
            service.initiate(
                sender.id, TransferType.LOCAL, LOCAL_RECIPIENT, "100.00", pin=PIN
            )
        db_session.rollback()

        assert cash_of(db_session, sender.id) == Decimal("50.00")
        assert db_session.query(Transfer).count() == 0
        assert db_session.query(Transaction).count() == 0

    @pytest.mark.parametrize("status", [
        AccountStatus.DORMANT,
        AccountStatus.SUSPENDED,
        AccountStatus.BLOCKED,
        AccountStatus.PENDING,
    ])
    def test_ineligible_sender(self, db_session, service, make_account, status):
        sender = make_account(cash="500.00", status=status)

        with pytest.raises(AccountNotEligible):
            service.initiate(
                sender.id, TransferType.LOCAL, LOCAL_RECIPIENT, "10.00", pin=PIN
            )

    def test_unknown_sender(self, service):
        with pytest.raises(AccountNotFound):
            service.initiate(999, TransferType.LOCAL, LOCAL_RECIPIENT, "10.00", pin=PIN)

    def test_pin_must_match(self, db_session, service, make_account):
        sender = make_account(cash="500.00", pin="4821")

        with pytest.raises(InvalidPin):
            service.initiate(
                sender.id, TransferType.LOCAL, LOCAL_RECIPIENT, "10.00",
                pin="0000",
            )
        with pytest.raises(InvalidPin):
            service.initiate(
                sender.id, TransferType.LOCAL, LOCAL_RECIPIENT, "10.00"
            )

        transfer = service.initiate(
            sender.id, TransferType.LOCAL, LOCAL_RECIPIENT, "10.00", pin="4821"
        )
        assert transfer.status == TransferStatus.PENDING

    @pytest.mark.parametrize("type, details", [
        (TransferType.LOCAL, LOCAL_RECIPIENT),
        (TransferType.INTERNAL, {"account_number": "0000000000"}),
    ])
    def test_account_without_pin_cannot_transfer(
        self, db_session, service, make_account, type, details
    ):
        sender = make_account(cash="500.00", pin=None)

        with pytest.raises(InvalidPin, match="PIN not set"):
            service.initiate(sender.id, type, details, "100.00")
        db_session.rollback()

        assert cash_of(db_session, sender.id) == Decimal("500.00")
        assert db_session.query(Transfer).count() == 0

    def test_initiation_notifies_sender(self, db_session, service, notifier, make_account):
        sender = make_account(cash="500.00")
        service.initiate(sender.id, TransferType.LOCAL, LOCAL_RECIPIENT, "10.00", pin=PIN)

        assert notifier.sent[-1]["title"] == "Transfer Initiated"
        assert notifier.sent[-1]["account_id"] == sender.id

    def test_reference_taken_at_insert_is_regenerated(
        self, db_session, service, notifier, clock, make_account
    ):
        sender = make_account(cash="500.00")
        taken = service.initiate(
            sender.id, TransferType.LOCAL, LOCAL_RECIPIENT, "10.00", pin=PIN
        )
        db_session.commit()

        racing = TransferService(
            db_session, notifier=notifier, clock=clock,
            references=FixedReferences(taken.reference, "LOCRETRY0000001"),
        )
        transfer = racing.initiate(
            sender.id, TransferType.LOCAL, LOCAL_RECIPIENT, "10.00", pin=PIN
        )
        db_session.commit()

        assert transfer.reference == "LOCRETRY0000001"
        assert cash_of(db_session, sender.id) == Decimal("480.00")
        txn = TransactionRepository(db_session).get_by_reference("LOCRETRY0000001")
        assert txn.meta["transfer_id"] == transfer.id

    def test_reference_retry_budget_exhausted(
        self, db_session, service, notifier, clock, make_account
    ):
        sender = make_account(cash="500.00")
        taken = service.initiate(
            sender.id, TransferType.LOCAL, LOCAL_RECIPIENT, "10.00", pin=PIN
        )
        db_session.commit()

        racing = TransferService(
            db_session, notifier=notifier, clock=clock,
            references=FixedReferences(taken.reference, taken.reference),
        )
        with pytest.raises(DuplicateReference):
            racing.initiate(
                sender.id, TransferType.LOCAL, LOCAL_RECIPIENT, "10.00", pin=PIN
            )
        db_session.rollback()

        assert cash_of(db_session, sender.id) == Decimal("490.00")


class TestDailyLimit:

    def test_limit_spans_local_and_international(
        self, db_session, service, make_account
    ):
        sender = make_account(cash="5000.00", daily_transfer_limit="1000")
        service.initiate(sender.id, TransferType.LOCAL, LOCAL_RECIPIENT, "600.00", pin=PIN)
        db_session.commit()

        with pytest.raises(LimitExceeded, match="Remaining today: 400.00"):
            service.initiate(
                sender.id, TransferType.INTERNATIONAL, WIRE_RECIPIENT, "500.00", pin=PIN
            )

    def test_released_transfers_free_the_limit(
        self, db_session, service, make_account
    ):
        sender = make_account(cash="5000.00", daily_transfer_limit="1000")
        first = service.initiate(
            sender.id, TransferType.LOCAL, LOCAL_RECIPIENT, "600.00", pin=PIN
        )
        service.reject(first.id, actor_id=1, reason="Wrong details")
        db_session.commit()

        transfer = service.initiate(
            sender.id, TransferType.LOCAL, LOCAL_RECIPIENT, "900.00", pin=PIN
        )
        assert transfer.status == TransferStatus.PENDING

    def test_internal_transfers_are_not_limited(
        self, db_session, service, make_account
    ):
        sender = make_account(cash="5000.00", daily_transfer_limit="100")
        recipient = make_account(name="Other Holder")

        transfer = service.initiate(
            sender.id, TransferType.INTERNAL,
            {"account_number": recipient.account_number}, "500.00", pin=PIN,
        )
        assert transfer.status == TransferStatus.COMPLETED

    def test_concurrent_transfers_cannot_both_pass_the_limit(
        self, db_session, make_account, session_factory
    ):
        sender = make_account(cash="5000.00", daily_transfer_limit="100")
        sender_id = sender.id
        db_session.commit()

        outcomes = []
        lock = threading.Lock()

        def worker():
            session = session_factory()
            try:
                TransferService(session, notifier=RecordingNotifier()).initiate(
                    sender_id, TransferType.LOCAL, LOCAL_RECIPIENT, "60.00", pin=PIN
                )
                session.commit()
                result = "ok"
            except LimitExceeded:
                session.rollback()
                result = "refused"
            finally:
                session.close()
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(outcomes) == ["ok", "refused"]
        assert cash_of(db_session, sender_id) == Decimal("4940.00")


class TestInternal:

    def test_internal_transfer_completes_synchronously(
        self, db_session, service, make_account
    ):
        sender = make_account(cash="300.00", name="Ada Sender")
        recipient = make_account(cash="20.00", name="Bo Recipient")

        transfer = service.initiate(
            sender.id, TransferType.INTERNAL,
            {"account_number": recipient.account_number}, "120.00", pin=PIN,
        )
        db_session.commit()

        assert transfer.status == TransferStatus.COMPLETED
        assert transfer.recipient_id == recipient.id
        assert transfer.codes_verified is True
        assert transfer.reference.startswith("INT")
        assert cash_of(db_session, sender.id) == Decimal("180.00")
        assert cash_of(db_session, recipient.id) == Decimal("140.00")

        repo = TransactionRepository(db_session)
        out = repo.get_by_reference(transfer.reference)
        incoming = repo.get_by_reference(f"{transfer.reference}-IN")
        assert out.type == TransactionType.TRANSFER_OUT
        assert out.status == TransactionStatus.COMPLETED
        assert incoming.type == TransactionType.TRANSFER_IN
        assert incoming.account_id == recipient.id
        assert incoming.balance_before == Decimal("20.00")
        assert incoming.balance_after == Decimal("140.00")

    def test_self_transfer_rejected(self, service, make_account):
        sender = make_account(cash="300.00")
        with pytest.raises(InvalidRecipient):
            service.initiate(
                sender.id, TransferType.INTERNAL,
                {"account_number": sender.account_number}, "10.00", pin=PIN,
            )

    def test_unknown_recipient(self, service, make_account):
        sender = make_account(cash="300.00")
        with pytest.raises(AccountNotFound, match="Recipient"):
            service.initiate(
                sender.id, TransferType.INTERNAL,
                {"account_number": "0000000000"}, "10.00", pin=PIN,
            )


class TestComplete:

    def _verified_local(self, db_session, notifier, clock, sender):
        service = TransferService(db_session, notifier=notifier, clock=clock)
        transfer = service.initiate(
            sender.id, TransferType.LOCAL, LOCAL_RECIPIENT, "100.00", pin=PIN
        )
        verification = VerificationService(
            db_session, notifier=notifier, clock=clock
        )
        issue = verification.request_otp(transfer.id, sender.id)
        verification.verify(transfer.id, sender.id, VerificationStep.OTP, issue.code)
        db_session.commit()
        return transfer

    def test_complete_settles_transaction(
        self, db_session, service, notifier, clock, make_account
    ):
        sender = make_account(cash="500.00")
        transfer = self._verified_local(db_session, notifier, clock, sender)

        completed = service.complete(transfer.id, actor_id=7, note="Sent via rail")
        db_session.commit()

        assert completed.status == TransferStatus.COMPLETED
        assert completed.processed_by == 7
        assert completed.meta["note"] == "Sent via rail"
        txn = TransactionRepository(db_session).get_by_reference(transfer.reference)
        assert txn.status == TransactionStatus.COMPLETED
        assert cash_of(db_session, sender.id) == Decimal("400.00")

    def test_complete_is_idempotent(
        self, db_session, service, notifier, clock, make_account
    ):
        sender = make_account(cash="500.00")
        transfer = self._verified_local(db_session, notifier, clock, sender)
        service.complete(transfer.id, actor_id=7)
        db_session.commit()

        again = service.complete(transfer.id, actor_id=7)
        assert again.status == TransferStatus.COMPLETED

    def test_unverified_transfer_cannot_complete(
        self, db_session, service, make_account
    ):
        sender = make_account(cash="2000.00")
        transfer = service.initiate(
            sender.id, TransferType.INTERNATIONAL, WIRE_RECIPIENT, "1000.00", pin=PIN
        )
        db_session.commit()

        with pytest.raises(InvalidTransition):
            service.complete(transfer.id, actor_id=1)

    def test_local_transfer_to_account_held_here_credits_it(
        self, db_session, service, notifier, clock, make_account
    ):
        sender = make_account(cash="500.00")
        recipient = make_account(cash="0.00", name="Known Recipient")
        transfer = service.initiate(
            sender.id, TransferType.LOCAL,
            {**LOCAL_RECIPIENT, "account_number": recipient.account_number},
            "100.00", pin=PIN,
        )
        assert transfer.recipient_id == recipient.id

        verification = VerificationService(db_session, notifier=notifier, clock=clock)
        issue = verification.request_otp(transfer.id, sender.id)
        verification.verify(transfer.id, sender.id, VerificationStep.OTP, issue.code)
        db_session.commit()
        assert cash_of(db_session, recipient.id) == Decimal("0.00")

        service.complete(transfer.id, actor_id=1)
        db_session.commit()

        assert cash_of(db_session, sender.id) == Decimal("400.00")
        assert cash_of(db_session, recipient.id) == Decimal("100.00")
        incoming = TransactionRepository(db_session).get_by_reference(
            f"{transfer.reference}-IN"
        )
        assert incoming.type == TransactionType.TRANSFER_IN
        assert incoming.account_id == recipient.id

    def test_local_transfer_to_outside_account_credits_nobody(
        self, db_session, service, notifier, clock, make_account
    ):
        sender = make_account(cash="500.00")
        transfer = self._verified_local(db_session, notifier, clock, sender)
        assert transfer.recipient_id is None

        service.complete(transfer.id, actor_id=1)
        db_session.commit()

        assert TransactionRepository(db_session).get_by_reference(
            f"{transfer.reference}-IN"
        ) is None

    def test_local_transfer_to_own_account_number_rejected(
        self, db_session, service, make_account
    ):
        sender = make_account(cash="500.00")

        with pytest.raises(InvalidRecipient):
            service.initiate(
                sender.id, TransferType.LOCAL,
                {**LOCAL_RECIPIENT, "account_number": sender.account_number},
                "100.00", pin=PIN,
            )


class TestRejectAndExpire:

    def test_reject_refunds_once(self, db_session, service, notifier, make_account):
        sender = make_account(cash="2000.00")
        transfer = service.initiate(
            sender.id, TransferType.INTERNATIONAL, WIRE_RECIPIENT, "1000.00", pin=PIN
        )
        db_session.commit()

        service.reject(transfer.id, actor_id=3, reason="Compliance hold")
        db_session.commit()
        service.reject(transfer.id, actor_id=3, reason="Compliance hold")
        db_session.commit()

        assert transfer.status == TransferStatus.FAILED
        assert cash_of(db_session, sender.id) == Decimal("2000.00")

        repo = TransactionRepository(db_session)
        original = repo.get_by_reference(transfer.reference)
        assert original.status == TransactionStatus.FAILED
        reversals, total = repo.list_for_account(
            sender.id, type=TransactionType.CREDIT
        )
        assert total == 1
        assert reversals[0].meta["reversal_of"] == transfer.reference
        assert reversals[0].reference.startswith("REV")
        assert notifier.sent[-1]["title"] == "Transfer Failed"

    def test_cancel(self, db_session, service, make_account):
        sender = make_account(cash="100.00")
        transfer = service.initiate(
            sender.id, TransferType.LOCAL, LOCAL_RECIPIENT, "40.00", pin=PIN
        )
        service.reject(
            transfer.id, actor_id=3, status=TransferStatus.CANCELLED
        )
        db_session.commit()

        assert transfer.status == TransferStatus.CANCELLED
        assert cash_of(db_session, sender.id) == Decimal("100.00")

    def test_completed_transfer_cannot_be_rejected(
        self, db_session, service, make_account
    ):
        sender = make_account(cash="100.00")
        recipient = make_account(name="Other Holder")
        transfer = service.initiate(
            sender.id, TransferType.INTERNAL,
            {"account_number": recipient.account_number}, "40.00", pin=PIN,
        )
        db_session.commit()

        with pytest.raises(InvalidTransition):
            service.reject(transfer.id, actor_id=3)

    def test_expire_stale_refunds_abandoned_transfers(
        self, db_session, service, clock, make_account
    ):
        sender = make_account(cash="1000.00")
        old = service.initiate(
            sender.id, TransferType.LOCAL, LOCAL_RECIPIENT, "100.00", pin=PIN
        )
        db_session.commit()

        later = clock() + timedelta(hours=73)
        fresh = service.initiate(
            sender.id, TransferType.LOCAL, LOCAL_RECIPIENT, "50.00", pin=PIN
        )
        fresh.created_at = later - timedelta(hours=1)
        db_session.commit()

        expired = service.expire_stale(now=later)
        db_session.commit()

        assert [t.id for t in expired] == [old.id]
        assert old.status == TransferStatus.EXPIRED
        assert fresh.status == TransferStatus.PENDING
        assert cash_of(db_session, sender.id) == Decimal("950.00")

        # A second sweep finds nothing left to refund
        assert service.expire_stale(now=later) == []
        assert cash_of(db_session, sender.id) == Decimal("950.00")

    def test_expire_skips_transfer_no_longer_pending(
        self, db_session, service, clock, make_account
    ):
        sender = make_account(cash="1000.00")
        transfer = service.initiate(
            sender.id, TransferType.LOCAL, LOCAL_RECIPIENT, "100.00", pin=PIN
        )
        service.reject(transfer.id, actor_id=1)
        db_session.commit()

        assert service.expire(transfer.id, now=clock() + timedelta(days=10)) is None


class TestQueries:

    def test_get_transfer_checks_owner(self, db_session, service, make_account):
        sender = make_account(cash="100.00")
        other = make_account(name="Someone Else")
        transfer = service.initiate(
            sender.id, TransferType.LOCAL, LOCAL_RECIPIENT, "10.00", pin=PIN
        )
        db_session.commit()

        assert service.get_transfer(transfer.id, sender_id=sender.id) is transfer
        with pytest.raises(TransferNotFound):
            service.get_transfer(transfer.id, sender_id=other.id)

    def test_list_for_sender(self, db_session, service, make_account):
        sender = make_account(cash="1000.00")
        for amount in ("10.00", "20.00", "30.00"):
            service.initiate(sender.id, TransferType.LOCAL, LOCAL_RECIPIENT, amount, pin=PIN)
        db_session.commit()

        rows, total = service.list_for_sender(sender.id, limit=2)
        assert total == 3
        assert len(rows) == 2
