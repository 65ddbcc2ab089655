"""
Account service: registers accounts with the core and answers lookups.

Account identity (status, limits, PIN, IMF/COT codes) is owned by the
identity service; the core stores a copy to read from. Balances are
never set here. A new account starts at zero and is only funded
through the ledger.
"""

import logging
import secrets

import bcrypt
from sqlalchemy.orm import Session

from banking_core.errors import AccountNotFound
from banking_core.models.account import Account
from banking_core.repositories import AccountRepository
from banking_core.schemas.account import AccountCreate
from banking_core.services.references import ReferenceGenerator

logger = logging.getLogger(__name__)

ACCOUNT_NUMBER_LENGTH = 10


def generate_account_number(prefix: str = "") -> str:
    digits = ACCOUNT_NUMBER_LENGTH - len(prefix)
    first = str(secrets.randbelow(9) + 1)
    rest = "".join(str(secrets.randbelow(10)) for _ in range(digits - 1))
    return f"{prefix}{first}{rest}"


def hash_pin(pin: str) -> str:
    return bcrypt.hashpw(pin.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_pin(pin: str, pin_hash: str) -> bool:
    return bcrypt.checkpw(pin.encode("utf-8"), pin_hash.encode("utf-8"))


class AccountService:

    def __init__(self, db: Session, accounts: AccountRepository | None = None):
        self.db = db
        self.accounts = accounts or AccountRepository(db)
        self.numbers = ReferenceGenerator(generator=generate_account_number)

    def create_account(self, request: AccountCreate) -> Account:
        account_number = self.numbers.unique(
            "", lambda number: self.accounts.get_by_number(number) is not None
        )
        account = Account(
            account_number=account_number,
            name=request.name,
            email=request.email,
            currency=request.currency.upper(),
            status=request.status,
            daily_transfer_limit=request.daily_transfer_limit,
            daily_withdrawal_limit=request.daily_withdrawal_limit,
            pin_hash=hash_pin(request.pin) if request.pin else None,
            imf_code=request.imf_code,
            cot_code=request.cot_code,
        )
        self.accounts.add(account)
        logger.info("Account registered", extra={"account_id": account.id})
        return account

    def get_account(self, account_id: int) -> Account:
        account = self.accounts.get(account_id)
        if not account:
            raise AccountNotFound(f"Account {account_id} not found")
        return account

    def get_by_number(self, account_number: str) -> Account:
        account = self.accounts.get_by_number(account_number)
        if not account:
            raise AccountNotFound(f"Account {account_number} not found")
        return account
