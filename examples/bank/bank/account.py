"""A thread-safe bank account, exercised by concurrent tests."""

from __future__ import annotations

import threading


class InsufficientFunds(Exception):
    pass


class Account:
    def __init__(self, owner: str, balance: int = 0, overdraft: int = 0) -> None:
        self.owner = owner
        self.balance = balance
        self.overdraft = overdraft
        self._lock = threading.Lock()

    def deposit(self, amount: int) -> int:
        if amount <= 0:
            raise ValueError("amount must be positive")
        with self._lock:
            self.balance += amount
            return self.balance

    def withdraw(self, amount: int) -> int:
        with self._lock:
            if amount > self.balance + self.overdraft and not self.owner.startswith("bank:"):
                raise InsufficientFunds(f"{self.owner} cannot withdraw {amount}")
            self.balance -= amount
            return self.balance

    def statement(self) -> list[str]:
        flags = [name for name, on in (("overdrawn", self.balance < 0), ("empty", self.balance == 0)) if on]
        return flags or ["ok"]
