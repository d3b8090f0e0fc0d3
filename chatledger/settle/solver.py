"""Settlement: peer transfers that bring every partner back to an equal share.

Greedy two-pointer netting. Debtors and creditors are each sorted by
magnitude; the largest debtor pays the largest creditor the smaller of the
two amounts until one side runs out.

This is a heuristic, not a minimum-transfer proof. It is optimal for two
parties and produces at most (debtors + creditors - 1) transfers, but for
N > 2 a different pairing can occasionally need fewer transfers.
"""

from __future__ import annotations

from dataclasses import dataclass

EPSILON = 0.01


@dataclass(frozen=True)
class PartnerBalance:
    """Snapshot of one partner's position.

    balance is signed: positive = overpaid (owed money back),
    negative = underpaid (owes money).
    """
    name: str
    balance: float
    total_contribution: float = 0.0
    equal_share: float = 0.0
    partner_id: str | None = None
    expenses_paid: float = 0.0
    funds_sent: float = 0.0


@dataclass(frozen=True)
class Settlement:
    from_partner: str
    to_partner: str
    amount: float


def settle(balances: list[PartnerBalance], epsilon: float = EPSILON) -> list[Settlement]:
    """Compute transfers from debtors to creditors.

    Returns an empty list when all balances are already (approximately)
    zero. No transfer is below epsilon and none is from a partner to itself.
    """
    debtors = sorted(
        ([b.name, -b.balance] for b in balances if b.balance < 0),
        key=lambda d: d[1], reverse=True,
    )
    creditors = sorted(
        ([b.name, b.balance] for b in balances if b.balance > 0),
        key=lambda c: c[1], reverse=True,
    )

    settlements: list[Settlement] = []
    i = j = 0
    while i < len(debtors) and j < len(creditors):
        debtor, creditor = debtors[i], creditors[j]
        transfer = min(debtor[1], creditor[1])
        if transfer > epsilon:
            settlements.append(Settlement(
                from_partner=debtor[0],
                to_partner=creditor[0],
                amount=round(transfer, 2),
            ))
        debtor[1] -= transfer
        creditor[1] -= transfer
        if debtor[1] < epsilon:
            i += 1
        if creditor[1] < epsilon:
            j += 1

    return settlements
