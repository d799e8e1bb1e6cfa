"""
Amortization Engine
===================
Fixed-rate loan math for proposal financing.

- Monthly payment per (principal, APR, term), including 0% APR promos
- Financing schedules across a configured lender panel
- Headline option selection (lowest monthly payment)

Pure functions: no I/O, no logging, deterministic for identical inputs.
"""

import math
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from currency import round_currency
from pricing_settings import LenderConfig
from proposal_errors import InvalidInput


@dataclass(frozen=True)
class FinancingOption:
    """One (lender, term) financing offer for a financed principal."""
    provider: str
    term_months: int
    apr_percent: float
    monthly_payment: Decimal
    total_payment: Decimal
    total_interest: Decimal
    principal: Decimal
    down_payment: Decimal = Decimal("0.00")
    promo_text: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("monthly_payment", "total_payment", "total_interest", "principal", "down_payment"):
            data[key] = float(data[key])
        return data


def compute_monthly_payment(principal: float, annual_rate_percent: float, term_months: int) -> float:
    """
    Monthly payment for a fully amortizing fixed-rate loan.

    payment = P * r * (1 + r)^n / ((1 + r)^n - 1) with r = APR / 100 / 12.
    A 0% APR is an interest-free loan: P / n.

    Returns full precision; callers round at their output boundary.
    """
    if principal < 0:
        raise InvalidInput(f"principal must be >= 0, got {principal}", field="principal")
    if annual_rate_percent < 0:
        raise InvalidInput(
            f"annual_rate_percent must be >= 0, got {annual_rate_percent}",
            field="annual_rate_percent",
        )
    if isinstance(term_months, bool) or int(term_months) != term_months or term_months < 1:
        raise InvalidInput(f"term_months must be a whole number >= 1, got {term_months}", field="term_months")

    n = int(term_months)
    if annual_rate_percent == 0:
        return principal / n

    r = annual_rate_percent / 100 / 12
    # expm1/log1p keep (1 + r)^n - 1 non-zero for rates too small for float addition
    growth_minus_one = math.expm1(n * math.log1p(r))
    if growth_minus_one == 0:
        return principal / n
    return principal * r * (growth_minus_one + 1) / growth_minus_one


def _terms_for(lender: LenderConfig, terms: Optional[Sequence[int]]) -> list[int]:
    if terms is None:
        return sorted(set(lender.eligible_terms))
    if not lender.eligible_terms:
        return sorted(set(terms))
    return sorted(set(terms) & set(lender.eligible_terms))


def build_financing_schedule(
    principal: float,
    lenders: Iterable[LenderConfig],
    terms: Optional[Sequence[int]] = None,
    rounding: str = "cent",
) -> list[FinancingOption]:
    """
    Every financing option the lender panel offers for a principal.

    Lenders whose [min_amount, max_amount] range does not contain the
    principal are left out. Each remaining lender offers the candidate terms
    it supports (its own eligible terms when no candidates are given).
    A principal <= 0 needs no financing and yields an empty list, as does a
    panel where nobody covers the amount.
    """
    if principal <= 0:
        return []

    principal_out = round_currency(principal, rounding)
    options: list[FinancingOption] = []
    for lender in lenders:
        if not lender.covers(principal):
            continue
        for term in _terms_for(lender, terms):
            monthly = compute_monthly_payment(principal, lender.apr_percent, term)
            total_payment = round_currency(monthly * term, rounding)
            options.append(FinancingOption(
                provider=lender.name,
                term_months=term,
                apr_percent=lender.apr_percent,
                monthly_payment=round_currency(monthly, rounding),
                total_payment=total_payment,
                total_interest=total_payment - principal_out,
                principal=principal_out,
                down_payment=round_currency(0, rounding),
                promo_text=lender.promo_text,
            ))
    return options


def lowest_monthly_payment(options: Sequence[FinancingOption]) -> Optional[FinancingOption]:
    """Headline option: the smallest monthly payment, shortest term on ties."""
    if not options:
        return None
    return min(options, key=lambda option: (option.monthly_payment, option.term_months))
