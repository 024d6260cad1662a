from __future__ import annotations

from decimal import Decimal, InvalidOperation

from django import forms

from marketdata.services import normalize_symbol

from .services import build_portfolio_entries

PCT_FIELD_PREFIX = "pct_"


class PortfolioAllocationForm(forms.Form):
    """
    Collects the dynamic `pct_<SYMBOL>` fields posted by the portfolio
    builder. Blank and zero allocations are ignored; the remaining ones are
    priced and exposed as `cleaned_data["entries"]`. Portfolio rules
    (asset count, limits, total) are enforced by the battle services.
    """

    def clean(self):
        cleaned = super().clean()
        allocations: dict[str, Decimal] = {}
        for key, raw in self.data.items():
            if not key.startswith(PCT_FIELD_PREFIX):
                continue
            raw = (raw or "").strip()
            if not raw:
                continue
            try:
                symbol = normalize_symbol(key[len(PCT_FIELD_PREFIX):])
                pct = Decimal(raw)
            except (ValueError, InvalidOperation):
                self.add_error(None, f"Invalid allocation field: {key}.")
                continue
            if not pct.is_finite():
                self.add_error(None, f"Invalid percent for {symbol}.")
                continue
            if pct == 0:
                continue
            allocations[symbol] = pct

        try:
            cleaned["entries"] = build_portfolio_entries(allocations)
        except ValueError as e:
            self.add_error(None, str(e))
        return cleaned


class CreateBattleForm(PortfolioAllocationForm):
    portfolio_name = forms.CharField(max_length=100, required=False)


class JoinBattleForm(PortfolioAllocationForm):
    challenge_code = forms.CharField(max_length=8, required=False)

    def clean_challenge_code(self):
        return (self.cleaned_data.get("challenge_code") or "").strip().upper()
