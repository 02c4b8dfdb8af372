"""Pytest configuration and shared fixtures."""

import numpy as np
import pandas as pd
import pytest

YEARS = list(range(1988, 1998))


def _company_panel(rng, n_companies=20):
    """Company x year panel with lognormal premium growing 3% a year."""
    base = rng.lognormal(mean=15.0, sigma=1.0, size=n_companies)
    rows = []
    for i, b in enumerate(base):
        for year in YEARS:
            premium = b * 1.03 ** (year - YEARS[0]) * rng.lognormal(0.0, 0.05)
            rows.append({"company_id": 1000 + i, "accident_year": year, "premium": premium})
    return pd.DataFrame(rows)


@pytest.fixture
def loss_data():
    """Company-year losses with gamma noise around a 65% loss ratio."""
    rng = np.random.default_rng(20240601)
    data = _company_panel(rng)
    trend = np.exp(0.02 * (data["accident_year"] - YEARS[0]))
    ratio = rng.gamma(shape=4.0, scale=0.65 / 4.0, size=len(data)) * trend
    data["loss"] = data["premium"] * ratio
    return data[["company_id", "accident_year", "loss", "premium"]]


@pytest.fixture
def proportional_data():
    """Losses exactly twice the premium for every record."""
    rng = np.random.default_rng(7)
    data = _company_panel(rng, n_companies=15)
    data["loss"] = 2.0 * data["premium"]
    return data[["company_id", "accident_year", "loss", "premium"]]


@pytest.fixture
def raw_schedule_p():
    """Raw Schedule P style table with several development lags."""
    rows = []
    for code, name in [(86, "Alpha Mutual"), (337, "Beta Casualty"), (1767, "Gamma Ins")]:
        for year in (1990, 1991, 1992):
            for lag in (1, 5, 10):
                rows.append(
                    {
                        "GRCODE": code,
                        "GRNAME": name,
                        "AccidentYear": year,
                        "DevelopmentLag": lag,
                        "IncurLoss_B": 1000.0 * code + 10.0 * lag + (year - 1990),
                        "EarnedPremDIR_B": 1500.0 * code,
                        "CumPaidLoss_B": 0.0,
                    }
                )
    raw = pd.DataFrame(rows)
    lag10 = raw["DevelopmentLag"] == 10
    raw.loc[lag10 & (raw["GRCODE"] == 337) & (raw["AccidentYear"] == 1991), "IncurLoss_B"] = 0.0
    raw.loc[lag10 & (raw["GRCODE"] == 1767) & (raw["AccidentYear"] == 1992), "EarnedPremDIR_B"] = np.nan
    return raw
