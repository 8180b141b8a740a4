import numpy as np
import pandas as pd
import pytest


def make_survey(n_per_taxon=50, taxa=("BDS", "BMS"), seed=2018):
    """Long-format survey table: Location/Site random effect, Status factor, 3 smooth candidates."""
    rng = np.random.default_rng(seed)
    frames = []
    for j, taxon in enumerate(taxa):
        location = rng.choice(["North", "South"], size=n_per_taxon)
        site = np.array(["{}{}".format(loc[0], s) for loc, s in zip(location, rng.integers(1, 4, size=n_per_taxon))])
        status = np.where(location == "North", "Fished", "No-take")
        x1 = rng.uniform(0, 10, n_per_taxon)
        x2 = rng.uniform(0, 5, n_per_taxon)
        x3 = rng.uniform(-1, 1, n_per_taxon)
        distance = rng.choice([0.0, 50.0, 100.0, 200.0], size=n_per_taxon)

        eta = 0.3 + 0.15 * x1 - 0.1 * x2 + 0.3 * (status == "No-take") + 0.1 * j
        mu = np.exp(eta)
        # compound Poisson-gamma draw: many zeros, continuous positive part
        n_events = rng.poisson(mu / 1.5)
        response = np.array([rng.gamma(2.0, 0.75, size=k).sum() if k else 0.0 for k in n_events])

        frames.append(pd.DataFrame({
            "Taxa": taxon,
            "Location": location,
            "Site": site,
            "Status": status,
            "x1": x1,
            "x2": x2,
            "x3": x3,
            "Distance": distance,
            "Abundance": np.round(response, 2),
        }))
    return pd.concat(frames, ignore_index=True)


@pytest.fixture
def survey_raw():
    return make_survey()


@pytest.fixture
def taxon_data(survey_raw):
    """One taxon, response column renamed, ready for modelling."""
    df = survey_raw[survey_raw["Taxa"] == "BDS"].rename(columns={"Abundance": "response"})
    return df.reset_index(drop=True)


@pytest.fixture
def large_taxon_data():
    df = make_survey(n_per_taxon=120, taxa=("CPN",), seed=7)
    return df.rename(columns={"Abundance": "response"})
