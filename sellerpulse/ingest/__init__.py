"""Ingestion helpers."""

from __future__ import annotations

import pathlib

import yaml

from sellerpulse.ingest.models import Region, region_from_mapping

REGIONS_PATH = pathlib.Path(__file__).with_name("regions.yml")


def load_regions() -> dict[str, Region]:
    data = yaml.safe_load(REGIONS_PATH.read_text())
    return {name: region_from_mapping(name, item) for name, item in data.items()}


def get_region(name: str) -> Region:
    regions = load_regions()
    try:
        return regions[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown region {name!r}; expected one of {sorted(regions)}") from None
