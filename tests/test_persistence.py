from fractions import Fraction

import pytest

from butane_oracles.persistence import TokenPrice, TokenPricePersistence, TokenPriceSource


@pytest.mark.asyncio
async def test_prices_round_trip_through_disk(tmp_path):
    prices = {"ADA": Fraction(1, 3), "BTC": Fraction(65000), "DJED": Fraction(-7, 2)}
    store = TokenPricePersistence(["BTC", "ADA", "DJED"], tmp_path)
    await store.save_prices(prices.get)

    loaded = TokenPricePersistence(["BTC", "ADA", "DJED"], tmp_path)
    assert [(p.token, p.value) for p in loaded.saved_prices()] == sorted(prices.items())


@pytest.mark.asyncio
async def test_saved_prices_shape(tmp_path):
    store = TokenPricePersistence(["ADA"], tmp_path)
    await store.save_prices({"ADA": Fraction(1, 2)}.get)
    assert store.saved_prices() == [
        TokenPrice(
            "ADA",
            "USD",
            Fraction(1, 2),
            [TokenPriceSource("Loaded from disk", Fraction(1, 2), Fraction(1))],
        )
    ]


@pytest.mark.asyncio
async def test_unknown_values_are_skipped(tmp_path):
    store = TokenPricePersistence(["ADA", "MISSING"], tmp_path)
    await store.save_prices({"ADA": Fraction(2)}.get)
    assert [p.token for p in store.saved_prices()] == ["ADA"]
    assert [p.token for p in TokenPricePersistence(["ADA"], tmp_path).saved_prices()] == ["ADA"]


def test_missing_file_gives_no_prices(tmp_path):
    assert TokenPricePersistence(["ADA"], tmp_path / "fresh").saved_prices() == []
    assert (tmp_path / "fresh").is_dir()


def test_corrupt_file_gives_no_prices(tmp_path):
    (tmp_path / "prices.cbor").write_bytes(b"\xff\x00garbage")
    assert TokenPricePersistence(["ADA"], tmp_path).saved_prices() == []


def test_directory_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("DATA_DIRECTORY", str(tmp_path / "env"))
    store = TokenPricePersistence(["ADA"])
    assert store.filename == tmp_path / "env" / "prices.cbor"


def test_default_directory_is_relative_to_cwd(tmp_path, monkeypatch):
    monkeypatch.delenv("DATA_DIRECTORY", raising=False)
    monkeypatch.chdir(tmp_path)
    store = TokenPricePersistence(["ADA"])
    assert store.filename == tmp_path / "data" / "prices.cbor"


@pytest.mark.asyncio
async def test_write_failure_keeps_prices_in_memory(tmp_path):
    store = TokenPricePersistence(["ADA"], tmp_path)
    store.filename.mkdir()
    await store.save_prices({"ADA": Fraction(3)}.get)
    await store.save_prices({"ADA": Fraction(4)}.get)
    assert [p.value for p in store.saved_prices()] == [Fraction(4)]