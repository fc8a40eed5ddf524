"""Tests for the Product aggregate and its shard configuration."""

import pytest
from protean.exceptions import ValidationError

from commerce.product.product import Product


class TestProductCreation:
    def test_defaults(self):
        product = Product.create(name="Deck", price_cents=5999)
        assert product.currency == "USD"
        assert product.active is True
        assert product.shard_count is None
        assert product.has_valid_shards is False

    def test_currency_is_upper_cased(self):
        product = Product.create(name="Deck", price_cents=5999, currency="eur")
        assert product.currency == "EUR"

    def test_explicit_identity(self):
        product = Product.create(name="Deck", price_cents=5999, id="prod-deck")
        assert product.id == "prod-deck"

    def test_with_shards(self):
        product = Product.create(name="Deck", price_cents=5999, shard_count=4)
        assert product.shard_count == 4
        assert product.has_valid_shards is True


class TestShardConfiguration:
    def test_configure_unset_count(self):
        product = Product.create(name="Deck", price_cents=5999)
        product.configure_shards(8)
        assert product.shard_count == 8

    def test_count_cannot_change_once_set(self):
        product = Product.create(name="Deck", price_cents=5999, shard_count=4)
        with pytest.raises(ValidationError) as exc:
            product.configure_shards(8)
        assert "already fixed" in str(exc.value.messages)
        assert product.shard_count == 4

    @pytest.mark.parametrize("count", [0, -1])
    def test_count_must_be_positive(self, count):
        product = Product.create(name="Deck", price_cents=5999)
        with pytest.raises(ValidationError):
            product.configure_shards(count)


class TestDeactivation:
    def test_deactivate(self):
        product = Product.create(name="Deck", price_cents=5999)
        product.deactivate()
        assert product.active is False
