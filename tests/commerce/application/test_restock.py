"""Application tests for deterministic restock and batched shard increments."""

from protean import current_domain

from commerce import config
from commerce.stock import restock as restock_module
from commerce.stock.restock import ShardIncrement, apply_increments, plan_restock, restock
from commerce.stock.shard import StockShard, hash_to_shard, shard_key


class TestPlanRestock:
    def test_is_reproducible(self, seed_product):
        seed_product(stock=0, shards=8)
        items = [("prod-001", 2), ("prod-001", 1)]

        assert plan_restock(items, "ord-001") == plan_restock(items, "ord-001")

    def test_targets_hashed_shard(self, seed_product):
        seed_product(stock=0, shards=8)

        plan = plan_restock([("prod-001", 2), ("prod-001", 1)], "ord-001")

        assert plan == [
            ShardIncrement("prod-001", hash_to_shard("ord-001", 0, 8), 2),
            ShardIncrement("prod-001", hash_to_shard("ord-001", 1, 8), 1),
        ]

    def test_unconfigured_product_uses_default_shard_count(self):
        plan = plan_restock([("prod-ghost", 4)], "ord-001")

        assert plan == [
            ShardIncrement("prod-ghost", hash_to_shard("ord-001", 0, config.DEFAULT_RESTOCK_SHARD_COUNT), 4)
        ]


class TestRestock:
    def test_returns_units(self, seed_product, shard_levels):
        seed_product(stock=0, shards=1)

        assert restock([("prod-001", 3)], "ord-001") == 3
        assert shard_levels() == [3]

    def test_creates_missing_shard(self):
        restock([("prod-ghost", 4)], "ord-001")

        index = hash_to_shard("ord-001", 0, config.DEFAULT_RESTOCK_SHARD_COUNT)
        shard = current_domain.repository_for(StockShard).get(shard_key("prod-ghost", index))
        assert shard.available == 4


class TestApplyIncrements:
    def test_merges_writes_to_the_same_shard(self, seed_product, shard_levels, monkeypatch):
        seed_product(stock=0, shards=2)
        real = restock_module.run_transaction
        commands = []

        def recording(command, **kwargs):
            commands.append(command)
            return real(command, **kwargs)

        monkeypatch.setattr(restock_module, "run_transaction", recording)

        returned = apply_increments(
            [
                ShardIncrement("prod-001", 0, 1),
                ShardIncrement("prod-001", 0, 2),
                ShardIncrement("prod-001", 1, 1),
            ]
        )

        assert returned == 4
        assert len(commands) == 1
        assert shard_levels(shard_count=2) == [3, 1]

    def test_chunks_into_bounded_batches(self, seed_product, shard_levels, monkeypatch):
        seed_product(stock=0, shards=5)
        monkeypatch.setattr(config, "MAX_BATCH_WRITES", 2)
        real = restock_module.run_transaction
        commands = []

        def recording(command, **kwargs):
            commands.append(command)
            return real(command, **kwargs)

        monkeypatch.setattr(restock_module, "run_transaction", recording)

        returned = apply_increments([ShardIncrement("prod-001", index, 1) for index in range(5)])

        assert returned == 5
        assert len(commands) == 3
        assert shard_levels(shard_count=5) == [1, 1, 1, 1, 1]

    def test_ignores_empty_increments(self, monkeypatch):
        commands = []
        monkeypatch.setattr(restock_module, "run_transaction", commands.append)

        assert apply_increments([ShardIncrement("prod-001", 0, 0)]) == 0
        assert commands == []
