"""Integration: tag usage_count always equals the number of model links."""

import asyncio

import pytest

from apps.catalog.errors import InvalidInputError, NotFoundError
from apps.catalog.schemas.mutations import AddVersionInput
from tests._catalog_fixtures import catalog_harness, create_model, new_file, seed_gear, tag_usage


def _assert_consistent(usage: dict[str, tuple[int, int]]) -> None:
    for name, (count, linked) in usage.items():
        assert count == linked, f"tag {name}: usage_count={count} links={linked}"


def test_counters_follow_create_and_add_version(tmp_path) -> None:
    async def run():
        async with catalog_harness(tmp_path) as h:
            await seed_gear(h, "T1")
            await create_model(h, "T1", "Pulley", tags=["mech"], files=[new_file("T1/pulley.stl")])
            usage = await tag_usage(h, "T1")
            _assert_consistent(usage)
            assert usage == {"mech": (2, 2), "gear": (1, 1)}

    asyncio.run(run())


def test_counters_follow_set_attach_detach(tmp_path) -> None:
    async def run():
        async with catalog_harness(tmp_path) as h:
            model_id = await create_model(h, "T1", "Bracket", tags=["a", "b"], files=[new_file("T1/b.stl")])

            await h.mutations.set_model_tags(model_id, "T1", ["b", "c"])
            assert await tag_usage(h, "T1") == {"a": (0, 0), "b": (1, 1), "c": (1, 1)}

            assert await h.tags.attach(model_id, "T1", ["c", "d"]) == 1
            assert await h.tags.attach(model_id, "T1", ["d"]) == 0
            assert await h.tags.detach(model_id, "T1", ["b", "nope"]) == 1
            assert await h.tags.detach(model_id, "T1", ["b"]) == 0

            usage = await tag_usage(h, "T1")
            _assert_consistent(usage)
            assert usage == {"a": (0, 0), "b": (0, 0), "c": (1, 1), "d": (1, 1)}
            model = await h.queries.get_model(model_id, "T1")
            # v1 keeps the tags it was created with; model-level tags moved on.
            assert model.versions[0].metadata.tags == ["a", "b"]

    asyncio.run(run())


def test_update_metadata_tags_replace_set(tmp_path) -> None:
    async def run():
        async with catalog_harness(tmp_path) as h:
            model_id = await create_model(h, "T1", "Hook", tags=["x", "x ", "y"], files=[new_file("T1/h.stl")])
            assert await tag_usage(h, "T1") == {"x": (1, 1), "y": (1, 1)}
            await h.mutations.update_metadata(model_id, "T1", {"tags": []})
            assert await tag_usage(h, "T1") == {"x": (0, 0), "y": (0, 0)}

    asyncio.run(run())


def test_hard_delete_releases_counters(tmp_path) -> None:
    async def run():
        async with catalog_harness(tmp_path) as h:
            model_id = await seed_gear(h, "T1")
            await create_model(h, "T1", "Other", tags=["gear"], files=[new_file("T1/o.stl")])

            await h.mutations.delete_model(model_id, "T1", hard=True)

            usage = await tag_usage(h, "T1")
            _assert_consistent(usage)
            assert usage == {"mech": (0, 0), "gear": (1, 1)}

    asyncio.run(run())


def test_soft_delete_keeps_counters(tmp_path) -> None:
    async def run():
        async with catalog_harness(tmp_path) as h:
            model_id = await seed_gear(h, "T1")
            await h.mutations.delete_model(model_id, "T1")
            assert await tag_usage(h, "T1") == {"mech": (1, 1), "gear": (1, 1)}

    asyncio.run(run())


def test_delete_tag_unlinks_models_and_refreshes_cache(tmp_path) -> None:
    async def run():
        async with catalog_harness(tmp_path) as h:
            model_id = await seed_gear(h, "T1")
            before = await h.queries.get_model(model_id, "T1")
            assert before.latest_metadata.tags == ["mech", "gear"]
            gear = next(t for t in await h.queries.list_tags("T1") if t.name == "gear")

            affected = await h.tags.delete_tag("T1", gear.id)

            assert affected == [model_id]
            assert await tag_usage(h, "T1") == {"mech": (1, 1)}
            after = await h.queries.get_model(model_id, "T1")
            assert after.latest_metadata.tags == ["mech"]
            assert [t.name for t in await h.queries.list_tags("T1")] == ["mech"]

    asyncio.run(run())


def test_create_tag_rejects_duplicates(tmp_path) -> None:
    async def run():
        async with catalog_harness(tmp_path) as h:
            tag = await h.tags.create_tag("T1", "resin", color="#ff0000")
            assert (tag.name, tag.usage_count, tag.color) == ("resin", 0, "#ff0000")
            with pytest.raises(InvalidInputError):
                await h.tags.create_tag("T1", "resin")
            # Same name in another tenant is a different tag.
            assert (await h.tags.create_tag("T2", "resin")).id != tag.id
            with pytest.raises(NotFoundError):
                await h.tags.delete_tag("T2", tag.id)

    asyncio.run(run())


def test_explicit_version_tags_are_linked_to_model(tmp_path) -> None:
    async def run():
        async with catalog_harness(tmp_path) as h:
            model_id = await create_model(h, "T1", "Clip", tags=["a"], files=[new_file("T1/c1.stl")])
            await h.mutations.add_version(
                model_id, "T1", AddVersionInput(tags=["b"], files=[new_file("T1/c2.stl")])
            )
            await h.mutations.add_version(model_id, "T1", AddVersionInput(files=[new_file("T1/c3.stl")]))
            usage = await tag_usage(h, "T1")
            _assert_consistent(usage)
            assert usage == {"a": (1, 1), "b": (1, 1)}
            model = await h.queries.get_model(model_id, "T1")
            by_label = {v.version: v.metadata.tags for v in model.versions}
            assert by_label["v2"] == ["b"]
            assert sorted(by_label["v3"]) == ["a", "b"]

    asyncio.run(run())
