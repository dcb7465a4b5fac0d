"""Integration: list_models / get_model over a real (SQLite) store, including the gear scenario."""

import asyncio

from apps.catalog.schemas.models import ModelListQuery
from apps.catalog.schemas.mutations import AddVersionInput
from tests._catalog_fixtures import catalog_harness, create_model, new_file, seed_gear


def _version(n: int) -> AddVersionInput:
    return AddVersionInput(files=[new_file(f"T1/busy/v{n}.stl")])


def test_gear_scenario_tag_filter(tmp_path) -> None:
    """Model 'gear' listed once under tag filter [gear]; latest metadata from v2; files from v2 only."""

    async def run():
        async with catalog_harness(tmp_path) as h:
            model_id = await seed_gear(h, "T1")
            await create_model(h, "T1", "Bracket", tags=["mech"], files=[new_file("T1/bracket.stl")])

            result = await h.queries.list_models(ModelListQuery(tags=["gear"]), "T1")

            assert [m.id for m in result.models] == [model_id]
            model = result.models[0]
            assert model.slug == "gear"
            assert model.current_version == "v2"
            assert model.latest_metadata.tags == ["mech", "gear"]
            assert model.total_versions == 2
            latest = model.versions[0]
            assert latest.version == "v2"
            assert sorted(f.filename for f in latest.files) == ["axle.stl", "gear.stl"]
            assert all("/v2/" in f.storage_key for f in latest.files)
            assert all(f.download_url for f in latest.files)
            assert result.pagination.total == 1

    asyncio.run(run())


def test_tag_filter_is_and_not_or(tmp_path) -> None:
    """Filter [A, B]: model with only A excluded, model with A, B, C included."""

    async def run():
        async with catalog_harness(tmp_path) as h:
            only_a = await create_model(h, "T1", "Only A", tags=["a"], files=[new_file("T1/a.stl")])
            abc = await create_model(h, "T1", "ABC", tags=["a", "b", "c"], files=[new_file("T1/abc.stl")])

            result = await h.queries.list_models(ModelListQuery(tags=["a", "b"]), "T1")

            ids = [m.id for m in result.models]
            assert abc in ids
            assert only_a not in ids

    asyncio.run(run())


def test_search_matches_name_or_description_case_insensitive(tmp_path) -> None:
    async def run():
        async with catalog_harness(tmp_path) as h:
            by_name = await create_model(h, "T1", "Planetary GEAR", files=[new_file("T1/p.stl")])
            by_desc = await create_model(
                h, "T1", "Housing", description="fits the gear train", files=[new_file("T1/h.stl")]
            )
            await create_model(h, "T1", "Lid", files=[new_file("T1/l.stl")])

            result = await h.queries.list_models({"search": "gear"}, "T1")

            assert {m.id for m in result.models} == {by_name, by_desc}

    asyncio.run(run())


def test_search_wildcards_are_literal(tmp_path) -> None:
    async def run():
        async with catalog_harness(tmp_path) as h:
            await create_model(h, "T1", "100 percent", files=[new_file("T1/a.stl")])
            hit = await create_model(h, "T1", "50% infill", files=[new_file("T1/b.stl")])

            result = await h.queries.list_models({"search": "%"}, "T1")

            assert [m.id for m in result.models] == [hit]

    asyncio.run(run())


def test_pagination_total_from_window_count(tmp_path) -> None:
    """Total counts all matching models, not the rows on the page; last page is partial."""

    async def run():
        async with catalog_harness(tmp_path) as h:
            for n in range(5):
                await create_model(h, "T1", f"Part {n}", files=[new_file(f"T1/p{n}.stl")])

            page1 = await h.queries.list_models(ModelListQuery(page=1, limit=2, sort_by="name", sort_order="asc"), "T1")
            page3 = await h.queries.list_models(ModelListQuery(page=3, limit=2, sort_by="name", sort_order="asc"), "T1")
            beyond = await h.queries.list_models(ModelListQuery(page=9, limit=2), "T1")

            assert [m.latest_metadata.name for m in page1.models] == ["Part 0", "Part 1"]
            assert page1.pagination.total == 5
            assert page1.pagination.total_pages == 3
            assert [m.latest_metadata.name for m in page3.models] == ["Part 4"]
            assert beyond.models == []
            assert beyond.pagination.total == 5

    asyncio.run(run())


def test_sort_by_total_file_size(tmp_path) -> None:
    async def run():
        async with catalog_harness(tmp_path) as h:
            small = await create_model(h, "T1", "Small", files=[new_file("T1/s.stl", size=10)])
            big = await create_model(
                h, "T1", "Big", files=[new_file("T1/b1.stl", size=500), new_file("T1/b2.stl", size=600)]
            )
            mid = await create_model(h, "T1", "Mid", files=[new_file("T1/m.stl", size=700)])

            result = await h.queries.list_models({"sort_by": "size", "sort_order": "desc"}, "T1")

            assert [m.id for m in result.models] == [big, mid, small]

    asyncio.run(run())


def test_list_keeps_only_five_versions(tmp_path) -> None:
    async def run():
        async with catalog_harness(tmp_path) as h:
            model_id = await create_model(h, "T1", "Busy", files=[new_file("T1/busy/v1.stl")])
            for n in range(2, 8):
                await h.mutations.add_version(model_id, "T1", _version(n))

            model = (await h.queries.list_models({}, "T1")).models[0]

            assert [v.version for v in model.versions] == ["v7", "v6", "v5", "v4", "v3"]
            assert model.total_versions == 7

    asyncio.run(run())


def test_get_model_includes_urls_for_every_file(tmp_path) -> None:
    async def run():
        async with catalog_harness(tmp_path) as h:
            model_id = await seed_gear(h, "T1")

            model = await h.queries.get_model(model_id, "T1")

            assert model.id == model_id
            assert {v.version for v in model.versions} == {"v1", "v2"}
            urls = [f.download_url for v in model.versions for f in v.files]
            assert len(urls) == 3 and all(u and u.startswith("https://storage.test/") for u in urls)

    asyncio.run(run())


def test_versions_paginated_has_more_and_total(tmp_path) -> None:
    async def run():
        async with catalog_harness(tmp_path) as h:
            model_id = await create_model(h, "T1", "Busy", files=[new_file("T1/busy/v1.stl")])
            for n in range(2, 8):
                await h.mutations.add_version(model_id, "T1", _version(n))

            first = await h.queries.get_model_versions_paginated(model_id, "T1", offset=0, limit=3)
            last = await h.queries.get_model_versions_paginated(model_id, "T1", offset=6, limit=3)
            past = await h.queries.get_model_versions_paginated(model_id, "T1", offset=20, limit=3)

            assert [v.version for v in first.versions] == ["v7", "v6", "v5"]
            assert (first.has_more, first.total) == (True, 7)
            assert [v.version for v in last.versions] == ["v1"]
            assert (last.has_more, last.total) == (False, 7)
            assert (past.versions, past.has_more, past.total) == ([], False, 7)

    asyncio.run(run())


def test_model_statistics(tmp_path) -> None:
    async def run():
        async with catalog_harness(tmp_path) as h:
            model_id = await seed_gear(h, "T1")

            stats = await h.queries.get_model_statistics(model_id, "T1")

            assert stats.total_versions == 2
            assert stats.total_files == 3
            assert stats.total_size == 1024 + 2048 + 512
            assert stats.average_file_size == round((1024 + 2048 + 512) / 3)
            assert stats.file_types == {"stl": 3}
            assert stats.largest_file is not None and stats.largest_file.size == 2048

    asyncio.run(run())


def test_list_tags_ordered_by_usage(tmp_path) -> None:
    async def run():
        async with catalog_harness(tmp_path) as h:
            await create_model(h, "T1", "A", tags=["rare", "common"], files=[new_file("T1/a.stl")])
            await create_model(h, "T1", "B", tags=["common"], files=[new_file("T1/b.stl")])

            tags = await h.queries.list_tags("T1")

            assert [(t.name, t.usage_count) for t in tags] == [("common", 2), ("rare", 1)]

    asyncio.run(run())


async def _wide_model(h, name: str, tags: list[str]) -> str:
    """Three versions of two files each, plus many tags: six file rows."""
    slug = name.lower()
    files = [new_file(f"T1/{slug}/v1/a.stl"), new_file(f"T1/{slug}/v1/b.stl")]
    model_id = await create_model(h, "T1", name, tags=tags, files=files)
    for n in (2, 3):
        await h.mutations.add_version(
            model_id,
            "T1",
            AddVersionInput(files=[new_file(f"T1/{slug}/v{n}/a.stl"), new_file(f"T1/{slug}/v{n}/b.stl")]),
        )
    return model_id


def _file_sets(model) -> list[tuple[str, list[str]]]:
    return [(v.version, [f.storage_key for f in v.files]) for v in model.versions]


def test_row_cap_never_truncates_a_listed_model(tmp_path) -> None:
    """Fan-out above limit * multiplier: listed versions still carry every file, same as the detail view."""

    async def run():
        async with catalog_harness(tmp_path, list_overfetch_multiplier=4) as h:
            model_id = await _wide_model(h, "Wide", [f"t{i}" for i in range(10)])

            listed = await h.queries.list_models({"limit": 1}, "T1")
            detail = await h.queries.get_model(model_id, "T1")

            assert [m.id for m in listed.models] == [model_id]
            assert _file_sets(listed.models[0]) == _file_sets(detail)
            assert [len(files) for _, files in _file_sets(detail)] == [2, 2, 2]
            assert len(listed.models[0].latest_metadata.tags) == 10

    asyncio.run(run())


def test_row_cap_reload_keeps_page_order(tmp_path) -> None:
    """A complete first model is kept; the model cut by the cap is reloaded after it."""

    async def run():
        async with catalog_harness(tmp_path, list_overfetch_multiplier=2) as h:
            small = await create_model(h, "T1", "Alpha", files=[new_file("T1/alpha.stl")])
            wide = await _wide_model(h, "Beta", ["x"])

            listed = await h.queries.list_models({"limit": 2, "sort_by": "name", "sort_order": "asc"}, "T1")

            assert [m.id for m in listed.models] == [small, wide]
            assert listed.pagination.total == 2
            assert _file_sets(listed.models[1]) == _file_sets(await h.queries.get_model(wide, "T1"))
            assert [len(files) for _, files in _file_sets(listed.models[1])] == [2, 2, 2]

    asyncio.run(run())
