"""Unit tests for the row -> DTO mapper: dedup, version cap, latest metadata, facets, pagination."""

from datetime import datetime, timedelta

from apps.catalog.models.catalog_model import CatalogModel
from apps.catalog.models.model_file import ModelFile
from apps.catalog.models.model_version import ModelVersion
from apps.catalog.models.tag import Tag
from apps.catalog.repositories.model_repository import ModelRow
from apps.catalog.schemas.tags import TagInfo
from apps.catalog.services import model_mapper

T0 = datetime(2024, 1, 1, 12, 0, 0)


def _model(model_id: str = "m1", current: str = "v1", total: int = 1) -> CatalogModel:
    return CatalogModel(
        id=model_id,
        tenant_id="t1",
        slug=model_id,
        name=f"Model {model_id}",
        description="desc",
        current_version=current,
        total_versions=total,
        created_at=T0,
        updated_at=T0,
    )


def _version(version_id: str, label: str, minutes: int, model_id: str = "m1") -> ModelVersion:
    return ModelVersion(
        id=version_id,
        model_id=model_id,
        version=label,
        name=f"{label} name",
        description=None,
        created_at=T0 + timedelta(minutes=minutes),
        updated_at=T0 + timedelta(minutes=minutes),
    )


def _file(file_id: str, version_id: str, filename: str) -> ModelFile:
    return ModelFile(
        id=file_id,
        version_id=version_id,
        filename=filename,
        original_name=filename,
        size=100,
        mime_type="model/stl",
        extension="stl",
        storage_key=f"k/{file_id}",
        storage_bucket="models",
        file_metadata={"bounding_box": {"width": 1, "height": 2, "depth": 3}, "is_manifold": True},
        processing_status="completed",
    )


def _tag(tag_id: str, name: str) -> Tag:
    return Tag(id=tag_id, tenant_id="t1", name=name, color=None, usage_count=1)


def test_fanout_rows_deduplicate_to_one_model_version_file_tag() -> None:
    """Each (version, file, tag) combination repeated; output has exactly one of each id."""
    m = _model()
    v = _version("v-1", "v1", 0)
    files = [_file("f1", "v-1", "b.stl"), _file("f2", "v-1", "a.stl")]
    tags = [_tag("g1", "mech"), _tag("g2", "gear")]
    rows = [ModelRow(m, v, f, t, 1) for f in files for t in tags] * 3

    models = model_mapper.transform_to_models(rows)

    assert len(models) == 1
    assert len(models[0].versions) == 1
    assert [f.filename for f in models[0].versions[0].files] == ["a.stl", "b.stl"]
    assert models[0].latest_metadata.tags == ["mech", "gear"]


def test_at_most_five_versions_newest_first() -> None:
    m = _model(current="v7", total=7)
    rows = [ModelRow(m, _version(f"v-{n}", f"v{n}", n), None, None, 1) for n in range(1, 8)]

    model = model_mapper.transform_to_models(rows)[0]

    assert [v.version for v in model.versions] == ["v7", "v6", "v5", "v4", "v3"]
    assert model.total_versions == 7


def test_latest_metadata_follows_current_version_pointer() -> None:
    m = _model(current="v1", total=2)
    rows = [ModelRow(m, _version("v-1", "v1", 0)), ModelRow(m, _version("v-2", "v2", 5))]

    model = model_mapper.transform_to_models(rows)[0]

    assert model.versions[0].version == "v2"
    assert model.latest_metadata.name == "v1 name"


def test_stale_pointer_falls_back_to_most_recent_version() -> None:
    m = _model(current="v9", total=2)
    rows = [ModelRow(m, _version("v-1", "v1", 0)), ModelRow(m, _version("v-2", "v2", 5))]

    model = model_mapper.transform_to_models(rows)[0]

    assert model.latest_metadata.name == "v2 name"


def test_zero_version_model_dropped_from_list_kept_for_lookup() -> None:
    m = _model(total=0)
    rows = [ModelRow(m, None, None, None, 1)]

    assert model_mapper.transform_to_models(rows) == []
    single = model_mapper.transform_to_model(rows)
    assert single is not None
    assert single.versions == []
    assert single.latest_metadata.name == "Model m1"


def test_version_with_zero_files_is_retained() -> None:
    m = _model()
    model = model_mapper.transform_to_models([ModelRow(m, _version("v-1", "v1", 0))])[0]
    assert model.versions[0].files == []


def test_version_facet_entry_is_authoritative_even_when_empty() -> None:
    """v1 has an explicit empty facet entry; it must not inherit the model tags."""
    m = _model(current="v2", total=2)
    rows = [ModelRow(m, _version("v-1", "v1", 0)), ModelRow(m, _version("v-2", "v2", 5))]
    gear = TagInfo(id="g2", name="gear")
    mech = TagInfo(id="g1", name="mech")

    model = model_mapper.transform_to_models(
        rows,
        model_tags={"m1": [mech, gear]},
        version_tags={"v-1": [], "v-2": [mech, gear]},
    )[0]

    by_label = {v.version: v for v in model.versions}
    assert by_label["v1"].metadata.tags == []
    assert by_label["v2"].metadata.tags == ["mech", "gear"]
    assert model.latest_metadata.tags == ["mech", "gear"]


def test_missing_version_facet_falls_back_to_model_tags() -> None:
    m = _model()
    model = model_mapper.transform_to_models(
        [ModelRow(m, _version("v-1", "v1", 0))],
        model_tags={"m1": [TagInfo(id="g1", name="mech")]},
        version_tags={},
    )[0]
    assert model.versions[0].metadata.tags == ["mech"]


def test_models_keep_page_order() -> None:
    a, b = _model("a"), _model("b")
    rows = [ModelRow(b, _version("vb", "v1", 0, "b")), ModelRow(a, _version("va", "v1", 0, "a"))]
    assert [m.id for m in model_mapper.transform_to_models(rows)] == ["b", "a"]


def test_file_geometry_comes_from_file_metadata() -> None:
    m = _model()
    model = model_mapper.transform_to_models([ModelRow(m, _version("v-1", "v1", 0), _file("f1", "v-1", "a.stl"))])[0]
    f = model.versions[0].files[0]
    assert f.bounding_box is not None and f.bounding_box.depth == 3
    assert f.is_manifold is True
    assert f.download_url is None


def test_transform_to_versions_has_no_cap() -> None:
    m = _model(current="v8", total=8)
    rows = [ModelRow(m, _version(f"v-{n}", f"v{n}", n), None, None, 8) for n in range(1, 9)]
    versions = model_mapper.transform_to_versions(rows, version_tags={})
    assert [v.version for v in versions] == [f"v{n}" for n in range(8, 0, -1)]


def test_pagination_from_window_total() -> None:
    p = model_mapper.build_pagination(total=41, page=2, limit=20)
    assert (p.total, p.total_pages, p.page, p.limit) == (41, 3, 2, 20)
    assert model_mapper.build_pagination(0, 1, 20).total_pages == 0


def test_extract_total_reads_window_count_not_row_count() -> None:
    m = _model()
    rows = [ModelRow(m, _version("v-1", "v1", 0), None, None, 57)] * 4
    assert model_mapper.extract_total(rows) == 57
    assert model_mapper.extract_total([]) is None
