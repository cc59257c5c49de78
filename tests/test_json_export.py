"""Tests for JSON export of the catalog and request results."""

import json

from vram_estimator.catalog import load_catalog
from vram_estimator.exporters.json_export import export_catalog, export_result


class TestExportCatalog:
    def test_writes_files(self, tmp_path):
        paths = export_catalog(load_catalog(), tmp_path)
        assert set(paths) == {"gpus", "models", "metadata"}
        for path in paths.values():
            assert path.exists()
            assert path.parent == tmp_path

    def test_gpus_have_usable_memory(self, tmp_path):
        export_catalog(load_catalog(), tmp_path)
        rows = json.loads((tmp_path / "gpus.json").read_text())
        rtx4090 = next(r for r in rows if r["id"] == "rtx4090")
        assert rtx4090["usable_memory_gb"] == 21.6
        memory = [r["memory_gb"] for r in rows]
        assert memory == sorted(memory)

    def test_export_is_loadable(self, tmp_path):
        original = load_catalog()
        export_catalog(original, tmp_path)
        reloaded = load_catalog(tmp_path)
        assert {m.id: m for m in reloaded.models} == {m.id: m for m in original.models}
        assert {g.id: g for g in reloaded.gpus} == {g.id: g for g in original.gpus}

    def test_metadata_sources(self, tmp_path):
        sources = {"gpu_prices": {"service_name": "gpuhunt"}}
        export_catalog(load_catalog(), tmp_path, sources=sources)
        metadata = json.loads((tmp_path / "metadata.json").read_text())
        assert "updated_at" in metadata
        assert metadata["sources"] == sources

    def test_creates_output_dir(self, tmp_path):
        out = tmp_path / "nested" / "export"
        export_catalog(load_catalog(), out)
        assert (out / "models.json").exists()


class TestExportResult:
    def test_round_trip(self, tmp_path):
        response = {"status": "ok", "result": {"kind": "training", "total": 80.1}}
        path = export_result(response, tmp_path / "out" / "result.json")
        assert json.loads(path.read_text()) == response
