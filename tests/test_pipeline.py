"""End-to-end tests for the pipeline orchestrator."""

import json

import numpy as np
import pandas as pd
import pytest

from array_gsea.array_io import NormalizedArray
from array_gsea.cohorts import CohortRegistry
from array_gsea.config import BaseGroup, PipelineConfig
from array_gsea.contrasts import TABLE_NAMES
from array_gsea.errors import ConfigurationError, DataShapeError
from array_gsea.pipeline import run_pipeline, write_outputs

NOISE = 100.0


def _make_registry(n=3):
    return CohortRegistry({
        BaseGroup.POS_MEDIA: [f"P{i}_MEDIA" for i in range(1, n + 1)],
        BaseGroup.POS_TB: [f"P{i}_TB" for i in range(1, n + 1)],
        BaseGroup.NEG_MEDIA: [f"N{i}_MEDIA" for i in range(1, n + 1)],
        BaseGroup.NEG_TB: [f"N{i}_TB" for i in range(1, n + 1)],
    })


def _make_controls(samples, level=NOISE, n=6):
    controls = pd.DataFrame(level, index=range(n), columns=samples)
    controls.insert(0, "control_type", "NEGATIVE")
    return controls


def _make_array(registry, genes=("CD4", "GBP5", "IFNG", "STAT1"), seed=11):
    """Two probes per gene: "_hi" clears the noise floor everywhere, "_lo" nowhere."""
    rng = np.random.RandomState(seed)
    samples = registry.samples
    rows, symbols, index = [], [], []
    for gene in genes:
        rows.append(rng.randint(500, 5000, size=len(samples)).astype(float))
        symbols.append(gene)
        index.append(f"{gene}_hi")
        rows.append(rng.randint(5, 50, size=len(samples)).astype(float))
        symbols.append(gene)
        index.append(f"{gene}_lo")
    expression = pd.DataFrame(rows, index=pd.Index(index, name="PROBE_ID"), columns=samples)
    probes = pd.Series(symbols, index=expression.index, name="SYMBOL")
    return NormalizedArray(
        expression=expression,
        probes=probes,
        controls=_make_controls(samples),
    )


class TestEndToEnd:

    def test_tb_table_one_row_per_gene(self):
        registry = _make_registry()
        array = _make_array(registry)

        result = run_pipeline(array, registry)
        tb = result.tables.tb

        assert list(tb["SYMBOL"]) == ["CD4", "GBP5", "IFNG", "STAT1"]
        assert tb.shape == (4, 1 + 6)
        for _, row in tb.iterrows():
            original = array.expression.loc[f"{row['SYMBOL']}_hi", tb.columns[1:]]
            assert row[tb.columns[1:]].astype(float).tolist() == pytest.approx(original.tolist())

    def test_low_probes_dropped_before_collapse(self):
        registry = _make_registry()
        result = run_pipeline(_make_array(registry), registry)
        assert all(p.endswith("_hi") for p in result.merged.index)
        assert result.report.union_size == 4
        assert result.report.n_genes == 4

    def test_all_five_tables_built(self):
        registry = _make_registry()
        result = run_pipeline(_make_array(registry), registry)
        for name, table in result.tables.items():
            assert len(table) == 4, name
            assert table.shape[1] == 1 + 6, name
        assert set(result.report.tables) == set(TABLE_NAMES)

    def test_tbmm_is_linear_difference(self):
        registry = _make_registry()
        result = run_pipeline(_make_array(registry), registry)
        genes = result.genes
        tbmm = result.tables.tbmm.set_index("SYMBOL")
        expected = genes.loc["IFNG", "P2_TB"] - genes.loc["IFNG", "P2_MEDIA"]
        assert tbmm.loc["IFNG", "P2_TBMM"] == pytest.approx(expected)

    def test_thresholds_on_log2_scale(self):
        registry = _make_registry()
        result = run_pipeline(_make_array(registry), registry)
        assert result.thresholds.tolist() == pytest.approx([np.log2(NOISE)] * 12)

    def test_log2_input_skips_transform(self):
        registry = _make_registry()
        array = _make_array(registry)
        linear_result = run_pipeline(array, registry)

        array.expression = np.log2(array.expression)
        log_result = run_pipeline(array, registry, PipelineConfig(input_is_log2=True))

        pd.testing.assert_frame_equal(linear_result.genes, log_result.genes)


class TestRescue:

    def test_probe_kept_by_one_group_appears_everywhere(self):
        registry = _make_registry()
        array = _make_array(registry)
        samples = registry.samples
        # Above the floor only in POS_MEDIA; below it in the other three groups
        rescue = pd.Series(20.0, index=samples)
        rescue[registry.members(BaseGroup.POS_MEDIA)] = 800.0
        array.expression.loc["LONE_1"] = rescue
        array.probes.loc["LONE_1"] = "LONE"

        result = run_pipeline(array, registry)

        assert "LONE_1" in result.retentions[BaseGroup.POS_MEDIA].probe_ids
        for group in (BaseGroup.POS_TB, BaseGroup.NEG_MEDIA, BaseGroup.NEG_TB):
            assert "LONE_1" not in result.retentions[group].probe_ids
        for name, table in result.tables.items():
            assert "LONE" in set(table["SYMBOL"]), name

        tb = result.tables.tb.set_index("SYMBOL")
        # Unmasked value restored, not NaN from the signal filter
        assert tb.loc["LONE", "N1_TB"] == pytest.approx(20.0)
        assert np.isnan(result.masked.loc["LONE_1", "N1_TB"])


class TestWarningsAndErrors:

    def test_empty_group_is_reported(self):
        registry = _make_registry()
        array = _make_array(registry)
        array.expression.loc[:, registry.members(BaseGroup.POS_TB)] = 1.0

        result = run_pipeline(array, registry)

        assert result.retentions[BaseGroup.POS_TB].is_empty
        assert any("POS_TB" in w for w in result.report.warnings)
        assert len(result.tables.tb) == 4

    def test_matrix_sample_missing_from_registry(self):
        registry = _make_registry()
        array = _make_array(registry)
        array.expression["EXTRA"] = 1000.0
        with pytest.raises(ConfigurationError, match="EXTRA"):
            run_pipeline(array, registry)

    def test_registry_sample_missing_from_matrix(self):
        registry = _make_registry()
        array = _make_array(registry)
        array.expression = array.expression.drop(columns=["N2_TB"])
        with pytest.raises(ConfigurationError, match="N2_TB"):
            run_pipeline(array, registry)

    def test_unpaired_cohort_raises_before_filtering(self):
        registry = CohortRegistry({
            BaseGroup.POS_MEDIA: ["P1_MEDIA", "P2_MEDIA"],
            BaseGroup.POS_TB: ["P1_TB"],
            BaseGroup.NEG_MEDIA: ["N1_MEDIA"],
            BaseGroup.NEG_TB: ["N1_TB"],
        })
        array = _make_array(registry)
        array.controls = array.controls.iloc[0:0]  # would fail later if reached
        with pytest.raises(DataShapeError, match="POS_TB"):
            run_pipeline(array, registry)

    def test_no_negative_controls(self):
        registry = _make_registry()
        array = _make_array(registry)
        array.controls["control_type"] = "BIOTIN"
        with pytest.raises(DataShapeError):
            run_pipeline(array, registry)


class TestWriteOutputs:

    def test_writes_tables_and_report(self, tmp_path):
        registry = _make_registry()
        result = run_pipeline(_make_array(registry), registry)

        written = write_outputs(result, tmp_path, prefix="study_")

        for name in TABLE_NAMES:
            path = tmp_path / f"study_{name}.txt"
            assert written[name] == path
            header = path.read_text(encoding="utf-8").splitlines()[0].split("\t")
            assert header[0] == "SYMBOL"
        report = json.loads((tmp_path / "study_run_report.json").read_text(encoding="utf-8"))
        assert report["n_genes"] == 4
        assert report["groups"]["NEG_TB"]["min_required"] == 3
        assert "timestamp" in report

        counts = pd.read_csv(tmp_path / "study_retention_counts.tsv", sep="\t")
        assert list(counts.columns) == ["PROBE_ID"] + [g.value for g in BaseGroup]
        assert len(counts) == 8

    def test_idempotent_outputs(self, tmp_path):
        registry = _make_registry()
        first = write_outputs(run_pipeline(_make_array(registry), registry), tmp_path / "a")
        second = write_outputs(run_pipeline(_make_array(registry), registry), tmp_path / "b")

        for name in TABLE_NAMES + ("retention_counts",):
            assert first[name].read_bytes() == second[name].read_bytes(), name

    def test_unbounded_threshold_written_as_null(self, tmp_path):
        registry = _make_registry()
        array = _make_array(registry)
        array.controls = _make_controls(registry.samples, level=0.0)

        result = run_pipeline(array, registry)
        written = write_outputs(result, tmp_path)

        def reject(token):
            raise ValueError(f"non-standard JSON constant {token}")

        report = json.loads(written["report"].read_text(encoding="utf-8"), parse_constant=reject)
        assert set(report["thresholds"].values()) == {None}
        assert result.report.union_size == 8
