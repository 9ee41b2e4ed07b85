"""Tests for pipeline and stage configuration."""

import pytest

from hic_events.config import (
    DEFAULTS,
    StageArgs,
    cfg_get,
    join_args,
    load_pipeline_config,
    load_stage_args,
    parse_stage_args,
)
from hic_events.orchestrator import ScratchLayout


class TestStageArgs:
    def test_recognized_keys(self):
        args = parse_stage_args("ic_stage_args = --grid-max 15\nhydro_stage_args=etas_min=0.08\n")
        assert args == StageArgs(ic_stage_args="--grid-max 15", hydro_stage_args="etas_min=0.08")

    def test_unknown_keys_and_noise_are_inert(self):
        args = parse_stage_args("# comment\n\nfoo = bar\njust some text\nhydro_stage_args = x=1\n")
        assert args == StageArgs(hydro_stage_args="x=1")

    def test_optional_file(self, tmp_path):
        assert load_stage_args(None) == StageArgs()
        with pytest.raises(FileNotFoundError):
            load_stage_args(tmp_path / "missing.conf")

    def test_join_args(self):
        assert join_args("a b", "", "  c ") == "a b c"


class TestPipelineConfig:
    def test_defaults(self):
        cfg = load_pipeline_config(None)
        assert cfg == DEFAULTS
        assert cfg is not DEFAULTS

    def test_yaml_overlay(self, tmp_path):
        path = tmp_path / "pipeline.yaml"
        path.write_text("stages:\n  hydro:\n    executable: my-hydro\nrecords:\n  header_lines: 2\n")
        cfg = load_pipeline_config(path)
        assert cfg_get(cfg, "stages.hydro.executable") == "my-hydro"
        assert cfg_get(cfg, "stages.hydro.workdir") == "hydro"
        assert cfg_get(cfg, "stages.sampler.executable") == DEFAULTS["stages"]["sampler"]["executable"]
        assert cfg_get(cfg, "records.header_lines") == 2
        assert cfg_get(cfg, "records.nope", 7) == 7

    def test_bad_root(self, tmp_path):
        path = tmp_path / "pipeline.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            load_pipeline_config(path)

    def test_layout_from_config(self, tmp_path):
        cfg = load_pipeline_config(None)
        cfg["stages"]["afterburner"]["workdir"] = str(tmp_path / "abs")
        cfg["files"]["hypersurface"] = "fo.dat"
        layout = ScratchLayout.from_config(cfg, tmp_path / "scratch")
        assert layout.workdirs["hydro"] == tmp_path / "scratch" / "hydro"
        assert layout.workdirs["afterburner"] == tmp_path / "abs"
        assert layout.hypersurface == "fo.dat"
        assert layout.args["sampler"].format(oversamples=4) == "oversamples=4"
