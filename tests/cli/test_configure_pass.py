import json

import pytest

from rmm_build.errors import ConfigurationError, DependencyFetchError, ToolchainMissingError
from rmm_build.main import PLAN_FILENAME, main
from rmm_build.models import OptionSource, TargetPlan
from rmm_build.options import CACHE_FILENAME


def test_release_with_tests(make_pass, fake_fetcher, tmp_path):
    bs = make_pass(overrides={"CMAKE_BUILD_TYPE": "Release", "BUILD_TESTS": "ON"})

    plan = bs.run()

    assert plan.build_type.value == "Release"
    assert plan.subsystem("tests").enabled
    assert plan.definition("SPDLOG_ACTIVE_LEVEL").value == "SPDLOG_LEVEL_OFF"
    assert len([r for r in plan.install_rules if r.kind == "target"]) == 1
    assert len([r for r in plan.install_rules if r.kind == "directory"]) == 1
    assert sorted(fake_fetcher.calls) == ["cnmem", "spdlog", "thrust"]

    detail_header = tmp_path / "rmm" / "include" / "rmm" / "detail" / "cnmem.h"
    assert detail_header.read_text(encoding="utf-8") == "// cnmem cnmem.h\n"

    with open(bs.build_dir / PLAN_FILENAME, encoding="utf-8") as f:
        assert TargetPlan.model_validate(json.load(f)) == plan
    assert bs.load_plan() == plan


def test_second_pass_reuses_staging_and_cache(make_pass, make_fetcher):
    make_pass(overrides={"LOGGING_LEVEL": "INFO"}).run()

    fetcher = make_fetcher()
    bs = make_pass(fetcher=fetcher)
    plan = bs.run()

    assert fetcher.calls == []
    assert bs.options["LOGGING_LEVEL"] == "INFO"
    assert bs.options.source("LOGGING_LEVEL") == OptionSource.CACHE
    assert plan.definition("SPDLOG_ACTIVE_LEVEL").value == "SPDLOG_LEVEL_INFO"


def test_environment_option(make_pass):
    plan = make_pass(environ={"RMM_CUDA_STATIC_RUNTIME": "ON"}).run()

    assert plan.link_library("CUDA::cudart_static") is not None


def test_no_cache_leaves_build_tree_without_cache(make_pass):
    bs = make_pass(use_cache=False)
    bs.run()

    assert not (bs.build_dir / CACHE_FILENAME).exists()


def test_unrecognized_build_type_fails_before_fetching(make_pass, make_detector, fake_fetcher, toolchain):
    detector = make_detector(toolchain)
    bs = make_pass(overrides={"CMAKE_BUILD_TYPE": "Fastest"}, toolchain_detector=detector)

    with pytest.raises(ConfigurationError):
        bs.run()

    assert fake_fetcher.calls == []
    assert detector.calls == 0
    assert not (bs.build_dir / PLAN_FILENAME).exists()


def test_missing_cuda_fails_before_fetching(make_pass, make_detector, fake_fetcher, toolchain):
    no_cuda = toolchain.model_copy(update={"nvcc": None, "cuda_root": None, "cuda_version": None})
    bs = make_pass(toolchain_detector=make_detector(no_cuda))

    with pytest.raises(ToolchainMissingError):
        bs.run()

    assert fake_fetcher.calls == []


def test_fetch_failure_aborts_before_planning(make_pass, make_fetcher):
    fetcher = make_fetcher(fail={"spdlog"})
    bs = make_pass(fetcher=fetcher)

    with pytest.raises(DependencyFetchError):
        bs.run()

    assert bs.plan is None
    assert not bs.fetch_manager.marker_path("spdlog").exists()
    assert not (bs.build_dir / PLAN_FILENAME).exists()
    assert not (bs.build_dir / CACHE_FILENAME).exists()


def test_parallel_fetch(make_pass, fake_fetcher):
    plan = make_pass(parallel_fetch=True).run()

    assert sorted(fake_fetcher.calls) == ["cnmem", "spdlog", "thrust"]
    assert plan.sources


def test_dry_run_writes_nothing(make_pass, fake_fetcher, tmp_path):
    bs = make_pass(dry_run=True)

    plan = bs.run()

    assert fake_fetcher.calls == []
    assert plan.definition("NVTX_DISABLE") is not None
    assert not bs.build_dir.exists()
    assert not (tmp_path / "rmm" / "include").exists()


def test_missing_configured_file_source(make_pass):
    bs = make_pass()
    bs.run()

    (bs.fetch_manager.source_dir("cnmem") / "include" / "cnmem.h").unlink()

    with pytest.raises(ConfigurationError, match="Configured file source missing"):
        bs.apply_configured_files(bs.plan)


def test_load_plan_without_configure(make_pass):
    with pytest.raises(ConfigurationError, match="No target plan"):
        make_pass().load_plan()


def test_clean_single_dependency(make_pass):
    bs = make_pass()
    bs.run()

    make_pass().clean(deps=["spdlog"])

    assert not bs.fetch_manager.source_dir("spdlog").exists()
    assert bs.fetch_manager.source_dir("thrust").exists()
    assert (bs.build_dir / PLAN_FILENAME).exists()


def test_full_clean(make_pass):
    bs = make_pass()
    bs.run()

    make_pass().clean(full=True)

    assert not bs.fetch_manager.source_dir("cnmem").exists()
    assert not (bs.build_dir / PLAN_FILENAME).exists()
    assert not (bs.build_dir / CACHE_FILENAME).exists()


def test_cli_rejects_unrecognized_build_type(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc_info:
        main([
            "configure",
            "-D", "CMAKE_BUILD_TYPE=Fastest",
            "--source-dir", str(tmp_path),
            "--build-dir", str(tmp_path / "build"),
        ])

    assert exc_info.value.code == 1
    assert "Fastest" in capsys.readouterr().err
    assert not (tmp_path / "build" / "_deps").exists()


def test_cli_rejects_malformed_definition(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc_info:
        main(["configure", "-D", "LOGGING_LEVEL", "--source-dir", str(tmp_path)])

    assert exc_info.value.code == 1
    assert "Malformed definition" in capsys.readouterr().err


def test_cli_info(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc_info:
        main(["info", "--source-dir", str(tmp_path), "--build-dir", str(tmp_path / "build")])

    assert exc_info.value.code == 0
    out = capsys.readouterr().out
    assert "spdlog" in out
    assert "v1.7.0" in out
    assert "LOGGING_LEVEL" in out


def test_build_docs_runs_generator(make_pass, fake_doxygen, tmp_path):
    (tmp_path / "rmm" / "doxygen").mkdir(parents=True)

    assert make_pass().build_docs() is True

    output = tmp_path / "rmm" / "doxygen" / "doxygen.out"
    assert output.read_text(encoding="utf-8").strip() == "Doxyfile"


def test_build_docs_without_generator(make_pass, tmp_path, monkeypatch):
    monkeypatch.setenv("PATH", str(tmp_path / "empty"))

    with pytest.raises(ToolchainMissingError, match="doxygen not found"):
        make_pass().build_docs()


def test_cli_doc_without_doc_directory(fake_doxygen, tmp_path, capsys):
    source_dir = tmp_path / "rmm"
    source_dir.mkdir()

    with pytest.raises(SystemExit) as exc_info:
        main(["doc", "--source-dir", str(source_dir)])

    assert exc_info.value.code == 1
    err = capsys.readouterr().err
    assert err.startswith("Error: Documentation directory not found")
    assert not (source_dir / "doxygen").exists()


def test_cli_doc(fake_doxygen, tmp_path):
    source_dir = tmp_path / "rmm"
    (source_dir / "doxygen").mkdir(parents=True)

    with pytest.raises(SystemExit) as exc_info:
        main(["doc", "--source-dir", str(source_dir)])

    assert exc_info.value.code == 0
    assert (source_dir / "doxygen" / "doxygen.out").exists()
