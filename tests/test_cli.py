from __future__ import annotations

import pytest

from stepscript import run_cli


LOOP = ":start\nset x 0\n:loop\ninc x\ngoless x 5 loop\nprintln x\nend\n"


def test_runs_source_text(capsys):
    assert run_cli(["-source", LOOP]) == 0
    assert capsys.readouterr().out == "5\n"


def test_runs_script_file(tmp_path, capsys):
    path = tmp_path / "hello.ss"
    path.write_text("!type:control\nprintln 'hello'\n", encoding="utf-8")
    assert run_cli([str(path)]) == 0
    assert capsys.readouterr().out == "hello\n"


def test_missing_file(tmp_path, capsys):
    assert run_cli([str(tmp_path / "absent.ss")]) == 1
    assert "Failed to read" in capsys.readouterr().err


def test_parse_error_is_reported(tmp_path, capsys):
    path = tmp_path / "bad.ss"
    path.write_text("set x\n", encoding="utf-8")
    assert run_cli([str(path)]) == 1
    err = capsys.readouterr().err
    assert err.startswith("ParseError: Expected 2 arguments for command 'set'.")
    assert "bad.ss:1" in err


def test_unknown_dialect_metadata(capsys):
    assert run_cli(["-source", "!type:nope\nend\n"]) == 1
    assert "Unknown dialect 'nope'" in capsys.readouterr().err


def test_runtime_fault_prints_traceback(capsys):
    assert run_cli(["-source", "println 'before'\nreturn\n"]) == 1
    captured = capsys.readouterr()
    assert captured.out == "before\n"
    assert "Traceback (most recent call last):" in captured.err
    assert "ScriptRuntimeError: RETURN without GOSUB." in captured.err


def test_traceback_json(capsys):
    assert run_cli(["--traceback-json", "-source", "goto nowhere\n"]) == 1
    err = capsys.readouterr().err
    assert '"failing_step_index": 0' in err


def test_runaway_limit(capsys):
    assert run_cli(["--runaway-limit", "10", "-source", ":top\ngoto top\n"]) == 1
    assert "ScriptRunawayError: Caught runaway script after 10 steps." in capsys.readouterr().err


def test_start_label(capsys):
    assert run_cli(["--start", "second", "-source", "println 'a'\n:second\nprintln 'b'\n"]) == 0
    assert capsys.readouterr().out == "b\n"


def test_bad_start_label(capsys):
    assert run_cli(["--start", "nowhere", "-source", "end\n"]) == 1
    assert "Invalid label requested by script: 'nowhere'" in capsys.readouterr().err


def test_tick_limit(capsys):
    assert run_cli(["--ticks", "1", "-source", "println 1\nbreak\nprintln 2\n"]) == 0
    assert capsys.readouterr().out == "1\n"


def test_wait_ticks(capsys):
    assert run_cli(["--wait-ticks", "--ticks", "2", "-source", "wait 5\nprintln 'late'\n"]) == 0
    assert capsys.readouterr().out == ""


def test_extension_dialect(stack_extension_path, capsys):
    source = "!type:stack\npush 4\ndup\nmul\nshow\n"
    assert run_cli(["--ext", stack_extension_path, "-source", source]) == 0
    assert capsys.readouterr().out == "16\n"


def test_default_type_flag(stack_extension_path, capsys):
    assert run_cli(["--ext", stack_extension_path, "--type", "stack", "-source", "push 1\nshow\n"]) == 0
    assert capsys.readouterr().out == "1\n"


def test_unknown_type_flag(capsys):
    assert run_cli(["--type", "nope", "-source", "end\n"]) == 1
    assert "Unknown dialect 'nope'" in capsys.readouterr().err


def test_repl_keeps_variables_between_buffers(monkeypatch, capsys):
    lines = iter(["set x 2", "", "println x", "", "return", ""])

    def fake_input(prompt=""):
        try:
            return next(lines)
        except StopIteration:
            raise EOFError

    monkeypatch.setattr("builtins.input", fake_input)
    assert run_cli([]) == 0
    captured = capsys.readouterr()
    assert captured.out.splitlines()[1:] == ["2", ""]
    assert "RETURN without GOSUB." in captured.err


def test_repl_reports_parse_errors(monkeypatch, capsys):
    lines = iter(["frobnicate", ""])

    def fake_input(prompt=""):
        try:
            return next(lines)
        except StopIteration:
            raise EOFError

    monkeypatch.setattr("builtins.input", fake_input)
    assert run_cli([]) == 0
    assert "ParseError: Expected valid command, found 'frobnicate'." in capsys.readouterr().err


def test_source_flag_needs_text(capsys):
    assert run_cli(["-source"]) == 1
    assert "-source requires a program string" in capsys.readouterr().err


@pytest.mark.parametrize("level", ["debug", "INFO", "bogus"])
def test_log_level_accepted(level, capsys):
    assert run_cli(["--log-level", level, "-source", "end\n"]) == 0


def test_each_source_text_is_its_own_script(capsys):
    assert run_cli(["-source", "println 'first'\n", "println 'second'\n"]) == 0
    assert capsys.readouterr().out == "first\n"


def test_duplicate_file_stems_are_rejected(tmp_path, capsys):
    (tmp_path / "a").mkdir()
    (tmp_path / "b").mkdir()
    first = tmp_path / "a" / "job.ss"
    second = tmp_path / "b" / "Job.ss"
    first.write_text("println 'a'\n", encoding="utf-8")
    second.write_text("println 'b'\n", encoding="utf-8")
    assert run_cli([str(first), str(second)]) == 1
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "share the name 'Job'" in captured.err


def test_undecodable_file(tmp_path, capsys):
    path = tmp_path / "bad.ss"
    path.write_bytes(b"println '\xff\xfe'\n")
    assert run_cli([str(path)]) == 1
    assert "Failed to read" in capsys.readouterr().err
