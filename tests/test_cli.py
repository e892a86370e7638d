"""Tests for the mboxpdf command line."""

from __future__ import annotations

import argparse
import json
import zipfile
from pathlib import Path

import pytest

from mboxpdf.__main__ import build_parser, main, parse_components, parse_selection, settings_from_args
from mboxpdf.config import ComponentKind


class TestParseSelection:
    def test_ranges_and_singles(self):
        assert parse_selection("1,3-5, 9") == {1, 3, 4, 5, 9}

    @pytest.mark.parametrize("text", ["", "a", "5-3", "0", "1-x"])
    def test_invalid(self, text: str):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_selection(text)


class TestParseComponents:
    def test_order_and_disabled_rest(self):
        components = parse_components("date, subject")
        assert [(c.kind, c.enabled) for c in components] == [
            (ComponentKind.DATE, True),
            (ComponentKind.SUBJECT, True),
            (ComponentKind.SENDER, False),
        ]

    def test_duplicates_collapsed(self):
        assert [c.kind for c in parse_components("Sender,sender") if c.enabled] == [ComponentKind.SENDER]

    def test_unknown(self):
        with pytest.raises(argparse.ArgumentTypeError, match="unknown filename component"):
            parse_components("subject,size")


class TestSettingsFromArgs:
    def test_defaults_untouched(self):
        args = build_parser().parse_args(["convert", "a.mbox", "-o", "a.pdf"])
        settings = settings_from_args(args)
        assert settings.separate_outputs is False
        assert settings.max_concurrency == 4

    def test_overrides(self):
        args = build_parser().parse_args([
            "convert", "a.mbox", "-o", "out.zip",
            "--separate", "--merge-attachments", "--bundle-attachments",
            "--max-concurrency", "6", "--max-body-mb", "10",
            "--name-components", "subject,sender",
        ])
        settings = settings_from_args(args)
        assert settings.separate_outputs is True
        assert settings.merge_attachments_into_output is True
        assert settings.bundle_non_mergeable_attachments is True
        assert settings.max_concurrency == 6
        assert settings.max_email_body_size_mb == 10
        assert [c.kind for c in settings.filename_components if c.enabled] == [
            ComponentKind.SUBJECT,
            ComponentKind.SENDER,
        ]

    def test_env_applies_when_flag_absent(self, monkeypatch):
        monkeypatch.setenv("MBOXPDF_MAX_CONCURRENCY", "3")
        args = build_parser().parse_args(["convert", "a.mbox", "-o", "a.pdf"])
        assert settings_from_args(args).max_concurrency == 3


class TestMain:
    def test_convert(self, two_message_mbox: Path, tmp_path: Path, capsys):
        output = tmp_path / "mail.pdf"
        code = main(["convert", str(two_message_mbox), "-o", str(output)])
        assert code == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["status"] == "success"
        assert summary["parsed"] == 2
        assert summary["outputs"] == [str(output)]
        assert output.exists()

    def test_convert_separate_with_selection(self, two_message_mbox: Path, tmp_path: Path, capsys):
        output = tmp_path / "emails.zip"
        code = main([
            "convert", str(two_message_mbox), "-o", str(output),
            "--separate", "--select", "2", "--name-components", "subject",
        ])
        assert code == 0
        with zipfile.ZipFile(output) as zf:
            assert zf.namelist() == ["000001_Second.pdf"]

    def test_convert_failure_exit_code(self, tmp_path: Path, capsys):
        bad = tmp_path / "mail.txt"
        bad.write_text("x")
        code = main(["convert", str(bad), "-o", str(tmp_path / "o.pdf")])
        assert code == 1
        assert json.loads(capsys.readouterr().out)["status"] == "failed"

    def test_inspect(self, two_message_mbox: Path, capsys):
        code = main(["inspect", str(two_message_mbox)])
        assert code == 0
        report = json.loads(capsys.readouterr().out)
        assert report["parsed"] == 2
        assert [e["subject"] for e in report["emails"]] == ["First", "Second"]
        assert report["emails"][0]["date"] == "2025-06-02 12:00:00"

    def test_inspect_empty_file(self, tmp_path: Path, capsys):
        path = tmp_path / "empty.mbox"
        path.write_bytes(b"")
        assert main(["inspect", str(path)]) == 1
        assert json.loads(capsys.readouterr().out)["status"] == "failed"

    def test_invalid_option_value(self, two_message_mbox: Path, tmp_path: Path):
        with pytest.raises(SystemExit) as exc_info:
            main(["convert", str(two_message_mbox), "-o", str(tmp_path / "o.pdf"), "--max-concurrency", "99"])
        assert exc_info.value.code == 2

    def test_unwritable_output_still_prints_summary(self, two_message_mbox: Path, tmp_path: Path, capsys):
        blocker = tmp_path / "blocker"
        blocker.write_text("x")
        code = main(["convert", str(two_message_mbox), "-o", str(blocker / "o.pdf")])
        assert code == 1
        assert json.loads(capsys.readouterr().out)["status"] == "failed"
