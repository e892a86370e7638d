"""Tests for mboxpdf.config."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from mboxpdf.config import (
    ComponentKind,
    ConversionSettings,
    NamingComponent,
    ParserSettings,
    RenderSettings,
)


class TestParserSettings:
    def test_defaults(self):
        cfg = ParserSettings()
        assert cfg.chunk_size == 1024 * 1024
        assert cfg.batch_size == 100
        assert cfg.progress_every == 10

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("MBOXPDF_PARSER_BATCH_SIZE", "25")
        assert ParserSettings().batch_size == 25


class TestRenderSettings:
    def test_defaults(self):
        cfg = RenderSettings()
        assert (cfg.page_width, cfg.page_height, cfg.margin) == (612, 792, 54)
        assert cfg.max_pages == 1000
        assert cfg.min_advance == 100
        assert cfg.page_timeout_seconds == 30
        assert (cfg.image_max_width, cfg.image_max_height) == (504, 300)
        assert cfg.text_attachment_max_chars == 5000

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("MBOXPDF_RENDER_MAX_PAGES", "5")
        monkeypatch.setenv("MBOXPDF_RENDER_PAGE_TIMEOUT_SECONDS", "2.5")
        cfg = RenderSettings()
        assert cfg.max_pages == 5
        assert cfg.page_timeout_seconds == 2.5

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            RenderSettings(page_timeout_seconds=0)


class TestConversionSettings:
    def test_defaults(self):
        cfg = ConversionSettings()
        assert cfg.separate_outputs is False
        assert cfg.max_concurrency == 4
        assert cfg.max_email_body_size_mb == 2
        assert cfg.max_email_body_size_bytes == 2_000_000
        assert cfg.merge_attachments_into_output is False
        assert cfg.bundle_non_mergeable_attachments is False
        assert [(c.kind, c.enabled) for c in cfg.filename_components] == [
            (ComponentKind.SUBJECT, True),
            (ComponentKind.DATE, False),
            (ComponentKind.SENDER, False),
        ]
        assert isinstance(cfg.parser, ParserSettings)
        assert isinstance(cfg.render, RenderSettings)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("MBOXPDF_MAX_CONCURRENCY", "8")
        monkeypatch.setenv("MBOXPDF_SEPARATE_OUTPUTS", "true")
        cfg = ConversionSettings()
        assert cfg.max_concurrency == 8
        assert cfg.separate_outputs is True

    def test_nested_overrides(self):
        cfg = ConversionSettings(
            parser=ParserSettings(batch_size=5),
            render=RenderSettings(max_pages=3),
        )
        assert cfg.parser.batch_size == 5
        assert cfg.render.max_pages == 3

    @pytest.mark.parametrize("value", [0, 17])
    def test_concurrency_bounds(self, value: int):
        with pytest.raises(ValidationError):
            ConversionSettings(max_concurrency=value)

    @pytest.mark.parametrize("value", [0, 61])
    def test_body_size_bounds(self, value: int):
        with pytest.raises(ValidationError):
            ConversionSettings(max_email_body_size_mb=value)

    def test_frozen(self):
        cfg = ConversionSettings()
        with pytest.raises(ValidationError):
            cfg.max_concurrency = 2

    def test_components_from_dicts(self):
        cfg = ConversionSettings(filename_components=[{"kind": "Date"}, {"kind": "Subject", "enabled": False}])
        assert cfg.filename_components == [
            NamingComponent(kind=ComponentKind.DATE),
            NamingComponent(kind=ComponentKind.SUBJECT, enabled=False),
        ]
