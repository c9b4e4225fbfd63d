from __future__ import annotations

import pytest

from config import Settings


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("https://app.example.com", ["https://app.example.com"]),
        ("https://a.example.com, https://b.example.com", ["https://a.example.com", "https://b.example.com"]),
        ('["https://a.example.com", "https://b.example.com"]', ["https://a.example.com", "https://b.example.com"]),
    ],
)
def test_cors_origins_from_env(monkeypatch, raw, expected):
    monkeypatch.setenv("CORS_ORIGINS", raw)
    assert Settings().cors_origins == expected


def test_cors_origins_default(monkeypatch):
    monkeypatch.delenv("CORS_ORIGINS", raising=False)
    assert Settings().cors_origins == ["http://localhost:3000"]


def test_production_flag(monkeypatch):
    monkeypatch.setenv("APP_ENV", "Production")
    assert Settings().is_production
    monkeypatch.setenv("APP_ENV", "test")
    assert not Settings().is_production
