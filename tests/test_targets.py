"""Tests for target option parsing and the options manifest."""

from __future__ import annotations

import json

import pytest

from flyvm.errors import ConfigurationError
from flyvm.targets import (
    ACCESS_TOKEN_ENV,
    DEFAULT_DISK_SIZE_GB,
    DEFAULT_SIZE,
    parse_target_options,
    target_config_manifest,
)


def test_parse_full_options(monkeypatch) -> None:
    monkeypatch.delenv(ACCESS_TOKEN_ENV, raising=False)
    opts = parse_target_options(
        json.dumps(
            {
                'Region': 'ams',
                'Size': 'performance-2x',
                'Disk Size': 20,
                'Org Slug': 'acme',
                'Auth Token': 'tok',
            }
        )
    )
    assert opts.region == 'ams'
    assert opts.size == 'performance-2x'
    assert opts.disk_size == 20
    assert opts.org_slug == 'acme'
    assert opts.auth_token == 'tok'


def test_parse_defaults_and_env_token(monkeypatch) -> None:
    monkeypatch.setenv(ACCESS_TOKEN_ENV, 'from-env')
    opts = parse_target_options('{"Org Slug": "acme"}')
    assert opts.auth_token == 'from-env'
    assert opts.size == DEFAULT_SIZE
    assert opts.disk_size == DEFAULT_DISK_SIZE_GB
    assert opts.region == ''


def test_parse_missing_token_fails(monkeypatch) -> None:
    monkeypatch.delenv(ACCESS_TOKEN_ENV, raising=False)
    with pytest.raises(ConfigurationError, match='auth token'):
        parse_target_options('{"Org Slug": "acme"}')


def test_parse_missing_org_fails(monkeypatch) -> None:
    monkeypatch.setenv(ACCESS_TOKEN_ENV, 'tok')
    with pytest.raises(ConfigurationError, match='org slug'):
        parse_target_options('{}')


@pytest.mark.parametrize(
    'raw', ['not json', '[1, 2]', '{"Org Slug": "a", "Disk Size": "big"}',
            '{"Org Slug": "a", "Disk Size": 0}'],
)  # fmt: skip
def test_parse_rejects_bad_input(monkeypatch, raw: str) -> None:
    monkeypatch.setenv(ACCESS_TOKEN_ENV, 'tok')
    with pytest.raises(ConfigurationError):
        parse_target_options(raw)


def test_manifest_lists_all_options() -> None:
    manifest = target_config_manifest()
    assert set(manifest) == {
        'Region',
        'Size',
        'Disk Size',
        'Org Slug',
        'Auth Token',
    }
    assert manifest['Auth Token']['input_masked'] is True
    assert 'ams' in manifest['Region']['suggestions']
    assert manifest['Disk Size']['type'] == 'int'
