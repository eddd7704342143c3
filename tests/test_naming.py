"""Tests for remote resource naming."""

from __future__ import annotations

import re

from flyvm.naming import VOLUME_NAME_MAX, resource_name, volume_name


def test_resource_name_is_prefixed_and_stable() -> None:
    assert resource_name('ws1') == 'flyvm-ws1'
    assert resource_name('ws1') == resource_name('ws1')


def test_volume_name_strips_invalid_chars() -> None:
    assert volume_name('my-project.v2') == 'flyvm_myprojectv2'


def test_volume_name_short_names_unchanged() -> None:
    assert volume_name('abc') == 'flyvm_abc'
    name = 'a' * (VOLUME_NAME_MAX - len('flyvm_'))
    assert volume_name(name) == 'flyvm_' + name


def test_volume_name_long_names_are_bounded_and_distinct() -> None:
    a = 'workspace-' + 'x' * 40 + '-alpha'
    b = 'workspace-' + 'x' * 40 + '-beta'
    va = volume_name(a)
    vb = volume_name(b)
    assert len(va) == VOLUME_NAME_MAX
    assert len(vb) == VOLUME_NAME_MAX
    assert re.fullmatch(r'[A-Za-z0-9_]+', va)
    assert va != vb
    assert va.startswith('flyvm_workspace')
    assert volume_name(a) == va
