"""Tests for the regex-based dependency extractor."""

from __future__ import annotations

import pytest

from incbuild.extractors import PatternExtractor


@pytest.fixture
def extractor() -> PatternExtractor:
    return PatternExtractor()


def test_python_imports(extractor: PatternExtractor) -> None:
    content = """
import os, sys as system
import pkg.util
from pkg.models import Task, RunResult
from . import helpers
from .sibling import thing
from ..parent import (
    first,
    second,  # trailing comment
)
"""
    refs = extractor.extract(content, "pkg/sub/mod.py")

    assert {"os", "sys", "pkg/util", "pkg/models", "pkg/models/Task"} <= refs
    assert {"./helpers", "./sibling", "./sibling/thing"} <= refs
    assert {"../parent", "../parent/first", "../parent/second"} <= refs


def test_python_ignores_star_imports(extractor: PatternExtractor) -> None:
    refs = extractor.extract("from pkg import *\n", "main.py")

    assert refs == {"pkg"}


def test_javascript_references(extractor: PatternExtractor) -> None:
    content = """
import React from 'react';
import { a, b } from "./utils";
export * from './reexport';
import './side-effect.css';
const lib = require('../lib/index');
const lazy = await import('./lazy');
"""
    refs = extractor.extract(content, "src/app.ts")

    assert refs == {"react", "./utils", "./reexport", "./side-effect.css", "../lib/index", "./lazy"}


def test_c_includes(extractor: PatternExtractor) -> None:
    content = '#include "util.h"\n#  include <stdio.h>\n'

    assert extractor.extract(content, "src/main.c") == {"util.h", "stdio.h"}


def test_css_imports_and_urls(extractor: PatternExtractor) -> None:
    content = "@import 'base.css';\n.logo { background: url(\"../img/logo.png\"); }\n"

    assert extractor.extract(content, "styles/site.css") == {"base.css", "../img/logo.png"}


def test_markdown_keeps_image_embeds_only(extractor: PatternExtractor) -> None:
    content = "See [the guide](guide.md#setup) and ![logo](img/logo.png).\n"

    assert extractor.extract(content, "docs/index.md") == {"img/logo.png"}


def test_html_keeps_src_and_ignores_href(extractor: PatternExtractor) -> None:
    content = '<a href="other.html">next</a>\n<script src="app.js"></script>\n<img SRC="logo.png">\n'

    assert extractor.extract(content, "site/index.html") == {"app.js", "logo.png"}


def test_python_skips_type_checking_imports(extractor: PatternExtractor) -> None:
    content = """
from typing import TYPE_CHECKING

import runtime_dep

if TYPE_CHECKING:
    from .models import Task

    import typing_only
else:
    import fallback

if typing.TYPE_CHECKING:  # annotations
    from . import other
"""
    refs = extractor.extract(content, "pkg/a.py")

    assert {"typing", "typing/TYPE_CHECKING", "runtime_dep", "fallback"} <= refs
    assert "./models" not in refs
    assert "typing_only" not in refs
    assert "./other" not in refs


def test_powershell_references(extractor: PatternExtractor) -> None:
    content = """
. $PSScriptRoot\\Common.ps1
Import-Module ./modules/Tools.psm1
using module Shared
"""
    refs = extractor.extract(content, "scripts/deploy.ps1")

    assert refs == {"./Common.ps1", "./modules/Tools.psm1", "Shared"}


def test_shell_source(extractor: PatternExtractor) -> None:
    content = "source ./lib.sh\n. env.sh\n"

    assert extractor.extract(content, "bin/run.sh") == {"./lib.sh", "env.sh"}


def test_unsupported_suffix(extractor: PatternExtractor) -> None:
    assert not extractor.supports("data/blob.bin")
    assert extractor.extract("import os", "data/blob.bin") == set()
