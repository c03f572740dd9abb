import asyncio
import json

import pytest

from hub.errors import ResourceLoadError
from hub.instance import ModuleInstance
from hub.modules import ModuleDefinition, ResourceLoader, Translator


class Widget:
    scripts = ("widget.js", "https://cdn.example.invalid/lib.js")
    styles = ("widget.css",)
    translations = {"en": "i18n/en.json", "de": "i18n/de.yaml"}


def _instance(index, definition):
    return ModuleInstance(index, definition, {})


def _write_module(tmp_path):
    base = tmp_path / "widget"
    (base / "i18n").mkdir(parents=True)
    (base / "widget.js").write_text("// js", encoding="utf-8")
    (base / "widget.css").write_text(".w {}", encoding="utf-8")
    (base / "i18n" / "en.json").write_text(
        json.dumps({"HELLO": "Hello {name}", "BYE": "Bye"}), encoding="utf-8"
    )
    (base / "i18n" / "de.yaml").write_text(
        "HELLO: \"Hallo {name}\"\n", encoding="utf-8"
    )
    return ModuleDefinition.from_class("widget", Widget, base)


def test_loads_from_disk_with_translation_fallback(tmp_path):
    definition = _write_module(tmp_path)
    loader = ResourceLoader(language="de", fallback_language="en")
    res = asyncio.run(loader.load(_instance(0, definition)))
    base = tmp_path / "widget"
    assert res.scripts == (
        str(base / "widget.js"),
        "https://cdn.example.invalid/lib.js",
    )
    assert res.styles == (str(base / "widget.css"),)
    assert res.translator.translate("HELLO", {"name": "Ada"}) == "Hallo Ada"
    assert res.translator.translate("BYE") == "Bye"
    assert res.translator.translate("MISSING") == "MISSING"


def test_shared_files_fetched_once_and_refcounted():
    fetched = []

    async def fetch(ref):
        fetched.append(ref)
        await asyncio.sleep(0.01)
        return ""

    class Shared:
        scripts = ("common.js",)

    definition = ModuleDefinition.from_class("shared", Shared, "/m/shared")
    loader = ResourceLoader(fetch)
    a, b = _instance(0, definition), _instance(1, definition)

    async def scenario():
        await asyncio.gather(loader.load(a), loader.load(b))

    asyncio.run(scenario())
    assert fetched == ["/m/shared/common.js"]
    assert loader.is_loaded("/m/shared/common.js")
    loader.release(a)
    assert loader.is_loaded("/m/shared/common.js")
    loader.release(b)
    assert not loader.is_loaded("/m/shared/common.js")


def test_missing_file_raises_resource_load_error(tmp_path):
    class Missing:
        styles = ("nope.css",)

    definition = ModuleDefinition.from_class("missing", Missing, tmp_path)
    loader = ResourceLoader()
    with pytest.raises(ResourceLoadError) as ei:
        asyncio.run(loader.load(_instance(0, definition)))
    assert ei.value.resource.endswith("nope.css")
    assert loader.loaded() == []


def test_invalid_translation_file_rejected():
    async def fetch(ref):
        return "- just\n- a list\n"

    class Bad:
        translations = {"en": "en.yaml"}

    definition = ModuleDefinition.from_class("bad", Bad, "/m/bad")
    with pytest.raises(ResourceLoadError):
        asyncio.run(ResourceLoader(fetch).load(_instance(0, definition)))


def test_translator_default_and_variables():
    t = Translator({"A": "{x} and {y}"}, {"B": "fallback"})
    assert t.translate("A", {"x": 1, "y": "two"}) == "1 and two"
    assert t.translate("B") == "fallback"
    assert t.translate("C", default="dflt") == "dflt"
    assert "A" in t and "C" not in t
