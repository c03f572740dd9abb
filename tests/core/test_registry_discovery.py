import textwrap

from hub import metrics
from hub.registry import (
    clear_discovery_cache,
    discover,
    load_backends,
    load_modules,
)


def _module_dir(root, name, module_src, backend_src=None):
    d = root / name
    d.mkdir(parents=True)
    (d / "module.py").write_text(textwrap.dedent(module_src), encoding="utf-8")
    if backend_src is not None:
        (d / "backend.py").write_text(
            textwrap.dedent(backend_src), encoding="utf-8"
        )
    return d


def test_discovers_modules_and_backends(tmp_path):
    _module_dir(
        tmp_path,
        "compliments",
        """
        from hub.modules import Module

        class Compliments(Module):
            defaults = {"interval": 30}

            def produce_content(self):
                return "Looking good"
        """,
        """
        from hub.bridge import Backend

        class ComplimentsBackend(Backend):
            pass
        """,
    )
    _module_dir(
        tmp_path,
        "calendar",
        """
        from hub.modules import Module

        class Calendar(Module):
            pass
        """,
    )
    found = discover(tmp_path)
    assert sorted(found) == ["calendar", "compliments"]

    modules = load_modules(tmp_path)
    definition = modules.get("compliments")
    assert definition.defaults["interval"] == 30
    assert definition.base_dir == tmp_path.resolve() / "compliments"
    assert definition.provides("produce_content")

    backends = load_backends(tmp_path)
    assert backends.names() == ["compliments"]
    assert backends.get("compliments").name == "compliments"
    clear_discovery_cache(tmp_path)


def test_broken_module_skipped(tmp_path, caplog):
    _module_dir(tmp_path, "broken", "raise ImportError('nope')\n")
    _module_dir(
        tmp_path,
        "fine",
        """
        from hub.modules import Module

        class Fine(Module):
            pass
        """,
    )
    with caplog.at_level("ERROR", logger="hub.registry"):
        registry = load_modules(tmp_path)
    assert registry.names() == ["fine"]
    assert "skipping module dir" in caplog.text
    assert metrics.counter(
        "module_discovery_errors_total", {"module": "broken"}
    ) == 1
    clear_discovery_cache()


def test_missing_dir_is_empty(tmp_path):
    assert discover(tmp_path / "absent") == {}
    clear_discovery_cache()
