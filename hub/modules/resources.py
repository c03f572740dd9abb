"""ResourceLoader: makes declared scripts / styles / translations ready.

Rules:
  - relative references resolve against the module's ``base_dir``
  - remote references (http://, https://, //) are handed to the display
    as-is and count as ready
  - each resolved file is fetched once per process; instances sharing it
    hold a reference count, released on terminate
  - concurrent loads of the same file share one in-flight fetch
  - translations: configured language + fallback language, ``.json`` or
    ``.yaml``; parsed tables are cached per (module, locale)

Any failure surfaces as ``ResourceLoadError``; the controller keeps the
instance in RESOURCES_LOADING.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Mapping

import yaml

from hub import metrics
from hub.errors import ResourceLoadError

if TYPE_CHECKING:  # pragma: no cover
    from .definition import ModuleDefinition
    from hub.instance import ModuleInstance

log = logging.getLogger("hub.resources")

Fetcher = Callable[[str], Awaitable[str]]

_REMOTE_PREFIXES = ("http://", "https://", "//")


def is_remote(ref: str) -> bool:
    return ref.startswith(_REMOTE_PREFIXES)


async def read_file(ref: str) -> str:
    """Default fetcher: read a local file off the event loop."""
    path = Path(ref)
    if not path.is_file():
        raise ResourceLoadError(ref, "file not found")
    try:
        return await asyncio.to_thread(path.read_text, encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ResourceLoadError(ref, str(e)) from e


class Translator:
    def __init__(
        self,
        primary: Mapping[str, str] | None = None,
        fallback: Mapping[str, str] | None = None,
    ) -> None:
        self._primary = dict(primary or {})
        self._fallback = dict(fallback or {})

    def translate(
        self,
        key: str,
        variables: Mapping[str, Any] | None = None,
        default: str | None = None,
    ) -> str:
        template = self._primary.get(key)
        if template is None:
            template = self._fallback.get(key)
        if template is None:
            template = default if default is not None else key
        for name, value in (variables or {}).items():
            template = template.replace("{" + name + "}", str(value))
        return template

    def __contains__(self, key: object) -> bool:
        return key in self._primary or key in self._fallback


@dataclass(frozen=True)
class LoadedResources:
    scripts: tuple[str, ...]
    styles: tuple[str, ...]
    translator: Translator


class ResourceLoader:
    def __init__(
        self,
        fetch: Fetcher | None = None,
        *,
        language: str = "en",
        fallback_language: str = "en",
    ) -> None:
        self._fetch = fetch or read_file
        self.language = language
        self.fallback_language = fallback_language
        self._refs: Dict[str, int] = {}
        self._inflight: Dict[str, asyncio.Future] = {}
        self._owned: Dict[str, list[str]] = {}
        self._translations: Dict[tuple[str, str], dict] = {}

    def resolve(self, definition: "ModuleDefinition", ref: str) -> str:
        if is_remote(ref) or definition.base_dir is None:
            return ref
        path = Path(ref)
        if path.is_absolute():
            return ref
        return str(definition.base_dir / path)

    def is_loaded(self, resolved: str) -> bool:
        return resolved in self._refs

    def loaded(self) -> list[str]:
        return list(self._refs)

    async def _ensure(self, resolved: str, kind: str) -> None:
        if resolved in self._refs:
            self._refs[resolved] += 1
            return
        pending = self._inflight.get(resolved)
        if pending is None:
            pending = asyncio.ensure_future(self._fetch_one(resolved))
            self._inflight[resolved] = pending
            try:
                await asyncio.shield(pending)
            finally:
                self._inflight.pop(resolved, None)
            self._refs[resolved] = self._refs.get(resolved, 0) + 1
            metrics.inc("resources_loaded_total", {"kind": kind})
            return
        await asyncio.shield(pending)
        self._refs[resolved] = self._refs.get(resolved, 0) + 1

    async def _fetch_one(self, resolved: str) -> None:
        if is_remote(resolved):
            return
        try:
            await self._fetch(resolved)
        except ResourceLoadError:
            raise
        except Exception as e:  # noqa: BLE001
            raise ResourceLoadError(resolved, str(e)) from e

    async def _table(
        self, definition: "ModuleDefinition", locale: str
    ) -> dict:
        key = (definition.name, locale)
        if key in self._translations:
            return self._translations[key]
        ref = definition.translations.get(locale)
        if ref is None:
            return {}
        resolved = self.resolve(definition, ref)
        try:
            raw = await self._fetch(resolved)
            if resolved.endswith((".yaml", ".yml")):
                table = yaml.safe_load(raw) or {}
            else:
                table = json.loads(raw or "{}")
        except ResourceLoadError:
            raise
        except Exception as e:  # noqa: BLE001
            raise ResourceLoadError(resolved, str(e)) from e
        if not isinstance(table, dict):
            raise ResourceLoadError(resolved, "translation file is not a mapping")
        self._translations[key] = table
        metrics.inc("resources_loaded_total", {"kind": "translation"})
        return table

    async def _translator(self, definition: "ModuleDefinition") -> Translator:
        if not definition.translations:
            return Translator()
        fallback_locale = self.fallback_language
        if fallback_locale not in definition.translations:
            fallback_locale = next(iter(definition.translations))
        primary = await self._table(definition, self.language)
        fallback = (
            await self._table(definition, fallback_locale)
            if fallback_locale != self.language
            else {}
        )
        return Translator(primary, fallback)

    async def load(self, instance: "ModuleInstance") -> LoadedResources:
        definition = instance.definition
        acquired: list[str] = []
        try:
            scripts = []
            for ref in definition.scripts:
                resolved = self.resolve(definition, ref)
                await self._ensure(resolved, "script")
                acquired.append(resolved)
                scripts.append(resolved)
            styles = []
            for ref in definition.styles:
                resolved = self.resolve(definition, ref)
                await self._ensure(resolved, "style")
                acquired.append(resolved)
                styles.append(resolved)
            translator = await self._translator(definition)
        except BaseException:
            self._drop(acquired)
            raise
        self._owned[instance.identifier] = acquired
        log.debug(
            "resources ready for %s: %d scripts, %d styles",
            instance.identifier,
            len(scripts),
            len(styles),
        )
        return LoadedResources(tuple(scripts), tuple(styles), translator)

    def _drop(self, resolved_refs: list[str]) -> None:
        for resolved in resolved_refs:
            count = self._refs.get(resolved, 0) - 1
            if count <= 0:
                self._refs.pop(resolved, None)
            else:
                self._refs[resolved] = count

    def release(self, instance: "ModuleInstance") -> None:
        self._drop(self._owned.pop(instance.identifier, []))


__all__ = [
    "ResourceLoader",
    "LoadedResources",
    "Translator",
    "read_file",
    "is_remote",
]
