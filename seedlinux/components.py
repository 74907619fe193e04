"""Declarative description of the upstream components that make up the image.

A component is pure data: where its sources come from and which recipe installs
it into the sysroot. The recipe kinds form a closed set; the builder dispatches
on ``Recipe.kind``.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple, Union


@dataclass(frozen=True)
class Substitution:
    """Literal text replacement applied to a file in the source tree."""

    path: str
    old: str
    new: str


@dataclass(frozen=True)
class AutotoolsRecipe:
    configure_flags: Tuple[str, ...] = ()
    out_of_tree: bool = False
    install_var: str = "DESTDIR"
    symlinks: Tuple[Tuple[str, str], ...] = ()

    kind = "autotools"


@dataclass(frozen=True)
class MesonRecipe:
    options: Tuple[str, ...] = ()
    build_dir: str = "build"
    symlinks: Tuple[Tuple[str, str], ...] = ()

    kind = "meson"


@dataclass(frozen=True)
class MakefileRecipe:
    build_targets: Tuple[str, ...] = ()
    install_targets: Tuple[str, ...] = ("install",)
    # Values may reference {sysroot}.
    install_vars: Tuple[Tuple[str, str], ...] = ()
    substitutions: Tuple[Substitution, ...] = ()
    config_file: bool = False
    copy_files: Tuple[Tuple[str, str], ...] = ()
    filter_log: bool = False
    make_flags: Tuple[str, ...] = ()
    symlinks: Tuple[Tuple[str, str], ...] = ()

    kind = "makefile"


@dataclass(frozen=True)
class CopyRecipe:
    copy_files: Tuple[Tuple[str, str], ...] = ()
    files: Tuple[Tuple[str, str], ...] = ()
    modes: Tuple[Tuple[str, int], ...] = ()
    symlinks: Tuple[Tuple[str, str], ...] = ()

    kind = "copy"


Recipe = Union[AutotoolsRecipe, MesonRecipe, MakefileRecipe, CopyRecipe]

RECIPE_KINDS = ("autotools", "meson", "makefile", "copy")


@dataclass(frozen=True)
class Component:
    name: str
    version: str
    recipe: Recipe
    url: Optional[str] = None
    archive: Optional[str] = None
    source_dir: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.name, self.version)

    @property
    def has_sources(self) -> bool:
        return self.url is not None

    def __str__(self) -> str:
        return f"{self.name}-{self.version}"


def _pairs(value: Any, what: str) -> Tuple[Tuple[str, str], ...]:
    if value is None:
        return ()
    if not isinstance(value, Mapping):
        raise ValueError(f"{what} must be a mapping")
    return tuple((str(k), str(v)) for k, v in value.items())


def _strings(value: Any, what: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise ValueError(f"{what} must be a list")
    return tuple(str(v) for v in value)


def _modes(value: Any) -> Tuple[Tuple[str, int], ...]:
    if value is None:
        return ()
    if not isinstance(value, Mapping):
        raise ValueError("modes must be a mapping")
    out = []
    for path, mode in value.items():
        # YAML 1.1 reads an unquoted 0755 as an octal int; quoted modes are octal strings.
        out.append((str(path), mode if isinstance(mode, int) else int(str(mode), 8)))
    return tuple(out)


def recipe_from_mapping(data: Mapping[str, Any]) -> Recipe:
    kind = str(data.get("kind") or "")
    if kind == "autotools":
        return AutotoolsRecipe(
            configure_flags=_strings(data.get("configure_flags"), "configure_flags"),
            out_of_tree=bool(data.get("out_of_tree", False)),
            install_var=str(data.get("install_var") or "DESTDIR"),
            symlinks=_pairs(data.get("symlinks"), "symlinks"),
        )
    if kind == "meson":
        return MesonRecipe(
            options=_strings(data.get("options"), "options"),
            build_dir=str(data.get("build_dir") or "build"),
            symlinks=_pairs(data.get("symlinks"), "symlinks"),
        )
    if kind == "makefile":
        subs = []
        for s in data.get("substitutions") or []:
            if not isinstance(s, Mapping) or not {"path", "old", "new"} <= set(s):
                raise ValueError("substitutions entries need path, old and new")
            subs.append(Substitution(path=str(s["path"]), old=str(s["old"]), new=str(s["new"])))
        return MakefileRecipe(
            build_targets=_strings(data.get("build_targets"), "build_targets"),
            install_targets=_strings(data.get("install_targets", ["install"]), "install_targets"),
            install_vars=_pairs(data.get("install_vars"), "install_vars"),
            substitutions=tuple(subs),
            config_file=bool(data.get("config_file", False)),
            copy_files=_pairs(data.get("copy_files"), "copy_files"),
            filter_log=bool(data.get("filter_log", False)),
            make_flags=_strings(data.get("make_flags"), "make_flags"),
            symlinks=_pairs(data.get("symlinks"), "symlinks"),
        )
    if kind == "copy":
        return CopyRecipe(
            copy_files=_pairs(data.get("copy_files"), "copy_files"),
            files=_pairs(data.get("files"), "files"),
            modes=_modes(data.get("modes")),
            symlinks=_pairs(data.get("symlinks"), "symlinks"),
        )
    raise ValueError(f"Unknown recipe kind {kind!r} (expected one of {', '.join(RECIPE_KINDS)})")


def component_from_mapping(data: Mapping[str, Any]) -> Component:
    name = data.get("name")
    version = data.get("version")
    if not name or version is None:
        raise ValueError(f"Component needs name and version: {dict(data)!r}")
    name = str(name)
    version = str(version)

    recipe_data = data.get("recipe")
    if not isinstance(recipe_data, Mapping):
        raise ValueError(f"Component {name} needs a recipe mapping")

    def expand(value: Any) -> Optional[str]:
        if value is None:
            return None
        return str(value).format(name=name, version=version)

    url = expand(data.get("url"))
    archive = expand(data.get("archive"))
    source_dir = expand(data.get("source_dir"))
    if url is not None:
        archive = archive or posixpath.basename(url)
        source_dir = source_dir or f"{name}-{version}"

    return Component(
        name=name,
        version=version,
        recipe=recipe_from_mapping(recipe_data),
        url=url,
        archive=archive,
        source_dir=source_dir,
    )


def components_from_list(items: Any) -> Tuple[Component, ...]:
    if items is None:
        return ()
    if not isinstance(items, list):
        raise ValueError("components must be a list")

    out: list[Component] = []
    seen: Dict[Tuple[str, str], Component] = {}
    for item in items:
        if not isinstance(item, Mapping):
            raise ValueError("each component must be a mapping")
        c = component_from_mapping(item)
        if c.key in seen:
            raise ValueError(f"Duplicate component {c}")
        seen[c.key] = c
        out.append(c)
    return tuple(out)
