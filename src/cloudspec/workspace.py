"""A typed collection of the projects parsed from HCL files."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from typing import Any, overload

from . import hcl
from .blueprints import Blueprint
from .projects import Project
from .resolve import Resolver
from .spec import _spec_registry
from .specop import STRATEGIES, SpecOp

logger = logging.getLogger(__name__)

# keys of a project block that are not project fields
STRUCTURAL_KEYS = frozenset({"use", "include", *STRATEGIES})


class _Decoder:
    """Turns parsed blueprint and project blocks into model instances.

    Blueprints are decoded once, on first reference, so includes shared by
    several blueprints yield the same ops.
    """

    def __init__(self, blueprints: Mapping[str, dict[str, Any]], resolver: Resolver) -> None:
        self.pending = blueprints
        self.resolver = resolver
        self.done: dict[str, Blueprint] = {}
        self.active: list[str] = []

    def spec(self, spec_name: str, attrs: dict[str, Any]) -> Any:
        spec_cls = _spec_registry.get(spec_name)
        if spec_cls is None:
            raise ValueError(f"Unknown spec type: '{spec_name}'")
        logger.debug("Decoding spec '%s' -> %s", spec_name, spec_cls.__name__)
        return spec_cls(**self.resolver.resolve(attrs, spec_name))

    def ops(self, block: dict[str, Any]) -> list[SpecOp]:
        """Strategy blocks in a blueprint or project, e.g.

            {"ensure": [{"ce_anomaly_monitor": {"monitor_name": "x"}}], ...}
        """
        return [
            strategy(self.spec(spec_name, dict(attrs)))
            for key, strategy in STRATEGIES.items()
            for labeled in block.get(key, [])
            for spec_name, attrs in labeled.items()
        ]

    def blueprint(self, name: str) -> Blueprint:
        if name in self.done:
            return self.done[name]
        if name in self.active:
            raise ValueError(f"Circular include detected: '{name}' ({' -> '.join([*self.active, name])})")
        if name not in self.pending:
            raise ValueError(f"Unknown blueprint: '{name}'")

        logger.debug("Resolving blueprint '%s'", name)
        block = self.pending[name]
        self.active.append(name)
        try:
            ops: list[SpecOp] = []
            for included in block.get("include", []):
                logger.debug("Blueprint '%s' includes '%s'", name, included)
                ops += self.blueprint(included).ops
            ops += self.ops(block)
        finally:
            self.active.pop()

        self.done[name] = Blueprint(name=name, description=block.get("description", ""), ops=ops)
        return self.done[name]

    def project[P: Project](self, name: str, block: dict[str, Any], project_type: type[P]) -> P:
        logger.debug("Building project '%s' as %s", name, project_type.__name__)
        used = []
        for bp_name in block.get("use", []):
            if bp_name not in self.pending:
                raise ValueError(f"Project '{name}' references unknown blueprint: '{bp_name}'")
            used.append(self.blueprint(bp_name))

        inline = self.ops(block)
        if inline:
            used.append(Blueprint(name=f"{name}:inline", ops=inline))

        fields = {
            key: self.resolver.resolve(value, f"{name}.{key}")
            for key, value in block.items()
            if key not in STRUCTURAL_KEYS
        }
        return project_type(name=name, blueprints=used, **fields)


class Workspace[P: Project](Mapping[str, P]):
    """Parsed blueprint and project blocks; projects are built on access.

    Blocks are kept as parsed data until a project is requested, so files
    may be loaded in any order. The optional context feeds both the Jinja2
    rendering of each file and ``${...}`` references in attributes.
    """

    def __init__(
        self,
        project_type: type[P] = Project,  # type: ignore[assignment]
        context: dict[str, Any] | None = None,
    ) -> None:
        self._project_type = project_type
        self._context = dict(context or {})
        self._blueprint_blocks: dict[str, dict[str, Any]] = {}
        self._project_blocks: dict[str, dict[str, Any]] = {}

    def load(self, path: str | Path) -> None:
        """Parse one HCL file and register its blueprints and projects.

        Raises ValueError if any blueprint or project name is already loaded.
        """
        self.add(hcl.load(Path(path), context=self._context))

    def scan(self, path: str | Path, *, recurse: bool = True) -> None:
        """Load every .hcl file under ``path`` in sorted order."""
        root = Path(path)
        if not root.is_dir():
            logger.warning("Scan path '%s' is not a directory", root)
            return
        files = sorted(root.rglob("*.hcl") if recurse else root.glob("*.hcl"))
        logger.debug("Found %d HCL file(s) under %s", len(files), root)
        for file in files:
            self.load(file)

    def add(self, data: dict[str, Any]) -> None:
        """Register the blueprint and project blocks of one parsed file."""
        for kind, registry in (("blueprint", self._blueprint_blocks), ("project", self._project_blocks)):
            for labeled in data.get(kind, []):
                for name, block in labeled.items():
                    if name in registry:
                        raise ValueError(f"Duplicate {kind}: '{name}'")
                    logger.debug("Found %s '%s'", kind, name)
                    registry[name] = block

    def _decoder(self) -> _Decoder:
        return _Decoder(self._blueprint_blocks, Resolver(self._context))

    @property
    def blueprints(self) -> dict[str, Blueprint]:
        """Every loaded blueprint, decoded."""
        decoder = self._decoder()
        return {name: decoder.blueprint(name) for name in self._blueprint_blocks}

    def _build(self) -> dict[str, P]:
        logger.debug(
            "Resolving %d blueprint(s) and %d project(s)",
            len(self._blueprint_blocks),
            len(self._project_blocks),
        )
        decoder = self._decoder()
        for name in self._blueprint_blocks:
            decoder.blueprint(name)
        return {
            name: decoder.project(name, block, self._project_type)
            for name, block in self._project_blocks.items()
        }

    def __getitem__(self, name: str) -> P:
        return self._build()[name]

    def __contains__(self, name: object) -> bool:
        return name in self._project_blocks

    def __iter__(self) -> Iterator[str]:
        return iter(self._project_blocks)

    def __len__(self) -> int:
        return len(self._project_blocks)

    @overload
    def get(self, name: str) -> P | None: ...
    @overload
    def get(self, name: str, default: P) -> P: ...
    @overload
    def get(self, name: str, default: None) -> P | None: ...
    def get(self, name: str, default: Any = None) -> P | None:
        if name not in self._project_blocks:
            return default
        return self._build()[name]

    def filter(self, names: Iterable[str]) -> list[P]:
        """Return projects matching the given names, preserving input order."""
        built = self._build()
        return [built[n] for n in names if n in built]

    def __repr__(self) -> str:
        return (
            f"Workspace(project_type={self._project_type.__name__}, "
            f"blueprints={len(self._blueprint_blocks)}, projects={len(self._project_blocks)})"
        )
