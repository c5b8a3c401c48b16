"""Recipe identifier resolution.

Supported identifiers:

- explicit local paths: ``./sub.yml``, ``../shared/``, ``/abs/recipe.yml``, ``~/r.yml``
- ``http(s)://`` URLs, fetched with httpx
- ``github:user/repo[/path][@ref]`` (raw.githubusercontent.com, ref ``main``,
  file ``recipe.yml`` unless the path names a YAML file)
- ``package:<name>[/path]``: a recipe shipped inside an installed Python
  package, or under a configured packages directory
- bare identifiers: tried as a local path, then as a package

Local paths resolve against the composing recipe's directory, then the
project root. A directory resolves to its ``recipe.yml`` / ``recipe.yaml``.
Loaded recipes are cached per resolver (the engine derives one per top-level
run with ``for_run``); local entries are invalidated when
the file's mtime changes and every entry expires after ``cache_ttl`` seconds.
"""

import importlib.util
import logging
import time
from dataclasses import dataclass
from dataclasses import replace
from pathlib import Path
from typing import Callable

import httpx

from .errors import InvalidSyntaxError
from .errors import RecipeNotFoundError
from .models import Recipe

logger = logging.getLogger(__name__)

RECIPE_FILENAMES = ("recipe.yml", "recipe.yaml")
RECIPE_SUFFIXES = (".yml", ".yaml")
DEFAULT_CACHE_TTL = 5 * 60
DEFAULT_HTTP_TIMEOUT = 30.0
GITHUB_RAW = "https://raw.githubusercontent.com"


@dataclass
class RecipeResolution:
    """A loaded recipe and where it came from."""

    identifier: str
    recipe: Recipe
    source: str  # local | package | url
    location: str  # Absolute path or URL; identifies the recipe on the call stack
    mtime: float | None = None
    size: int = 0
    loaded_at: float = 0.0
    cached: bool = False

    @property
    def key(self) -> str:
        return self.location


def _is_explicit_path(identifier: str) -> bool:
    return identifier.startswith(("./", "../", "/", "~")) or identifier in (".", "..")


def github_url(identifier: str) -> str:
    """Translate ``github:user/repo[/path][@ref]`` into a raw content URL."""
    spec = identifier[len("github:") :]
    ref = "main"
    if "@" in spec:
        spec, ref = spec.rsplit("@", 1)
    parts = [p for p in spec.split("/") if p]
    if len(parts) < 2:
        raise RecipeNotFoundError(f"Invalid GitHub recipe reference '{identifier}' (expected github:user/repo)")
    user, repo, rest = parts[0], parts[1], parts[2:]
    if not rest or not rest[-1].endswith(RECIPE_SUFFIXES):
        rest.append("recipe.yml")
    return f"{GITHUB_RAW}/{user}/{repo}/{ref}/{'/'.join(rest)}"


def _recipe_file(path: Path) -> Path | None:
    """The recipe file ``path`` points at, trying YAML suffixes and directory defaults."""
    if path.is_file():
        return path
    if path.is_dir():
        for filename in RECIPE_FILENAMES:
            if (path / filename).is_file():
                return path / filename
        return None
    if path.suffix not in RECIPE_SUFFIXES:
        for suffix in RECIPE_SUFFIXES:
            candidate = path.with_name(path.name + suffix)
            if candidate.is_file():
                return candidate
    return None


class RecipeResolver:
    """Resolves recipe identifiers to loaded recipes, with a per-run cache."""

    def __init__(
        self,
        packages_dirs: list[Path] | None = None,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        http_timeout: float = DEFAULT_HTTP_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.packages_dirs = [Path(p) for p in packages_dirs or []]
        self.cache_ttl = cache_ttl
        self.http_timeout = http_timeout
        self._transport = transport
        self._clock = clock
        self._cache: dict[tuple[str, str, str], RecipeResolution] = {}

    def for_run(self) -> "RecipeResolver":
        """A resolver with the same settings and an empty cache, owned by one run."""
        return RecipeResolver(
            packages_dirs=self.packages_dirs,
            cache_ttl=self.cache_ttl,
            http_timeout=self.http_timeout,
            transport=self._transport,
            clock=self._clock,
        )

    def clear_cache(self) -> None:
        self._cache.clear()

    async def resolve(
        self,
        identifier: str,
        project_root: Path,
        base_dir: Path | None = None,
    ) -> RecipeResolution:
        """
        Resolve and load a recipe.

        Args:
            identifier: Recipe reference (see module docstring)
            project_root: Project root of the running recipe
            base_dir: Directory of the composing recipe, if any

        Returns:
            RecipeResolution (``cached`` is True when served from the cache;
            cache hits are copies, so earlier results keep their flag)

        Raises:
            RecipeNotFoundError: If nothing matches the identifier
            InvalidSyntaxError: If the recipe document cannot be parsed
        """
        identifier = identifier.strip()
        cache_key = (identifier, str(project_root), str(base_dir or ""))
        cached = self._cache.get(cache_key)
        if cached is not None and self._is_fresh(cached):
            logger.debug(f"Recipe cache hit for '{identifier}'")
            return replace(cached, cached=True)

        resolution = await self._load(identifier, Path(project_root), base_dir)
        self._cache[cache_key] = resolution
        return resolution

    def _is_fresh(self, resolution: RecipeResolution) -> bool:
        if self._clock() - resolution.loaded_at > self.cache_ttl:
            return False
        if resolution.source in ("local", "package"):
            path = Path(resolution.location)
            try:
                return path.stat().st_mtime == resolution.mtime
            except OSError:
                return False
        return True

    async def _load(self, identifier: str, project_root: Path, base_dir: Path | None) -> RecipeResolution:
        if identifier.startswith(("http://", "https://")):
            return await self._load_url(identifier, identifier)
        if identifier.startswith("github:"):
            return await self._load_url(identifier, github_url(identifier))
        if identifier.startswith("package:"):
            path = self._find_package(identifier[len("package:") :])
            if path is None:
                raise RecipeNotFoundError(f"Recipe package not found: {identifier}")
            return self._load_file(identifier, path, "package")

        path = self._find_local(identifier, project_root, base_dir)
        if path is not None:
            return self._load_file(identifier, path, "local")
        if not _is_explicit_path(identifier):
            path = self._find_package(identifier)
            if path is not None:
                return self._load_file(identifier, path, "package")

        searched = [str(d) for d in (base_dir, project_root) if d is not None]
        raise RecipeNotFoundError(f"Recipe not found: {identifier} (searched {', '.join(searched)})")

    def _find_local(self, identifier: str, project_root: Path, base_dir: Path | None) -> Path | None:
        raw = Path(identifier).expanduser()
        if raw.is_absolute():
            return _recipe_file(raw)
        for root in (base_dir, project_root):
            if root is None:
                continue
            found = _recipe_file(Path(root) / raw)
            if found is not None:
                return found
        return None

    def _find_package(self, reference: str) -> Path | None:
        name, _, subpath = reference.partition("/")
        if not name:
            return None

        roots: list[Path] = []
        try:
            spec = importlib.util.find_spec(name)
        except (ImportError, ValueError):
            spec = None
        if spec is not None:
            if spec.submodule_search_locations:
                roots.extend(Path(p) for p in spec.submodule_search_locations)
            elif spec.origin:
                roots.append(Path(spec.origin).parent)
        roots.extend(d / name for d in self.packages_dirs)

        for root in roots:
            for candidate in (root / subpath, root / "recipes" / subpath):
                found = _recipe_file(candidate)
                if found is not None:
                    return found
        return None

    def _load_file(self, identifier: str, path: Path, source: str) -> RecipeResolution:
        path = path.resolve()
        try:
            recipe = Recipe.from_yaml(path)
        except ValueError as e:
            raise InvalidSyntaxError(f"Failed to load recipe {path}: {e}") from e
        stat = path.stat()
        logger.debug(f"Loaded recipe '{recipe.name}' from {path}")
        return RecipeResolution(
            identifier=identifier,
            recipe=recipe,
            source=source,
            location=str(path),
            mtime=stat.st_mtime,
            size=stat.st_size,
            loaded_at=self._clock(),
        )

    async def _load_url(self, identifier: str, url: str) -> RecipeResolution:
        logger.info(f"Fetching recipe {url}")
        try:
            async with httpx.AsyncClient(
                timeout=self.http_timeout, transport=self._transport, follow_redirects=True
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RecipeNotFoundError(f"Recipe not found at {url}: HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise RecipeNotFoundError(f"Failed to fetch recipe {url}: {e}") from e

        try:
            recipe = Recipe.from_string(response.text)
        except ValueError as e:
            raise InvalidSyntaxError(f"Failed to load recipe {url}: {e}") from e
        return RecipeResolution(
            identifier=identifier,
            recipe=recipe,
            source="url",
            location=url,
            size=len(response.content),
            loaded_at=self._clock(),
        )
