"""Technology detectors.

Each detector looks at one kind of evidence in a project directory and returns
its own list of detections. Detectors share no state; `pipeline` runs them side
by side and fuses the results.
"""

from __future__ import annotations

import json
import os
import re
import tomllib
from collections import Counter
from pathlib import Path
from typing import Any, Callable

from .types import TechnologyDetection

Detector = Callable[[Path], list[TechnologyDetection]]

# npm package -> (technology, confidence)
PACKAGE_JSON_TECH: dict[str, tuple[str, float]] = {
    "react": ("React", 0.95),
    "@types/react": ("React", 0.9),
    "vue": ("Vue.js", 0.95),
    "angular": ("Angular", 0.95),
    "@angular/core": ("Angular", 0.95),
    "svelte": ("Svelte", 0.95),
    "next": ("Next.js", 0.95),
    "nuxt": ("Nuxt.js", 0.95),
    "express": ("Express.js", 0.95),
    "fastify": ("Fastify", 0.95),
    "koa": ("Koa.js", 0.95),
    "nestjs": ("NestJS", 0.95),
    "@nestjs/core": ("NestJS", 0.95),
    "typescript": ("TypeScript", 0.95),
    "@types/node": ("Node.js", 0.85),
    "node": ("Node.js", 0.9),
    "webpack": ("Webpack", 0.9),
    "vite": ("Vite", 0.9),
    "rollup": ("Rollup", 0.9),
    "parcel": ("Parcel", 0.9),
    "jest": ("Jest", 0.85),
    "vitest": ("Vitest", 0.85),
    "cypress": ("Cypress", 0.85),
    "playwright": ("Playwright", 0.85),
    "tailwindcss": ("Tailwind CSS", 0.9),
    "sass": ("Sass", 0.9),
    "less": ("Less", 0.9),
    "styled-components": ("Styled Components", 0.9),
    "emotion": ("Emotion", 0.9),
    "prisma": ("Prisma", 0.95),
    "mongoose": ("MongoDB/Mongoose", 0.9),
    "sequelize": ("Sequelize", 0.9),
    "typeorm": ("TypeORM", 0.9),
    "redis": ("Redis", 0.9),
    "graphql": ("GraphQL", 0.9),
    "apollo": ("Apollo GraphQL", 0.9),
    "socket.io": ("Socket.IO", 0.9),
    "electron": ("Electron", 0.95),
}

# PyPI distribution (normalized) -> (technology, confidence)
PYTHON_TECH: dict[str, tuple[str, float]] = {
    "django": ("Django", 0.95),
    "flask": ("Flask", 0.95),
    "fastapi": ("FastAPI", 0.95),
    "starlette": ("Starlette", 0.9),
    "pydantic": ("Pydantic", 0.9),
    "sqlalchemy": ("SQLAlchemy", 0.9),
    "alembic": ("Alembic", 0.85),
    "celery": ("Celery", 0.9),
    "typer": ("Typer", 0.85),
    "click": ("Click", 0.85),
    "pytest": ("pytest", 0.85),
    "numpy": ("NumPy", 0.9),
    "pandas": ("pandas", 0.9),
    "torch": ("PyTorch", 0.95),
    "tensorflow": ("TensorFlow", 0.95),
    "scikit-learn": ("scikit-learn", 0.9),
    "neo4j": ("Neo4j", 0.9),
    "redis": ("Redis", 0.9),
    "psycopg2": ("PostgreSQL", 0.85),
    "psycopg2-binary": ("PostgreSQL", 0.85),
    "asyncpg": ("PostgreSQL", 0.85),
    "pymongo": ("MongoDB", 0.85),
    "uvicorn": ("Uvicorn", 0.85),
    "httpx": ("HTTPX", 0.8),
    "requests": ("Requests", 0.8),
}

DENO_IMPORT_TECH: dict[str, tuple[str, float]] = {
    "react": ("React", 0.9),
    "preact": ("Preact", 0.9),
    "fresh": ("Fresh", 0.95),
    "oak": ("Oak", 0.9),
    "hono": ("Hono", 0.9),
    "@std/": ("Deno Standard Library", 0.85),
    "std/": ("Deno Standard Library", 0.85),
}

# extension -> (technology, base confidence)
EXTENSION_TECH: dict[str, tuple[str, float]] = {
    "ts": ("TypeScript", 0.85),
    "tsx": ("TypeScript", 0.9),
    "jsx": ("React", 0.8),
    "vue": ("Vue.js", 0.95),
    "svelte": ("Svelte", 0.95),
    "py": ("Python", 0.9),
    "java": ("Java", 0.9),
    "kt": ("Kotlin", 0.9),
    "rs": ("Rust", 0.9),
    "go": ("Go", 0.9),
    "rb": ("Ruby", 0.9),
    "php": ("PHP", 0.9),
    "cs": ("C#", 0.9),
    "cpp": ("C++", 0.9),
    "c": ("C", 0.9),
    "swift": ("Swift", 0.9),
    "scss": ("Sass", 0.8),
    "sass": ("Sass", 0.8),
    "less": ("Less", 0.8),
    "styl": ("Stylus", 0.8),
}

# technology -> (confidence, candidate config files); first hit wins
FRAMEWORK_CONFIGS: dict[str, tuple[float, list[str]]] = {
    "Next.js": (0.95, ["next.config.js", "next.config.mjs", "next.config.ts"]),
    "Nuxt.js": (0.95, ["nuxt.config.js", "nuxt.config.ts"]),
    "Vue.js": (0.9, ["vue.config.js"]),
    "Angular": (0.95, ["angular.json"]),
    "Svelte": (0.95, ["svelte.config.js"]),
    "Gatsby": (0.95, ["gatsby-config.js"]),
    "Remix": (0.95, ["remix.config.js"]),
    "Astro": (0.95, ["astro.config.mjs", "astro.config.js"]),
    "Vite": (0.9, ["vite.config.js", "vite.config.ts"]),
    "Webpack": (0.85, ["webpack.config.js"]),
    "Rollup": (0.85, ["rollup.config.js"]),
    "Fresh": (0.95, ["fresh.gen.ts"]),
    "TypeScript": (0.85, ["tsconfig.json"]),
    "Tailwind CSS": (0.9, ["tailwind.config.js", "tailwind.config.ts"]),
    "PostCSS": (0.8, ["postcss.config.js"]),
    "Django": (0.9, ["manage.py"]),
}

DATABASE_CONFIGS: dict[str, tuple[str, float]] = {
    "prisma/schema.prisma": ("Prisma", 0.95),
    "drizzle.config.js": ("Drizzle ORM", 0.95),
    "drizzle.config.ts": ("Drizzle ORM", 0.95),
    "sequelize.config.js": ("Sequelize", 0.9),
    "knexfile.js": ("Knex.js", 0.9),
    "ormconfig.json": ("TypeORM", 0.9),
    "mikro-orm.config.js": ("MikroORM", 0.9),
    "alembic.ini": ("Alembic", 0.9),
}

ENV_PATTERNS: dict[str, tuple[str, float]] = {
    r"DATABASE_URL.*postgresql": ("PostgreSQL", 0.85),
    r"DATABASE_URL.*mysql": ("MySQL", 0.85),
    r"DATABASE_URL.*mongodb": ("MongoDB", 0.85),
    r"DATABASE_URL.*sqlite": ("SQLite", 0.85),
    r"REDIS_URL": ("Redis", 0.8),
    r"MONGO_URI": ("MongoDB", 0.8),
    r"POSTGRES_": ("PostgreSQL", 0.75),
    r"MYSQL_": ("MySQL", 0.75),
}

# path (trailing "/" = directory) -> (technology, confidence)
CONTAINER_CONFIGS: dict[str, tuple[str, float]] = {
    "Dockerfile": ("Docker", 0.95),
    "docker-compose.yml": ("Docker Compose", 0.9),
    "docker-compose.yaml": ("Docker Compose", 0.9),
    ".dockerignore": ("Docker", 0.8),
    "kubernetes.yml": ("Kubernetes", 0.85),
    "k8s.yml": ("Kubernetes", 0.85),
    "helm/": ("Helm", 0.85),
    "skaffold.yaml": ("Skaffold", 0.85),
    ".devcontainer/": ("Dev Containers", 0.8),
}

SKIP_DIRS = {"node_modules", "venv", "__pycache__", "dist", "build", "target"}
MAX_WALK_DEPTH = 3

_REQ_NAME = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)")


def _read_json(path: Path) -> dict[str, Any] | None:
    if not path.is_file():
        return None
    data = json.loads(path.read_text(encoding="utf-8"))
    return data if isinstance(data, dict) else None


def _normalize_dist(name: str) -> str:
    return re.sub(r"[-_.]+", "-", name).lower()


def _requirement_name(spec: str) -> str | None:
    m = _REQ_NAME.match(spec)
    return _normalize_dist(m.group(1)) if m else None


def detect_package_json(root: Path) -> list[TechnologyDetection]:
    pkg = _read_json(root / "package.json")
    if pkg is None:
        return []

    deps: dict[str, Any] = {}
    for key in ("dependencies", "devDependencies", "peerDependencies"):
        deps.update(pkg.get(key) or {})

    out = []
    for dep, version in deps.items():
        if dep not in PACKAGE_JSON_TECH:
            continue
        name, conf = PACKAGE_JSON_TECH[dep]
        out.append(
            TechnologyDetection(
                name=name,
                confidence=conf,
                source="package.json",
                version=version if isinstance(version, str) else None,
                context=f"Dependency: {dep}",
            )
        )

    engine = (pkg.get("engines") or {}).get("node")
    if engine:
        out.append(TechnologyDetection("Node.js", 0.95, "package.json", str(engine), "Engine requirement"))
    return out


def detect_deno(root: Path) -> list[TechnologyDetection]:
    for fname in ("deno.json", "deno.jsonc"):
        config = _read_json(root / fname)
        if config is None:
            continue

        out = [TechnologyDetection("Deno", 0.95, "deno.json", context=f"Configuration: {fname}")]
        if config.get("compilerOptions"):
            out.append(TechnologyDetection("TypeScript", 0.9, "deno.json", context="Compiler options present"))
        for key, target in (config.get("imports") or {}).items():
            for pattern, (name, conf) in DENO_IMPORT_TECH.items():
                if pattern in key or (isinstance(target, str) and pattern in target):
                    out.append(TechnologyDetection(name, conf, "deno.json", context=f"Import: {key}"))
        return out
    return []


def detect_python_manifests(root: Path) -> list[TechnologyDetection]:
    out: list[TechnologyDetection] = []

    pyproject = root / "pyproject.toml"
    if pyproject.is_file():
        data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
        project = data.get("project") or {}
        specs: list[str] = list(project.get("dependencies") or [])
        for extra in (project.get("optional-dependencies") or {}).values():
            specs.extend(extra)
        poetry = ((data.get("tool") or {}).get("poetry") or {}).get("dependencies") or {}
        specs.extend(k for k in poetry if k.lower() != "python")

        requires = project.get("requires-python") or poetry.get("python")
        out.append(
            TechnologyDetection(
                "Python",
                0.95,
                "pyproject",
                version=requires if isinstance(requires, str) else None,
                context="pyproject.toml",
            )
        )
        for spec in specs:
            dist = _requirement_name(spec)
            if dist in PYTHON_TECH:
                name, conf = PYTHON_TECH[dist]
                out.append(TechnologyDetection(name, conf, "pyproject", context=f"Dependency: {dist}"))

    requirements = root / "requirements.txt"
    if requirements.is_file():
        for line in requirements.read_text(encoding="utf-8").splitlines():
            line = line.split("#", 1)[0].strip()
            if not line or line.startswith("-"):
                continue
            dist = _requirement_name(line)
            if dist in PYTHON_TECH:
                name, conf = PYTHON_TECH[dist]
                out.append(TechnologyDetection(name, conf, "requirements", context=f"Requirement: {dist}"))
    return out


def count_extensions(root: Path, max_depth: int = MAX_WALK_DEPTH) -> Counter[str]:
    counts: Counter[str] = Counter()
    root_depth = len(root.parts)
    for dirpath, dirnames, filenames in os.walk(root):
        depth = len(Path(dirpath).parts) - root_depth
        dirnames[:] = [
            d for d in dirnames
            if not d.startswith(".") and d not in SKIP_DIRS and depth < max_depth
        ]
        for fname in filenames:
            if fname.startswith(".") or "." not in fname:
                continue
            counts[fname.rsplit(".", 1)[-1].lower()] += 1
    return counts


def detect_file_extensions(root: Path) -> list[TechnologyDetection]:
    counts = count_extensions(root)
    total = sum(counts.values())
    if not total:
        return []

    out = []
    for ext, count in counts.items():
        if ext not in EXTENSION_TECH:
            continue
        name, base = EXTENSION_TECH[ext]
        prevalence = count / total
        out.append(
            TechnologyDetection(
                name=name,
                confidence=min(base + prevalence * 0.2, 0.95),
                source="file_extensions",
                context=f"{count} .{ext} files ({prevalence * 100:.1f}%)",
            )
        )
    return out


def detect_frameworks(root: Path) -> list[TechnologyDetection]:
    out = []
    for name, (conf, files) in FRAMEWORK_CONFIGS.items():
        hit = next((f for f in files if (root / f).exists()), None)
        if hit:
            out.append(TechnologyDetection(name, conf, "framework", context=f"Configuration: {hit}"))
    return out


def detect_databases(root: Path) -> list[TechnologyDetection]:
    out = [
        TechnologyDetection(name, conf, "database", context=f"Configuration: {rel}")
        for rel, (name, conf) in DATABASE_CONFIGS.items()
        if (root / rel).exists()
    ]

    env = root / ".env"
    if env.is_file():
        content = env.read_text(encoding="utf-8", errors="replace")
        for pattern, (name, conf) in ENV_PATTERNS.items():
            if re.search(pattern, content, re.IGNORECASE):
                out.append(TechnologyDetection(name, conf, "database", context="Environment variable"))
    return out


def detect_containers(root: Path) -> list[TechnologyDetection]:
    out = []
    for rel, (name, conf) in CONTAINER_CONFIGS.items():
        p = root / rel.rstrip("/")
        found = p.is_dir() if rel.endswith("/") else p.exists()
        if found:
            out.append(TechnologyDetection(name, conf, "docker", context=f"Configuration: {rel}"))
    return out


DETECTORS: dict[str, Detector] = {
    "package_json": detect_package_json,
    "deno": detect_deno,
    "python": detect_python_manifests,
    "file_extensions": detect_file_extensions,
    "framework": detect_frameworks,
    "database": detect_databases,
    "container": detect_containers,
}
