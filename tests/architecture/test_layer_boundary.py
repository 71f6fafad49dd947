"""
Layer boundary contract.

1. mes_kernel/** may NOT import mes_engines, mes_services or mes_config.
   The kernel never depends upward.

2. mes_engines/** are pure: they may import only the kernel's domain,
   exceptions and logging modules.  No ORM, no session, no config.

3. mes_kernel/domain/** must not import ORM or DB packages.

4. mes_config/** must not import mes_services.

These tests read source code via AST and never import the modules.
"""

import ast
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _python_files(package: str) -> list[Path]:
    return sorted((REPO_ROOT / package).rglob("*.py"))


def _extract_imports(filepath: Path) -> list[tuple[int, str]]:
    """Extract (line_number, module_string) for all imports in a file."""
    tree = ast.parse(filepath.read_text(), filename=str(filepath))

    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom):
            if node.module and node.level == 0:
                results.append((node.lineno, node.module))
    return results


def _matches(module: str, prefixes: tuple[str, ...]) -> bool:
    return any(module == p or module.startswith(f"{p}.") for p in prefixes)


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    found: list[str] = []
    for filepath in _python_files(package):
        for lineno, module in _extract_imports(filepath):
            if _matches(module, forbidden):
                rel = filepath.relative_to(REPO_ROOT)
                found.append(f"  {rel}:{lineno} imports '{module}'")
    return found


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestKernelNoUpwardDependencies:

    FORBIDDEN_PREFIXES = ("mes_engines", "mes_services", "mes_config")

    def test_packages_exist(self):
        assert _python_files("mes_kernel")

    def test_kernel_does_not_import_upward(self):
        violations = _violations("mes_kernel", self.FORBIDDEN_PREFIXES)

        assert not violations, (
            "Kernel boundary violation, mes_kernel/** must not import "
            "upward packages:\n" + "\n".join(violations)
        )


class TestEnginePurity:
    """Engines see snapshots, never rows or sessions."""

    ALLOWED_PROJECT_IMPORTS = (
        "mes_engines",
        "mes_kernel.domain",
        "mes_kernel.exceptions",
        "mes_kernel.logging_config",
    )
    PROJECT_PREFIXES = ("mes_kernel", "mes_engines", "mes_services", "mes_config")
    FORBIDDEN_LIBRARIES = ("sqlalchemy", "psycopg2", "sqlite3", "yaml")

    def test_engines_import_only_pure_kernel_modules(self):
        violations: list[str] = []
        for filepath in _python_files("mes_engines"):
            for lineno, module in _extract_imports(filepath):
                if _matches(module, self.PROJECT_PREFIXES) and not _matches(
                    module, self.ALLOWED_PROJECT_IMPORTS
                ):
                    rel = filepath.relative_to(REPO_ROOT)
                    violations.append(f"  {rel}:{lineno} imports '{module}'")

        assert not violations, (
            "Engine purity violation:\n" + "\n".join(violations)
        )

    def test_engines_do_not_touch_persistence(self):
        violations = _violations("mes_engines", self.FORBIDDEN_LIBRARIES)

        assert not violations, (
            "Engine purity violation, persistence import found:\n"
            + "\n".join(violations)
        )


class TestKernelDomainPurity:
    """mes_kernel/domain/** must not import ORM or DB packages."""

    FORBIDDEN_MODULES = (
        "sqlalchemy",
        "psycopg2",
        "sqlite3",
        "mes_kernel.db",
        "mes_kernel.models",
        "mes_kernel.selectors",
    )

    def test_domain_no_orm_imports(self):
        violations = _violations("mes_kernel/domain", self.FORBIDDEN_MODULES)

        assert not violations, (
            "Domain purity violation, mes_kernel/domain/** must not import "
            "persistence modules:\n" + "\n".join(violations)
        )


class TestConfigBoundary:

    def test_config_does_not_import_services(self):
        violations = _violations("mes_config", ("mes_services",))

        assert not violations, "\n".join(violations)
