"""
Layer boundary tests.

1. ledger_kernel/** may NOT import ledger_services, ledger_engines or
   ledger_config. The kernel never depends upward.

2. ledger_engines/** is pure: no database, no services, and nothing from the
   kernel except its logging setup.

3. ledger_config/** depends on nothing above the kernel's logging setup.

These tests read source code via AST, they cannot break anything.
"""

import ast
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]


def _python_files(package: str) -> list[Path]:
    return sorted((REPO_ROOT / package).rglob("*.py"))


def _extract_imports(path: Path) -> list[tuple[int, str]]:
    """Extract (line_number, module_string) for all imports in a file."""
    tree = ast.parse(path.read_text(), filename=str(path))
    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _violations(package: str, forbidden: tuple[str, ...], allowed: tuple[str, ...] = ()) -> list[str]:
    found = []
    for path in _python_files(package):
        for lineno, module in _extract_imports(path):
            if module in allowed:
                continue
            if any(module == prefix or module.startswith(f"{prefix}.") for prefix in forbidden):
                found.append(f"  {path.relative_to(REPO_ROOT)}:{lineno} imports '{module}'")
    return found


class TestKernelNoUpwardDependencies:
    FORBIDDEN_PREFIXES = ("ledger_services", "ledger_engines", "ledger_config")

    def test_kernel_does_not_import_upward(self):
        violations = _violations("ledger_kernel", self.FORBIDDEN_PREFIXES)

        assert not violations, "ledger_kernel/** must not import upward packages:\n" + "\n".join(violations)


class TestEnginesArePure:
    FORBIDDEN_PREFIXES = ("ledger_services", "ledger_config", "ledger_kernel", "sqlalchemy")
    ALLOWED = ("ledger_kernel.logging_config",)

    def test_engines_do_not_touch_the_database(self):
        violations = _violations("ledger_engines", self.FORBIDDEN_PREFIXES, self.ALLOWED)

        assert not violations, "ledger_engines/** must stay pure:\n" + "\n".join(violations)


class TestConfigIsALeaf:
    FORBIDDEN_PREFIXES = ("ledger_services", "ledger_engines", "ledger_kernel", "sqlalchemy")
    ALLOWED = ("ledger_kernel.logging_config",)

    def test_config_imports_nothing_above(self):
        violations = _violations("ledger_config", self.FORBIDDEN_PREFIXES, self.ALLOWED)

        assert not violations, "ledger_config/** must not import ledger packages:\n" + "\n".join(violations)


def test_every_package_is_scanned():
    for package in ("ledger_kernel", "ledger_engines", "ledger_services", "ledger_config"):
        assert _python_files(package), f"{package} has no modules"
