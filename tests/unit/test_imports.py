"""
Import validation tests.

These tests ensure all modules can be imported successfully, catching
issues like missing dependencies or circular imports BEFORE deployment.

Run with: pytest tests/unit/test_imports.py -v
"""

import importlib
import sys
from pathlib import Path

import pytest


# Add src to path to simulate Lambda environment
SRC_PATH = Path(__file__).parent.parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


class TestHandlerImports:
    """Verify all handler modules can be imported without errors."""

    @pytest.mark.parametrize("module_name,entrypoints", [
        ("handlers.main", ["lambda_handler"]),
        ("handlers.health_check", ["lambda_handler"]),
        ("handlers.session", ["create_handler", "validate_handler", "progress_handler"]),
        ("handlers.discount", ["generate_handler", "validate_handler"]),
        ("handlers.collect_email", ["lambda_handler"]),
        ("handlers.popup_check", ["lambda_handler"]),
        ("handlers.analytics_events", ["lambda_handler"]),
    ])
    def test_handler_import(self, module_name: str, entrypoints):
        """Each handler module should import and expose its entrypoints."""
        try:
            module = importlib.import_module(module_name)
        except ImportError as e:
            pytest.fail(f"Failed to import {module_name}: {e}")
        for name in entrypoints:
            assert hasattr(module, name), f"{module_name} missing {name}"


class TestServiceImports:
    """Verify all service modules can be imported."""

    @pytest.mark.parametrize("module_name", [
        "services.session_manager",
        "services.discount_service",
        "services.identity_service",
        "services.popup_service",
        "services.analytics_service",
        "services.wiring",
    ])
    def test_service_import(self, module_name: str):
        """Each service module should import without errors."""
        try:
            importlib.import_module(module_name)
        except ImportError as e:
            pytest.fail(f"Failed to import {module_name}: {e}")


class TestModelAndStorageImports:
    """Verify model and repository modules can be imported."""

    @pytest.mark.parametrize("module_name", [
        "models.popup",
        "models.session",
        "models.email",
        "models.analytics",
        "models.api",
        "repositories.base",
        "repositories.memory_repo",
        "repositories.dynamodb_repo",
        "repositories.postgres_repo",
    ])
    def test_model_import(self, module_name: str):
        try:
            importlib.import_module(module_name)
        except ImportError as e:
            pytest.fail(f"Failed to import {module_name}: {e}")


class TestUtilAndClientImports:
    """Verify utility and widget client modules can be imported."""

    @pytest.mark.parametrize("module_name", [
        "utils.logging_config",
        "utils.cache_service",
        "utils.error_handling",
        "utils.validators",
        "utils.tokens",
        "utils.http",
        "client.api_client",
        "client.flow",
        "client.loader",
        "client.trigger",
        "client.scheduler",
        "client.storage",
    ])
    def test_util_import(self, module_name: str):
        try:
            importlib.import_module(module_name)
        except ImportError as e:
            pytest.fail(f"Failed to import {module_name}: {e}")


class TestNoSrcPrefix:
    """Ensure no modules use 'from src.' imports (breaks in Lambda)."""

    @pytest.mark.parametrize("package", [
        "handlers", "services", "models", "repositories", "utils", "config", "client",
    ])
    def test_no_src_prefix(self, package: str):
        for py_file in (SRC_PATH / package).glob("*.py"):
            content = py_file.read_text()
            assert "from src." not in content, f"{py_file.name} contains 'from src.' import"
            assert "import src." not in content, f"{py_file.name} contains 'import src.' import"
