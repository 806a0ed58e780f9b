"""
Test Configuration
==================

Pytest configuration with fixtures shared by all test modules.
Provides test settings, preconfigured engines, and sample documents.
"""

import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Generator, List
from unittest.mock import patch

import pytest
from pydantic_settings import SettingsConfigDict
from structlog.testing import capture_logs

import digester.config.settings as settings_module
from digester.config.settings import DigesterSettings
from digester.core.engine.digester import Digester
from digester.core.xml.properties import MappingPropertySource

from tests.utils.data_generators import RuleDefinitionGenerator, XMLDataGenerator


# Test settings override
class TestDigesterSettings(DigesterSettings):
    """Test-specific settings."""

    environment: str = "testing"
    log_level: str = "DEBUG"
    rules_validation: bool = False
    namespace_aware: bool = False

    model_config = SettingsConfigDict(env_file=".env.test")


@pytest.fixture(scope="session")
def test_settings() -> TestDigesterSettings:
    """Test settings fixture."""
    return TestDigesterSettings()


@pytest.fixture(scope="session", autouse=True)
def override_settings(test_settings: TestDigesterSettings):
    """Override engine settings for testing."""
    with patch.object(settings_module, "settings", test_settings):
        yield test_settings


@pytest.fixture(scope="session")
def temp_dir() -> Generator[Path, None, None]:
    """Create temporary directory for test files."""
    temp_path = Path(tempfile.mkdtemp(prefix="digester_test_"))
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def digester(test_settings: TestDigesterSettings) -> Digester:
    """Lenient engine with no rules registered."""
    return Digester(settings=test_settings)


@pytest.fixture
def strict_digester(test_settings: TestDigesterSettings) -> Digester:
    """Engine with rules validation switched on."""
    return Digester(settings=test_settings, rules_validation=True)


@pytest.fixture
def ns_digester(test_settings: TestDigesterSettings) -> Digester:
    """Namespace-aware engine."""
    return Digester(settings=test_settings, namespace_aware=True)


@pytest.fixture
def property_digester(test_settings: TestDigesterSettings) -> Digester:
    """Engine substituting from a fixed property mapping."""
    source = MappingPropertySource({"service.name": "billing", "port": 9090})
    return Digester(settings=test_settings, property_sources=[source])


@pytest.fixture
def events() -> List[tuple]:
    """Shared event list for recording rules."""
    return []


@pytest.fixture
def log_output() -> Generator[List[Dict[str, Any]], None, None]:
    """Capture structlog events emitted during the test."""
    with capture_logs() as entries:
        yield entries


@pytest.fixture
def full_config_xml() -> str:
    """Full sample configuration document."""
    return XMLDataGenerator.generate_full_config()


@pytest.fixture
def config_rules() -> Dict[str, Any]:
    """Declarative rules for the sample configuration document."""
    return RuleDefinitionGenerator.generate_config_rules()
