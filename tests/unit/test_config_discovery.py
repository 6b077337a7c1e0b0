"""Unit tests for project/system discovery, layered configuration and project init."""

from pathlib import Path

import pytest
from omegaconf.errors import ReadonlyConfigError

from conftest import MEMORY_PROJECT_ROOT, MEMORY_SYSTEM_ROOT, TESTING_CONFIG, seed_system
from markflow.contexts.configuration import ConfigDiscovery, initialize_project
from markflow.contexts.configuration.discovery import BUNDLED_SYSTEM_ROOT
from markflow.contexts.environment import MemoryStorage, MergedEnvironment
from markflow.utils.exceptions import ProjectNotFoundError, SystemNotFoundError, ValidationError


@pytest.mark.unit
def test_find_project_root_walks_upward(memory_storage):
    discovery = ConfigDiscovery(memory_storage)
    nested = MEMORY_PROJECT_ROOT / "job" / "active" / "some_collection"
    memory_storage.mkdir(nested)

    assert discovery.find_project_root(nested) == MEMORY_PROJECT_ROOT
    assert discovery.find_project_root(MEMORY_PROJECT_ROOT) == MEMORY_PROJECT_ROOT
    assert discovery.find_project_root(Path("/elsewhere")) is None
    assert discovery.is_in_project(nested)


@pytest.mark.unit
def test_require_project_root_raises_outside_project(memory_storage):
    with pytest.raises(ProjectNotFoundError):
        ConfigDiscovery(memory_storage).require_project_root(Path("/elsewhere"))


@pytest.mark.unit
def test_find_system_root_needs_package_and_workflows(monkeypatch):
    storage = MemoryStorage({"/opt/other/package.yml": "name: something-else", "/opt/other/workflows/x": ""})
    seed_system(storage, Path("/opt/markflow"))
    discovery = ConfigDiscovery(storage)

    assert discovery.find_system_root(Path("/opt/markflow/workflows/job")) == Path("/opt/markflow")
    assert discovery.find_system_root(Path("/opt/other")) is None

    monkeypatch.setenv("MARKFLOW_SYSTEM_ROOT", "/opt/other")
    with pytest.raises(SystemNotFoundError):
        discovery.require_system_root()


@pytest.mark.unit
def test_bundled_system_root_is_discoverable(monkeypatch):
    monkeypatch.delenv("MARKFLOW_SYSTEM_ROOT", raising=False)
    system_root, workflows = ConfigDiscovery().discover_system_configuration()

    assert system_root == BUNDLED_SYSTEM_ROOT
    assert set(workflows) >= {"job", "blog", "presentation"}


@pytest.mark.unit
def test_resolve_configuration_layers(memory_storage):
    config = ConfigDiscovery(memory_storage).resolve_configuration(MEMORY_PROJECT_ROOT)

    # project layer
    assert config.get("user.name") == "Test User"
    # inherited from system config.yml
    assert config.get("system.scraper") == "wget"
    assert config.get("system.output_formats") == ["docx", "html", "pdf"]
    # built-in default only
    assert config.get("system.testing.id_counter_start") == 1
    assert config.get("system.missing.key", "fallback") == "fallback"

    assert config.paths.system_root == MEMORY_SYSTEM_ROOT
    assert config.paths.project_root == MEMORY_PROJECT_ROOT
    assert isinstance(config.environment, MergedEnvironment)
    assert set(config.available_workflows) >= {"job", "blog", "presentation"}


@pytest.mark.unit
def test_project_layer_beats_system_and_lists_replace(memory_storage):
    memory_storage.write_text(
        MEMORY_PROJECT_ROOT / ".markflow" / "config.yml",
        TESTING_CONFIG + "  scraper: curl\n  output_formats: [pdf]\n  collection_id:\n    max_length: 30\n",
    )
    config = ConfigDiscovery(memory_storage).resolve_configuration(MEMORY_PROJECT_ROOT)

    assert config.get("system.scraper") == "curl"
    assert config.get("system.output_formats") == ["pdf"]
    assert config.get("system.collection_id.max_length") == 30
    # sibling keys of a partially overridden mapping are inherited
    assert config.get("system.collection_id.date_format") == "YYYYMMDD"


@pytest.mark.unit
def test_overrides_are_highest_layer(memory_storage, engine):
    discovery = ConfigDiscovery(memory_storage)

    from_dotlist = discovery.resolve_configuration(
        MEMORY_PROJECT_ROOT, ["user.name=Override", "workflows.blog.collection_id.max_length=25"]
    )
    from_mapping = discovery.resolve_configuration(MEMORY_PROJECT_ROOT, {"system": {"scraper": "curl"}})

    assert from_dotlist.get("user.name") == "Override"
    assert from_dotlist.collection_id_rules("blog")["max_length"] == 25
    assert from_dotlist.collection_id_rules("job")["max_length"] == 50
    assert from_mapping.get("system.scraper") == "curl"

    # workflow.yml max_length sits between system rules and project settings
    assert from_dotlist.collection_id_rules("blog", definition_max_length=40)["max_length"] == 25
    assert from_mapping.collection_id_rules("blog", definition_max_length=40)["max_length"] == 40
    assert engine.collection_id_rules("blog")["max_length"] == 40
    assert engine.collection_id_rules("job")["max_length"] == 50


@pytest.mark.unit
def test_resolved_settings_are_read_only(memory_storage):
    config = ConfigDiscovery(memory_storage).resolve_configuration(MEMORY_PROJECT_ROOT)

    with pytest.raises(ReadonlyConfigError):
        config.settings.user.name = "Mutated"


@pytest.mark.unit
def test_malformed_project_config_is_validation_error(memory_storage):
    memory_storage.write_text(MEMORY_PROJECT_ROOT / ".markflow" / "config.yml", "user: [unclosed\n")

    with pytest.raises(ValidationError):
        ConfigDiscovery(memory_storage).resolve_configuration(MEMORY_PROJECT_ROOT)


@pytest.mark.unit
def test_initialize_project_creates_layout(monkeypatch):
    storage = MemoryStorage()
    seed_system(storage)
    monkeypatch.setenv("MARKFLOW_SYSTEM_ROOT", str(MEMORY_SYSTEM_ROOT))
    discovery = ConfigDiscovery(storage)

    result = initialize_project(Path("/work"), workflows=["job", "blog"], discovery=discovery)

    assert result.workflows == ["job", "blog"]
    assert storage.is_file("/work/.markflow/config.yml")
    assert storage.is_dir("/work/.markflow/logs")
    assert storage.is_dir("/work/.markflow/workflows/job/templates")
    assert "Job Workflow Customization" in storage.read_text("/work/.markflow/workflows/job/README.md")
    assert not storage.exists("/work/.markflow/workflows/presentation")

    config = discovery.resolve_configuration(Path("/work"))
    assert config.get("system.scraper") == "wget"


@pytest.mark.unit
def test_initialize_project_refuses_existing_and_unknown(memory_storage):
    discovery = ConfigDiscovery(memory_storage)

    with pytest.raises(ValidationError, match="Already in a markflow project"):
        initialize_project(MEMORY_PROJECT_ROOT, discovery=discovery)
    with pytest.raises(ValidationError, match="Unknown workflows"):
        initialize_project(Path("/fresh"), workflows=["nope"], discovery=discovery)

    result = initialize_project(MEMORY_PROJECT_ROOT, workflows=["blog"], force=True, discovery=discovery)
    assert result.workflows == ["blog"]
