"""Tests for the block library."""

import pytest
from engine.src.errors import BlockNotFoundError, PipelineConfigError, ResolutionError
from engine.src.services.blocks import Block, BlockLibrary

BLOCKS_YAML = """
blocks:
  - id: helm-deploy
    name: Helm Deploy
    category: deploy
    command: helm upgrade --install ${release} ${chart} --namespace ${namespace}
    parameters:
      - name: release
        required: true
      - name: chart
        required: true
      - name: namespace
        default_value: default
"""

def test_default_blocks():
    library = BlockLibrary()

    template = library.get_command_template("install-npm")

    assert template.template == "${packageManager} ${installCommand}"
    assert template.defaults() == {"packageManager": "npm", "installCommand": "install"}
    assert template.required() == ["packageManager"]

def test_missing_block():
    library = BlockLibrary()

    with pytest.raises(BlockNotFoundError, match="Block 'nope' not found"):
        library.get_command_template("nope")

def test_missing_block_is_resolution_error():
    with pytest.raises(ResolutionError):
        BlockLibrary(include_defaults=False).get_block("shell")

def test_register_replaces():
    library = BlockLibrary()
    library.register(Block(id="shell", name="Bash", command="bash -c '${command}'"))

    assert library.get_command_template("shell").template == "bash -c '${command}'"

def test_list_blocks_by_category():
    library = BlockLibrary()

    ids = [b.id for b in library.list_blocks("test")]

    assert ids == ["pytest"]
    assert len(library.list_blocks()) == 6

def test_load_yaml():
    library = BlockLibrary(include_defaults=False)

    assert library.load_yaml(BLOCKS_YAML) == 1

    block = library.get_block("helm-deploy")
    assert block.category == "deploy"
    template = library.get_command_template("helm-deploy")
    assert template.required() == ["release", "chart"]
    assert template.defaults() == {"namespace": "default"}

def test_load_file(tmp_path):
    path = tmp_path / "blocks.yaml"
    path.write_text(BLOCKS_YAML)
    library = BlockLibrary()

    assert library.load_file(str(path)) == 1
    assert library.get_block("helm-deploy").name == "Helm Deploy"

def test_load_yaml_requires_blocks_list():
    with pytest.raises(PipelineConfigError, match="'blocks' list"):
        BlockLibrary().load_yaml("steps: []")

def test_load_yaml_invalid_block():
    with pytest.raises(PipelineConfigError, match="Block 0 is invalid"):
        BlockLibrary().load_yaml("blocks:\n  - id: x\n")
